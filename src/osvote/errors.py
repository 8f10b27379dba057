from __future__ import annotations

import json
from typing import Optional


class VoteClientError(Exception):
    pass


class TransportError(VoteClientError):
    """Request or stream failure."""


class HTTPStatusError(TransportError):
    """
    Raised when the server answers with a status outside of 2xx.

    The body is kept raw; message() extracts the server's "message" field when
    the body is a JSON object carrying one.
    """

    def __init__(self, status_code: int, body: bytes = b"") -> None:
        self.status_code = int(status_code)
        self.body = body or b""
        super().__init__(f"got status {self.status_code}: {self.body.decode('utf-8', errors='replace')}")

    def message(self) -> str:
        text = self.body.decode("utf-8", errors="replace")
        try:
            obj = json.loads(text)
        except ValueError:
            return text
        if isinstance(obj, dict) and isinstance(obj.get("message"), str):
            return obj["message"]
        return text


class AuthError(VoteClientError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class ProtocolError(VoteClientError):
    """Malformed frame or undecodable entity."""


class DecodeError(ProtocolError):
    pass


class CryptoError(VoteClientError):
    pass


class InvalidPollKey(CryptoError):
    pass


class RandomSourceError(CryptoError):
    pass


class ValidationError(VoteClientError):
    pass


class PollMisconfigured(ValidationError):
    pass


class UnsupportedPollMethod(ValidationError):
    pass
