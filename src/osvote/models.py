from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any, ClassVar, List, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, BeforeValidator, ConfigDict

POLL_TYPE_CRYPTOGRAPHIC = "cryptographic"
POLL_METHOD_YNA = "YNA"


def _decode_base64(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64: {e}") from e
    return value


# base64 text on the wire, raw bytes in python
KeyBytes = Annotated[bytes, BeforeValidator(_decode_base64)]


class Entity(BaseModel):
    """
    Projection target for one live-state object.

    FIELDS is the wire field list the subscription asks for. It is written out
    per class so the request builder and the projector agree without looking at
    the model at runtime.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    COLLECTION: ClassVar[str] = ""
    FIELDS: ClassVar[Tuple[str, ...]] = ()


class User(Entity):
    COLLECTION: ClassVar[str] = "user"
    FIELDS: ClassVar[Tuple[str, ...]] = ("username", "first_name", "last_name", "title")

    username: str = ""
    first_name: str = ""
    last_name: str = ""
    title: str = ""

    def __str__(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        if not parts:
            return self.username
        if self.title:
            parts.insert(0, self.title)
        return " ".join(parts)


class Poll(Entity):
    COLLECTION: ClassVar[str] = "poll"
    FIELDS: ClassVar[Tuple[str, ...]] = (
        "id",
        "title",
        "type",
        "pollmethod",
        "state",
        "min_votes_amount",
        "max_votes_amount",
        "max_votes_per_option",
        "global_yes",
        "global_no",
        "global_abstain",
        "option_ids",
        "crypt_key",
        "crypt_signature",
        "votes_raw",
        "votes_signature",
    )

    id: int = 0
    title: str = ""
    type: str = ""
    pollmethod: str = ""
    state: str = ""
    min_votes_amount: int = 0
    max_votes_amount: int = 0
    max_votes_per_option: int = 0
    global_yes: bool = False
    global_no: bool = False
    global_abstain: bool = False
    option_ids: List[int] = []
    crypt_key: KeyBytes = b""
    crypt_signature: KeyBytes = b""
    votes_raw: str = ""
    votes_signature: KeyBytes = b""

    @property
    def is_cryptographic(self) -> bool:
        return self.type == POLL_TYPE_CRYPTOGRAPHIC


class Organization(Entity):
    COLLECTION: ClassVar[str] = "organization"
    FIELDS: ClassVar[Tuple[str, ...]] = ("url",)

    url: str = ""

    def domain(self) -> str:
        """Host name of the organization url, used to scope published tallies."""
        try:
            return urlparse(self.url).hostname or ""
        except ValueError as e:
            raise ValueError(f"invalid url {self.url}: {e}") from e
