from __future__ import annotations

"""
Authenticated session against the vote server.

Only the four calls the voting machine needs: login, the live-state stream,
ballot submission and the "have I voted" query. Every call after login carries
the `authentication` header and the `refreshId` cookie from the login answer.
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from osvote.config import ClientConfig
from osvote.errors import AuthError, HTTPStatusError, ProtocolError, TransportError
from osvote.live_state import FrameStream
from osvote.schemas import VOTE_STATUS_SCHEMA, SchemaViolation, validate

logger = logging.getLogger(__name__)

LOGIN_PATH = "/system/auth/login"
AUTOUPDATE_PATH = "/system/autoupdate"
VOTE_PATH = "/system/vote"
VOTED_PATH = "/system/vote/voted"
AUTH_HEADER = "authentication"
AUTH_COOKIE = "refreshId"


def decode_user_id(token: str) -> int:
    """Reads userId from the payload of a JWT. The signature is not checked."""
    parts = token.split(".")
    if len(parts) < 2 or not parts[1]:
        raise AuthError(f"malformed auth token: expected three dot separated parts, got {len(parts)}")
    payload = parts[1].replace("+", "-").replace("/", "_")
    payload += "=" * ((4 - len(payload) % 4) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError) as e:
        raise AuthError(f"decoding jwt token {parts[1]!r}: {e}") from e
    user_id = data.get("userId") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise AuthError("decoding user_id: userId missing in auth token")
    return user_id


def _check_status(resp: httpx.Response) -> httpx.Response:
    if resp.status_code < 200 or resp.status_code > 299:
        raise HTTPStatusError(resp.status_code, resp.content)
    return resp


class VoteClient:
    def __init__(
        self,
        cfg: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        if transport is None and cfg.ipv4:
            transport = httpx.AsyncHTTPTransport(local_address="0.0.0.0", verify=cfg.verify_tls)
        self._http = httpx.AsyncClient(
            base_url=cfg.addr(),
            verify=cfg.verify_tls,
            transport=transport,
            timeout=httpx.Timeout(30.0, read=None),
        )
        self._sleep = sleep
        self.auth_token = ""
        self.auth_cookie: Optional[str] = None
        self.user_id = 0

    async def __aenter__(self) -> "VoteClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _auth_headers(self) -> Dict[str, str]:
        headers = {AUTH_HEADER: self.auth_token, "content-type": "application/json"}
        if self.auth_cookie is not None:
            headers["cookie"] = f"{AUTH_COOKIE}={self.auth_cookie}"
        return headers

    async def login(self) -> int:
        """
        Logs in with the configured credentials and returns the user id.

        Retries only on cfg.login_retry_statuses; anything else fails at once.
        """
        cfg = self.cfg
        body = {"username": cfg.username, "password": cfg.password}
        attempts = max(1, int(cfg.login_attempts))
        last: Optional[HTTPStatusError] = None
        resp: Optional[httpx.Response] = None

        for attempt in range(1, attempts + 1):
            try:
                r = await self._http.post(LOGIN_PATH, json=body)
            except httpx.HTTPError as e:
                raise TransportError(f"sending login request: {e}") from e
            if 200 <= r.status_code <= 299:
                resp = r
                break
            last = HTTPStatusError(r.status_code, r.content)
            if r.status_code not in cfg.login_retry_statuses:
                raise last
            logger.warning("login attempt %d/%d got status %d", attempt, attempts, r.status_code)
            if attempt < attempts:
                await self._sleep(cfg.login_retry_interval)

        if resp is None:
            raise AuthError(f"login failed after {attempts} attempts: {last}", last_error=last) from last

        token = resp.headers.get(AUTH_HEADER, "")
        user_id = decode_user_id(token)
        self.auth_token = token
        self.auth_cookie = resp.cookies.get(AUTH_COOKIE)
        self.user_id = user_id
        logger.info("logged in as user %d", user_id)
        return user_id

    async def request(self, method: str, url: str, *, content: Optional[str] = None) -> httpx.Response:
        try:
            resp = await self._http.request(method, url, content=content, headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise TransportError(f"sending request: {e}") from e
        return _check_status(resp)

    async def open_stream(self, subscriptions: List[Dict[str, Any]]) -> FrameStream:
        content = json.dumps(subscriptions, separators=(",", ":"))
        req = self._http.build_request("GET", AUTOUPDATE_PATH, content=content, headers=self._auth_headers())
        try:
            resp = await self._http.send(req, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"sending request: {e}") from e
        if resp.status_code < 200 or resp.status_code > 299:
            await resp.aread()
            await resp.aclose()
            raise HTTPStatusError(resp.status_code, resp.content)
        return FrameStream(resp.aiter_lines(), close=resp.aclose)

    async def send_vote(self, poll_id: int, value: str) -> None:
        await self.request("POST", f"{VOTE_PATH}?id={poll_id}", content=f'{{"value":{value}}}')

    async def have_i_voted(self, poll_id: int) -> bool:
        resp = await self.request("GET", f"{VOTED_PATH}?ids={poll_id}")
        try:
            content = resp.json()
            validate(VOTE_STATUS_SCHEMA, content)
        except (ValueError, SchemaViolation) as e:
            raise ProtocolError(f"decoding response body `{resp.text.strip()}`: {e}") from e
        return self.user_id in (content.get(str(poll_id)) or [])
