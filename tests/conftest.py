from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from osvote.client import VoteClient
from osvote.config import ClientConfig


def _raw_pub(key: Any) -> bytes:
    return key.public_key().public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


def b64(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def make_jwt(user_id: int) -> str:
    header = base64.urlsafe_b64encode(b'{"alg":"HS256"}').decode("ascii").rstrip("=")
    payload = base64.urlsafe_b64encode(json.dumps({"userId": user_id}).encode("utf-8")).decode("ascii").rstrip("=")
    return f"{header}.{payload}.sig"


@dataclass
class Keys:
    main_priv: ed25519.Ed25519PrivateKey
    main_pub: bytes
    poll_priv: x25519.X25519PrivateKey
    poll_pub: bytes
    poll_sig: bytes

    def sign(self, message: bytes) -> bytes:
        return self.main_priv.sign(message)


@pytest.fixture
def keys() -> Keys:
    main_priv = ed25519.Ed25519PrivateKey.generate()
    poll_priv = x25519.X25519PrivateKey.generate()
    poll_pub = _raw_pub(poll_priv)
    return Keys(
        main_priv=main_priv,
        main_pub=_raw_pub(main_priv),
        poll_priv=poll_priv,
        poll_pub=poll_pub,
        poll_sig=main_priv.sign(poll_pub),
    )


@dataclass
class FakeServer:
    """In-process stand-in for the vote server endpoints."""

    user_id: int = 1
    frames: List[Dict[str, Any]] = field(default_factory=list)
    login_statuses: List[int] = field(default_factory=list)
    login_body: bytes = b'{"message":"not ready"}'
    voted: Dict[str, List[int]] = field(default_factory=dict)
    vote_status: int = 200
    login_calls: int = 0
    subscriptions: Optional[Any] = None
    votes: List[Dict[str, Any]] = field(default_factory=list)
    seen_headers: List[Dict[str, str]] = field(default_factory=list)

    def app(self) -> FastAPI:
        app = FastAPI()

        @app.post("/system/auth/login")
        async def login(request: Request) -> Response:
            self.login_calls += 1
            if self.login_statuses:
                status = self.login_statuses.pop(0)
                if status != 200:
                    return Response(content=self.login_body, status_code=status)
            resp = JSONResponse({"success": True})
            resp.headers["authentication"] = make_jwt(self.user_id)
            resp.set_cookie("refreshId", "refresh-cookie")
            return resp

        @app.get("/system/autoupdate")
        async def autoupdate(request: Request) -> Response:
            self.seen_headers.append(dict(request.headers))
            self.subscriptions = json.loads(await request.body())
            body = "".join(json.dumps(f) + "\n" for f in self.frames)
            return PlainTextResponse(body)

        @app.get("/system/vote/voted")
        async def voted(request: Request) -> Response:
            self.seen_headers.append(dict(request.headers))
            if self.vote_status != 200:
                return Response(content=b"boom", status_code=self.vote_status)
            return JSONResponse(self.voted)

        @app.post("/system/vote")
        async def vote(request: Request) -> Response:
            self.seen_headers.append(dict(request.headers))
            body = json.loads(await request.body())
            self.votes.append({"id": int(request.query_params["id"]), "body": body})
            self.voted.setdefault(request.query_params["id"], []).append(self.user_id)
            return JSONResponse({"success": True})

        return app


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def make_client(server: FakeServer):
    def _make(**cfg_kwargs: Any) -> VoteClient:
        sleeps: List[float] = []

        async def fake_sleep(s: float) -> None:
            sleeps.append(s)

        cfg_kwargs.setdefault("http", True)
        cfg_kwargs.setdefault("domain", "testserver")
        client = VoteClient(
            ClientConfig(**cfg_kwargs),
            transport=httpx.ASGITransport(app=server.app()),
            sleep=fake_sleep,
        )
        client.sleeps = sleeps  # type: ignore[attr-defined]
        return client

    return _make
