from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

ENV_PREFIX = "OSVOTE_"
MAIN_KEY_SIZE = 32


def _env(name: str, default: str) -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _truthy_env(name: str) -> bool:
    return os.getenv(ENV_PREFIX + name, "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_statuses(value: str) -> Tuple[int, ...]:
    return tuple(int(s) for s in value.replace(" ", "").split(",") if s)


@dataclass
class ClientConfig:
    """
    Connection and policy settings for one voting session.

    Login is retried while the server answers with one of login_retry_statuses
    (403 means "not ready yet" for a freshly started server), at most
    login_attempts times, login_retry_interval seconds apart.
    """
    domain: str = "localhost:8000"
    username: str = "admin"
    password: str = "admin"
    http: bool = False
    ipv4: bool = False
    verify_tls: bool = False
    main_key: Optional[str] = None
    login_attempts: int = 100
    login_retry_interval: float = 1.0
    login_retry_statuses: Tuple[int, ...] = field(default=(403,))
    tick_interval: float = 1.0

    def addr(self) -> str:
        proto = "http" if self.http else "https"
        return f"{proto}://{self.domain}"

    def main_key_bytes(self) -> Optional[bytes]:
        if not self.main_key:
            return None
        try:
            key = base64.b64decode(self.main_key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"decoding main key from base64: {e}") from e
        if len(key) != MAIN_KEY_SIZE:
            raise ValueError(f"main key must be {MAIN_KEY_SIZE} bytes, got {len(key)}")
        return key

    @classmethod
    def from_env(cls) -> "ClientConfig":
        d = cls()
        return cls(
            domain=_env("DOMAIN", d.domain),
            username=_env("USERNAME", d.username),
            password=_env("PASSWORD", d.password),
            http=_truthy_env("HTTP"),
            ipv4=_truthy_env("IPV4"),
            verify_tls=_truthy_env("VERIFY_TLS"),
            main_key=_env("MAIN_KEY", "") or None,
            login_attempts=int(_env("LOGIN_ATTEMPTS", str(d.login_attempts))),
            login_retry_interval=float(_env("LOGIN_RETRY_INTERVAL", str(d.login_retry_interval))),
            login_retry_statuses=_parse_statuses(_env("LOGIN_RETRY_STATUSES", "403")),
            tick_interval=float(_env("TICK_INTERVAL", str(d.tick_interval))),
        )
