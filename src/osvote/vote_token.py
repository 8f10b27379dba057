from __future__ import annotations

"""
Vote tokens.

A token is 8 random bytes (standard base64) that travels inside the sealed
ballot. The published tally lists tokens without their choices, so a voter can
find their own row without anyone learning what they voted.
"""

import base64
import os
from typing import Any, Callable, Dict, Optional, Set

from osvote.errors import RandomSourceError

TOKEN_SIZE = 8


def new_token(random: Callable[[int], bytes] = os.urandom) -> str:
    try:
        raw = random(TOKEN_SIZE)
    except OSError as e:
        raise RandomSourceError(f"reading from random source: {e}") from e
    if len(raw) != TOKEN_SIZE:
        raise RandomSourceError(f"random source returned {len(raw)} of {TOKEN_SIZE} bytes")
    return base64.b64encode(raw).decode("ascii")


def token_in_tally(tally: Dict[str, Any], token: str) -> bool:
    for vote in tally.get("votes") or []:
        if isinstance(vote, dict) and vote.get("token") == token:
            return True
    return False


class TokenRegistry:
    """Session-scoped record of issued tokens; a token is never handed out twice."""

    def __init__(self, random: Callable[[int], bytes] = os.urandom) -> None:
        self._random = random
        self._issued: Set[str] = set()
        self.held: Optional[str] = None

    def issue(self) -> str:
        token = new_token(self._random)
        if token in self._issued:
            raise RandomSourceError("random source repeated a vote token")
        self._issued.add(token)
        return token

    def mark_sent(self, token: str) -> None:
        if token not in self._issued:
            raise ValueError("token was not issued by this registry")
        self.held = token

    def __len__(self) -> int:
        return len(self._issued)
