from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

from osvote.errors import InvalidPollKey, UnsupportedPollMethod
from osvote.models import POLL_METHOD_YNA, Poll
from osvote.keychain import verify_signature
from osvote.vote_cipher import encrypt_vote
from osvote.vote_token import TokenRegistry


class Choice(str, Enum):
    YES = "Y"
    NO = "N"
    ABSTAIN = "A"

    @classmethod
    def parse(cls, value: str) -> "Choice":
        v = value.strip().lower()
        for c in cls:
            if v in (c.value.lower(), c.name.lower()):
                return c
        raise ValueError(f"unknown choice {value!r}, expected yes/no/abstain")


class BallotStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


@dataclass(frozen=True)
class Ballot:
    option_id: int = 0
    choice: Choice = Choice.YES
    token: Optional[str] = None
    status: Optional[BallotStatus] = None
    error: Optional[Exception] = field(default=None, compare=False)
    value: str = ""

    @property
    def sending(self) -> bool:
        return self.status is BallotStatus.PENDING


def _compact(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def ballot_plaintext(option_id: int, choice: Choice, token: Optional[str] = None) -> str:
    body: Dict[str, Any] = {str(option_id): choice.value}
    if token is not None:
        body["token"] = token
    return _compact(body)


def create_vote(
    poll: Poll,
    ballot: Ballot,
    main_key: Optional[bytes],
    tokens: TokenRegistry,
    *,
    random: Callable[[int], bytes] = os.urandom,
) -> Ballot:
    """
    Builds the submission value for ballot.

    Plain polls get the JSON object itself; cryptographic polls get a fresh
    token inside the plaintext and the sealed envelope as value.
    """
    # unset method counts as YNA
    if poll.pollmethod not in ("", POLL_METHOD_YNA):
        raise UnsupportedPollMethod(f"Poll has method {poll.pollmethod}. This is not yet supported")

    if not poll.is_cryptographic:
        return replace(ballot, token=None, value=ballot_plaintext(ballot.option_id, ballot.choice))

    if not main_key or not verify_signature(main_key, poll.crypt_key, poll.crypt_signature):
        raise InvalidPollKey("poll key is invalid. It was not signed with the main key")

    token = tokens.issue()
    plaintext = ballot_plaintext(ballot.option_id, ballot.choice, token)
    value = encrypt_vote(plaintext, main_key, poll.crypt_key, poll.crypt_signature, random=random)
    return replace(ballot, token=token, value=value)
