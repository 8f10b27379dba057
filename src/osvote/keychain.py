from __future__ import annotations

"""
Main-key trust chain.

The organization main key signs every poll key and every published tally.
verify_poll_results walks the tally side of that chain and, when the voter
still holds the token of their ballot, looks for it in the published votes.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from osvote.models import Poll
from osvote.schemas import TALLY_SCHEMA, SchemaViolation, validate
from osvote.vote_token import token_in_tally

logger = logging.getLogger(__name__)


def verify_signature(pub_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        pub = Ed25519PublicKey.from_public_bytes(bytes(pub_key))
        pub.verify(bytes(signature), bytes(message))
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


class TallyStatus(str, Enum):
    OK = "ok"
    KEY_MISSING = "key_missing"
    NO_RESULT_DATA = "no_result_data"
    SIGNATURE_INVALID = "signature_invalid"
    MALFORMED_TALLY = "malformed_tally"
    SCOPE_MISMATCH = "scope_mismatch"
    TOKEN_NOT_FOUND = "token_not_found"


@dataclass(frozen=True)
class TallyCheck:
    status: TallyStatus
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is TallyStatus.OK


def tally_scope(domain: str, poll_id: int) -> str:
    return f"{domain}/{poll_id}"


def parse_tally(raw: str) -> Dict[str, Any]:
    try:
        doc = json.loads(raw)
    except ValueError as e:
        raise SchemaViolation(f"decoding vote values: {e}") from e
    validate(TALLY_SCHEMA, doc)
    return doc


def verify_poll_results(
    main_key: Optional[bytes],
    poll: Poll,
    domain: str,
    held_token: Optional[str] = None,
    *,
    poll_id: Optional[int] = None,
) -> TallyCheck:
    """
    Checks a published tally against the main key.

    Order matters and the first failing step wins:
      key present -> tally + signature present -> signature -> scope id -> own token.
    poll_id overrides poll.id for the scope check (the caller may know the id
    before the server has sent it).
    """
    if not main_key:
        return TallyCheck(TallyStatus.KEY_MISSING, "no main key provided. Validation impossible")

    if not poll.votes_raw or not poll.votes_signature:
        return TallyCheck(TallyStatus.NO_RESULT_DATA, "no vote result data")

    raw = poll.votes_raw.encode("utf-8")
    if not verify_signature(main_key, raw, poll.votes_signature):
        logger.warning("tally signature of poll %s does not verify under the main key", poll_id or poll.id)
        return TallyCheck(TallyStatus.SIGNATURE_INVALID, "signature for poll results do not match")

    try:
        tally = parse_tally(poll.votes_raw)
    except SchemaViolation as e:
        return TallyCheck(TallyStatus.MALFORMED_TALLY, str(e))

    expected = tally_scope(domain, poll_id if poll_id is not None else poll.id)
    if tally["id"] != expected:
        return TallyCheck(TallyStatus.SCOPE_MISMATCH, f"results are for poll {tally['id']}, expected {expected}")

    if not held_token:
        return TallyCheck(TallyStatus.OK)

    if not token_in_tally(tally, held_token):
        return TallyCheck(TallyStatus.TOKEN_NOT_FOUND, "can not find my token in the results")

    return TallyCheck(TallyStatus.OK, "own vote found in the results")
