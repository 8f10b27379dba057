from __future__ import annotations

import json

from osvote.keychain import TallyStatus, verify_poll_results, verify_signature
from osvote.models import Poll


def _published(keys, tally, *, poll_id=7, signature=None):
    raw = tally if isinstance(tally, str) else json.dumps(tally, separators=(",", ":"))
    sig = keys.sign(raw.encode("utf-8")) if signature is None else signature
    return Poll(id=poll_id, type="cryptographic", state="published", votes_raw=raw, votes_signature=sig)


def test_verify_signature(keys):
    assert verify_signature(keys.main_pub, keys.poll_pub, keys.poll_sig)
    assert not verify_signature(keys.main_pub, b"x" * 32, keys.poll_sig)
    assert not verify_signature(keys.main_pub, keys.poll_pub, b"short")
    assert not verify_signature(b"not a key", keys.poll_pub, keys.poll_sig)


def test_key_missing_comes_first(keys):
    poll = _published(keys, {"id": "example.com/7", "votes": []})
    assert verify_poll_results(None, poll, "example.com", None).status is TallyStatus.KEY_MISSING
    assert verify_poll_results(b"", Poll(), "example.com", None).status is TallyStatus.KEY_MISSING


def test_no_result_data(keys):
    assert verify_poll_results(keys.main_pub, Poll(id=7), "example.com", None).status is TallyStatus.NO_RESULT_DATA
    unsigned = Poll(id=7, votes_raw='{"id":"example.com/7"}')
    assert verify_poll_results(keys.main_pub, unsigned, "example.com", None).status is TallyStatus.NO_RESULT_DATA


def test_signature_invalid(keys):
    poll = _published(keys, {"id": "example.com/7", "votes": []}, signature=b"\x00" * 64)
    assert verify_poll_results(keys.main_pub, poll, "example.com", None).status is TallyStatus.SIGNATURE_INVALID


def test_signature_covers_exact_raw_bytes(keys):
    raw = '{"id":"example.com/7","votes":[]}'
    poll = _published(keys, raw)
    reformatted = poll.model_copy(update={"votes_raw": '{"id": "example.com/7", "votes": []}'})
    assert verify_poll_results(keys.main_pub, poll, "example.com", None).ok
    assert verify_poll_results(keys.main_pub, reformatted, "example.com", None).status is TallyStatus.SIGNATURE_INVALID


def test_scope_mismatch_with_valid_signature(keys):
    poll = _published(keys, {"id": "example.com/8", "votes": []})
    check = verify_poll_results(keys.main_pub, poll, "example.com", None)
    assert check.status is TallyStatus.SCOPE_MISMATCH
    assert "expected example.com/7" in check.detail

    other_domain = verify_poll_results(keys.main_pub, _published(keys, {"id": "evil.org/7"}), "example.com", None)
    assert other_domain.status is TallyStatus.SCOPE_MISMATCH


def test_poll_id_override_for_scope(keys):
    poll = _published(keys, {"id": "example.com/7", "votes": []}, poll_id=0)
    assert verify_poll_results(keys.main_pub, poll, "example.com", None, poll_id=7).ok


def test_malformed_tally(keys):
    assert verify_poll_results(keys.main_pub, _published(keys, "not json"), "example.com", None).status is TallyStatus.MALFORMED_TALLY
    no_id = _published(keys, {"votes": []})
    assert verify_poll_results(keys.main_pub, no_id, "example.com", None).status is TallyStatus.MALFORMED_TALLY


def test_token_self_check(keys):
    poll = _published(keys, {"id": "example.com/7", "votes": [{"token": "T0"}, {"token": "T1"}]})
    found = verify_poll_results(keys.main_pub, poll, "example.com", "T1")
    assert found.ok
    assert found.status is TallyStatus.OK

    missing = _published(keys, {"id": "example.com/7", "votes": [{"token": "T0"}]})
    assert verify_poll_results(keys.main_pub, missing, "example.com", "T1").status is TallyStatus.TOKEN_NOT_FOUND


def test_no_token_skips_inclusion_check(keys):
    poll = _published(keys, {"id": "example.com/7", "votes": []})
    check = verify_poll_results(keys.main_pub, poll, "example.com", None)
    assert check.ok
    assert check.detail == ""
