from __future__ import annotations

import asyncio
import base64
import json

import pytest

from osvote.ballot import Choice
from osvote.cli import main
from osvote.config import ClientConfig
from osvote.errors import AuthError, HTTPStatusError
from osvote.live_state import Frame, StreamEnd
from osvote.machine import LoginDone, Phase, SubmitDone, SubmitRequested, VoteMachine
from osvote.view import render


class _Stream:
    async def next(self):
        return StreamEnd()


class _Client:
    user_id = 1

    async def send_vote(self, poll_id, value):
        pass


def _machine(**kwargs) -> VoteMachine:
    m = VoteMachine(_Client(), 7, tick_interval=0, **kwargs)
    m.phase = Phase.SYNCING
    return m


def test_render_login_impossible():
    async def go():
        m = _machine()
        m.handle(LoginDone(error=AuthError("exhausted", last_error=HTTPStatusError(403, b'{"message":"wrong password"}'))))
        return render(m)

    assert asyncio.run(go()) == "Login impossible: wrong password"


def test_render_loading_and_started_poll():
    async def go():
        m = _machine()
        loading = render(m)
        m.handle(Frame(data={
            "user/1/username": "hugo",
            "user/1/first_name": "Hugo",
            "poll/7/title": "Budget",
            "poll/7/type": "named",
            "poll/7/state": "started",
            "poll/7/option_ids": [3],
        }, stream=_Stream()))
        return loading, render(m)

    loading, started = asyncio.run(go())
    assert loading.startswith("Logged in as user 1. Loading data")
    assert started.startswith("Hello Hugo!")
    assert "Poll: Budget (started, named)" in started
    assert "[X] Yes" in started
    assert "[ ] Abstain" in started


def test_render_voted_shows_own_ballot():
    async def go():
        m = _machine()
        m.handle(Frame(data={
            "user/1/username": "hugo",
            "poll/7/state": "started",
            "poll/7/option_ids": [3],
        }, stream=_Stream()))
        m.handle(SubmitRequested(choice=Choice.ABSTAIN))
        m.handle(SubmitDone())
        return render(m)

    screen = asyncio.run(go())
    assert "You already voted for poll 7" in screen
    assert 'Your vote: {"3":"A"}' in screen
    assert "[ ] Yes" not in screen


def test_render_published_shows_tally_even_when_invalid():
    main_key = b"\x01" * 32

    async def go():
        m = _machine(main_key=main_key)
        tally = json.dumps({"id": "example.com/7", "votes": []})
        m.handle(Frame(data={
            "user/1/username": "hugo",
            "poll/7/type": "cryptographic",
            "poll/7/state": "published",
            "poll/7/option_ids": [3],
            "poll/7/votes_raw": tally,
            "poll/7/votes_signature": base64.b64encode(b"\x00" * 64).decode("ascii"),
        }, stream=_Stream()))
        return render(m), tally

    screen, tally = asyncio.run(go())
    assert "Poll results are invalid: signature for poll results do not match" in screen
    assert tally in screen
    assert base64.b64encode(main_key).decode("ascii") in screen


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("OSVOTE_DOMAIN", "vote.example.com")
    monkeypatch.setenv("OSVOTE_HTTP", "yes")
    monkeypatch.setenv("OSVOTE_LOGIN_ATTEMPTS", "5")
    monkeypatch.setenv("OSVOTE_LOGIN_RETRY_STATUSES", "403, 503")
    cfg = ClientConfig.from_env()
    assert cfg.addr() == "http://vote.example.com"
    assert cfg.login_attempts == 5
    assert cfg.login_retry_statuses == (403, 503)
    assert cfg.login_retry_interval == 1.0
    assert cfg.username == "admin"


def test_config_main_key():
    assert ClientConfig().main_key_bytes() is None
    key = b"\x05" * 32
    assert ClientConfig(main_key=base64.b64encode(key).decode("ascii")).main_key_bytes() == key
    with pytest.raises(ValueError):
        ClientConfig(main_key="not base64!").main_key_bytes()
    with pytest.raises(ValueError):
        ClientConfig(main_key=base64.b64encode(b"short").decode("ascii")).main_key_bytes()


def test_cli_rejects_bad_arguments(capsys):
    with pytest.raises(SystemExit) as ei:
        main(["7", "--choice", "maybe"])
    assert ei.value.code == 2
    assert "unknown choice" in capsys.readouterr().err
