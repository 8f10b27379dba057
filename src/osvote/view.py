from __future__ import annotations

import base64
from typing import List

from osvote.ballot import Choice
from osvote.errors import HTTPStatusError
from osvote.machine import POLL_PUBLISHED, POLL_STARTED, Phase, VoteMachine
from osvote.models import POLL_METHOD_YNA


def _progress(ticks: int) -> str:
    return "." * ((ticks % 3) + 1)


def render(m: VoteMachine) -> str:
    """Plain text status of the machine, one screen at a time."""
    err = m.last_error
    if err is not None and (m.phase is Phase.ERROR or m.phase is Phase.AUTHENTICATING):
        cause = getattr(err, "last_error", None) or err
        if isinstance(cause, HTTPStatusError) and cause.status_code == 403:
            return f"Login impossible: {cause.message()}"
        return f"Error: {err}"

    if m.client.user_id == 0:
        return f"Logging in {_progress(m.ticks)}"

    if not m.user.username:
        return f"Logged in as user {m.client.user_id}. Loading data {_progress(m.ticks)}"

    out = f"Hello {m.user}!\n\n"
    if m.main_key:
        out += f"Please make sure the public main key is correct: {base64.b64encode(m.main_key).decode('ascii')}\n\n"
    if err is not None:
        out += f"Error: {err}\n\n"
    return out + render_poll(m)


def render_poll(m: VoteMachine) -> str:
    if not m.poll_present:
        return f"The poll does currently not exist. Please wait {_progress(m.ticks)}"

    poll = m.poll
    lines: List[str] = [f"Poll: {poll.title} ({poll.state}, {poll.type})"]

    if poll.state == POLL_STARTED:
        if poll.is_cryptographic:
            if not m.poll_key_valid:
                lines.append("Poll key is invalid")
                return "\n".join(lines)
            lines.append("Poll key is valid\n")

        if m.ballot.error is not None:
            lines.append(f"Error: {m.ballot.error}")

        if m.phase is Phase.VOTED:
            lines.append(f"You already voted for poll {m.poll_id}")
            if m.ballot.value:
                lines.append(f"Your vote: {m.ballot.value}")
            return "\n".join(lines) + "\n"

        if m.ballot.sending:
            lines.append(f"Sending ballot {_progress(m.ticks)}")

        if poll.pollmethod not in ("", POLL_METHOD_YNA):
            lines.append(f"Poll has method {poll.pollmethod}. This is not yet supported")
            return "\n".join(lines) + "\n"

        for choice, label in ((Choice.YES, "Yes"), (Choice.NO, "No"), (Choice.ABSTAIN, "Abstain")):
            mark = "X" if m.ballot.choice is choice else " "
            lines.append(f"[{mark}] {label}")

    elif poll.state == POLL_PUBLISHED:
        check = m.tally_check
        if check is not None and not check.ok:
            lines.append(f"Poll results are invalid: {check.detail}\n")
        elif check is not None and check.detail:
            lines.append(f"Poll results are valid: {check.detail}\n")
        lines.append(poll.votes_raw)

    return "\n".join(lines) + "\n"
