from __future__ import annotations

"""
Voting state machine.

One consumer (VoteMachine.run) takes tagged messages off an asyncio.Queue and is
the only code that touches the live state, the projected entities, the ballot
and the phase. Everything slow runs as a producer task that puts exactly one
message on the queue and never raises: failures travel inside the message.

Phases:
  UNAUTHENTICATED -> AUTHENTICATING -> SYNCING -> WAITING -> STARTED
  -> BALLOT_PENDING -> VOTED -> PUBLISHED, and ERROR from anywhere.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from osvote.ballot import Ballot, BallotStatus, Choice, create_vote
from osvote.client import VoteClient
from osvote.errors import PollMisconfigured, ProtocolError, ValidationError, VoteClientError
from osvote.keychain import TallyCheck, verify_poll_results, verify_signature
from osvote.live_state import (
    Frame,
    FrameStream,
    LiveState,
    StreamEnd,
    StreamFailed,
    has_entity,
    merge_frame,
    project,
    subscription_request,
)
from osvote.models import Organization, Poll, User
from osvote.vote_token import TokenRegistry

logger = logging.getLogger(__name__)

POLL_STARTED = "started"
POLL_PUBLISHED = "published"


class Phase(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    SYNCING = "syncing"
    WAITING = "waiting"
    STARTED = "started"
    BALLOT_PENDING = "ballot_pending"
    VOTED = "voted"
    PUBLISHED = "published"
    ERROR = "error"


@dataclass
class Tick:
    pass


@dataclass
class LoginDone:
    error: Optional[Exception] = None


@dataclass
class StreamOpened:
    stream: Optional[FrameStream] = None
    error: Optional[Exception] = None


@dataclass
class VoteStatus:
    voted: bool = False
    error: Optional[Exception] = None


@dataclass
class SubmitRequested:
    choice: Choice
    option_id: Optional[int] = None


@dataclass
class SubmitDone:
    error: Optional[Exception] = None


@dataclass
class Quit:
    pass


class VoteMachine:
    def __init__(
        self,
        client: VoteClient,
        poll_id: int,
        *,
        main_key: Optional[bytes] = None,
        random: Callable[[int], bytes] = os.urandom,
        tick_interval: float = 1.0,
    ) -> None:
        self.client = client
        self.poll_id = int(poll_id)
        self.main_key = main_key
        self.random = random
        self.tick_interval = float(tick_interval)

        self.queue: asyncio.Queue = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()

        self.phase = Phase.UNAUTHENTICATED
        self.state: LiveState = {}
        self.user = User()
        self.poll = Poll()
        self.organization = Organization()
        self.poll_present = False
        self.synced = False
        self.stream_closed = False
        self.has_voted = False
        self.ballot = Ballot()
        self.tokens = TokenRegistry(random)
        self.tally_check: Optional[TallyCheck] = None
        self.last_error: Optional[Exception] = None
        self.ticks = 0
        self.vote_status_queries = 0

    # -- producers -------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._produce(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _produce(self, coro: Awaitable[Any]) -> None:
        await self.queue.put(await coro)

    async def _tick(self) -> Tick:
        await asyncio.sleep(self.tick_interval)
        return Tick()

    async def _login(self) -> LoginDone:
        try:
            await self.client.login()
        except Exception as e:
            return LoginDone(error=e)
        return LoginDone()

    async def _open_stream(self) -> StreamOpened:
        try:
            stream = await self.client.open_stream(subscription_request(self.client.user_id, self.poll_id))
        except Exception as e:
            return StreamOpened(error=e)
        return StreamOpened(stream=stream)

    async def _vote_status(self) -> VoteStatus:
        try:
            voted = await self.client.have_i_voted(self.poll_id)
        except Exception as e:
            return VoteStatus(error=e)
        return VoteStatus(voted=voted)

    async def _submit(self, value: str) -> SubmitDone:
        try:
            await self.client.send_vote(self.poll_id, value)
        except Exception as e:
            return SubmitDone(error=e)
        return SubmitDone()

    def _query_vote_status(self) -> None:
        self.vote_status_queries += 1
        self._spawn(self._vote_status())

    # -- input -----------------------------------------------------------

    def start(self) -> None:
        self._set_phase(Phase.AUTHENTICATING)
        if self.tick_interval > 0:
            self._spawn(self._tick())
        self._spawn(self._login())

    def submit(self, choice: Choice, option_id: Optional[int] = None) -> None:
        self.queue.put_nowait(SubmitRequested(choice=choice, option_id=option_id))

    def quit(self) -> None:
        self.queue.put_nowait(Quit())

    async def run(self, until: Optional[Callable[["VoteMachine"], bool]] = None) -> None:
        if self.phase is Phase.UNAUTHENTICATED:
            self.start()
        while True:
            msg = await self.queue.get()
            if isinstance(msg, Quit):
                return
            self.handle(msg)
            if until is not None and until(self):
                return

    # -- consumer --------------------------------------------------------

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            logger.info("poll %d: %s -> %s", self.poll_id, self.phase.value, phase.value)
            self.phase = phase

    def _fail(self, error: Exception) -> None:
        logger.error("poll %d: %s", self.poll_id, error)
        self.last_error = error
        self._set_phase(Phase.ERROR)

    def handle(self, msg: Any) -> None:
        if isinstance(msg, Tick):
            self.ticks += 1
            if self.tick_interval > 0:
                self._spawn(self._tick())
            return

        if self.phase is Phase.ERROR:
            logger.debug("ignoring %s in error state", type(msg).__name__)
            return

        if isinstance(msg, LoginDone):
            if msg.error is not None:
                self._fail(msg.error)
                return
            self.last_error = None
            self._set_phase(Phase.SYNCING)
            self._spawn(self._open_stream())
            self._query_vote_status()

        elif isinstance(msg, StreamOpened):
            if msg.error is not None:
                self._fail(msg.error)
                return
            self._spawn(msg.stream.next())

        elif isinstance(msg, Frame):
            self._handle_frame(msg)

        elif isinstance(msg, StreamEnd):
            logger.info("poll %d: live stream closed", self.poll_id)
            self.stream_closed = True

        elif isinstance(msg, StreamFailed):
            self.stream_closed = True
            self._fail(msg.error)

        elif isinstance(msg, VoteStatus):
            if msg.error is not None:
                self.last_error = msg.error
                return
            self.last_error = None
            # a reply to a query sent before our ballot went out must not undo it
            self.has_voted = msg.voted or self.ballot.status is BallotStatus.SENT
            self._refresh_phase()

        elif isinstance(msg, SubmitRequested):
            self._handle_submit(msg)

        elif isinstance(msg, SubmitDone):
            if msg.error is not None:
                logger.warning("poll %d: sending ballot failed: %s", self.poll_id, msg.error)
                self.ballot = replace(self.ballot, status=BallotStatus.ERROR, error=msg.error)
                self._refresh_phase()
                return
            if self.ballot.token is not None:
                self.tokens.mark_sent(self.ballot.token)
            self.ballot = replace(self.ballot, status=BallotStatus.SENT, error=None)
            self.has_voted = True
            self.last_error = None
            logger.info("poll %d: ballot sent", self.poll_id)
            self._refresh_phase()

        else:
            raise TypeError(f"unknown message {msg!r}")

    def _handle_frame(self, msg: Frame) -> None:
        self.state = merge_frame(self.state, msg.data)
        self.synced = True
        was_present = self.poll_present
        old_state = self.poll.state

        try:
            self.organization = project(self.state, Organization.COLLECTION, 1, Organization)
            self.user = project(self.state, User.COLLECTION, self.client.user_id, User)
            self.poll = project(self.state, Poll.COLLECTION, self.poll_id, Poll)
        except ProtocolError as e:
            self._fail(e)
            return

        self.poll_present = has_entity(self.state, Poll.COLLECTION, self.poll_id)
        if self.poll_present and not self.poll.option_ids:
            self._fail(PollMisconfigured("Poll has no options"))
            return

        if self.poll.option_ids and self.ballot.option_id not in self.poll.option_ids:
            self.ballot = replace(self.ballot, option_id=self.poll.option_ids[0])

        if was_present and old_state != self.poll.state:
            self._query_vote_status()

        self._spawn(msg.stream.next())
        self.last_error = None
        self._refresh_phase()

    def _handle_submit(self, msg: SubmitRequested) -> None:
        if self.phase not in (Phase.STARTED, Phase.BALLOT_PENDING) or self.ballot.sending:
            logger.debug("poll %d: ignoring submission in phase %s", self.poll_id, self.phase.value)
            return

        option_id = msg.option_id if msg.option_id is not None else self.ballot.option_id
        ballot = replace(self.ballot, option_id=option_id, choice=msg.choice, error=None)
        try:
            if option_id not in self.poll.option_ids:
                raise ValidationError(f"option {option_id} does not belong to poll {self.poll_id}")
            ballot = create_vote(self.poll, ballot, self.main_key, self.tokens, random=self.random)
        except VoteClientError as e:
            logger.warning("poll %d: creating vote: %s", self.poll_id, e)
            self.ballot = replace(ballot, status=BallotStatus.ERROR, error=e)
            self._set_phase(Phase.BALLOT_PENDING)
            return

        self.ballot = replace(ballot, status=BallotStatus.PENDING)
        self._set_phase(Phase.BALLOT_PENDING)
        self._spawn(self._submit(ballot.value))

    @property
    def poll_key_valid(self) -> bool:
        return bool(self.main_key) and verify_signature(self.main_key, self.poll.crypt_key, self.poll.crypt_signature)

    def _refresh_phase(self) -> None:
        if self.phase in (Phase.ERROR, Phase.UNAUTHENTICATED, Phase.AUTHENTICATING):
            return
        if not self.synced:
            return
        if not self.poll_present:
            self._set_phase(Phase.WAITING)
            return

        if self.poll.state == POLL_PUBLISHED:
            self._check_results()
            self._set_phase(Phase.PUBLISHED)
        elif self.poll.state == POLL_STARTED:
            if self.has_voted:
                self._set_phase(Phase.VOTED)
            elif self.ballot.status in (BallotStatus.PENDING, BallotStatus.ERROR):
                self._set_phase(Phase.BALLOT_PENDING)
            else:
                self._set_phase(Phase.STARTED)
        else:
            self._set_phase(Phase.WAITING)

    def _check_results(self) -> None:
        if not self.poll.is_cryptographic:
            self.tally_check = None
            return
        try:
            domain = self.organization.domain()
        except ValueError as e:
            logger.warning("getting organization domain: %s", e)
            domain = ""
        self.tally_check = verify_poll_results(
            self.main_key,
            self.poll,
            domain,
            self.tokens.held,
            poll_id=self.poll_id,
        )
        if not self.tally_check.ok:
            logger.warning("poll %d: results are invalid: %s", self.poll_id, self.tally_check.detail)
