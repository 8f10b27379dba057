from __future__ import annotations

"""
Live state accumulator.

The server never sends snapshots. Each line of the stream is a partial frame
mapping "collection/id/field" to a JSON value; null deletes the key. merge_frame
folds one frame into the accumulated state, project pulls one object out of it.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

import pydantic

from osvote.errors import DecodeError, ProtocolError, TransportError
from osvote.models import Entity, Organization, Poll, User

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

LiveState = Dict[str, Any]


def merge_frame(state: Mapping[str, Any], frame: Mapping[str, Any]) -> LiveState:
    out = dict(state)
    for key, value in frame.items():
        if value is None:
            out.pop(key, None)
        else:
            out[key] = value
    return out


def _prefix(collection: str, id: int) -> str:
    return f"{collection}/{id}/"


def has_entity(state: Mapping[str, Any], collection: str, id: int) -> bool:
    prefix = _prefix(collection, id)
    return any(k.startswith(prefix) for k in state)


def project(state: Mapping[str, Any], collection: str, id: int, model: Type[E]) -> E:
    """
    Builds a model from every key under "collection/id/".

    Fields without a key keep the model default, so a field deleted from the
    state reverts on the next projection. Unknown fields are ignored.
    """
    prefix = _prefix(collection, id)
    relevant = {k[len(prefix):]: v for k, v in state.items() if k.startswith(prefix)}
    try:
        return model.model_validate(relevant)
    except pydantic.ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(x) for x in err.get("loc", ())) or "<root>"
        raise DecodeError(f"decoding {collection}/{id}: field {loc}: {err.get('msg')}") from e


def subscription(collection: str, id: int, model: Type[Entity]) -> Dict[str, Any]:
    return {
        "collection": collection,
        "ids": [id],
        "fields": {f: None for f in model.FIELDS},
    }


def subscription_request(user_id: int, poll_id: int) -> List[Dict[str, Any]]:
    return [
        subscription(User.COLLECTION, user_id, User),
        subscription(Poll.COLLECTION, poll_id, Poll),
        subscription(Organization.COLLECTION, 1, Organization),
    ]


def decode_frame(line: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"decoding line: {e}") from e
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except ValueError as e:
        raise ProtocolError(f"decoding line: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError(f"frame must be a JSON object, got {type(obj).__name__}")
    return obj


@dataclass
class Frame:
    data: Dict[str, Any]
    stream: "FrameStream"


@dataclass
class StreamEnd:
    pass


@dataclass
class StreamFailed:
    error: Exception


StreamResult = Union[Frame, StreamEnd, StreamFailed]


class FrameStream:
    """
    One frame per next() call over a line iterator owned by someone else.

    The caller schedules the following next() after handling a frame, so there
    is never more than one read outstanding.
    """

    def __init__(self, lines: AsyncIterator[str], close: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        self._lines = lines
        self._close = close
        self.frames_read = 0

    async def _finish(self) -> None:
        if self._close is not None:
            close, self._close = self._close, None
            await close()

    async def next(self) -> StreamResult:
        try:
            while True:
                try:
                    line = await self._lines.__anext__()
                except StopAsyncIteration:
                    await self._finish()
                    logger.debug("live stream closed after %d frames", self.frames_read)
                    return StreamEnd()
                data = decode_frame(line)
                if data is None:
                    continue
                self.frames_read += 1
                return Frame(data=data, stream=self)
        except (ProtocolError, TransportError) as e:
            await self._finish()
            return StreamFailed(e)
        except Exception as e:
            await self._finish()
            return StreamFailed(TransportError(f"scanning next message: {e}"))
