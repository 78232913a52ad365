"""Per-producer transcription session.

A session bridges one producer connection to one transcription channel:

    producer chunks ──► AudioSlot ──► frame producer ──► channel.send()
                                                          │
    viewers / response ◄── _forward() ◄── channel.events() ◄┘

Lifecycle is an explicit state machine (see ``transition``)::

    UNINITIALIZED ──START──► STREAMING ──CLOSE──► CLOSED
                                 │
                                 └──FAIL──► ERROR

``transition`` is a pure total function: every (state, event) pair maps to a
next state and a tuple of effects, and pairs that are not listed leave the
state alone with no effects.  Terminal states therefore swallow late CLOSE /
FAIL events, which is what guarantees the concurrency counter is released
exactly once.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from enum import Enum
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from pydantic import BaseModel

from media_relay.errors import ChannelFailure, DeliveryFailure
from media_relay.schemas.messages import (
    ErrorMessage,
    TranscriptFailure,
    TranscriptLine,
    TranscriptMessage,
)
from media_relay.services.admission import AdmissionController, SessionLease
from media_relay.services.broadcast import BroadcastRegistry, ViewerKind
from media_relay.services.relay_stats import RelayStats
from media_relay.services.transcribe_service import (
    TranscriptEvent,
    Transcriber,
    TranscriptionChannel,
)

logger = logging.getLogger(__name__)

FAILURE_TEXT = "Transcription failed."


# ─────────────────────────────────────────────────────────────────────────────
#  State machine
# ─────────────────────────────────────────────────────────────────────────────

class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERROR = "error"


class SessionEvent(str, Enum):
    START = "start"
    CHUNK = "chunk"
    CLOSE = "close"
    FAIL = "fail"


class Effect(str, Enum):
    ACQUIRE_LEASE = "acquire_lease"
    OPEN_CHANNEL = "open_channel"
    STORE_CHUNK = "store_chunk"
    STOP_FRAMES = "stop_frames"
    RELEASE_LEASE = "release_lease"
    DRAIN_CHANNEL = "drain_channel"
    RELEASE_CHANNEL = "release_channel"
    NOTIFY_ERROR = "notify_error"
    FINISH_RESPONSE = "finish_response"


_TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], Tuple[SessionState, Tuple[Effect, ...]]] = {
    (SessionState.UNINITIALIZED, SessionEvent.START): (
        SessionState.STREAMING,
        (Effect.ACQUIRE_LEASE, Effect.OPEN_CHANNEL),
    ),
    (SessionState.UNINITIALIZED, SessionEvent.CLOSE): (
        SessionState.CLOSED,
        (Effect.STOP_FRAMES, Effect.FINISH_RESPONSE),
    ),
    (SessionState.STREAMING, SessionEvent.CHUNK): (
        SessionState.STREAMING,
        (Effect.STORE_CHUNK,),
    ),
    (SessionState.STREAMING, SessionEvent.CLOSE): (
        SessionState.CLOSED,
        (Effect.STOP_FRAMES, Effect.RELEASE_LEASE, Effect.DRAIN_CHANNEL),
    ),
    (SessionState.STREAMING, SessionEvent.FAIL): (
        SessionState.ERROR,
        (Effect.STOP_FRAMES, Effect.RELEASE_LEASE, Effect.RELEASE_CHANNEL, Effect.NOTIFY_ERROR),
    ),
}


def transition(state: SessionState, event: SessionEvent) -> Tuple[SessionState, Tuple[Effect, ...]]:
    return _TRANSITIONS.get((state, event), (state, ()))


# ─────────────────────────────────────────────────────────────────────────────
#  Push-to-pull bridge
# ─────────────────────────────────────────────────────────────────────────────

class AudioSlot:
    """Mailbox between the ingest side and the frame producer.

    With ``capacity=1`` this is last-writer-wins: a chunk that has not been
    sent yet is replaced by the next one.  Larger capacities keep a bounded
    FIFO and drop from the old end.
    """

    def __init__(self, capacity: int = 1, poll_interval: float = 0.01) -> None:
        self._chunks: Deque[bytes] = deque(maxlen=max(1, capacity))
        self._fresh = asyncio.Event()
        self._poll_interval = poll_interval
        self.closed = False
        self.discarded = 0

    def put(self, chunk: bytes) -> None:
        if self.closed:
            return
        if len(self._chunks) == self._chunks.maxlen:
            self.discarded += 1
        self._chunks.append(chunk)
        self._fresh.set()

    def close(self) -> None:
        self.closed = True
        self._fresh.set()

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield chunks as they arrive; stop once closed and emptied."""
        while True:
            if self._chunks:
                yield self._chunks.popleft()
                continue
            if self.closed:
                return
            self._fresh.clear()
            try:
                await asyncio.wait_for(self._fresh.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass


class ResponseStream:
    """Outbound messages for the producer connection that owns a session."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[BaseModel]] = asyncio.Queue()
        self.finished = False
        self.failed = False
        self.detached = False

    def write(self, message: BaseModel) -> None:
        if self.finished:
            raise DeliveryFailure("response stream already finished")
        if self.detached:
            return
        self._queue.put_nowait(message)

    def fail(self, message: str = FAILURE_TEXT) -> None:
        if self.finished:
            return
        self.failed = True
        if not self.detached:
            self._queue.put_nowait(TranscriptFailure(error=message))
        self.finish()

    def finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self._queue.put_nowait(None)

    def detach(self) -> None:
        """The reader went away; further writes are dropped."""
        self.detached = True

    async def __aiter__(self) -> AsyncIterator[BaseModel]:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message


# ─────────────────────────────────────────────────────────────────────────────
#  Session
# ─────────────────────────────────────────────────────────────────────────────

class TranscriptionSession:
    def __init__(
        self,
        transcriber: Transcriber,
        admission: AdmissionController,
        registry: BroadcastRegistry,
        *,
        stats: Optional[RelayStats] = None,
        response: Optional[ResponseStream] = None,
        chunk_policy: str = "latest",
        max_buffered_chunks: int = 32,
        poll_interval_s: float = 0.01,
        drain_timeout_s: float = 5.0,
        include_partials: bool = False,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.state = SessionState.UNINITIALIZED
        self.chunks_received = 0
        self.transcripts_forwarded = 0
        self.last_activity = time.monotonic()
        self.error: Optional[BaseException] = None

        self._transcriber = transcriber
        self._admission = admission
        self._registry = registry
        self._stats = stats
        self._response = response
        self._include_partials = include_partials
        self._drain_timeout = drain_timeout_s

        capacity = 1 if chunk_policy == "latest" else max_buffered_chunks
        self._slot = AudioSlot(capacity=capacity, poll_interval=poll_interval_s)
        self._lease: Optional[SessionLease] = None
        self._task: Optional[asyncio.Task] = None
        self._drain_handle: Optional[asyncio.TimerHandle] = None
        self._finished = asyncio.Event()

        self._effects = {
            Effect.OPEN_CHANNEL: self._open_channel,
            Effect.STORE_CHUNK: self._store_chunk,
            Effect.STOP_FRAMES: self._stop_frames,
            Effect.RELEASE_LEASE: self._release_lease,
            Effect.DRAIN_CHANNEL: self._drain_channel,
            Effect.RELEASE_CHANNEL: self._release_channel,
            Effect.NOTIFY_ERROR: self._notify_error,
            Effect.FINISH_RESPONSE: self._finish_response,
        }

    def __repr__(self) -> str:
        return f"<TranscriptionSession {self.id[:8]} {self.state.value}>"

    @property
    def discarded_chunks(self) -> int:
        return self._slot.discarded

    # ── public events ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Admit the session and open the channel.

        Raises ``AdmissionRejected`` (leaving the session untouched) when the
        concurrency cap is reached.
        """
        self._apply(SessionEvent.START)

    def feed(self, chunk: bytes) -> None:
        if self.state is SessionState.UNINITIALIZED:
            self.start()
        self._apply(SessionEvent.CHUNK, chunk)

    def close(self) -> None:
        self._apply(SessionEvent.CLOSE)

    def fail(self, exc: BaseException) -> None:
        self._apply(SessionEvent.FAIL, exc)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        await self._finished.wait()

    # ── state machine driver ───────────────────────────────────────────────

    def _apply(self, event: SessionEvent, payload=None) -> None:
        next_state, effects = transition(self.state, event)
        if not effects:
            if event is not SessionEvent.CHUNK:
                logger.debug("[%s] %s ignored in state %s", self.id, event.value, self.state.value)
            return

        if Effect.ACQUIRE_LEASE in effects:
            self._lease = self._admission.acquire_session()

        if next_state is not self.state:
            logger.info("[%s] %s -> %s", self.id, self.state.value, next_state.value)
        self.state = next_state
        for effect in effects:
            handler = self._effects.get(effect)
            if handler is not None:
                handler(payload)

    # ── effects ────────────────────────────────────────────────────────────

    def _open_channel(self, _payload) -> None:
        self._task = asyncio.create_task(self._run(), name=f"transcribe-{self.id[:8]}")

    def _store_chunk(self, chunk: bytes) -> None:
        self.chunks_received += 1
        self.last_activity = time.monotonic()
        self._slot.put(chunk)

    def _stop_frames(self, _payload) -> None:
        self._slot.close()

    def _release_lease(self, _payload) -> None:
        if self._lease is not None:
            self._lease.release()

    def _drain_channel(self, _payload) -> None:
        if self._task is None or self._task.done():
            return
        loop = asyncio.get_running_loop()
        self._drain_handle = loop.call_later(self._drain_timeout, self._cancel_pipeline)

    def _release_channel(self, _payload) -> None:
        self._cancel_pipeline()

    def _notify_error(self, exc: Optional[BaseException]) -> None:
        self.error = exc
        message = ErrorMessage(message=FAILURE_TEXT, session_id=self.id)
        self._registry.broadcast_to(ViewerKind.WEBSOCKET, message.model_dump_json())
        if self._response is not None:
            self._response.fail(FAILURE_TEXT)

    def _finish_response(self, _payload) -> None:
        if self._response is not None:
            self._response.finish()

    def _cancel_pipeline(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        logger.info("[%s] Releasing transcription channel", self.id)
        task.cancel()

    # ── pipeline ───────────────────────────────────────────────────────────

    async def _run(self) -> None:
        producer: Optional[asyncio.Task] = None
        try:
            channel = await self._transcriber.open_channel()
            producer = asyncio.create_task(self._produce_frames(channel))
            async for event in channel.events():
                self._forward(event)
            if self.state is SessionState.STREAMING:
                raise ChannelFailure("transcription stream ended by the service")
        except asyncio.CancelledError:
            logger.info("[%s] Transcription pipeline cancelled", self.id)
            raise
        except Exception as exc:
            logger.error("[%s] Transcription error: %s", self.id, exc)
            self.fail(exc)
        finally:
            if producer is not None and not producer.done():
                producer.cancel()
            if self._drain_handle is not None:
                self._drain_handle.cancel()
            if self._response is not None:
                self._response.finish()
            self._finished.set()
            logger.info(
                "[%s] Session done: state=%s, %d chunks in, %d discarded, %d transcripts out",
                self.id, self.state.value, self.chunks_received,
                self._slot.discarded, self.transcripts_forwarded,
            )

    async def _produce_frames(self, channel: TranscriptionChannel) -> None:
        try:
            async for frame in self._slot.frames():
                await channel.send(frame)
            await channel.end()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[%s] Sending audio failed: %s", self.id, exc)
            self.fail(ChannelFailure(str(exc)))

    def _forward(self, event: TranscriptEvent) -> None:
        if not event.text.strip():
            return
        self.transcripts_forwarded += 1
        self.last_activity = time.monotonic()
        if self._stats is not None:
            self._stats.transcripts_forwarded += 1

        if self._response is not None and (self._include_partials or not event.is_partial):
            self._response.write(TranscriptLine(transcript=event.text))

        message = TranscriptMessage(
            transcript=event.text,
            is_partial=event.is_partial,
            session_id=self.id,
        )
        self._registry.broadcast_to(ViewerKind.WEBSOCKET, message.model_dump_json())
