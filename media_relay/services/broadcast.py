"""Live viewer registry and best-effort fan-out.

A ``Viewer`` is a small mailbox sitting between the registry and one
transport (an MJPEG response or a websocket).  ``broadcast`` only ever calls
the synchronous ``Viewer.offer``, so a slow viewer can never stall the
producer: its mailbox is bounded and drops the oldest pending payload when
full.  The transport drains the mailbox on its own schedule.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Union

from media_relay.errors import DeliveryFailure

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]


class ViewerKind(str, Enum):
    VIDEO = "video"
    WEBSOCKET = "websocket"


class Viewer:
    """One consumer of broadcast payloads."""

    def __init__(self, kind: ViewerKind, max_pending: int = 16, label: str = "") -> None:
        self.id = uuid.uuid4().hex
        self.kind = kind
        self.label = label or self.id[:8]
        self.ready = True
        self.dropped = 0
        self.delivered = 0
        self._pending: Deque[Payload] = deque(maxlen=max_pending)
        self._wakeup = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Viewer {self.kind.value} {self.label} ready={self.ready}>"

    def offer(self, payload: Payload) -> None:
        if not self.ready:
            raise DeliveryFailure(f"viewer {self.label} is closed")
        if len(self._pending) == self._pending.maxlen:
            self.dropped += 1
        self._pending.append(payload)
        self._wakeup.set()

    def close(self) -> None:
        self.ready = False
        self._wakeup.set()

    def pending(self) -> List[Payload]:
        return list(self._pending)

    def __aiter__(self) -> "Viewer":
        return self

    async def __anext__(self) -> Payload:
        while not self._pending:
            if not self.ready:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()
        if not self.ready:
            raise StopAsyncIteration
        self.delivered += 1
        return self._pending.popleft()


class BroadcastRegistry:
    """Insertion-ordered set of live viewers.

    The registry does not own the transports; it only keeps a reference so it
    can hand payloads over.  Removal while a broadcast is running is safe
    because every broadcast iterates a snapshot.
    """

    def __init__(self) -> None:
        self._viewers: Dict[str, Viewer] = {}

    def __len__(self) -> int:
        return len(self._viewers)

    def __contains__(self, viewer: object) -> bool:
        return isinstance(viewer, Viewer) and viewer.id in self._viewers

    def count(self, kind: Optional[ViewerKind] = None) -> int:
        if kind is None:
            return len(self._viewers)
        return sum(1 for v in self._viewers.values() if v.kind is kind)

    def register(self, viewer: Viewer) -> Viewer:
        self._viewers[viewer.id] = viewer
        logger.info("Viewer registered: %r (%d live)", viewer, len(self._viewers))
        return viewer

    def unregister(self, viewer: Viewer) -> None:
        if self._viewers.pop(viewer.id, None) is not None:
            logger.info("Viewer removed: %r (%d live)", viewer, len(self._viewers))

    def broadcast(
        self,
        payload: Payload,
        predicate: Optional[Callable[[Viewer], bool]] = None,
    ) -> int:
        """Hand *payload* to every matching viewer; return how many took it.

        A viewer that fails is logged and pruned.  Nothing is raised to the
        caller.
        """
        delivered = 0
        dead: List[Viewer] = []
        for viewer in list(self._viewers.values()):
            if predicate is not None and not predicate(viewer):
                continue
            try:
                viewer.offer(payload)
                delivered += 1
            except Exception as exc:
                logger.warning("Delivery to %r failed: %s", viewer, exc)
                dead.append(viewer)

        for viewer in dead:
            viewer.close()
            self.unregister(viewer)
        return delivered

    def broadcast_to(self, kind: ViewerKind, payload: Payload) -> int:
        return self.broadcast(payload, lambda v: v.kind is kind)
