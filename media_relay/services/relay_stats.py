"""Lightweight in-memory relay counters.

Incremented by the session pipeline and the ingest routes; reset when the
server restarts.  Nothing is persisted, the stats endpoint just shows live
activity.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class RelayStats:
    started_at: float = field(default_factory=time.time)
    frames_relayed: int = 0
    transcripts_forwarded: int = 0

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)
