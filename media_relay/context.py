"""Process-wide relay state, owned by the application.

Everything the handlers share (viewer registry, admission counters, the
transcription backend) lives on one ``RelayContext`` stored at
``app.state.relay`` instead of in module globals.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from fastapi.requests import HTTPConnection

from media_relay.config import Settings
from media_relay.services.admission import AdmissionController
from media_relay.services.broadcast import BroadcastRegistry, Viewer, ViewerKind
from media_relay.services.relay_stats import RelayStats
from media_relay.services.transcribe_service import Transcriber
from media_relay.services.transcription_session import ResponseStream, TranscriptionSession


@dataclass
class RelayContext:
    settings: Settings
    transcriber: Transcriber
    admission: AdmissionController
    registry: BroadcastRegistry = field(default_factory=BroadcastRegistry)
    stats: RelayStats = field(default_factory=RelayStats)

    @classmethod
    def from_settings(cls, settings: Settings, transcriber: Transcriber) -> "RelayContext":
        admission = AdmissionController(
            rate_limit_max=settings.rate_limit_max,
            window_ms=settings.rate_window_ms,
            max_sessions=settings.max_concurrent_sessions,
        )
        return cls(settings=settings, transcriber=transcriber, admission=admission)

    def create_session(self, response: Optional[ResponseStream] = None) -> TranscriptionSession:
        s = self.settings
        return TranscriptionSession(
            self.transcriber,
            self.admission,
            self.registry,
            stats=self.stats,
            response=response,
            chunk_policy=s.audio_chunk_policy,
            max_buffered_chunks=s.max_buffered_chunks,
            poll_interval_s=s.frame_poll_interval_ms / 1000.0,
            drain_timeout_s=s.close_drain_timeout_s,
            include_partials=s.http_include_partials,
        )

    def create_viewer(self, kind: ViewerKind, label: str = "") -> Viewer:
        return self.registry.register(
            Viewer(kind, max_pending=self.settings.viewer_queue_size, label=label)
        )


def get_relay(connection: HTTPConnection) -> RelayContext:
    """FastAPI dependency; works for both HTTP and websocket routes."""
    return connection.app.state.relay
