"""
Liveness and live activity.

  GET /            static liveness string
  GET /api/stats   sessions, admission counters and viewer counts
"""
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from media_relay.context import RelayContext, get_relay
from media_relay.schemas.messages import StatsResponse, ViewerCounts
from media_relay.services.broadcast import ViewerKind

APP_VERSION = "0.1.0"

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
def health() -> str:
    return "Server is running"


@router.get("/api/stats", response_model=StatsResponse)
def get_stats(relay: RelayContext = Depends(get_relay)) -> StatsResponse:
    """Return admission counters, relay activity and live viewer counts."""
    admission = relay.admission
    return StatsResponse(
        version=APP_VERSION,
        active_sessions=admission.active_sessions,
        max_concurrent_sessions=admission.max_sessions,
        sessions_admitted=admission.sessions_admitted,
        rejected_requests=admission.rejected_requests,
        rejected_sessions=admission.rejected_sessions,
        frames_relayed=relay.stats.frames_relayed,
        transcripts_forwarded=relay.stats.transcripts_forwarded,
        viewers=ViewerCounts(
            video=relay.registry.count(ViewerKind.VIDEO),
            websocket=relay.registry.count(ViewerKind.WEBSOCKET),
        ),
        uptime_seconds=relay.stats.uptime_seconds,
    )
