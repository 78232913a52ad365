from typing import Literal

from pydantic import BaseModel


# ── websocket viewer messages ────────────────────────────────────────────────
class ConnectionMessage(BaseModel):
    type: Literal["connection"] = "connection"
    status: str = "connected"


class TranscriptMessage(BaseModel):
    type: Literal["transcript"] = "transcript"
    transcript: str
    is_partial: bool
    session_id: str


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
    session_id: str | None = None


# ── audio ingest response (one NDJSON line each) ─────────────────────────────
class TranscriptLine(BaseModel):
    transcript: str


class TranscriptFailure(BaseModel):
    error: str


# ── stats ────────────────────────────────────────────────────────────────────
class ViewerCounts(BaseModel):
    video: int
    websocket: int


class StatsResponse(BaseModel):
    version: str
    active_sessions: int
    max_concurrent_sessions: int
    sessions_admitted: int
    rejected_requests: int
    rejected_sessions: int
    frames_relayed: int
    transcripts_forwarded: int
    viewers: ViewerCounts
    uptime_seconds: int
