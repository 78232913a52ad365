from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # ── AWS Transcribe Streaming ────────────────────────────────────────
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    transcribe_language_code: str = "en-US"
    media_encoding: str = "pcm"
    sample_rate_hz: int = 16000

    # ── Admission ───────────────────────────────────────────────────────
    rate_limit_max: int = 10
    rate_window_ms: int = 1000
    # Transcribe allows 25 concurrent streams per account; keep a margin.
    max_concurrent_sessions: int = 20

    # ── Transcription sessions ──────────────────────────────────────────
    frame_poll_interval_ms: int = 10
    # "latest" keeps only the newest unsent chunk, "fifo" queues up to
    # max_buffered_chunks and drops the oldest beyond that.
    audio_chunk_policy: Literal["latest", "fifo"] = "latest"
    max_buffered_chunks: int = 32
    close_drain_timeout_s: float = 5.0
    http_include_partials: bool = False

    # ── Broadcast ───────────────────────────────────────────────────────
    viewer_queue_size: int = 16
    forward_video_to_websockets: bool = True
    max_frame_bytes: int = 10 * 1024 * 1024

    # ── Server ──────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    http_port: int = 3001
    https_port: int = 3002
    ssl_keyfile: str = "./certs/nginx-selfsigned.key"
    ssl_certfile: str = "./certs/nginx-selfsigned.crt"
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
