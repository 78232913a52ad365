from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from media_relay.config import Settings, get_settings
from media_relay.context import RelayContext
from media_relay.routes.audio import router as audio_router
from media_relay.routes.health import router as health_router
from media_relay.routes.video import router as video_router
from media_relay.routes.viewers import router as viewers_router
from media_relay.services.transcribe_service import TranscribeService, Transcriber


def create_app(
    settings: Optional[Settings] = None,
    transcriber: Optional[Transcriber] = None,
) -> FastAPI:
    settings = settings or get_settings()
    application = FastAPI(
        title="Media Relay",
        version="0.1.0",
        description="Relay a device's audio to Amazon Transcribe and fan transcripts and MJPEG video out to live viewers.",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    application.state.relay = RelayContext.from_settings(
        settings, transcriber or TranscribeService(settings)
    )

    application.include_router(health_router)
    application.include_router(audio_router)
    application.include_router(video_router)
    application.include_router(viewers_router)

    return application
