"""Amazon Transcribe Streaming integration.

Opens one bidirectional stream per session with the ``amazon-transcribe``
SDK (installed with the ``aws`` extra).  Audio frames go in through
``send()``; transcript results come back out of ``events()`` as
:class:`TranscriptEvent` values, partial and final alike.  ``end()``
closes the input side so the service can flush its last final results and
end the output stream.

Anything that needs a transcription channel depends on the small
:class:`TranscriptionChannel` protocol rather than on the SDK, so sessions
can run against an in-memory channel in tests.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from media_relay.config import Settings
from media_relay.errors import ChannelFailure

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
#  Data models
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TranscriptEvent:
    """One transcript result as emitted by the service."""
    text: str
    is_partial: bool


class TranscriptionChannel(Protocol):
    async def send(self, frame: bytes) -> None: ...

    async def end(self) -> None: ...

    def events(self) -> AsyncIterator[TranscriptEvent]: ...


class Transcriber(Protocol):
    async def open_channel(self) -> TranscriptionChannel: ...


# ─────────────────────────────────────────────────────────────────────────────
#  Language mapping
# ─────────────────────────────────────────────────────────────────────────────

_LANG_MAP: dict[str, str] = {
    "en": "en-US",
    "zh": "zh-CN",
    "ja": "ja-JP",
    "ko": "ko-KR",
    "es": "es-US",
    "fr": "fr-FR",
    "de": "de-DE",
    "pt": "pt-BR",
    "it": "it-IT",
    "hi": "hi-IN",
}


def _resolve_language(language: str, fallback: str = "en-US") -> str:
    if not language:
        return fallback
    if "-" in language:
        return language
    return _LANG_MAP.get(language.lower(), fallback)


# ─────────────────────────────────────────────────────────────────────────────
#  SDK-backed channel
# ─────────────────────────────────────────────────────────────────────────────

class AwsTranscribeChannel:
    """Adapts an SDK ``StartStreamTranscriptionEventStream`` to the channel protocol."""

    def __init__(self, stream) -> None:
        self._stream = stream

    async def send(self, frame: bytes) -> None:
        await self._stream.input_stream.send_audio_event(audio_chunk=frame)

    async def end(self) -> None:
        await self._stream.input_stream.end_stream()

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        async for event in self._stream.output_stream:
            transcript = getattr(event, "transcript", None)
            if transcript is None:
                continue
            results = transcript.results
            if not results:
                continue
            # Only the leading result is relayed; the service reports one
            # result per utterance segment in practice.
            result = results[0]
            if not result.alternatives:
                continue
            yield TranscriptEvent(
                text=result.alternatives[0].transcript or "",
                is_partial=bool(result.is_partial),
            )


def _streaming_client(region: str):
    """Return an SDK client; the SDK ships in the ``aws`` extra."""
    from amazon_transcribe.client import TranscribeStreamingClient

    return TranscribeStreamingClient(region=region)


# ─────────────────────────────────────────────────────────────────────────────
#  Public service class
# ─────────────────────────────────────────────────────────────────────────────

class TranscribeService:
    """Thin wrapper around the Amazon Transcribe Streaming SDK."""

    def __init__(self, settings: Settings) -> None:
        self._region = settings.aws_region or "us-east-1"
        self._language = _resolve_language(settings.transcribe_language_code)
        self._encoding = settings.media_encoding
        self._sample_rate = settings.sample_rate_hz

        if settings.aws_access_key_id and settings.aws_secret_access_key:
            os.environ["AWS_ACCESS_KEY_ID"] = settings.aws_access_key_id
            os.environ["AWS_SECRET_ACCESS_KEY"] = settings.aws_secret_access_key
        if self._region:
            os.environ["AWS_DEFAULT_REGION"] = self._region

    async def open_channel(self) -> AwsTranscribeChannel:
        logger.info(
            "Starting Transcribe stream: region=%s, lang=%s, encoding=%s, rate=%d",
            self._region, self._language, self._encoding, self._sample_rate,
        )
        try:
            client = _streaming_client(self._region)
            stream = await client.start_stream_transcription(
                language_code=self._language,
                media_sample_rate_hz=self._sample_rate,
                media_encoding=self._encoding,
            )
        except Exception as exc:
            raise ChannelFailure(f"Could not start transcription stream: {exc}") from exc
        return AwsTranscribeChannel(stream)
