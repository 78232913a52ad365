from types import SimpleNamespace

import pytest

import media_relay.services.transcribe_service as ts
from media_relay.config import Settings
from media_relay.errors import ChannelFailure
from media_relay.services.transcribe_service import (
    AwsTranscribeChannel,
    TranscribeService,
    TranscriptEvent,
    _resolve_language,
)


def _aws_event(text: str, is_partial: bool) -> SimpleNamespace:
    """Shaped like the SDK's TranscriptEvent -> Transcript -> Result -> Alternative."""
    alternative = SimpleNamespace(transcript=text, items=[])
    result = SimpleNamespace(is_partial=is_partial, alternatives=[alternative])
    return SimpleNamespace(transcript=SimpleNamespace(results=[result]))


class _Output:
    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for event in self._events:
            yield event


class _Input:
    def __init__(self):
        self.chunks = []
        self.ended = False

    async def send_audio_event(self, audio_chunk: bytes) -> None:
        self.chunks.append(audio_chunk)

    async def end_stream(self) -> None:
        self.ended = True


class _Stream:
    def __init__(self, events=()):
        self.input_stream = _Input()
        self.output_stream = _Output(events)


def test_resolve_language() -> None:
    assert _resolve_language("en") == "en-US"
    assert _resolve_language("ja") == "ja-JP"
    assert _resolve_language("en-GB") == "en-GB"
    assert _resolve_language("") == "en-US"
    assert _resolve_language("xx", fallback="de-DE") == "de-DE"


@pytest.mark.asyncio
async def test_channel_sends_frames_and_ends_input() -> None:
    stream = _Stream()
    channel = AwsTranscribeChannel(stream)

    await channel.send(b"pcm-1")
    await channel.send(b"pcm-2")
    await channel.end()

    assert stream.input_stream.chunks == [b"pcm-1", b"pcm-2"]
    assert stream.input_stream.ended


@pytest.mark.asyncio
async def test_channel_events_use_first_alternative() -> None:
    no_results = SimpleNamespace(transcript=SimpleNamespace(results=[]))
    no_alternatives = SimpleNamespace(
        transcript=SimpleNamespace(results=[SimpleNamespace(is_partial=True, alternatives=[])])
    )
    stream = _Stream([
        _aws_event("he", True),
        no_results,
        SimpleNamespace(),
        no_alternatives,
        _aws_event("hello", False),
    ])
    channel = AwsTranscribeChannel(stream)

    events = [e async for e in channel.events()]

    assert events == [
        TranscriptEvent(text="he", is_partial=True),
        TranscriptEvent(text="hello", is_partial=False),
    ]


@pytest.mark.asyncio
async def test_open_channel_passes_stream_parameters(monkeypatch) -> None:
    calls = {}

    class FakeClient:
        async def start_stream_transcription(self, **kwargs):
            calls.update(kwargs)
            return _Stream()

    def fake_client(region):
        calls["region"] = region
        return FakeClient()

    monkeypatch.setenv("AWS_DEFAULT_REGION", "unset")
    monkeypatch.setattr(ts, "_streaming_client", fake_client)
    service = TranscribeService(
        Settings(_env_file=None, aws_region="eu-west-1", transcribe_language_code="en")
    )

    channel = await service.open_channel()

    assert isinstance(channel, AwsTranscribeChannel)
    assert calls == {
        "region": "eu-west-1",
        "language_code": "en-US",
        "media_sample_rate_hz": 16000,
        "media_encoding": "pcm",
    }


@pytest.mark.asyncio
async def test_open_channel_wraps_sdk_errors(monkeypatch) -> None:
    class FailingClient:
        async def start_stream_transcription(self, **kwargs):
            raise ConnectionError("no route to host")

    monkeypatch.setenv("AWS_DEFAULT_REGION", "unset")
    monkeypatch.setattr(ts, "_streaming_client", lambda region: FailingClient())
    service = TranscribeService(Settings(_env_file=None))

    with pytest.raises(ChannelFailure, match="no route to host"):
        await service.open_channel()
