import asyncio

import pytest
from fastapi.testclient import TestClient

from media_relay.config import Settings
from media_relay.errors import ChannelFailure
from media_relay.main import create_app
from media_relay.services.transcribe_service import TranscriptEvent


class FakeChannel:
    """In-memory stand-in for a Transcribe stream.

    Scripted events are available as soon as the channel opens.  ``end()``
    finishes the output side unless ``hang`` is set, in which case the
    channel only stops when cancelled.
    """

    def __init__(self, script=(), hang=False, ends_early=False):
        self.sent: list[bytes] = []
        self.ended = False
        self._hang = hang
        self._events: asyncio.Queue = asyncio.Queue()
        for text, is_partial in script:
            self.emit(text, is_partial)
        if ends_early:
            self._events.put_nowait(None)

    def emit(self, text: str, is_partial: bool = False) -> None:
        self._events.put_nowait(TranscriptEvent(text=text, is_partial=is_partial))

    def break_stream(self, exc: Exception) -> None:
        self._events.put_nowait(exc)

    async def send(self, frame: bytes) -> None:
        self.sent.append(frame)

    async def end(self) -> None:
        self.ended = True
        if not self._hang:
            self._events.put_nowait(None)

    async def events(self):
        while True:
            item = await self._events.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class FakeTranscriber:
    def __init__(self, script=(), hang=False, ends_early=False, fail_open=False):
        self.script = list(script)
        self.hang = hang
        self.ends_early = ends_early
        self.fail_open = fail_open
        self.channels: list[FakeChannel] = []

    async def open_channel(self) -> FakeChannel:
        if self.fail_open:
            raise ChannelFailure("service unavailable")
        channel = FakeChannel(self.script, hang=self.hang, ends_early=self.ends_early)
        self.channels.append(channel)
        return channel


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_transcriber_cls():
    return FakeTranscriber


@pytest.fixture
def until():
    return wait_for


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        frame_poll_interval_ms=1,
        close_drain_timeout_s=1.0,
    )


@pytest.fixture
def make_client(settings):
    """Build a TestClient around a fresh app; yields (client, relay)."""
    clients = []

    def _make(transcriber=None, **overrides):
        app = create_app(
            settings.model_copy(update=overrides),
            transcriber or FakeTranscriber(),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client, app.state.relay

    yield _make
    for client in clients:
        client.__exit__(None, None, None)
