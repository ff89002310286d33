"""Shared fakes for service-level tests."""
import json
import pytest
from audioaware.alerts.notifier import Notifier
from audioaware.audio.decoder import EndInfo
from audioaware.core.errors import DecodeProcessError
from audioaware.services.resolver import ResolvedSource


class FakeHub:
    """Records every broadcast message instead of sending it."""

    def __init__(self):
        self.messages = []

    async def send_all(self, message: str) -> None:
        self.messages.append(json.loads(message))

    def of_type(self, event_type: str) -> list:
        return [m["payload"] for m in self.messages if m["type"] == event_type]


class FakeChat:
    """Chat client that records messages, optionally failing."""

    def __init__(self, error: Exception = None):
        self.sent = []
        self.error = error

    async def say(self, channel: str, message: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((channel, message))

    async def close(self) -> None:
        pass


class FakeDecoder:
    """In-memory stand-in for DecodeProcess driven by the test."""

    instances = []

    def __init__(self, input_url, sample_rate=None, on_samples=None, on_error=None, on_end=None, **kwargs):
        self.input_url = input_url
        self.sample_rate = sample_rate
        self.on_samples = on_samples
        self.on_error = on_error
        self.on_end = on_end
        self.end_info = None
        self.started = False
        self.stop_calls = 0
        self.fail_on_start = None
        FakeDecoder.instances.append(self)

    @property
    def running(self) -> bool:
        return self.started and self.end_info is None

    async def start(self):
        self.started = True
        if self.fail_on_start is not None:
            await self.fail(self.fail_on_start)
        return self

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.end_info is None:
            await self._end(EndInfo(stopped=True, signal=15))

    async def wait(self):
        return self.end_info

    async def feed(self, samples) -> None:
        await self.on_samples(samples)

    async def fail(self, message: str) -> None:
        await self.on_error(DecodeProcessError(message, exit_code=1))
        await self._end(EndInfo(stopped=False, exit_code=1))

    async def exit_cleanly(self) -> None:
        await self._end(EndInfo(stopped=False, exit_code=0))

    async def _end(self, info: EndInfo) -> None:
        self.end_info = info
        await self.on_end(info)


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def fake_notifier(hub, chat):
    return Notifier(hub, chat_client=chat)


@pytest.fixture
def fake_decoder():
    FakeDecoder.instances = []
    return FakeDecoder


@pytest.fixture
def fake_resolver():
    calls = []

    async def resolve(channel, quality="best"):
        calls.append((channel, quality))
        return ResolvedSource(
            source_type="live",
            input=f"https://twitch.tv/{channel}",
            stream_url=f"https://video.test/{channel}/{quality}.m3u8"
        )

    resolve.calls = calls
    return resolve
