"""Tests for the single-slot live session manager."""
import asyncio
import signal
import sys
import pytest
import numpy as np
from audioaware.alerts.engine import AlertSettings
from audioaware.alerts.notifier import DeliveryOptions
from audioaware.audio.decoder import DecodeProcess
from audioaware.audio.analyzer import AnalysisSettings
from audioaware.core.errors import ConfigurationError, DecodeProcessError, StreamOfflineError
from audioaware.services.session_manager import LiveSessionConfig, SessionManager, build_live_config
from audioaware.services.settings_store import UserSettings
from conftest import FakeDecoder


def make_config(channel: str = "somechannel", **kwargs) -> LiveSessionConfig:
    return LiveSessionConfig(
        channel=channel,
        quality="best",
        analysis_settings=AnalysisSettings(sample_rate=1000, window_ms=500),
        alert_settings=AlertSettings(silence_min_sec=1),
        **kwargs
    )


@pytest.fixture
def manager(fake_notifier, fake_resolver, fake_decoder):
    return SessionManager(
        fake_notifier,
        resolver=fake_resolver,
        decoder_factory=fake_decoder,
        clock=lambda: 0.0
    )


async def settle(manager: SessionManager) -> None:
    """Wait for scheduled teardown tasks."""
    await asyncio.gather(*list(manager._background))


@pytest.mark.asyncio
async def test_start_live_creates_session(manager, hub, fake_resolver):
    """Starting resolves the channel, spawns a decoder and announces the session."""
    result = await manager.start_live(make_config(), initiated_by="manual")

    assert fake_resolver.calls == [("somechannel", "best")]
    decoder = FakeDecoder.instances[0]
    assert decoder.started
    assert decoder.input_url == "https://video.test/somechannel/best.m3u8"
    assert decoder.sample_rate == 1000

    assert result["source"]["sourceType"] == "live"
    assert result["session"]["channel"] == "somechannel"
    assert result["session"]["initiatedBy"] == "manual"
    assert manager.status()["active"] is True
    assert hub.of_type("session") == [{
        "state": "started",
        "sourceType": "live",
        "channel": "somechannel",
        "initiatedBy": "manual",
    }]


@pytest.mark.asyncio
async def test_start_requires_channel(manager):
    with pytest.raises(ConfigurationError):
        await manager.start_live(make_config(channel=""))
    assert manager.active_session is None


@pytest.mark.asyncio
async def test_start_replaces_existing_session(manager, hub):
    """Only one session exists; the old decoder is stopped before the new one starts."""
    await manager.start_live(make_config("first"))
    await manager.start_live(make_config("second"), initiated_by="auto")

    first, second = FakeDecoder.instances
    assert first.stop_calls == 1
    assert first.end_info.stopped is True
    assert second.running
    assert manager.active_session.channel == "second"

    states = [(p["state"], p["channel"]) for p in hub.of_type("session")]
    assert states == [("started", "first"), ("stopped", "first"), ("started", "second")]
    assert hub.of_type("session")[1]["reason"] == "replaced"
    # the old decoder's end event must not tear down the new session
    await settle(manager)
    assert manager.active_session.channel == "second"


@pytest.mark.asyncio
async def test_samples_flow_to_metrics_and_alerts(manager, hub, chat):
    """Decoded audio becomes metric and alert broadcasts in order."""
    await manager.start_live(make_config())
    decoder = FakeDecoder.instances[0]

    await decoder.feed(np.zeros(2000, dtype=np.int16))

    metrics = hub.of_type("metric")
    assert [m["timestampSec"] for m in metrics] == [0.0, 0.5, 1.0, 1.5]
    assert all(m["status"] == "silent" for m in metrics)

    alerts = hub.of_type("alert")
    assert len(alerts) == 1
    assert alerts[0]["type"] == "silent"
    assert alerts[0]["timestampSec"] == 1.0
    assert chat.sent == []

    types = [m["type"] for m in hub.messages]
    assert types.index("alert") == types.index("metric") + 3
    assert manager.status()["session"]["metrics"] == 4
    assert manager.status()["session"]["alerts"] == 1


@pytest.mark.asyncio
async def test_alerts_relayed_to_chat_when_enabled(manager, chat):
    """Enabled alert types go to the configured chat channel."""
    delivery = DeliveryOptions(chat_enabled=True, chat_channel="mychat")
    await manager.start_live(make_config(delivery=delivery))

    await FakeDecoder.instances[0].feed(np.zeros(2000, dtype=np.int16))

    assert chat.sent == [("mychat", "[AudioAware] Extended silence detected @ 1.0s")]


@pytest.mark.asyncio
async def test_disabled_alert_type_not_sent_to_chat(manager, hub, chat):
    delivery = DeliveryOptions(
        chat_enabled=True,
        chat_channel="mychat",
        enabled_types={"silent": False, "low": True, "clipping": True, "recovered": True}
    )
    await manager.start_live(make_config(delivery=delivery))

    await FakeDecoder.instances[0].feed(np.zeros(2000, dtype=np.int16))

    assert chat.sent == []
    assert len(hub.of_type("alert")) == 1


@pytest.mark.asyncio
async def test_decoder_failure_tears_down_session(manager, hub):
    """A decoder error is reported once and leaves no active session."""
    await manager.start_live(make_config())
    decoder = FakeDecoder.instances[0]

    await decoder.fail("ffmpeg exited with code 1: Connection reset")
    await settle(manager)

    assert manager.active_session is None
    assert hub.of_type("system") == [{"level": "error", "message": "ffmpeg exited with code 1: Connection reset"}]
    stopped = hub.of_type("session")[-1]
    assert stopped["state"] == "stopped"
    assert stopped["reason"] == "ingest-error"
    assert stopped["initiatedBy"] == "system"


@pytest.mark.asyncio
async def test_unexpected_clean_exit_tears_down_session(manager, hub):
    """A decoder that simply exits is treated as an ended ingest."""
    await manager.start_live(make_config())

    await FakeDecoder.instances[0].exit_cleanly()
    await settle(manager)

    assert manager.active_session is None
    assert hub.of_type("system") == [{"level": "warn", "message": "Live ingest ended unexpectedly"}]
    assert hub.of_type("session")[-1]["reason"] == "ingest-ended"


@pytest.mark.asyncio
async def test_spawn_failure_raises_and_leaves_no_session(fake_notifier, fake_resolver, hub):
    """A decoder that cannot start fails the start call."""

    class BrokenDecoder(FakeDecoder):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.fail_on_start = "Failed to start ffmpeg: No such file or directory"

    manager = SessionManager(fake_notifier, resolver=fake_resolver, decoder_factory=BrokenDecoder)

    with pytest.raises(DecodeProcessError, match="Failed to start ffmpeg"):
        await manager.start_live(make_config())
    await settle(manager)

    assert manager.active_session is None
    assert all(p["state"] != "started" for p in hub.of_type("session"))


@pytest.mark.asyncio
async def test_resolver_failure_creates_no_session(fake_notifier, fake_decoder):
    """An offline channel never spawns a decoder."""

    async def offline(channel, quality):
        raise StreamOfflineError("This channel is currently offline")

    manager = SessionManager(fake_notifier, resolver=offline, decoder_factory=fake_decoder)

    with pytest.raises(StreamOfflineError):
        await manager.start_live(make_config())
    assert FakeDecoder.instances == []
    assert manager.status() == {"active": False, "session": None}


@pytest.mark.asyncio
async def test_stop_live(manager, hub):
    """Stopping is a no-op without a session and stops the decoder otherwise."""
    assert await manager.stop_live() is False

    await manager.start_live(make_config())
    assert await manager.stop_live(reason="manual", initiated_by="manual") is True
    await settle(manager)

    decoder = FakeDecoder.instances[0]
    assert decoder.stop_calls == 1
    assert manager.active_session is None
    assert hub.of_type("session")[-1]["reason"] == "manual"
    assert await manager.stop_live() is False


def test_build_live_config_merges_request_over_saved():
    """Request values win over saved settings, which win over defaults."""
    saved = UserSettings.model_validate({
        "live": {"channel": "savedchannel", "quality": "720p"},
        "analysis": {"windowMs": 250},
        "alertRules": {"cooldownSec": 10},
        "chat": {"enabled": True, "enabledTypes": {"low": False}},
    })
    config = build_live_config({
        "channel": "https://www.twitch.tv/OtherChannel",
        "settings": {"silenceRmsDb": -60, "clippingHits": 5},
        "alerts": {"chatEnabled": False, "enabledTypes": {"clipping": False}},
    }, saved)

    assert config.channel == "OtherChannel"
    assert config.quality == "720p"
    assert config.analysis_settings.window_ms == 250
    assert config.analysis_settings.silence_rms_db == -60
    assert config.alert_settings.clipping_hits == 5
    assert config.alert_settings.cooldown_sec == 10
    assert config.delivery.chat_enabled is False
    assert config.delivery.chat_channel == "OtherChannel"
    assert config.delivery.enabled_types == {
        "silent": True, "low": False, "clipping": False, "recovered": True,
    }


def test_build_live_config_falls_back_to_saved_channel():
    saved = UserSettings.model_validate({"live": {"channel": "savedchannel"}})
    config = build_live_config({}, saved)

    assert config.channel == "savedchannel"
    assert config.quality == "best"


def child_decoder_factory(script: str, created: list, seen: list, **options):
    """Build real DecodeProcess runners around a Python child, recording spawn order."""

    def factory(input_url, **kwargs):
        seen.append([process.returncode for process in created])
        process = DecodeProcess(input_url, command=[sys.executable, "-c", script], **kwargs, **options)
        created.append(process)
        return process

    return factory


@pytest.mark.asyncio
async def test_replace_terminates_old_child_before_spawning_new(fake_notifier, fake_resolver):
    """The previous decoder process is gone before the replacement is created."""
    created, seen = [], []
    manager = SessionManager(
        fake_notifier,
        resolver=fake_resolver,
        decoder_factory=child_decoder_factory("import time\ntime.sleep(60)\n", created, seen)
    )

    await manager.start_live(make_config("first"))
    await manager.start_live(make_config("second"))

    first, second = created
    assert seen[0] == []
    assert seen[1] == [-signal.SIGTERM]
    assert second.returncode is None

    await manager.stop_live()
    await asyncio.wait_for(asyncio.gather(first.wait(), second.wait()), timeout=10)
    assert second.returncode == -signal.SIGTERM
    assert manager.active_session is None


@pytest.mark.asyncio
async def test_cancelled_stop_does_not_orphan_decoder(fake_notifier, fake_resolver):
    """Cancelling stop_live mid-termination still kills a child that ignores SIGTERM."""
    script = (
        "import signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "sys.stdout.write('ready')\n"
        "sys.stdout.flush()\n"
        "time.sleep(60)\n"
    )
    created, seen = [], []
    manager = SessionManager(
        fake_notifier,
        resolver=fake_resolver,
        decoder_factory=child_decoder_factory(script, created, seen, stop_grace_sec=0.5)
    )
    await manager.start_live(make_config())
    session = manager.active_session

    # wait until the child has installed its SIGTERM handler and written output
    for _ in range(500):
        if session.pipeline.analyzer.pending.size:
            break
        await asyncio.sleep(0.01)
    assert session.pipeline.analyzer.pending.size

    stop_task = asyncio.create_task(manager.stop_live())
    await asyncio.sleep(0.1)
    stop_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await stop_task

    assert manager.active_session is None
    info = await asyncio.wait_for(session.runner.wait(), timeout=10)
    assert info.signal == signal.SIGKILL
    assert session.runner.returncode == -signal.SIGKILL
