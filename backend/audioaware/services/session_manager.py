"""Single-slot supervision of the live monitoring session."""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from audioaware.alerts.engine import AlertSettings
from audioaware.alerts.models import AlertEvent
from audioaware.alerts.notifier import DeliveryOptions, Notifier, notifier
from audioaware.audio.analyzer import AnalysisSettings
from audioaware.audio.decoder import DecodeProcess, EndInfo
from audioaware.audio.models import Metric
from audioaware.audio.pipeline import MonitoringPipeline
from audioaware.core.errors import ConfigurationError, DecodeProcessError
from audioaware.core.logging import logger
from audioaware.services.resolver import ResolvedSource, normalize_channel_name, resolve_live_stream_url
from audioaware.services.settings_store import AlertRulesConfig, AnalysisConfig, UserSettings

Resolver = Callable[[str, str], Awaitable[ResolvedSource]]


@dataclass
class LiveSessionConfig:
    """Everything needed to start one live monitoring session."""
    channel: str
    quality: str = "best"
    analysis_settings: AnalysisSettings = field(default_factory=AnalysisSettings)
    alert_settings: AlertSettings = field(default_factory=AlertSettings)
    delivery: DeliveryOptions = field(default_factory=DeliveryOptions)


def build_live_config(body: Dict[str, Any], saved: UserSettings) -> LiveSessionConfig:
    """
    Combine a start request with the saved user settings.

    Request values win; ``settings`` in the body may override both analysis
    and alert-rule fields.
    """
    body = body or {}
    overrides = body.get("settings") or {}
    alerts = body.get("alerts") or {}

    channel = normalize_channel_name(body.get("channel") or saved.live.channel)
    quality = str(body.get("quality") or saved.live.quality or "best").strip() or "best"
    analysis = AnalysisConfig.model_validate({**saved.analysis.model_dump(by_alias=True), **overrides})
    alert_rules = AlertRulesConfig.model_validate({**saved.alert_rules.model_dump(by_alias=True), **overrides})

    chat_enabled = alerts.get("chatEnabled")
    if not isinstance(chat_enabled, bool):
        chat_enabled = saved.chat.enabled
    chat_channel = normalize_channel_name(alerts.get("chatChannel") or saved.chat.channel or channel)
    enabled_types = {**saved.chat.enabled_types}
    for alert_type, enabled in (alerts.get("enabledTypes") or {}).items():
        if alert_type in enabled_types:
            enabled_types[alert_type] = enabled is not False

    return LiveSessionConfig(
        channel=channel,
        quality=quality,
        analysis_settings=analysis.to_analysis_settings(),
        alert_settings=alert_rules.to_alert_settings(),
        delivery=DeliveryOptions(
            chat_enabled=chat_enabled,
            chat_channel=chat_channel,
            enabled_types=enabled_types
        )
    )


@dataclass
class LiveSession:
    """The one active live session."""
    id: int
    channel: str
    quality: str
    started_at: float
    initiated_by: str
    runner: DecodeProcess
    pipeline: MonitoringPipeline
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel,
            "quality": self.quality,
            "startedAt": self.started_at,
            "initiatedBy": self.initiated_by,
            "metrics": self.pipeline.metric_count,
            "alerts": self.pipeline.alert_count,
        }


class SessionManager:
    """
    Owns at most one live session.

    Start, stop and replace run under a single lock, so a new session only
    begins after the previous decoder has been terminated. Decoder failures
    tear the session down and leave the manager with no active session;
    restarting is left to callers such as the auto-monitor.
    """

    def __init__(
        self,
        notifier: Notifier,
        resolver: Resolver = resolve_live_stream_url,
        decoder_factory: Callable[..., DecodeProcess] = DecodeProcess,
        clock: Callable[[], float] = time.monotonic
    ):
        self.notifier = notifier
        self._resolver = resolver
        self._decoder_factory = decoder_factory
        self._clock = clock
        self._session: Optional[LiveSession] = None
        self._lock = asyncio.Lock()
        self._next_id = 1
        self._background: Set[asyncio.Task] = set()

    @property
    def active_session(self) -> Optional[LiveSession]:
        return self._session

    def status(self) -> dict:
        """Summary of the active session, if any."""
        if self._session is None:
            return {"active": False, "session": None}
        return {"active": True, "session": self._session.to_dict()}

    async def start_live(self, config: LiveSessionConfig, initiated_by: str = "manual") -> dict:
        """
        Start monitoring a live channel, replacing any running session.

        Raises:
            ConfigurationError: No channel given
            SourceResolveError: The channel could not be resolved; no session is created
            DecodeProcessError: The decoder could not be launched
        """
        if not config.channel:
            raise ConfigurationError("channel is required")

        async with self._lock:
            if self._session is not None:
                await self._stop_locked(reason="replaced", initiated_by=initiated_by)

            resolved = await self._resolver(config.channel, config.quality)
            session_id = self._next_id
            self._next_id += 1

            async def on_metric(metric: Metric) -> None:
                await self.notifier.broadcast("metric", metric.to_dict())

            async def on_alert(alert: AlertEvent) -> None:
                await self.notifier.notify_alert(alert, config.delivery)

            pipeline = MonitoringPipeline(
                config.analysis_settings,
                config.alert_settings,
                on_metric=on_metric,
                on_alert=on_alert,
                clock=self._clock
            )
            runner = self._decoder_factory(
                resolved.stream_url,
                sample_rate=config.analysis_settings.sample_rate,
                on_samples=pipeline.process_samples,
                on_error=lambda error: self._on_ingest_error(session_id, error),
                on_end=lambda info: self._on_ingest_end(session_id, info)
            )
            session = LiveSession(
                id=session_id,
                channel=config.channel,
                quality=config.quality,
                started_at=time.time(),
                initiated_by=initiated_by,
                runner=runner,
                pipeline=pipeline
            )
            self._session = session
            await runner.start()

            if runner.end_info is not None:
                self._session = None
                raise DecodeProcessError(session.last_error or "Decoder ended before monitoring started")

            logger.info(f"Live session {session_id} started for {config.channel} ({initiated_by})")
            await self.notifier.broadcast("session", {
                "state": "started",
                "sourceType": "live",
                "channel": config.channel,
                "initiatedBy": initiated_by,
            })

        return {
            "source": resolved.to_dict(),
            "session": session.to_dict(),
            "analysisSettings": config.analysis_settings.to_dict(),
            "alertSettings": config.alert_settings.to_dict(),
            "chatEnabled": config.delivery.chat_enabled,
            "chatChannel": config.delivery.chat_channel,
            "enabledTypes": dict(config.delivery.enabled_types),
        }

    async def stop_live(self, reason: str = "manual", initiated_by: str = "manual") -> bool:
        """
        Stop the active session if there is one.

        Returns:
            True if a session was stopped
        """
        async with self._lock:
            return await self._stop_locked(reason=reason, initiated_by=initiated_by)

    async def _stop_locked(self, reason: str, initiated_by: str) -> bool:
        session = self._session
        if session is None:
            return False
        self._session = None
        await session.runner.stop()
        logger.info(f"Live session {session.id} stopped ({reason}, by {initiated_by})")
        await self.notifier.broadcast("session", {
            "state": "stopped",
            "sourceType": "live",
            "channel": session.channel,
            "reason": reason,
            "initiatedBy": initiated_by,
        })
        return True

    def _is_current(self, session_id: int) -> bool:
        return self._session is not None and self._session.id == session_id

    async def _on_ingest_error(self, session_id: int, error: DecodeProcessError) -> None:
        if not self._is_current(session_id):
            return
        self._session.last_error = str(error)
        await self.notifier.system("error", str(error))
        self._schedule_teardown(session_id, "ingest-error")

    async def _on_ingest_end(self, session_id: int, info: EndInfo) -> None:
        if not self._is_current(session_id):
            return
        if info.stopped:
            reason = "manual"
        elif self._session.last_error is not None:
            # already reported through the error hook
            return
        else:
            reason = "ingest-ended"
            await self.notifier.system("warn", "Live ingest ended unexpectedly")
        self._schedule_teardown(session_id, reason)

    def _schedule_teardown(self, session_id: int, reason: str) -> None:
        # The decoder hooks run inside its reader task, so stopping happens in a new task
        task = asyncio.create_task(self._teardown(session_id, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _teardown(self, session_id: int, reason: str) -> None:
        async with self._lock:
            if not self._is_current(session_id):
                return
            await self._stop_locked(reason=reason, initiated_by="system")


# Global session manager instance
session_manager = SessionManager(notifier)
