"""Hysteresis and cooldown state machine turning metrics into alerts."""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from audioaware.alerts.models import AlertEvent, AlertType, Severity
from audioaware.audio.models import Metric, MetricStatus
from audioaware.core.logging import logger

OK = "ok"

ALERT_MESSAGES = {
    AlertType.CLIPPING: "Audio clipping detected",
    AlertType.SILENT: "Extended silence detected",
    AlertType.LOW: "Audio level too low",
}


@dataclass
class AlertSettings:
    """Dwell, hit-count, recovery and cooldown thresholds."""
    silence_min_sec: float = 3.0
    low_min_sec: float = 5.0
    clipping_hits: int = 3
    recovery_sec: float = 2.0
    cooldown_sec: float = 30.0

    def to_dict(self) -> dict:
        return {
            "silenceMinSec": self.silence_min_sec,
            "lowMinSec": self.low_min_sec,
            "clippingHits": self.clipping_hits,
            "recoverySec": self.recovery_sec,
            "cooldownSec": self.cooldown_sec,
        }


class AlertEngine:
    """
    Per-session alert state machine.

    Dwell accumulators track how long the *current* window status has been
    held contiguously; a window of any other status resets them. An alert is
    raised when a condition's dwell (or clip hit count) crosses its threshold,
    the condition differs from the active one, and its cooldown has elapsed.
    Recovery requires recovery_sec of sustained ok audio.

    Args:
        settings: Alert thresholds
        clock: Returns wall-clock seconds, used only for cooldowns
    """

    def __init__(self, settings: AlertSettings = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or AlertSettings()
        self._clock = clock
        self.active_condition: str = OK
        self.silent_sec = 0.0
        self.low_sec = 0.0
        self.ok_sec = 0.0
        self.clip_hits = 0
        self.last_alert_at: Dict[str, Optional[float]] = {
            AlertType.SILENT.value: None,
            AlertType.LOW.value: None,
            AlertType.CLIPPING.value: None,
        }
        self.last_ts: Optional[float] = None

    def process_metric(self, metric: Metric) -> list[AlertEvent]:
        """
        Advance the state machine by one metric.

        Args:
            metric: Next metric from the analyzer

        Returns:
            Zero or one alert events
        """
        dt = self._compute_delta(metric.timestamp_sec)

        if metric.status == MetricStatus.SILENT:
            self.silent_sec += dt
        else:
            self.silent_sec = 0.0

        if metric.status == MetricStatus.LOW:
            self.low_sec += dt
        else:
            self.low_sec = 0.0

        if metric.status == MetricStatus.CLIPPING:
            self.clip_hits += 1
        else:
            self.clip_hits = 0

        candidate = self._candidate()

        if candidate == OK:
            if self.active_condition == OK:
                return []
            self.ok_sec += dt
            if self.ok_sec < self.settings.recovery_sec:
                return []
            previous = self.active_condition
            self.active_condition = OK
            self.ok_sec = 0.0
            logger.info(f"Audio recovered from {previous} at {metric.timestamp_sec:.1f}s")
            return [AlertEvent(
                type=AlertType.RECOVERED,
                severity=Severity.INFO,
                timestamp_sec=metric.timestamp_sec,
                message=f"Recovered from {previous}",
                from_condition=previous
            )]

        self.ok_sec = 0.0
        if candidate == self.active_condition or not self._can_emit(candidate):
            return []

        self.active_condition = candidate
        self.last_alert_at[candidate] = self._clock()
        alert_type = AlertType(candidate)
        logger.info(f"Alert raised: {candidate} at {metric.timestamp_sec:.1f}s")
        return [AlertEvent(
            type=alert_type,
            severity=Severity.CRITICAL if alert_type == AlertType.CLIPPING else Severity.WARNING,
            timestamp_sec=metric.timestamp_sec,
            message=ALERT_MESSAGES[alert_type]
        )]

    def _candidate(self) -> str:
        if self.clip_hits >= self.settings.clipping_hits:
            return AlertType.CLIPPING.value
        if self.silent_sec >= self.settings.silence_min_sec:
            return AlertType.SILENT.value
        if self.low_sec >= self.settings.low_min_sec:
            return AlertType.LOW.value
        return OK

    def _compute_delta(self, timestamp_sec: float) -> float:
        if self.last_ts is None:
            self.last_ts = timestamp_sec
            return 0.0
        dt = max(0.0, timestamp_sec - self.last_ts)
        self.last_ts = timestamp_sec
        return dt

    def _can_emit(self, condition: str) -> bool:
        last = self.last_alert_at.get(condition)
        if last is None:
            return True
        return self._clock() - last >= self.settings.cooldown_sec
