"""One-shot analysis of a recorded stream (VOD)."""
import time
from typing import Awaitable, Callable, Dict, List, Optional
from audioaware.alerts.engine import AlertSettings
from audioaware.alerts.models import AlertEvent, AlertType
from audioaware.audio.analyzer import DB_FLOOR, AnalysisSettings
from audioaware.audio.decoder import DecodeProcess, EndInfo
from audioaware.audio.models import Metric
from audioaware.audio.pipeline import MonitoringPipeline
from audioaware.core.errors import DecodeProcessError
from audioaware.core.logging import logger
from audioaware.services.resolver import ResolvedSource, resolve_vod_stream_url

ISSUE_TYPES = (AlertType.SILENT, AlertType.LOW, AlertType.CLIPPING)


def summarize(metrics: List[Metric], alerts: List[AlertEvent]) -> Dict:
    """
    Summarize a finished analysis run.

    Args:
        metrics: Every metric produced, in order
        alerts: Every alert raised, in order

    Returns:
        Duration, average RMS, overall peak, issue counts, alerts and points
    """
    issues = {alert_type.value: 0 for alert_type in ISSUE_TYPES}
    for alert in alerts:
        if alert.type in ISSUE_TYPES:
            issues[alert.type.value] += 1

    if not metrics:
        return {
            "durationSec": 0,
            "avgRmsDb": None,
            "peakDb": None,
            "issues": issues,
            "alerts": [alert.to_dict() for alert in alerts],
            "points": [],
        }

    return {
        "durationSec": metrics[-1].timestamp_sec,
        "avgRmsDb": sum(metric.rms_db for metric in metrics) / len(metrics),
        "peakDb": max([DB_FLOOR] + [metric.peak_db for metric in metrics]),
        "issues": issues,
        "alerts": [alert.to_dict() for alert in alerts],
        "points": [metric.to_dict() for metric in metrics],
    }


async def analyze_vod(
    vod_url: str,
    quality: str = "best",
    analysis_settings: Optional[AnalysisSettings] = None,
    alert_settings: Optional[AlertSettings] = None,
    resolver: Callable[[str, str], Awaitable[ResolvedSource]] = resolve_vod_stream_url,
    decoder_factory: Callable[..., DecodeProcess] = DecodeProcess
) -> Dict:
    """
    Decode a whole VOD and run it through the analyzer and alert engine.

    Raises:
        ConfigurationError: The VOD URL is not a full URL
        SourceResolveError: streamlink could not resolve the VOD
        DecodeProcessError: The decoder failed
    """
    analysis_settings = analysis_settings or AnalysisSettings()
    resolved = await resolver(vod_url, quality)

    metrics: List[Metric] = []
    alerts: List[AlertEvent] = []
    errors: List[DecodeProcessError] = []

    pipeline = MonitoringPipeline(
        analysis_settings,
        alert_settings,
        on_metric=metrics.append,
        on_alert=alerts.append
    )

    started = time.perf_counter()
    process = decoder_factory(
        resolved.stream_url,
        sample_rate=analysis_settings.sample_rate,
        on_samples=pipeline.process_samples,
        on_error=errors.append
    )
    await process.start()
    try:
        info: Optional[EndInfo] = await process.wait()
    finally:
        if process.running:
            await process.stop()

    if errors:
        raise errors[0]
    logger.info(
        f"Analyzed VOD {resolved.input}: {len(metrics)} windows, {len(alerts)} alerts "
        f"in {time.perf_counter() - started:.1f}s (exit={info.exit_code if info else None})"
    )
    return {"source": resolved.to_dict(), "summary": summarize(metrics, alerts)}
