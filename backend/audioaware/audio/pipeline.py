"""Per-session monitoring pipeline: analyzer -> alert engine -> sinks."""
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union
import numpy as np
from audioaware.alerts.engine import AlertEngine, AlertSettings
from audioaware.alerts.models import AlertEvent
from audioaware.audio.analyzer import AnalysisSettings, AudioAnalyzer
from audioaware.audio.models import Metric
from audioaware.core.logging import logger

MetricSink = Callable[[Metric], Union[None, Awaitable[None]]]
AlertSink = Callable[[AlertEvent], Union[None, Awaitable[None]]]


async def _deliver(sink: Optional[Callable[..., Any]], item) -> None:
    if sink is None:
        return
    result = sink(item)
    if inspect.isawaitable(result):
        await result


class MonitoringPipeline:
    """
    Owns the analyzer and alert engine of one monitoring session.

    Each call to ``process_samples`` runs every completed window through the
    alert engine and awaits the sinks in order, so metrics and alerts are
    delivered strictly in the order the audio arrived.
    """

    def __init__(
        self,
        analysis_settings: Optional[AnalysisSettings] = None,
        alert_settings: Optional[AlertSettings] = None,
        on_metric: Optional[MetricSink] = None,
        on_alert: Optional[AlertSink] = None,
        clock: Callable[[], float] = time.monotonic,
        slow_chunk_ms: float = 250.0
    ):
        self.analyzer = AudioAnalyzer(analysis_settings)
        self.engine = AlertEngine(alert_settings, clock=clock)
        self.on_metric = on_metric
        self.on_alert = on_alert
        self.slow_chunk_ms = slow_chunk_ms
        self.metric_count = 0
        self.alert_count = 0

    async def process_samples(self, samples: np.ndarray) -> list[AlertEvent]:
        """
        Analyze a batch of samples and dispatch the results.

        Args:
            samples: Mono int16 PCM samples

        Returns:
            Alerts raised while processing this batch
        """
        start_time = time.perf_counter()
        raised = []

        for metric in self.analyzer.process_samples(samples):
            self.metric_count += 1
            await _deliver(self.on_metric, metric)
            for alert in self.engine.process_metric(metric):
                self.alert_count += 1
                raised.append(alert)
                await _deliver(self.on_alert, alert)

        processing_time = (time.perf_counter() - start_time) * 1000
        if processing_time > self.slow_chunk_ms:
            logger.warning(
                f"Chunk of {len(samples)} samples took {processing_time:.1f}ms to process "
                f"(threshold: {self.slow_chunk_ms}ms)"
            )
        return raised
