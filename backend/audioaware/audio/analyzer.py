"""Windowed RMS/peak analysis and classification of PCM audio."""
import math
from dataclasses import dataclass
from typing import Sequence, Union
import numpy as np
from audioaware.audio.models import Metric, MetricStatus
from audioaware.core.errors import ConfigurationError

DB_FLOOR = -100.0  # Reported for digital silence instead of -inf
FULL_SCALE = 32768.0


@dataclass
class AnalysisSettings:
    """Thresholds and framing for the analyzer."""
    sample_rate: int = 48000
    window_ms: float = 500
    silence_rms_db: float = -50.0
    low_rms_db: float = -30.0
    clip_peak_db: float = -1.0

    def __post_init__(self):
        """Validate settings."""
        if self.sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.window_ms <= 0:
            raise ConfigurationError(f"window_ms must be positive, got {self.window_ms}")

    def to_dict(self) -> dict:
        return {
            "sampleRate": self.sample_rate,
            "windowMs": self.window_ms,
            "silenceRmsDb": self.silence_rms_db,
            "lowRmsDb": self.low_rms_db,
            "clipPeakDb": self.clip_peak_db,
        }


def window_samples(sample_rate: int, window_ms: float) -> int:
    """Number of samples per analysis window, never less than one."""
    return max(1, int(math.floor(sample_rate * window_ms / 1000)))


def to_dbfs(normalized: float) -> float:
    """
    Convert a normalized amplitude to dBFS.

    Args:
        normalized: Amplitude in [0, 1] (values above 1 are treated as full scale)

    Returns:
        Level in dBFS, or DB_FLOOR for zero/negative input
    """
    if not normalized or normalized <= 0:
        return DB_FLOOR
    return 20.0 * math.log10(min(1.0, normalized))


def classify(rms_db: float, peak_db: float, settings: AnalysisSettings) -> MetricStatus:
    """Clipping wins over silence and low level even if RMS also qualifies."""
    if peak_db >= settings.clip_peak_db:
        return MetricStatus.CLIPPING
    if rms_db <= settings.silence_rms_db:
        return MetricStatus.SILENT
    if rms_db <= settings.low_rms_db:
        return MetricStatus.LOW
    return MetricStatus.OK


class AudioAnalyzer:
    """
    Turns a stream of int16 samples into per-window loudness metrics.

    Samples that do not fill a complete window are carried over to the next
    call, so splitting the input at arbitrary boundaries yields the same
    metrics as feeding it in one piece. One analyzer belongs to one session.
    """

    def __init__(self, settings: AnalysisSettings = None):
        self.settings = settings or AnalysisSettings()
        self.window_samples = window_samples(self.settings.sample_rate, self.settings.window_ms)
        self.pending = np.zeros(0, dtype=np.int16)
        self.total_samples_processed = 0

    def process_samples(self, samples: Union[np.ndarray, Sequence[int]]) -> list[Metric]:
        """
        Analyze newly arrived samples.

        Args:
            samples: Mono int16 PCM samples

        Returns:
            Metrics for every window completed by this call (possibly empty)
        """
        if samples is None:
            return []
        if not isinstance(samples, np.ndarray):
            samples = np.asarray(samples, dtype=np.int16)
        if samples.dtype != np.int16 or samples.ndim != 1 or samples.size == 0:
            return []

        merged = np.concatenate((self.pending, samples))
        metrics = []
        offset = 0

        while offset + self.window_samples <= merged.size:
            metrics.append(self._analyze_window(merged[offset:offset + self.window_samples]))
            offset += self.window_samples

        self.pending = merged[offset:].copy()
        return metrics

    def _analyze_window(self, window: np.ndarray) -> Metric:
        normalized = np.abs(window.astype(np.float64)) / FULL_SCALE
        rms = float(np.sqrt(np.mean(normalized ** 2)))
        peak = float(np.max(normalized))

        rms_db = to_dbfs(rms)
        peak_db = to_dbfs(peak)
        timestamp_sec = self.total_samples_processed / self.settings.sample_rate
        self.total_samples_processed += window.size

        return Metric(
            timestamp_sec=timestamp_sec,
            rms_db=rms_db,
            peak_db=peak_db,
            status=classify(rms_db, peak_db, self.settings)
        )
