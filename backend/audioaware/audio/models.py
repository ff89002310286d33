"""Audio data models and structures."""
from dataclasses import dataclass
from enum import Enum


class MetricStatus(str, Enum):
    """Classification of a single analysis window."""
    OK = "ok"
    LOW = "low"
    SILENT = "silent"
    CLIPPING = "clipping"


@dataclass(frozen=True)
class Metric:
    """Loudness measurement for one analysis window."""
    timestamp_sec: float  # Stream time at the start of the window
    rms_db: float
    peak_db: float
    status: MetricStatus

    def to_dict(self) -> dict:
        """Serialize for JSON transport."""
        return {
            "timestampSec": self.timestamp_sec,
            "rmsDb": self.rms_db,
            "peakDb": self.peak_db,
            "status": self.status.value,
        }
