"""Alert event structures emitted by the alert engine."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AlertType(str, Enum):
    """Kinds of alert events."""
    SILENT = "silent"
    LOW = "low"
    CLIPPING = "clipping"
    RECOVERED = "recovered"


class Severity(str, Enum):
    """How urgent an alert is."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AlertEvent:
    """A single alert or recovery notification."""
    type: AlertType
    severity: Severity
    timestamp_sec: float
    message: str
    from_condition: Optional[str] = None  # Only set on recovery events
    
    def to_dict(self) -> dict:
        """Serialize for JSON transport."""
        data = {
            "type": self.type.value,
            "severity": self.severity.value,
            "timestampSec": self.timestamp_sec,
            "message": self.message,
        }
        if self.from_condition is not None:
            data["from"] = self.from_condition
        return data
