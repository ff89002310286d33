"""Persistence of user-facing monitoring settings as a JSON file."""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from audioaware.alerts.engine import AlertSettings
from audioaware.alerts.notifier import ALERT_TYPES
from audioaware.audio.analyzer import AnalysisSettings
from audioaware.core.config import settings
from audioaware.core.logging import logger
from audioaware.services.resolver import normalize_channel_name


class _SettingsSection(BaseModel):
    """Base for settings sections: camelCase on the wire, bad values fall back to defaults."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(cls, value, handler, info):
        try:
            return handler(value)
        except ValidationError:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)


class LiveConfig(_SettingsSection):
    channel: str = ""
    quality: str = "best"

    @field_validator("channel")
    @classmethod
    def _normalize_channel(cls, value: str) -> str:
        return normalize_channel_name(value)

    @field_validator("quality")
    @classmethod
    def _default_quality(cls, value: str) -> str:
        return value.strip() or "best"


class AnalysisConfig(_SettingsSection):
    window_ms: float = 500
    silence_rms_db: float = -50
    low_rms_db: float = -30
    clip_peak_db: float = -1

    def to_analysis_settings(self, sample_rate: Optional[int] = None) -> AnalysisSettings:
        return AnalysisSettings(
            sample_rate=sample_rate or settings.sample_rate,
            window_ms=self.window_ms,
            silence_rms_db=self.silence_rms_db,
            low_rms_db=self.low_rms_db,
            clip_peak_db=self.clip_peak_db
        )


class AlertRulesConfig(_SettingsSection):
    silence_min_sec: float = Field(3, ge=0)
    low_min_sec: float = Field(5, ge=0)
    clipping_hits: int = Field(3, ge=1)
    recovery_sec: float = Field(2, ge=0)
    cooldown_sec: float = Field(30, ge=0)

    def to_alert_settings(self) -> AlertSettings:
        return AlertSettings(**self.model_dump())


class ChatConfig(_SettingsSection):
    enabled: bool = False
    channel: str = ""
    enabled_types: Dict[str, bool] = Field(
        default_factory=lambda: {alert_type: True for alert_type in ALERT_TYPES}
    )

    @field_validator("channel")
    @classmethod
    def _normalize_channel(cls, value: str) -> str:
        return normalize_channel_name(value)

    @field_validator("enabled_types")
    @classmethod
    def _known_types(cls, value: Dict[str, bool]) -> Dict[str, bool]:
        # Anything not explicitly disabled stays enabled
        return {alert_type: value.get(alert_type) is not False for alert_type in ALERT_TYPES}


class AutoMonitorConfig(_SettingsSection):
    enabled: bool = True
    interval_sec: float = 45

    @field_validator("interval_sec")
    @classmethod
    def _clamp_interval(cls, value: float) -> float:
        return min(settings.auto_monitor_max_interval_sec, max(settings.auto_monitor_min_interval_sec, value))


class UserSettings(_SettingsSection):
    """Everything the dashboard lets a user configure."""
    live: LiveConfig = Field(default_factory=LiveConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    alert_rules: AlertRulesConfig = Field(default_factory=AlertRulesConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    auto_monitor: AutoMonitorConfig = Field(default_factory=AutoMonitorConfig)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``patch`` over ``base`` without mutating either."""
    merged = dict(base)
    for key, value in (patch or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsStore:
    """Loads, normalizes and atomically persists UserSettings."""

    def __init__(self, file_path: Optional[str] = None):
        self.file_path = Path(file_path or settings.settings_file)
        self._settings = self._load_from_disk()

    def _load_from_disk(self) -> UserSettings:
        if not self.file_path.exists():
            return UserSettings()
        try:
            raw = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.file_path}: {e}")
            return UserSettings()
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring malformed settings file {self.file_path}")
            return UserSettings()
        return UserSettings.model_validate(deep_merge(UserSettings().to_json_dict(), raw))

    def get(self) -> UserSettings:
        """Return a copy of the current settings."""
        return self._settings.model_copy(deep=True)

    def update(self, patch: Dict[str, Any]) -> UserSettings:
        """
        Merge a camelCase patch into the settings and persist them.

        Args:
            patch: Partial settings, e.g. {"live": {"channel": "foo"}}

        Returns:
            The normalized settings after the update
        """
        merged = deep_merge(self._settings.to_json_dict(), patch or {})
        updated = UserSettings.model_validate(merged)
        # Raises ConfigurationError before anything is persisted
        updated.analysis.to_analysis_settings()
        self._settings = updated
        self._persist()
        return self.get()

    def _persist(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        temp_path.write_text(json.dumps(self._settings.to_json_dict(), indent=2) + "\n", encoding="utf-8")
        os.replace(temp_path, self.file_path)


# Global settings store instance
settings_store = SettingsStore()
