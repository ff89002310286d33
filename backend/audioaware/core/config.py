"""Configuration settings for the AudioAware monitoring backend."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Server settings
    host: str = "0.0.0.0"
    port: int = 3030
    
    # Decode settings
    ffmpeg_bin: str = "ffmpeg"
    sample_rate: int = 48000  # Hz, ffmpeg resamples to this rate
    stop_grace_sec: float = 1.0  # SIGTERM -> SIGKILL grace period
    read_chunk_bytes: int = 4096
    stderr_limit_bytes: int = 8192  # Diagnostic text kept for error messages
    
    # Source resolver
    streamlink_bin: str = "streamlink"
    
    # Persisted user settings
    settings_file: str = "data/settings.json"
    
    # Twitch chat notifications
    twitch_bot_username: Optional[str] = None
    twitch_bot_oauth_token: Optional[str] = None
    twitch_irc_url: str = "wss://irc-ws.chat.twitch.tv:443"
    
    # Auto-monitor
    auto_monitor_min_interval_sec: int = 15
    auto_monitor_max_interval_sec: int = 300
    
    # Logging
    log_level: str = "INFO"
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
