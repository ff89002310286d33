"""Resolution of Twitch channels and VODs to decodable stream URLs via streamlink."""
import asyncio
import re
from dataclasses import dataclass
from typing import Optional
from audioaware.core.config import settings
from audioaware.core.errors import ConfigurationError, SourceResolveError, StreamOfflineError
from audioaware.core.logging import logger

OFFLINE_MARKERS = (
    "no playable streams found",
    "this channel is currently offline",
    "could not open stream",
)

_URL_PREFIX = re.compile(r"^https?://(www\.)?twitch\.tv/", re.IGNORECASE)
_HTTP = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class ResolvedSource:
    """A source reference and the stream URL it resolved to."""
    source_type: str  # "live" or "vod"
    input: str
    stream_url: str

    def to_dict(self) -> dict:
        return {"sourceType": self.source_type, "input": self.input, "streamUrl": self.stream_url}


def normalize_channel_name(value: Optional[str]) -> str:
    """Reduce a channel URL, '@name' or bare name to the bare channel name."""
    name = str(value or "").strip()
    name = _URL_PREFIX.sub("", name)
    name = name.split("/", 1)[0]
    return name.lstrip("@")


def to_twitch_live_url(channel_or_url: Optional[str]) -> str:
    raw = str(channel_or_url or "").strip()
    if not raw:
        raise ConfigurationError("Channel is required")
    if _HTTP.match(raw):
        return raw
    return f"https://twitch.tv/{normalize_channel_name(raw)}"


async def get_stream_url(target_url: str, quality: str = "best", streamlink_bin: Optional[str] = None) -> str:
    """
    Ask streamlink for the direct stream URL of a page.

    Args:
        target_url: Twitch channel or VOD page URL
        quality: streamlink quality selector

    Returns:
        Direct, decodable stream URL

    Raises:
        StreamOfflineError: The stream is offline or has no playable streams
        SourceResolveError: streamlink is missing or failed otherwise
    """
    binary = streamlink_bin or settings.streamlink_bin
    try:
        process = await asyncio.create_subprocess_exec(
            binary, "--stream-url", target_url, quality or "best",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise SourceResolveError(f"Unable to run {binary}: {e}") from e

    stdout, stderr = await process.communicate()
    out_text = stdout.decode("utf-8", errors="replace").strip()
    err_text = stderr.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        # streamlink prints its "error: ..." lines on stdout
        detail = " ".join(part for part in (out_text, err_text) if part)
        message = (
            f"streamlink failed (code {process.returncode}). "
            f"Ensure streamlink is installed and URL is valid. {detail}"
        ).strip()
        if any(marker in detail.lower() for marker in OFFLINE_MARKERS):
            raise StreamOfflineError(message)
        raise SourceResolveError(message)

    lines = [line.strip() for line in out_text.splitlines() if line.strip()]
    if not lines:
        raise SourceResolveError("streamlink did not return a stream URL")
    return lines[-1]


async def resolve_live_stream_url(channel_or_url: str, quality: str = "best") -> ResolvedSource:
    live_url = to_twitch_live_url(channel_or_url)
    stream_url = await get_stream_url(live_url, quality)
    logger.info(f"Resolved live source {live_url} ({quality})")
    return ResolvedSource(source_type="live", input=live_url, stream_url=stream_url)


async def resolve_vod_stream_url(vod_url: str, quality: str = "best") -> ResolvedSource:
    raw = str(vod_url or "").strip()
    if not _HTTP.match(raw):
        raise ConfigurationError("VOD URL must be a full Twitch URL")
    stream_url = await get_stream_url(raw, quality)
    logger.info(f"Resolved VOD source {raw} ({quality})")
    return ResolvedSource(source_type="vod", input=raw, stream_url=stream_url)


async def is_channel_live(channel_or_url: str, quality: str = "best") -> bool:
    """
    Check whether a channel is currently broadcasting.

    Offline channels return False; any other resolver failure is raised.
    """
    try:
        await get_stream_url(to_twitch_live_url(channel_or_url), quality)
    except StreamOfflineError:
        return False
    return True
