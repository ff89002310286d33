"""REST endpoints for health, settings, live monitoring and VOD analysis."""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, HTTPException
from audioaware.core.errors import AudioAwareError, ConfigurationError
from audioaware.core.logging import logger
from audioaware.services.auto_monitor import auto_monitor
from audioaware.services.session_manager import LiveSessionConfig, build_live_config, session_manager
from audioaware.services.settings_store import AlertRulesConfig, AnalysisConfig, settings_store
from audioaware.services.vod import analyze_vod

VERSION = "0.1.0"

router = APIRouter(prefix="/api")


def _raise_http(error: AudioAwareError) -> None:
    status_code = 400 if isinstance(error, ConfigurationError) else 500
    raise HTTPException(status_code=status_code, detail=str(error)) from error


def _persist_live_config(config: LiveSessionConfig) -> None:
    analysis = config.analysis_settings
    alert_rules = config.alert_settings
    settings_store.update({
        "live": {"channel": config.channel, "quality": config.quality},
        "analysis": AnalysisConfig(
            window_ms=analysis.window_ms,
            silence_rms_db=analysis.silence_rms_db,
            low_rms_db=analysis.low_rms_db,
            clip_peak_db=analysis.clip_peak_db
        ).model_dump(by_alias=True),
        "alertRules": AlertRulesConfig(
            silence_min_sec=alert_rules.silence_min_sec,
            low_min_sec=alert_rules.low_min_sec,
            clipping_hits=alert_rules.clipping_hits,
            recovery_sec=alert_rules.recovery_sec,
            cooldown_sec=alert_rules.cooldown_sec
        ).model_dump(by_alias=True),
        "chat": {
            "enabled": config.delivery.chat_enabled,
            "channel": config.delivery.chat_channel,
            "enabledTypes": config.delivery.enabled_types,
        },
    })


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Liveness, version and monitoring state
    """
    saved = settings_store.get()
    return {
        "ok": True,
        "version": VERSION,
        "liveActive": session_manager.active_session is not None,
        "autoMonitorEnabled": saved.auto_monitor.enabled,
        "channel": saved.live.channel,
    }


@router.get("/settings")
async def get_settings():
    return {"ok": True, "settings": settings_store.get().to_json_dict()}


@router.post("/settings")
async def update_settings(patch: Optional[Dict[str, Any]] = Body(default=None)):
    """Merge and persist user settings, then reschedule the auto-monitor."""
    patch = patch or {}
    try:
        updated = settings_store.update(patch)
    except ConfigurationError as e:
        _raise_http(e)
    await auto_monitor.restart()
    return {"ok": True, "settings": updated.to_json_dict()}


@router.get("/live/status")
async def live_status():
    return {"ok": True, **session_manager.status()}


@router.post("/live/start")
async def start_live(body: Optional[Dict[str, Any]] = Body(default=None)):
    """
    Start live monitoring of a channel.

    The effective configuration is saved so the auto-monitor and the next
    session reuse it. Any running session is replaced.
    """
    try:
        config = build_live_config(body, settings_store.get())
        if not config.channel:
            raise ConfigurationError("channel is required")
        _persist_live_config(config)
        await auto_monitor.restart()
        data = await session_manager.start_live(config, initiated_by="manual")
    except AudioAwareError as e:
        logger.warning(f"Live start failed: {e}")
        _raise_http(e)
    return {"ok": True, **data}


@router.post("/live/stop")
async def stop_live():
    await session_manager.stop_live(reason="manual", initiated_by="manual")
    return {"ok": True}


@router.post("/vod/analyze")
async def analyze_vod_endpoint(body: Optional[Dict[str, Any]] = Body(default=None)):
    """
    Analyze a complete VOD and return a summary of levels and issues.

    Args:
        body: {"vodUrl": ..., "quality": ..., "settings": {...}}
    """
    body = body or {}
    vod_url = body.get("vodUrl")
    if not vod_url:
        raise HTTPException(status_code=400, detail="vodUrl is required")

    saved = settings_store.get()
    overrides = body.get("settings") or {}
    quality = str(body.get("quality") or "best").strip() or "best"
    try:
        analysis = AnalysisConfig.model_validate({**saved.analysis.model_dump(by_alias=True), **overrides})
        alert_rules = AlertRulesConfig.model_validate({**saved.alert_rules.model_dump(by_alias=True), **overrides})
        result = await analyze_vod(
            vod_url,
            quality,
            analysis_settings=analysis.to_analysis_settings(),
            alert_settings=alert_rules.to_alert_settings()
        )
    except AudioAwareError as e:
        logger.warning(f"VOD analysis failed: {e}")
        _raise_http(e)
    return {"ok": True, **result}
