"""FastAPI application entrypoint."""
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from audioaware.api import rest, ws_events
from audioaware.core.config import settings
from audioaware.core.logging import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="AudioAware",
    description="Live stream audio level monitoring with debounced alerts",
    version=rest.VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using "*" origins
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rest.router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for dashboard events."""
    await ws_events.websocket_events_endpoint(websocket)


@app.on_event("startup")
async def startup_event():
    """Start the auto-monitor."""
    from audioaware.core.logging import logger
    from audioaware.services.auto_monitor import auto_monitor

    logger.info(f"Starting AudioAware on {settings.host}:{settings.port}")
    logger.info(f"Decoder: {settings.ffmpeg_bin} at {settings.sample_rate} Hz, resolver: {settings.streamlink_bin}")
    await auto_monitor.restart()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop polling and any live session so no decoder outlives the server."""
    from audioaware.core.logging import logger
    from audioaware.alerts.notifier import notifier
    from audioaware.services.auto_monitor import auto_monitor
    from audioaware.services.session_manager import session_manager

    logger.info("Shutting down AudioAware")
    await auto_monitor.stop()
    await session_manager.stop_live(reason="shutdown", initiated_by="system")
    await notifier.chat_client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "audioaware.main:app",
        host=settings.host,
        port=settings.port
    )
