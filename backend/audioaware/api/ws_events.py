"""WebSocket endpoint streaming metrics, alerts and session events to dashboards."""
import json
from fastapi import WebSocket, WebSocketDisconnect
from audioaware.alerts.notifier import connection_hub, now_iso
from audioaware.core.logging import logger


async def websocket_events_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler for /ws.

    Clients only listen; anything they send is ignored.
    """
    await websocket.accept()
    await connection_hub.register(websocket)

    try:
        await websocket.send_text(json.dumps({
            "type": "system",
            "payload": {"level": "info", "message": "Connected to AudioAware server"},
            "at": now_iso(),
        }))
        while True:
            # Text or binary, anything but a disconnect is ignored
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug("Dashboard websocket closed by client")
                break
    except WebSocketDisconnect:
        logger.debug("Dashboard websocket disconnected")
    finally:
        await connection_hub.unregister(websocket)
