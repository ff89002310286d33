"""Fan-out of metrics, alerts and system messages to dashboards and chat."""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set
import websockets
from fastapi import WebSocket
from audioaware.alerts.models import AlertEvent
from audioaware.core.config import settings
from audioaware.core.errors import ChatConfigurationError
from audioaware.core.logging import logger

ALERT_TYPES = ("silent", "low", "clipping", "recovered")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ConnectionHub:
    """Tracks connected dashboard websockets."""

    def __init__(self):
        """Initialize the hub."""
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket) -> None:
        """Register a connected client."""
        async with self._lock:
            self._clients.add(websocket)
            logger.info(f"Dashboard client connected ({len(self._clients)} total)")

    async def unregister(self, websocket: WebSocket) -> None:
        """Forget a client."""
        async with self._lock:
            self._clients.discard(websocket)
            logger.info(f"Dashboard client disconnected ({len(self._clients)} total)")

    async def client_count(self) -> int:
        """Number of connected clients."""
        async with self._lock:
            return len(self._clients)

    async def send_all(self, message: str) -> None:
        """
        Send a text frame to every client, dropping clients that fail.

        Args:
            message: Serialized JSON message
        """
        async with self._lock:
            clients = list(self._clients)

        dead = []
        for client in clients:
            try:
                await client.send_text(message)
            except Exception as e:
                logger.debug(f"Dropping dashboard client after send failure: {e}")
                dead.append(client)

        if dead:
            async with self._lock:
                for client in dead:
                    self._clients.discard(client)


class TwitchChatClient:
    """Minimal Twitch IRC-over-WebSocket client used for alert messages."""

    def __init__(
        self,
        username: Optional[str] = None,
        oauth_token: Optional[str] = None,
        url: Optional[str] = None
    ):
        self.username = username if username is not None else settings.twitch_bot_username
        self.oauth_token = oauth_token if oauth_token is not None else settings.twitch_bot_oauth_token
        self.url = url or settings.twitch_irc_url
        self._connection = None
        self._joined: Set[str] = set()
        self._lock = asyncio.Lock()

    async def _ensure_connected(self) -> None:
        if self._connection is not None:
            return
        if not self.username or not self.oauth_token:
            raise ChatConfigurationError(
                "Missing TWITCH_BOT_USERNAME or TWITCH_BOT_OAUTH_TOKEN for chat alerts"
            )
        token = self.oauth_token
        if not token.startswith("oauth:"):
            token = f"oauth:{token}"

        connection = await websockets.connect(self.url)
        await connection.send(f"PASS {token}")
        await connection.send(f"NICK {self.username.lower()}")
        self._connection = connection
        self._joined.clear()
        logger.info(f"Connected to Twitch chat as {self.username}")

    async def say(self, channel: str, message: str) -> None:
        """
        Send a chat message, joining the channel first if needed.

        Args:
            channel: Channel name without '#'
            message: Message text
        """
        if not channel or not message:
            return
        channel = channel.lower().lstrip("#")
        async with self._lock:
            await self._ensure_connected()
            try:
                if channel not in self._joined:
                    await self._connection.send(f"JOIN #{channel}")
                    self._joined.add(channel)
                await self._connection.send(f"PRIVMSG #{channel} :{message}")
            except websockets.ConnectionClosed:
                self._connection = None
                raise

    async def close(self) -> None:
        """Close the chat connection if open."""
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None


@dataclass
class DeliveryOptions:
    """Where and whether to deliver an alert beyond the dashboard."""
    chat_enabled: bool = False
    chat_channel: str = ""
    enabled_types: Dict[str, bool] = field(
        default_factory=lambda: {alert_type: True for alert_type in ALERT_TYPES}
    )


class Notifier:
    """Broadcasts events to dashboards and relays alerts to chat."""

    def __init__(self, hub: ConnectionHub, chat_client: Optional[TwitchChatClient] = None):
        self.hub = hub
        self.chat_client = chat_client or TwitchChatClient()

    async def broadcast(self, event_type: str, payload: dict) -> None:
        """
        Broadcast an event to all dashboard clients.

        Args:
            event_type: One of metric, alert, session, system
            payload: JSON-serializable payload
        """
        message = json.dumps({"type": event_type, "payload": payload, "at": now_iso()})
        await self.hub.send_all(message)

    async def system(self, level: str, message: str) -> None:
        """Broadcast a system message and log it at the same level."""
        log = getattr(logger, "warning" if level == "warn" else level, logger.info)
        log(message)
        await self.broadcast("system", {"level": level, "message": message})

    async def notify_alert(self, alert: AlertEvent, options: Optional[DeliveryOptions] = None) -> None:
        """
        Deliver an alert: always to dashboards, to chat when enabled.

        Chat failures are reported as system messages and never raised.
        """
        options = options or DeliveryOptions()
        await self.broadcast("alert", alert.to_dict())

        if not options.chat_enabled:
            return
        if not options.enabled_types.get(alert.type.value, True):
            return

        text = f"[AudioAware] {alert.message} @ {alert.timestamp_sec:.1f}s"
        try:
            await self.chat_client.say(options.chat_channel, text)
        except Exception as e:
            await self.system("error", f"Failed to send Twitch chat alert: {e}")


# Global dashboard hub and notifier instances
connection_hub = ConnectionHub()
notifier = Notifier(connection_hub)
