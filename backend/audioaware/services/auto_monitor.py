"""Periodic check that starts and stops live monitoring with the channel."""
import asyncio
from typing import Awaitable, Callable, Optional
from audioaware.core.errors import AudioAwareError
from audioaware.core.logging import logger
from audioaware.services.resolver import is_channel_live
from audioaware.services.session_manager import SessionManager, build_live_config, session_manager
from audioaware.services.settings_store import SettingsStore, settings_store

LiveCheck = Callable[[str, str], Awaitable[bool]]


class AutoMonitor:
    """
    Polls the saved channel and keeps a live session running while it is live.

    Starts a session when the channel goes live and none is running, stops
    the session when the monitored channel goes offline. Overlapping checks
    are skipped.
    """

    def __init__(
        self,
        store: SettingsStore,
        sessions: SessionManager,
        live_check: LiveCheck = is_channel_live
    ):
        self.store = store
        self.sessions = sessions
        self._live_check = live_check
        self._task: Optional[asyncio.Task] = None
        self._check_in_progress = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> None:
        """Run a single auto-monitor check."""
        if self._check_in_progress:
            return

        saved = self.store.get()
        if not saved.auto_monitor.enabled or not saved.live.channel:
            return

        notifier = self.sessions.notifier
        channel = saved.live.channel
        quality = saved.live.quality or "best"
        self._check_in_progress = True
        try:
            online = await self._live_check(channel, quality)
            session = self.sessions.active_session

            if online and session is None:
                await notifier.system("info", f"Auto-monitor detected {channel} is live. Starting monitoring.")
                config = build_live_config({"channel": channel, "quality": quality}, saved)
                await self.sessions.start_live(config, initiated_by="auto")
                return

            if not online and session is not None and session.channel == channel:
                await notifier.system("warn", f"{channel} appears offline. Stopping monitoring.")
                await self.sessions.stop_live(reason="stream-offline", initiated_by="auto")
        except AudioAwareError as e:
            await notifier.system("warn", f"Auto-monitor check failed: {e}")
        finally:
            self._check_in_progress = False

    async def _run(self, interval_sec: float) -> None:
        while True:
            await self.check()
            await asyncio.sleep(interval_sec)

    async def restart(self) -> None:
        """(Re)start polling with the current settings; stops if disabled."""
        await self.stop()
        saved = self.store.get()
        if not saved.auto_monitor.enabled:
            logger.info("Auto-monitor disabled")
            return
        interval = saved.auto_monitor.interval_sec
        logger.info(f"Auto-monitor polling every {interval:.0f}s")
        self._task = asyncio.create_task(self._run(interval))

    async def stop(self) -> None:
        """Stop polling."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# Global auto-monitor instance
auto_monitor = AutoMonitor(settings_store, session_manager)
