"""
connectivity.py — Network status and queued-alert replay scheduling.

ConnectivityMonitor
-------------------
Holds the service's view of whether the hosted backend is reachable.
Status changes come from devices (``POST /alerts/network``), from the
optional HTTP probe, or from tests. Listeners fire on transitions only:

    offline ──set_online(True)──►  online     → on_online listeners
    online  ──set_online(False)─►  offline    → on_offline listeners

ReplayScheduler
---------------
Background loop (default every 30 s) that replays the offline queue while
online. It is the polling counterpart of the ``online`` event: if the
transition is missed, queued alerts still go out on the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

import httpx

from backend.app.alerts.models import ReplayReport
from backend.app.alerts.store import OfflineAlertStore

if TYPE_CHECKING:
    from backend.app.alerts.relay import AlertRelay

logger = logging.getLogger(__name__)

StatusListener = Callable[[], Awaitable[Any]]


class ConnectivityMonitor:
    """Online/offline state with transition listeners."""

    def __init__(
        self,
        initially_online: bool = True,
        probe_url: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._online = initially_online
        self.probe_url = probe_url
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._online_listeners: List[StatusListener] = []
        self._offline_listeners: List[StatusListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def on_online(self, listener: StatusListener) -> Callable[[], None]:
        return self._register(self._online_listeners, listener)

    def on_offline(self, listener: StatusListener) -> Callable[[], None]:
        return self._register(self._offline_listeners, listener)

    @staticmethod
    def _register(
        listeners: List[StatusListener], listener: StatusListener,
    ) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    async def set_online(self, online: bool) -> bool:
        """Update status; returns True if it changed (listeners fired)."""
        if online == self._online:
            return False
        self._online = online
        logger.info("Connectivity: %s", "online" if online else "offline")

        listeners = self._online_listeners if online else self._offline_listeners
        for listener in list(listeners):
            try:
                await listener()
            except Exception:
                logger.exception("Connectivity listener failed")
        return True

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def probe(self) -> bool:
        """
        Check backend reachability and update status.

        Any HTTP response below 500 counts as reachable. Without a probe
        URL the current status is returned unchanged.
        """
        if not self.probe_url:
            return self._online

        client = await self._get_client()
        try:
            response = await client.get(self.probe_url)
            reachable = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe failed: %s", e)
            reachable = False

        await self.set_online(reachable)
        return reachable

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()


class ReplayScheduler:
    """Periodic offline-queue replay while online."""

    def __init__(
        self,
        relay: "AlertRelay",
        connectivity: ConnectivityMonitor,
        store: OfflineAlertStore,
        interval_seconds: float = 30.0,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.relay = relay
        self.connectivity = connectivity
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[ReplayReport] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[ReplayReport]:
        """One tick: probe (if configured), then replay if there is work."""
        if self.connectivity.probe_url:
            await self.connectivity.probe()
        if not self.connectivity.is_online:
            return None
        if await self.store.count() == 0:
            return None

        report = await self.relay.replay_queued()
        self.last_report = report
        return report

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled replay failed")

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Replay scheduler started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Replay scheduler stopped")
