"""Connectivity tracking."""

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum

import httpx

from cropcare.core.constants import SyncConstants
from cropcare.core.subscription import Subscription

logger = logging.getLogger(__name__)


class ConnectivityEvent(StrEnum):
    """Connectivity transitions."""

    ONLINE = "online"
    OFFLINE = "offline"


Listener = Callable[[ConnectivityEvent], None]


class NetworkMonitor:
    """Current connectivity plus de-duplicated transition events.

    Platform notifications go through ``notify``; repeated identical notifications
    produce no event. ``probe`` and ``watch`` derive notifications from backend
    reachability when no platform signal is available.
    """

    def __init__(
        self,
        online: bool = True,
        probe_url: str | None = None,
        probe_headers: dict[str, str] | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._online = online
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription[ConnectivityEvent]] = []
        self.probe_url = probe_url
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport, headers=probe_headers or {})

    @property
    def is_online(self) -> bool:
        return self._online

    def notify(self, online: bool) -> ConnectivityEvent | None:
        """Record the platform's view of connectivity.

        Returns:
            The emitted event, or None when the state did not change
        """
        if online == self._online:
            return None
        self._online = online
        event = ConnectivityEvent.ONLINE if online else ConnectivityEvent.OFFLINE
        logger.info(f"Connectivity changed: {event.value}")

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")
        for subscription in list(self._subscriptions):
            subscription.push(event)
        return event

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a callback for transitions.

        Returns:
            A function that unregisters the callback
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self) -> Subscription[ConnectivityEvent]:
        """Transitions as an async stream, ended by ``close()``."""
        subscription: Subscription[ConnectivityEvent] = Subscription(
            on_close=lambda: self._subscriptions.remove(subscription) if subscription in self._subscriptions else None
        )
        self._subscriptions.append(subscription)
        return subscription

    async def probe(self) -> bool:
        """Check whether the backend answers and feed the result to ``notify``.

        Any HTTP response counts as reachable; only transport failures count as offline.
        """
        if not self.probe_url:
            return self._online
        try:
            await self.client.head(self.probe_url)
            reachable = True
        except httpx.TransportError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False
        self.notify(reachable)
        return reachable

    async def watch(self, interval: float = SyncConstants.CONNECTIVITY_CHECK_INTERVAL) -> None:
        """Probe every ``interval`` seconds until cancelled."""
        while True:
            await self.probe()
            await asyncio.sleep(interval)

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()
        self._listeners.clear()
        await self.client.aclose()
