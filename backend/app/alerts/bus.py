"""
bus.py — Local publish/subscribe for same-host listeners.

The relay publishes offline alerts (and admin-visible zone alerts) here so
an admin view running in the same service sees them immediately, without
waiting for the backend.

Contract:
    • fire-and-forget — no acknowledgement, no persistence
    • best effort while a listener is subscribed
    • at-least-once — listeners dedupe by ``record.alert_id``
    • a failing listener is logged and does not affect the others
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, List

from backend.app.alerts.models import BusMessage

logger = logging.getLogger(__name__)

Listener = Callable[[BusMessage], None]


class LocalBus(ABC):
    """Publisher/subscriber interface."""

    @abstractmethod
    def publish(self, message: BusMessage) -> None:
        """Deliver ``message`` to current subscribers."""

    @abstractmethod
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns an unsubscribe function."""


class InMemoryBus(LocalBus):
    """Synchronous in-process bus."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def publish(self, message: BusMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception(
                    "Bus listener failed on %s", message.type.value,
                    extra={"alert_id": message.record.alert_id},
                )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
