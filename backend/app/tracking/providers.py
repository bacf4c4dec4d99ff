"""
providers.py — Platform location API seam.

A ``LocationProvider`` turns a subscription (``watch``) into a stream of
fix / error callbacks, mirroring the geolocation ``watchPosition`` /
``clearWatch`` pair. The watcher only talks to this interface, so tests
and alternative sources (device push, GPS daemon, replay files) plug in
without touching tracking logic.

PushLocationProvider
--------------------
Server-side implementation fed by the HTTP API: devices POST fixes and
error codes, and the provider fans them out to active watches. It honours
the two time-based options:

    timeout_ms         a watch that sees no fix for this long receives a
                       LocationTimeout (re-armed after each report)
    max_sample_age_ms  when a watch starts, the last pushed fix is
                       delivered immediately if it is younger than this
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from backend.app.core.errors import LocationError, LocationTimeout
from backend.app.tracking.models import PositionSample, TrackingOptions

logger = logging.getLogger(__name__)

FixCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[LocationError], None]


class LocationProvider(ABC):
    """Continuous position subscription source."""

    @abstractmethod
    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: TrackingOptions,
    ) -> int:
        """Start a subscription; returns a watch id for ``clear_watch``."""

    @abstractmethod
    def clear_watch(self, watch_id: int) -> None:
        """Cancel a subscription. Unknown ids are ignored."""


@dataclass
class _Watch:
    on_fix: FixCallback
    on_error: ErrorCallback
    options: TrackingOptions
    timer: Optional[asyncio.TimerHandle] = None


class PushLocationProvider(LocationProvider):
    """Location provider fed by fixes pushed from the device."""

    def __init__(self) -> None:
        self._watches: Dict[int, _Watch] = {}
        self._ids = itertools.count(1)
        self._last_fix: Optional[PositionSample] = None

    @property
    def active_watches(self) -> int:
        return len(self._watches)

    @property
    def last_fix(self) -> Optional[PositionSample]:
        return self._last_fix

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: TrackingOptions,
    ) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = _Watch(on_fix, on_error, options)
        self._arm_timer(watch_id)

        cached = self._last_fix
        if (
            cached is not None
            and options.max_sample_age_ms > 0
            and cached.age_ms() <= options.max_sample_age_ms
        ):
            logger.debug("Watch %d: delivering cached fix", watch_id)
            on_fix(cached)

        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        w = self._watches.pop(watch_id, None)
        if w is not None and w.timer is not None:
            w.timer.cancel()

    # ── Device-facing side ──

    def push_fix(self, sample: PositionSample) -> None:
        """Deliver a new fix to every active watch."""
        self._last_fix = sample
        for watch_id, w in list(self._watches.items()):
            self._arm_timer(watch_id)
            w.on_fix(sample)

    def push_error(self, error: LocationError) -> None:
        """Deliver a location error to every active watch."""
        for w in list(self._watches.values()):
            w.on_error(error)

    # ── Timeout handling ──

    def _arm_timer(self, watch_id: int) -> None:
        w = self._watches.get(watch_id)
        if w is None:
            return
        if w.timer is not None:
            w.timer.cancel()
            w.timer = None
        if w.options.timeout_ms <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync callers, CLI tools): timeouts are not enforced
            return
        w.timer = loop.call_later(
            w.options.timeout_ms / 1000.0, self._on_timeout, watch_id,
        )

    def _on_timeout(self, watch_id: int) -> None:
        w = self._watches.get(watch_id)
        if w is None:
            return
        w.timer = None
        logger.info("Watch %d: no fix within %d ms", watch_id, w.options.timeout_ms)
        w.on_error(LocationTimeout())
        self._arm_timer(watch_id)
