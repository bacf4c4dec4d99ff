"""
watcher.py — Position Watcher.

Owns one provider subscription at a time and fans each fix out to its
subscribers as a ``PositionSample``. Location failures are forwarded to
the subscribers' error callbacks as distinct ``LocationError`` subclasses;
the watcher never retries on its own.

The watcher keeps the most recent N samples for display (N defaults to
50). Samples are passed through in arrival order; stale or out-of-order
fixes are not detected.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional, Tuple

from backend.app.core.errors import LocationError
from backend.app.tracking.models import PositionSample, TrackingOptions
from backend.app.tracking.providers import LocationProvider

logger = logging.getLogger(__name__)

SampleCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[LocationError], None]


@dataclass(frozen=True)
class TrackingHandle:
    """Returned by ``start_tracking``; pass to ``stop_tracking``."""
    watch_id: int
    options: TrackingOptions
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PositionWatcher:
    """Continuous position stream over a ``LocationProvider``."""

    def __init__(self, provider: LocationProvider, history_size: int = 50):
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")
        self._provider = provider
        self._history: Deque[PositionSample] = deque(maxlen=history_size)
        self._subscribers: List[Tuple[SampleCallback, Optional[ErrorCallback]]] = []
        self._handle: Optional[TrackingHandle] = None

    # ── Subscription ──

    def subscribe(
        self,
        on_sample: SampleCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Register callbacks; returns an unsubscribe function."""
        entry = (on_sample, on_error)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    # ── Lifecycle ──

    @property
    def is_tracking(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> Optional[TrackingHandle]:
        return self._handle

    def start_tracking(self, options: Optional[TrackingOptions] = None) -> TrackingHandle:
        """Start the provider subscription. Already tracking → current handle."""
        if self._handle is not None:
            return self._handle

        opts = options or TrackingOptions()
        # Handle is set before watch() so a cached fix delivered
        # synchronously already sees is_tracking == True
        self._handle = TrackingHandle(watch_id=-1, options=opts)
        watch_id = self._provider.watch(self._on_fix, self._on_error, opts)
        self._handle = TrackingHandle(
            watch_id=watch_id, options=opts, started_at=self._handle.started_at,
        )
        logger.info(
            "Tracking started (watch=%d, high_accuracy=%s, timeout=%dms)",
            watch_id, opts.high_accuracy, opts.timeout_ms,
        )
        return self._handle

    def stop_tracking(self, handle: Optional[TrackingHandle] = None) -> None:
        """Cancel the subscription. Idempotent; stale handles are ignored."""
        current = self._handle
        if current is None:
            return
        if handle is not None and handle.watch_id != current.watch_id:
            return
        self._provider.clear_watch(current.watch_id)
        self._handle = None
        logger.info("Tracking stopped (watch=%d)", current.watch_id)

    # ── History ──

    @property
    def last_sample(self) -> Optional[PositionSample]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> List[PositionSample]:
        return list(self._history)

    # ── Provider callbacks ──

    def _on_fix(self, sample: PositionSample) -> None:
        self._history.append(sample)
        logger.debug(
            "Fix %.6f, %.6f (±%.0fm)",
            sample.latitude, sample.longitude, sample.accuracy,
        )
        for on_sample, _ in list(self._subscribers):
            on_sample(sample)

    def _on_error(self, error: LocationError) -> None:
        logger.warning("Location error [%s]: %s", error.error_code, error.message)
        for _, on_error in list(self._subscribers):
            if on_error is not None:
                on_error(error)
