"""
panic.py — Panic-button countdown.

Arming starts a countdown (default 10 s). If it is not cancelled, a
``panic`` alert with severity ``critical`` goes out through the relay.
Re-arming restarts the countdown; cancelling an unarmed subject does
nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set

from backend.app.alerts.models import AlertCategory, AlertRecord, RelayResult, Severity
from backend.app.alerts.relay import AlertRelay
from backend.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PANIC_MESSAGE = "Panic button activated — immediate assistance needed"


@dataclass
class _Countdown:
    task: asyncio.Task
    fires_at: datetime


class PanicCountdown:
    """Per-subject cancellable panic timers."""

    def __init__(self, relay: AlertRelay, seconds: float = 10.0):
        if seconds < 0:
            raise ValueError(f"Countdown must be >= 0 seconds, got {seconds}")
        self.relay = relay
        self.seconds = seconds
        self._countdowns: Dict[str, _Countdown] = {}
        # Countdowns past their delay whose alert is being sent
        self._firing: Set[asyncio.Task] = set()
        self.last_results: Dict[str, RelayResult] = {}

    def arm(
        self,
        subject_id: str,
        *,
        subject_name: Optional[str] = None,
        message: str = "",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> datetime:
        """Start (or restart) the countdown; returns when it fires."""
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required", field="subject_id")

        self.cancel(subject_id)
        fires_at = datetime.now(timezone.utc) + timedelta(seconds=self.seconds)
        task = asyncio.create_task(self._fire_after_delay(
            subject_id,
            subject_name=subject_name,
            message=message or DEFAULT_PANIC_MESSAGE,
            latitude=latitude,
            longitude=longitude,
            device_info=device_info or {},
        ))
        self._countdowns[subject_id] = _Countdown(task=task, fires_at=fires_at)
        logger.info(
            "Panic countdown armed (%.0fs)", self.seconds,
            extra={"subject_id": subject_id},
        )
        return fires_at

    def cancel(self, subject_id: str) -> bool:
        """Stop a running countdown; True if one was running."""
        countdown = self._countdowns.pop(subject_id, None)
        if countdown is None:
            return False
        countdown.task.cancel()
        logger.info("Panic countdown cancelled", extra={"subject_id": subject_id})
        return True

    def is_armed(self, subject_id: str) -> bool:
        return subject_id in self._countdowns

    def remaining_seconds(self, subject_id: str) -> Optional[float]:
        countdown = self._countdowns.get(subject_id)
        if countdown is None:
            return None
        delta = (countdown.fires_at - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, delta)

    async def _fire_after_delay(
        self,
        subject_id: str,
        *,
        subject_name: Optional[str],
        message: str,
        latitude: Optional[float],
        longitude: Optional[float],
        device_info: Dict[str, Any],
    ) -> RelayResult:
        await asyncio.sleep(self.seconds)

        # Past this point cancel() no longer interrupts the send
        task = asyncio.current_task()
        current = self._countdowns.get(subject_id)
        if current is not None and current.task is task:
            del self._countdowns[subject_id]
        self._firing.add(task)
        try:
            record = AlertRecord(
                subject_id=subject_id,
                subject_name=subject_name,
                category=AlertCategory.PANIC,
                severity=Severity.CRITICAL,
                message=message,
                latitude=latitude,
                longitude=longitude,
                device_info=device_info,
            )
            logger.warning(
                "Panic countdown expired — sending alert",
                extra={"subject_id": subject_id, "alert_id": record.alert_id},
            )
            result = await self.relay.send(record)
            self.last_results[subject_id] = result
            return result
        finally:
            self._firing.discard(task)

    async def shutdown(self) -> None:
        """Cancel pending countdowns and wait for alerts already being sent."""
        pending = [c.task for c in self._countdowns.values()]
        self._countdowns.clear()
        for task in pending:
            task.cancel()
        tasks = pending + list(self._firing)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
