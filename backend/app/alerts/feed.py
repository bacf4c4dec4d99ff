"""
feed.py — Admin-side alert feed.

Listens on the local bus and keeps the most recent distinct alerts
(newest first, default 50) for an admin view. Messages are deduplicated
by ``alert_id``; a repeat updates the stored record (its status may have
moved on) without moving or double-counting it.

``refresh_from_store`` polls the offline queue, so alerts queued before
the feed subscribed still show up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.app.alerts.bus import LocalBus
from backend.app.alerts.models import AlertRecord, BusMessage
from backend.app.alerts.store import OfflineAlertStore
from backend.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

SOURCE_STORE = "STORE"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FeedEntry:
    record: AlertRecord
    source: str
    received_at: datetime = field(default_factory=_now)
    acknowledged_at: Optional[datetime] = None

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "received_at": self.received_at.isoformat(),
            "acknowledged": self.acknowledged,
            "acknowledged_at": (
                self.acknowledged_at.isoformat() if self.acknowledged_at else None
            ),
            "record": self.record.to_dict(),
        }


class AdminAlertFeed:
    """Bounded, deduplicated, newest-first view of bus traffic."""

    def __init__(
        self,
        bus: LocalBus,
        store: Optional[OfflineAlertStore] = None,
        max_items: int = 50,
    ):
        if max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {max_items}")
        self.store = store
        self.max_items = max_items
        self.offline_received = 0
        self._entries: List[FeedEntry] = []
        self._by_id: Dict[str, FeedEntry] = {}
        self._unsubscribe = bus.subscribe(self._on_message)

    def _on_message(self, message: BusMessage) -> None:
        self._add(message.record, message.type.value)

    def _add(self, record: AlertRecord, source: str) -> bool:
        existing = self._by_id.get(record.alert_id)
        if existing is not None:
            existing.record = record
            return False

        entry = FeedEntry(record=record, source=source)
        self._entries.insert(0, entry)
        self._by_id[record.alert_id] = entry
        if record.offline:
            self.offline_received += 1

        while len(self._entries) > self.max_items:
            dropped = self._entries.pop()
            self._by_id.pop(dropped.record.alert_id, None)

        logger.debug(
            "Feed received %s (%s)", record.category.value, source,
            extra={"alert_id": record.alert_id},
        )
        return True

    def entries(self, limit: Optional[int] = None) -> List[FeedEntry]:
        return list(self._entries[:limit] if limit else self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def refresh_from_store(self) -> int:
        """Pull queued records into the feed; returns how many were new."""
        if self.store is None:
            return 0
        added = 0
        for record in await self.store.list_records():
            if self._add(record, SOURCE_STORE):
                added += 1
        return added

    def acknowledge(self, alert_id: str) -> FeedEntry:
        entry = self._by_id.get(alert_id)
        if entry is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if entry.acknowledged_at is None:
            entry.acknowledged_at = _now()
            logger.info("Alert acknowledged", extra={"alert_id": alert_id})
        return entry

    def close(self) -> None:
        self._unsubscribe()
