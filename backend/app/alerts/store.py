"""
store.py — Offline alert queue (local durable store).

A bounded, ordered list of AlertRecords keyed by ``alert_id``:

    • append of an existing id replaces the older entry
    • ordering is by creation time (oldest first)
    • only the N most recent records are kept (default N = 50); the
      oldest are dropped when the cap is exceeded

Backends
--------
    MemoryAlertStore    in-process list (tests, ephemeral deployments)
    JsonFileAlertStore  whole-list JSON file, read → modify → atomic replace
    RedisAlertStore     hash of records + sorted-set index by creation time

Consistency: writers in the same process are serialised with a lock.
Two processes sharing one JSON file are last-write-wins and can lose an
entry if they write at the same moment; the bus publish that accompanies
every offline append covers local listeners in that case.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import redis.asyncio as aioredis

from backend.app.alerts.models import AlertRecord
from backend.app.core.errors import SafetyAPIError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 50

# Everything a malformed persisted record can raise while being parsed
UNREADABLE_RECORD_ERRORS = (ValueError, KeyError, TypeError, AttributeError, SafetyAPIError)


def _parse_record(item: Any) -> AlertRecord:
    if not isinstance(item, dict):
        raise TypeError(f"expected an alert object, got {type(item).__name__}")
    return AlertRecord.from_dict(item)


def _bounded(records: Iterable[AlertRecord], max_records: int) -> List[AlertRecord]:
    """Dedupe by id (last wins), order by creation, keep the newest N."""
    by_id: Dict[str, AlertRecord] = {}
    for record in records:
        by_id.pop(record.alert_id, None)
        by_id[record.alert_id] = record
    ordered = sorted(by_id.values(), key=lambda r: r.created_at)
    if len(ordered) > max_records:
        dropped = len(ordered) - max_records
        logger.warning(
            "Offline queue full — dropping %d oldest alert(s)", dropped,
            extra={"queue_depth": max_records},
        )
        ordered = ordered[dropped:]
    return ordered


class OfflineAlertStore(ABC):
    """Bounded offline queue interface."""

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        if max_records < 1:
            raise ValueError(f"max_records must be >= 1, got {max_records}")
        self.max_records = max_records

    @abstractmethod
    async def append(self, record: AlertRecord) -> int:
        """Add or replace ``record``; returns the queue depth afterwards."""

    @abstractmethod
    async def list_records(self) -> List[AlertRecord]:
        """All queued records, oldest first."""

    @abstractmethod
    async def remove(self, alert_ids: Iterable[str]) -> int:
        """Drop records by id; returns how many were removed."""

    async def count(self) -> int:
        return len(await self.list_records())

    async def clear(self) -> None:
        await self.remove([r.alert_id for r in await self.list_records()])

    async def close(self) -> None:
        """Release resources (no-op by default)."""


# ═══════════════════════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════════════════════

class MemoryAlertStore(OfflineAlertStore):

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        super().__init__(max_records)
        self._records: List[AlertRecord] = []

    async def append(self, record: AlertRecord) -> int:
        self._records = _bounded([*self._records, record], self.max_records)
        return len(self._records)

    async def list_records(self) -> List[AlertRecord]:
        return list(self._records)

    async def remove(self, alert_ids: Iterable[str]) -> int:
        ids = set(alert_ids)
        before = len(self._records)
        self._records = [r for r in self._records if r.alert_id not in ids]
        return before - len(self._records)


# ═══════════════════════════════════════════════════════════════════════════
# JSON file
# ═══════════════════════════════════════════════════════════════════════════

class JsonFileAlertStore(OfflineAlertStore):
    """Offline queue persisted as a JSON list on local disk."""

    def __init__(self, path: Path, max_records: int = DEFAULT_MAX_RECORDS):
        super().__init__(max_records)
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> List[AlertRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            if not isinstance(raw, list):
                raise TypeError(f"expected a JSON list, got {type(raw).__name__}")
            return [_parse_record(item) for item in raw]
        except UNREADABLE_RECORD_ERRORS as e:
            # Keep the unreadable file for inspection; start a fresh queue
            corrupt = self.path.with_suffix(self.path.suffix + ".corrupt")
            os.replace(self.path, corrupt)
            logger.error("Offline queue unreadable (%s) — moved to %s", e, corrupt)
            return []

    def _write(self, records: List[AlertRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps([r.to_dict() for r in records], indent=2),
            encoding="utf-8",
        )
        os.replace(tmp, self.path)

    async def append(self, record: AlertRecord) -> int:
        async with self._lock:
            records = _bounded([*self._read(), record], self.max_records)
            self._write(records)
            return len(records)

    async def list_records(self) -> List[AlertRecord]:
        async with self._lock:
            return self._read()

    async def remove(self, alert_ids: Iterable[str]) -> int:
        ids = set(alert_ids)
        if not ids:
            return 0
        async with self._lock:
            records = self._read()
            kept = [r for r in records if r.alert_id not in ids]
            if len(kept) != len(records):
                self._write(kept)
            return len(records) - len(kept)


# ═══════════════════════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════════════════════

class RedisAlertStore(OfflineAlertStore):
    """
    Offline queue in Redis.

    Keys:
        {prefix}:records   HASH   alert_id → JSON record
        {prefix}:index     ZSET   alert_id scored by created_at (epoch s)
    """

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Any]],
        prefix: str = "offline_alerts",
        max_records: int = DEFAULT_MAX_RECORDS,
    ):
        super().__init__(max_records)
        self._client_factory = client_factory
        self.records_key = f"{prefix}:records"
        self.index_key = f"{prefix}:index"

    async def append(self, record: AlertRecord) -> int:
        client = await self._client_factory()
        await client.hset(self.records_key, record.alert_id, json.dumps(record.to_dict()))
        await client.zadd(self.index_key, {record.alert_id: record.created_at.timestamp()})

        depth = await client.zcard(self.index_key)
        if depth > self.max_records:
            overflow = await client.zrange(self.index_key, 0, depth - self.max_records - 1)
            if overflow:
                await client.hdel(self.records_key, *overflow)
                await client.zrem(self.index_key, *overflow)
                logger.warning(
                    "Offline queue full — dropped %d oldest alert(s)", len(overflow),
                    extra={"queue_depth": self.max_records},
                )
            depth = self.max_records
        return depth

    async def list_records(self) -> List[AlertRecord]:
        client = await self._client_factory()
        ids = await client.zrange(self.index_key, 0, -1)
        if not ids:
            return []
        raws = await client.hmget(self.records_key, ids)
        records: List[AlertRecord] = []
        for alert_id, raw in zip(ids, raws):
            if raw is None:
                logger.warning("Index entry %s has no record — skipping", alert_id)
                continue
            try:
                records.append(_parse_record(json.loads(raw)))
            except UNREADABLE_RECORD_ERRORS as e:
                logger.error("Unreadable offline record %s (%s) — skipping", alert_id, e)
        return records

    async def remove(self, alert_ids: Iterable[str]) -> int:
        ids = list(alert_ids)
        if not ids:
            return 0
        client = await self._client_factory()
        await client.hdel(self.records_key, *ids)
        return int(await client.zrem(self.index_key, *ids))

    async def count(self) -> int:
        client = await self._client_factory()
        return int(await client.zcard(self.index_key))


def build_store(
    kind: str,
    *,
    path: Optional[str] = None,
    max_records: int = DEFAULT_MAX_RECORDS,
    redis_factory: Optional[Callable[[], Awaitable[aioredis.Redis]]] = None,
    redis_prefix: str = "offline_alerts",
) -> OfflineAlertStore:
    """Construct the configured store (``file`` | ``redis`` | ``memory``)."""
    if kind == "memory":
        return MemoryAlertStore(max_records)
    if kind == "file":
        if not path:
            raise ValueError("File store needs a path")
        return JsonFileAlertStore(Path(path), max_records)
    if kind == "redis":
        if redis_factory is None:
            raise ValueError("Redis store needs a client factory")
        return RedisAlertStore(redis_factory, prefix=redis_prefix, max_records=max_records)
    raise ValueError(f"Unknown offline store: {kind}")
