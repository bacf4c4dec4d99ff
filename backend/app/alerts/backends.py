"""
backends.py — Hosted alert backend writers.

The relay hands each record to an ``AlertBackend``; success means the
record is durably stored remotely and can leave the offline queue.

Implementations
---------------
    HttpAlertBackend   PostgREST insert (Supabase ``/rest/v1/{table}``)
    SqlAlertBackend    direct insert via SQLAlchemy async (asyncpg / aiosqlite)

Both raise ``ExternalServiceError`` on any failure; the relay turns that
into an offline fallback, never into a user-facing error. A row whose id
already exists counts as stored, so replaying a record whose first write
landed (but whose response was lost) does not wedge the queue.

Row written (``emergency_alerts``):

    id, user_id, user_name, type, message, severity,
    location_lat, location_lng, status='active', zone_id,
    created_at, device_info, offline_stored_at, synced_at
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from backend.app.alerts.models import AlertRecord
from backend.app.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class AlertBackend(ABC):
    """Remote alert sink."""

    name: str = "backend"

    @abstractmethod
    async def insert_alert(
        self,
        record: AlertRecord,
        synced_at: Optional[datetime] = None,
    ) -> None:
        """
        Store one alert remotely.

        ``synced_at`` is set when the record is being replayed from the
        offline queue.

        Raises
        ------
        ExternalServiceError
            The write did not succeed.
        """

    async def close(self) -> None:
        """Release connections (no-op by default)."""


# ═══════════════════════════════════════════════════════════════════════════
# PostgREST / Supabase
# ═══════════════════════════════════════════════════════════════════════════

class HttpAlertBackend(AlertBackend):
    """Insert rows through the hosted REST endpoint."""

    name = "supabase"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "emergency_alerts",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.table = table
        self.timeout = timeout
        self._api_key = api_key
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def insert_alert(
        self,
        record: AlertRecord,
        synced_at: Optional[datetime] = None,
    ) -> None:
        client = await self._get_client()
        row = record.to_backend_row(synced_at)
        t0 = time.perf_counter()

        try:
            response = await client.post(self.endpoint, json=row, headers=self._headers())
            if response.status_code == 409:
                # Primary key already present: an earlier attempt landed
                logger.info(
                    "Alert already stored via %s", self.name,
                    extra={"alert_id": record.alert_id},
                )
                return
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                self.name,
                f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                alert_id=record.alert_id,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                self.name, str(e) or type(e).__name__, alert_id=record.alert_id,
            ) from e

        logger.info(
            "Alert stored via %s", self.name,
            extra={
                "alert_id": record.alert_id,
                "duration_ms": round((time.perf_counter() - t0) * 1000, 1),
            },
        )


# ═══════════════════════════════════════════════════════════════════════════
# SQL (SQLAlchemy async)
# ═══════════════════════════════════════════════════════════════════════════

metadata = MetaData()

emergency_alerts = Table(
    "emergency_alerts",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(128), nullable=False, index=True),
    Column("user_name", String(256)),
    Column("type", String(32), nullable=False),
    Column("message", Text, nullable=False, default=""),
    Column("severity", String(16), nullable=False),
    Column("location_lat", Float),
    Column("location_lng", Float),
    Column("status", String(16), nullable=False, default="active"),
    Column("zone_id", String(128)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("device_info", JSON),
    Column("offline_stored_at", DateTime(timezone=True)),
    Column("synced_at", DateTime(timezone=True)),
)


def _sql_values(record: AlertRecord, synced_at: Optional[datetime]) -> Dict[str, Any]:
    row = record.to_backend_row(synced_at)
    # DateTime columns take datetime objects, not ISO strings
    row["created_at"] = record.created_at
    row["offline_stored_at"] = record.stored_at
    row["synced_at"] = synced_at
    return row


class SqlAlertBackend(AlertBackend):
    """Insert rows directly into the alerts table."""

    name = "database"

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        self.engine = engine or create_async_engine(database_url, echo=echo, future=True)

    async def create_schema(self) -> None:
        """Create the alerts table (dev/test only — use migrations in production)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Alert table initialised")

    async def insert_alert(
        self,
        record: AlertRecord,
        synced_at: Optional[datetime] = None,
    ) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    emergency_alerts.insert().values(**_sql_values(record, synced_at))
                )
        except IntegrityError:
            logger.info(
                "Alert already stored via %s", self.name,
                extra={"alert_id": record.alert_id},
            )
            return
        except SQLAlchemyError as e:
            raise ExternalServiceError(
                self.name, type(e).__name__, alert_id=record.alert_id,
            ) from e
        except OSError as e:
            raise ExternalServiceError(
                self.name, str(e), alert_id=record.alert_id,
            ) from e

        logger.info("Alert stored via %s", self.name, extra={"alert_id": record.alert_id})

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed")
