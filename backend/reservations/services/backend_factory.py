"""
Reservation backend factory.
Wires catalog, ledger and record store for the configured LEDGER_BACKEND.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from reservations.core.config import Settings, get_settings
from reservations.core.logging import get_logger
from reservations.db.base import Base
from reservations.db.session import build_sessionmaker, get_engine
from reservations.services.cache_service import CachedShowCatalog, RedisShowCache, build_show_cache
from reservations.services.interfaces import ShowCatalog
from reservations.services.memory_backend import (
    InMemoryBookingRecordStore,
    InMemorySeatLedger,
    InMemoryShowCatalog,
)
from reservations.services.reservation_service import ReservationCoordinator
from reservations.services.sql_backend import SqlBookingRecordStore, SqlSeatLedger, SqlShowCatalog

logger = get_logger(__name__)


@dataclass
class ReservationBackend:
    """Everything one process needs to serve bookings, with an explicit lifecycle."""

    coordinator: ReservationCoordinator
    kind: str
    engine: Optional[AsyncEngine] = None
    cache: Optional[RedisShowCache] = field(default=None)

    async def start(self, create_tables: bool = False) -> None:
        if self.engine is not None and create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("tables_created")

        if self.cache is not None:
            if await self.cache.connect():
                logger.info("redis_ready")
            else:
                logger.warning("redis_unavailable", message="Running without show cache")

    async def stop(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("reservation_backend_stopped", backend=self.kind)


def _with_cache(catalog: ShowCatalog, cache: Optional[RedisShowCache]) -> ShowCatalog:
    if cache is None:
        return catalog
    return CachedShowCatalog(catalog, cache)


def build_memory_backend(settings: Optional[Settings] = None) -> ReservationBackend:
    """In-process backend. Shows are registered through the catalog and ledger objects."""
    settings = settings or get_settings()
    coordinator = ReservationCoordinator(
        catalog=InMemoryShowCatalog(),
        ledger=InMemorySeatLedger(),
        store=InMemoryBookingRecordStore(),
        reservation_timeout=settings.RESERVATION_TIMEOUT_SECONDS,
        max_seats_per_booking=settings.MAX_SEATS_PER_BOOKING,
    )
    return ReservationBackend(coordinator=coordinator, kind="memory")


def build_sql_backend(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
) -> ReservationBackend:
    settings = settings or get_settings()
    engine = engine or get_engine()
    sessionmaker = build_sessionmaker(engine)
    cache = build_show_cache(settings)

    coordinator = ReservationCoordinator(
        catalog=_with_cache(SqlShowCatalog(sessionmaker), cache),
        ledger=SqlSeatLedger(sessionmaker, max_retries=settings.LEDGER_MAX_RETRIES),
        store=SqlBookingRecordStore(sessionmaker),
        reservation_timeout=settings.RESERVATION_TIMEOUT_SECONDS,
        max_seats_per_booking=settings.MAX_SEATS_PER_BOOKING,
    )
    return ReservationBackend(coordinator=coordinator, kind="sql", engine=engine, cache=cache)


def build_backend(settings: Optional[Settings] = None) -> ReservationBackend:
    """
    Build the configured backend.

    - sql (default): PostgreSQL/SQLite through SQLAlchemy, safe across processes
    - memory: single process only, state is lost on restart
    """
    settings = settings or get_settings()
    kind = settings.LEDGER_BACKEND.lower()

    if kind == "memory":
        backend = build_memory_backend(settings)
    elif kind == "sql":
        backend = build_sql_backend(settings)
    else:
        raise ValueError(f"Unknown LEDGER_BACKEND: {settings.LEDGER_BACKEND!r}")

    logger.info("reservation_backend_built", backend=backend.kind)
    return backend
