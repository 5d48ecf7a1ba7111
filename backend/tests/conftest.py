"""
Pytest fixtures for the reservation core, the SQL backend and the HTTP API.

Core and API tests run against the in-memory backend. SQL tests use a
throwaway SQLite file per test so that concurrent sessions really hit
separate connections.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("LEDGER_BACKEND", "memory")

from datetime import date
from typing import AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from reservations.core.config import get_settings
from reservations.db.base import Base
from reservations.db.session import build_sessionmaker
from reservations.main import create_app
from reservations.models.show import Show
from reservations.services.backend_factory import (
    ReservationBackend,
    build_memory_backend,
    build_sql_backend,
)
from reservations.services.interfaces import ShowInfo
from reservations.services.reservation_service import ReservationCoordinator

SHOW_ID = 1
TOTAL_SEATS = 10


def make_show(show_id: int = SHOW_ID, total_seats: int = TOTAL_SEATS) -> ShowInfo:
    return ShowInfo(
        id=show_id,
        name="Evening Show",
        movie_id="movie-inception",
        theatre_id="theatre-pvr-1",
        date=date(2026, 12, 24),
        time="19:30",
        ticket_price=250.0,
        total_seats=total_seats,
    )


def add_show(backend: ReservationBackend, show: ShowInfo) -> ShowInfo:
    """Register a show with the in-memory catalog and ledger (catalog management's job)."""
    backend.coordinator.catalog.add_show(show)
    backend.coordinator.ledger.open_show(show.id)
    return show


def make_token(user_id: str, role: str = None) -> str:
    settings = get_settings()
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.fixture
def memory_backend() -> ReservationBackend:
    backend = build_memory_backend()
    add_show(backend, make_show())
    return backend


@pytest.fixture
def coordinator(memory_backend: ReservationBackend) -> ReservationCoordinator:
    return memory_backend.coordinator


@pytest_asyncio.fixture
async def client(memory_backend: ReservationBackend) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over an app wired to the in-memory backend."""
    app = create_app(memory_backend)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('user-a')}"}


@pytest.fixture
def other_auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('user-b')}"}


@pytest.fixture
def operator_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('ops-1', role=get_settings().OPERATOR_ROLE)}"}


@pytest_asyncio.fixture
async def sql_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with build_sessionmaker(engine)() as session:
        session.add(
            Show(
                id=SHOW_ID,
                name="Evening Show",
                movie_id="movie-inception",
                theatre_id="theatre-pvr-1",
                date=date(2026, 12, 24),
                time="19:30",
                ticket_price=250.0,
                total_seats=TOTAL_SEATS,
                seat_holds={},
            )
        )
        await session.commit()

    yield engine
    await engine.dispose()


@pytest.fixture
def sql_backend(sql_engine: AsyncEngine) -> ReservationBackend:
    return build_sql_backend(get_settings(), engine=sql_engine)
