"""
Pytest configuration and fixtures for Parts Store tests.
"""
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RESERVATION_SWEEP_ENABLED"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from parts_store.core.database import Base  # noqa: E402
from parts_store.models import Product  # noqa: E402

T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for reservation expiry tests."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite database with every table created."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


def make_session_factory(engine):
    """
    Drop-in replacement for get_db_session() bound to `engine`.

    Usage:
        async with factory() as db:
            ...
    """
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def factory():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def file_db_engine(tmp_path):
    """
    SQLite file database with a real connection pool, so every session
    gets its own connection and its own transaction.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'parts_store.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_session_factory(file_db_engine):
    return make_session_factory(file_db_engine)


@pytest_asyncio.fixture
async def db_session(db_engine):
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session


async def insert_product(
    factory,
    sku: str,
    stock: int = 1,
    price: str = "20.00",
    weight_kg=1.0,
    height_cm=10.0,
    width_cm=10.0,
    depth_cm=10.0,
    is_active: bool = True,
    name: str = None,
) -> int:
    """Insert a product through `factory` and return its id."""
    async with factory() as db:
        product = Product(
            sku=sku,
            name=name or f"Part {sku}",
            price=Decimal(price),
            stock=stock,
            is_active=is_active,
            weight_kg=weight_kg,
            height_cm=height_cm,
            width_cm=width_cm,
            depth_cm=depth_cm,
        )
        db.add(product)
        await db.flush()
        return product.id


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return its id."""
    counter = {"n": 0}

    async def _make_product(
        stock: int = 1,
        price: str = "20.00",
        weight_kg=1.0,
        height_cm=10.0,
        width_cm=10.0,
        depth_cm=10.0,
        is_active: bool = True,
        name: str = None,
    ) -> int:
        counter["n"] += 1
        return await insert_product(
            session_factory,
            sku=f"SKU-{counter['n']:04d}",
            stock=stock,
            price=price,
            weight_kg=weight_kg,
            height_cm=height_cm,
            width_cm=width_cm,
            depth_cm=depth_cm,
            is_active=is_active,
            name=name or f"Part {counter['n']}",
        )

    return _make_product


@pytest_asyncio.fixture
async def api_client(db_engine, session_factory):
    """
    httpx client against the app, with the database, sweep scheduler and
    pricing table bound to the test database.
    """
    from httpx import ASGITransport, AsyncClient

    from parts_store.api.deps import get_carrier_pricing_table
    from parts_store.core.database import get_db
    from parts_store.jobs.reservation_reclaim import ReclaimScheduler, get_reclaim_scheduler
    from parts_store.main import app
    from parts_store.services.carrier_pricing import CarrierPricingTable

    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    scheduler = ReclaimScheduler(session_factory=session_factory)
    pricing_table = CarrierPricingTable(session_factory=session_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_reclaim_scheduler] = lambda: scheduler
    app.dependency_overrides[get_carrier_pricing_table] = lambda: pricing_table

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
