"""
Pytest configuration and fixtures for order engine tests.
"""

import itertools
from datetime import datetime, time, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.config.constants import OrderStatus
from order_engine.models import (
    Base,
    Branch,
    Business,
    DurationTier,
    Item,
    OpeningHours,
    Order,
    OrderItem,
)
from order_engine.schemas import Scope
from order_engine.services.domain import build_domain_services


# Explicit ids for seeded catalog rows; orders and lines autoincrement
_id_counter = itertools.count(1000)


def next_id() -> int:
    return next(_id_counter)


# Monday 2026-03-02 12:00 UTC
FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

CUSTOMER = "whatsapp:+5491122334455"


class FakeClock:
    """Settable clock shared by services under test."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def services(db_session, clock):
    return build_domain_services(db_session, clock=clock)


# =============================================================================
# Seed data
# =============================================================================


@pytest_asyncio.fixture
async def seed_business(db_session):
    """Business open 09:00-22:00 every day, 5.00 delivery fee."""
    business = Business(
        id=1,
        name="Test Bistro",
        timezone="UTC",
        delivery_fee_cents=500,
        last_order_lead_minutes=0,
        cancelable_before_hours=2,
        menu_pdf_url="https://cdn.example.com/menu.pdf",
    )
    db_session.add(business)
    for day in range(7):
        db_session.add(
            OpeningHours(
                id=next_id(),
                business_id=business.id,
                day_of_week=day,
                open_time=time(9, 0),
                close_time=time(22, 0),
            )
        )
    await db_session.commit()
    return business


@pytest_asyncio.fixture
async def seed_branch(db_session, seed_business):
    branch = Branch(id=2, business_id=seed_business.id, name="Downtown")
    db_session.add(branch)
    await db_session.commit()
    return branch


@pytest.fixture
def scope(seed_business):
    return Scope(business_id=seed_business.id)


@pytest.fixture
def make_item(db_session, seed_business):
    """Factory for catalog items; keyword arguments override the defaults."""

    async def _make(**overrides) -> Item:
        values = {
            "id": next_id(),
            "business_id": seed_business.id,
            "name": "Item",
            "price_cents": 1000,
        }
        values.update(overrides)
        item = Item(**values)
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest_asyncio.fixture
async def pizza(make_item):
    return await make_item(name="Margherita", price_cents=1299, image_url="https://cdn.example.com/pizza.jpg")


@pytest_asyncio.fixture
async def soda(make_item):
    return await make_item(name="Lemonade", price_cents=499)


@pytest_asyncio.fixture
async def private_room(make_item):
    """Schedule-only item: one room, 60-minute bookings."""
    return await make_item(
        name="Private room",
        price_cents=5000,
        requires_scheduling=True,
        duration_minutes=60,
        capacity=1,
    )


@pytest_asyncio.fixture
async def kayak(db_session, make_item):
    """Three kayaks rented by the hour, with a 2-hour tier."""
    item = await make_item(
        name="Kayak",
        price_cents=1500,
        requires_scheduling=True,
        duration_minutes=60,
        capacity=3,
    )
    db_session.add(DurationTier(id=next_id(), item_id=item.id, duration_minutes=120, price_cents=2500))
    await db_session.commit()
    return item


@pytest.fixture
def make_booking(db_session, seed_business):
    """Insert a committed order with one line of ``item`` at ``start``."""

    async def _make(
        item: Item,
        start: datetime,
        quantity: int = 1,
        status: str = OrderStatus.ACCEPTED,
        duration_minutes: int | None = None,
        customer_id: str = "whatsapp:+5491100000000",
    ) -> Order:
        order = Order(
            business_id=seed_business.id,
            customer_id=customer_id,
            status=status,
            scheduled_for=start,
            subtotal_cents=item.price_cents * quantity,
            delivery_fee_cents=0,
            total_cents=item.price_cents * quantity,
        )
        db_session.add(order)
        await db_session.flush()
        db_session.add(
            OrderItem(
                order_id=order.id,
                item_id=item.id,
                name_snapshot=item.name,
                unit_price_cents=item.price_cents,
                quantity=quantity,
                duration_minutes=duration_minutes or item.duration_minutes,
            )
        )
        await db_session.commit()
        return order

    return _make
