"""
Shared fixtures: an in-memory record store, a controllable clock and the
engine/reconciler pair wired to one dispatcher.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ["STORE_BACKEND"] = "memory"
os.environ["ENABLE_BACKGROUND_SWEEPS"] = "false"

from tableside.core.config import get_settings
from tableside.models import OrderItem
from tableside.services.events import EventDispatcher
from tableside.services.orders import AnalyticsRecorder, OrderLifecycleEngine
from tableside.services.store import MemoryRecordStore, RecordRepository, reset_record_store
from tableside.services.tables import TableSessionReconciler

RESTAURANT_ID = "restaurant-123"
SERVICE_START = datetime(2026, 10, 19, 19, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock the tests move forward by hand."""

    def __init__(self, now: datetime = SERVICE_START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("ENABLE_BACKGROUND_SWEEPS", "false")
    get_settings.cache_clear()
    reset_record_store()
    yield
    get_settings.cache_clear()
    reset_record_store()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def repository(store):
    return RecordRepository(store, purgeable_keys=["orderHistory", "menuAnalytics"])


@pytest.fixture
def dispatcher():
    dispatcher = EventDispatcher(name="test").start()
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def engine(repository, dispatcher, clock):
    return OrderLifecycleEngine(
        repository,
        dispatcher,
        analytics=AnalyticsRecorder(repository),
        tax_rate=0.05,
        clock=clock,
    )


@pytest.fixture
def reconciler(repository, engine, dispatcher, clock):
    reconciler = TableSessionReconciler(
        repository,
        engine,
        dispatcher,
        stale_after=timedelta(minutes=60),
        clock=clock,
    )
    reconciler.attach()
    yield reconciler
    reconciler.detach()


@pytest.fixture
async def tables(reconciler):
    """Tables 1-6 provisioned for the test restaurant."""
    return await reconciler.materialize_tables(RESTAURANT_ID, range(1, 7))


@pytest.fixture
def cart():
    """Two lines, subtotal 300, three portions."""
    return [
        OrderItem(item_id="paneer-tikka", name="Paneer Tikka", unit_price=150.0, quantity=1, kind="VEG"),
        OrderItem(item_id="dal-makhani", name="Dal Makhani", unit_price=75.0, quantity=2, kind="VEG"),
    ]
