"""
Pytest configuration and shared fixtures.

The tracker only talks to its collaborators through the protocols in
trailguard.domain.protocols, so unit tests run against small in-memory
fakes and a throwaway SQLite store.
"""
from decimal import Decimal

import pytest

from helpers import FakeExecution, FakePriceSource, RecordingNotifier
from trailguard.execution.position_tracker import PositionTracker
from trailguard.execution.rules import ExitRules
from trailguard.execution.scheduler import TrackingScheduler
from trailguard.storage.db import init_db
from trailguard.storage.position_store import SqlPositionStore


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


@pytest.fixture
def store(tmp_path):
    db = init_db(f"sqlite:///{tmp_path / 'positions.db'}")
    yield SqlPositionStore(db)
    db.dispose()


@pytest.fixture
def price_source():
    return FakePriceSource()


@pytest.fixture
def execution():
    return FakeExecution()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tracker(price_source, execution, store, notifier):
    return PositionTracker(
        price_source=price_source,
        execution=execution,
        store=store,
        notifier=notifier,
        rules=ExitRules(stoploss_percent=Decimal("20"), trailing_trigger_percent=Decimal("20")),
        scheduler=TrackingScheduler(interval_seconds=3600),
    )
