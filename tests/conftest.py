"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from recall.core.models import Item  # noqa: E402
from recall.db.store import InMemoryAggregateStore  # noqa: E402
from recall.scheduling.review_processor import ReviewProcessor  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def t0():
    """Reference time shared by the clock and item factories."""
    return T0


@pytest.fixture
def clock():
    """A clock pinned to 2024-03-01 09:00 UTC."""
    return FakeClock()


@pytest.fixture
def make_item():
    """Factory for items due relative to T0."""

    def _make(item_id: str, due_in_days: float = 0.0, **fields) -> Item:
        fields.setdefault("prompt", f"prompt {item_id}")
        fields.setdefault("answer", f"answer {item_id}")
        return Item(id=item_id, due_at=T0 + timedelta(days=due_in_days), **fields)

    return _make


@pytest.fixture
def sample_item():
    """An item reviewed three days before T0."""
    return Item(
        id="capital-fr",
        prompt="What is the capital of France?",
        answer="Paris",
        memory_strength=2.0,
        difficulty_rating=0.3,
        last_reviewed_at=T0 - timedelta(days=3),
        times_correct=2,
        times_incorrect=0,
        interval_days=3.0,
        due_at=T0,
    )


@pytest.fixture
def memory_store():
    return InMemoryAggregateStore()


@pytest.fixture
def processor(memory_store, clock):
    """Processor over an in-memory store with learner 'ada' registered."""
    processor = ReviewProcessor(memory_store, clock=clock)
    processor.create_learner("ada")
    return processor
