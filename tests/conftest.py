import pytest

from ticksentinel.core.settings import Settings
from ticksentinel.infrastructure.event_bus import EventBus
from ticksentinel.infrastructure.store import MemoryStore

from helpers import SYMBOL


@pytest.fixture
def settings():
    return Settings(symbols=[SYMBOL], redis_enabled=False, db_enabled=False)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def bus():
    return EventBus(max_queue_size=100)
