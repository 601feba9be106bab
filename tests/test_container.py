from ticksentinel.container import Container, init_container
from ticksentinel.core.settings import Settings
from ticksentinel.core.settings import settings as process_settings
from ticksentinel.infrastructure.store import MemoryStore

from helpers import SYMBOL


def test_units_start_consumers_before_feed():
    container = Container(settings=Settings(symbols=[SYMBOL]))
    ids = [spec.id for spec in container.unit_specs()]
    assert ids == ["trade-engine", "decision-pool", "aggregation", "binance-feed"]


def test_audit_unit_only_when_database_enabled():
    container = Container(settings=Settings(symbols=[SYMBOL], db_enabled=True, db_url="sqlite+aiosqlite:///:memory:"))
    assert container.unit_specs()[0].id == "persistence"
    assert Container(settings=Settings(symbols=[SYMBOL])).persistence_listener is None


def test_components_are_shared():
    container = Container(settings=Settings(symbols=[SYMBOL]))
    assert isinstance(container.store, MemoryStore)
    assert container.publisher is container.publisher
    assert container.trade_engine.symbol == SYMBOL
    assert container.strategy_registry.names() == ["buyer-s1", "seller-s1"]


def test_default_container_uses_process_settings():
    assert init_container().settings is process_settings
    assert init_container(Settings(symbols=["ETHUSDT"])).settings is not process_settings
