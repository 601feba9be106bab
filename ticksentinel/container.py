"""
TickSentinel – Dependency Injection Container
==============================================
Único lugar donde se crean las dependencias concretas.

Cada componente se construye perezosamente (singleton por contenedor)
y las unidades de larga duración se entregan al supervisor como
UnitSpec.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ticksentinel.core.settings import Settings
from ticksentinel.core.settings import settings as default_settings
from ticksentinel.domain.entities.market_event import EventKind
from ticksentinel.domain.entities.trade_intent import Side
from ticksentinel.infrastructure.binance_client import BinanceStreamClient
from ticksentinel.infrastructure.database import DatabaseManager
from ticksentinel.infrastructure.event_bus import EventBus
from ticksentinel.infrastructure.persistence_listener import PersistenceListener
from ticksentinel.infrastructure.store import KeyValueStore, MemoryStore, RedisStore
from ticksentinel.application.process_sample_usecase import ProcessSampleUseCase
from ticksentinel.services.decision_pool import ConditionStrategy, DecisionPool, EventCondition
from ticksentinel.services.event_publisher import EventPublisher
from ticksentinel.services.interval_aggregator import (
    minute_price_aggregator,
    minute_volume_aggregator,
    second_price_aggregator,
)
from ticksentinel.services.strategy_registry import StrategyRegistry
from ticksentinel.services.supervisor import UnitSpec, WorkerSupervisor
from ticksentinel.services.trade_engine import TradeLifecycleEngine


def default_strategies(settings: Settings) -> List[ConditionStrategy]:
    """Módulos de referencia: seguir presión masiva compradora/vendedora."""
    return [
        ConditionStrategy(
            name="buyer-s1",
            conditions=[EventCondition(kind=EventKind.MASS_BUY, percentage=85.0)],
            side=Side.LONG,
            leverage=settings.default_leverage,
            notional_usd=settings.default_notional_usd,
            stop_loss=0.01,
            take_profit=0.02,
        ),
        ConditionStrategy(
            name="seller-s1",
            conditions=[EventCondition(kind=EventKind.MASS_SELL, percentage=70.0)],
            side=Side.SHORT,
            leverage=settings.default_leverage,
            notional_usd=settings.default_notional_usd,
            stop_loss=0.01,
            take_profit=0.02,
        ),
    ]


@dataclass
class Container:
    """Contenedor de inyección de dependencias."""

    settings: Settings = field(default_factory=Settings)
    _instances: Dict[str, Any] = field(default_factory=dict)

    def _get(self, name: str, factory):
        if name not in self._instances:
            self._instances[name] = factory()
        return self._instances[name]

    # ==================== Infraestructura ====================

    @property
    def event_bus(self) -> EventBus:
        return self._get("event_bus", lambda: EventBus(self.settings.event_bus_max_queue_size))

    @property
    def store(self) -> KeyValueStore:
        def build() -> KeyValueStore:
            if self.settings.redis_enabled:
                return RedisStore(self.settings.redis_url)
            return MemoryStore()
        return self._get("store", build)

    @property
    def feed_client(self) -> BinanceStreamClient:
        return self._get("feed_client", lambda: BinanceStreamClient(self.event_bus, self.settings))

    @property
    def database(self) -> Optional[DatabaseManager]:
        if not self.settings.db_enabled:
            return None
        return self._get(
            "database", lambda: DatabaseManager(self.settings.db_url, echo=self.settings.db_echo)
        )

    @property
    def persistence_listener(self) -> Optional[PersistenceListener]:
        if self.database is None:
            return None
        return self._get(
            "persistence_listener", lambda: PersistenceListener(self.event_bus, self.database)
        )

    # ==================== Servicios ====================

    @property
    def minute_prices(self):
        return self._get("minute_prices", lambda: minute_price_aggregator(self.settings))

    @property
    def second_prices(self):
        return self._get("second_prices", lambda: second_price_aggregator(self.settings))

    @property
    def minute_volumes(self):
        return self._get("minute_volumes", lambda: minute_volume_aggregator(self.settings))

    @property
    def publisher(self) -> EventPublisher:
        return self._get(
            "publisher", lambda: EventPublisher(self.store, self.event_bus, self.settings)
        )

    @property
    def process_sample(self) -> ProcessSampleUseCase:
        return self._get(
            "process_sample",
            lambda: ProcessSampleUseCase(
                event_bus=self.event_bus,
                store=self.store,
                publisher=self.publisher,
                minute_prices=self.minute_prices,
                second_prices=self.second_prices,
                minute_volumes=self.minute_volumes,
            ),
        )

    @property
    def strategy_registry(self) -> StrategyRegistry:
        def build() -> StrategyRegistry:
            registry = StrategyRegistry()
            for module in default_strategies(self.settings):
                registry.register(module)
            return registry
        return self._get("strategy_registry", build)

    @property
    def decision_pool(self) -> DecisionPool:
        return self._get(
            "decision_pool", lambda: DecisionPool(self.event_bus, self.strategy_registry)
        )

    @property
    def trade_engine(self) -> TradeLifecycleEngine:
        return self._get(
            "trade_engine",
            lambda: TradeLifecycleEngine(self.store, self.event_bus, self.settings),
        )

    @property
    def supervisor(self) -> WorkerSupervisor:
        return self._get(
            "supervisor",
            lambda: WorkerSupervisor(
                base_delay=self.settings.restart_base_delay,
                max_delay=self.settings.restart_max_delay,
                reset_after=self.settings.restart_reset_after,
            ),
        )

    # ==================== Unidades ====================

    def unit_specs(self) -> List[UnitSpec]:
        """Unidades en orden de arranque (consumidores antes que el feed)."""
        specs = []
        listener = self.persistence_listener
        if listener is not None:
            specs.append(UnitSpec("persistence", "persistence", listener.run, listener.stop))
        specs += [
            UnitSpec("trade-engine", "trade_engine", self.trade_engine.run, self.trade_engine.stop),
            UnitSpec("decision-pool", "decision_pool", self.decision_pool.run, self.decision_pool.stop),
            UnitSpec("aggregation", "aggregation", self.process_sample.run, self.process_sample.stop),
            UnitSpec("binance-feed", "ingestor", self.feed_client.run, self.feed_client.stop),
        ]
        return specs


_container: Optional[Container] = None


def init_container(settings: Optional[Settings] = None) -> Container:
    global _container
    _container = Container(settings=settings or default_settings)
    return _container


def get_container() -> Container:
    if _container is None:
        return init_container()
    return _container
