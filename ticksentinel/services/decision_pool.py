"""
TickSentinel – Decision Pool
=============================
N módulos de decisión independientes suscritos al stream de eventos.

FLUJO:
  EventBus (market_events)
       │
       ▼
  DecisionPool.run()
       │
       ├── Valida el payload (variante tipada) en la frontera
       ├── Para cada módulo ACTIVO del StrategyRegistry:
       │     decision = module.evaluate(event)      (errores aislados)
       │     BUY  → TradeIntent LONG
       │     SELL → TradeIntent SHORT
       └── EventBus.publish("trade_intents", intent)

Un módulo que lanza excepción no afecta a los demás ni al pool.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel

from ticksentinel.core.logging import get_logger
from ticksentinel.domain.entities.market_event import EventKind, MarketEvent, parse_market_event
from ticksentinel.domain.entities.trade_intent import Side, TradeIntent
from ticksentinel.domain.exceptions import ValidationError
from ticksentinel.infrastructure.event_bus import (
    MARKET_EVENTS_TOPIC,
    TRADE_INTENTS_TOPIC,
    EventBus,
)
from ticksentinel.services.strategy_registry import StrategyRegistry

logger = get_logger("decision_pool")


class Decision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class DecisionModule(ABC):
    """
    Interfaz de un módulo de decisión.

    Solo importa su contrato: recibe un MarketEvent y devuelve una
    decisión. Los parámetros de la posición viajan en el módulo.
    """

    def __init__(
        self,
        name: str,
        leverage: float,
        notional_usd: float,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> None:
        self.name = name
        self.leverage = leverage
        self.notional_usd = notional_usd
        self.stop_loss = stop_loss
        self.take_profit = take_profit

    @abstractmethod
    def evaluate(self, event: MarketEvent) -> Decision: ...

    def intent_for(self, decision: Decision) -> Optional[TradeIntent]:
        if decision == Decision.HOLD:
            return None
        return TradeIntent(
            strategy_name=self.name,
            side=Side.LONG if decision == Decision.BUY else Side.SHORT,
            leverage=self.leverage,
            notional_usd=self.notional_usd,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
        )


@dataclass(frozen=True)
class EventCondition:
    """
    Condición sobre un evento: tipo + ventana (opcional) + porcentaje.

    percentage ≥ 0 → el evento debe tener percentage ≥ umbral
    percentage < 0 → el evento debe tener percentage ≤ umbral
    """

    kind: EventKind
    percentage: float = 0.0
    window: str | None = None

    def matches(self, event: MarketEvent) -> bool:
        if event.kind != self.kind.value:
            return False
        if self.window is not None and event.window != self.window:
            return False
        if self.percentage < 0:
            return event.percentage <= self.percentage
        return event.percentage >= self.percentage


class ConditionStrategy(DecisionModule):
    """
    Módulo de referencia: decide `side` cuando el evento cumple
    ALGUNA de sus condiciones; HOLD en otro caso.
    """

    def __init__(
        self,
        name: str,
        conditions: Sequence[EventCondition],
        side: Side,
        leverage: float,
        notional_usd: float,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> None:
        super().__init__(name, leverage, notional_usd, stop_loss, take_profit)
        if not conditions:
            raise ValueError("ConditionStrategy requiere al menos una condición")
        self.conditions = tuple(conditions)
        self.side = side

    def evaluate(self, event: MarketEvent) -> Decision:
        if any(c.matches(event) for c in self.conditions):
            return Decision.BUY if self.side == Side.LONG else Decision.SELL
        return Decision.HOLD


class DecisionPool:
    """Distribuye eventos a los módulos activos y publica sus intenciones."""

    def __init__(self, event_bus: EventBus, registry: StrategyRegistry) -> None:
        self._event_bus = event_bus
        self._registry = registry
        self._queue: Optional[asyncio.Queue] = None
        self._evaluated = 0
        self._intents = 0
        self._errors = 0

    async def run(self) -> None:
        self._queue = await self._event_bus.subscribe(MARKET_EVENTS_TOPIC, "decision_pool")
        logger.info("DecisionPool iniciado (%d estrategias)", len(self._registry))
        try:
            while True:
                payload = await self._queue.get()
                await self.dispatch(payload)
        finally:
            await self._event_bus.unsubscribe(MARKET_EVENTS_TOPIC, self._queue)
            self._queue = None

    async def stop(self) -> None:
        logger.info(
            "DecisionPool detenido. Eventos: %d, intenciones: %d, errores: %d",
            self._evaluated, self._intents, self._errors,
        )

    async def dispatch(self, payload) -> List[TradeIntent]:
        """Evalúa un evento en todos los módulos activos."""
        if isinstance(payload, BaseModel):
            event = payload
        else:
            try:
                event = parse_market_event(payload)
            except ValidationError as e:
                logger.warning("Evento descartado: %s", e.message)
                return []

        self._evaluated += 1
        intents: List[TradeIntent] = []
        for module in self._registry.active_modules():
            try:
                intent = module.intent_for(module.evaluate(event))
            except Exception as e:
                self._errors += 1
                logger.error("Estrategia '%s' falló: %s", module.name, e, exc_info=True)
                continue
            if intent is None:
                continue
            await self._event_bus.publish(TRADE_INTENTS_TOPIC, intent)
            intents.append(intent)
            self._intents += 1
            logger.info(
                "📡 Intención %s de '%s' (%s %s)",
                intent.side.value, module.name, event.kind, event.window,
            )
        return intents

    @property
    def stats(self) -> dict:
        return {
            "evaluated": self._evaluated,
            "intents": self._intents,
            "errors": self._errors,
            "strategies": self._registry.names(),
        }
