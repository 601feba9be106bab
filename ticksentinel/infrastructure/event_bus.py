"""
TickSentinel – Event Bus (asyncio.Queue fan-out)
=================================================
Bus de eventos interno para desacoplar productores (ingestor, publisher,
pool de decisión) de consumidores (agregación, estrategias, motor de
trading, persistencia).

Arquitectura:
  ┌──────────┐          ┌───────────┐
  │ Producer │──evento─▸│ Event Bus │──▸ Queue consumidor 1
  └──────────┘          │ (fan-out) │──▸ Queue consumidor 2
                        └───────────┘──▸ Queue consumidor N

CONTRAPRESIÓN:
- Cada consumidor tiene su propia asyncio.Queue con tamaño limitado.
- Si la cola está llena se aplica la política de overflow de ESA
  suscripción:
    · DROP_OLDEST → se descarta el mensaje más antiguo y entra el nuevo
    · REJECT_NEW  → el mensaje nuevo se descarta, la cola no cambia
- El productor nunca se bloquea; un consumidor lento solo se perjudica
  a sí mismo.

ENTREGA:
- Solo reciben los suscriptores registrados al momento de publicar
  (no hay backlog). La recuperación es vía historial durable.
- Un error entregando a un suscriptor no afecta a los demás.

THREAD-SAFETY:
- asyncio.Queue es safe dentro del mismo event loop, que es nuestro caso.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from ticksentinel.core.logging import get_logger

logger = get_logger("event_bus")

# Tópicos estándar
SAMPLES_TOPIC = "samples"
MARKET_EVENTS_TOPIC = "market_events"
TRADE_INTENTS_TOPIC = "trade_intents"
POSITION_OPENED_TOPIC = "position_opened"
POSITION_CLOSED_TOPIC = "position_closed"


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    REJECT_NEW = "reject_new"


@dataclass
class Subscription:
    """Cola exclusiva de un consumidor en un tópico."""

    topic: str
    consumer_name: str
    queue: asyncio.Queue
    policy: OverflowPolicy
    dropped: int = 0

    def offer(self, data: Any) -> bool:
        """
        Encola sin bloquear aplicando la política de overflow.
        Returns True si `data` quedó encolado.
        """
        if self.queue.full():
            if self.policy == OverflowPolicy.REJECT_NEW:
                self.dropped += 1
                logger.warning(
                    "Cola llena para '%s' en tópico '%s' – mensaje nuevo rechazado",
                    self.consumer_name, self.topic,
                )
                return False
            try:
                self.queue.get_nowait()
                self.dropped += 1
                logger.warning(
                    "Cola llena para '%s' en tópico '%s' – mensaje antiguo descartado",
                    self.consumer_name, self.topic,
                )
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(data)
        return True


class EventBus:
    """Fan-out event bus basado en asyncio.Queue."""

    def __init__(self, max_queue_size: int = 10_000) -> None:
        self._max_queue_size = max_queue_size
        # topic → lista de suscripciones
        self._subscribers: Dict[str, list[Subscription]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        topic: str,
        consumer_name: str,
        policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        max_queue_size: int | None = None,
    ) -> asyncio.Queue:
        """
        Registrar un consumidor en un tópico.
        Retorna la Queue exclusiva de ese consumidor.
        """
        async with self._lock:
            size = max_queue_size or self._max_queue_size
            subscription = Subscription(
                topic=topic,
                consumer_name=consumer_name,
                queue=asyncio.Queue(maxsize=size),
                policy=policy,
            )
            self._subscribers.setdefault(topic, []).append(subscription)
            logger.info(
                "Consumidor '%s' suscrito a tópico '%s' (max_queue=%d, policy=%s)",
                consumer_name, topic, size, policy.value,
            )
            return subscription.queue

    async def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Quitar una suscripción concreta (p.ej. al reiniciar una unidad)."""
        async with self._lock:
            subs = self._subscribers.get(topic, [])
            self._subscribers[topic] = [s for s in subs if s.queue is not queue]

    async def publish(self, topic: str, data: Any) -> int:
        """
        Publicar un evento a todos los suscriptores actuales del tópico.

        Returns: número de suscriptores que lo encolaron.
        """
        delivered = 0
        for subscription in list(self._subscribers.get(topic, [])):
            try:
                if subscription.offer(data):
                    delivered += 1
            except Exception as e:
                logger.error(
                    "No se pudo encolar evento para '%s' (tópico '%s'): %s",
                    subscription.consumer_name, topic, e,
                )
        return delivered

    async def unsubscribe_all(self, topic: str | None = None) -> None:
        """Desuscribir todos los consumidores (cleanup al shutdown)."""
        async with self._lock:
            if topic:
                self._subscribers.pop(topic, None)
                logger.info("Todos los suscriptores del tópico '%s' eliminados", topic)
            else:
                self._subscribers.clear()
                logger.info("Todos los suscriptores eliminados (shutdown)")

    def dropped_count(self, topic: str, consumer_name: str) -> int:
        for s in self._subscribers.get(topic, []):
            if s.consumer_name == consumer_name:
                return s.dropped
        return 0

    @property
    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._subscribers.values())
