"""
TickSentinel – Persistence Listener
====================================
Escucha eventos de posiciones en el EventBus y los persiste en SQL.

Desacoplamiento: el TradeLifecycleEngine no conoce la base de datos.
Este listener intercepta los eventos y guarda el estado de forma
transparente.

ARQUITECTURA:
  EventBus (Queue-based)        PersistenceListener
       ┌───────────────┐            ┌─────────────┐
       │position_opened│ ──Queue──▸ │ _consume()  │──▸ INSERT
       └───────────────┘            │   loop      │
       ┌───────────────┐            │             │
       │position_closed│ ──Queue──▸ │ _consume()  │──▸ UPDATE
       └───────────────┘            └─────────────┘
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy import select

from ticksentinel.core.logging import get_logger
from ticksentinel.domain.entities.position import Position
from ticksentinel.infrastructure.database import DatabaseManager
from ticksentinel.infrastructure.event_bus import (
    POSITION_CLOSED_TOPIC,
    POSITION_OPENED_TOPIC,
    EventBus,
)
from ticksentinel.infrastructure.models.position import PositionModel

logger = get_logger("persistence_listener")


class PersistenceListener:
    """
    Unidad que persiste posiciones al abrirse y al cerrarse.

    EVENTOS ESCUCHADOS:
      - 'position_opened': INSERT en positions
      - 'position_closed': UPDATE (o INSERT si no existía)
    """

    def __init__(self, event_bus: EventBus, db: DatabaseManager) -> None:
        self._event_bus = event_bus
        self._db = db
        self._queues: list[tuple[str, asyncio.Queue]] = []
        self._inflight: Set[asyncio.Future] = set()
        self._saved = 0

    async def run(self) -> None:
        """Suscribe y consume ambos tópicos hasta ser cancelado."""
        if not self._db.is_initialized:
            await self._db.initialize()

        opened = await self._event_bus.subscribe(POSITION_OPENED_TOPIC, "persistence_opened")
        closed = await self._event_bus.subscribe(POSITION_CLOSED_TOPIC, "persistence_closed")
        self._queues = [(POSITION_OPENED_TOPIC, opened), (POSITION_CLOSED_TOPIC, closed)]
        logger.info("PersistenceListener activo – escuchando position_opened, position_closed")

        try:
            await asyncio.gather(
                self._consume_loop(opened, self.save, POSITION_OPENED_TOPIC),
                self._consume_loop(closed, self.save, POSITION_CLOSED_TOPIC),
            )
        finally:
            for topic, queue in self._queues:
                await self._event_bus.unsubscribe(topic, queue)
            self._queues = []

    async def stop(self) -> None:
        """
        Persiste lo que quede en vuelo o encolado antes de que el supervisor
        cancele la unidad (p.ej. los cierres CLOSED_SHUTDOWN del motor).
        """
        pending = 0
        while True:
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
                continue
            queued = [(topic, q) for topic, q in self._queues if not q.empty()]
            if not queued:
                break
            for topic, queue in queued:
                position = queue.get_nowait()
                pending += 1
                try:
                    await self.save(position)
                except Exception as e:
                    logger.error("Error persistiendo pendiente (%s): %s", topic, e, exc_info=True)
        logger.info(
            "PersistenceListener detenido (%d escrituras, %d pendientes al cierre)",
            self._saved, pending,
        )

    async def _consume_loop(
        self,
        queue: asyncio.Queue,
        handler: Callable[[Position], Awaitable[None]],
        topic_name: str,
    ) -> None:
        while True:
            position = await queue.get()
            # La escritura en curso termina aunque se cancele el consumidor
            write = asyncio.ensure_future(handler(position))
            self._inflight.add(write)
            write.add_done_callback(self._inflight.discard)
            try:
                await asyncio.shield(write)
            except Exception as e:
                logger.error("Error en consume_loop (%s): %s", topic_name, e, exc_info=True)

    # ════════════════════════════════════════════════════════════════
    #  Escritura
    # ════════════════════════════════════════════════════════════════

    async def save(self, position: Position) -> None:
        """Upsert del último estado conocido de la posición."""
        async with self._db.session() as session:
            result = await session.execute(
                select(PositionModel).where(PositionModel.position_id == position.id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                session.add(PositionModel.from_domain(position))
            else:
                model.update_from_domain(position)
            await session.commit()

        self._saved += 1
        logger.info("📀 Posición persistida: %s [%s]", position.id, position.status.value)

    async def get(self, position_id: str) -> Optional[PositionModel]:
        async with self._db.session() as session:
            result = await session.execute(
                select(PositionModel).where(PositionModel.position_id == position_id)
            )
            return result.scalar_one_or_none()
