"""
TickSentinel – Trade Lifecycle Engine (Paper Trading)
======================================================
Acepta intenciones, abre posiciones simuladas y monitorea cada una en
su propia task hasta que se cierra.

═══════════════════════════════════════════════════════════════
            FLUJO DEL MOTOR
═══════════════════════════════════════════════════════════════

    TradeIntent recibida (tópico trade_intents)
        │
        ▼
    ¿Hay posición activa cuyo id empiece con "<estrategia>:"?
        │
        ├── SÍ → Rechazar (log)
        │
        └── NO → precio actual ({symbol}:price)
                    │
                    ├── sin precio → Rechazar
                    │
                    ▼
               Position OPEN, SET trade:{id}, task de monitoreo
                    │
                  cada checkpoint (10 s × 16)
                    │
                    ▼
               precio actual
                    │
                    ├── no disponible → diferir (sin snapshot)
                    ├── stop-loss     → CLOSED_STOPLOSS
                    ├── take-profit   → CLOSED_TAKEPROFIT
                    ├── liquidación   → CLOSED_LIQUIDATION
                    └── nada          → snapshot PnL
                    │
               checkpoints agotados → CLOSED_TIMEOUT (último precio visto)

CONCURRENCIA:
    - open() corre bajo un asyncio.Lock: el chequeo de prefijo y el
      registro de la posición son atómicos dentro del proceso.
    - A lo sumo UNA task de monitoreo por positionId.
    - shutdown() cancela las tasks y después resuelve lo que siga
      abierto: CLOSED_SHUTDOWN si close_on_shutdown, si no solo persiste.
    - Persistir y publicar un cierre corre blindado (asyncio.shield):
      cancelar el monitor a mitad de close() no pierde el registro.

PERSISTENCIA:
    Un fallo del store se loguea; el monitoreo sigue con el estado en
    memoria.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from ticksentinel.core.logging import get_logger
from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.position import (
    ExitReason,
    Position,
    PositionStatus,
    new_position_id,
    resolve_level,
)
from ticksentinel.domain.entities.trade_intent import TradeIntent, parse_trade_intent
from ticksentinel.domain.exceptions import InvalidTradeError, ValidationError
from ticksentinel.infrastructure.event_bus import (
    POSITION_CLOSED_TOPIC,
    POSITION_OPENED_TOPIC,
    TRADE_INTENTS_TOPIC,
    EventBus,
    OverflowPolicy,
)
from ticksentinel.infrastructure.store import (
    KeyValueStore,
    StoreError,
    position_key,
    price_key,
)

logger = get_logger("trade_engine")

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], int]


def _now_ms() -> int:
    return int(time.time() * 1000)


class TradeLifecycleEngine:
    """
    Motor de posiciones simuladas.

    `sleep` y `clock` son inyectables para poder ejecutar el calendario
    de checkpoints en tests sin esperar tiempo real.
    """

    def __init__(
        self,
        store: KeyValueStore,
        event_bus: EventBus,
        settings: Settings,
        symbol: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _now_ms,
    ) -> None:
        self._store = store
        self._event_bus = event_bus
        self._settings = settings
        self._symbol = symbol or settings.symbols[0]
        self._sleep = sleep
        self._clock = clock

        self._open_lock = asyncio.Lock()
        self._active: Dict[str, Position] = {}
        self._closed: Dict[str, Position] = {}
        self._monitors: Dict[str, asyncio.Task] = {}
        self._closing: Set[asyncio.Future] = set()
        self._last_prices: Dict[str, float] = {}
        self._shutting_down = False
        self._queue: Optional[asyncio.Queue] = None

        self._rejected = 0

    @property
    def symbol(self) -> str:
        return self._symbol

    # ════════════════════════════════════════════════════════════════
    #  UNIDAD: consumo de intenciones
    # ════════════════════════════════════════════════════════════════

    async def run(self) -> None:
        """Consume el tópico trade_intents (único consumidor)."""
        self._shutting_down = False
        self._queue = await self._event_bus.subscribe(
            TRADE_INTENTS_TOPIC, "trade_engine", policy=OverflowPolicy.REJECT_NEW,
        )
        logger.info("TradeLifecycleEngine iniciado (%s)", self._symbol)
        try:
            while True:
                payload = await self._queue.get()
                try:
                    intent = payload if isinstance(payload, BaseModel) else parse_trade_intent(payload)
                except ValidationError as e:
                    logger.warning("Intención descartada: %s", e.message)
                    continue
                try:
                    await self.open(intent)
                except InvalidTradeError as e:
                    logger.warning("Intención rechazada: %s", e.message)
        finally:
            await self._event_bus.unsubscribe(TRADE_INTENTS_TOPIC, self._queue)
            self._queue = None

    async def stop(self) -> None:
        await self.shutdown()

    # ════════════════════════════════════════════════════════════════
    #  APERTURA
    # ════════════════════════════════════════════════════════════════

    async def open(self, intent: TradeIntent) -> Optional[str]:
        """
        Abre una posición para la intención.

        Returns: positionId, o None si se rechazó (estrategia con
        posición activa o sin precio actual).
        """
        async with self._open_lock:
            prefix = f"{intent.strategy_name}:"
            if any(pid.startswith(prefix) for pid in self._active):
                self._rejected += 1
                logger.debug("'%s' ya tiene una posición activa – intención ignorada", intent.strategy_name)
                return None

            entry_price = await self._current_price()
            if entry_price is None:
                self._rejected += 1
                logger.warning("Sin precio actual de %s – intención de '%s' rechazada", self._symbol, intent.strategy_name)
                return None

            quantity = round(intent.notional_usd / entry_price, 8)
            if quantity <= 0:
                self._rejected += 1
                logger.warning("Cantidad nula para '%s' (nocional=%s)", intent.strategy_name, intent.notional_usd)
                return None

            position = Position(
                position_id=new_position_id(intent.strategy_name),
                strategy_name=intent.strategy_name,
                symbol=self._symbol,
                side=intent.side,
                leverage=intent.leverage,
                entry_price=entry_price,
                quantity=quantity,
                opened_at=self._clock(),
                stop_loss=resolve_level(intent.stop_loss, entry_price, intent.side, is_stop=True),
                take_profit=resolve_level(intent.take_profit, entry_price, intent.side, is_stop=False),
            )
            self._active[position.id] = position
            self._monitors[position.id] = asyncio.create_task(
                self._monitor(position), name=f"monitor:{position.id}"
            )

        await self._persist(position)
        await self._event_bus.publish(POSITION_OPENED_TOPIC, position)
        logger.info(
            "📈 Posición abierta: %s %s @ %.2f qty=%s lev=%sx (SL=%s, TP=%s, liq=%.2f)",
            position.id, position.side.value, entry_price, quantity, position.leverage,
            position.stop_loss, position.take_profit, position.liquidation_price,
        )
        return position.id

    # ════════════════════════════════════════════════════════════════
    #  MONITOREO
    # ════════════════════════════════════════════════════════════════

    async def _monitor(self, position: Position) -> None:
        interval = self._settings.checkpoint_interval_seconds
        try:
            for checkpoint in range(1, self._settings.checkpoint_count + 1):
                await self._sleep(interval)
                if not position.is_open:
                    return

                price = await self._current_price()
                if price is None:
                    logger.debug("%s checkpoint %d diferido: sin precio", position.id, checkpoint)
                    continue
                self._last_prices[position.id] = price

                reason = position.exit_reason(price)
                if reason is not None:
                    await self.close(position.id, Position.status_for(reason), price, reason)
                    return

                position.record_pnl(checkpoint * interval, price)
                await self._persist(position)

            await self.close(
                position.id,
                PositionStatus.CLOSED_TIMEOUT,
                self._last_prices.get(position.id, position.entry_price),
            )
        except asyncio.CancelledError:
            # En shutdown el cierre lo resuelve shutdown()
            if position.is_open and not self._shutting_down:
                await self._persist(position)
            raise
        finally:
            if self._monitors.get(position.id) is asyncio.current_task():
                del self._monitors[position.id]

    # ════════════════════════════════════════════════════════════════
    #  CIERRE
    # ════════════════════════════════════════════════════════════════

    async def close(
        self,
        position_id: str,
        status: PositionStatus,
        price: float,
        reason: Optional[ExitReason] = None,
    ) -> bool:
        """
        Cierra una posición activa. Idempotente: una posición ya cerrada
        (o desconocida) no cambia y se devuelve False.
        """
        position = self._active.get(position_id)
        if position is None or not position.is_open:
            return False

        position.close(status, price, self._clock(), reason)
        del self._active[position_id]
        self._closed[position_id] = position
        self._last_prices.pop(position_id, None)

        task = self._monitors.pop(position_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        # El registro y el anuncio del cierre sobreviven a la cancelación del monitor
        announce = asyncio.ensure_future(self._announce_close(position))
        self._closing.add(announce)
        announce.add_done_callback(self._closing.discard)
        await asyncio.shield(announce)
        return True

    async def _announce_close(self, position: Position) -> None:
        await self._persist(position)
        await self._event_bus.publish(POSITION_CLOSED_TOPIC, position)

        pnl = position.final_pnl or 0.0
        emoji = "✅" if pnl > 0 else "❌"
        logger.info(
            "%s Posición cerrada: %s %s @ %.2f → %s (PnL=%.4f)",
            emoji, position.id, position.side.value, position.close_price,
            position.status.value, pnl,
        )

    async def shutdown(self) -> None:
        """
        Cancela todos los monitoreos y espera a que terminen.

        Luego resuelve las posiciones que sigan abiertas (una task
        cancelada antes de su primer paso nunca corre su except):
        CLOSED_SHUTDOWN al último precio visto, o solo persistencia si
        close_on_shutdown está deshabilitado.
        """
        self._shutting_down = True
        tasks = list(self._monitors.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for position in list(self._active.values()):
            if self._settings.close_on_shutdown:
                await self.close(
                    position.id,
                    PositionStatus.CLOSED_SHUTDOWN,
                    self._last_prices.get(position.id, position.entry_price),
                )
            else:
                await self._persist(position)
        self._monitors.clear()

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        logger.info(
            "TradeLifecycleEngine detenido (activas=%d, cerradas=%d)",
            len(self._active), len(self._closed),
        )

    async def wait(self, position_id: str) -> Optional[Position]:
        """Espera a que termine el monitoreo de una posición."""
        task = self._monitors.get(position_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get(position_id)

    # ════════════════════════════════════════════════════════════════
    #  HELPERS
    # ════════════════════════════════════════════════════════════════

    async def _current_price(self) -> Optional[float]:
        try:
            raw = await self._store.get(price_key(self._symbol))
        except StoreError as e:
            logger.warning("Lectura de precio fallida: %s", e)
            return None
        if raw is None:
            return None
        try:
            price = float(raw)
        except ValueError:
            logger.warning("Precio ilegible en %s: %r", price_key(self._symbol), raw)
            return None
        return price if price > 0 else None

    async def _persist(self, position: Position) -> None:
        try:
            await self._store.set(position_key(position.id), json.dumps(position.to_dict()))
        except StoreError as e:
            logger.warning("No se pudo persistir %s: %s", position.id, e)

    # ════════════════════════════════════════════════════════════════
    #  CONSULTAS
    # ════════════════════════════════════════════════════════════════

    def get(self, position_id: str) -> Optional[Position]:
        return self._active.get(position_id) or self._closed.get(position_id)

    def active_positions(self) -> List[Position]:
        return list(self._active.values())

    def closed_positions(self) -> List[Position]:
        return list(self._closed.values())

    @property
    def monitor_count(self) -> int:
        return len(self._monitors)

    @property
    def stats(self) -> dict:
        closed = self.closed_positions()
        return {
            "symbol": self._symbol,
            "active": len(self._active),
            "closed": len(closed),
            "rejected": self._rejected,
            "total_pnl": round(sum(p.final_pnl or 0.0 for p in closed), 8),
        }
