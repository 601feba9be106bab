"""
TickSentinel – Domain Entity: Position (Paper Trading)
=======================================================
Posición simulada con ciclo de vida controlado.

═══════════════════════════════════════════════════════════════
            CICLO DE VIDA DE LA POSICIÓN
═══════════════════════════════════════════════════════════════

  TradeIntent aceptada
       │
       ▼
  Position OPEN (entry = precio actual)
       │
       ├── Cada checkpoint evalúa, EN ESTE ORDEN:
       │     1. stop-loss      ──▸ CLOSED_STOPLOSS
       │     2. take-profit    ──▸ CLOSED_TAKEPROFIT
       │     3. liquidación    ──▸ CLOSED_LIQUIDATION
       │
       ├── Sin salida → snapshot de PnL (elapsed → pnl)
       │
       ├── Checkpoints agotados ──▸ CLOSED_TIMEOUT (último precio visto)
       └── Shutdown del motor   ──▸ CLOSED_SHUTDOWN (si está habilitado)

No hay transición de vuelta a OPEN. close() solo es válido desde OPEN.

CÁLCULO DE PnL:

  LONG:   pnl = (current - entry) × quantity × leverage
  SHORT:  pnl = (entry - current) × quantity × leverage

LIQUIDACIÓN SIMULADA:

  Umbral = 1 / leverage (10x → más de 10% de movimiento adverso).
  LONG:   (entry - current) / entry > 1/leverage
  SHORT:  (current - entry) / entry > 1/leverage
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticksentinel.domain.entities.trade_intent import Side
from ticksentinel.domain.exceptions import InvalidTradeError


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED_STOPLOSS = "CLOSED_STOPLOSS"
    CLOSED_TAKEPROFIT = "CLOSED_TAKEPROFIT"
    CLOSED_LIQUIDATION = "CLOSED_LIQUIDATION"
    CLOSED_TIMEOUT = "CLOSED_TIMEOUT"
    CLOSED_SHUTDOWN = "CLOSED_SHUTDOWN"


class ExitReason(str, Enum):
    STOP_LOSS = "stopLoss"
    TAKE_PROFIT = "takeProfit"
    LIQUIDATION = "liquidation"


_STATUS_BY_REASON = {
    ExitReason.STOP_LOSS: PositionStatus.CLOSED_STOPLOSS,
    ExitReason.TAKE_PROFIT: PositionStatus.CLOSED_TAKEPROFIT,
    ExitReason.LIQUIDATION: PositionStatus.CLOSED_LIQUIDATION,
}


@dataclass(frozen=True, slots=True)
class PnlSnapshot:
    elapsed_seconds: float
    pnl: float


@dataclass(frozen=True, slots=True)
class LiquiditySnapshot:
    timestamp: int  # epoch ms
    price: float
    reason: ExitReason


def new_position_id(strategy_name: str) -> str:
    """Identidad "<estrategia>:<sufijo aleatorio>"."""
    return f"{strategy_name}:{secrets.token_hex(4)}"


def resolve_level(value: float | None, entry_price: float, side: Side, is_stop: bool) -> float | None:
    """
    Convierte un stop/target relativo (< 1) a precio absoluto.

    LONG:  stop por debajo de la entrada, target por encima.
    SHORT: invertido.
    """
    if value is None or value >= 1:
        return value
    below = (side == Side.LONG) == is_stop
    return entry_price * (1 - value) if below else entry_price * (1 + value)


class Position:
    """
    Posición simulada.

    Solo su propio loop de monitoreo la muta mientras está OPEN.
    """

    __slots__ = (
        "id", "strategy_name", "symbol", "side", "leverage",
        "entry_price", "quantity", "stop_loss", "take_profit",
        "status", "opened_at", "closed_at", "close_price",
        "pnl_snapshots", "liquidity_snapshots",
    )

    def __init__(
        self,
        position_id: str,
        strategy_name: str,
        symbol: str,
        side: Side,
        leverage: float,
        entry_price: float,
        quantity: float,
        opened_at: int,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> None:
        if entry_price <= 0:
            raise InvalidTradeError("entry_price debe ser positivo", position_id)
        if leverage <= 0:
            raise InvalidTradeError("leverage debe ser positivo", position_id)

        self.id = position_id
        self.strategy_name = strategy_name
        self.symbol = symbol
        self.side = side
        self.leverage = leverage
        self.entry_price = entry_price
        self.quantity = quantity
        self.stop_loss = stop_loss
        self.take_profit = take_profit

        self.status: PositionStatus = PositionStatus.OPEN
        self.opened_at = opened_at
        self.closed_at: int | None = None
        self.close_price: float | None = None

        self.pnl_snapshots: list[PnlSnapshot] = []
        self.liquidity_snapshots: list[LiquiditySnapshot] = []

    # ════════════════════════════════════════════════════════════════
    #  EVALUACIÓN
    # ════════════════════════════════════════════════════════════════

    @property
    def liquidation_price(self) -> float:
        threshold = 1 / self.leverage
        if self.side == Side.LONG:
            return self.entry_price * (1 - threshold)
        return self.entry_price * (1 + threshold)

    def adverse_move(self, price: float) -> float:
        """Fracción del precio de entrada movida en contra de la posición."""
        if self.side == Side.LONG:
            return (self.entry_price - price) / self.entry_price
        return (price - self.entry_price) / self.entry_price

    def is_liquidated(self, price: float) -> bool:
        return self.adverse_move(price) > 1 / self.leverage

    def pnl_at(self, price: float) -> float:
        delta = price - self.entry_price
        if self.side == Side.SHORT:
            delta = -delta
        return delta * self.quantity * self.leverage

    def exit_reason(self, price: float) -> ExitReason | None:
        """Primera condición de salida que se cumple (prioridad fija)."""
        if self.side == Side.LONG:
            if self.stop_loss is not None and price <= self.stop_loss:
                return ExitReason.STOP_LOSS
            if self.take_profit is not None and price >= self.take_profit:
                return ExitReason.TAKE_PROFIT
            if self.is_liquidated(price):
                return ExitReason.LIQUIDATION
        else:
            if self.stop_loss is not None and price >= self.stop_loss:
                return ExitReason.STOP_LOSS
            if self.take_profit is not None and price <= self.take_profit:
                return ExitReason.TAKE_PROFIT
            if self.is_liquidated(price):
                return ExitReason.LIQUIDATION
        return None

    # ════════════════════════════════════════════════════════════════
    #  TRANSICIONES
    # ════════════════════════════════════════════════════════════════

    def record_pnl(self, elapsed_seconds: float, price: float) -> PnlSnapshot:
        if not self.is_open:
            raise InvalidTradeError("record_pnl() solo desde OPEN", self.id)
        if self.pnl_snapshots and elapsed_seconds <= self.pnl_snapshots[-1].elapsed_seconds:
            raise InvalidTradeError("snapshots de PnL deben ser crecientes", self.id)
        snapshot = PnlSnapshot(elapsed_seconds=elapsed_seconds, pnl=self.pnl_at(price))
        self.pnl_snapshots.append(snapshot)
        return snapshot

    def close(
        self,
        status: PositionStatus,
        price: float,
        timestamp: int,
        reason: ExitReason | None = None,
    ) -> None:
        """
        Transición OPEN → CLOSED_*.

        Si hay `reason` (stop/target/liquidación) se registra además un
        LiquiditySnapshot con el precio que disparó la salida.
        """
        if not self.is_open:
            raise InvalidTradeError(f"close() solo desde OPEN, actual={self.status.value}", self.id)
        if status == PositionStatus.OPEN:
            raise InvalidTradeError("Status de cierre inválido: OPEN", self.id)
        if reason is not None:
            if _STATUS_BY_REASON[reason] != status:
                raise InvalidTradeError(f"reason {reason.value} no corresponde a {status.value}", self.id)
            self.liquidity_snapshots.append(
                LiquiditySnapshot(timestamp=timestamp, price=price, reason=reason)
            )
        self.status = status
        self.close_price = price
        self.closed_at = timestamp

    # ════════════════════════════════════════════════════════════════
    #  CONSULTAS
    # ════════════════════════════════════════════════════════════════

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return not self.is_open

    @property
    def final_pnl(self) -> float | None:
        if self.close_price is None:
            return None
        return self.pnl_at(self.close_price)

    def to_dict(self) -> dict[str, Any]:
        """Serialización para store / API / auditoría."""
        return {
            "id": self.id,
            "strategy_name": self.strategy_name,
            "symbol": self.symbol,
            "side": self.side.value,
            "leverage": self.leverage,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "status": self.status.value,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "close_price": self.close_price,
            "pnl_snapshots": [
                {"elapsed_seconds": s.elapsed_seconds, "pnl": s.pnl}
                for s in self.pnl_snapshots
            ],
            "liquidity_snapshots": [
                {"timestamp": s.timestamp, "price": s.price, "reason": s.reason.value}
                for s in self.liquidity_snapshots
            ],
        }

    @staticmethod
    def status_for(reason: ExitReason) -> PositionStatus:
        return _STATUS_BY_REASON[reason]
