"""
TickSentinel – Position ORM Model
==================================
Tabla `positions`: auditoría de posiciones simuladas.

- position_id es la identidad de dominio ("<estrategia>:<sufijo>").
- Timestamps en BIGINT (epoch ms).
- close_price / closed_at / final_pnl NULL mientras la posición está OPEN.
- Los snapshots se guardan como JSON (solo lectura para análisis).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ticksentinel.domain.entities.position import Position
from ticksentinel.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionModel(Base):
    """Estado persistido de una posición (último conocido)."""

    __tablename__ = "positions"

    # ─── Primary Key ──────────────────────────────────────────────────
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    position_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    # ─── Identidad / parámetros ───────────────────────────────────────
    strategy_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(5), nullable=False)
    leverage: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)

    # ─── Prices ───────────────────────────────────────────────────────
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    stop_loss: Mapped[Optional[float]] = mapped_column(Float, default=None)
    take_profit: Mapped[Optional[float]] = mapped_column(Float, default=None)
    close_price: Mapped[Optional[float]] = mapped_column(Float, default=None)

    # ─── Status & Result ──────────────────────────────────────────────
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="OPEN")
    final_pnl: Mapped[Optional[float]] = mapped_column(Float, default=None)
    pnl_snapshots: Mapped[list] = mapped_column(JSON, default=list)
    liquidity_snapshots: Mapped[list] = mapped_column(JSON, default=list)

    # ─── Timing ───────────────────────────────────────────────────────
    opened_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    closed_at: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_positions_status", "status"),
    )

    @classmethod
    def from_domain(cls, position: Position) -> "PositionModel":
        model = cls(position_id=position.id)
        model.update_from_domain(position)
        return model

    def update_from_domain(self, position: Position) -> None:
        data = position.to_dict()
        self.strategy_name = data["strategy_name"]
        self.symbol = data["symbol"]
        self.side = data["side"]
        self.leverage = data["leverage"]
        self.quantity = data["quantity"]
        self.entry_price = data["entry_price"]
        self.stop_loss = data["stop_loss"]
        self.take_profit = data["take_profit"]
        self.close_price = data["close_price"]
        self.status = data["status"]
        self.final_pnl = position.final_pnl
        self.pnl_snapshots = data["pnl_snapshots"]
        self.liquidity_snapshots = data["liquidity_snapshots"]
        self.opened_at = data["opened_at"]
        self.closed_at = data["closed_at"]

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "strategy_name": self.strategy_name,
            "symbol": self.symbol,
            "side": self.side,
            "status": self.status,
            "entry_price": self.entry_price,
            "close_price": self.close_price,
            "final_pnl": self.final_pnl,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
        }

    def __repr__(self) -> str:
        return f"<Position(position_id='{self.position_id}', status={self.status})>"
