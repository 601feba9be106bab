"""
TickSentinel – API Schemas (Pydantic)
======================================
Schemas de respuesta de la API de operaciones (solo lectura).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    units_alive: int


class UnitSchema(BaseModel):
    id: str
    kind: str
    alive: bool
    restart_count: int
    last_error: Optional[str] = None


class UnitsResponse(BaseModel):
    count: int
    units: List[UnitSchema]


class PriceWindowSchema(BaseModel):
    start_value: float
    current_value: float
    percent_variation: float
    as_of: int


class VolumeWindowSchema(BaseModel):
    buy_volume: float
    sell_volume: float
    total_volume: float
    buy_pressure: float
    sell_pressure: float
    as_of: int


class WindowsResponse(BaseModel):
    symbol: str
    minutes: Dict[str, PriceWindowSchema]
    seconds: Dict[str, PriceWindowSchema]
    volumes: Dict[str, VolumeWindowSchema]


class EventsResponse(BaseModel):
    symbol: str
    stream: str
    count: int
    events: List[Dict[str, Any]]


class PnlSnapshotSchema(BaseModel):
    elapsed_seconds: float
    pnl: float


class LiquiditySnapshotSchema(BaseModel):
    timestamp: int
    price: float
    reason: str


class PositionSchema(BaseModel):
    id: str
    strategy_name: str
    symbol: str
    side: str
    leverage: float
    entry_price: float
    quantity: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    status: str
    opened_at: int
    closed_at: Optional[int] = None
    close_price: Optional[float] = None
    pnl_snapshots: List[PnlSnapshotSchema]
    liquidity_snapshots: List[LiquiditySnapshotSchema]


class PositionsResponse(BaseModel):
    active: List[PositionSchema]
    closed: List[PositionSchema]
