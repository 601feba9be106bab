"""
TickSentinel – Domain Value Object: TradeIntent
================================================
Intención de abrir una posición, emitida por un módulo de decisión y
consumida UNA vez por el TradeLifecycleEngine.

Formato en el canal (camelCase, como lo publican los módulos):
    {"strategyName": "x1", "side": "LONG", "leverage": 10,
     "notionalUSD": 100, "stopLoss": 0.01, "takeProfit": 0.02}

stopLoss / takeProfit:
    < 1  → fracción relativa al precio de entrada (se resuelve al abrir)
    ≥ 1  → precio absoluto
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ticksentinel.domain.exceptions import ValidationError


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeIntent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, allow_inf_nan=False)

    strategy_name: str = Field(alias="strategyName", min_length=1, pattern=r"^[^:]+$")
    side: Side
    leverage: float = Field(gt=0)
    notional_usd: float = Field(alias="notionalUSD", gt=0)
    stop_loss: float | None = Field(default=None, alias="stopLoss", gt=0)
    take_profit: float | None = Field(default=None, alias="takeProfit", gt=0)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def parse_trade_intent(payload: str | bytes | dict) -> TradeIntent:
    """Valida un payload del canal de intenciones."""
    try:
        if isinstance(payload, (str, bytes)):
            return TradeIntent.model_validate_json(payload)
        return TradeIntent.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"TradeIntent inválido: {e.errors()[:1]}", value=payload) from e
