"""
TickSentinel – Domain Events: MarketEvent
==========================================
Eventos de mercado publicados por el EventPublisher.

═══════════════════════════════════════════════════════════════
            VARIANTES ETIQUETADAS
═══════════════════════════════════════════════════════════════

  kind                 clase                 atributos propios
  ─────────────────    ──────────────────    ────────────────────────────
  PRICE_UPDATE         PriceUpdateEvent      –
  VOLUME               VolumeEvent           buy_volume, sell_volume, threshold
  MASS_BUY             MassBuyEvent          pressure, volume_surge, average_volume
  MASS_SELL            MassSellEvent         pressure, volume_surge, average_volume
  PRICE_JUMP           PriceJumpEvent        start_price, threshold
  PRICE_DROP           PriceDropEvent        start_price, threshold
  PRICE_JUMP_SECOND    PriceJumpSecondEvent  start_price, threshold
  PRICE_DROP_SECOND    PriceDropSecondEvent  start_price, threshold

Cada variante es un modelo pydantic congelado con `kind` literal. El
payload JSON de un suscriptor se valida con parse_market_event(): un
mensaje malformado falla AQUÍ, en la frontera, y no más adelante con
aritmética sobre campos ausentes.

allow_inf_nan=False: ningún evento puede transportar NaN/Infinity.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ticksentinel.domain.exceptions import ValidationError


class EventKind(str, Enum):
    PRICE_UPDATE = "PRICE_UPDATE"
    VOLUME = "VOLUME"
    MASS_BUY = "MASS_BUY"
    MASS_SELL = "MASS_SELL"
    PRICE_JUMP = "PRICE_JUMP"
    PRICE_DROP = "PRICE_DROP"
    PRICE_JUMP_SECOND = "PRICE_JUMP_SECOND"
    PRICE_DROP_SECOND = "PRICE_DROP_SECOND"


_COMMON_FIELDS = frozenset(
    {"kind", "symbol", "price", "volume", "timestamp", "percentage", "window"}
)


class _MarketEventBase(BaseModel):
    """Campos comunes a todas las variantes."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    symbol: str = Field(min_length=1)
    price: float
    volume: float = 0.0
    timestamp: int
    percentage: float = 0.0
    window: str = ""

    @property
    def attributes(self) -> dict[str, Any]:
        """Campos propios de la variante (fuera del sobre común)."""
        data = self.model_dump()
        return {k: v for k, v in data.items() if k not in _COMMON_FIELDS}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json()


class PriceUpdateEvent(_MarketEventBase):
    kind: Literal["PRICE_UPDATE"] = "PRICE_UPDATE"


class VolumeEvent(_MarketEventBase):
    kind: Literal["VOLUME"] = "VOLUME"
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    threshold: float | None = None


class _MassEventBase(_MarketEventBase):
    pressure: float          # fracción promedio del lado dominante
    volume_surge: float      # volumen reciente / volumen promedio
    average_volume: float


class MassBuyEvent(_MassEventBase):
    kind: Literal["MASS_BUY"] = "MASS_BUY"


class MassSellEvent(_MassEventBase):
    kind: Literal["MASS_SELL"] = "MASS_SELL"


class _PriceMoveBase(_MarketEventBase):
    start_price: float
    threshold: float


class PriceJumpEvent(_PriceMoveBase):
    kind: Literal["PRICE_JUMP"] = "PRICE_JUMP"


class PriceDropEvent(_PriceMoveBase):
    kind: Literal["PRICE_DROP"] = "PRICE_DROP"


class PriceJumpSecondEvent(_PriceMoveBase):
    kind: Literal["PRICE_JUMP_SECOND"] = "PRICE_JUMP_SECOND"


class PriceDropSecondEvent(_PriceMoveBase):
    kind: Literal["PRICE_DROP_SECOND"] = "PRICE_DROP_SECOND"


MarketEvent = Annotated[
    Union[
        PriceUpdateEvent,
        VolumeEvent,
        MassBuyEvent,
        MassSellEvent,
        PriceJumpEvent,
        PriceDropEvent,
        PriceJumpSecondEvent,
        PriceDropSecondEvent,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter = TypeAdapter(MarketEvent)


def price_move_event_class(variation: float, by_seconds: bool) -> type[_PriceMoveBase]:
    """Elige la variante JUMP/DROP (minutos o segundos) según el signo."""
    if by_seconds:
        return PriceJumpSecondEvent if variation > 0 else PriceDropSecondEvent
    return PriceJumpEvent if variation > 0 else PriceDropEvent


def parse_market_event(payload: str | bytes | dict) -> MarketEvent:
    """
    Valida un payload (JSON o dict) y devuelve la variante correcta.

    Raises:
        ValidationError: si el payload no corresponde a ninguna variante.
    """
    try:
        if isinstance(payload, (str, bytes)):
            return _event_adapter.validate_json(payload)
        return _event_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"MarketEvent inválido: {e.errors()[:1]}", value=payload) from e
