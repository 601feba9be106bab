"""
TickSentinel – Domain Value Objects: Samples
=============================================
Unidades de entrada inmutables entregadas por el ingestor.

- frozen=True → inmutable, seguro para pasar entre coroutines.
- slots=True  → menor footprint de memoria en hot-path.

Todos los timestamps son epoch en MILISEGUNDOS (formato Binance).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PriceSample:
    """Kline de precio con volumen total y volumen taker de compra."""

    symbol: str
    price: float              # close
    volume: float             # volumen base total
    taker_buy_volume: float   # volumen base comprado por takers
    timestamp: int            # epoch ms (inicio de la kline)
    open_price: float = 0.0

    @property
    def buy_volume(self) -> float:
        return self.taker_buy_volume

    @property
    def sell_volume(self) -> float:
        return max(self.volume - self.taker_buy_volume, 0.0)

    @property
    def buy_pressure(self) -> float | None:
        """Fracción de volumen comprador; None si no hubo volumen."""
        if self.volume <= 0:
            return None
        return self.taker_buy_volume / self.volume

    @property
    def price_variance(self) -> float | None:
        """(close - open) / open; None si open no es positivo."""
        if self.open_price <= 0:
            return None
        return (self.price - self.open_price) / self.open_price

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "open_price": self.open_price,
            "volume": self.volume,
            "taker_buy_volume": self.taker_buy_volume,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class DepthSample:
    """Snapshot/delta de libro de órdenes: pares (precio, cantidad)."""

    symbol: str
    bids: tuple[tuple[float, float], ...]
    asks: tuple[tuple[float, float], ...]
    timestamp: int  # epoch ms

    def volumes_near(self, reference_price: float, band: float) -> tuple[float, float]:
        """
        Suma de cantidades bid/ask cuyo precio está a ≤ band del precio
        de referencia. Devuelve (bid_volume, ask_volume).
        """
        bid_volume = sum(q for p, q in self.bids if abs(p - reference_price) <= band)
        ask_volume = sum(q for p, q in self.asks if abs(p - reference_price) <= band)
        return bid_volume, ask_volume
