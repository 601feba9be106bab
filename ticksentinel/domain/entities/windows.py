"""
TickSentinel – Domain Value Objects: Windows
=============================================
Estadísticos derivados de una ventana temporal con nombre ("5m", "3s").

Cada recomputación crea un objeto NUEVO (frozen); una ventana nunca se
parchea parcialmente. Antes de que una muestra satisfaga la ventana,
su valor es el "vacío" (todo a 0).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PriceWindow:
    """Variación de precio dentro de una ventana."""

    start_value: float = 0.0
    current_value: float = 0.0
    percent_variation: float = 0.0
    as_of: int = 0  # epoch ms de la muestra que la recomputó

    def to_dict(self) -> dict:
        return {
            "start_value": self.start_value,
            "current_value": self.current_value,
            "percent_variation": round(self.percent_variation, 6),
            "as_of": self.as_of,
        }


@dataclass(frozen=True, slots=True)
class VolumeWindow:
    """Volumen comprador/vendedor acumulado y presión % dentro de una ventana."""

    buy_volume: float = 0.0
    sell_volume: float = 0.0
    buy_pressure: float = 0.0   # %
    sell_pressure: float = 0.0  # %
    as_of: int = 0

    @property
    def total_volume(self) -> float:
        return self.buy_volume + self.sell_volume

    def to_dict(self) -> dict:
        return {
            "buy_volume": self.buy_volume,
            "sell_volume": self.sell_volume,
            "total_volume": self.total_volume,
            "buy_pressure": round(self.buy_pressure, 4),
            "sell_pressure": round(self.sell_pressure, 4),
            "as_of": self.as_of,
        }
