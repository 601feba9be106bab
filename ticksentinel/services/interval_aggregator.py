"""
TickSentinel – Interval Aggregator
===================================
Mantiene, por símbolo, un conjunto FIJO de ventanas rodantes que se
recomputan en cada muestra.

ALGORITMO (por ingest):
  1. Inserta (timestamp, valor) en orden en el historial del símbolo;
     now = timestamp más reciente (una muestra tardía no lo mueve).
  2. Poda: se descartan entradas con timestamp < now - retención.
  3. Para cada ventana de duración D:
       cutoff = now - D
       muestras = entradas con timestamp ≥ cutoff
       start    = la MÁS ANTIGUA de esas muestras
     y el estadístico recomputa la ventana completa.
  4. Si una ventana no tiene muestras, o el estadístico no puede
     computarla (p.ej. start ≤ 0), conserva su valor anterior.

Un solo componente genérico parametrizado por:
  - ventanas   {"5m": 300_000, ...}   (ms)
  - retención  (ms)
  - estadístico (estrategia): variación de precio | presión de volumen

Instancias estándar (ver factories al final):
  minute price   5/10/15/20/25/30/60 m, retención 60 m
  second price   1..10 s,               retención 10 s
  minute volume  mismas ventanas de minutos

COMPLEJIDAD: O(W · log N) por muestra (bisect sobre el historial ordenado).
"""

from __future__ import annotations

import bisect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from ticksentinel.core.logging import get_logger
from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.windows import PriceWindow, VolumeWindow

logger = get_logger("interval_aggregator")

W = TypeVar("W")


@dataclass(frozen=True, slots=True)
class _HistoryEntry:
    timestamp: int
    value: Any


# ════════════════════════════════════════════════════════════════════
#  ESTADÍSTICOS
# ════════════════════════════════════════════════════════════════════

class WindowStatistic(ABC, Generic[W]):
    """Estrategia que convierte las muestras de una ventana en su valor."""

    @abstractmethod
    def empty(self) -> W:
        """Valor de una ventana aún no satisfecha."""

    @abstractmethod
    def compute(self, entries: Sequence[_HistoryEntry], as_of: int) -> Optional[W]:
        """
        Recomputa la ventana. `entries` está ordenado y no vacío;
        entries[0] es la muestra de inicio. None = conservar valor previo.
        """


class PriceVariationStatistic(WindowStatistic[PriceWindow]):
    """(current - start) / start × 100."""

    def empty(self) -> PriceWindow:
        return PriceWindow()

    def compute(self, entries: Sequence[_HistoryEntry], as_of: int) -> Optional[PriceWindow]:
        start = entries[0].value
        current = entries[-1].value
        if start <= 0:
            return None
        return PriceWindow(
            start_value=start,
            current_value=current,
            percent_variation=(current - start) / start * 100,
            as_of=as_of,
        )


class VolumePressureStatistic(WindowStatistic[VolumeWindow]):
    """Suma buy/sell de la ventana y presión % de cada lado."""

    def empty(self) -> VolumeWindow:
        return VolumeWindow()

    def compute(self, entries: Sequence[_HistoryEntry], as_of: int) -> Optional[VolumeWindow]:
        buy = sum(e.value[0] for e in entries)
        sell = sum(e.value[1] for e in entries)
        total = buy + sell
        return VolumeWindow(
            buy_volume=buy,
            sell_volume=sell,
            buy_pressure=buy / total * 100 if total > 0 else 0.0,
            sell_pressure=sell / total * 100 if total > 0 else 0.0,
            as_of=as_of,
        )


# ════════════════════════════════════════════════════════════════════
#  AGREGADOR
# ════════════════════════════════════════════════════════════════════

class IntervalAggregator(Generic[W]):
    """
    Agregador de ventanas rodantes multi-símbolo.

    USO:
        agg = IntervalAggregator({"5s": 5_000}, retention_ms=10_000,
                                 statistic=PriceVariationStatistic())
        windows = agg.ingest("BTCUSDT", 101.5, 1_700_000_000_000)
        windows["5s"].percent_variation
    """

    def __init__(
        self,
        windows: Dict[str, int],
        retention_ms: int,
        statistic: WindowStatistic[W],
        name: str = "aggregator",
    ) -> None:
        if not windows:
            raise ValueError("Se requiere al menos una ventana")
        if max(windows.values()) > retention_ms:
            raise ValueError("La retención debe cubrir la ventana más larga")

        self._durations = dict(windows)
        self._retention_ms = retention_ms
        self._statistic = statistic
        self._name = name

        self._history: Dict[str, List[_HistoryEntry]] = {}
        self._windows: Dict[str, Dict[str, W]] = {}

        logger.info(
            "%s inicializado: ventanas=%s, retención=%ds",
            name, list(self._durations), retention_ms // 1000,
        )

    @property
    def window_names(self) -> List[str]:
        return list(self._durations)

    def ingest(self, symbol: str, value: Any, timestamp: int) -> Dict[str, W]:
        """
        Registra una muestra y devuelve el conjunto COMPLETO de ventanas
        del símbolo (siempre las mismas claves).

        Una muestra tardía (timestamp menor al último) se inserta en
        orden; las ventanas se miden desde el timestamp más reciente.
        """
        history = self._history.setdefault(symbol, [])
        entry = _HistoryEntry(timestamp=timestamp, value=value)
        if history and timestamp < history[-1].timestamp:
            bisect.insort(history, entry, key=lambda e: e.timestamp)
        else:
            history.append(entry)
        now = history[-1].timestamp

        # ── Poda por duración de retención ──
        keep_from = bisect.bisect_left(
            history, now - self._retention_ms, key=lambda e: e.timestamp
        )
        if keep_from:
            del history[:keep_from]

        current = self._windows.get(symbol)
        if current is None:
            current = {name: self._statistic.empty() for name in self._durations}

        updated: Dict[str, W] = {}
        for name, duration in self._durations.items():
            start_idx = bisect.bisect_left(
                history, now - duration, key=lambda e: e.timestamp
            )
            entries = history[start_idx:]
            window = self._statistic.compute(entries, now) if entries else None
            updated[name] = window if window is not None else current[name]

        self._windows[symbol] = updated
        return dict(updated)

    def windows(self, symbol: str) -> Optional[Dict[str, W]]:
        current = self._windows.get(symbol)
        return dict(current) if current is not None else None

    def history(self, symbol: str) -> List[Tuple[int, Any]]:
        """Copia del historial retenido: [(timestamp, valor), ...]."""
        return [(e.timestamp, e.value) for e in self._history.get(symbol, [])]

    @property
    def symbols(self) -> List[str]:
        return list(self._windows)

    def reset(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._history.clear()
            self._windows.clear()
        else:
            self._history.pop(symbol, None)
            self._windows.pop(symbol, None)


# ─── Factories ──────────────────────────────────────────────────────────

def minute_price_aggregator(settings: Settings) -> IntervalAggregator[PriceWindow]:
    return IntervalAggregator(
        {f"{m}m": m * 60_000 for m in settings.price_windows_minutes},
        retention_ms=settings.minute_retention_minutes * 60_000,
        statistic=PriceVariationStatistic(),
        name="minute_price",
    )


def second_price_aggregator(settings: Settings) -> IntervalAggregator[PriceWindow]:
    return IntervalAggregator(
        {f"{s}s": s * 1_000 for s in settings.price_windows_seconds},
        retention_ms=settings.second_retention_seconds * 1_000,
        statistic=PriceVariationStatistic(),
        name="second_price",
    )


def minute_volume_aggregator(settings: Settings) -> IntervalAggregator[VolumeWindow]:
    return IntervalAggregator(
        {f"{m}m": m * 60_000 for m in settings.price_windows_minutes},
        retention_ms=settings.minute_retention_minutes * 60_000,
        statistic=VolumePressureStatistic(),
        name="minute_volume",
    )
