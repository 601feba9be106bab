"""
TickSentinel – Event Publisher
===============================
Convierte salidas del agregador y muestras crudas en MarketEvents,
los guarda en un historial durable acotado y los difunde.

═══════════════════════════════════════════════════════════════
            FLUJO DE PUBLICACIÓN
═══════════════════════════════════════════════════════════════

  MarketEvent
       │
       ├── 1. ZADD <key> (score = timestamp, member = JSON)
       ├── 2. ZREMRANGEBYRANK <key> 0 -(cap+1)   → quedan los N más recientes
       │        (fallo del store → log, se continúa)
       └── 3. EventBus.publish("market_events", evento)

CLAVES DURABLES:
  price:{symbol}   PRICE_UPDATE                (cap price_history_size)
  depth:{symbol}   VOLUME derivado de depth    (cap depth_history_size)
  events:{symbol}  todo lo demás               (cap event_history_size)

DETECTORES:
  - Umbral por ventana de precio (minutos y segundos)
  - Umbral por ventana de volumen (volumen total + presión dominante)
  - MASS_BUY / MASS_SELL sobre la ventana de análisis (últimos N registros)
  - Varianza de una sola vela (|close-open|/open)
  - Volumen de profundidad cerca del último precio
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Optional

from ticksentinel.core.logging import get_logger
from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.market_event import (
    EventKind,
    MarketEvent,
    MassBuyEvent,
    MassSellEvent,
    PriceDropEvent,
    PriceJumpEvent,
    VolumeEvent,
    parse_market_event,
    price_move_event_class,
)
from ticksentinel.domain.entities.samples import DepthSample, PriceSample
from ticksentinel.domain.entities.windows import PriceWindow, VolumeWindow
from ticksentinel.domain.exceptions import ValidationError
from ticksentinel.infrastructure.event_bus import MARKET_EVENTS_TOPIC, EventBus
from ticksentinel.infrastructure.store import KeyValueStore, StoreError

logger = get_logger("event_publisher")

DEPTH_WINDOW = "depth"
CANDLE_WINDOW = "1m"

HISTORY_STREAMS = ("events", "price", "depth")


class EventPublisher:
    """Publica eventos tipados con historial durable acotado."""

    def __init__(self, store: KeyValueStore, event_bus: EventBus, settings: Settings) -> None:
        self._store = store
        self._event_bus = event_bus
        self._settings = settings

        # Ventana de análisis por símbolo (últimos N registros de precio)
        self._analysis: Dict[str, Deque[PriceSample]] = {}

        self._published: int = 0
        self._store_failures: int = 0

    # ════════════════════════════════════════════════════════════════
    #  PUBLICACIÓN
    # ════════════════════════════════════════════════════════════════

    def _durable_target(self, event: MarketEvent) -> tuple[str, int]:
        if event.kind == EventKind.PRICE_UPDATE.value:
            return f"price:{event.symbol}", self._settings.price_history_size
        if event.kind == EventKind.VOLUME.value and event.window == DEPTH_WINDOW:
            return f"depth:{event.symbol}", self._settings.depth_history_size
        return f"events:{event.symbol}", self._settings.event_history_size

    async def publish(self, event: MarketEvent) -> int:
        """
        Append durable + recorte + broadcast.

        Returns: número de suscriptores que recibieron el evento.
        """
        key, cap = self._durable_target(event)
        try:
            await self._store.zadd(key, event.timestamp, event.to_json())
            await self._store.zremrangebyrank(key, 0, -cap - 1)
        except StoreError as e:
            self._store_failures += 1
            logger.warning("Historial durable no actualizado (%s): %s", key, e)

        self._published += 1
        return await self._event_bus.publish(MARKET_EVENTS_TOPIC, event)

    # ════════════════════════════════════════════════════════════════
    #  UMBRALES POR VENTANA
    # ════════════════════════════════════════════════════════════════

    async def evaluate_price_windows(
        self,
        symbol: str,
        windows: Dict[str, PriceWindow],
        volume: float,
        timestamp: int,
        by_seconds: bool = False,
    ) -> List[MarketEvent]:
        """
        Emite PRICE_JUMP / PRICE_DROP (o sus variantes _SECOND) para cada
        ventana cuya |variación| alcanza su umbral.
        """
        thresholds = (
            self._settings.price_thresholds_seconds
            if by_seconds
            else self._settings.price_thresholds_minutes
        )
        emitted: List[MarketEvent] = []

        for name, window in windows.items():
            threshold = thresholds.get(name)
            if threshold is None or window.start_value <= 0:
                continue
            variation = window.percent_variation
            if variation == 0 or abs(variation) < threshold:
                continue

            event_cls = price_move_event_class(variation, by_seconds)
            event = event_cls(
                symbol=symbol,
                price=window.current_value,
                volume=volume,
                timestamp=timestamp,
                percentage=variation,
                window=name,
                start_price=window.start_value,
                threshold=threshold,
            )
            await self.publish(event)
            emitted.append(event)

        return emitted

    async def evaluate_volume_windows(
        self,
        symbol: str,
        windows: Dict[str, VolumeWindow],
        price: float,
        timestamp: int,
    ) -> List[MarketEvent]:
        """
        VOLUME cuando el volumen total y la presión del lado dominante
        alcanzan el umbral [volumen, presión %] de la ventana.
        """
        emitted: List[MarketEvent] = []

        for name, window in windows.items():
            threshold = self._settings.volume_thresholds.get(name)
            if threshold is None:
                continue
            min_volume, min_pressure = threshold
            dominant = max(window.buy_pressure, window.sell_pressure)
            if window.total_volume < min_volume or dominant < min_pressure:
                continue

            signed = dominant if window.buy_pressure >= window.sell_pressure else -dominant
            event = VolumeEvent(
                symbol=symbol,
                price=price,
                volume=window.total_volume,
                timestamp=timestamp,
                percentage=signed,
                window=name,
                buy_volume=window.buy_volume,
                sell_volume=window.sell_volume,
                threshold=min_pressure,
            )
            await self.publish(event)
            emitted.append(event)

        return emitted

    # ════════════════════════════════════════════════════════════════
    #  VENTANA DE ANÁLISIS (MASS_* + varianza de vela)
    # ════════════════════════════════════════════════════════════════

    async def record_analysis(self, sample: PriceSample) -> List[MarketEvent]:
        """Agrega el registro a la ventana de análisis y corre los detectores."""
        window = self._analysis.get(sample.symbol)
        if window is None:
            window = deque(maxlen=self._settings.analysis_window_size)
            self._analysis[sample.symbol] = window
        window.append(sample)

        emitted: List[MarketEvent] = []
        for event in (*self._detect_mass(window), self._detect_candle_variance(sample)):
            if event is not None:
                await self.publish(event)
                emitted.append(event)
        return emitted

    def _detect_mass(self, window: Deque[PriceSample]) -> List[MarketEvent]:
        if len(window) < 2:
            return []

        recent = list(window)[-self._settings.mass_sample_size:]
        pressures = [s.buy_pressure for s in recent if s.buy_pressure is not None]
        if not pressures:
            return []

        average_volume = sum(s.volume for s in window) / len(window)
        if average_volume <= 0:
            return []

        recent_volume = sum(s.volume for s in recent) / len(recent)
        surge = recent_volume / average_volume
        if surge <= self._settings.volume_surge_multiplier:
            return []

        buy_pressure = sum(pressures) / len(pressures)
        sell_pressure = 1 - buy_pressure
        current = recent[-1]

        events: List[MarketEvent] = []
        common = dict(
            symbol=current.symbol,
            price=current.price,
            volume=recent_volume,
            timestamp=current.timestamp,
            window=CANDLE_WINDOW,
            volume_surge=surge,
            average_volume=average_volume,
        )
        if buy_pressure > self._settings.mass_buy_pressure:
            events.append(MassBuyEvent(percentage=buy_pressure * 100, pressure=buy_pressure, **common))
        if sell_pressure > self._settings.mass_sell_pressure:
            events.append(MassSellEvent(percentage=sell_pressure * 100, pressure=sell_pressure, **common))
        return events

    def _detect_candle_variance(self, sample: PriceSample) -> Optional[MarketEvent]:
        variance = sample.price_variance
        if variance is None or abs(variance) <= self._settings.price_variance_threshold:
            return None
        event_cls = PriceJumpEvent if variance > 0 else PriceDropEvent
        return event_cls(
            symbol=sample.symbol,
            price=sample.price,
            volume=sample.volume,
            timestamp=sample.timestamp,
            percentage=variance * 100,
            window=CANDLE_WINDOW,
            start_price=sample.open_price,
            threshold=self._settings.price_variance_threshold * 100,
        )

    # ════════════════════════════════════════════════════════════════
    #  PROFUNDIDAD
    # ════════════════════════════════════════════════════════════════

    async def publish_depth(self, sample: DepthSample, last_price: float) -> Optional[VolumeEvent]:
        """VOLUME con las cantidades bid/ask dentro de la banda del último precio."""
        if last_price <= 0:
            return None
        bid_volume, ask_volume = sample.volumes_near(last_price, self._settings.depth_price_band)
        total = bid_volume + ask_volume
        event = VolumeEvent(
            symbol=sample.symbol,
            price=last_price,
            volume=total,
            timestamp=sample.timestamp,
            percentage=(bid_volume / total * 100) if total > 0 else 0.0,
            window=DEPTH_WINDOW,
            buy_volume=bid_volume,
            sell_volume=ask_volume,
        )
        await self.publish(event)
        return event

    # ════════════════════════════════════════════════════════════════
    #  HISTORIAL (catch-up de suscriptores)
    # ════════════════════════════════════════════════════════════════

    async def history(self, symbol: str, stream: str = "events", limit: int = 100) -> List[MarketEvent]:
        """
        Últimos `limit` eventos del log durable, del más antiguo al más
        reciente. Entradas que no validan se omiten.
        """
        if stream not in HISTORY_STREAMS:
            raise ValueError(f"Stream desconocido: {stream!r}")
        if limit <= 0:
            return []

        raw = await self._store.zrange(f"{stream}:{symbol}", -limit, -1)
        events: List[MarketEvent] = []
        for member in raw:
            try:
                events.append(parse_market_event(member))
            except ValidationError as e:
                logger.warning("Entrada de historial inválida en %s:%s: %s", stream, symbol, e.message)
        return events

    @property
    def stats(self) -> dict:
        return {
            "published": self._published,
            "store_failures": self._store_failures,
            "analysis_symbols": list(self._analysis),
        }
