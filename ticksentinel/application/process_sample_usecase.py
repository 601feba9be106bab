"""
TickSentinel – Process Sample Use Case
=======================================
Unidad de agregación + publicación: consume muestras del EventBus,
alimenta los agregadores y publica los eventos derivados.

FLUJO:
  EventBus (samples topic)
       │
       ▼
  ProcessSampleUseCase.run()  ◄── loop consumiendo de su Queue
       │
       ├── PriceSample:
       │     ├── SET {symbol}:price                  → precio actual
       │     ├── publish PRICE_UPDATE                → price:{symbol}
       │     ├── minute volume  → evaluate_volume_windows
       │     ├── minute price   → evaluate_price_windows
       │     ├── second price   → evaluate_price_windows(by_seconds)
       │     └── record_analysis                     → MASS_* / varianza
       │
       └── DepthSample:
             └── publish_depth(último precio)        → depth:{symbol}

ORDEN:
- Las muestras de un símbolo se consumen de UNA cola, en orden; el
  agregador y el publisher corren secuencialmente por muestra.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from ticksentinel.core.logging import get_logger
from ticksentinel.domain.entities.market_event import PriceUpdateEvent
from ticksentinel.domain.entities.samples import DepthSample, PriceSample
from ticksentinel.domain.entities.windows import PriceWindow, VolumeWindow
from ticksentinel.infrastructure.event_bus import SAMPLES_TOPIC, EventBus
from ticksentinel.infrastructure.store import KeyValueStore, StoreError, price_key
from ticksentinel.services.event_publisher import EventPublisher
from ticksentinel.services.interval_aggregator import IntervalAggregator

logger = get_logger("process_sample")


class ProcessSampleUseCase:
    """Consume muestras, recomputa ventanas y publica eventos."""

    def __init__(
        self,
        event_bus: EventBus,
        store: KeyValueStore,
        publisher: EventPublisher,
        minute_prices: IntervalAggregator[PriceWindow],
        second_prices: IntervalAggregator[PriceWindow],
        minute_volumes: IntervalAggregator[VolumeWindow],
    ) -> None:
        self._event_bus = event_bus
        self._store = store
        self._publisher = publisher
        self._minute_prices = minute_prices
        self._second_prices = second_prices
        self._minute_volumes = minute_volumes

        self._queue: Optional[asyncio.Queue] = None
        self._last_price: Dict[str, float] = {}
        self._processed_count = 0

    async def run(self) -> None:
        """Suscribirse al EventBus y consumir hasta ser cancelado."""
        self._queue = await self._event_bus.subscribe(SAMPLES_TOPIC, "process_sample_usecase")
        logger.info("ProcessSampleUseCase iniciado, consumiendo tópico '%s'", SAMPLES_TOPIC)
        try:
            while True:
                sample = await self._queue.get()
                try:
                    await self.process(sample)
                except Exception as e:
                    logger.error("Error procesando muestra %r: %s", sample, e, exc_info=True)
        finally:
            await self._event_bus.unsubscribe(SAMPLES_TOPIC, self._queue)
            self._queue = None

    async def stop(self) -> None:
        logger.info("ProcessSampleUseCase detenido. Muestras procesadas: %d", self._processed_count)

    async def process(self, sample: PriceSample | DepthSample) -> None:
        if isinstance(sample, PriceSample):
            await self._process_price(sample)
        elif isinstance(sample, DepthSample):
            await self._process_depth(sample)
        else:
            logger.warning("Tipo de muestra desconocido: %s", type(sample).__name__)
            return
        self._processed_count += 1

    async def _process_price(self, sample: PriceSample) -> None:
        symbol = sample.symbol
        self._last_price[symbol] = sample.price

        try:
            await self._store.set(price_key(symbol), str(sample.price))
        except StoreError as e:
            logger.warning("No se pudo actualizar el precio actual de %s: %s", symbol, e)

        await self._publisher.publish(
            PriceUpdateEvent(
                symbol=symbol,
                price=sample.price,
                volume=sample.volume,
                timestamp=sample.timestamp,
                window="1m",
            )
        )

        volumes = self._minute_volumes.ingest(
            symbol, (sample.buy_volume, sample.sell_volume), sample.timestamp
        )
        await self._publisher.evaluate_volume_windows(symbol, volumes, sample.price, sample.timestamp)

        minute = self._minute_prices.ingest(symbol, sample.price, sample.timestamp)
        await self._publisher.evaluate_price_windows(
            symbol, minute, sample.volume, sample.timestamp, by_seconds=False
        )

        seconds = self._second_prices.ingest(symbol, sample.price, sample.timestamp)
        await self._publisher.evaluate_price_windows(
            symbol, seconds, sample.volume, sample.timestamp, by_seconds=True
        )

        await self._publisher.record_analysis(sample)

    async def _process_depth(self, sample: DepthSample) -> None:
        last_price = self._last_price.get(sample.symbol)
        if last_price is None:
            logger.debug("Depth de %s ignorado: sin precio todavía", sample.symbol)
            return
        await self._publisher.publish_depth(sample, last_price)

    def last_price(self, symbol: str) -> Optional[float]:
        return self._last_price.get(symbol)

    @property
    def processed_count(self) -> int:
        return self._processed_count
