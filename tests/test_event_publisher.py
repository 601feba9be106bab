import json

import pytest

from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.market_event import (
    PriceJumpEvent,
    PriceUpdateEvent,
    parse_market_event,
)
from ticksentinel.domain.entities.samples import DepthSample, PriceSample
from ticksentinel.domain.entities.windows import VolumeWindow
from ticksentinel.infrastructure.event_bus import MARKET_EVENTS_TOPIC, EventBus
from ticksentinel.infrastructure.store import MemoryStore
from ticksentinel.services.event_publisher import EventPublisher
from ticksentinel.services.interval_aggregator import second_price_aggregator

from helpers import SYMBOL, T0, FailingStore, drain


def jump(timestamp, percentage=1.0):
    return PriceJumpEvent(
        symbol=SYMBOL, price=101.0, timestamp=timestamp, percentage=percentage,
        window="5m", start_price=100.0, threshold=0.1,
    )


@pytest.mark.asyncio
async def test_durable_log_keeps_only_the_newest_events(bus):
    store = MemoryStore()
    publisher = EventPublisher(store, bus, Settings(event_history_size=3))

    for i in range(5):
        await publisher.publish(jump(T0 + i))

    assert await store.zcard(f"events:{SYMBOL}") == 3
    kept = [json.loads(m)["timestamp"] for m in await store.zrange(f"events:{SYMBOL}", 0, -1)]
    assert kept == [T0 + 2, T0 + 3, T0 + 4]


@pytest.mark.asyncio
async def test_price_updates_go_to_their_own_log(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    await publisher.publish(PriceUpdateEvent(symbol=SYMBOL, price=100.0, timestamp=T0))

    assert await store.zcard(f"price:{SYMBOL}") == 1
    assert await store.zcard(f"events:{SYMBOL}") == 0


@pytest.mark.asyncio
async def test_store_failure_does_not_block_broadcast(bus, settings):
    publisher = EventPublisher(FailingStore(), bus, settings)
    queue = await bus.subscribe(MARKET_EVENTS_TOPIC, "listener")

    event = jump(T0)
    delivered = await publisher.publish(event)

    assert delivered == 1
    assert await drain(queue) == [event]
    assert publisher.stats["store_failures"] == 1


@pytest.mark.asyncio
async def test_five_second_drop_emits_price_drop_second(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    aggregator = second_price_aggregator(settings)

    emitted = []
    for i, price in enumerate([100, 100, 100, 100, 95]):
        windows = aggregator.ingest(SYMBOL, float(price), T0 + i * 1_000)
        emitted += await publisher.evaluate_price_windows(
            SYMBOL, windows, volume=1.0, timestamp=T0 + i * 1_000, by_seconds=True
        )

    five = [e for e in emitted if e.window == "5s"]
    assert len(five) == 1
    assert five[0].kind == "PRICE_DROP_SECOND"
    assert five[0].percentage == pytest.approx(-5.0)
    assert five[0].start_price == 100.0
    assert five[0].threshold == 4.0
    assert all(e.kind == "PRICE_DROP_SECOND" for e in emitted)


@pytest.mark.asyncio
async def test_volume_window_threshold(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    windows = {
        "5m": VolumeWindow(buy_volume=90, sell_volume=20, buy_pressure=90 / 110 * 100,
                           sell_pressure=20 / 110 * 100, as_of=T0),
        "10m": VolumeWindow(buy_volume=90, sell_volume=20, buy_pressure=90 / 110 * 100,
                            sell_pressure=20 / 110 * 100, as_of=T0),
    }
    emitted = await publisher.evaluate_volume_windows(SYMBOL, windows, price=100.0, timestamp=T0)

    # 10m exige 200 de volumen total
    assert [e.window for e in emitted] == ["5m"]
    assert emitted[0].kind == "VOLUME"
    assert emitted[0].percentage == pytest.approx(90 / 110 * 100)
    assert emitted[0].buy_volume == 90


@pytest.mark.asyncio
async def test_mass_buy_needs_pressure_and_volume_surge(store, bus):
    publisher = EventPublisher(store, bus, Settings(mass_sample_size=1))

    for i in range(5):
        quiet = PriceSample(symbol=SYMBOL, price=100.0, open_price=100.0, volume=1.0,
                            taker_buy_volume=0.5, timestamp=T0 + i * 1_000)
        assert await publisher.record_analysis(quiet) == []

    burst = PriceSample(symbol=SYMBOL, price=100.0, open_price=100.0, volume=10.0,
                        taker_buy_volume=9.5, timestamp=T0 + 5_000)
    emitted = await publisher.record_analysis(burst)

    assert [e.kind for e in emitted] == ["MASS_BUY"]
    assert emitted[0].pressure == pytest.approx(0.95)
    assert emitted[0].volume_surge == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_single_candle_variance(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    sample = PriceSample(symbol=SYMBOL, price=104.0, open_price=100.0, volume=1.0,
                         taker_buy_volume=0.5, timestamp=T0)

    emitted = await publisher.record_analysis(sample)

    assert [e.kind for e in emitted] == ["PRICE_JUMP"]
    assert emitted[0].window == "1m"
    assert emitted[0].percentage == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_depth_volume_near_last_price(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    depth = DepthSample(
        symbol=SYMBOL,
        bids=((100.0, 2.0), (50.0, 5.0)),
        asks=((150.0, 3.0), (1000.0, 7.0)),
        timestamp=T0,
    )

    event = await publisher.publish_depth(depth, last_price=100.0)

    assert event.buy_volume == 7.0
    assert event.sell_volume == 3.0
    assert event.percentage == pytest.approx(70.0)
    assert await store.zcard(f"depth:{SYMBOL}") == 1


@pytest.mark.asyncio
async def test_history_returns_parsed_events_oldest_first(store, bus, settings):
    publisher = EventPublisher(store, bus, settings)
    for i in range(4):
        await publisher.publish(jump(T0 + i, percentage=float(i)))
    await store.zadd(f"events:{SYMBOL}", T0 + 10, "not json")

    history = await publisher.history(SYMBOL, limit=3)

    assert [e.timestamp for e in history] == [T0 + 2, T0 + 3]
    assert history[0] == parse_market_event(jump(T0 + 2, percentage=2.0).to_json())

    with pytest.raises(ValueError):
        await publisher.history(SYMBOL, stream="trades")
