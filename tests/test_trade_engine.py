import asyncio
import json

import pytest

from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.position import ExitReason, PositionStatus
from ticksentinel.domain.entities.trade_intent import Side, TradeIntent
from ticksentinel.infrastructure.event_bus import (
    POSITION_CLOSED_TOPIC,
    POSITION_OPENED_TOPIC,
    TRADE_INTENTS_TOPIC,
)
from ticksentinel.infrastructure.store import MemoryStore, StoreError, position_key, price_key
from ticksentinel.services.trade_engine import TradeLifecycleEngine

from helpers import SYMBOL, T0, drain


class ScriptedPrices:
    """sleep inyectable: en cada checkpoint publica el siguiente precio (None = sin precio)."""

    def __init__(self, store, prices):
        self._store = store
        self._prices = list(prices)
        self.checkpoints = 0

    async def sleep(self, seconds):
        self.checkpoints += 1
        if self._prices:
            price = self._prices.pop(0)
            if price is None:
                await self._store.delete(price_key(SYMBOL))
            else:
                await self._store.set(price_key(SYMBOL), str(price))
        await asyncio.sleep(0)


class PositionWritesFail(MemoryStore):
    async def set(self, key, value):
        if key.startswith("trade:"):
            raise StoreError(f"SET {key}: timeout")
        await super().set(key, value)


class ClosedWritesWait(MemoryStore):
    """Retiene la escritura del cierre hasta que se abre la compuerta."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def set(self, key, value):
        if key.startswith("trade:") and '"CLOSED_' in value:
            self.entered.set()
            await self.gate.wait()
        await super().set(key, value)


async def blocked_sleep(seconds):
    await asyncio.Event().wait()


def make_engine(store, bus, sleep, **overrides):
    settings = Settings(symbols=[SYMBOL], **overrides)
    return TradeLifecycleEngine(store, bus, settings, sleep=sleep, clock=lambda: T0)


def intent(name="x1", side=Side.LONG, leverage=1.0, notional=100.0, stop=None, take=None):
    return TradeIntent(
        strategy_name=name, side=side, leverage=leverage,
        notional_usd=notional, stop_loss=stop, take_profit=take,
    )


async def open_at(store, engine, price, trade_intent):
    await store.set(price_key(SYMBOL), str(price))
    return await engine.open(trade_intent)


@pytest.mark.asyncio
async def test_long_stop_loss_at_first_checkpoint(store, bus):
    script = ScriptedPrices(store, [94.0])
    engine = make_engine(store, bus, script.sleep)

    position_id = await open_at(store, engine, 100.0, intent(stop=95.0, take=110.0))
    position = await engine.wait(position_id)

    assert position.quantity == 1.0
    assert position.status == PositionStatus.CLOSED_STOPLOSS
    assert position.pnl_snapshots == []
    assert len(position.liquidity_snapshots) == 1
    assert position.liquidity_snapshots[0].reason == ExitReason.STOP_LOSS
    assert position.liquidity_snapshots[0].price == 94.0
    assert position.final_pnl == pytest.approx(-6.0)
    assert script.checkpoints == 1


@pytest.mark.asyncio
async def test_short_liquidation_without_stop_loss(store, bus):
    script = ScriptedPrices(store, [111.0])
    engine = make_engine(store, bus, script.sleep)

    position_id = await open_at(store, engine, 100.0, intent(side=Side.SHORT, leverage=10.0))
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_LIQUIDATION
    assert position.liquidity_snapshots[0].reason == ExitReason.LIQUIDATION


@pytest.mark.asyncio
async def test_stop_loss_has_priority_over_liquidation(store, bus):
    script = ScriptedPrices(store, [85.0])
    engine = make_engine(store, bus, script.sleep)

    position_id = await open_at(store, engine, 100.0, intent(leverage=10.0, stop=95.0))
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_STOPLOSS
    assert [s.reason for s in position.liquidity_snapshots] == [ExitReason.STOP_LOSS]


@pytest.mark.asyncio
async def test_relative_levels_resolve_against_entry(store, bus):
    script = ScriptedPrices(store, [105.0, 111.0])
    engine = make_engine(store, bus, script.sleep)

    position_id = await open_at(store, engine, 100.0, intent(stop=0.05, take=0.1))
    position = await engine.wait(position_id)

    assert position.stop_loss == pytest.approx(95.0)
    assert position.take_profit == pytest.approx(110.0)
    assert position.status == PositionStatus.CLOSED_TAKEPROFIT
    assert [s.elapsed_seconds for s in position.pnl_snapshots] == [10.0]
    assert position.pnl_snapshots[0].pnl == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_short_relative_levels_are_inverted(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    position_id = await open_at(
        store, engine, 200.0, intent(side=Side.SHORT, notional=100.0, stop=0.05, take=0.1)
    )
    position = engine.get(position_id)

    assert position.quantity == 0.5
    assert position.stop_loss == pytest.approx(210.0)
    assert position.take_profit == pytest.approx(180.0)
    await engine.shutdown()


@pytest.mark.asyncio
async def test_timeout_after_schedule_is_exhausted(store, bus):
    script = ScriptedPrices(store, [101.0, 102.0, 101.5, 101.0])
    engine = make_engine(store, bus, script.sleep, checkpoint_count=4)

    position_id = await open_at(store, engine, 100.0, intent())
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_TIMEOUT
    assert position.close_price == 101.0
    assert [s.elapsed_seconds for s in position.pnl_snapshots] == [10.0, 20.0, 30.0, 40.0]
    assert position.liquidity_snapshots == []


@pytest.mark.asyncio
async def test_missing_price_defers_the_checkpoint(store, bus):
    script = ScriptedPrices(store, [None, None, 102.0])
    engine = make_engine(store, bus, script.sleep, checkpoint_count=3)

    position_id = await open_at(store, engine, 100.0, intent())
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_TIMEOUT
    assert [s.elapsed_seconds for s in position.pnl_snapshots] == [30.0]
    assert position.close_price == 102.0


@pytest.mark.asyncio
async def test_timeout_without_any_price_closes_at_entry(store, bus):
    script = ScriptedPrices(store, [None, None])
    engine = make_engine(store, bus, script.sleep, checkpoint_count=2)

    position_id = await open_at(store, engine, 100.0, intent())
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_TIMEOUT
    assert position.close_price == 100.0
    assert position.pnl_snapshots == []


@pytest.mark.asyncio
async def test_one_active_position_per_strategy(store, bus):
    engine = make_engine(store, bus, blocked_sleep)

    first = await open_at(store, engine, 100.0, intent(name="x1"))
    duplicate = await engine.open(intent(name="x1"))
    other = await engine.open(intent(name="x10"))

    assert first.startswith("x1:")
    assert duplicate is None
    assert other.startswith("x10:")
    assert len(engine.active_positions()) == 2
    await engine.shutdown()


@pytest.mark.asyncio
async def test_concurrent_opens_for_same_strategy(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    await store.set(price_key(SYMBOL), "100")

    results = await asyncio.gather(*(engine.open(intent(name="x1")) for _ in range(5)))

    assert len([r for r in results if r is not None]) == 1
    await engine.shutdown()


@pytest.mark.asyncio
async def test_open_without_price_is_rejected(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    assert await engine.open(intent()) is None
    assert engine.active_positions() == []


@pytest.mark.asyncio
async def test_close_is_idempotent(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    closed = await bus.subscribe(POSITION_CLOSED_TOPIC, "test")
    position_id = await open_at(store, engine, 100.0, intent())

    assert await engine.close(position_id, PositionStatus.CLOSED_TIMEOUT, 101.0) is True
    assert await engine.close(position_id, PositionStatus.CLOSED_STOPLOSS, 90.0) is False
    await asyncio.sleep(0)

    position = engine.get(position_id)
    assert position.status == PositionStatus.CLOSED_TIMEOUT
    assert position.close_price == 101.0
    assert engine.monitor_count == 0
    assert len(await drain(closed)) == 1


@pytest.mark.asyncio
async def test_shutdown_marks_open_positions(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    position_id = await open_at(store, engine, 100.0, intent())

    await engine.shutdown()

    position = engine.get(position_id)
    assert position.status == PositionStatus.CLOSED_SHUTDOWN
    stored = json.loads(await store.get(position_key(position_id)))
    assert stored["status"] == "CLOSED_SHUTDOWN"


@pytest.mark.asyncio
async def test_shutdown_can_leave_positions_open(store, bus):
    engine = make_engine(store, bus, blocked_sleep, close_on_shutdown=False)
    position_id = await open_at(store, engine, 100.0, intent())

    await engine.shutdown()

    assert engine.get(position_id).status == PositionStatus.OPEN
    assert engine.monitor_count == 0
    stored = json.loads(await store.get(position_key(position_id)))
    assert stored["status"] == "OPEN"


@pytest.mark.asyncio
async def test_shutdown_before_first_checkpoint_still_closes(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    closed = await bus.subscribe(POSITION_CLOSED_TOPIC, "test")
    await store.set(price_key(SYMBOL), "100")

    # sin ceder el loop antes del shutdown
    position_id = await engine.open(intent())
    await store.set(price_key(SYMBOL), "103")
    await engine.shutdown()

    assert engine.monitor_count == 0
    assert engine.active_positions() == []
    [position] = await drain(closed)
    assert position.id == position_id
    assert position.status == PositionStatus.CLOSED_SHUTDOWN
    assert position.close_price == 100.0
    stored = json.loads(await store.get(position_key(position_id)))
    assert stored["status"] == "CLOSED_SHUTDOWN"


@pytest.mark.asyncio
async def test_cancelling_monitor_mid_close_keeps_record(bus):
    store = ClosedWritesWait()
    script = ScriptedPrices(store, [94.0])
    engine = make_engine(store, bus, script.sleep)
    closed = await bus.subscribe(POSITION_CLOSED_TOPIC, "test")

    position_id = await open_at(store, engine, 100.0, intent(stop=95.0))
    [monitor] = [t for t in asyncio.all_tasks() if t.get_name() == f"monitor:{position_id}"]

    await asyncio.wait_for(store.entered.wait(), timeout=1)
    monitor.cancel()
    await asyncio.gather(monitor, return_exceptions=True)
    store.gate.set()
    for _ in range(5):
        await asyncio.sleep(0)

    stored = json.loads(await store.get(position_key(position_id)))
    assert stored["status"] == "CLOSED_STOPLOSS"
    [position] = await drain(closed)
    assert position.status == PositionStatus.CLOSED_STOPLOSS
    assert engine.monitor_count == 0


@pytest.mark.asyncio
async def test_store_failure_keeps_monitoring_in_memory(bus):
    store = PositionWritesFail()
    script = ScriptedPrices(store, [94.0])
    engine = make_engine(store, bus, script.sleep)

    position_id = await open_at(store, engine, 100.0, intent(stop=95.0))
    position = await engine.wait(position_id)

    assert position.status == PositionStatus.CLOSED_STOPLOSS
    assert await store.get(position_key(position_id)) is None


@pytest.mark.asyncio
async def test_run_consumes_trade_intents(store, bus):
    engine = make_engine(store, bus, blocked_sleep)
    opened = await bus.subscribe(POSITION_OPENED_TOPIC, "test")
    await store.set(price_key(SYMBOL), "100")

    task = asyncio.create_task(engine.run())
    await asyncio.sleep(0)
    await bus.publish(TRADE_INTENTS_TOPIC, '{"strategyName": "x2", "side": "SHORT", "leverage": 5, "notionalUSD": 50}')
    await bus.publish(TRADE_INTENTS_TOPIC, '{"strategyName": "bad"}')
    for _ in range(10):
        await asyncio.sleep(0)

    [position] = await drain(opened)
    assert position.strategy_name == "x2"
    assert position.side == Side.SHORT
    assert position.quantity == 0.5

    await engine.stop()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    assert position.status == PositionStatus.CLOSED_SHUTDOWN
