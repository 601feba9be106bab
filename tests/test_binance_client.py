import json

import pytest

from ticksentinel.core.settings import Settings
from ticksentinel.domain.entities.samples import DepthSample, PriceSample
from ticksentinel.domain.exceptions import InvalidSampleError
from ticksentinel.infrastructure.binance_client import BinanceStreamClient, parse_message
from ticksentinel.infrastructure.event_bus import SAMPLES_TOPIC

from helpers import drain

KLINE = {
    "e": "kline",
    "E": 1700000000123,
    "s": "BTCUSDT",
    "k": {
        "t": 1700000000000, "T": 1700000000999, "s": "BTCUSDT", "i": "1s",
        "o": "100.00", "c": "101.50", "h": "102.00", "l": "99.50",
        "v": "10.0", "V": "6.0", "x": True,
    },
}

DEPTH = {
    "e": "depthUpdate",
    "E": 1700000000500,
    "s": "BTCUSDT",
    "U": 1,
    "u": 2,
    "b": [["101.00", "1.5"], ["100.50", "0"]],
    "a": [["102.00", "2.0"]],
}


def test_kline_becomes_price_sample():
    sample = parse_message(json.dumps(KLINE))

    assert isinstance(sample, PriceSample)
    assert sample.symbol == "BTCUSDT"
    assert sample.price == 101.5
    assert sample.open_price == 100.0
    assert sample.buy_volume == 6.0
    assert sample.sell_volume == 4.0
    assert sample.timestamp == 1700000000000


def test_taker_volume_is_clipped_to_total():
    kline = json.loads(json.dumps(KLINE))
    kline["k"]["V"] = "12.0"
    sample = parse_message(kline)
    assert sample.buy_volume == 10.0
    assert sample.sell_volume == 0.0


def test_depth_update_becomes_depth_sample():
    sample = parse_message(DEPTH)

    assert isinstance(sample, DepthSample)
    assert sample.bids == ((101.0, 1.5), (100.5, 0.0))
    assert sample.asks == ((102.0, 2.0),)
    assert sample.timestamp == 1700000000500


def test_subscription_ack_is_ignored():
    assert parse_message('{"result": null, "id": 1}') is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({**KLINE, "k": {**KLINE["k"], "c": "abc"}}),
        json.dumps({"e": "kline", "E": 1}),
        json.dumps({**DEPTH, "b": [["101.00"]]}),
    ],
)
def test_malformed_messages_raise(raw):
    with pytest.raises(InvalidSampleError):
        parse_message(raw)


def test_subscription_params():
    client = BinanceStreamClient(None, Settings(symbols=["BTCUSDT", "ETHUSDT"]))
    assert client.subscription_params() == [
        "btcusdt@kline_1s", "btcusdt@depth", "ethusdt@kline_1s", "ethusdt@depth",
    ]


@pytest.mark.asyncio
async def test_handle_message_publishes_and_drops(bus, settings):
    client = BinanceStreamClient(bus, settings)
    queue = await bus.subscribe(SAMPLES_TOPIC, "test")

    await client.handle_message(json.dumps(KLINE))
    await client.handle_message("garbage")
    await client.handle_message('{"result": null, "id": 1}')

    samples = await drain(queue)
    assert len(samples) == 1
    assert client.stats["samples_received"] == 1
    assert client.stats["samples_dropped"] == 1
