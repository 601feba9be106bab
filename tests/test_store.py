import pytest

from ticksentinel.infrastructure.store import MemoryStore, position_key, price_key


def test_key_layout():
    assert price_key("BTCUSDT") == "BTCUSDT:price"
    assert position_key("buyer-s1:ab12cd34") == "trade:buyer-s1:ab12cd34"


@pytest.mark.asyncio
async def test_set_get_delete():
    store = MemoryStore()
    assert await store.get("BTCUSDT:price") is None
    await store.set("BTCUSDT:price", "100.5")
    assert await store.get("BTCUSDT:price") == "100.5"
    await store.delete("BTCUSDT:price")
    assert await store.get("BTCUSDT:price") is None


@pytest.mark.asyncio
async def test_sorted_set_orders_by_score():
    store = MemoryStore()
    await store.zadd("events:X", 3, "c")
    await store.zadd("events:X", 1, "a")
    await store.zadd("events:X", 2, "b")

    assert await store.zrange("events:X", 0, -1) == ["a", "b", "c"]
    assert await store.zrange("events:X", -2, -1) == ["b", "c"]
    assert await store.zrange("events:X", 5, 10) == []


@pytest.mark.asyncio
async def test_readding_a_member_updates_its_score():
    store = MemoryStore()
    await store.zadd("k", 1, "a")
    await store.zadd("k", 2, "b")
    await store.zadd("k", 3, "a")

    assert await store.zrange("k", 0, -1) == ["b", "a"]
    assert await store.zcard("k") == 2


@pytest.mark.asyncio
async def test_trim_keeps_the_last_n_members():
    store = MemoryStore()
    for i in range(10):
        await store.zadd("k", i, f"m{i}")

    removed = await store.zremrangebyrank("k", 0, -4)

    assert removed == 7
    assert await store.zrange("k", 0, -1) == ["m7", "m8", "m9"]
    # por debajo del tope no se borra nada
    assert await store.zremrangebyrank("k", 0, -4) == 0
