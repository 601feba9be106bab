import asyncio

from ticksentinel.infrastructure.store import MemoryStore, StoreError

SYMBOL = "BTCUSDT"
T0 = 1_700_000_000_000


class FailingStore(MemoryStore):
    """Store cuyas escrituras de sorted set siempre fallan."""

    async def zadd(self, key, score, member):
        raise StoreError(f"ZADD {key}: connection refused")


async def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items
