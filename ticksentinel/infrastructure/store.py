"""
TickSentinel – Durable Store (key / sorted-set)
================================================
Servicio externo ordenado usado para historial durable, precio actual
y registros de posiciones.

OPERACIONES (semántica Redis):
  set(key, value)                       → string
  get(key)                              → string | None
  delete(key)                           → borra string o sorted set
  zadd(key, score, member)              → sorted set por score (timestamp)
  zrange(key, start, stop)              → rango por rango, stop INCLUSIVO,
                                          índices negativos desde el final
  zremrangebyrank(key, start, stop)     → recorte; (0, -N-1) deja los N
                                          más recientes
  zcard(key)                            → tamaño del sorted set

IMPLEMENTACIONES:
  - RedisStore  → redis.asyncio (producción)
  - MemoryStore → misma semántica en proceso (redis_enabled=False, tests)

Las claves son strings opacos para el core. Los errores del backend se
envuelven en StoreError para que los llamadores los traten como I/O
transitorio.
"""

from __future__ import annotations

import bisect
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from ticksentinel.core.logging import get_logger

logger = get_logger("store")


class StoreError(Exception):
    """Fallo de lectura/escritura en el store durable."""


def price_key(symbol: str) -> str:
    return f"{symbol}:price"


def position_key(position_id: str) -> str:
    return f"trade:{position_id}"


class KeyValueStore(ABC):
    """Interfaz mínima del store durable."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def zadd(self, key: str, score: float, member: str) -> None: ...

    @abstractmethod
    async def zrange(self, key: str, start: int, stop: int) -> List[str]: ...

    @abstractmethod
    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int: ...

    @abstractmethod
    async def zcard(self, key: str) -> int: ...

    async def close(self) -> None:
        """Liberar conexiones (no-op por defecto)."""


def _rank_bounds(start: int, stop: int, length: int) -> Optional[Tuple[int, int]]:
    """Normaliza índices estilo Redis; None si el rango queda vacío."""
    if start < 0:
        start += length
    if stop < 0:
        stop += length
    start = max(start, 0)
    stop = min(stop, length - 1)
    if start > stop:
        return None
    return start, stop


class MemoryStore(KeyValueStore):
    """
    Store en memoria con la semántica de Redis.

    Sorted sets: lista ordenada de (score, member) + índice member → score.
    Un member repetido actualiza su score (como ZADD).
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._zsets: Dict[str, List[Tuple[float, str]]] = {}
        self._zscores: Dict[str, Dict[str, float]] = {}

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._zsets.pop(key, None)
        self._zscores.pop(key, None)

    async def zadd(self, key: str, score: float, member: str) -> None:
        entries = self._zsets.setdefault(key, [])
        scores = self._zscores.setdefault(key, {})
        if member in scores:
            entries.remove((scores[member], member))
        scores[member] = score
        bisect.insort(entries, (score, member))

    async def zrange(self, key: str, start: int, stop: int) -> List[str]:
        entries = self._zsets.get(key, [])
        bounds = _rank_bounds(start, stop, len(entries))
        if bounds is None:
            return []
        return [member for _, member in entries[bounds[0]:bounds[1] + 1]]

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        entries = self._zsets.get(key, [])
        bounds = _rank_bounds(start, stop, len(entries))
        if bounds is None:
            return 0
        removed = entries[bounds[0]:bounds[1] + 1]
        del entries[bounds[0]:bounds[1] + 1]
        scores = self._zscores[key]
        for _, member in removed:
            scores.pop(member, None)
        return len(removed)

    async def zcard(self, key: str) -> int:
        return len(self._zsets.get(key, []))


class RedisStore(KeyValueStore):
    """Store durable sobre redis.asyncio (decode_responses=True)."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._client = redis_async.from_url(url, decode_responses=True)

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client.set(key, value)
        except RedisError as e:
            raise StoreError(f"SET {key}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise StoreError(f"GET {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise StoreError(f"DEL {key}: {e}") from e

    async def zadd(self, key: str, score: float, member: str) -> None:
        try:
            await self._client.zadd(key, {member: score})
        except RedisError as e:
            raise StoreError(f"ZADD {key}: {e}") from e

    async def zrange(self, key: str, start: int, stop: int) -> List[str]:
        try:
            return await self._client.zrange(key, start, stop)
        except RedisError as e:
            raise StoreError(f"ZRANGE {key}: {e}") from e

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        try:
            return await self._client.zremrangebyrank(key, start, stop)
        except RedisError as e:
            raise StoreError(f"ZREMRANGEBYRANK {key}: {e}") from e

    async def zcard(self, key: str) -> int:
        try:
            return await self._client.zcard(key)
        except RedisError as e:
            raise StoreError(f"ZCARD {key}: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Conexión Redis cerrada (%s)", self._url)
