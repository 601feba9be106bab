"""
TickSentinel – Worker Supervisor
=================================
Dueño de las unidades de larga duración (ingestor, agregación,
pool de decisión, motor de trading, persistencia).

CICLO DE VIDA DE UNA UNIDAD:

  start(spec)
       │
       ▼
  asyncio.Task(spec.run())  + observador de terminación (done callback)
       │
       ├── cancelada (shutdown)          → nada
       ├── excepción                     ─┐
       └── retorno inesperado            ─┴─▸ restart_count += 1
                                              espera backoff
                                              start(spec) otra vez

BACKOFF:
  delay = min(base × 2^n, cap)
  n = fallos consecutivos; vuelve a 0 si la unidad estuvo viva al menos
  `reset_after` segundos antes de caer.

SHUTDOWN:
  1. Se cancelan los reinicios pendientes.
  2. Se llama al hook stop() de cada unidad (en orden inverso de alta).
  3. Se cancelan las tasks que sigan vivas y se espera a todas.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from ticksentinel.core.logging import get_logger

logger = get_logger("supervisor")


@dataclass(frozen=True)
class UnitSpec:
    id: str
    kind: str
    run: Callable[[], Awaitable[None]]
    stop: Optional[Callable[[], Awaitable[None]]] = None


@dataclass
class Unit:
    spec: UnitSpec
    handle: Optional[asyncio.Task] = None
    restart_count: int = 0
    consecutive_failures: int = 0
    started_at: float = 0.0
    last_error: Optional[str] = None
    _pending_restart: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def alive(self) -> bool:
        return self.handle is not None and not self.handle.done()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "alive": self.alive,
            "restart_count": self.restart_count,
            "last_error": self.last_error,
        }


class WorkerSupervisor:
    """Arranca unidades en tasks aisladas y las reinicia si terminan mal."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        reset_after: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._reset_after = reset_after
        self._sleep = sleep
        self._clock = clock

        self._units: Dict[str, Unit] = {}
        self._stopping = False

    # ──────────────────────── Arranque ──────────────────────────────────

    async def start(self, spec: UnitSpec) -> Unit:
        """Registra (o re-lanza) una unidad."""
        unit = self._units.get(spec.id)
        if unit is None:
            unit = Unit(spec=spec)
            self._units[spec.id] = unit
        elif unit.alive:
            raise ValueError(f"Unidad ya en ejecución: {spec.id}")

        self._stopping = False
        self._launch(unit)
        logger.info("▶ Unidad iniciada: %s (%s)", spec.id, spec.kind)
        return unit

    def _launch(self, unit: Unit) -> None:
        unit.started_at = self._clock()
        task = asyncio.create_task(unit.spec.run(), name=f"unit:{unit.id}")
        unit.handle = task
        task.add_done_callback(lambda t, u=unit: self._on_done(u, t))

    # ──────────────────────── Observador ────────────────────────────────

    def _on_done(self, unit: Unit, task: asyncio.Task) -> None:
        if unit.handle is not task:
            return
        if self._stopping or task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            unit.last_error = f"{type(exc).__name__}: {exc}"
            logger.error(
                "💥 Unidad %s terminó con error: %s",
                unit.id, unit.last_error, exc_info=exc,
            )
        else:
            unit.last_error = "retorno inesperado"
            logger.warning("Unidad %s retornó inesperadamente", unit.id)

        unit.handle = None
        if self._clock() - unit.started_at >= self._reset_after:
            unit.consecutive_failures = 0

        delay = min(self._base_delay * (2 ** unit.consecutive_failures), self._max_delay)
        unit.consecutive_failures += 1
        unit.restart_count += 1
        logger.info(
            "🔄 Reiniciando %s en %.1fs (reinicio #%d)",
            unit.id, delay, unit.restart_count,
        )
        unit._pending_restart = asyncio.create_task(self._restart_later(unit, delay))

    async def _restart_later(self, unit: Unit, delay: float) -> None:
        await self._sleep(delay)
        unit._pending_restart = None
        if not self._stopping and not unit.alive:
            self._launch(unit)

    # ──────────────────────── Shutdown ──────────────────────────────────

    async def shutdown(self) -> None:
        self._stopping = True
        units = list(self._units.values())

        pending = [u._pending_restart for u in units if u._pending_restart is not None]
        for task in pending:
            task.cancel()

        for unit in reversed(units):
            if unit.spec.stop is None:
                continue
            try:
                await unit.spec.stop()
            except Exception as e:
                logger.error("Error en stop() de %s: %s", unit.id, e, exc_info=True)

        handles = [u.handle for u in units if u.handle is not None]
        for task in handles:
            if not task.done():
                task.cancel()
        await asyncio.gather(*handles, *pending, return_exceptions=True)

        for unit in units:
            unit.handle = None
            unit._pending_restart = None
        logger.info("Supervisor detenido (%d unidades)", len(units))

    # ──────────────────────── Consultas ─────────────────────────────────

    def get(self, unit_id: str) -> Optional[Unit]:
        return self._units.get(unit_id)

    def units(self) -> List[dict]:
        return [u.to_dict() for u in self._units.values()]

    @property
    def unit_count(self) -> int:
        return sum(1 for u in self._units.values() if u.alive)
