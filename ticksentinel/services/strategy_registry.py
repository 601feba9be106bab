"""
TickSentinel – Strategy Registry
=================================
Registro inyectado de módulos de decisión con su flag de activación.

Reemplaza el estado global por módulo: el DecisionPool recibe el
registro en el constructor y solo consulta los módulos activos.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List

from ticksentinel.core.logging import get_logger

if TYPE_CHECKING:
    from ticksentinel.services.decision_pool import DecisionModule

logger = get_logger("strategy_registry")


class StrategyRegistry:
    """name → (módulo, activo)."""

    def __init__(self) -> None:
        self._modules: Dict[str, "DecisionModule"] = {}
        self._active: Dict[str, bool] = {}

    def register(self, module: "DecisionModule", active: bool = True) -> None:
        if module.name in self._modules:
            raise ValueError(f"Estrategia ya registrada: {module.name}")
        self._modules[module.name] = module
        self._active[module.name] = active
        logger.info("Estrategia registrada: %s (activa=%s)", module.name, active)

    def unregister(self, name: str) -> None:
        self._modules.pop(name, None)
        self._active.pop(name, None)

    def activate(self, name: str) -> None:
        self._require(name)
        self._active[name] = True
        logger.info("Estrategia activada: %s", name)

    def deactivate(self, name: str) -> None:
        self._require(name)
        self._active[name] = False
        logger.info("Estrategia desactivada: %s", name)

    def is_active(self, name: str) -> bool:
        return self._active.get(name, False)

    def get(self, name: str) -> "DecisionModule":
        self._require(name)
        return self._modules[name]

    def active_modules(self) -> List["DecisionModule"]:
        return [m for name, m in self._modules.items() if self._active[name]]

    def names(self) -> List[str]:
        return list(self._modules)

    def _require(self, name: str) -> None:
        if name not in self._modules:
            raise KeyError(f"Estrategia desconocida: {name}")

    def __len__(self) -> int:
        return len(self._modules)
