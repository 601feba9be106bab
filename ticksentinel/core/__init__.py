"""
TickSentinel – Core
====================
Configuración y logging transversales.
"""

from ticksentinel.core.settings import Settings, settings
from ticksentinel.core.logging import setup_logging, get_logger

__all__ = ["Settings", "settings", "setup_logging", "get_logger"]
