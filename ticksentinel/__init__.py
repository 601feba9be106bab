"""
TickSentinel
============
Agregación de ticks en ventanas móviles, distribución de eventos de
mercado y motor de ciclo de vida de posiciones simuladas.
"""

__version__ = "0.3.0"
