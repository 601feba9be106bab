"""
TickSentinel – Application Layer
=================================
Casos de uso que orquestan servicios a partir de muestras del bus.
"""
