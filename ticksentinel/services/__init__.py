"""
TickSentinel – Services
========================
Agregación por ventanas, publicación de eventos, pool de decisión,
motor de posiciones y supervisor de unidades.
"""
