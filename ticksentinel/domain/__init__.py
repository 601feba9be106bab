"""
TickSentinel – Domain
======================
Entidades, value objects y excepciones del dominio. Sin I/O.
"""
