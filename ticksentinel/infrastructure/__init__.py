"""
TickSentinel – Infrastructure
==============================
Adaptadores técnicos: bus de eventos, store durable, feed de Binance y
auditoría SQL.
"""
