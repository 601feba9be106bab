"""
TickSentinel – API Routes (FastAPI)
====================================
API de operaciones de solo lectura. No hay UI.

Endpoints disponibles:
  GET  /api/health                 → health check
  GET  /api/status                 → estadísticas de cada componente
  GET  /api/units                  → unidades del supervisor + reinicios
  GET  /api/windows/{symbol}       → ventanas actuales (precio y volumen)
  GET  /api/events/{symbol}        → historial durable (catch-up)
  GET  /api/positions              → posiciones activas y cerradas
  GET  /api/positions/{id}         → una posición
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from ticksentinel import __version__
from ticksentinel.api.schemas import (
    EventsResponse,
    HealthResponse,
    PositionSchema,
    PositionsResponse,
    UnitsResponse,
    WindowsResponse,
)
from ticksentinel.core.logging import get_logger

logger = get_logger("api.routes")

router = APIRouter()

# Referencias a componentes inyectados desde main.py
_supervisor = None
_publisher = None
_trade_engine = None
_minute_prices = None
_second_prices = None
_minute_volumes = None
_feed_client = None
_decision_pool = None


def init_routes(
    supervisor,
    publisher,
    trade_engine,
    minute_prices,
    second_prices,
    minute_volumes,
    feed_client=None,
    decision_pool=None,
) -> None:
    """Inyectar dependencias desde main.py al arrancar."""
    global _supervisor, _publisher, _trade_engine
    global _minute_prices, _second_prices, _minute_volumes
    global _feed_client, _decision_pool
    _supervisor = supervisor
    _publisher = publisher
    _trade_engine = trade_engine
    _minute_prices = minute_prices
    _second_prices = second_prices
    _minute_volumes = minute_volumes
    _feed_client = feed_client
    _decision_pool = decision_pool


# ─── Health / estado ──────────────────────────────────────────────────

@router.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        service="ticksentinel",
        version=__version__,
        units_alive=_supervisor.unit_count if _supervisor else 0,
    )


@router.get("/api/status")
async def status():
    return {
        "feed": _feed_client.stats if _feed_client else None,
        "publisher": _publisher.stats if _publisher else None,
        "decision_pool": _decision_pool.stats if _decision_pool else None,
        "trade_engine": _trade_engine.stats if _trade_engine else None,
    }


@router.get("/api/units", response_model=UnitsResponse)
async def units():
    items = _supervisor.units() if _supervisor else []
    return {"count": len(items), "units": items}


# ─── Ventanas ─────────────────────────────────────────────────────────

@router.get("/api/windows/{symbol}", response_model=WindowsResponse)
async def windows(symbol: str):
    symbol = symbol.upper()
    minutes = _minute_prices.windows(symbol)
    if minutes is None:
        raise HTTPException(status_code=404, detail=f"Sin datos para {symbol}")
    seconds = _second_prices.windows(symbol) or {}
    volumes = _minute_volumes.windows(symbol) or {}
    return {
        "symbol": symbol,
        "minutes": {name: w.to_dict() for name, w in minutes.items()},
        "seconds": {name: w.to_dict() for name, w in seconds.items()},
        "volumes": {name: w.to_dict() for name, w in volumes.items()},
    }


# ─── Historial durable ────────────────────────────────────────────────

@router.get("/api/events/{symbol}", response_model=EventsResponse)
async def events(
    symbol: str,
    stream: str = Query("events", pattern="^(events|price|depth)$"),
    limit: int = Query(100, ge=1, le=1000),
):
    symbol = symbol.upper()
    history = await _publisher.history(symbol, stream=stream, limit=limit)
    return {
        "symbol": symbol,
        "stream": stream,
        "count": len(history),
        "events": [e.to_dict() for e in history],
    }


# ─── Posiciones ───────────────────────────────────────────────────────

@router.get("/api/positions", response_model=PositionsResponse)
async def positions():
    return {
        "active": [p.to_dict() for p in _trade_engine.active_positions()],
        "closed": [p.to_dict() for p in _trade_engine.closed_positions()],
    }


@router.get("/api/positions/{position_id}", response_model=PositionSchema)
async def position(position_id: str):
    found = _trade_engine.get(position_id)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Posición no encontrada: {position_id}")
    return found.to_dict()
