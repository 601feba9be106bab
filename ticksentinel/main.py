"""
TickSentinel – Main Application Entry Point
============================================
Orquesta el analizador de streaming y el motor de posiciones.

ARQUITECTURA DE ARRANQUE:
  1. Configurar logging
  2. Crear el contenedor (EventBus, store, agregadores, publisher,
     pool de decisión, motor de trading, supervisor)
  3. FastAPI lifespan startup:
     a. Inyectar componentes al router
     b. supervisor.start() para cada unidad
  4. FastAPI lifespan shutdown:
     a. supervisor.shutdown()
     b. Cerrar store y base de datos

FLUJO DE DATOS:
  Binance WS → BinanceStreamClient → EventBus(samples) → ProcessSampleUseCase
       → IntervalAggregator (minutos / segundos / volumen)
       → EventPublisher → historial durable + EventBus(market_events)
       → DecisionPool → EventBus(trade_intents)
       → TradeLifecycleEngine → EventBus(position_opened|position_closed)
       → PersistenceListener (opcional)

  uvicorn ticksentinel.main:app --host 0.0.0.0 --port 8890
  python -m ticksentinel.main   (host/puerto/debug desde Settings)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ticksentinel import __version__
from ticksentinel.api.routes import init_routes, router
from ticksentinel.container import init_container
from ticksentinel.core.logging import get_logger, setup_logging
from ticksentinel.core.settings import settings

# ─── Logging ────────────────────────────────────────────────────────────
setup_logging(logging.DEBUG if settings.debug else logging.INFO)
logger = get_logger("main")

# ─── Contenedor de Dependencias ─────────────────────────────────────────
container = init_container(settings)


# ─── FastAPI Lifespan ───────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = container.settings
    logger.info("=" * 60)
    logger.info("  TickSentinel v%s", __version__)
    logger.info("  Símbolos: %s (kline %s)", ", ".join(settings.symbols), settings.kline_interval)
    logger.info("  Ventanas: %s m | %s s",
                settings.price_windows_minutes, settings.price_windows_seconds)
    logger.info("  Checkpoints: %d × %.0fs", settings.checkpoint_count,
                settings.checkpoint_interval_seconds)
    logger.info("  Store: %s", "Redis" if settings.redis_enabled else "memoria")
    logger.info("  Database: %s", "habilitada" if settings.db_enabled else "deshabilitada")
    logger.info("=" * 60)

    init_routes(
        container.supervisor,
        container.publisher,
        container.trade_engine,
        container.minute_prices,
        container.second_prices,
        container.minute_volumes,
        feed_client=container.feed_client,
        decision_pool=container.decision_pool,
    )

    for spec in container.unit_specs():
        await container.supervisor.start(spec)

    logger.info("✓ Todas las unidades iniciadas (%d)", container.supervisor.unit_count)

    yield  # ← La app está corriendo aquí

    # ── SHUTDOWN ──
    logger.info("Iniciando shutdown...")
    await container.supervisor.shutdown()
    await container.event_bus.unsubscribe_all()
    await container.store.close()
    if container.database is not None:
        await container.database.close()
    logger.info("✓ Shutdown completo")


# ─── FastAPI App ────────────────────────────────────────────────────────

app = FastAPI(
    title="TickSentinel",
    description="Analizador de ticks multi-ventana con motor de posiciones simuladas",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


def run() -> None:
    """Arranca el servidor con host/puerto de Settings."""
    import uvicorn

    logger.info("Servidor en %s:%d (debug=%s)", settings.host, settings.port, settings.debug)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
