"""
TickSentinel – SQLAlchemy Async Base Configuration
===================================================
Configuración base para la auditoría relacional de posiciones.

DECISIONES DE DISEÑO:

1. ASYNC ENGINE:
   - sqlalchemy[asyncio] + aiomysql para no bloquear el event loop
     mientras se procesan muestras.

2. SESSION FACTORY:
   - AsyncSession con expire_on_commit=False para evitar queries
     automáticas post-commit.

3. NAMING CONVENTION:
   - Convención explícita para índices y constraints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from ticksentinel.core.logging import get_logger

logger = get_logger("database")

# ─── Naming Convention (para migraciones consistentes) ─────────────────────
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base declarativa de los modelos ORM."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class DatabaseManager:
    """
    Manager del engine async.

    USO:
        db = DatabaseManager(settings.db_url)
        await db.initialize()          # en el lifespan de FastAPI

        async with db.session() as session:
            await session.execute(...)
            await session.commit()

        await db.close()
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self._url = url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def initialize(self, create_tables: bool = True) -> None:
        """
        Crea engine + session factory.

        SQLite en memoria (tests) comparte una sola conexión (StaticPool);
        el resto (MySQL, SQLite en archivo) usa pool con pre-ping y reciclado.
        """
        if self._engine is not None:
            return

        if self._url.startswith("sqlite") and ":memory:" in self._url:
            self._engine = create_async_engine(
                self._url,
                echo=self._echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self._engine = create_async_engine(
                self._url,
                echo=self._echo,
                pool_size=5,
                max_overflow=10,
                pool_recycle=3600,
                pool_pre_ping=True,
            )

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_tables:
            # Registrar modelos en Base.metadata antes de create_all
            from ticksentinel.infrastructure.models import PositionModel  # noqa: F401

            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info("Base de datos inicializada (%s)", self._url.split("@")[-1])

    async def close(self) -> None:
        """Cierra el engine y todas las conexiones del pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Conexiones de base de datos cerradas")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Sesión con rollback automático ante excepción.
        El commit es explícito.
        """
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager no inicializado. Llama a initialize() primero.")

        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
