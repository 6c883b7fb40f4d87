# -*- coding: utf-8 -*-
# backend/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД MUB-LOG Market (SQLAlchemy 2.0 async).
#   • Декларативная база моделей (Base).
#   • Создание и конфигурация AsyncEngine и async_sessionmaker.
#   • Выдача сессий для FastAPI-роутов (get_db) и фоновых задач
#     (lifespan_session).
#   • Health-утилиты (db_ping) и мягкий реинициализатор (reset_engine).
#
# Канон / инварианты:
#   • Только async-движок: PostgreSQL через asyncpg (prod), SQLite через
#     aiosqlite (локально и в тестах).
#   • DSN берём из Settings.database_url_async(), единый источник истины.
#   • Сессии expire_on_commit=False, autoflush=False.
#   • Транзакциями управляют сервисы (`async with session.begin()`), а не
#     этот модуль.
#
# Запреты:
#   • Никакой бизнес-логики (списания, цены и т.п.) в этом модуле.
#   • Никаких DDL здесь, схема живёт в моделях и миграциях.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from sqlalchemy import MetaData, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

# Единые имена ограничений: alembic-миграции получаются стабильными.
NAMING_CONVENTION: Dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Декларативная база всех ORM-моделей."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# -----------------------------------------------------------------------------
# Глобальные объекты: движок и фабрика сессий
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def _create_engine() -> AsyncEngine:
    """
    Создаёт новый AsyncEngine на базе актуальных настроек.

    • Postgres: пул DB_POOL_SIZE/DB_MAX_OVERFLOW и pool_pre_ping.
    • SQLite: пул не настраивается, зато задаётся timeout ожидания
      блокировки записи (параллельные покупки ждут, а не падают).
    • echo включается только в DEBUG-режиме.
    """
    settings = get_settings()
    dsn = settings.database_url_async()
    logger.info(
        "Creating async DB engine",
        extra={"dsn_set": bool(dsn), "sqlite": settings.is_sqlite},
    )
    kwargs: Dict[str, Any] = {"echo": settings.DEBUG}
    if settings.is_sqlite:
        kwargs["connect_args"] = {"timeout": settings.DB_SQLITE_TIMEOUT_SEC}
    else:
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(dsn, **kwargs)


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Строит async_sessionmaker поверх переданного движка.

    • expire_on_commit=False: объекты остаются валидными после commit().
    • autoflush=False: явный контроль flush.
    """
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def reset_engine() -> None:
    """
    Мягко пересоздаёт движок и фабрику сессий (после reload_settings()
    со сменой DSN или после серьёзных сбоев). Старый движок закрывается
    через dispose().
    """
    global _engine, _SessionFactory

    async with _engine_lock:
        old_engine = _engine
        try:
            new_engine = _create_engine()
            _SessionFactory = _create_session_factory(new_engine)
            _engine = new_engine
            logger.info("DB engine has been reset successfully")
        except Exception:
            logger.exception("Failed to reset DB engine")
            if old_engine is not None:
                _engine = old_engine
            raise
        if old_engine is not None:
            try:
                await old_engine.dispose()
            except (OperationalError, DBAPIError):
                logger.warning("Error during old engine dispose", exc_info=True)


def get_engine() -> AsyncEngine:
    """
    Возвращает текущий AsyncEngine, создавая его лениво при первом вызове
    (миграции и вспомогательные скрипты не поднимают БД при импорте).
    """
    global _engine, _SessionFactory

    if _engine is None:
        engine = _create_engine()
        _engine = engine
        _SessionFactory = _create_session_factory(engine)
        logger.info("DB engine lazily initialized")
    assert _engine is not None  # для mypy
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Возвращает фабрику сессий (гарантирует, что движок создан)."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = _create_session_factory(get_engine())
        logger.info("Session factory initialized")
    assert _SessionFactory is not None  # для mypy
    return _SessionFactory


# -----------------------------------------------------------------------------
# FastAPI-совместимая зависимость: выдача сессии
# -----------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Зависимость для FastAPI-роутов.

        SessionDep = Annotated[AsyncSession, Depends(get_db)]

    commit управляется сервисами (async with session.begin()); здесь только
    закрытие сессии. Ошибки логируются и пробрасываются наверх.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        logger.debug("DB session closed after error", exc_info=True)
        raise
    finally:
        await session.close()


@asynccontextmanager
async def lifespan_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Сессия для фоновых задач планировщика и скриптов:

        async with lifespan_session() as db:
            await sweep_expired_orders(db, limit=200)
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
    finally:
        await session.close()


# -----------------------------------------------------------------------------
# Health-check / ping
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """
    Простейший health-check БД: True, если SELECT 1 прошёл.
    Используется в /health и перед стартом планировщика.
    """
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError, RuntimeError) as exc:
        logger.error(
            "DB ping failed: DB is not reachable",
            extra={"error": str(exc)},
        )
        return False


__all__ = [
    "Base",
    "AsyncSession",
    "AsyncEngine",
    "get_engine",
    "get_session_factory",
    "get_db",
    "lifespan_session",
    "db_ping",
    "reset_engine",
]
