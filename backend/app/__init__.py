# ==============================================================================
# MUB-LOG Market: FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение: CORS, корреляция
# запросов, обработчики доменных ошибок, роутеры под API_PREFIX, /health и
# жизненный цикл фонового планировщика.
#
# Канон/инварианты:
#   • Фабрика не двигает деньги и не пишет в БД.
#   • Планировщик стартует в lifespan, если SCHEDULER_ENABLED; первый тик
#     сразу обрабатывает SMS-заказы, просроченные за время простоя.
#   • create_app() можно вызывать многократно (тесты): состояние модуля не
#     меняется.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core import core_health
from .core.config_core import get_settings
from .core.database_core import db_ping
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .models import models_health
from .routes import register_routes
from .services.scheduler_service import shutdown_scheduler, startup_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.SCHEDULER_ENABLED:
        await startup_scheduler()
    try:
        yield
    finally:
        if settings.SCHEDULER_ENABLED:
            await shutdown_scheduler()


def create_app() -> FastAPI:
    """Создать FastAPI-приложение с middleware, обработчиками ошибок и роутерами."""

    settings = get_settings()
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.effective_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)
    register_routes(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, Any]:
        """Живость сервиса: конфигурация, модели и ping БД."""

        core = core_health()
        db_ok = await db_ping()
        return {
            "status": "ok" if db_ok else "degraded",
            "db": db_ok,
            "core": core,
            "models": models_health()["ok"],
        }

    logger.info("FastAPI app initialised", extra={"api_prefix": settings.API_PREFIX})
    return app


__all__ = ["create_app"]

# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД и не двигает деньги: только собирает API.
#   • Ошибки домена (NotFound, OutOfStock, ...) превращаются в JSON
#     {"error", "message", "details"} обработчиками из errors_core.
#   • Запуск: python -m backend.run или uvicorn "backend.app:create_app" --factory.
# ==============================================================================
