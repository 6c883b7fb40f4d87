# -*- coding: utf-8 -*-
# backend/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения HTTP-роутов MUB-LOG Market:
#     • общий APIRouter (api_router) со всеми разделами;
#     • register_routes(app, prefix) для create_app();
#     • list_registered_routes() для диагностики.
#
# Канон/инварианты:
#   • Модуль НЕ выполняет бизнес-логику и НЕ трогает деньги, только проводка.
#   • Каждый модуль роутов сам задаёт свой prefix ("/auth", "/sms", ...).
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List, Tuple, Union

from fastapi import APIRouter, FastAPI

from backend.app.core.logging_core import get_logger
from backend.app.schemas.common_schemas import ErrorResponse

from . import admin_routes, auth_routes, orders_routes, products_routes, smm_routes, sms_routes

logger = get_logger(__name__)

ROUTERS: Tuple[Tuple[str, APIRouter], ...] = (
    ("auth_routes", auth_routes.router),
    ("products_routes", products_routes.router),
    ("orders_routes", orders_routes.router),
    ("sms_routes", sms_routes.router),
    ("smm_routes", smm_routes.router),
    ("admin_routes", admin_routes.router),
)

# Ошибки домена (errors_core) для OpenAPI: одна форма на все ручки
ERROR_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Недостаточно средств / некорректный запрос"},
    401: {"model": ErrorResponse, "description": "Нет или неверные учётные данные"},
    404: {"model": ErrorResponse, "description": "Объект не найден"},
    409: {"model": ErrorResponse, "description": "Нет остатка / конфликт состояния / дубликат"},
    503: {"model": ErrorResponse, "description": "Внешний провайдер недоступен"},
}

api_router = APIRouter(responses=ERROR_RESPONSES)
for _name, _router in ROUTERS:
    api_router.include_router(_router)


def register_routes(app: FastAPI, prefix: str = "") -> None:
    """Подключает агрегированный роутер к приложению (обычно prefix="/api")."""
    app.include_router(api_router, prefix=prefix)
    logger.info("routes: registered %s under prefix %r", [name for name, _ in ROUTERS], prefix)


def list_registered_routes() -> List[str]:
    return [name for name, _ in ROUTERS]


__all__ = ["api_router", "register_routes", "list_registered_routes"]
