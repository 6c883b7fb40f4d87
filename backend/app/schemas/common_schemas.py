# -*- coding: utf-8 -*-
# backend/app/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
# Базовые схемы для всех API: денежный тип с сериализацией в строку,
# курсорная страница, стандартная ошибка и «ок»-ответ.
#
# Канон / инварианты:
# • Денежные суммы: Decimal(18, 2). Наружу всегда строка "700.00".
# • Листинги используют курсорную пагинацию (next_cursor), без OFFSET.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from backend.app.core.utils_core import format_money

MoneyStr = Annotated[Decimal, PlainSerializer(format_money, return_type=str, when_used="always")]


def _server_time() -> str:
    return datetime.now(timezone.utc).isoformat()


class ORMModel(BaseModel):
    """База для схем, собираемых из ORM-объектов и dataclass'ов."""

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """Форма ошибки (см. errors_core.MarketError.to_payload)."""

    error: str = Field(..., description="Короткий код ошибки (snake_case)")
    message: str = Field(..., description="Человеко-читаемое описание")
    details: Dict[str, Any] = Field(default_factory=dict)


class OkResponse(BaseModel):
    ok: bool = True
    server_time: str = Field(default_factory=_server_time)


T = TypeVar("T")


class CursorPage(BaseModel, Generic[T]):
    """
    Страница списка:
      • items: элементы;
      • next_cursor: курсор следующей страницы (или None).
    """

    items: List[T]
    next_cursor: Optional[str] = None
    server_time: str = Field(default_factory=_server_time)


__all__ = ["MoneyStr", "ORMModel", "ErrorResponse", "OkResponse", "CursorPage"]
