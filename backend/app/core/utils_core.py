# -*- coding: utf-8 -*-
# backend/app/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Работа с Decimal (деньги: 2 знака, фиксированное округление).
#   • Время в UTC и нормализация дат, прочитанных из SQLite.
#   • Разбор многострочных товаров (одна строка = одна единица товара).
#
# Канон:
#   • Денежные суммы по умолчанию округляются DOWN (обрезаем, не «растим»).
#   • Все функции чистые: без сетевых вызовов и без побочных эффектов.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from decimal import (
    Decimal,
    InvalidOperation,
    ROUND_CEILING,
    ROUND_DOWN,
    ROUND_HALF_UP,
)
from typing import Dict, List, Optional, Tuple, Union

NumberLike = Union[str, int, float, Decimal]

_ROUNDING_MAP: Dict[str, str] = {
    "DOWN": ROUND_DOWN,
    "HALF_UP": ROUND_HALF_UP,
    "CEILING": ROUND_CEILING,
}


# -----------------------------------------------------------------------------
# Decimal helpers
# -----------------------------------------------------------------------------
def decimal_from(value: NumberLike) -> Decimal:
    """
    Приводит значение к Decimal.

    float приводим через str(), чтобы 2.5 * 30 * 1.2 считалось ровно 90,
    а не 90.00000000000001.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation("bool is not a number")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_decimal(
    value: NumberLike,
    decimals: int = 2,
    rounding: str = "DOWN",
) -> Decimal:
    """
    Округляет число до fixed-point с заданной точностью
    (по умолчанию 2 знака, DOWN).
    """
    d = decimal_from(value)
    q = Decimal(1).scaleb(-decimals)
    rounding_mode = _ROUNDING_MAP.get(rounding.upper(), ROUND_DOWN)
    return d.quantize(q, rounding=rounding_mode)


def format_money(value: NumberLike, decimals: int = 2) -> str:
    """Строка с фиксированным числом знаков: Decimal('700') → '700.00'."""
    return f"{quantize_decimal(value, decimals=decimals):.{decimals}f}"


# -----------------------------------------------------------------------------
# Время / таймстемпы
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Текущее время в UTC с tzinfo=UTC."""
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Делает datetime «aware» в UTC. SQLite возвращает наивные даты даже для
    DateTime(timezone=True); считаем их UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# -----------------------------------------------------------------------------
# Многострочные товары
# -----------------------------------------------------------------------------
def split_payload_lines(raw: Optional[str]) -> List[str]:
    """Непустые строки payload (пробелы по краям обрезаются)."""
    if not raw:
        return []
    return [line.strip() for line in raw.splitlines() if line.strip()]


def take_first_line(raw: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Возвращает (первая_строка, остаток). Если строк нет: (None, "").
    Остаток склеивается через "\\n" и содержит только непустые строки.
    """
    lines = split_payload_lines(raw)
    if not lines:
        return None, ""
    return lines[0], "\n".join(lines[1:])


__all__ = [
    "decimal_from",
    "quantize_decimal",
    "format_money",
    "utcnow",
    "as_utc",
    "split_payload_lines",
    "take_first_line",
]
