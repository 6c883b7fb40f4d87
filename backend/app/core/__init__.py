# -*- coding: utf-8 -*-
# backend/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра MUB-LOG Market: загрузка настроек, первичная
# инициализация логирования и быстрая самодиагностика конфигурации.
#
# Канон/инварианты:
# • Источник истины: config_core.get_settings(), локальных дублей констант
#   здесь не создаём.
# • Денежные операции здесь НЕ выполняются (только конфиг/проверки/экспорты).
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger

# Версия ядра (повышать при несовместимых изменениях ядра)
CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Быстрые sanity-checks по ключевым настройкам. Никаких падений, только
    отчёт для /health и логов старта.

    Возвращает:
        dict: { ok: bool, errors: List[str], snapshot: Dict[str, Any] }
    """
    settings = get_settings()
    errors: List[str] = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL must be set.")
    if not settings.SECRET_KEY:
        errors.append("SECRET_KEY must be set (JWT login).")
    if not settings.FIVESIM_API_KEY:
        errors.append("FIVESIM_API_KEY is empty: SMS ordering disabled.")
    if not settings.SMM_API_KEY:
        errors.append("SMM_API_KEY is empty: SMM ordering disabled.")

    return {
        "ok": not errors,
        "errors": errors,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "core_version": CORE_VERSION,
        # ВНИМАНИЕ: только несекретные поля
        "snapshot": settings.debug_dump(),
    }


__all__ = [
    "CORE_VERSION",
    "get_settings",
    "logger",
    "core_health",
]
