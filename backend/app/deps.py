# -*- coding: utf-8 -*-
# backend/app/deps.py
# =============================================================================
# MUB-LOG Market: Общие зависимости FastAPI: БД-сессия, идемпотентность,
#                  аутентификация, админ-гейт, keyset-пагинация, клиенты
#                  провайдеров и настройки цен.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Ручное пополнение (денежный POST админа): строго с Idempotency-Key.
#   • Списки: только cursor-based (keyset) пагинация.
#   • Клиенты провайдеров и PricingConfig выдаются зависимостями, чтобы тесты
#     подменяли их через app.dependency_overrides.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Query, status

from backend.app.core.database_core import get_db  # noqa: F401
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.core.security_core import ADMIN_ROLE, get_current_user, require_admin_or_key
from backend.app.integrations.fivesim_api import FiveSimClient
from backend.app.integrations.flutterwave_api import FlutterwaveClient
from backend.app.integrations.smm_panel_api import SmmPanelClient
from backend.app.services.ledger_service import d2  # noqa: F401
from backend.app.services.orders_service import MAX_PAGE_SIZE
from backend.app.services.pricing_service import PricingConfig

logger = get_logger(__name__)

IDEMPOTENCY_KEY_MAX_LEN = 128


# -----------------------------------------------------------------------------
# Keyset-курсоры
# -----------------------------------------------------------------------------
def encode_cursor(row_id: int) -> str:
    """Keyset-cursor b64("id:<row_id>")."""
    return base64.urlsafe_b64encode(f"id:{int(row_id)}".encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> int:
    """Инверсия encode_cursor. Некорректная строка → HTTP 400."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        prefix, id_str = raw.split(":", 1)
        if prefix != "id":
            raise ValueError(prefix)
        return int(id_str)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")


@dataclass
class PageParams:
    limit: int
    before_id: Optional[int]


async def pagination_params(
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    cursor: Optional[str] = Query(None, description="next_cursor предыдущей страницы"),
) -> PageParams:
    return PageParams(limit=limit, before_id=decode_cursor(cursor) if cursor else None)


# -----------------------------------------------------------------------------
# Идемпотентность денежных операций
# -----------------------------------------------------------------------------
async def require_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, convert_underscores=False, alias="Idempotency-Key"),
) -> str:
    """Depend для денежных POST: требует Idempotency-Key."""
    key = (idempotency_key or "").strip()
    if not key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key header is strictly required for monetary operations.",
        )
    if len(key) > IDEMPOTENCY_KEY_MAX_LEN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Idempotency-Key is too long (max {IDEMPOTENCY_KEY_MAX_LEN}).",
        )
    set_request_context(idempotency_key=key)
    return key


# -----------------------------------------------------------------------------
# Аутентификация / админ-гейт
# -----------------------------------------------------------------------------
@dataclass
class AuthContext:
    user_id: Optional[int]
    role: str
    is_admin: bool = False


def _context_from_payload(payload: Dict[str, Any]) -> AuthContext:
    sub = payload.get("sub")
    try:
        user_id = int(sub) if sub is not None else None
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    role = str(payload.get("role") or "user")
    if user_id is not None:
        set_request_context(user_id=user_id)
    return AuthContext(user_id=user_id, role=role, is_admin=role == ADMIN_ROLE)


async def require_user(payload: Dict[str, Any] = Depends(get_current_user)) -> AuthContext:
    """Пользователь из Bearer JWT (sub = id)."""
    ctx = _context_from_payload(payload)
    if ctx.user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    return ctx


async def require_admin(payload: Dict[str, Any] = Depends(require_admin_or_key)) -> AuthContext:
    """Админ по JWT (role=admin) или по X-Admin-Api-Key."""
    return _context_from_payload(payload)


# -----------------------------------------------------------------------------
# Провайдеры и цены (переопределяются в тестах)
# -----------------------------------------------------------------------------
def get_fivesim_client() -> FiveSimClient:
    return FiveSimClient()


def get_smm_client() -> SmmPanelClient:
    return SmmPanelClient()


def get_flutterwave_client() -> FlutterwaveClient:
    return FlutterwaveClient()


def get_pricing() -> PricingConfig:
    """Курс и наценка из текущих настроек (reload_settings() подхватывается сразу)."""
    return PricingConfig.from_settings()


__all__ = [
    "get_db",
    "d2",
    "encode_cursor",
    "decode_cursor",
    "PageParams",
    "pagination_params",
    "require_idempotency_key",
    "AuthContext",
    "require_user",
    "require_admin",
    "get_fivesim_client",
    "get_smm_client",
    "get_flutterwave_client",
    "get_pricing",
]
