# -*- coding: utf-8 -*-
# backend/app/core/security_core.py
# =============================================================================
# Назначение кода:
#   Централизованный слой безопасности MUB-LOG Market:
#   • хэширование паролей (bcrypt через passlib);
#   • JWT (HS256) + iat/exp/jti;
#   • ролевые проверки админов (role=admin в JWT);
#   • серверный X-Admin-Api-Key;
#   • мини-комбинатор Depends: one_of(...).
#
# Канон / инварианты:
#   • Здесь НЕТ денежных операций и балансов, только «кто ты» и «можно/нельзя».
#   • JWT: алгоритм HS256, обязательный exp; SECRET_KEY берём из настроек
#     в момент вызова (reload_settings() подхватывается без рестарта).
#
# Запреты:
#   • Никаких правок балансов/денег в этом модуле.
#   • Пароли и их хэши никогда не логируются.
# =============================================================================

from __future__ import annotations

import hmac
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Базовые контексты / константы безопасности
# -----------------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().BCRYPT_ROUNDS,
)
auth_scheme = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"
ADMIN_ROLE = "admin"

Payload = Dict[str, Any]
Guard = Callable[..., Awaitable[Any]]


# -----------------------------------------------------------------------------
# Пароли
# -----------------------------------------------------------------------------
def hash_password(password: str) -> str:
    """Хешируем пароль (bcrypt)."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Проверяем пароль (bcrypt). Битый хэш считается несовпадением."""
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# -----------------------------------------------------------------------------
# JWT токены (HS256)
# -----------------------------------------------------------------------------
def _get_secret_key() -> str:
    """
    Возвращает SECRET_KEY из настроек или поднимает 500,
    если секрет не сконфигурирован. Фиктивных секретов по умолчанию нет.
    """
    key = get_settings().SECRET_KEY
    if not key:
        logger.error("SECRET_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server is not configured",
        )
    return str(key)


def create_jwt_token(
    subject: str,
    *,
    expires_delta: Optional[timedelta] = None,
    extra: Optional[Payload] = None,
) -> str:
    """
    Создаёт JWT с полями:
      • sub: строковый идентификатор пользователя;
      • iat: момент выпуска (UTC);
      • exp: момент истечения (UTC);
      • jti: уникальный идентификатор токена;
      • extra: дополнительные поля (email, role).
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=get_settings().ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(tz=timezone.utc)
    payload: Payload = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "jti": uuid4().hex,
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, _get_secret_key(), algorithm=JWT_ALGORITHM)


def decode_jwt_token(token: str) -> Payload:
    """
    Декод JWT с контролируемыми ошибками (401): детали верификации
    наружу не раскрываются.
    """
    secret_key = _get_secret_key()
    try:
        return jwt.decode(
            token,
            secret_key,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )


# -----------------------------------------------------------------------------
# Depends: текущий пользователь и админ-гварды
# -----------------------------------------------------------------------------
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Payload:
    """
    Стандартный Bearer-путь аутентификации. Возвращает payload токена.

    401, если токена нет или он некорректен.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return decode_jwt_token(credentials.credentials)


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Payload:
    """
    Гвард для админ-ручек по JWT: role=admin в payload.

    401 без токена, 403 если прав недостаточно.
    """
    payload = await get_current_user(credentials)
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough rights",
        )
    return payload


async def get_admin_api_key_guard(
    x_admin_api_key: Optional[str] = Header(
        default=None,
        convert_underscores=False,
        alias="X-Admin-Api-Key",
    ),
) -> Payload:
    """
    Альтернативный серверный допуск: валидный X-Admin-Api-Key.
    Удобен для скриптов и cron. Нет ключа или не совпал: 401.
    """
    expected = get_settings().ADMIN_API_KEY
    if expected and x_admin_api_key:
        if hmac.compare_digest(expected, x_admin_api_key):
            return {"sub": None, "role": ADMIN_ROLE, "via": "api_key"}

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Admin API key required",
    )


# -----------------------------------------------------------------------------
# Мини-Depends: комбинатор «любой из гардов»
# -----------------------------------------------------------------------------
def one_of(*guards: Guard) -> Guard:
    """
    Комбинатор FastAPI-зависимостей: пропускает, если успешно прошёл
    ХОТЯ БЫ ОДИН guard. Если все провалились, пробрасывает последнюю причину.

    Параметры всех гардов объединяются в одну сигнатуру, чтобы FastAPI
    сам разрешил их зависимости (Bearer, заголовки), а каждый guard получал
    только свои аргументы.

        require_admin_or_key = one_of(get_current_admin, get_admin_api_key_guard)
        # в роуте: admin = Depends(require_admin_or_key)
    """
    params: Dict[str, inspect.Parameter] = {}
    guard_params: list[tuple[Guard, list[str]]] = []
    for guard in guards:
        names: list[str] = []
        for name, param in inspect.signature(guard).parameters.items():
            params.setdefault(
                name,
                param.replace(kind=inspect.Parameter.KEYWORD_ONLY),
            )
            names.append(name)
        guard_params.append((guard, names))

    async def _combined(**kwargs: Any) -> Any:
        last_exc: Optional[HTTPException] = None
        for guard, names in guard_params:
            try:
                return await guard(**{name: kwargs[name] for name in names})
            except HTTPException as exc:
                last_exc = exc
                continue

        raise last_exc or HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    _combined.__signature__ = inspect.Signature(list(params.values()))  # type: ignore[attr-defined]
    return _combined


# Готовая зависимость для админ-ручек: «админ по JWT» ИЛИ «X-Admin-Api-Key».
require_admin_or_key: Guard = one_of(
    get_current_admin,
    get_admin_api_key_guard,
)


__all__ = [
    "ADMIN_ROLE",
    "hash_password",
    "verify_password",
    "create_jwt_token",
    "decode_jwt_token",
    "get_current_user",
    "get_current_admin",
    "get_admin_api_key_guard",
    "one_of",
    "require_admin_or_key",
]

# =============================================================================
# Пояснения «для чайника»:
#   • Этот модуль отвечает только за безопасность (кто и с какими правами),
#     но НЕ трогает деньги и балансы.
#   • `require_admin_or_key` убирает дублирование проверок в роутерах: админ
#     может прийти с JWT (role=admin) или со служебным ключом.
#   • Стоимость bcrypt задаётся BCRYPT_ROUNDS (в тестах 4, чтобы быстро).
# =============================================================================
