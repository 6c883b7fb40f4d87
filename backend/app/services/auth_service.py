# -*- coding: utf-8 -*-
# backend/app/services/auth_service.py
# =============================================================================
# Назначение кода:
#   Учётные записи: регистрация, вход по email/паролю с выдачей JWT, профиль.
#
# Канон/инварианты:
#   • Пароль хранится только bcrypt-хэшем (security_core.hash_password).
#   • Новый пользователь: balance = 0, role = user.
#   • email уникален и хранится в нижнем регистре.
#   • Ошибка входа не уточняет, что именно не совпало (email или пароль).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import AlreadyExistsError, AuthenticationError, InvalidInputError
from backend.app.core.logging_core import get_logger
from backend.app.core.security_core import create_jwt_token, hash_password, verify_password
from backend.app.models.user_models import ROLE_USER, User
from backend.app.services import ledger_service as ledger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass
class AuthResult:
    access_token: str
    user: User
    token_type: str = "bearer"


def _normalize_email(email: str) -> str:
    value = (email or "").strip().lower()
    if "@" not in value or value.startswith("@") or value.endswith("@"):
        raise InvalidInputError("A valid email is required.", details={"field": "email"})
    return value


async def _find_by_email(session: AsyncSession, email: str) -> User | None:
    return await session.scalar(select(User).where(User.email == email))


async def register_user(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
) -> User:
    """Регистрация. Дубликат email → AlreadyExistsError."""
    name = (username or "").strip()
    if not name:
        raise InvalidInputError("username is required.", details={"field": "username"})
    normalized = _normalize_email(email)
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters.",
            details={"field": "password"},
        )

    try:
        async with ledger.unit_of_work(session):
            if await _find_by_email(session, normalized) is not None:
                raise AlreadyExistsError("Email already registered.", details={"email": normalized})
            user = User(
                username=name,
                email=normalized,
                password_hash=hash_password(password),
                balance=ledger.d2(0),
                role=ROLE_USER,
            )
            session.add(user)
            await session.flush()
    except IntegrityError:
        raise AlreadyExistsError("Email already registered.", details={"email": normalized})

    logger.info("User registered", extra={"user_id": user.id})
    return user


async def authenticate(session: AsyncSession, *, email: str, password: str) -> AuthResult:
    """Проверка пароля и выпуск JWT (sub = id, email, role)."""
    normalized = (email or "").strip().lower()
    user = await _find_by_email(session, normalized) if normalized else None
    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("Login failed", extra={"email_domain": normalized.partition("@")[2] or "-"})
        raise AuthenticationError("Invalid email or password.")

    token = create_jwt_token(
        str(user.id),
        extra={"email": user.email, "role": user.role},
    )
    logger.info("Login ok", extra={"user_id": user.id})
    return AuthResult(access_token=token, user=user)


async def get_profile(session: AsyncSession, user_id: int) -> User:
    return await ledger.get_user(session, user_id)


async def list_users(session: AsyncSession, *, limit: int = 100) -> List[User]:
    """Пользователи для админки (без хэшей паролей на уровне схем)."""
    rows = await session.scalars(select(User).order_by(User.id).limit(max(1, min(limit, 500))))
    return list(rows)


__all__ = ["AuthResult", "register_user", "authenticate", "get_profile", "list_users"]
