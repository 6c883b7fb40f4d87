# -*- coding: utf-8 -*-
# backend/app/models/user_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель домена «Пользователи» MUB-LOG Market:
#   • User: аккаунт покупателя с кошельком в локальной валюте.
#
# Канон/инварианты:
#   • email уникален и хранится в нижнем регистре.
#   • Баланс: Numeric(18,2); меняется ТОЛЬКО атомарными дельтами в
#     services/ledger_service.py (никаких read-modify-write в сервисах).
#   • Жёсткий запрет «минуса»: CHECK balance >= 0.
#
# Запреты:
#   • Модель НЕ выполняет денежных операций.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from ..core.utils_core import utcnow

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Base):
    """
    Пользователь маркетплейса.

    Поля:
      • username      : отображаемое имя (снимок копируется в заказы).
      • email         : логин, уникален, в нижнем регистре.
      • password_hash : bcrypt-хэш (passlib).
      • balance       : кошелёк в локальной валюте, ≥ 0.
      • role          : 'user' | 'admin'.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        CheckConstraint("balance >= 0", name="balance_nonneg"),
        CheckConstraint("role IN ('user','admin')", name="role_enum"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    username: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0"
    )
    role: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ROLE_USER, server_default=ROLE_USER
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} balance={self.balance} role={self.role}>"


Index("ix_users_created_id", User.created_at, User.id)

__all__ = [
    "ROLE_ADMIN",
    "ROLE_USER",
    "User",
]
