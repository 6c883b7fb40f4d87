# -*- coding: utf-8 -*-
# backend/app/models/payment_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Платёжная транзакция» (пополнение через Flutterwave).
#
# Канон/инварианты:
#   • reference UNIQUE: один и тот же платёж зачисляется ровно один раз.
#     При гонке двух проверок проигравший получает конфликт уникальности и
#     отвечает read-through (credited=False).
#   • transaction_id шлюза хранится строкой.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from ..core.utils_core import utcnow


class PaymentTransaction(Base):
    """Подтверждённый шлюзом платёж, зачисленный на баланс пользователя."""

    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_payment_transactions_reference"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<PaymentTransaction id={self.id} user={self.user_id} ref={self.reference} amount={self.amount}>"


Index("ix_payment_transactions_user_created", PaymentTransaction.user_id, PaymentTransaction.created_at)

__all__ = [
    "PaymentTransaction",
]
