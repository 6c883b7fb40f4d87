# -*- coding: utf-8 -*-
# backend/app/models/ledger_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель журнала движений баланса (LedgerEntry).
#
# Канон/инварианты:
#   • Каждое изменение users.balance пишет ровно одну запись журнала в той же
#     транзакции: amount положителен, direction показывает знак.
#   • idempotency_key UNIQUE (NULL допускается многократно): повторный
#     возврат/пополнение с тем же ключом ничего не меняет.
#   • Журнал только дописывается, записи не редактируются и не удаляются.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from ..core.utils_core import utcnow

DIRECTION_CREDIT = "credit"
DIRECTION_DEBIT = "debit"


class LedgerEntry(Base):
    """
    Запись журнала сверки.

    Поля:
      • user_id         : чей баланс изменился.
      • amount          : сумма изменения (> 0).
      • direction       : 'credit' (+) | 'debit' (−).
      • reason          : машинная причина: product_purchase, sms_order,
                           sms_refund, smm_order, admin_topup, payment.
      • idempotency_key : ключ идемпотентности (sms:{id}:refund, topup:{key}, ...).
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_ledger_entries_idem_key"),
        CheckConstraint("amount > 0", name="amount_pos"),
        CheckConstraint("direction IN ('credit','debit')", name="direction_enum"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(191), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        sign = "+" if self.direction == DIRECTION_CREDIT else "-"
        return f"<LedgerEntry id={self.id} user={self.user_id} {sign}{self.amount} reason={self.reason}>"


Index("ix_ledger_entries_user_created", LedgerEntry.user_id, LedgerEntry.created_at)

__all__ = [
    "LedgerEntry",
    "DIRECTION_CREDIT",
    "DIRECTION_DEBIT",
]
