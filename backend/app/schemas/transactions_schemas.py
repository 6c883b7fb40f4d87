# -*- coding: utf-8 -*-
# backend/app/schemas/transactions_schemas.py
# =============================================================================
# Назначение кода:
# DTO пополнений: ручное пополнение админом и проверка платежа Flutterwave.
#
# Канон / инварианты:
# • credited=False означает повтор (тот же Idempotency-Key или reference):
#   баланс не изменился.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from backend.app.schemas.common_schemas import MoneyStr, ORMModel


class TopupIn(BaseModel):
    user_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., gt=0)


class TopupOut(ORMModel):
    user_id: int
    amount: MoneyStr
    new_balance: MoneyStr
    credited: bool


class VerifyPaymentIn(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=64)


class PaymentOut(ORMModel):
    reference: str
    transaction_id: str
    amount: MoneyStr
    currency: Optional[str] = None
    status: str
    credited: bool
    new_balance: MoneyStr


class TransactionOut(ORMModel):
    id: int
    transaction_id: str
    reference: str
    amount: MoneyStr
    currency: Optional[str] = None
    status: str
    created_at: datetime


__all__ = ["TopupIn", "TopupOut", "VerifyPaymentIn", "PaymentOut", "TransactionOut"]
