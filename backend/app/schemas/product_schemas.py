# -*- coding: utf-8 -*-
# backend/app/schemas/product_schemas.py
# =============================================================================
# Назначение кода:
# DTO товара каталога: покупка за баланс и управление товарами (админ).
#
# Канон / инварианты:
# • details: выданное содержимое (строка многострочного товара или
#   "LOGIN: ...\nLINK: ..."). Отдаётся только покупателю в ответе.
# • Многострочный товар: stock можно не передавать, он равен числу строк
#   payload_lines. Расхождение отклоняется сервисом (422).
# • ProductOut только для админки: содержит невыданные строки и логины.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from backend.app.schemas.common_schemas import MoneyStr, ORMModel


class PurchaseIn(BaseModel):
    product_id: int = Field(..., ge=1)


class PurchaseOut(ORMModel):
    order_id: int
    product_id: int
    product_name: str
    details: str
    price: MoneyStr
    new_balance: MoneyStr


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., ge=0)
    category: str = Field("", max_length=64)
    description: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    credentials: Optional[str] = None
    public_link: Optional[str] = None
    payload_lines: Optional[str] = Field(None, description="Одна строка = одна выдача")


class ProductUpdateIn(BaseModel):
    """Частичная правка: отсутствующее поле не меняется."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    credentials: Optional[str] = None
    public_link: Optional[str] = None
    payload_lines: Optional[str] = None


class ProductOut(ORMModel):
    id: int
    category: str
    name: str
    description: Optional[str] = None
    price: MoneyStr
    stock: int
    credentials: Optional[str] = None
    public_link: Optional[str] = None
    payload_lines: Optional[str] = None
    is_multiline: bool
    version: int
    updated_at: datetime


__all__ = [
    "PurchaseIn",
    "PurchaseOut",
    "ProductCreateIn",
    "ProductUpdateIn",
    "ProductOut",
]
