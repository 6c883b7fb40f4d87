# -*- coding: utf-8 -*-
# backend/app/schemas/sms_schemas.py
# =============================================================================
# Назначение кода:
# DTO SMS-верификации: белый список сервисов, живые предложения, заказ,
# проверка кода, отмена и история.
#
# Канон / инварианты:
# • Цена предложения: целое число в локальной валюте (ceil).
# • remaining_seconds считается от момента создания заказа.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from backend.app.schemas.common_schemas import MoneyStr, ORMModel


class AllowedServiceIn(BaseModel):
    service_name: str = Field(..., min_length=1, max_length=64)
    display_name: Optional[str] = Field(None, max_length=128)


class AllowedServiceOut(ORMModel):
    id: int
    service_name: str
    display_name: Optional[str] = None


class OfferOut(ORMModel):
    country: str
    operator: str
    price: int
    stock: int


class SmsOrderIn(BaseModel):
    service: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    operator: str = Field(..., min_length=1)


class SmsOrderOut(ORMModel):
    order_id: int
    phone: str
    price: MoneyStr
    status: str
    expires_at: datetime
    remaining_seconds: int
    new_balance: MoneyStr


class SmsCheckOut(ORMModel):
    order_id: int
    status: str
    code: Optional[str] = None


class SmsCancelOut(ORMModel):
    order_id: int
    status: str
    refunded: MoneyStr
    new_balance: MoneyStr


class SmsHistoryItem(ORMModel):
    id: int
    service: str
    country: str
    operator: str
    phone: str
    price: MoneyStr
    status: str
    sms_code: Optional[str] = None
    expires_at: datetime
    created_at: datetime


__all__ = [
    "AllowedServiceIn",
    "AllowedServiceOut",
    "OfferOut",
    "SmsOrderIn",
    "SmsOrderOut",
    "SmsCheckOut",
    "SmsCancelOut",
    "SmsHistoryItem",
]
