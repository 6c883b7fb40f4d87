# -*- coding: utf-8 -*-
# backend/app/schemas/smm_schemas.py
# Каталог SMM-панели и размещение заказа.

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from backend.app.schemas.common_schemas import MoneyStr, ORMModel


class SmmServiceOut(ORMModel):
    id: str
    name: str
    category: str
    min: int
    max: int
    rate: MoneyStr


class SmmOrderIn(BaseModel):
    service: str = Field(..., description="id услуги панели")
    link: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)

    @field_validator("service", mode="before")
    @classmethod
    def _service_as_str(cls, v: object) -> str:
        # Панель отдаёт id числом, фронт может прислать и число, и строку
        return str(v).strip()


class SmmOrderOut(ORMModel):
    provider_order_id: str
    order_id: int
    price: MoneyStr
    new_balance: MoneyStr


__all__ = ["SmmServiceOut", "SmmOrderIn", "SmmOrderOut"]
