# -*- coding: utf-8 -*-
# backend/app/schemas/orders_schemas.py
# История заказов (товары, SMM): своя и админская.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from backend.app.schemas.common_schemas import CursorPage, MoneyStr, ORMModel


class OrderOut(ORMModel):
    id: int
    type: str
    product_name: str
    price: MoneyStr
    product_link: Optional[str] = None
    details: Optional[str] = None
    status: str
    created_at: datetime


class AdminOrderOut(OrderOut):
    user_id: int
    username: Optional[str] = None


OrderPage = CursorPage[OrderOut]
AdminOrderPage = CursorPage[AdminOrderOut]

__all__ = ["OrderOut", "OrderPage", "AdminOrderOut", "AdminOrderPage"]
