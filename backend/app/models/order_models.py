# -*- coding: utf-8 -*-
# backend/app/models/order_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Заказ» MUB-LOG Market:
#   • Order: единая история покупок пользователя: товары каталога (PRODUCT),
#     SMS-номера (SMS) и SMM-услуги (SMM).
#
# Канон/инварианты:
#   • Запись создаётся один раз на расчёт, прошедший проверки и списание,
#     в той же транзакции, что и списание.
#   • username: снимок имени покупателя на момент покупки.
#   • Денежные поля: Numeric(18,2).
#
# Запреты:
#   • Модель НЕ изменяет балансы.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from ..core.utils_core import utcnow

# Типы заказов
ORDER_TYPE_PRODUCT = "PRODUCT"
ORDER_TYPE_SMS = "SMS"
ORDER_TYPE_SMM = "SMM"

# Статусы заказов
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_ACTIVE = "ACTIVE"
ORDER_STATUS_WAITING = "WAITING"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUS_EXPIRED = "EXPIRED"


class Order(Base):
    """
    Заказ пользователя.

    Поля:
      • user_id      : покупатель (FK users.id).
      • username     : снимок имени покупателя.
      • type         : PRODUCT | SMS | SMM.
      • product_name : название позиции (товар / «SMM Service #id»).
      • price        : списанная сумма.
      • product_link : ссылка (товар: public_link, SMM: ссылка клиента).
      • details      : выданное содержимое (логин, строка товара, «Order ID: X»).
      • status       : COMPLETED | PENDING | ACTIVE | WAITING | CANCELLED | EXPIRED.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("type IN ('PRODUCT','SMS','SMM')", name="type_enum"),
        CheckConstraint(
            "status IN ('COMPLETED','PENDING','ACTIVE','WAITING','CANCELLED','EXPIRED')",
            name="status_enum",
        ),
        CheckConstraint("price >= 0", name="price_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    product_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} user={self.user_id} type={self.type} status={self.status} price={self.price}>"


# Курсорная пагинация истории без OFFSET
Index("ix_orders_user_created_id", Order.user_id, Order.created_at, Order.id)

__all__ = [
    "Order",
    "ORDER_TYPE_PRODUCT",
    "ORDER_TYPE_SMS",
    "ORDER_TYPE_SMM",
    "ORDER_STATUS_COMPLETED",
    "ORDER_STATUS_PENDING",
    "ORDER_STATUS_ACTIVE",
    "ORDER_STATUS_WAITING",
    "ORDER_STATUS_CANCELLED",
    "ORDER_STATUS_EXPIRED",
]
