# -*- coding: utf-8 -*-
# backend/app/models/sms_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели SMS-аренды номеров MUB-LOG Market:
#   • SmsOrder      : арендованный номер и его жизненный цикл;
#   • AllowedService: «белый список» сервисов (whatsapp, telegram, ...),
#                      которые разрешено заказывать.
#
# Канон/инварианты:
#   • Статусы SmsOrder: WAITING → {COMPLETED, CANCELLED, EXPIRED}.
#     Финальные статусы не меняются никогда.
#   • Переходы выполняются только compare-and-set по текущему статусу
#     (см. ledger_service.transition_sms_status), поэтому возврат денег
#     происходит не более одного раза.
#   • expires_at: durable due-job: планировщик находит WAITING-заказы с
#     expires_at <= now по индексу (status, expires_at) и возвращает деньги.
#   • activation_id провайдера хранится строкой и уникален.
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

SMS_WAITING = "WAITING"
SMS_COMPLETED = "COMPLETED"
SMS_CANCELLED = "CANCELLED"
SMS_EXPIRED = "EXPIRED"

SMS_TERMINAL_STATUSES = frozenset({SMS_COMPLETED, SMS_CANCELLED, SMS_EXPIRED})


class SmsOrder(Base):
    """
    Аренда номера у провайдера (5sim).

    Поля:
      • user_id / service / country / operator: что и для кого заказано.
      • phone         : выданный номер.
      • activation_id : id активации у провайдера (строка, уникален).
      • price         : списанная сумма (ровно её возвращаем при отмене/истечении).
      • status        : WAITING | COMPLETED | CANCELLED | EXPIRED.
      • sms_code      : полученный код (NULL, пока не пришёл).
      • expires_at    : момент автоматического возврата.
    """

    __tablename__ = "sms_orders"
    __table_args__ = (
        UniqueConstraint("activation_id", name="uq_sms_orders_activation"),
        CheckConstraint(
            "status IN ('WAITING','COMPLETED','CANCELLED','EXPIRED')",
            name="status_enum",
        ),
        CheckConstraint("price >= 0", name="price_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service: Mapped[str] = mapped_column(String(64), nullable=False)
    country: Mapped[str] = mapped_column(String(64), nullable=False)
    operator: Mapped[str] = mapped_column(String(64), nullable=False)

    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    activation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SMS_WAITING, server_default=SMS_WAITING
    )
    sms_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

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

    @property
    def is_terminal(self) -> bool:
        return self.status in SMS_TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<SmsOrder id={self.id} user={self.user_id} {self.service}/{self.country}/{self.operator} "
            f"status={self.status} expires_at={self.expires_at}>"
        )


class AllowedService(Base):
    """Разрешённый к заказу SMS-сервис (service_name в нижнем регистре)."""

    __tablename__ = "allowed_services"
    __table_args__ = (
        UniqueConstraint("service_name", name="uq_allowed_services_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_name: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<AllowedService id={self.id} name={self.service_name}>"


# Индекс под durable sweep просроченных WAITING-заказов
Index("ix_sms_orders_status_expires", SmsOrder.status, SmsOrder.expires_at)
Index("ix_sms_orders_user_created", SmsOrder.user_id, SmsOrder.created_at)

__all__ = [
    "SmsOrder",
    "AllowedService",
    "SMS_WAITING",
    "SMS_COMPLETED",
    "SMS_CANCELLED",
    "SMS_EXPIRED",
    "SMS_TERMINAL_STATUSES",
]
