# -*- coding: utf-8 -*-
# backend/app/models/product_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Товар каталога» MUB-LOG Market:
#   • Product: цифровой товар (аккаунт, ключ, ссылка), выдаваемый сразу
#     после оплаты.
#
# Канон/инварианты:
#   • stock ≥ 0 (CHECK). Уменьшается ровно на 1 за каждую завершённую покупку.
#   • Многострочный товар: payload_lines: одна непустая строка на единицу;
#     stock равен количеству ещё не выданных строк.
#   • version: счётчик оптимистичной блокировки: списание единицы идёт
#     compare-and-set по (id, version, stock > 0).
#   • Товары заводит и правит админ (product_service); остаток многострочного
#     товара выводится из payload_lines, а не задаётся вручную.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from ..core.utils_core import utcnow


class Product(Base):
    """
    Товар каталога.

    Поля:
      • category / name / description: витринные атрибуты.
      • price         : цена в локальной валюте (Numeric(18,2), ≥ 0).
      • stock         : остаток (≥ 0).
      • credentials   : статичный логин (для однострочных товаров).
      • public_link   : статичная ссылка (для однострочных товаров).
      • payload_lines : многострочный запас: строка = одна выдача.
      • version       : счётчик CAS.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="stock_nonneg"),
        CheckConstraint("price >= 0", name="price_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    category: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="", index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    credentials: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload_lines: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

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
    def is_multiline(self) -> bool:
        return self.payload_lines is not None

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price={self.price} stock={self.stock} v={self.version}>"


__all__ = [
    "Product",
]
# =============================================================================
# Пояснения «для чайника»:
#   • Почему version, а не SELECT ... FOR UPDATE?
#     Многострочный товар требует прочитать payload, отрезать первую строку и
#     записать остаток. CAS по version гарантирует, что две параллельные
#     покупки не выдадут одну и ту же строку: проигравший перечитывает товар.
#   • payload_lines = NULL означает «однострочный» товар: выдаём credentials
#     и public_link, уменьшаем только stock.
# =============================================================================
