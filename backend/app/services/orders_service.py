# -*- coding: utf-8 -*-
# backend/app/services/orders_service.py
# =============================================================================
# Назначение кода:
#   История заказов (товары, SMM) с keyset-пагинацией:
#   • list_user_orders: заказы одного пользователя;
#   • list_all_orders: все продажи для админки (с фильтром по пользователю).
#
# Канон/инварианты:
#   • Только чтение. Заказы создаются в purchase_service / smm_service.
#   • Keyset по id (монотонный PK): следующая страница: id < курсора,
#     без OFFSET.
# =============================================================================

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.order_models import Order

MAX_PAGE_SIZE = 100


async def _keyset_page(
    session: AsyncSession,
    stmt: Select,
    *,
    limit: int,
    before_id: Optional[int],
    order_type: Optional[str],
) -> Tuple[List[Order], Optional[int]]:
    size = max(1, min(int(limit), MAX_PAGE_SIZE))
    if order_type:
        stmt = stmt.where(Order.type == order_type.upper())
    if before_id is not None:
        stmt = stmt.where(Order.id < before_id)
    rows = await session.scalars(stmt.order_by(Order.id.desc()).limit(size + 1))
    items = list(rows)

    next_before: Optional[int] = None
    if len(items) > size:
        items = items[:size]
        next_before = items[-1].id
    return items, next_before


async def list_user_orders(
    session: AsyncSession,
    *,
    user_id: int,
    limit: int = 20,
    before_id: Optional[int] = None,
    order_type: Optional[str] = None,
) -> Tuple[List[Order], Optional[int]]:
    """
    Заказы пользователя, новые первыми.

    Возвращает (items, next_before_id); next_before_id = None, если страниц
    больше нет.
    """
    stmt = select(Order).where(Order.user_id == user_id)
    return await _keyset_page(session, stmt, limit=limit, before_id=before_id, order_type=order_type)


async def list_all_orders(
    session: AsyncSession,
    *,
    limit: int = 20,
    before_id: Optional[int] = None,
    order_type: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Tuple[List[Order], Optional[int]]:
    """Все заказы (админ), новые первыми. username берётся из снимка в заказе."""
    stmt = select(Order)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    return await _keyset_page(session, stmt, limit=limit, before_id=before_id, order_type=order_type)


__all__ = ["MAX_PAGE_SIZE", "list_user_orders", "list_all_orders"]
