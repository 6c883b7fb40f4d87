# -*- coding: utf-8 -*-
# backend/app/routes/orders_routes.py
# История заказов пользователя (keyset-пагинация по id).

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import AuthContext, PageParams, encode_cursor, get_db, pagination_params, require_user
from backend.app.schemas.orders_schemas import OrderOut, OrderPage
from backend.app.services.orders_service import list_user_orders

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderPage, summary="Мои заказы")
async def my_orders(
    type: Optional[str] = Query(None, description="PRODUCT | SMM"),
    page: PageParams = Depends(pagination_params),
    ctx: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> OrderPage:
    items, next_before = await list_user_orders(
        db,
        user_id=ctx.user_id,
        limit=page.limit,
        before_id=page.before_id,
        order_type=type,
    )
    return OrderPage(
        items=[OrderOut.model_validate(item) for item in items],
        next_cursor=encode_cursor(next_before) if next_before is not None else None,
    )
