# -*- coding: utf-8 -*-
# backend/app/routes/products_routes.py
# =============================================================================
# Назначение кода:
#   Товары каталога:
#     • POST   /products/purchase     : покупка за баланс (Purchase Settlement Engine);
#     • POST   /products              : завести товар (админ);
#     • PUT    /products/{product_id} : частичная правка (админ);
#     • DELETE /products/{product_id} : удалить товар (админ).
#
# Канон / инварианты:
#   • Списание, уменьшение остатка и заказ: одна транзакция (purchase_service).
#   • Многострочный товар: stock равен числу строк payload_lines (product_service).
#   • Ошибки домена (404/409/400/422/500) отдаются обработчиками errors_core.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import AuthContext, get_db, require_admin, require_user
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.product_schemas import (
    ProductCreateIn,
    ProductOut,
    ProductUpdateIn,
    PurchaseIn,
    PurchaseOut,
)
from backend.app.services import product_service
from backend.app.services.purchase_service import purchase_product

router = APIRouter(prefix="/products", tags=["products"])


@router.post("/purchase", response_model=PurchaseOut, summary="Покупка товара за баланс")
async def purchase(
    body: PurchaseIn,
    ctx: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> PurchaseOut:
    result = await purchase_product(db, user_id=ctx.user_id, product_id=body.product_id)
    return PurchaseOut.model_validate(result)


# -----------------------------------------------------------------------------
# Управление товарами (админ)
# -----------------------------------------------------------------------------
@router.post(
    "",
    response_model=ProductOut,
    status_code=status.HTTP_201_CREATED,
    summary="Завести товар (админ)",
)
async def create_product(
    body: ProductCreateIn,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ProductOut:
    product = await product_service.create_product(db, admin_id=admin.user_id, **body.model_dump())
    return ProductOut.model_validate(product)


@router.put("/{product_id}", response_model=ProductOut, summary="Правка товара (админ)")
async def update_product(
    product_id: int,
    body: ProductUpdateIn,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ProductOut:
    product = await product_service.update_product(
        db,
        product_id,
        admin_id=admin.user_id,
        **body.model_dump(exclude_none=True),
    )
    return ProductOut.model_validate(product)


@router.delete("/{product_id}", response_model=OkResponse, summary="Удалить товар (админ)")
async def delete_product(
    product_id: int,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    await product_service.delete_product(db, product_id, admin_id=admin.user_id)
    return OkResponse()
