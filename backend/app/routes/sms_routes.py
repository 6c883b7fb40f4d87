# -*- coding: utf-8 -*-
# backend/app/routes/sms_routes.py
# =============================================================================
# Назначение кода:
#   SMS-верификация: белый список сервисов, живые предложения 5sim, заказ
#   номера, проверка кода, отмена с возвратом, история.
#
# Канон / инварианты:
#   • Номер покупается у провайдера до списания (sms_service.order_number).
#   • Отмена и авто-возврат защищены compare-and-set: деньги возвращаются
#     не более одного раза.
#   • Чужой заказ для пользователя выглядит как отсутствующий (404).
#   • Управление белым списком: только админ.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import (
    AuthContext,
    get_db,
    get_fivesim_client,
    get_pricing,
    require_admin,
    require_user,
)
from backend.app.integrations.fivesim_api import FiveSimClient
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.sms_schemas import (
    AllowedServiceIn,
    AllowedServiceOut,
    OfferOut,
    SmsCancelOut,
    SmsCheckOut,
    SmsHistoryItem,
    SmsOrderIn,
    SmsOrderOut,
)
from backend.app.services import sms_service
from backend.app.services.pricing_service import PricingConfig

router = APIRouter(prefix="/sms", tags=["sms"])


# -----------------------------------------------------------------------------
# Белый список сервисов
# -----------------------------------------------------------------------------
@router.get("/available-services", response_model=List[AllowedServiceOut], summary="Разрешённые сервисы")
async def available_services(db: AsyncSession = Depends(get_db)) -> List[AllowedServiceOut]:
    rows = await sms_service.list_allowed_services(db)
    return [AllowedServiceOut.model_validate(row) for row in rows]


@router.post(
    "/allowed",
    response_model=AllowedServiceOut,
    status_code=status.HTTP_201_CREATED,
    summary="Добавить сервис (админ)",
)
async def add_allowed(
    body: AllowedServiceIn,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AllowedServiceOut:
    item = await sms_service.add_allowed_service(
        db,
        service_name=body.service_name,
        display_name=body.display_name,
    )
    return AllowedServiceOut.model_validate(item)


@router.delete("/allowed/{service_id}", response_model=OkResponse, summary="Удалить сервис (админ)")
async def delete_allowed(
    service_id: int,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    await sms_service.delete_allowed_service(db, service_id)
    return OkResponse()


# -----------------------------------------------------------------------------
# Предложения и заказ
# -----------------------------------------------------------------------------
@router.get("/live-config/{service}", response_model=List[OfferOut], summary="Живые предложения по сервису")
async def live_config(
    service: str,
    provider: FiveSimClient = Depends(get_fivesim_client),
    pricing: PricingConfig = Depends(get_pricing),
) -> List[OfferOut]:
    offers = await sms_service.list_offers(service, provider=provider, pricing=pricing)
    return [OfferOut.model_validate(offer) for offer in offers]


@router.post("/order", response_model=SmsOrderOut, summary="Заказать номер")
async def order(
    body: SmsOrderIn,
    ctx: AuthContext = Depends(require_user),
    provider: FiveSimClient = Depends(get_fivesim_client),
    pricing: PricingConfig = Depends(get_pricing),
    db: AsyncSession = Depends(get_db),
) -> SmsOrderOut:
    result = await sms_service.order_number(
        db,
        user_id=ctx.user_id,
        service=body.service,
        country=body.country,
        operator=body.operator,
        provider=provider,
        pricing=pricing,
    )
    return SmsOrderOut.model_validate(result)


@router.get("/check/{order_id}", response_model=SmsCheckOut, summary="Проверить код")
async def check(
    order_id: int,
    ctx: AuthContext = Depends(require_user),
    provider: FiveSimClient = Depends(get_fivesim_client),
    db: AsyncSession = Depends(get_db),
) -> SmsCheckOut:
    result = await sms_service.check_order(db, order_id, provider=provider, user_id=ctx.user_id)
    return SmsCheckOut.model_validate(result)


@router.post("/cancel/{order_id}", response_model=SmsCancelOut, summary="Отменить заказ с возвратом")
async def cancel(
    order_id: int,
    ctx: AuthContext = Depends(require_user),
    provider: FiveSimClient = Depends(get_fivesim_client),
    db: AsyncSession = Depends(get_db),
) -> SmsCancelOut:
    result = await sms_service.cancel_order(db, order_id, provider=provider, user_id=ctx.user_id)
    return SmsCancelOut.model_validate(result)


@router.get("/history", response_model=List[SmsHistoryItem], summary="Мои SMS-заказы")
async def history(
    limit: int = Query(50, ge=1, le=200),
    ctx: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> List[SmsHistoryItem]:
    rows = await sms_service.history_for_user(db, ctx.user_id, limit=limit)
    return [SmsHistoryItem.model_validate(row) for row in rows]
