# -*- coding: utf-8 -*-
# backend/app/routes/smm_routes.py
# Каталог SMM-панели и размещение заказа за баланс.

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import AuthContext, get_db, get_pricing, get_smm_client, require_user
from backend.app.integrations.smm_panel_api import SmmPanelClient
from backend.app.schemas.smm_schemas import SmmOrderIn, SmmOrderOut, SmmServiceOut
from backend.app.services import smm_service
from backend.app.services.pricing_service import PricingConfig

router = APIRouter(prefix="/smm", tags=["smm"])


@router.get("/live-services", response_model=List[SmmServiceOut], summary="Каталог SMM со ставками за 1000")
async def live_services(
    provider: SmmPanelClient = Depends(get_smm_client),
    pricing: PricingConfig = Depends(get_pricing),
) -> List[SmmServiceOut]:
    items = await smm_service.list_services(provider, pricing)
    return [SmmServiceOut.model_validate(item) for item in items]


@router.post("/order", response_model=SmmOrderOut, summary="Разместить SMM-заказ")
async def order(
    body: SmmOrderIn,
    ctx: AuthContext = Depends(require_user),
    provider: SmmPanelClient = Depends(get_smm_client),
    pricing: PricingConfig = Depends(get_pricing),
    db: AsyncSession = Depends(get_db),
) -> SmmOrderOut:
    result = await smm_service.place_order(
        db,
        user_id=ctx.user_id,
        service_id=body.service,
        link=body.link,
        quantity=body.quantity,
        provider=provider,
        pricing=pricing,
    )
    return SmmOrderOut.model_validate(result)
