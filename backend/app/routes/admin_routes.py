# -*- coding: utf-8 -*-
# backend/app/routes/admin_routes.py
# =============================================================================
# Назначение кода:
#   Служебные операции администратора:
#     • POST /admin/config/reload  : перечитать настройки (курс, наценка, ключи);
#     • POST /admin/sms/sweep      : один прогон возврата по просроченным SMS;
#     • GET  /admin/scheduler/jobs : состояние фоновых задач;
#     • GET  /admin/orders         : все продажи (keyset-пагинация по id).
#
# Канон / инварианты:
#   • Доступ: JWT role=admin или X-Admin-Api-Key.
#   • Перечитанные настройки действуют с ближайшего запроса: цены берутся
#     из get_settings() в момент запроса.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import reload_settings
from backend.app.core.logging_core import get_logger, refresh_secret_redaction
from backend.app.deps import AuthContext, PageParams, encode_cursor, get_db, pagination_params, require_admin
from backend.app.schemas.orders_schemas import AdminOrderOut, AdminOrderPage
from backend.app.services import sms_service
from backend.app.services.orders_service import list_all_orders
from backend.app.services.scheduler_service import default_scheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/config/reload", summary="Перечитать настройки")
async def config_reload(admin: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    settings = reload_settings()
    refresh_secret_redaction(settings)
    logger.info("Settings reloaded by admin", extra={"admin_id": admin.user_id})
    return {"ok": True, "snapshot": settings.debug_dump()}


@router.post("/sms/sweep", summary="Возврат по просроченным SMS-заказам (разовый прогон)")
async def sms_sweep(
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    refunded = await sms_service.sweep_expired_orders(db)
    return {"ok": True, "refunded": refunded}


@router.get("/scheduler/jobs", summary="Фоновые задачи")
async def scheduler_jobs(admin: AuthContext = Depends(require_admin)) -> Dict[str, Any]:
    jobs: List[Dict[str, Any]] = default_scheduler.list_jobs()
    return {"running": default_scheduler.is_running, "jobs": jobs}


@router.get("/orders", response_model=AdminOrderPage, summary="Все продажи")
async def all_orders(
    type: Optional[str] = Query(None, description="PRODUCT | SMM"),
    user_id: Optional[int] = Query(None, ge=1),
    page: PageParams = Depends(pagination_params),
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminOrderPage:
    items, next_before = await list_all_orders(
        db,
        limit=page.limit,
        before_id=page.before_id,
        order_type=type,
        user_id=user_id,
    )
    return AdminOrderPage(
        items=[AdminOrderOut.model_validate(item) for item in items],
        next_cursor=encode_cursor(next_before) if next_before is not None else None,
    )
