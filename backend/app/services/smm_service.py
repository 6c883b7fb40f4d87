# -*- coding: utf-8 -*-
# backend/app/services/smm_service.py
# =============================================================================
# Назначение кода:
#   SMM Order Settlement: заказ продвижения (подписчики, лайки и т.п.) у
#   SMM-панели за баланс пользователя.
#
# Канон/инварианты:
#   • Цена = ceil(rate × (1 + markup/100) × quantity / 1000), ставка rate
#     указана панелью за 1000 единиц.
#   • Услуга ищется по каноническому строковому id.
#   • Заказ отправляется в панель ДО списания; сбой панели не трогает баланс.
#   • Списание и заказ PENDING (type=SMM): одна транзакция.
#
# ИИ-защита:
#   • У панели нет отмены: если после размещения заказа локальная запись
#     не удалась, заказ пишется в лог уровня ERROR для ручной сверки.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import (
    InsufficientBalanceError,
    InternalError,
    InvalidInputError,
    MarketError,
    NotFoundError,
)
from backend.app.core.logging_core import get_logger
from backend.app.integrations.provider_base import ProviderError, as_service_unavailable
from backend.app.integrations.smm_panel_api import SmmPanelClient, SmmService
from backend.app.models.order_models import ORDER_STATUS_PENDING, ORDER_TYPE_SMM
from backend.app.services import ledger_service as ledger
from backend.app.services.pricing_service import PricingConfig, smm_display_rate, smm_price

logger = get_logger(__name__)

OPERATION = "smm_order"


@dataclass
class SmmOrderResult:
    provider_order_id: str
    order_id: int
    service_id: str
    quantity: int
    price: Decimal
    new_balance: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SmmServiceQuote:
    id: str
    name: str
    category: str
    min: int
    max: int
    rate: Decimal


async def _fetch_catalog(provider: SmmPanelClient, **extra: Any) -> List[SmmService]:
    try:
        return await provider.list_services()
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OPERATION, **extra)


async def list_services(provider: SmmPanelClient, pricing: PricingConfig) -> List[SmmServiceQuote]:
    """Каталог панели со ставками за 1000 с наценкой маркетплейса."""
    services = await _fetch_catalog(provider)
    return [
        SmmServiceQuote(
            id=item.service,
            name=item.name,
            category=item.category,
            min=item.min,
            max=item.max,
            rate=smm_display_rate(item.rate, markup_percent=pricing.markup_percent),
        )
        for item in services
    ]


async def place_order(
    session: AsyncSession,
    *,
    user_id: int,
    service_id: str,
    link: str,
    quantity: int,
    provider: SmmPanelClient,
    pricing: PricingConfig,
) -> SmmOrderResult:
    """
    Размещение SMM-заказа.

    Ошибки: InvalidInputError (пустой link, quantity вне [min, max]),
    NotFoundError (услуга/пользователь), InsufficientBalanceError,
    ServiceUnavailableError (панель), InternalError.
    """
    target = (link or "").strip()
    if not target:
        raise InvalidInputError("link is required.", details={"field": "link"})
    if quantity is None or int(quantity) <= 0:
        raise InvalidInputError("quantity must be > 0.", details={"quantity": quantity})
    quantity = int(quantity)
    canonical_id = str(service_id).strip()

    catalog = await _fetch_catalog(provider, user_id=user_id, service_id=canonical_id)
    entry = next((item for item in catalog if item.service == canonical_id), None)
    if entry is None:
        raise NotFoundError("SMM service not found.", details={"service_id": canonical_id})
    if (entry.min and quantity < entry.min) or (entry.max and quantity > entry.max):
        raise InvalidInputError(
            f"quantity must be between {entry.min} and {entry.max}.",
            details={"quantity": quantity, "min": entry.min, "max": entry.max},
        )

    price = ledger.d2(smm_price(entry.rate, quantity, markup_percent=pricing.markup_percent))

    user = await ledger.get_user(session, user_id)
    username = user.username
    available = ledger.d2(user.balance)
    if available < price:
        raise InsufficientBalanceError(required=price, available=available)

    if session.in_transaction():
        await session.commit()
    try:
        provider_order_id = await provider.add_order(canonical_id, target, quantity)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OPERATION, user_id=user_id, service_id=canonical_id)

    try:
        async with ledger.unit_of_work(session):
            new_balance = await ledger.debit_balance(
                session,
                user_id=user_id,
                amount=price,
                reason=OPERATION,
            )
            order = await ledger.insert_order(
                session,
                user_id=user_id,
                username=username,
                order_type=ORDER_TYPE_SMM,
                product_name=entry.name or canonical_id,
                price=price,
                status=ORDER_STATUS_PENDING,
                details=f"Order ID: {provider_order_id}",
                product_link=target,
            )
    except (MarketError, SQLAlchemyError) as exc:
        logger.error(
            "SMM order placed at panel but not recorded locally",
            extra={
                "user_id": user_id,
                "amount": str(price),
                "provider_order_id": provider_order_id,
                "service_id": canonical_id,
                "error": repr(exc),
                "operation": OPERATION,
            },
        )
        if isinstance(exc, MarketError):
            raise
        raise InternalError("SMM order could not be recorded.")

    logger.info(
        "SMM order placed",
        extra={
            "user_id": user_id,
            "order_id": order.id,
            "provider_order_id": provider_order_id,
            "amount": str(price),
            "operation": OPERATION,
        },
    )
    return SmmOrderResult(
        provider_order_id=provider_order_id,
        order_id=order.id,
        service_id=canonical_id,
        quantity=quantity,
        price=price,
        new_balance=new_balance,
    )


__all__ = ["SmmOrderResult", "SmmServiceQuote", "list_services", "place_order"]
