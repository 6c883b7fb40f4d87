# -*- coding: utf-8 -*-
# backend/app/services/purchase_service.py
# =============================================================================
# Назначение кода:
#   Purchase Settlement Engine: покупка товара каталога за баланс.
#
# Канон/инварианты:
#   • Порядок проверок: товар → пользователь → остаток → баланс → единица
#     товара. Любая неудача проверки оставляет баланс и остаток нетронутыми.
#   • Списание, уменьшение остатка (CAS) и запись заказа COMPLETED выполняются
#     в ОДНОЙ транзакции: сбой любого шага откатывает все три.
#   • Многострочный товар выдаёт ровно одну строку за покупку, строка
#     покидает payload ровно один раз.
#
# ИИ-защита:
#   • Сбой хранилища логируется с user_id/product_id/amount/operation и
#     наружу выходит как InternalError (без деталей БД).
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import InsufficientBalanceError, InternalError
from backend.app.core.logging_core import get_logger
from backend.app.models.order_models import ORDER_STATUS_COMPLETED, ORDER_TYPE_PRODUCT
from backend.app.services import ledger_service as ledger

logger = get_logger(__name__)

OPERATION = "product_purchase"


@dataclass
class PurchaseResult:
    order_id: int
    product_id: int
    product_name: str
    details: str
    price: Decimal
    new_balance: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def purchase_product(
    session: AsyncSession,
    *,
    user_id: int,
    product_id: int,
) -> PurchaseResult:
    """
    Покупка товара за баланс.

    Ошибки: NotFoundError (товар/пользователь), OutOfStockError,
    InsufficientBalanceError(required, available), InternalError.
    """
    price = Decimal("0")
    try:
        async with ledger.unit_of_work(session):
            product = await ledger.get_product(session, product_id)
            user = await ledger.get_user(session, user_id)
            price = ledger.d2(product.price)

            # Остаток и единица товара (до списания; повторно проверяется CAS)
            ledger.peek_product_unit(product)

            available = ledger.d2(user.balance)
            if available < price:
                raise InsufficientBalanceError(required=price, available=available)

            new_balance = await ledger.debit_balance(
                session,
                user_id=user.id,
                amount=price,
                reason=OPERATION,
            )
            details = await ledger.consume_product_unit(session, product)
            order = await ledger.insert_order(
                session,
                user_id=user.id,
                username=user.username,
                order_type=ORDER_TYPE_PRODUCT,
                product_name=product.name,
                price=price,
                status=ORDER_STATUS_COMPLETED,
                details=details,
                product_link=product.public_link,
            )
            result = PurchaseResult(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                details=details,
                price=price,
                new_balance=new_balance,
            )
    except SQLAlchemyError:
        logger.exception(
            "Purchase settlement failed in storage",
            extra={
                "user_id": user_id,
                "product_id": product_id,
                "amount": str(price),
                "operation": OPERATION,
            },
        )
        raise InternalError("Purchase could not be completed.")

    logger.info(
        "Product purchased",
        extra={
            "user_id": user_id,
            "product_id": product_id,
            "order_id": result.order_id,
            "amount": str(price),
            "operation": OPERATION,
        },
    )
    return result


__all__ = [
    "PurchaseResult",
    "purchase_product",
]
# =============================================================================
# Пояснения «для чайника»:
#   • Почему проверка остатка есть и до, и после списания?
#     Первая отвечает понятной ошибкой без лишних записей. Вторая (CAS в
#     consume_product_unit) защищает от гонки: две покупки последней единицы
#     дадут один успех и один OutOfStock, а списание проигравшего откатится.
#   • Почему баланс проверяется и здесь, и в debit_balance?
#     Здесь для ответа с required/available, там условным UPDATE, который не
#     пустит баланс в минус даже при параллельных покупках.
# =============================================================================
