# -*- coding: utf-8 -*-
# backend/app/services/ledger_service.py
# =============================================================================
# Назначение кода:
#   Ledger Store MUB-LOG Market: единственная точка изменения балансов,
#   остатков товаров, статусов SMS-заказов и записи истории заказов.
#
# Канон / инварианты:
#   • Баланс меняется ТОЛЬКО атомарной дельтой в одном UPDATE:
#       списание:   balance = balance - :a  WHERE id = :u AND balance >= :a
#       зачисление: balance = balance + :a  WHERE id = :u
#     Никаких read-modify-write: параллельные списания не «теряют» деньги и
#     не уводят баланс в минус.
#   • Остаток товара уменьшается compare-and-set по (id, version, stock > 0)
#     с ограниченным числом повторов.
#   • Статус SMS-заказа меняется compare-and-set по текущему статусу.
#   • Каждое движение баланса пишет запись LedgerEntry в той же транзакции.
#   • Все функции работают внутри транзакции вызывающего (unit_of_work);
#     commit/rollback здесь не вызываются.
#
# Запреты:
#   • Никаких сетевых вызовов из этого модуля.
# =============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Any, AsyncIterator, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import (
    InsufficientBalanceError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    OutOfStockError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import decimal_from, take_first_line, utcnow
from backend.app.models.ledger_models import DIRECTION_CREDIT, DIRECTION_DEBIT, LedgerEntry
from backend.app.models.order_models import Order
from backend.app.models.product_models import Product
from backend.app.models.sms_models import SmsOrder
from backend.app.models.user_models import User

logger = get_logger(__name__)

Q2 = Decimal("0.01")
STOCK_CAS_MAX_ATTEMPTS = 5


def d2(x: Any) -> Decimal:
    """Денежная сумма: Decimal с 2 знаками, округление вниз."""
    return decimal_from(x).quantize(Q2, rounding=ROUND_DOWN)


def _positive_amount(amount: Any) -> Decimal:
    amt = d2(amount)
    if amt <= 0:
        raise InvalidInputError("Amount must be > 0.", details={"amount": str(amt)})
    return amt


# -----------------------------------------------------------------------------
# Транзакции
# -----------------------------------------------------------------------------
@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Одна транзакция БД: commit при выходе, rollback при исключении.

    Если сессия уже в неявной (autobegin) транзакции после чтений, та
    сначала фиксируется, затем открывается новая.
    """
    if session.in_transaction():
        await session.commit()
    async with session.begin():
        yield session


# -----------------------------------------------------------------------------
# Чтение
# -----------------------------------------------------------------------------
async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User not found.", details={"user_id": user_id})
    return user


async def get_balance(session: AsyncSession, user_id: int) -> Decimal:
    """Актуальный баланс прямо из БД (минуя identity map)."""
    value = await session.scalar(select(User.balance).where(User.id == user_id))
    if value is None:
        raise NotFoundError("User not found.", details={"user_id": user_id})
    return d2(value)


async def get_product(session: AsyncSession, product_id: int) -> Product:
    product = await session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError("Product not found.", details={"product_id": product_id})
    return product


async def get_sms_order(
    session: AsyncSession,
    order_id: int,
    *,
    user_id: Optional[int] = None,
) -> SmsOrder:
    """SMS-заказ по id; чужой заказ для пользователя выглядит как отсутствующий."""
    order = await session.get(SmsOrder, order_id, populate_existing=True)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise NotFoundError("SMS order not found.", details={"order_id": order_id})
    return order


# -----------------------------------------------------------------------------
# Баланс
# -----------------------------------------------------------------------------
async def debit_balance(
    session: AsyncSession,
    *,
    user_id: int,
    amount: Any,
    reason: str,
    idempotency_key: Optional[str] = None,
) -> Decimal:
    """
    Условное атомарное списание. Возвращает новый баланс.

    0 затронутых строк: пользователя нет (NotFoundError) или не хватает
    средств (InsufficientBalanceError с перечитанным доступным балансом).
    """
    amt = _positive_amount(amount)
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.balance >= amt)
        .values(balance=User.balance - amt)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = await get_balance(session, user_id)
        raise InsufficientBalanceError(required=amt, available=available)

    session.add(
        LedgerEntry(
            user_id=user_id,
            amount=amt,
            direction=DIRECTION_DEBIT,
            reason=reason,
            idempotency_key=idempotency_key,
        )
    )
    await session.flush()
    new_balance = await get_balance(session, user_id)
    logger.info(
        "Balance debited",
        extra={"user_id": user_id, "amount": str(amt), "operation": reason, "balance": str(new_balance)},
    )
    return new_balance


async def journal_has_key(session: AsyncSession, idempotency_key: str) -> bool:
    found = await session.scalar(
        select(LedgerEntry.id).where(LedgerEntry.idempotency_key == idempotency_key).limit(1)
    )
    return found is not None


async def credit_balance(
    session: AsyncSession,
    *,
    user_id: int,
    amount: Any,
    reason: str,
    idempotency_key: Optional[str] = None,
) -> bool:
    """
    Атомарное зачисление. С idempotency_key, уже записанным в журнал,
    ничего не меняет и возвращает False.
    """
    amt = _positive_amount(amount)
    if idempotency_key and await journal_has_key(session, idempotency_key):
        logger.info(
            "Credit replay ignored",
            extra={"user_id": user_id, "amount": str(amt), "operation": reason, "idk": idempotency_key},
        )
        return False

    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(balance=User.balance + amt)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("User not found.", details={"user_id": user_id})

    session.add(
        LedgerEntry(
            user_id=user_id,
            amount=amt,
            direction=DIRECTION_CREDIT,
            reason=reason,
            idempotency_key=idempotency_key,
        )
    )
    await session.flush()
    logger.info(
        "Balance credited",
        extra={"user_id": user_id, "amount": str(amt), "operation": reason},
    )
    return True


# -----------------------------------------------------------------------------
# Товары
# -----------------------------------------------------------------------------
def peek_product_unit(product: Product) -> Tuple[str, Optional[str]]:
    """
    (выдаваемое содержимое, новый payload) для текущего состояния товара.
    Пустой многострочный список означает OutOfStockError.
    """
    if product.stock <= 0:
        raise OutOfStockError(details={"product_id": product.id})
    if product.payload_lines is not None:
        line, rest = take_first_line(product.payload_lines)
        if line is None:
            raise OutOfStockError(details={"product_id": product.id})
        return line, rest
    details = f"LOGIN: {product.credentials or ''}\nLINK: {product.public_link or ''}"
    return details, None


async def consume_product_unit(session: AsyncSession, product: Product) -> str:
    """
    Списывает одну единицу товара compare-and-set по (id, version, stock > 0)
    и возвращает выданное содержимое. Проигравший гонку перечитывает товар и
    пробует снова; перечитанный stock == 0 даёт OutOfStockError.
    """
    current = product
    for attempt in range(1, STOCK_CAS_MAX_ATTEMPTS + 1):
        details, new_payload = peek_product_unit(current)
        values: dict[str, Any] = {
            "stock": Product.stock - 1,
            "version": Product.version + 1,
        }
        if current.payload_lines is not None:
            values["payload_lines"] = new_payload
        result = await session.execute(
            update(Product)
            .where(
                Product.id == current.id,
                Product.version == current.version,
                Product.stock > 0,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return details

        logger.info(
            "Product CAS lost, re-reading",
            extra={"product_id": current.id, "attempt": attempt},
        )
        current = await get_product(session, current.id)

    logger.error(
        "Product CAS retries exhausted",
        extra={"product_id": product.id, "attempts": STOCK_CAS_MAX_ATTEMPTS},
    )
    raise InternalError("Could not reserve product unit, please retry.")


async def rewrite_product(session: AsyncSession, product: Product, values: dict[str, Any]) -> bool:
    """
    Правка полей товара админом: compare-and-set по (id, version), version + 1.
    False: товар успели изменить (покупка или другая правка) либо удалить.
    """
    result = await session.execute(
        update(Product)
        .where(Product.id == product.id, Product.version == product.version)
        .values(**values, version=Product.version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# -----------------------------------------------------------------------------
# Заказы
# -----------------------------------------------------------------------------
async def insert_order(
    session: AsyncSession,
    *,
    user_id: int,
    username: Optional[str],
    order_type: str,
    product_name: str,
    price: Any,
    status: str,
    details: Optional[str] = None,
    product_link: Optional[str] = None,
) -> Order:
    order = Order(
        user_id=user_id,
        username=username,
        type=order_type,
        product_name=product_name,
        price=d2(price),
        status=status,
        details=details,
        product_link=product_link,
    )
    session.add(order)
    await session.flush()
    return order


async def transition_sms_status(
    session: AsyncSession,
    order_id: int,
    *,
    from_status: str,
    to_status: str,
    sms_code: Optional[str] = None,
    expires_before: Optional[datetime] = None,
) -> bool:
    """
    Compare-and-set статуса SMS-заказа. True, если переход выполнен этим
    вызовом. expires_before дополнительно требует expires_at <= момента.
    """
    conditions = [SmsOrder.id == order_id, SmsOrder.status == from_status]
    if expires_before is not None:
        conditions.append(SmsOrder.expires_at <= expires_before)

    values: dict[str, Any] = {"status": to_status, "updated_at": utcnow()}
    if sms_code is not None:
        values["sms_code"] = sms_code

    result = await session.execute(
        update(SmsOrder)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


__all__ = [
    "Q2",
    "d2",
    "unit_of_work",
    "get_user",
    "get_balance",
    "get_product",
    "get_sms_order",
    "debit_balance",
    "credit_balance",
    "journal_has_key",
    "peek_product_unit",
    "consume_product_unit",
    "insert_order",
    "transition_sms_status",
]
