# -*- coding: utf-8 -*-
# backend/app/services/payments_service.py
# =============================================================================
# Назначение кода:
#   Пополнение баланса: ручное пополнение администратором и зачисление
#   подтверждённого платежа Flutterwave.
#
# Канон/инварианты:
#   • Деньги двигает только ledger_service.credit_balance (атомарная дельта +
#     запись журнала в одной транзакции).
#   • Ручное пополнение идемпотентно по Idempotency-Key: ключ журнала
#     "topup:{key}", повтор ничего не начисляет.
#   • Платёж зачисляется ровно один раз на уникальный reference. Сначала
#     read-through по reference; гонка двух проверок ловится уникальным
#     индексом и отвечает повтором (credited=False).
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import (
    AlreadyExistsError,
    InvalidInputError,
    PaymentNotSuccessfulError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import NumberLike, decimal_from
from backend.app.integrations.flutterwave_api import FlutterwaveClient
from backend.app.integrations.provider_base import ProviderError, as_service_unavailable
from backend.app.models.payment_models import PaymentTransaction
from backend.app.services import ledger_service as ledger

logger = get_logger(__name__)

OP_TOPUP = "admin_topup"
OP_PAYMENT = "payment_credit"


@dataclass
class TopupResult:
    user_id: int
    amount: Decimal
    new_balance: Decimal
    credited: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentResult:
    reference: str
    transaction_id: str
    amount: Decimal
    currency: Optional[str]
    status: str
    credited: bool
    new_balance: Decimal


def _parse_amount(amount: NumberLike) -> Decimal:
    try:
        value = decimal_from(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError("amount must be a number.", details={"field": "amount"})
    if not value.is_finite() or ledger.d2(value) <= 0:
        raise InvalidInputError("amount must be > 0.", details={"amount": str(amount)})
    return ledger.d2(value)


def topup_key(idempotency_key: str) -> str:
    return f"topup:{idempotency_key}"


def payment_key(reference: str) -> str:
    return f"payment:{reference}"


# -----------------------------------------------------------------------------
# Ручное пополнение
# -----------------------------------------------------------------------------
async def admin_topup(
    session: AsyncSession,
    *,
    user_id: int,
    amount: NumberLike,
    idempotency_key: str,
    admin_id: Optional[Any] = None,
) -> TopupResult:
    """
    Пополнение баланса пользователя администратором.

    Ошибки: InvalidInputError (сумма/ключ), NotFoundError (пользователь).
    Повтор с тем же Idempotency-Key возвращает credited=False.
    """
    value = _parse_amount(amount)
    key = (idempotency_key or "").strip()
    if not key:
        raise InvalidInputError("Idempotency-Key is required.", details={"field": "Idempotency-Key"})

    async with ledger.unit_of_work(session):
        await ledger.get_user(session, user_id)
        credited = await ledger.credit_balance(
            session,
            user_id=user_id,
            amount=value,
            reason=OP_TOPUP,
            idempotency_key=topup_key(key),
        )
        new_balance = await ledger.get_balance(session, user_id)

    logger.info(
        "Admin topup",
        extra={
            "user_id": user_id,
            "amount": str(value),
            "credited": credited,
            "admin_id": admin_id,
            "operation": OP_TOPUP,
        },
    )
    return TopupResult(user_id=user_id, amount=value, new_balance=new_balance, credited=credited)


# -----------------------------------------------------------------------------
# Платёж через шлюз
# -----------------------------------------------------------------------------
async def _find_by_reference(session: AsyncSession, reference: str) -> Optional[PaymentTransaction]:
    return await session.scalar(
        select(PaymentTransaction)
        .where(PaymentTransaction.reference == reference)
        .execution_options(populate_existing=True)
    )


async def _replay(
    session: AsyncSession,
    existing: PaymentTransaction,
    *,
    user_id: int,
) -> PaymentResult:
    if existing.user_id != user_id:
        raise AlreadyExistsError(
            "Payment reference already used.",
            details={"reference": existing.reference},
        )
    logger.info(
        "Payment replay",
        extra={"user_id": user_id, "reference": existing.reference, "operation": OP_PAYMENT},
    )
    return PaymentResult(
        reference=existing.reference,
        transaction_id=existing.transaction_id,
        amount=ledger.d2(existing.amount),
        currency=existing.currency,
        status=existing.status,
        credited=False,
        new_balance=await ledger.get_balance(session, user_id),
    )


async def verify_payment(
    session: AsyncSession,
    *,
    user_id: int,
    transaction_id: str,
    gateway: FlutterwaveClient,
) -> PaymentResult:
    """
    Проверка платежа у шлюза и однократное зачисление суммы.

    Ошибки: InvalidInputError, ServiceUnavailableError (шлюз недоступен или
    ответ битый), PaymentNotSuccessfulError (статус не successful),
    NotFoundError (пользователь), AlreadyExistsError (reference чужого платежа).
    """
    tx_id = str(transaction_id or "").strip()
    if not tx_id:
        raise InvalidInputError("transaction_id is required.", details={"field": "transaction_id"})

    await ledger.get_user(session, user_id)
    if session.in_transaction():
        await session.commit()

    try:
        verification = await gateway.verify(tx_id)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OP_PAYMENT, user_id=user_id, transaction_id=tx_id)

    if not verification.is_successful:
        logger.info(
            "Payment not successful",
            extra={"user_id": user_id, "transaction_id": tx_id, "status": verification.status},
        )
        raise PaymentNotSuccessfulError(
            details={"status": verification.status, "transaction_id": verification.transaction_id},
        )
    amount = _parse_amount(verification.amount)

    existing = await _find_by_reference(session, verification.reference)
    if existing is not None:
        return await _replay(session, existing, user_id=user_id)

    try:
        async with ledger.unit_of_work(session):
            session.add(
                PaymentTransaction(
                    user_id=user_id,
                    transaction_id=verification.transaction_id,
                    reference=verification.reference,
                    amount=amount,
                    currency=verification.currency,
                    status=verification.status,
                )
            )
            await session.flush()
            await ledger.credit_balance(
                session,
                user_id=user_id,
                amount=amount,
                reason=OP_PAYMENT,
                idempotency_key=payment_key(verification.reference),
            )
            new_balance = await ledger.get_balance(session, user_id)
    except IntegrityError:
        existing = await _find_by_reference(session, verification.reference)
        if existing is None:
            raise
        return await _replay(session, existing, user_id=user_id)

    logger.info(
        "Payment credited",
        extra={
            "user_id": user_id,
            "amount": str(amount),
            "reference": verification.reference,
            "operation": OP_PAYMENT,
        },
    )
    return PaymentResult(
        reference=verification.reference,
        transaction_id=verification.transaction_id,
        amount=amount,
        currency=verification.currency,
        status=verification.status,
        credited=True,
        new_balance=new_balance,
    )


async def list_transactions(
    session: AsyncSession,
    user_id: int,
    *,
    limit: int = 50,
) -> List[PaymentTransaction]:
    """Платежи пользователя, новые первыми."""
    rows = await session.scalars(
        select(PaymentTransaction)
        .where(PaymentTransaction.user_id == user_id)
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        .limit(max(1, min(limit, 200)))
    )
    return list(rows)


__all__ = [
    "TopupResult",
    "PaymentResult",
    "topup_key",
    "payment_key",
    "admin_topup",
    "verify_payment",
    "list_transactions",
]
