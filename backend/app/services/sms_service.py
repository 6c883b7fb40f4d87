# -*- coding: utf-8 -*-
# backend/app/services/sms_service.py
# =============================================================================
# Назначение кода:
#   SMS Order Lifecycle Manager: аренда номера у 5sim за баланс, проверка кода,
#   отмена с возвратом и автоматический возврат по истечении срока.
#
# Машина состояний:
#   WAITING → COMPLETED | CANCELLED | EXPIRED. Терминальные статусы финальны.
#
# Канон/инварианты:
#   • Номер покупается у провайдера ДО списания. Сбой провайдера не трогает
#     баланс и не создаёт заказ.
#   • Списание и вставка заказа WAITING: одна транзакция.
#   • Авто-возврат: durable due-job: expires_at в БД + периодический sweep
#     (scheduler/expire_sms_orders.py). Рестарт процесса ничего не теряет.
#   • Каждый выход из WAITING: compare-and-set по статусу, поэтому возврат
#     (отмена или истечение) происходит не более одного раза.
#   • Транзакция БД не держится открытой во время сетевого вызова провайдера.
#
# ИИ-защита:
#   • Если после покупки номера локальная запись не удалась, номер
#     отменяется у провайдера, а «сирота» пишется в лог уровня ERROR
#     (user_id, amount, activation_id, phone) для ручной сверки.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import get_settings
from backend.app.core.errors_core import (
    AlreadyExistsError,
    InsufficientBalanceError,
    InternalError,
    InvalidInputError,
    InvalidStateError,
    MarketError,
    NotFoundError,
    ServiceUnavailableError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import as_utc, decimal_from, utcnow
from backend.app.integrations.fivesim_api import FiveSimClient
from backend.app.integrations.provider_base import ProviderError, as_service_unavailable
from backend.app.models.sms_models import (
    SMS_CANCELLED,
    SMS_COMPLETED,
    SMS_EXPIRED,
    SMS_WAITING,
    AllowedService,
    SmsOrder,
)
from backend.app.services import ledger_service as ledger
from backend.app.services.pricing_service import (
    OfferDTO,
    PricingConfig,
    convert_with,
    find_offer_cost,
    quote_offers,
)

logger = get_logger(__name__)

OP_ORDER = "sms_order"
OP_CANCEL = "sms_cancel_refund"
OP_EXPIRE = "sms_expire_refund"


def refund_key(order_id: int) -> str:
    """Ключ журнала для авто-возврата по истечении."""
    return f"sms:{order_id}:refund"


def cancel_refund_key(order_id: int) -> str:
    return f"sms:{order_id}:cancel-refund"


# -----------------------------------------------------------------------------
# DTO результатов
# -----------------------------------------------------------------------------
@dataclass
class SmsOrderResult:
    order_id: int
    activation_id: str
    phone: str
    price: Decimal
    status: str
    expires_at: datetime
    remaining_seconds: int
    new_balance: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SmsCheckResult:
    order_id: int
    status: str
    code: Optional[str]


@dataclass
class SmsCancelResult:
    order_id: int
    status: str
    refunded: Decimal
    new_balance: Decimal


def _remaining_seconds(expires_at: datetime, now: datetime) -> int:
    left = (as_utc(expires_at) - as_utc(now)).total_seconds()
    return max(0, int(left))


async def _release_read_snapshot(session: AsyncSession) -> None:
    """Закрывает неявную транзакцию чтения перед сетевым вызовом."""
    if session.in_transaction():
        await session.commit()


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidInputError(f"{field} is required.", details={"field": field})
    return text


# -----------------------------------------------------------------------------
# Разрешённые сервисы
# -----------------------------------------------------------------------------
async def is_service_allowed(session: AsyncSession, service_name: str) -> bool:
    found = await session.scalar(
        select(AllowedService.id).where(AllowedService.service_name == service_name).limit(1)
    )
    return found is not None


async def list_allowed_services(session: AsyncSession) -> List[AllowedService]:
    rows = await session.scalars(select(AllowedService).order_by(AllowedService.service_name))
    return list(rows)


async def add_allowed_service(
    session: AsyncSession,
    *,
    service_name: str,
    display_name: Optional[str] = None,
) -> AllowedService:
    """Добавляет сервис в белый список (имя приводится к нижнему регистру)."""
    name = _require_text(service_name, "service_name").lower()
    try:
        async with ledger.unit_of_work(session):
            if await is_service_allowed(session, name):
                raise AlreadyExistsError("Service already allowed.", details={"service_name": name})
            item = AllowedService(service_name=name, display_name=(display_name or "").strip() or None)
            session.add(item)
            await session.flush()
    except IntegrityError:
        raise AlreadyExistsError("Service already allowed.", details={"service_name": name})
    logger.info("Allowed service added", extra={"service": name, "allowed_service_id": item.id})
    return item


async def delete_allowed_service(session: AsyncSession, service_id: int) -> None:
    async with ledger.unit_of_work(session):
        result = await session.execute(delete(AllowedService).where(AllowedService.id == service_id))
        if result.rowcount != 1:
            raise NotFoundError("Allowed service not found.", details={"allowed_service_id": service_id})
    logger.info("Allowed service deleted", extra={"allowed_service_id": service_id})


# -----------------------------------------------------------------------------
# Живые предложения
# -----------------------------------------------------------------------------
async def list_offers(
    service: str,
    *,
    provider: FiveSimClient,
    pricing: PricingConfig,
) -> List[OfferDTO]:
    """Предложения (страна, оператор, цена, остаток) по сервису с текущим курсом."""
    name = _require_text(service, "service").lower()
    try:
        prices = await provider.get_prices(name)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation="sms_live_config", service=name)
    return quote_offers(prices, name, pricing)


# -----------------------------------------------------------------------------
# Заказ номера
# -----------------------------------------------------------------------------
async def order_number(
    session: AsyncSession,
    *,
    user_id: int,
    service: str,
    country: str,
    operator: str,
    provider: FiveSimClient,
    pricing: PricingConfig,
    timeout_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SmsOrderResult:
    """
    Покупка номера для SMS-верификации.

    Порядок: проверка входа и белого списка → цена у провайдера → проверка
    баланса → покупка номера у провайдера → (одна транзакция) списание +
    заказ WAITING с expires_at = now + timeout.

    Ошибки: InvalidInputError, NotFoundError (сервис/пользователь),
    ServiceUnavailableError (нет предложения или сбой провайдера),
    InsufficientBalanceError, InternalError.
    """
    service_name = _require_text(service, "service").lower()
    country_name = _require_text(country, "country")
    operator_name = _require_text(operator, "operator")
    timeout = timeout_minutes if timeout_minutes is not None else get_settings().SMS_ORDER_TIMEOUT_MIN
    if timeout <= 0:
        raise InvalidInputError("timeout_minutes must be > 0.", details={"timeout_minutes": timeout})

    if not await is_service_allowed(session, service_name):
        raise NotFoundError("Service is not available.", details={"service": service_name})

    # 1) Цена у провайдера
    await _release_read_snapshot(session)
    try:
        prices = await provider.get_prices(service_name)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OP_ORDER, user_id=user_id, service=service_name)

    offer = find_offer_cost(prices, service_name, country_name, operator_name)
    try:
        cost = decimal_from(offer.get("cost", 0)) if offer is not None else Decimal(0)
        count = int(offer.get("count", 0)) if offer is not None else 0
    except (InvalidOperation, TypeError, ValueError):
        cost, count = Decimal(0), 0
    if offer is None or count <= 0 or cost <= 0:
        logger.info(
            "No SMS offer",
            extra={"service": service_name, "country": country_name, "operator": operator_name},
        )
        raise ServiceUnavailableError(
            "No numbers available for this country/operator.",
            details={"provider": "5sim", "reason": "no_offer"},
        )

    final_price = ledger.d2(convert_with(cost, pricing))

    # 2) Пользователь и баланс (до покупки номера)
    user = await ledger.get_user(session, user_id)
    available = ledger.d2(user.balance)
    if available < final_price:
        raise InsufficientBalanceError(required=final_price, available=available)

    # 3) Покупка номера: сбой провайдера не трогает деньги
    await _release_read_snapshot(session)
    try:
        activation = await provider.buy_activation(country_name, operator_name, service_name)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OP_ORDER, user_id=user_id, service=service_name)

    # 4) Списание + заказ WAITING, одна транзакция
    created_at = as_utc(now) or utcnow()
    expires_at = created_at + timedelta(minutes=timeout)
    try:
        async with ledger.unit_of_work(session):
            new_balance = await ledger.debit_balance(
                session,
                user_id=user_id,
                amount=final_price,
                reason=OP_ORDER,
            )
            order = SmsOrder(
                user_id=user_id,
                service=service_name,
                country=country_name,
                operator=operator_name,
                phone=activation.phone,
                activation_id=activation.id,
                price=final_price,
                status=SMS_WAITING,
                expires_at=expires_at,
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(order)
            await session.flush()
    except (MarketError, SQLAlchemyError) as exc:
        await _compensate_allocation(
            provider,
            user_id=user_id,
            amount=final_price,
            activation_id=activation.id,
            phone=activation.phone,
            error=exc,
        )
        if isinstance(exc, MarketError):
            raise
        raise InternalError("SMS order could not be recorded.")

    logger.info(
        "SMS number ordered",
        extra={
            "user_id": user_id,
            "sms_order_id": order.id,
            "activation_id": activation.id,
            "amount": str(final_price),
            "operation": OP_ORDER,
        },
    )
    return SmsOrderResult(
        order_id=order.id,
        activation_id=activation.id,
        phone=activation.phone,
        price=final_price,
        status=SMS_WAITING,
        expires_at=expires_at,
        remaining_seconds=_remaining_seconds(expires_at, created_at),
        new_balance=new_balance,
    )


async def _compensate_allocation(
    provider: FiveSimClient,
    *,
    user_id: int,
    amount: Decimal,
    activation_id: str,
    phone: str,
    error: Exception,
) -> None:
    """Номер куплен, а запись не удалась: отменяем номер и пишем «сироту»."""
    cancelled = False
    try:
        await provider.cancel(activation_id)
        cancelled = True
    except ProviderError as exc:
        logger.warning(
            "Compensating cancel failed",
            extra={"activation_id": activation_id, "reason": exc.kind, "error": exc.message},
        )
    logger.error(
        "SMS allocation orphaned after local failure",
        extra={
            "user_id": user_id,
            "amount": str(amount),
            "activation_id": activation_id,
            "phone": phone,
            "provider_cancelled": cancelled,
            "error": repr(error),
            "operation": OP_ORDER,
        },
    )


# -----------------------------------------------------------------------------
# Истечение срока (durable due-job)
# -----------------------------------------------------------------------------
async def expire_order(
    session: AsyncSession,
    order_id: int,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """
    WAITING → EXPIRED, если срок вышел, и возврат price. Идемпотентно:
    повторный вызов или уже терминальный заказ ничего не меняют (False).
    """
    moment = as_utc(now) or utcnow()
    async with ledger.unit_of_work(session):
        moved = await ledger.transition_sms_status(
            session,
            order_id,
            from_status=SMS_WAITING,
            to_status=SMS_EXPIRED,
            expires_before=moment,
        )
        if not moved:
            return False
        order = await ledger.get_sms_order(session, order_id)
        amount = ledger.d2(order.price)
        if amount > 0:
            await ledger.credit_balance(
                session,
                user_id=order.user_id,
                amount=amount,
                reason=OP_EXPIRE,
                idempotency_key=refund_key(order_id),
            )
    logger.info(
        "SMS order expired and refunded",
        extra={"sms_order_id": order_id, "user_id": order.user_id, "amount": str(amount), "operation": OP_EXPIRE},
    )
    return True


async def sweep_expired_orders(
    session: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Находит WAITING-заказы с expires_at <= now (старые первыми, порцией limit)
    и проводит по ним expire_order. Возвращает число возвратов.
    Сбой по одному заказу логируется, остальные обрабатываются.
    """
    moment = as_utc(now) or utcnow()
    batch = limit if limit is not None else get_settings().SMS_SWEEP_BATCH
    rows = await session.scalars(
        select(SmsOrder.id)
        .where(SmsOrder.status == SMS_WAITING, SmsOrder.expires_at <= moment)
        .order_by(SmsOrder.expires_at, SmsOrder.id)
        .limit(batch)
    )
    due_ids = list(rows)

    refunded = 0
    for order_id in due_ids:
        try:
            if await expire_order(session, order_id, now=moment):
                refunded += 1
        except (MarketError, SQLAlchemyError):
            logger.exception("SMS expiry failed, will retry next sweep", extra={"sms_order_id": order_id})
    if due_ids:
        logger.info("SMS expiry sweep", extra={"due": len(due_ids), "refunded": refunded})
    return refunded


# -----------------------------------------------------------------------------
# Проверка кода
# -----------------------------------------------------------------------------
async def check_order(
    session: AsyncSession,
    order_id: int,
    *,
    provider: FiveSimClient,
    user_id: Optional[int] = None,
) -> SmsCheckResult:
    """
    Статус и код заказа. Не-WAITING заказ отдаётся из БД без вызова провайдера.
    Пришедший код переводит WAITING → COMPLETED (compare-and-set).
    """
    order = await ledger.get_sms_order(session, order_id, user_id=user_id)
    if order.status != SMS_WAITING:
        return SmsCheckResult(order_id=order.id, status=order.status, code=order.sms_code)

    activation_id = order.activation_id
    await _release_read_snapshot(session)
    try:
        code = await provider.check_code(activation_id)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation="sms_check", sms_order_id=order_id)

    if code is None:
        return SmsCheckResult(order_id=order_id, status=SMS_WAITING, code=None)

    async with ledger.unit_of_work(session):
        moved = await ledger.transition_sms_status(
            session,
            order_id,
            from_status=SMS_WAITING,
            to_status=SMS_COMPLETED,
            sms_code=code,
        )
        current = await ledger.get_sms_order(session, order_id)
    if moved:
        logger.info("SMS code received", extra={"sms_order_id": order_id, "activation_id": activation_id})
    return SmsCheckResult(order_id=order_id, status=current.status, code=current.sms_code)


# -----------------------------------------------------------------------------
# Отмена с возвратом
# -----------------------------------------------------------------------------
async def cancel_order(
    session: AsyncSession,
    order_id: int,
    *,
    provider: FiveSimClient,
    user_id: Optional[int] = None,
) -> SmsCancelResult:
    """
    Отмена WAITING-заказа: номер освобождается у провайдера, затем в одной
    транзакции WAITING → CANCELLED и возврат price.

    Ошибки: NotFoundError, InvalidStateError (терминальный статус или
    проигранный compare-and-set), ServiceUnavailableError (провайдер).
    """
    order = await ledger.get_sms_order(session, order_id, user_id=user_id)
    if order.is_terminal:
        raise InvalidStateError(
            f"Order is already {order.status}.",
            details={"sms_order_id": order_id, "status": order.status},
        )

    activation_id = order.activation_id
    owner_id = order.user_id
    amount = ledger.d2(order.price)

    await _release_read_snapshot(session)
    try:
        await provider.cancel(activation_id)
    except ProviderError as exc:
        raise as_service_unavailable(exc, operation=OP_CANCEL, sms_order_id=order_id)

    async with ledger.unit_of_work(session):
        moved = await ledger.transition_sms_status(
            session,
            order_id,
            from_status=SMS_WAITING,
            to_status=SMS_CANCELLED,
        )
        if not moved:
            current = await ledger.get_sms_order(session, order_id)
            raise InvalidStateError(
                f"Order is already {current.status}.",
                details={"sms_order_id": order_id, "status": current.status},
            )
        if amount > 0:
            await ledger.credit_balance(
                session,
                user_id=owner_id,
                amount=amount,
                reason=OP_CANCEL,
                idempotency_key=cancel_refund_key(order_id),
            )
        new_balance = await ledger.get_balance(session, owner_id)

    logger.info(
        "SMS order cancelled and refunded",
        extra={"sms_order_id": order_id, "user_id": owner_id, "amount": str(amount), "operation": OP_CANCEL},
    )
    return SmsCancelResult(
        order_id=order_id,
        status=SMS_CANCELLED,
        refunded=amount,
        new_balance=new_balance,
    )


# -----------------------------------------------------------------------------
# История
# -----------------------------------------------------------------------------
async def history_for_user(
    session: AsyncSession,
    user_id: int,
    *,
    limit: int = 50,
) -> List[SmsOrder]:
    """SMS-заказы пользователя, новые первыми."""
    rows = await session.scalars(
        select(SmsOrder)
        .where(SmsOrder.user_id == user_id)
        .order_by(SmsOrder.created_at.desc(), SmsOrder.id.desc())
        .limit(max(1, min(limit, 200)))
    )
    return list(rows)


__all__ = [
    "SmsOrderResult",
    "SmsCheckResult",
    "SmsCancelResult",
    "refund_key",
    "cancel_refund_key",
    "is_service_allowed",
    "list_allowed_services",
    "add_allowed_service",
    "delete_allowed_service",
    "list_offers",
    "order_number",
    "expire_order",
    "sweep_expired_orders",
    "check_order",
    "cancel_order",
    "history_for_user",
]

# =============================================================================
# Пояснения «для чайника»:
#   • Почему номер покупается раньше списания?
#     Если 5sim не дал номер, у пользователя ничего не списано и отменять
#     нечего. Обратный порядок требовал бы возврата денег при каждом отказе.
#   • Что если сервер перезапустился, пока заказ ждал кода?
#     expires_at лежит в БД. Первый же тик планировщика после старта найдёт
#     просроченные WAITING-заказы и вернёт деньги.
#   • Может ли отмена и истечение вернуть деньги дважды?
#     Нет: оба пути начинают с compare-and-set WAITING → X, выигрывает один.
# =============================================================================
