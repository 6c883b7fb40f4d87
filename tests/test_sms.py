# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update

from backend.app.core.errors_core import (
    AlreadyExistsError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    ServiceUnavailableError,
)
from backend.app.core.utils_core import utcnow
from backend.app.models.sms_models import SMS_CANCELLED, SMS_COMPLETED, SMS_EXPIRED, SMS_WAITING, SmsOrder
from backend.app.models.user_models import User
from backend.app.services import ledger_service as ledger
from backend.app.services import sms_service


@pytest_asyncio.fixture
async def whatsapp(session):
    return await sms_service.add_allowed_service(session, service_name="WhatsApp", display_name="WhatsApp")


async def _order(session, uid, fivesim, pricing, **kwargs):
    return await sms_service.order_number(
        session,
        user_id=uid,
        service="whatsapp",
        country="nigeria",
        operator="mtn",
        provider=fivesim,
        pricing=pricing,
        **kwargs,
    )


async def _sms_orders(session) -> int:
    return await session.scalar(select(func.count(SmsOrder.id)))


# -----------------------------------------------------------------------------
# Разрешённые сервисы и предложения
# -----------------------------------------------------------------------------
async def test_allowed_services_crud(session, whatsapp):
    # rollback в unit_of_work экспирирует ORM-объекты сессии: id берём заранее
    service_id = whatsapp.id
    assert whatsapp.service_name == "whatsapp"
    assert await sms_service.is_service_allowed(session, "whatsapp")

    with pytest.raises(AlreadyExistsError):
        await sms_service.add_allowed_service(session, service_name="WhatsApp")

    await sms_service.delete_allowed_service(session, service_id)
    assert await sms_service.list_allowed_services(session) == []
    with pytest.raises(NotFoundError):
        await sms_service.delete_allowed_service(session, service_id)


async def test_list_offers_applies_pricing(fivesim, pricing):
    offers = await sms_service.list_offers("WhatsApp", provider=fivesim, pricing=pricing)
    assert [(o.country, o.operator, o.price, o.stock) for o in offers] == [("nigeria", "mtn", 90, 10)]


async def test_list_offers_provider_failure(fivesim, pricing):
    fivesim.fail("get_prices", "non_json", "no free phones")
    with pytest.raises(ServiceUnavailableError) as exc_info:
        await sms_service.list_offers("whatsapp", provider=fivesim, pricing=pricing)
    assert exc_info.value.details == {"provider": "5sim", "reason": "non_json"}


# -----------------------------------------------------------------------------
# Заказ номера
# -----------------------------------------------------------------------------
async def test_order_debits_and_creates_waiting(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    before = utcnow()

    result = await _order(session, uid, fivesim, pricing, timeout_minutes=25)

    assert result.price == Decimal("90.00")
    assert result.new_balance == Decimal("110.00")
    assert result.status == SMS_WAITING
    assert result.phone == "+2348012345678"
    assert 24 * 60 <= result.remaining_seconds <= 25 * 60
    assert result.expires_at >= before + timedelta(minutes=25)

    order = await ledger.get_sms_order(session, result.order_id)
    assert order.status == SMS_WAITING
    assert order.activation_id == result.activation_id
    assert order.price == Decimal("90.00")


async def test_order_insufficient_balance_does_not_buy(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("50")

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await _order(session, uid, fivesim, pricing)

    assert exc_info.value.required == Decimal("90")
    assert exc_info.value.available == Decimal("50")
    assert fivesim.bought == []
    assert await ledger.get_balance(session, uid) == Decimal("50.00")
    assert await _sms_orders(session) == 0


async def test_order_requires_allowed_service(session, make_user, fivesim, pricing):
    uid = await make_user("200")
    with pytest.raises(NotFoundError):
        await _order(session, uid, fivesim, pricing)
    assert fivesim.bought == []


@pytest.mark.parametrize(
    "kind",
    ["transport", "http_status", "empty_body", "non_json", "missing_fields", "not_configured"],
)
async def test_provider_failure_never_debits(session, make_user, fivesim, pricing, whatsapp, kind):
    uid = await make_user("200")
    fivesim.fail("buy_activation", kind)

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await _order(session, uid, fivesim, pricing)

    assert exc_info.value.http_status == 503
    assert exc_info.value.details["reason"] == kind
    assert await ledger.get_balance(session, uid) == Decimal("200.00")
    assert await _sms_orders(session) == 0


async def test_no_offer_is_service_unavailable(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    fivesim.prices = {"whatsapp": {"nigeria": {"mtn": {"cost": 2.5, "count": 0}}}}

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await _order(session, uid, fivesim, pricing)

    assert exc_info.value.details["reason"] == "no_offer"
    assert fivesim.bought == []
    assert await ledger.get_balance(session, uid) == Decimal("200.00")


async def test_local_failure_after_allocation_cancels_number(
    session, session_factory, make_user, fivesim, pricing, whatsapp, caplog
):
    uid = await make_user("100")

    async def drain_balance() -> None:
        # параллельная трата между проверкой баланса и списанием
        async with session_factory() as other:
            async with other.begin():
                await other.execute(update(User).where(User.id == uid).values(balance=Decimal("10")))

    fivesim.on_buy = drain_balance

    with caplog.at_level(logging.ERROR):
        with pytest.raises(InsufficientBalanceError):
            await _order(session, uid, fivesim, pricing)

    assert fivesim.cancelled == [fivesim.bought[0].id]
    assert await _sms_orders(session) == 0
    assert await ledger.get_balance(session, uid) == Decimal("10.00")
    orphan = [r for r in caplog.records if r.getMessage() == "SMS allocation orphaned after local failure"]
    assert len(orphan) == 1
    assert orphan[0].activation_id == fivesim.bought[0].id
    assert orphan[0].provider_cancelled is True


# -----------------------------------------------------------------------------
# Отмена
# -----------------------------------------------------------------------------
async def test_cancel_refunds_exactly_once(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    placed = await _order(session, uid, fivesim, pricing)

    cancelled = await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=uid)

    assert cancelled.status == SMS_CANCELLED
    assert cancelled.refunded == Decimal("90.00")
    assert cancelled.new_balance == Decimal("200.00")
    assert fivesim.cancelled == [placed.activation_id]

    with pytest.raises(InvalidStateError):
        await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert await ledger.get_balance(session, uid) == Decimal("200.00")
    assert fivesim.cancelled == [placed.activation_id]


async def test_cancel_provider_failure_keeps_order_waiting(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    placed = await _order(session, uid, fivesim, pricing)
    fivesim.fail("cancel", "http_status")

    with pytest.raises(ServiceUnavailableError):
        await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=uid)

    assert (await ledger.get_sms_order(session, placed.order_id)).status == SMS_WAITING
    assert await ledger.get_balance(session, uid) == Decimal("110.00")


async def test_cancel_foreign_order_not_found(session, make_user, fivesim, pricing, whatsapp):
    owner = await make_user("200")
    stranger = await make_user("200")
    placed = await _order(session, owner, fivesim, pricing)
    with pytest.raises(NotFoundError):
        await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=stranger)


# -----------------------------------------------------------------------------
# Истечение срока
# -----------------------------------------------------------------------------
async def test_expiry_refunds_once(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    placed = await _order(session, uid, fivesim, pricing, now=utcnow() - timedelta(minutes=30), timeout_minutes=25)
    assert await ledger.get_balance(session, uid) == Decimal("110.00")

    assert await sms_service.sweep_expired_orders(session) == 1
    assert await ledger.get_balance(session, uid) == Decimal("200.00")
    assert (await ledger.get_sms_order(session, placed.order_id)).status == SMS_EXPIRED

    assert await sms_service.sweep_expired_orders(session) == 0
    assert await sms_service.expire_order(session, placed.order_id) is False
    assert await ledger.get_balance(session, uid) == Decimal("200.00")

    with pytest.raises(InvalidStateError):
        await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert fivesim.cancelled == []


async def test_sweep_ignores_orders_not_yet_due(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    placed = await _order(session, uid, fivesim, pricing, timeout_minutes=25)

    assert await sms_service.sweep_expired_orders(session) == 0
    assert await sms_service.expire_order(session, placed.order_id) is False
    assert await ledger.get_balance(session, uid) == Decimal("110.00")

    later = utcnow() + timedelta(minutes=26)
    assert await sms_service.sweep_expired_orders(session, now=later) == 1
    assert await ledger.get_balance(session, uid) == Decimal("200.00")


async def test_expire_order_is_idempotent(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("90")
    placed = await _order(session, uid, fivesim, pricing, now=utcnow() - timedelta(minutes=30), timeout_minutes=25)
    assert await sms_service.expire_order(session, placed.order_id) is True
    assert await sms_service.expire_order(session, placed.order_id) is False
    assert await ledger.get_balance(session, uid) == Decimal("90.00")


# -----------------------------------------------------------------------------
# Проверка кода
# -----------------------------------------------------------------------------
async def test_check_code_completes_order(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("200")
    placed = await _order(session, uid, fivesim, pricing)

    waiting = await sms_service.check_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert (waiting.status, waiting.code) == (SMS_WAITING, None)

    fivesim.code = "123456"
    done = await sms_service.check_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert (done.status, done.code) == (SMS_COMPLETED, "123456")

    checks = fivesim.checks
    again = await sms_service.check_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert (again.status, again.code) == (SMS_COMPLETED, "123456")
    assert fivesim.checks == checks

    with pytest.raises(InvalidStateError):
        await sms_service.cancel_order(session, placed.order_id, provider=fivesim, user_id=uid)
    assert await sms_service.sweep_expired_orders(session, now=utcnow() + timedelta(hours=1)) == 0
    assert await ledger.get_balance(session, uid) == Decimal("110.00")


async def test_history_newest_first(session, make_user, fivesim, pricing, whatsapp):
    uid = await make_user("500")
    first = await _order(session, uid, fivesim, pricing, now=utcnow() - timedelta(minutes=5))
    second = await _order(session, uid, fivesim, pricing)

    rows = await sms_service.history_for_user(session, uid)
    assert [r.id for r in rows] == [second.order_id, first.order_id]
