# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backend.app.core.errors_core import (
    InsufficientBalanceError,
    InvalidInputError,
    NotFoundError,
    OutOfStockError,
)
from backend.app.core.utils_core import utcnow
from backend.app.models.ledger_models import DIRECTION_CREDIT, DIRECTION_DEBIT, LedgerEntry
from backend.app.models.sms_models import SMS_EXPIRED, SMS_WAITING, SmsOrder
from backend.app.services import ledger_service as ledger


async def test_d2_rounds_down():
    assert ledger.d2("10.129") == Decimal("10.12")
    assert ledger.d2(5) == Decimal("5.00")


async def test_debit_and_credit_write_journal(session, make_user):
    uid = await make_user("100")

    async with ledger.unit_of_work(session):
        new_balance = await ledger.debit_balance(session, user_id=uid, amount="40", reason="test_debit")
    assert new_balance == Decimal("60.00")

    async with ledger.unit_of_work(session):
        credited = await ledger.credit_balance(session, user_id=uid, amount="15.50", reason="test_credit")
    assert credited is True
    assert await ledger.get_balance(session, uid) == Decimal("75.50")

    entries = list(await session.scalars(select(LedgerEntry).order_by(LedgerEntry.id)))
    assert [(e.direction, e.amount, e.reason) for e in entries] == [
        (DIRECTION_DEBIT, Decimal("40.00"), "test_debit"),
        (DIRECTION_CREDIT, Decimal("15.50"), "test_credit"),
    ]


async def test_debit_insufficient_leaves_balance(session, make_user):
    uid = await make_user("50")
    with pytest.raises(InsufficientBalanceError) as exc_info:
        async with ledger.unit_of_work(session):
            await ledger.debit_balance(session, user_id=uid, amount="90", reason="test_debit")
    assert exc_info.value.required == Decimal("90")
    assert exc_info.value.available == Decimal("50")
    assert await ledger.get_balance(session, uid) == Decimal("50.00")
    assert await session.scalar(select(func.count(LedgerEntry.id))) == 0


async def test_credit_with_same_key_applies_once(session, make_user):
    uid = await make_user("0")
    for _ in range(3):
        async with ledger.unit_of_work(session):
            await ledger.credit_balance(
                session,
                user_id=uid,
                amount="25",
                reason="refund",
                idempotency_key="refund:1",
            )
    assert await ledger.get_balance(session, uid) == Decimal("25.00")
    assert await ledger.journal_has_key(session, "refund:1")


async def test_non_positive_amount_rejected(session, make_user):
    uid = await make_user("10")
    with pytest.raises(InvalidInputError):
        async with ledger.unit_of_work(session):
            await ledger.debit_balance(session, user_id=uid, amount="0", reason="x")
    with pytest.raises(InvalidInputError):
        async with ledger.unit_of_work(session):
            await ledger.credit_balance(session, user_id=uid, amount="-5", reason="x")


async def test_credit_unknown_user(session, db_engine):
    with pytest.raises(NotFoundError):
        async with ledger.unit_of_work(session):
            await ledger.credit_balance(session, user_id=999, amount="5", reason="x")


async def test_consume_multiline_product_takes_first_line(session, make_product):
    pid = await make_product(stock=2, payload_lines="acc1:pw1\n\nacc2:pw2\n")

    async with ledger.unit_of_work(session):
        product = await ledger.get_product(session, pid)
        first = await ledger.consume_product_unit(session, product)
    async with ledger.unit_of_work(session):
        product = await ledger.get_product(session, pid)
        second = await ledger.consume_product_unit(session, product)

    assert (first, second) == ("acc1:pw1", "acc2:pw2")
    product = await ledger.get_product(session, pid)
    assert product.stock == 0
    assert product.version == 2
    with pytest.raises(OutOfStockError):
        ledger.peek_product_unit(product)


async def test_peek_single_credentials_product(session, make_product):
    pid = await make_product(credentials="a@b.c:pw", public_link="https://x.test")
    product = await ledger.get_product(session, pid)
    details, rest = ledger.peek_product_unit(product)
    assert details == "LOGIN: a@b.c:pw\nLINK: https://x.test"
    assert rest is None


async def test_transition_sms_status_is_compare_and_set(session, make_user):
    uid = await make_user("0")
    now = utcnow()
    async with ledger.unit_of_work(session):
        order = SmsOrder(
            user_id=uid,
            service="whatsapp",
            country="nigeria",
            operator="mtn",
            phone="+2340000",
            activation_id="1",
            price=Decimal("90"),
            status=SMS_WAITING,
            expires_at=now + timedelta(minutes=5),
        )
        session.add(order)
        await session.flush()
        order_id = order.id

    async with ledger.unit_of_work(session):
        early = await ledger.transition_sms_status(
            session,
            order_id,
            from_status=SMS_WAITING,
            to_status=SMS_EXPIRED,
            expires_before=now,
        )
    assert early is False

    later = now + timedelta(minutes=6)
    async with ledger.unit_of_work(session):
        first = await ledger.transition_sms_status(
            session, order_id, from_status=SMS_WAITING, to_status=SMS_EXPIRED, expires_before=later
        )
        second = await ledger.transition_sms_status(
            session, order_id, from_status=SMS_WAITING, to_status=SMS_EXPIRED, expires_before=later
        )
    assert (first, second) == (True, False)
    assert (await ledger.get_sms_order(session, order_id)).status == SMS_EXPIRED


async def test_get_sms_order_hides_foreign_orders(session, make_user):
    owner = await make_user("0")
    stranger = await make_user("0")
    async with ledger.unit_of_work(session):
        order = SmsOrder(
            user_id=owner,
            service="whatsapp",
            country="nigeria",
            operator="mtn",
            phone="+2340000",
            activation_id="1",
            price=Decimal("90"),
            status=SMS_WAITING,
            expires_at=utcnow(),
        )
        session.add(order)
        await session.flush()
        order_id = order.id
    with pytest.raises(NotFoundError):
        await ledger.get_sms_order(session, order_id, user_id=stranger)
