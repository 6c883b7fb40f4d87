# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.core.errors_core import (
    AlreadyExistsError,
    InvalidInputError,
    NotFoundError,
    PaymentNotSuccessfulError,
    ServiceUnavailableError,
)
from backend.app.integrations.flutterwave_api import PaymentGatewayError, PaymentVerification
from backend.app.services import ledger_service as ledger
from backend.app.services import payments_service


# -----------------------------------------------------------------------------
# Ручное пополнение
# -----------------------------------------------------------------------------
async def test_admin_topup_is_idempotent(session, make_user):
    uid = await make_user("0")

    first = await payments_service.admin_topup(session, user_id=uid, amount="500", idempotency_key="k-1")
    replay = await payments_service.admin_topup(session, user_id=uid, amount="500", idempotency_key="k-1")
    other = await payments_service.admin_topup(session, user_id=uid, amount="250.5", idempotency_key="k-2")

    assert (first.credited, first.new_balance) == (True, Decimal("500.00"))
    assert (replay.credited, replay.new_balance) == (False, Decimal("500.00"))
    assert (other.credited, other.new_balance) == (True, Decimal("750.50"))
    assert await ledger.journal_has_key(session, payments_service.topup_key("k-1"))


@pytest.mark.parametrize("amount", ["0", "-10", "abc"])
async def test_admin_topup_rejects_bad_amount(session, make_user, amount):
    uid = await make_user("0")
    with pytest.raises(InvalidInputError):
        await payments_service.admin_topup(session, user_id=uid, amount=amount, idempotency_key="k")
    assert await ledger.get_balance(session, uid) == Decimal("0.00")


async def test_admin_topup_requires_key_and_user(session, make_user):
    uid = await make_user("0")
    with pytest.raises(InvalidInputError):
        await payments_service.admin_topup(session, user_id=uid, amount="10", idempotency_key=" ")
    with pytest.raises(NotFoundError):
        await payments_service.admin_topup(session, user_id=uid + 1, amount="10", idempotency_key="k")


# -----------------------------------------------------------------------------
# Платёж Flutterwave
# -----------------------------------------------------------------------------
async def test_verify_payment_credits_once(session, make_user, gateway):
    uid = await make_user("0")

    first = await payments_service.verify_payment(session, user_id=uid, transaction_id="987654", gateway=gateway)
    again = await payments_service.verify_payment(session, user_id=uid, transaction_id="987654", gateway=gateway)

    assert first.credited is True
    assert first.new_balance == Decimal("1500.00")
    assert first.reference == "MUB-REF-1"
    assert again.credited is False
    assert again.new_balance == Decimal("1500.00")

    rows = await payments_service.list_transactions(session, uid)
    assert [(r.reference, r.amount, r.status) for r in rows] == [("MUB-REF-1", Decimal("1500.00"), "successful")]


async def test_verify_payment_not_successful(session, make_user, gateway):
    uid = await make_user("0")
    gateway.verification = PaymentVerification(
        status="failed",
        amount=Decimal("1500"),
        reference="MUB-REF-2",
        currency="NGN",
        transaction_id="111",
    )
    with pytest.raises(PaymentNotSuccessfulError) as exc_info:
        await payments_service.verify_payment(session, user_id=uid, transaction_id="111", gateway=gateway)
    assert exc_info.value.details["status"] == "failed"
    assert await ledger.get_balance(session, uid) == Decimal("0.00")


async def test_reference_of_other_user_is_rejected(session, make_user, gateway):
    payer = await make_user("0")
    other = await make_user("0")
    await payments_service.verify_payment(session, user_id=payer, transaction_id="987654", gateway=gateway)

    with pytest.raises(AlreadyExistsError):
        await payments_service.verify_payment(session, user_id=other, transaction_id="987654", gateway=gateway)
    assert await ledger.get_balance(session, other) == Decimal("0.00")


async def test_gateway_failure(session, make_user, gateway):
    uid = await make_user("0")
    gateway.error = PaymentGatewayError("http_status", "Transaction not found", status_code=404)
    with pytest.raises(ServiceUnavailableError) as exc_info:
        await payments_service.verify_payment(session, user_id=uid, transaction_id="1", gateway=gateway)
    assert exc_info.value.details == {"provider": "flutterwave", "reason": "http_status", "status_code": 404}


async def test_verify_payment_requires_transaction_id(session, make_user, gateway):
    uid = await make_user("0")
    with pytest.raises(InvalidInputError):
        await payments_service.verify_payment(session, user_id=uid, transaction_id="", gateway=gateway)
    assert gateway.calls == []
