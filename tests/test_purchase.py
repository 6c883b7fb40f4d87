# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backend.app.core.errors_core import InsufficientBalanceError, NotFoundError, OutOfStockError
from backend.app.models.order_models import ORDER_STATUS_COMPLETED, ORDER_TYPE_PRODUCT, Order
from backend.app.services import ledger_service as ledger
from backend.app.services.purchase_service import purchase_product


async def _orders_count(session) -> int:
    return await session.scalar(select(func.count(Order.id)))


async def test_purchase_debits_balance_and_stock(session, make_user, make_product):
    uid = await make_user("1000")
    pid = await make_product(price="300", stock=2)

    result = await purchase_product(session, user_id=uid, product_id=pid)

    assert result.new_balance == Decimal("700.00")
    assert result.price == Decimal("300.00")
    assert result.details == "LOGIN: mail@example.com:pass\nLINK: https://netflix.com"
    assert await ledger.get_balance(session, uid) == Decimal("700.00")
    assert (await ledger.get_product(session, pid)).stock == 1

    order = await session.get(Order, result.order_id)
    assert order.type == ORDER_TYPE_PRODUCT
    assert order.status == ORDER_STATUS_COMPLETED
    assert order.price == Decimal("300.00")
    assert order.product_name == "Netflix Premium"
    assert order.details == result.details


async def test_multiline_product_delivers_each_line_once(session, make_user, make_product):
    uid = await make_user("1000")
    pid = await make_product(price="100", stock=2, payload_lines="line-a\nline-b")

    first = await purchase_product(session, user_id=uid, product_id=pid)
    second = await purchase_product(session, user_id=uid, product_id=pid)

    assert [first.details, second.details] == ["line-a", "line-b"]
    with pytest.raises(OutOfStockError):
        await purchase_product(session, user_id=uid, product_id=pid)
    assert await ledger.get_balance(session, uid) == Decimal("800.00")


async def test_out_of_stock_leaves_balance(session, make_user, make_product):
    uid = await make_user("1000")
    pid = await make_product(price="300", stock=0)

    with pytest.raises(OutOfStockError):
        await purchase_product(session, user_id=uid, product_id=pid)
    assert await ledger.get_balance(session, uid) == Decimal("1000.00")
    assert await _orders_count(session) == 0


async def test_insufficient_balance_leaves_everything(session, make_user, make_product):
    uid = await make_user("100")
    pid = await make_product(price="300", stock=3)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await purchase_product(session, user_id=uid, product_id=pid)

    assert exc_info.value.required == Decimal("300")
    assert exc_info.value.available == Decimal("100")
    assert await ledger.get_balance(session, uid) == Decimal("100.00")
    assert (await ledger.get_product(session, pid)).stock == 3
    assert await _orders_count(session) == 0


async def test_unknown_product_or_user(session, make_user, make_product):
    uid = await make_user("1000")
    pid = await make_product()
    with pytest.raises(NotFoundError):
        await purchase_product(session, user_id=uid, product_id=pid + 100)
    with pytest.raises(NotFoundError):
        await purchase_product(session, user_id=uid + 100, product_id=pid)
    assert await ledger.get_balance(session, uid) == Decimal("1000.00")


async def test_concurrent_purchase_of_last_unit(session_factory, make_user, make_product):
    buyer_a = await make_user("500")
    buyer_b = await make_user("500")
    pid = await make_product(price="300", stock=1)

    async def buy(user_id: int):
        async with session_factory() as s:
            return await purchase_product(s, user_id=user_id, product_id=pid)

    results = await asyncio.gather(buy(buyer_a), buy(buyer_b), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], OutOfStockError)

    async with session_factory() as s:
        balances = sorted([await ledger.get_balance(s, buyer_a), await ledger.get_balance(s, buyer_b)])
        assert balances == [Decimal("200.00"), Decimal("500.00")]
        assert (await ledger.get_product(s, pid)).stock == 0
        assert await _orders_count(s) == 1
