# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.core.errors_core import InvalidInputError
from backend.app.services.pricing_service import (
    PricingConfig,
    convert_cost,
    convert_with,
    find_offer_cost,
    quote_offers,
    smm_display_rate,
    smm_price,
)


def test_convert_cost_exact_product():
    assert convert_cost(10, exchange_rate=30, markup_percent=20) == 360


def test_convert_cost_rounds_up():
    assert convert_cost(2.5, exchange_rate=30, markup_percent=20) == 90
    assert convert_cost(0.1, exchange_rate=30, markup_percent=20) == 4
    assert convert_cost("0.01", exchange_rate=1, markup_percent=0) == 1


def test_convert_cost_zero_markup_and_zero_cost():
    assert convert_cost(7, exchange_rate=1, markup_percent=0) == 7
    assert convert_cost(0, exchange_rate=30, markup_percent=20) == 0


@pytest.mark.parametrize(
    "cost, rate, markup",
    [
        (-1, 30, 20),
        (10, 0, 20),
        (10, -5, 20),
        (10, 30, -1),
        ("abc", 30, 20),
        ("NaN", 30, 20),
    ],
)
def test_convert_cost_rejects_bad_input(cost, rate, markup):
    with pytest.raises(InvalidInputError):
        convert_cost(cost, exchange_rate=rate, markup_percent=markup)


def test_convert_with_uses_config(pricing):
    assert convert_with(10, pricing) == 360
    assert pricing.multiplier == Decimal("1.2")


def test_smm_price_per_thousand():
    assert smm_price(2.5, 1000, markup_percent=20) == 3
    assert smm_price(2.5, 100, markup_percent=20) == 1
    assert smm_price(10, 1500, markup_percent=0) == 15


def test_smm_price_rejects_non_positive_quantity():
    with pytest.raises(InvalidInputError):
        smm_price(2.5, 0, markup_percent=20)


def test_smm_display_rate():
    assert smm_display_rate("2.5", markup_percent=20) == Decimal("3.00")
    assert smm_display_rate("1.111", markup_percent=0) == Decimal("1.12")


def test_quote_offers_skips_empty_and_broken_entries(pricing):
    prices = {
        "whatsapp": {
            "nigeria": {
                "mtn": {"cost": 2.5, "count": 10},
                "glo": {"cost": 3, "count": 0},
                "airtel": {"cost": 0, "count": 5},
                "broken": "n/a",
            },
            "usa": {"virtual": {"cost": "10", "count": "3"}},
            "bad": [],
        }
    }
    offers = quote_offers(prices, "whatsapp", pricing)
    got = {(o.country, o.operator): (o.price, o.stock) for o in offers}
    assert got == {("nigeria", "mtn"): (90, 10), ("usa", "virtual"): (360, 3)}


def test_quote_offers_unknown_service(pricing):
    assert quote_offers({"telegram": {}}, "whatsapp", pricing) == []
    assert quote_offers({}, "whatsapp", pricing) == []


def test_find_offer_cost():
    prices = {"whatsapp": {"nigeria": {"mtn": {"cost": 2.5, "count": 10}}}}
    assert find_offer_cost(prices, "whatsapp", "nigeria", "mtn") == {"cost": 2.5, "count": 10}
    assert find_offer_cost(prices, "whatsapp", "nigeria", "glo") is None
    assert find_offer_cost(prices, "telegram", "nigeria", "mtn") is None


def test_pricing_config_from_settings():
    cfg = PricingConfig.from_settings()
    assert cfg.exchange_rate == Decimal("30")
    assert cfg.markup_percent == Decimal("20")
