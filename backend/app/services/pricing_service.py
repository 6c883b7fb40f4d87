# -*- coding: utf-8 -*-
# backend/app/services/pricing_service.py
# =============================================================================
# Назначение кода:
#   Pricing Converter: перевод стоимости провайдера (5sim, SMM-панель) в цену
#   маркетплейса в локальной валюте.
#
# Канон / инварианты:
#   • price = ceil(cost × exchange_rate × (1 + markup_percent / 100)).
#   • Расчёт в Decimal, собранном из str(value): 10 × 30 × 1.2 даёт ровно 360,
#     а не 361 из-за двоичного «хвоста» float.
#   • Курс и наценка приходят параметрами (PricingConfig), модульных
#     изменяемых значений нет.
#   • Функции чистые: без сети, БД и логов.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional

from backend.app.core.config_core import Settings, get_settings
from backend.app.core.errors_core import InvalidInputError
from backend.app.core.utils_core import NumberLike, decimal_from, quantize_decimal

_HUNDRED = Decimal(100)
_THOUSAND = Decimal(1000)


@dataclass(frozen=True)
class PricingConfig:
    """Курс и наценка, действующие для одного запроса."""

    exchange_rate: Decimal
    markup_percent: Decimal

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingConfig":
        s = settings or get_settings()
        return cls(exchange_rate=s.EXCHANGE_RATE, markup_percent=s.MARKUP_PERCENT)

    @property
    def multiplier(self) -> Decimal:
        return Decimal(1) + self.markup_percent / _HUNDRED


@dataclass
class OfferDTO:
    country: str
    operator: str
    price: int
    stock: int


def _as_decimal(value: Any, field: str) -> Decimal:
    try:
        result = decimal_from(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field} must be a number.", details={"field": field})
    if not result.is_finite():
        raise InvalidInputError(f"{field} must be a finite number.", details={"field": field})
    return result


def _ceil_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def convert_cost(
    cost: NumberLike,
    *,
    exchange_rate: NumberLike,
    markup_percent: NumberLike,
) -> int:
    """
    Цена в локальной валюте, округлённая вверх до целого.

        convert_cost(10, exchange_rate=30, markup_percent=20)  == 360
        convert_cost(2.5, exchange_rate=30, markup_percent=20) == 90
    """
    c = _as_decimal(cost, "cost")
    rate = _as_decimal(exchange_rate, "exchange_rate")
    markup = _as_decimal(markup_percent, "markup_percent")
    if c < 0:
        raise InvalidInputError("cost must be >= 0.", details={"cost": str(c)})
    if rate <= 0:
        raise InvalidInputError("exchange_rate must be > 0.", details={"exchange_rate": str(rate)})
    if markup < 0:
        raise InvalidInputError("markup_percent must be >= 0.", details={"markup_percent": str(markup)})
    return _ceil_int(c * rate * (Decimal(1) + markup / _HUNDRED))


def convert_with(cost: NumberLike, pricing: PricingConfig) -> int:
    """convert_cost с параметрами из PricingConfig."""
    return convert_cost(
        cost,
        exchange_rate=pricing.exchange_rate,
        markup_percent=pricing.markup_percent,
    )


def smm_price(rate: NumberLike, quantity: int, *, markup_percent: NumberLike) -> int:
    """
    Цена SMM-заказа: ставка панели указана за 1000 единиц.

        smm_price(2.5, 1000, markup_percent=20) == 3
    """
    r = _as_decimal(rate, "rate")
    markup = _as_decimal(markup_percent, "markup_percent")
    if r < 0:
        raise InvalidInputError("rate must be >= 0.", details={"rate": str(r)})
    if quantity <= 0:
        raise InvalidInputError("quantity must be > 0.", details={"quantity": quantity})
    if markup < 0:
        raise InvalidInputError("markup_percent must be >= 0.", details={"markup_percent": str(markup)})
    return _ceil_int(r * (Decimal(1) + markup / _HUNDRED) * Decimal(quantity) / _THOUSAND)


def smm_display_rate(rate: NumberLike, *, markup_percent: NumberLike) -> Decimal:
    """Ставка за 1000 с наценкой, для витрины (2 знака, вверх)."""
    r = _as_decimal(rate, "rate")
    markup = _as_decimal(markup_percent, "markup_percent")
    return quantize_decimal(r * (Decimal(1) + markup / _HUNDRED), decimals=2, rounding="CEILING")


def quote_offers(
    prices: Mapping[str, Any],
    service: str,
    pricing: PricingConfig,
) -> List[OfferDTO]:
    """
    Разворачивает таблицу цен 5sim {service: {country: {operator: {cost, count}}}}
    в плоский список предложений. В выдачу попадают только операторы с
    count > 0 и cost > 0; кривые записи пропускаются.
    """
    service_data = prices.get(service) if isinstance(prices, Mapping) else None
    if not isinstance(service_data, Mapping):
        return []

    offers: List[OfferDTO] = []
    for country, operators in service_data.items():
        if not isinstance(operators, Mapping):
            continue
        for operator, info in operators.items():
            if not isinstance(info, Mapping):
                continue
            try:
                cost = decimal_from(info.get("cost", 0))
                count = int(info.get("count", 0))
            except (InvalidOperation, TypeError, ValueError):
                continue
            if count > 0 and cost > 0:
                offers.append(
                    OfferDTO(
                        country=str(country),
                        operator=str(operator),
                        price=convert_with(cost, pricing),
                        stock=count,
                    )
                )
    return offers


def find_offer_cost(
    prices: Mapping[str, Any],
    service: str,
    country: str,
    operator: str,
) -> Optional[Mapping[str, Any]]:
    """Запись {cost, count} для (service, country, operator) или None."""
    try:
        info = prices[service][country][operator]
    except (KeyError, TypeError):
        return None
    return info if isinstance(info, Mapping) else None


__all__ = [
    "PricingConfig",
    "OfferDTO",
    "convert_cost",
    "convert_with",
    "smm_price",
    "smm_display_rate",
    "quote_offers",
    "find_offer_cost",
]
