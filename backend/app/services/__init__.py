# -*- coding: utf-8 -*-
# backend/app/services/__init__.py
# =============================================================================
# MUB-LOG Market: сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Единый вход для доменных операций: роуты и фоновые задачи берут их
#     отсюда или из конкретных модулей.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет, только импорты.
#   • Деньги двигает только ledger_service; остальные сервисы вызывают его.
#   • Планировщик (scheduler_service) сюда не импортируется: он сам зависит
#     от сервисов через scheduler/*.py.
# =============================================================================

from __future__ import annotations

from . import ledger_service  # noqa: F401
from .auth_service import authenticate, get_profile, list_users, register_user  # noqa: F401
from .orders_service import list_all_orders, list_user_orders  # noqa: F401
from .payments_service import admin_topup, list_transactions, verify_payment  # noqa: F401
from .pricing_service import PricingConfig, convert_cost, smm_price  # noqa: F401
from .product_service import create_product, delete_product, update_product  # noqa: F401
from .purchase_service import PurchaseResult, purchase_product  # noqa: F401
from .smm_service import list_services as list_smm_services, place_order as place_smm_order  # noqa: F401
from .sms_service import (  # noqa: F401
    add_allowed_service,
    cancel_order,
    check_order,
    delete_allowed_service,
    expire_order,
    history_for_user,
    list_allowed_services,
    list_offers,
    order_number,
    sweep_expired_orders,
)

__all__ = [
    "ledger_service",
    "authenticate",
    "get_profile",
    "list_users",
    "register_user",
    "list_all_orders",
    "list_user_orders",
    "admin_topup",
    "list_transactions",
    "verify_payment",
    "PricingConfig",
    "convert_cost",
    "smm_price",
    "create_product",
    "delete_product",
    "update_product",
    "PurchaseResult",
    "purchase_product",
    "list_smm_services",
    "place_smm_order",
    "add_allowed_service",
    "cancel_order",
    "check_order",
    "delete_allowed_service",
    "expire_order",
    "history_for_user",
    "list_allowed_services",
    "list_offers",
    "order_number",
    "sweep_expired_orders",
]
