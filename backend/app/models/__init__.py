# -*- coding: utf-8 -*-
# backend/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей MUB-LOG Market. Централизует:
#  • загрузку ORM-базиса (Base),
#  • импорт всех моделей (регистрация таблиц в Base.metadata для миграций
#    и create_all в тестах),
#  • реестр MODEL_REGISTRY и диагностику полноты набора таблиц.
#
# Канон/инварианты:
#  • Модели описывают структуру данных, НЕ содержат бизнес-логики и денег.
#  • Денежные операции выполняются ТОЛЬКО через services/ledger_service.py.
# =============================================================================

from __future__ import annotations

import inspect
from typing import Dict, List, Optional, Tuple, Type

from ..core.database_core import Base
from . import (
    ledger_models,
    order_models,
    payment_models,
    product_models,
    sms_models,
    user_models,
)
from .ledger_models import LedgerEntry
from .order_models import Order
from .payment_models import PaymentTransaction
from .product_models import Product
from .sms_models import AllowedService, SmsOrder
from .user_models import User

_MODEL_MODULES = (
    user_models,
    product_models,
    order_models,
    sms_models,
    payment_models,
    ledger_models,
)


def _collect_model_classes(module) -> Dict[str, Type[Base]]:
    """{ClassName: Class} для всех подклассов Base с __tablename__."""
    registry: Dict[str, Type[Base]] = {}
    for name, obj in vars(module).items():
        if inspect.isclass(obj) and issubclass(obj, Base) and hasattr(obj, "__tablename__"):
            registry[name] = obj
    return registry


MODEL_REGISTRY: Dict[str, Type[Base]] = {}
for _module in _MODEL_MODULES:
    MODEL_REGISTRY.update(_collect_model_classes(_module))


def get_model(name: str) -> Optional[Type[Base]]:
    """get_model("User") → <class User> или None."""
    return MODEL_REGISTRY.get(name)


def list_models() -> List[Tuple[str, str]]:
    """Пары (ClassName, __tablename__) всех моделей, по алфавиту."""
    return [
        (cls_name, cls.__tablename__)
        for cls_name, cls in sorted(MODEL_REGISTRY.items(), key=lambda kv: kv[0].lower())
    ]


def models_health() -> Dict[str, object]:
    """Проверяет, что все ключевые таблицы зарегистрированы в metadata."""
    required_tables = [
        "users",
        "products",
        "orders",
        "sms_orders",
        "allowed_services",
        "payment_transactions",
        "ledger_entries",
    ]
    present = set(Base.metadata.tables)
    missing = [name for name in required_tables if name not in present]
    return {"ok": not missing, "missing_tables": missing, "present": list_models()}


__all__ = [
    "Base",
    "MODEL_REGISTRY",
    "get_model",
    "list_models",
    "models_health",
    "User",
    "Product",
    "Order",
    "SmsOrder",
    "AllowedService",
    "PaymentTransaction",
    "LedgerEntry",
]
