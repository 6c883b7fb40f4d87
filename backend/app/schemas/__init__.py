# -*- coding: utf-8 -*-
# backend/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы (v2) HTTP-контракта MUB-LOG Market. Модули:
#   common_schemas, user_schemas, product_schemas, orders_schemas,
#   sms_schemas, smm_schemas, transactions_schemas.
#
# Канон / инварианты:
# • Здесь НЕТ бизнес-логики: только DTO и валидация формы запроса.
# • Денежные суммы наружу: строкой с 2 знаками (MoneyStr).
# =============================================================================

SCHEMAS_VERSION: str = "v1.0"
