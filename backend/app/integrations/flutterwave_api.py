# -*- coding: utf-8 -*-
# backend/app/integrations/flutterwave_api.py
# =============================================================================
# MUB-LOG Market: Интеграция с Flutterwave (проверка платежа пополнения)
# -----------------------------------------------------------------------------
# Назначение:
#   • verify(transaction_id): GET /transactions/{id}/verify.
#   • Модуль не начисляет деньги: зачисление делает payments_service один раз
#     на уникальный reference.
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from backend.app.core.config_core import get_settings
from backend.app.integrations.provider_base import (
    KIND_MISSING_FIELDS,
    KIND_NOT_CONFIGURED,
    BaseProviderClient,
    ProviderError,
    require_fields,
)


class PaymentGatewayError(ProviderError):
    provider = "flutterwave"


@dataclass(slots=True)
class PaymentVerification:
    status: str
    amount: Decimal
    reference: str
    currency: Optional[str]
    transaction_id: str

    @property
    def is_successful(self) -> bool:
        return self.status.lower() == "successful"


class FlutterwaveClient(BaseProviderClient):
    error_cls = PaymentGatewayError

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret_key: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            base_url or settings.FLUTTERWAVE_API_URL,
            timeout_seconds=timeout_seconds or settings.NETWORK_REQUEST_TIMEOUT_SEC,
            transport=transport,
        )
        self.secret_key = secret_key if secret_key is not None else settings.FLUTTERWAVE_SECRET_KEY

    async def verify(self, transaction_id: str) -> PaymentVerification:
        if not self.secret_key:
            raise PaymentGatewayError(KIND_NOT_CONFIGURED, "FLUTTERWAVE_SECRET_KEY is not configured")
        payload = await self._request(
            "GET",
            f"/transactions/{transaction_id}/verify",
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )
        body = require_fields(payload, ("data",), PaymentGatewayError)
        data = require_fields(body["data"], ("status", "amount", "tx_ref"), PaymentGatewayError)
        try:
            amount = Decimal(str(data["amount"]))
        except InvalidOperation:
            raise PaymentGatewayError(KIND_MISSING_FIELDS, "amount is not a number")
        return PaymentVerification(
            status=str(data["status"]),
            amount=amount,
            reference=str(data["tx_ref"]),
            currency=str(data["currency"]) if data.get("currency") else None,
            transaction_id=str(data.get("id") or transaction_id),
        )


__all__ = ["FlutterwaveClient", "PaymentGatewayError", "PaymentVerification"]
