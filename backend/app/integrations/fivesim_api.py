# -*- coding: utf-8 -*-
# backend/app/integrations/fivesim_api.py
# =============================================================================
# MUB-LOG Market: Интеграция с 5sim (аренда номеров для SMS-верификации)
# -----------------------------------------------------------------------------
# Назначение:
#   • Таблица цен (guest/prices), покупка активации, проверка кода, отмена.
#   • Модуль не меняет балансы: деньги двигает sms_service через Ledger Store.
#
# Канон/инварианты:
#   • id активации нормализуется к str сразу при разборе ответа.
#   • Любой сбой превращается в FiveSimError(kind=...), см. provider_base.
#   • Таймауты httpx обязательны (NETWORK_REQUEST_TIMEOUT_SEC).
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger
from backend.app.integrations.provider_base import (
    KIND_MISSING_FIELDS,
    KIND_NOT_CONFIGURED,
    BaseProviderClient,
    ProviderError,
    require_fields,
)

logger = get_logger(__name__)


class FiveSimError(ProviderError):
    """Ошибка 5sim (kind: transport/http_status/empty_body/non_json/missing_fields)."""

    provider = "5sim"


@dataclass(slots=True)
class Activation:
    """Купленный номер: id активации у 5sim и телефон."""

    id: str
    phone: str


class FiveSimClient(BaseProviderClient):
    """Клиент 5sim API v1 (https://5sim.net/v1)."""

    error_cls = FiveSimError

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            base_url or settings.FIVESIM_API_URL,
            timeout_seconds=timeout_seconds or settings.NETWORK_REQUEST_TIMEOUT_SEC,
            transport=transport,
        )
        self.api_key = api_key if api_key is not None else settings.FIVESIM_API_KEY

    def _auth_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise FiveSimError(KIND_NOT_CONFIGURED, "FIVESIM_API_KEY is not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    async def get_prices(self, service: str) -> Dict[str, Any]:
        """
        Таблица цен по сервису: {service: {country: {operator: {cost, count}}}}.
        Гостевой эндпоинт, ключ не нужен.
        """
        payload = await self._request("GET", "/guest/prices", params={"product": service})
        if not isinstance(payload, dict):
            raise FiveSimError(KIND_MISSING_FIELDS, "Price table is not a JSON object")
        return payload

    async def buy_activation(self, country: str, operator: str, service: str) -> Activation:
        """Покупка номера. Возвращает Activation(id, phone)."""
        payload = await self._request(
            "GET",
            f"/user/buy/activation/{country}/{operator}/{service}",
            headers=self._auth_headers(),
        )
        data = require_fields(payload, ("id", "phone"), FiveSimError)
        activation = Activation(id=str(data["id"]), phone=str(data["phone"]))
        logger.info(
            "5sim activation bought",
            extra={"activation_id": activation.id, "service": service, "country": country, "operator": operator},
        )
        return activation

    async def check_code(self, activation_id: str) -> Optional[str]:
        """Код из первого SMS или None, если SMS ещё нет."""
        payload = await self._request(
            "GET",
            f"/user/check/{activation_id}",
            headers=self._auth_headers(),
        )
        if not isinstance(payload, dict):
            raise FiveSimError(KIND_MISSING_FIELDS, "Check response is not a JSON object")
        sms = payload.get("sms") or []
        if not isinstance(sms, list) or not sms:
            return None
        first = sms[0]
        code = first.get("code") if isinstance(first, dict) else None
        return str(code) if code not in (None, "") else None

    async def cancel(self, activation_id: str) -> Dict[str, Any]:
        """Отмена активации: номер возвращается провайдеру."""
        payload = await self._request(
            "GET",
            f"/user/cancel/{activation_id}",
            headers=self._auth_headers(),
        )
        if not isinstance(payload, dict):
            raise FiveSimError(KIND_MISSING_FIELDS, "Cancel response is not a JSON object")
        logger.info("5sim activation cancelled", extra={"activation_id": activation_id})
        return payload


__all__ = ["Activation", "FiveSimClient", "FiveSimError"]

# =============================================================================
# Пояснения «для чайника»:
#   • 5sim на «нет номеров» отвечает 200 с текстом "no free phones": это
#     FiveSimError(kind="non_json"), деньги при этом не списываются.
#   • transport передаётся только в тестах (httpx.MockTransport), в проде
#     используется обычный сетевой транспорт httpx.
# =============================================================================
