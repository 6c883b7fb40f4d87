# -*- coding: utf-8 -*-
# backend/app/integrations/smm_panel_api.py
# =============================================================================
# MUB-LOG Market: Интеграция с SMM-панелью (API v2: action=services / add)
# -----------------------------------------------------------------------------
# Назначение:
#   • Каталог услуг панели и размещение заказа.
#   • Модуль не меняет балансы: деньги двигает smm_service.
#
# Канон/инварианты:
#   • id услуги и id заказа панели нормализуются к str.
#   • Ответ {"error": "..."}: отказ панели (kind="rejected").
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger
from backend.app.integrations.provider_base import (
    KIND_MISSING_FIELDS,
    KIND_NOT_CONFIGURED,
    KIND_REJECTED,
    BaseProviderClient,
    ProviderError,
    require_fields,
)

logger = get_logger(__name__)


class SmmPanelError(ProviderError):
    provider = "smm_panel"


@dataclass(slots=True)
class SmmService:
    """Услуга панели. rate: цена за 1000 единиц в валюте панели."""

    service: str
    name: str
    category: str
    min: int
    max: int
    rate: Decimal


def _parse_service(raw: Dict[str, Any]) -> SmmService:
    try:
        return SmmService(
            service=str(raw["service"]),
            name=str(raw.get("name") or ""),
            category=str(raw.get("category") or ""),
            min=int(raw.get("min") or 0),
            max=int(raw.get("max") or 0),
            rate=Decimal(str(raw["rate"])),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise SmmPanelError(KIND_MISSING_FIELDS, f"Bad service entry: {exc!r}")


class SmmPanelClient(BaseProviderClient):
    """Клиент SMM-панели (по умолчанию reallysimplesocial.com/api/v2)."""

    error_cls = SmmPanelError

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
            base_url or settings.SMM_API_URL,
            timeout_seconds=timeout_seconds or settings.NETWORK_REQUEST_TIMEOUT_SEC,
            transport=transport,
        )
        self.api_key = api_key if api_key is not None else settings.SMM_API_KEY

    async def _call(self, action: str, **params: Any) -> Any:
        if not self.api_key:
            raise SmmPanelError(KIND_NOT_CONFIGURED, "SMM_API_KEY is not configured")
        data = {"key": self.api_key, "action": action}
        data.update({k: str(v) for k, v in params.items()})
        payload = await self._request("POST", "", data=data)
        if isinstance(payload, dict) and payload.get("error"):
            raise SmmPanelError(KIND_REJECTED, str(payload["error"]))
        return payload

    async def list_services(self) -> List[SmmService]:
        payload = await self._call("services")
        if not isinstance(payload, list):
            raise SmmPanelError(KIND_MISSING_FIELDS, "Services response is not a JSON list")
        services: List[SmmService] = []
        for raw in payload:
            if not isinstance(raw, dict):
                continue
            try:
                services.append(_parse_service(raw))
            except SmmPanelError as exc:
                logger.warning("SMM panel: skip service entry", extra={"error": str(exc)})
        return services

    async def add_order(self, service: str, link: str, quantity: int) -> str:
        """Размещает заказ, возвращает id заказа панели (str)."""
        payload = await self._call("add", service=service, link=link, quantity=quantity)
        data = require_fields(payload, ("order",), SmmPanelError)
        order_id = str(data["order"])
        logger.info(
            "SMM panel order placed",
            extra={"provider_order_id": order_id, "service": service, "quantity": quantity},
        )
        return order_id


__all__ = ["SmmPanelClient", "SmmPanelError", "SmmService"]
