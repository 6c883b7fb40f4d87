# -*- coding: utf-8 -*-
# backend/app/integrations/provider_base.py
# =============================================================================
# Назначение:
#   • Общая база HTTP-клиентов провайдеров: единый класс ошибки с причиной
#     (kind) и разбор JSON-ответа с различимой диагностикой.
#
# Канон/инварианты:
#   • Каждый сбой провайдера получает одну из причин:
#       transport      : сеть/таймаут/DNS;
#       http_status    : ответ 4xx/5xx;
#       empty_body     : пустое тело ответа;
#       non_json       : тело не JSON (5sim любит "no free phones" текстом);
#       missing_fields : JSON без обязательных полей;
#       rejected       : провайдер вернул {"error": ...};
#       not_configured : не задан ключ API.
#   • Модуль не двигает деньги и не пишет в БД.
# =============================================================================
from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from backend.app.core.errors_core import ServiceUnavailableError
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

KIND_TRANSPORT = "transport"
KIND_HTTP_STATUS = "http_status"
KIND_EMPTY_BODY = "empty_body"
KIND_NON_JSON = "non_json"
KIND_MISSING_FIELDS = "missing_fields"
KIND_REJECTED = "rejected"
KIND_NOT_CONFIGURED = "not_configured"


class ProviderError(RuntimeError):
    """Сбой внешнего провайдера с машинной причиной kind."""

    provider = "provider"

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def as_details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {"provider": self.provider, "reason": self.kind}
        if self.status_code is not None:
            details["status_code"] = self.status_code
        return details

    def __str__(self) -> str:
        return f"{self.provider}:{self.kind}: {self.message}"


def _short(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def decode_json(response: httpx.Response, error_cls: type[ProviderError]) -> Any:
    """
    Разбирает ответ провайдера в JSON или бросает error_cls с точной причиной.
    Тело ошибки попадает в сообщение (обрезанным), ключи API туда не попадают.
    """
    body = response.text or ""
    if response.status_code >= 400:
        message = _short(body.strip()) or response.reason_phrase
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict):
                message = str(parsed.get("message") or parsed.get("error") or message)
        except ValueError:
            pass
        raise error_cls(KIND_HTTP_STATUS, message, status_code=response.status_code)

    if not body.strip():
        raise error_cls(KIND_EMPTY_BODY, "Empty response body", status_code=response.status_code)

    try:
        return json.loads(body)
    except ValueError:
        raise error_cls(KIND_NON_JSON, _short(body.strip()), status_code=response.status_code)


def require_fields(payload: Any, fields: tuple[str, ...], error_cls: type[ProviderError]) -> Dict[str, Any]:
    """Проверяет, что payload: объект со всеми полями fields."""
    if not isinstance(payload, dict):
        raise error_cls(KIND_MISSING_FIELDS, f"Expected JSON object, got {type(payload).__name__}")
    missing = [name for name in fields if payload.get(name) in (None, "")]
    if missing:
        raise error_cls(KIND_MISSING_FIELDS, f"Missing fields: {', '.join(missing)}")
    return payload


def as_service_unavailable(exc: ProviderError, *, operation: str, **extra: Any) -> ServiceUnavailableError:
    """
    Перевод сбоя провайдера в доменную ServiceUnavailableError (503) с
    details {provider, reason[, status_code]} и WARNING-логом.
    """
    logger.warning(
        "Provider call failed",
        extra={"operation": operation, "provider": exc.provider, "reason": exc.kind, "error": exc.message, **extra},
    )
    return ServiceUnavailableError(
        f"{exc.provider} is unavailable: {exc.kind}.",
        details=exc.as_details(),
    )


class BaseProviderClient:
    """
    Лёгкая база клиентов: base_url, таймаут и опциональный httpx-транспорт
    (в тестах httpx.MockTransport). Каждый запрос открывает короткоживущий
    httpx.AsyncClient.
    """

    error_cls: type[ProviderError] = ProviderError

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """HTTP-запрос + decode_json. Сетевые сбои превращаются в kind=transport."""
        request_headers = {"Accept": "application/json"}
        request_headers.update(headers or {})
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    path,
                    params=params,
                    data=data,
                    headers=request_headers,
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "Provider transport failure",
                extra={"provider": self.error_cls.provider, "path": path, "error": type(exc).__name__},
            )
            raise self.error_cls(KIND_TRANSPORT, f"{type(exc).__name__}: {exc}")
        return decode_json(response, self.error_cls)


__all__ = [
    "KIND_TRANSPORT",
    "KIND_HTTP_STATUS",
    "KIND_EMPTY_BODY",
    "KIND_NON_JSON",
    "KIND_MISSING_FIELDS",
    "KIND_REJECTED",
    "KIND_NOT_CONFIGURED",
    "ProviderError",
    "BaseProviderClient",
    "decode_json",
    "as_service_unavailable",
    "require_fields",
]
