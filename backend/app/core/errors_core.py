# -*- coding: utf-8 -*-
# backend/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой доменных ошибок MUB-LOG Market.
#   • Канонические коды ошибок для фронтенда/логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Канон / инварианты:
#   • Денежные сервисы (покупка, SMS, SMM, пополнения) бросают ТОЛЬКО
#     доменные исключения из этого модуля.
#   • Ошибки клиентов провайдеров (5sim, SMM, Flutterwave) наружу не выходят:
#     сервисы переводят их в ServiceUnavailableError.
#   • Клиенту никогда не утекают технические детали (stack trace, DSN, ключи).
#
# Запреты:
#   • Никакой бизнес-логики (списания, цены и т.п.) в этом модуле.
#   • Не логировать здесь секреты (см. logging_core).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass
class MarketError(Exception):
    """
    Базовое доменное исключение маркетплейса.

    Поля:
      • code        : стабильный машинный код ошибки (snake_case).
      • message     : короткое безопасное сообщение для клиента.
      • http_status : HTTP код по умолчанию.
      • details     : безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Готовит JSON-ответ для клиента."""
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Таксономия ошибок
# -----------------------------------------------------------------------------
class NotFoundError(MarketError):
    """Пользователь, товар, заказ или SMS-сервис не найден."""

    def __init__(
        self,
        message: str = "Resource not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class OutOfStockError(MarketError):
    """Товар закончился (stock == 0 или пустой список строк)."""

    def __init__(
        self,
        message: str = "Product is out of stock.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="out_of_stock",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class InsufficientBalanceError(MarketError):
    """
    Недостаточно средств. required/available всегда попадают и в сообщение,
    и в details, чтобы фронт мог показать «не хватает X».
    """

    def __init__(
        self,
        required: Decimal | int,
        available: Decimal | int,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.required = required
        self.available = available
        merged: Dict[str, Any] = {"required": str(required), "available": str(available)}
        merged.update(details or {})
        super().__init__(
            code="insufficient_balance",
            message=f"Insufficient balance: required {required}, available {available}.",
            http_status=status.HTTP_400_BAD_REQUEST,
            details=merged,
        )


class InvalidInputError(MarketError):
    """Некорректные входные данные (пустые поля, quantity <= 0 и т.п.)."""

    def __init__(
        self,
        message: str = "Invalid input.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="invalid_input",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class ServiceUnavailableError(MarketError):
    """
    Внешний провайдер недоступен или ответил мусором, либо у него нет предложения.
    details["reason"] различает причины: http_status / empty_body / non_json /
    missing_fields / transport / no_offer.
    """

    def __init__(
        self,
        message: str = "Service temporarily unavailable.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="service_unavailable",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


class InvalidStateError(MarketError):
    """Операция недопустима в текущем статусе (например, отмена COMPLETED)."""

    def __init__(
        self,
        message: str = "Operation is not allowed in the current state.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="invalid_state",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class InternalError(MarketError):
    """Сбой хранилища во время расчёта. Детали только в логах."""

    def __init__(
        self,
        message: str = "Internal server error.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="internal_error",
            message=message,
            http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details or {},
        )


class AlreadyExistsError(MarketError):
    """Дубликат: email при регистрации, имя разрешённого SMS-сервиса."""

    def __init__(
        self,
        message: str = "Resource already exists.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="already_exists",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class AuthenticationError(MarketError):
    """Неверные учётные данные или токен."""

    def __init__(
        self,
        message: str = "Invalid credentials.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="unauthorized",
            message=message,
            http_status=status.HTTP_401_UNAUTHORIZED,
            details=details or {},
        )


class PaymentNotSuccessfulError(MarketError):
    """Платёжный шлюз подтвердил транзакцию, но её статус не successful."""

    def __init__(
        self,
        message: str = "Payment not successful.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="payment_not_successful",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(
    exc: BaseException,
) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

    Правила:
      • MarketError      → свой http_status + to_payload().
      • HTTPException    → status_code + {"error": "http_error", "message", ...}.
      • Любая другая     → 500 + {"error": "internal_error"} (без деталей).
    """
    if isinstance(exc, MarketError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, HTTPException):
        msg: str
        if isinstance(exc.detail, str):
            msg = exc.detail
            details: Dict[str, Any] = {}
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
            details = {}

        payload: Dict[str, Any] = {
            "error": "http_error",
            "message": msg,
        }
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.error(
        "Unhandled exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"error_type": type(exc).__name__},
    )
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "internal_error",
            "message": "Internal server error.",
        },
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def market_error_handler(request: Request, exc: MarketError) -> JSONResponse:
    """Обработчик MarketError: структурированный JSON с кодом ошибки."""
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "MarketError handled",
        extra={
            "path": request.url.path,
            "error": exc.code,
            "status": status_code,
        },
    )
    return JSONResponse(status_code=status_code, content=payload)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(
        status_code=status_code,
        content=payload,
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Обработчик «на всё остальное»: stack trace в лог, клиенту только
    безопасный internal_error.
    """
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={
            "path": request.url.path,
            "status": status_code,
            "exc_type": type(exc).__name__,
        },
    )
    return JSONResponse(status_code=status_code, content=payload)


# -----------------------------------------------------------------------------
# Регистрация хендлеров в приложении FastAPI
# -----------------------------------------------------------------------------
def setup_exception_handlers(app: FastAPI) -> None:
    """
    Подключает обработчики исключений. Вызывается один раз в create_app().
    """
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Exception handlers registered for MarketError/HTTPException/Exception")


__all__ = [
    "MarketError",
    "NotFoundError",
    "OutOfStockError",
    "InsufficientBalanceError",
    "InvalidInputError",
    "ServiceUnavailableError",
    "InvalidStateError",
    "InternalError",
    "AlreadyExistsError",
    "AuthenticationError",
    "PaymentNotSuccessfulError",
    "normalize_exception",
    "setup_exception_handlers",
]
