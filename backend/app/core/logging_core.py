# -*- coding: utf-8 -*-
# backend/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования MUB-LOG Market:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, idempotency_key, user_id);
#   • защита от утечек секретов (ключи провайдеров, JWT-секрет, DSN).
#
# Канон / инварианты:
#   • Единый стиль логов во всём приложении:
#       - prod: JSON (структурированные логи для агрегаторов),
#       - dev/local/test: человекочитаемый формат.
#   • Каждое движение денег и каждый сбой провайдера логируется с полями
#     user_id / amount / operation, чтобы ручная сверка была возможна.
#
# Запреты:
#   • Никакого логирования паролей и хэшей паролей.
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backend.app.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars), безопасно для асинхронного кода
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_idk_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "idk",
    default=None,
)  # idempotency_key
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # user_id (строкой)


def set_request_context(
    *,
    request_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    user_id: Optional[int | str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Middleware ставит request_id/idempotency_key, зависимости аутентификации
    дописывают user_id, и все логи запроса получают эти поля автоматически.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if idempotency_key is not None:
        _idk_var.set(str(idempotency_key))
    if user_id is not None:
        _uid_var.set(str(user_id))


def clear_request_context() -> None:
    """Очистить контекст корреляции (finally-блоки middleware и фоновых задач)."""
    _rid_var.set(None)
    _idk_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Впрыскивает в запись структурированные поля из contextvars и настроек:
    env, svc, rid, idk, uid.
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "idk"):
            record.idk = _idk_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Маскирует реальные значения секретов из настроек в тексте сообщения
    и в позиционных аргументах.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "SECRET_KEY",
        "DATABASE_URL",
        "ADMIN_API_KEY",
        "FIVESIM_API_KEY",
        "SMM_API_KEY",
        "FLUTTERWAVE_SECRET_KEY",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        self.load_secrets(settings_obj)

    def load_secrets(self, settings_obj: object) -> None:
        """Заменяет набор маскируемых значений (после reload_settings())."""
        secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                secrets.append(val)
        self._secrets = secrets

    def _redact_text(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        if isinstance(record.msg, str):
            record.msg = self._redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev/test.

    2026-01-01 12:00:00 | INFO     | MUB-LOG Market | backend.app... | rid=... idk=- uid=7 | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s idk=%(idk)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class MarketJsonFormatter(JsonFormatter):
    """
    JSON-строка для prod. Базовые поля переименовываются в короткие ключи,
    extra-поля (user_id, amount, operation...) сохраняются как есть.
    """

    _RENAMES = {
        "asctime": "time",
        "levelname": "level",
        "svc": "service",
        "name": "logger",
        "message": "msg",
    }

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_record)
        return {self._RENAMES.get(key, key): value for key, value in base.items()}


def _make_json_formatter() -> logging.Formatter:
    fmt = "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(idk)s %(uid)s %(message)s"
    return MarketJsonFormatter(fmt=fmt)


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
def setup_logging() -> None:
    """
    Полностью настраивает логирование:
      • root-логгер, формат, уровень;
      • консоль (stdout) и файл (только local);
      • фильтры контекста и редактирования;
      • uvicorn/fastapi-логгеры уходят в root (единый формат).
    """
    settings = get_settings()
    env = settings.env_normalized
    level_name = "DEBUG" if settings.DEBUG else (settings.LOG_LEVEL or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    ctx_filter = ContextFilter(env=env, service=settings.PROJECT_NAME)
    redact_filter = RedactingFilter(settings_obj=settings)

    use_json = settings.LOG_JSON if settings.LOG_JSON is not None else env == "prod"
    formatter: logging.Formatter = _make_json_formatter() if use_json else DevFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ctx_filter)
    console_handler.addFilter(redact_filter)
    root.addHandler(console_handler)

    if env == "local":
        logs_dir = Path(".local_artifacts") / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logs_dir / "app.log", encoding="utf-8")
        file_handler.setFormatter(DevFormatter())
        file_handler.addFilter(ctx_filter)
        file_handler.addFilter(redact_filter)
        root.addHandler(file_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(level)
        logger.propagate = True

    if settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"log_env": env, "level": logging.getLevelName(level), "json": use_json},
    )


def refresh_secret_redaction(settings_obj: Optional[object] = None) -> int:
    """
    Перечитывает секреты во всех RedactingFilter root-хэндлеров
    (после reload_settings()). Возвращает число обновлённых фильтров.
    """
    source = settings_obj if settings_obj is not None else get_settings()
    refreshed = 0
    seen: set[int] = set()
    for handler in logging.getLogger().handlers:
        for flt in handler.filters:
            if isinstance(flt, RedactingFilter) and id(flt) not in seen:
                seen.add(id(flt))
                flt.load_secrets(source)
                refreshed += 1
    return refreshed


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter.

        log = get_logger(__name__, component="sms")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции (подключается в create_app)
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Впрыскивает X-Request-ID и Idempotency-Key из HTTP-заголовков в contextvars
    и возвращает X-Request-ID в ответе. Без заголовка генерируется uuid4().hex.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_headers: MutableMapping[bytes, bytes] = dict(scope.get("headers") or [])
        headers: Dict[str, str] = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in raw_headers.items()
        }

        rid = headers.get("x-request-id") or uuid.uuid4().hex
        idk = headers.get("idempotency-key")
        set_request_context(request_id=rid, idempotency_key=idk)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("latin-1")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# -----------------------------------------------------------------------------
# Автоконфигурация при импорте
# -----------------------------------------------------------------------------
setup_logging()

__all__ = [
    "setup_logging",
    "refresh_secret_redaction",
    "RedactingFilter",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "CorrelationIdMiddleware",
]
# =============================================================================
# Пояснения «для чайника»:
#   • В dev/local/test вы увидите читаемые строки; в prod структурированный JSON
#     с ключами env/rid/idk/uid и всеми extra-полями (user_id, amount, ...).
#   • CorrelationIdMiddleware даёт каждой HTTP-ручке уникальный X-Request-ID.
#   • Ключи 5sim/SMM/Flutterwave и JWT-секрет в логах заменяются на "****".
# =============================================================================
