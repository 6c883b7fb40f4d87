# -*- coding: utf-8 -*-
# backend/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль MUB-LOG Market (FastAPI + SQLAlchemy async).
#   • Канонический источник всех настроек: база, безопасность, ценообразование,
#     SMS-аренда номеров, внешние провайдеры, планировщик, логирование.
#
# Канон / инварианты:
#   1) Цена в локальной валюте = ceil(стоимость × курс × (1 + наценка/100)).
#      Курс и наценка живут только здесь и передаются в расчёт явно.
#   2) Пользователь никогда не уходит в минус: проверка в Ledger Store,
#      CHECK-ограничение в БД.
#   3) Заказ SMS-номера живёт SMS_ORDER_TIMEOUT_MIN минут, затем автоматически
#      возвращается (durable sweep в планировщике).
#   4) Настройки перечитываются только явно: reload_settings().
#
# Самодиагностика:
#   • configure_decimal_context() задаёт единый Decimal-контекст.
#   • initialize_runtime() проверяет DSN и печатает предупреждения по секретам.
#
# Запреты:
#   • Никаких модульных «изменяемых» курсов/наценок вне Settings.
#   • Секреты только из ENV, в код не шьём.
# =============================================================================

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, getcontext
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Вспомогательные утилиты (локальные, без сетевых вызовов)
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи и трассировки (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn (например, 8000)."
    API_PREFIX = "Префикс REST API, например /api."
    CORS_ORIGINS = "Список разрешённых Origin (CSV)."

    # БД
    DATABASE_URL = (
        "DSN базы. postgres:// приводится к postgresql+asyncpg://, "
        "sqlite+aiosqlite:// используется как есть (локально и в тестах)."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy (только для Postgres)."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике (только для Postgres)."
    DB_SQLITE_TIMEOUT_SEC = "Сколько SQLite ждёт снятия блокировки записи (сек)."

    # Безопасность
    SECRET_KEY = "Секрет подписи JWT (HS256). Обязателен для логина."
    ACCESS_TOKEN_EXPIRE_MINUTES = "Срок жизни access-токена (мин)."
    BCRYPT_ROUNDS = "Стоимость bcrypt (log2 раундов)."
    ADMIN_API_KEY = "Серверный ключ админки (заголовок X-Admin-Api-Key)."

    # Деньги и ценообразование
    MONEY_DECIMALS = "Количество знаков локальной валюты (обычно 2)."
    EXCHANGE_RATE = "Курс: единиц локальной валюты за 1 единицу валюты провайдера."
    MARKUP_PERCENT = "Наценка платформы в процентах (20 означает ×1.20)."

    # SMS
    SMS_ORDER_TIMEOUT_MIN = "Через сколько минут WAITING-заказ возвращается."
    SMS_SWEEP_BATCH = "Сколько просроченных заказов обрабатывает один тик."

    # Провайдеры
    FIVESIM_API_URL = "Базовый URL 5sim (аренда номеров)."
    FIVESIM_API_KEY = "Bearer-ключ 5sim."
    SMM_API_URL = "Базовый URL SMM-панели."
    SMM_API_KEY = "Ключ SMM-панели."
    FLUTTERWAVE_API_URL = "Базовый URL Flutterwave (проверка платежей)."
    FLUTTERWAVE_SECRET_KEY = "Секретный ключ Flutterwave."
    NETWORK_REQUEST_TIMEOUT_SEC = "Таймаут сетевых запросов к провайдерам (сек)."

    # Планировщик
    SCHEDULER_ENABLED = "Запускать фоновый планировщик вместе с API."

    # Логи
    LOG_LEVEL = "Уровень логирования (INFO/DEBUG/WARNING/ERROR)."
    LOG_JSON = "Принудительно писать логи в JSON (иначе по окружению)."


# =============================================================================
# Настройки приложения (единственный источник истины)
# =============================================================================


class Settings(BaseSettings):
    """
    Контейнер переменных окружения MUB-LOG Market.

    Важное:
      • Секреты берём только из ENV, в код не шьём.
      • Курс и наценка читаются сервисами через get_settings() в момент
        запроса и передаются в Pricing Converter явно.
      • Decimal настроен на ROUND_DOWN для денежных сумм; цены провайдеров
        округляются вверх отдельно (в pricing_service).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("MUB-LOG Market", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)

    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    CORS_ORIGINS: str = Field(
        "https://mub-log.onrender.com,http://localhost:3000,"
        "http://localhost:5500,http://127.0.0.1:5500",
        description=_Doc.CORS_ORIGINS,
    )

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_SQLITE_TIMEOUT_SEC: int = Field(30, description=_Doc.DB_SQLITE_TIMEOUT_SEC)

    # ----------------------------- БЕЗОПАСНОСТЬ ------------------------------
    SECRET_KEY: Optional[str] = Field(None, description=_Doc.SECRET_KEY)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        1440,
        description=_Doc.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    BCRYPT_ROUNDS: int = Field(12, description=_Doc.BCRYPT_ROUNDS)
    ADMIN_API_KEY: Optional[str] = Field(None, description=_Doc.ADMIN_API_KEY)

    # ------------------------ ДЕНЬГИ И ЦЕНООБРАЗОВАНИЕ -----------------------
    MONEY_DECIMALS: int = Field(2, description=_Doc.MONEY_DECIMALS)
    EXCHANGE_RATE: Decimal = Field(Decimal("1650"), description=_Doc.EXCHANGE_RATE)
    MARKUP_PERCENT: Decimal = Field(Decimal("20"), description=_Doc.MARKUP_PERCENT)

    # ---------------------------------- SMS ----------------------------------
    SMS_ORDER_TIMEOUT_MIN: int = Field(25, description=_Doc.SMS_ORDER_TIMEOUT_MIN)
    SMS_SWEEP_BATCH: int = Field(200, description=_Doc.SMS_SWEEP_BATCH)

    # ------------------------------ ПРОВАЙДЕРЫ -------------------------------
    FIVESIM_API_URL: str = Field("https://5sim.net/v1", description=_Doc.FIVESIM_API_URL)
    FIVESIM_API_KEY: Optional[str] = Field(None, description=_Doc.FIVESIM_API_KEY)
    SMM_API_URL: str = Field(
        "https://reallysimplesocial.com/api/v2",
        description=_Doc.SMM_API_URL,
    )
    SMM_API_KEY: Optional[str] = Field(None, description=_Doc.SMM_API_KEY)
    FLUTTERWAVE_API_URL: str = Field(
        "https://api.flutterwave.com/v3",
        description=_Doc.FLUTTERWAVE_API_URL,
    )
    FLUTTERWAVE_SECRET_KEY: Optional[str] = Field(
        None,
        description=_Doc.FLUTTERWAVE_SECRET_KEY,
    )
    NETWORK_REQUEST_TIMEOUT_SEC: float = Field(
        15.0,
        description=_Doc.NETWORK_REQUEST_TIMEOUT_SEC,
    )

    # ------------------------------ ПЛАНИРОВЩИК ------------------------------
    SCHEDULER_ENABLED: bool = Field(True, description=_Doc.SCHEDULER_ENABLED)

    # --------------------------------- ЛОГИ ----------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)
    LOG_JSON: Optional[bool] = Field(None, description=_Doc.LOG_JSON)

    # =========================== ВАЛИДАТОРЫ ==================================

    @field_validator("EXCHANGE_RATE")
    @classmethod
    def _v_exchange_rate(cls, value: Decimal) -> Decimal:
        """Курс должен быть строго положительным."""
        if value <= 0:
            raise ValueError("EXCHANGE_RATE должен быть > 0")
        return value

    @field_validator("MARKUP_PERCENT")
    @classmethod
    def _v_markup(cls, value: Decimal) -> Decimal:
        """Наценка не может быть отрицательной (платформа не продаёт в минус)."""
        if value < 0:
            raise ValueError("MARKUP_PERCENT должен быть >= 0")
        return value

    @field_validator(
        "SMS_ORDER_TIMEOUT_MIN",
        "SMS_SWEEP_BATCH",
        "ACCESS_TOKEN_EXPIRE_MINUTES",
        "DB_SQLITE_TIMEOUT_SEC",
    )
    @classmethod
    def _v_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("значение должно быть > 0")
        return value

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def _v_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt принимает 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS должен быть в диапазоне 4..31")
        return value

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local/test."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc"):
            return "local"
        if value.startswith("test"):
            return "test"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    # ---- База данных / DSN ----
    def database_url_async(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии драйвера;
          sqlite:///    → sqlite+aiosqlite:///.
        """
        if not self.DATABASE_URL:
            raise RuntimeError(
                "DATABASE_URL не задан (нужен DSN Postgres или sqlite+aiosqlite).",
            )
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return bool(self.DATABASE_URL) and self.DATABASE_URL.startswith("sqlite")

    # ---- Decimal ----
    def configure_decimal_context(self) -> None:
        """
        Настраивает глобальный Decimal:
          • precision с запасом для промежуточных расчётов;
          • округление по умолчанию ROUND_DOWN (суммы не «растут» сами).
        """
        ctx = getcontext()
        ctx.prec = max(28, self.MONEY_DECIMALS + 20)
        ctx.rounding = ROUND_DOWN

    # ---- CORS ----
    def effective_cors_origins(self) -> List[str]:
        """Итоговый список CORS-Origin (после парсинга CSV)."""
        return _parse_csv(self.CORS_ORIGINS)

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика критичных секретов.
        Печатает WARN, но не падает: часть ручек работает и без провайдеров.
        """
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL не задан: БД будет недоступна.")
        if not self.SECRET_KEY:
            print("[WARN] SECRET_KEY не задан: логин и JWT работать не будут.")
        if not self.FIVESIM_API_KEY:
            print("[WARN] FIVESIM_API_KEY не задан: заказ SMS-номеров недоступен.")
        if not self.SMM_API_KEY:
            print("[WARN] SMM_API_KEY не задан: SMM-заказы недоступны.")

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "corsCount": str(len(self.effective_cors_origins())),
            "exchangeRate": str(self.EXCHANGE_RATE),
            "markupPercent": str(self.MARKUP_PERCENT),
            "smsTimeoutMin": str(self.SMS_ORDER_TIMEOUT_MIN),
            "schedulerEnabled": str(self.SCHEDULER_ENABLED),
        }

    # ---- Инициализация рантайма ----
    def ensure_local_artifacts(self) -> None:
        """Создаёт каталог .local_artifacts для local-режима (логи/временные файлы)."""
        if self.env_normalized == "local":
            Path(".local_artifacts").mkdir(exist_ok=True)

    def initialize_runtime(self) -> None:
        """
        Единая точка инициализации конфигурации при старте:
          • проверка формата DSN;
          • Decimal-контекст;
          • локальные артефакты для local;
          • мягкая самодиагностика секретов (кроме тестов).
        """
        if self.DATABASE_URL:
            _ = self.database_url_async()

        self.configure_decimal_context()
        self.ensure_local_artifacts()
        if self.env_normalized != "test":
            self.assert_required_secrets()


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


def reload_settings() -> Settings:
    """
    Явно перечитывает окружение и .env.

    Сервисы берут курс/наценку через get_settings() на каждый запрос,
    поэтому новое значение начинает действовать со следующего запроса.
    """
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings"]
