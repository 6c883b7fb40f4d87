# -*- coding: utf-8 -*-
# backend/app/services/scheduler_service.py
# =============================================================================
# Назначение кода:
#   Централизованный планировщик фоновых задач MUB-LOG Market. Будит задачи
#   каждые SCHED_INTERVAL_SEC (по умолчанию 30 с). Первый тик выполняется
#   сразу при старте: просроченные за время простоя заказы обрабатываются
#   без ожидания. Сбой одной задачи не роняет цикл.
#
# Канон/инварианты:
#   • Время: триггер пробуждения, НЕ фильтр данных. Что обрабатывать,
#     решают сами задачи по состоянию в БД (expires_at, статус).
#   • Короткие ретраи, экспоненциальный backoff (≤ BACKOFF_MAX_SEC),
#     таймаут на задачу, семафор параллельности, наблюдаемость (list_jobs).
#   • Денежная логика вне планировщика. Здесь только вызовы run_once().
# =============================================================================

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.app.core.logging_core import get_logger
from backend.app.scheduler import expire_sms_orders

# Тип выполняемой корутины: async def job() -> Any
JobCallable = Callable[[], Awaitable[Any]]


# -----------------------------------------------------------------------------
# Настройки планировщика (через .env)
# -----------------------------------------------------------------------------
class SchedulerSettings(BaseSettings):
    """
    Конфигурация планировщика (переопределяется через .env):

      SCHED_INTERVAL_SEC=30             : интервал будильника (сек)
      SCHED_TASK_TIMEOUT_SEC=120        : таймаут одной задачи (сек)
      SCHED_BACKOFF_START_SEC=5         : начальный backoff после ошибки (сек)
      SCHED_BACKOFF_MAX_SEC=300         : максимум backoff (сек)
      SCHED_MAX_PARALLEL_TASKS=3        : ограничение параллельных задач
      SCHED_JITTER_SEC=3                : случайный джиттер к интервалу (0..N сек)
    """

    model_config = SettingsConfigDict(env_prefix="SCHED_", env_file=".env", extra="ignore")

    INTERVAL_SEC: int = Field(30)
    TASK_TIMEOUT_SEC: int = Field(120)
    BACKOFF_START_SEC: int = Field(5)
    BACKOFF_MAX_SEC: int = Field(300)
    MAX_PARALLEL_TASKS: int = Field(3)
    JITTER_SEC: int = Field(3)

    @field_validator("INTERVAL_SEC", "TASK_TIMEOUT_SEC", "BACKOFF_START_SEC", "BACKOFF_MAX_SEC", "MAX_PARALLEL_TASKS")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("значение должно быть > 0")
        return v

    @field_validator("JITTER_SEC")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("значение должно быть >= 0")
        return v


SETTINGS = SchedulerSettings()

logger = get_logger("market.scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Структура задачи
# -----------------------------------------------------------------------------
@dataclass
class _Job:
    name: str
    func: JobCallable
    backoff_sec: int = field(default=SETTINGS.BACKOFF_START_SEC)
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_result: Any = None
    last_success_at: Optional[datetime] = None
    running: bool = False
    next_allowed_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Планировщик
# -----------------------------------------------------------------------------
class SchedulerService:
    """
    Планировщик с единым будильником. Ничего не знает о бизнес-логике:
    только вызывает зарегистрированные корутины.
    """

    def __init__(self, settings: Optional[SchedulerSettings] = None):
        self.s = settings or SETTINGS
        self._jobs: Dict[str, _Job] = {}
        self._stop = asyncio.Event()
        self._sem = asyncio.Semaphore(self.s.MAX_PARALLEL_TASKS)
        self._task: Optional[asyncio.Task[None]] = None

    # ----------------------------- Регистрация ------------------------------

    def register_defaults(self) -> None:
        """
        Стандартные задачи:
          • expire_sms_orders: возврат денег по просроченным WAITING-заказам.
        """
        if "expire_sms_orders" not in self._jobs:
            self.add_job("expire_sms_orders", expire_sms_orders.run_once)
        logger.info("Scheduler: registered jobs: %s", list(self._jobs.keys()))

    def add_job(self, name: str, func: JobCallable) -> None:
        if name in self._jobs:
            raise ValueError(f"job '{name}' already registered")
        self._jobs[name] = _Job(name=name, func=func, backoff_sec=self.s.BACKOFF_START_SEC)

    # ------------------------------- Жизненный цикл -------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Запускает фоновый цикл; повторный вызов при работающем цикле игнорируется."""
        if self.is_running:
            logger.warning("Scheduler: already running")
            return
        self._stop = asyncio.Event()
        logger.info(
            "Scheduler: start (%d jobs, interval=%ss, timeout=%ss, max_parallel=%s)",
            len(self._jobs),
            self.s.INTERVAL_SEC,
            self.s.TASK_TIMEOUT_SEC,
            self.s.MAX_PARALLEL_TASKS,
        )
        self._task = asyncio.create_task(self._loop(), name="scheduler:main")

    async def stop(self) -> None:
        """Остановка: текущий тик дорабатывает, новых тиков нет."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def run_single_tick(self) -> None:
        """Один тик без вечного цикла (ручной запуск из админки и тесты)."""
        await self._run_tick()

    async def _loop(self) -> None:
        try:
            while not self._stop.is_set():
                start = _utcnow()
                await self._run_tick()

                jitter = random.randint(0, self.s.JITTER_SEC) if self.s.JITTER_SEC > 0 else 0
                try:
                    await asyncio.wait_for(
                        self._stop.wait(),
                        timeout=max(1, self.s.INTERVAL_SEC + jitter),
                    )
                except asyncio.TimeoutError:
                    pass
                finally:
                    duration = (_utcnow() - start).total_seconds()
                    logger.debug("Scheduler tick finished in %.3fs", duration)
        except asyncio.CancelledError:
            logger.info("Scheduler: cancelled")
            raise
        finally:
            logger.info("Scheduler: stopped")

    # ------------------------------- Один тик --------------------------------

    async def _run_tick(self) -> None:
        """Запускает все задачи (с учётом backoff) параллельно под семафором."""
        now = _utcnow()
        jobs_to_run: List[_Job] = []

        for job in self._jobs.values():
            if job.next_allowed_at is not None and now < job.next_allowed_at:
                logger.debug(
                    "Job %s: backoff until %s",
                    job.name,
                    job.next_allowed_at.isoformat(),
                )
                continue
            jobs_to_run.append(job)

        if not jobs_to_run:
            return

        async def _guarded(job: _Job) -> None:
            async with self._sem:
                await self._run_job(job)

        await asyncio.gather(
            *(asyncio.create_task(_guarded(job), name=f"scheduler:job:{job.name}") for job in jobs_to_run),
            return_exceptions=True,
        )

    # -------------------------- Выполнение одной задачи ----------------------

    def _register_failure(self, job: _Job, error: str) -> None:
        job.consecutive_failures += 1
        job.last_error = error
        if job.consecutive_failures > 1:
            job.backoff_sec = min(job.backoff_sec * 2, self.s.BACKOFF_MAX_SEC)
        job.next_allowed_at = _utcnow() + timedelta(seconds=job.backoff_sec)

    async def _run_job(self, job: _Job) -> None:
        if job.running:
            logger.warning("Job %s: already running, skip", job.name)
            return

        job.running = True
        try:
            job.last_result = await asyncio.wait_for(job.func(), timeout=self.s.TASK_TIMEOUT_SEC)
            job.consecutive_failures = 0
            job.last_error = None
            job.backoff_sec = self.s.BACKOFF_START_SEC
            job.next_allowed_at = None
            job.last_success_at = _utcnow()
            logger.debug("Job %s: done", job.name)
        except asyncio.TimeoutError:
            self._register_failure(job, "timeout")
            logger.warning(
                "Job %s: timeout (fail=%s, backoff=%ss)",
                job.name,
                job.consecutive_failures,
                job.backoff_sec,
            )
        except Exception as e:
            self._register_failure(job, str(e))
            logger.exception(
                "Job %s: error (fail=%s, backoff=%ss): %s",
                job.name,
                job.consecutive_failures,
                job.backoff_sec,
                e,
            )
        finally:
            job.running = False

    # ------------------------------- Наблюдаемость ---------------------------

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Краткая сводка по задачам для админки."""
        out: List[Dict[str, Any]] = []
        for j in self._jobs.values():
            out.append(
                {
                    "name": j.name,
                    "running": j.running,
                    "failures": j.consecutive_failures,
                    "last_error": j.last_error,
                    "last_result": j.last_result,
                    "last_success_at": j.last_success_at.isoformat() if j.last_success_at else None,
                    "backoff_sec": j.backoff_sec,
                    "next_allowed_at": j.next_allowed_at.isoformat() if j.next_allowed_at else None,
                }
            )
        return out


# Экземпляр планировщика по умолчанию
default_scheduler = SchedulerService()


async def startup_scheduler() -> None:
    """Регистрирует стандартные задачи и запускает цикл (первый тик сразу)."""
    default_scheduler.register_defaults()
    await default_scheduler.start()
    logger.info("Scheduler started")


async def shutdown_scheduler() -> None:
    await default_scheduler.stop()
    logger.info("Scheduler stopped on shutdown")


__all__ = [
    "SchedulerSettings",
    "SchedulerService",
    "default_scheduler",
    "startup_scheduler",
    "shutdown_scheduler",
]

# =============================================================================
# Пояснения «для чайника»:
#   • Планировщик ничего не «считает» и не трогает балансы: он зовёт
#     scheduler/expire_sms_orders.run_once(), а та проводит возвраты через
#     sms_service.sweep_expired_orders.
#   • Backoff по времени: после ошибки задача «отдыхает» до next_allowed_at,
#     успех сбрасывает счётчики.
#   • Рестарт процесса не теряет возвраты: срок лежит в БД, а первый тик
#     выполняется сразу при старте.
# =============================================================================
