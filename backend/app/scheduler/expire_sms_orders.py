# ============================================================================
# MUB-LOG Market: scheduler.expire_sms_orders
# -----------------------------------------------------------------------------
# Назначение: периодическая сверка durable due-job SMS-заказов. WAITING-заказы
#             с истёкшим expires_at переводятся в EXPIRED с возвратом цены.
#
# Канон/инварианты:
#   • Возврат только через sms_service.expire_order (compare-and-set WAITING →
#     EXPIRED + credit в одной транзакции). Повторный прогон: no-op.
#   • Порционная обработка (SMS_SWEEP_BATCH), старые заказы первыми.
#
# ИИ-защита/самовосстановление:
#   • Ошибка тика логируется и пробрасывается планировщику: тот включит
#     backoff, а следующий тик повторит попытку.
# ============================================================================
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database_core import lifespan_session
from ..core.logging_core import get_logger
from ..core.utils_core import utcnow
from ..services.sms_service import sweep_expired_orders

logger = get_logger(__name__)


async def run_once(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> int:
    """Один тик сверки. Возвращает число возвращённых заказов."""
    moment = now or utcnow()
    async with lifespan_session(session_factory) as session:
        try:
            refunded = await sweep_expired_orders(session, now=moment, limit=limit)
        except Exception:
            logger.exception("expire sms orders tick failed", extra={"at": moment.isoformat()})
            raise
    if refunded:
        logger.info("expire sms orders tick", extra={"refunded": refunded, "at": moment.isoformat()})
    return refunded


if __name__ == "__main__":
    asyncio.run(run_once())

# ============================================================================
# Пояснения «для чайника»:
#   • Заказ, не получивший кода за SMS_ORDER_TIMEOUT_MIN минут, получает
#     деньги обратно ровно один раз, даже если сервер перезапускался.
#   • Заказ, уже отменённый или завершённый, сверку не интересует.
# ============================================================================
