# -*- coding: utf-8 -*-
"""Initial migration for MUB-LOG Market.

Назначение:
    • Создать все таблицы согласно текущим моделям: users, products, orders,
      sms_orders, allowed_services, payment_transactions, ledger_entries.
    • Ограничения (CHECK balance >= 0, stock >= 0, уникальные activation_id,
      reference, idempotency_key) и индексы берутся из ORM-моделей.

Канон/инварианты:
    • Денежные операции и балансы не изменяются, только DDL.
    • checkfirst=True: повторный запуск не ломает БД.
"""

from __future__ import annotations

from alembic import op

from backend.app.core.database_core import Base
from backend.app.core.logging_core import get_logger
from backend.app.models import MODEL_REGISTRY  # гарантирует загрузку моделей

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)
_ = MODEL_REGISTRY


def upgrade() -> None:
    """Создать все таблицы/индексы из моделей."""

    bind = op.get_bind()
    logger.info("Creating tables", extra={"tables": sorted(Base.metadata.tables)})
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
