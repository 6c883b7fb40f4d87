# -*- coding: utf-8 -*-
# backend/app/services/product_service.py
# =============================================================================
# Назначение кода:
#   Управление товарами каталога (админ): создание, правка, удаление.
#
# Канон/инварианты:
#   • Многострочный товар: stock == число непустых строк payload_lines.
#     stock не передан: выводится из строк; передан и не совпадает:
#     InvalidInputError. Пустые строки и пробелы по краям отбрасываются.
#   • Однострочный товар: stock задаётся явно (по умолчанию 0), ≥ 0.
#   • Правка идёт compare-and-set по version (ledger.rewrite_product), поэтому
#     не затирает параллельную покупку: проигравший перечитывает товар.
#   • Цена ≥ 0, 2 знака (округление вниз, как все суммы в ledger).
#
# Запреты:
#   • Никакого изменения балансов и заказов: только строка products.
# =============================================================================

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import InvalidInputError, InvalidStateError, NotFoundError
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import split_payload_lines
from backend.app.models.product_models import Product
from backend.app.services import ledger_service as ledger

logger = get_logger(__name__)

REWRITE_MAX_ATTEMPTS = 3


# -----------------------------------------------------------------------------
# Валидация
# -----------------------------------------------------------------------------
def _clean_name(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        raise InvalidInputError("name is required.", details={"field": "name"})
    return name


def _clean_price(value: Any) -> Decimal:
    try:
        price = ledger.d2(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError("price must be a number.", details={"field": "price"})
    if price < 0:
        raise InvalidInputError("price must be >= 0.", details={"field": "price", "price": str(price)})
    return price


def _clean_stock(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidInputError("stock must be an integer.", details={"field": "stock"})
    try:
        stock = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError("stock must be an integer.", details={"field": "stock"})
    if stock < 0:
        raise InvalidInputError("stock must be >= 0.", details={"field": "stock", "stock": stock})
    return stock


def _stock_for_lines(stock: Optional[int], raw_lines: str) -> Tuple[int, str]:
    """(stock, нормализованный payload) для многострочного товара."""
    lines = split_payload_lines(raw_lines)
    if stock is not None and stock != len(lines):
        raise InvalidInputError(
            "stock must equal the number of payload lines.",
            details={"stock": stock, "payload_lines": len(lines)},
        )
    return len(lines), "\n".join(lines)


def _optional_text(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


# -----------------------------------------------------------------------------
# Операции
# -----------------------------------------------------------------------------
async def create_product(
    session: AsyncSession,
    *,
    name: str,
    price: Any,
    category: str = "",
    description: Optional[str] = None,
    stock: Optional[int] = None,
    credentials: Optional[str] = None,
    public_link: Optional[str] = None,
    payload_lines: Optional[str] = None,
    admin_id: Optional[int] = None,
) -> Product:
    """
    Заводит товар. payload_lines задан: товар многострочный, stock выводится
    из строк (или сверяется с ними).
    """
    clean_name = _clean_name(name)
    clean_price = _clean_price(price)
    clean_stock = _clean_stock(stock) if stock is not None else None

    if payload_lines is not None:
        final_stock, payload = _stock_for_lines(clean_stock, payload_lines)
    else:
        final_stock, payload = (clean_stock or 0), None

    async with ledger.unit_of_work(session):
        product = Product(
            category=(category or "").strip(),
            name=clean_name,
            description=_optional_text(description),
            price=clean_price,
            stock=final_stock,
            credentials=_optional_text(credentials),
            public_link=_optional_text(public_link),
            payload_lines=payload,
        )
        session.add(product)
        await session.flush()

    logger.info(
        "Product created",
        extra={
            "product_id": product.id,
            "admin_id": admin_id,
            "stock": final_stock,
            "amount": str(clean_price),
            "operation": "product_create",
        },
    )
    return product


async def update_product(
    session: AsyncSession,
    product_id: int,
    *,
    name: Optional[str] = None,
    price: Any = None,
    category: Optional[str] = None,
    description: Optional[str] = None,
    stock: Optional[int] = None,
    credentials: Optional[str] = None,
    public_link: Optional[str] = None,
    payload_lines: Optional[str] = None,
    admin_id: Optional[int] = None,
) -> Product:
    """
    Частичная правка: None означает «не менять».

    Для многострочного товара stock без новых payload_lines допускается только
    равным числу оставшихся строк. Новые payload_lines заменяют запас целиком.
    """
    base: Dict[str, Any] = {}
    if name is not None:
        base["name"] = _clean_name(name)
    if price is not None:
        base["price"] = _clean_price(price)
    if category is not None:
        base["category"] = category.strip()
    if description is not None:
        base["description"] = _optional_text(description)
    if credentials is not None:
        base["credentials"] = _optional_text(credentials)
    if public_link is not None:
        base["public_link"] = _optional_text(public_link)
    clean_stock = _clean_stock(stock) if stock is not None else None

    if not base and clean_stock is None and payload_lines is None:
        raise InvalidInputError("Nothing to update.", details={"product_id": product_id})

    async with ledger.unit_of_work(session):
        for attempt in range(1, REWRITE_MAX_ATTEMPTS + 1):
            current = await ledger.get_product(session, product_id)
            values = dict(base)
            if payload_lines is not None:
                values["stock"], values["payload_lines"] = _stock_for_lines(clean_stock, payload_lines)
            elif clean_stock is not None:
                if current.is_multiline:
                    _stock_for_lines(clean_stock, current.payload_lines or "")
                values["stock"] = clean_stock

            if await ledger.rewrite_product(session, current, values):
                break
            logger.info("Product rewrite CAS lost, re-reading", extra={"product_id": product_id, "attempt": attempt})
        else:
            raise InvalidStateError(
                "Product was changed concurrently, please retry.",
                details={"product_id": product_id},
            )
        product = await ledger.get_product(session, product_id)

    logger.info(
        "Product updated",
        extra={
            "product_id": product_id,
            "admin_id": admin_id,
            "fields": sorted(values),
            "operation": "product_update",
        },
    )
    return product


async def delete_product(session: AsyncSession, product_id: int, *, admin_id: Optional[int] = None) -> None:
    """Удаляет товар. История заказов хранит снимок названия и не ссылается на товар."""
    async with ledger.unit_of_work(session):
        result = await session.execute(delete(Product).where(Product.id == product_id))
        if result.rowcount != 1:
            raise NotFoundError("Product not found.", details={"product_id": product_id})
    logger.info("Product deleted", extra={"product_id": product_id, "admin_id": admin_id, "operation": "product_delete"})


__all__ = [
    "create_product",
    "update_product",
    "delete_product",
]
# =============================================================================
# Пояснения «для чайника»:
#   • Как завести пачку аккаунтов? Передайте payload_lines, по строке на
#     аккаунт; stock посчитается сам, каждая покупка выдаст одну строку.
#   • Почему нельзя «просто поставить stock = 10» многострочному товару?
#     Остаток обязан совпадать с числом невыданных строк, иначе покупка
#     выдаст пустоту. Чтобы пополнить запас, передайте новые payload_lines.
# =============================================================================
