# -*- coding: utf-8 -*-
# backend/app/routes/auth_routes.py
# =============================================================================
# Назначение кода:
#   Учётные записи и пополнение баланса: регистрация, вход (JWT), профиль,
#   ручное пополнение админом, проверка платежа Flutterwave, история платежей,
#   список пользователей для админки.
#
# Канон / инварианты:
#   • /topup: только админ (JWT role=admin или X-Admin-Api-Key) и строго с
#     заголовком Idempotency-Key. Повтор ключа не начисляет второй раз.
#   • /verify-payment зачисляет платёж один раз на reference.
#   • Пароли и их хэши наружу не отдаются.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import (
    AuthContext,
    get_db,
    get_flutterwave_client,
    require_admin,
    require_idempotency_key,
    require_user,
)
from backend.app.integrations.flutterwave_api import FlutterwaveClient
from backend.app.schemas.transactions_schemas import (
    PaymentOut,
    TopupIn,
    TopupOut,
    TransactionOut,
    VerifyPaymentIn,
)
from backend.app.schemas.user_schemas import LoginIn, RegisterIn, TokenOut, UserOut
from backend.app.services import auth_service, payments_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED, summary="Регистрация")
async def register(body: RegisterIn, db: AsyncSession = Depends(get_db)) -> UserOut:
    user = await auth_service.register_user(
        db,
        username=body.username,
        email=body.email,
        password=body.password,
    )
    return UserOut.model_validate(user)


@router.post("/login", response_model=TokenOut, summary="Вход по email и паролю")
async def login(body: LoginIn, db: AsyncSession = Depends(get_db)) -> TokenOut:
    result = await auth_service.authenticate(db, email=body.email, password=body.password)
    return TokenOut(
        access_token=result.access_token,
        token_type=result.token_type,
        user=UserOut.model_validate(result.user),
    )


@router.get("/me", response_model=UserOut, summary="Профиль и баланс")
async def me(
    ctx: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await auth_service.get_profile(db, ctx.user_id)
    return UserOut.model_validate(user)


@router.get("/users", response_model=List[UserOut], summary="Пользователи (админ)")
async def users(
    limit: int = Query(100, ge=1, le=500),
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> List[UserOut]:
    rows = await auth_service.list_users(db, limit=limit)
    return [UserOut.model_validate(row) for row in rows]


@router.post("/topup", response_model=TopupOut, summary="Ручное пополнение баланса (админ)")
async def topup(
    body: TopupIn,
    idempotency_key: str = Depends(require_idempotency_key),
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TopupOut:
    """
    Вход: user_id, amount (> 0), заголовок Idempotency-Key.
    Исключения: 400 (нет ключа), 401/403 (не админ), 404 (нет пользователя),
    422 (сумма).
    """
    result = await payments_service.admin_topup(
        db,
        user_id=body.user_id,
        amount=body.amount,
        idempotency_key=idempotency_key,
        admin_id=admin.user_id,
    )
    return TopupOut.model_validate(result)


@router.post("/verify-payment", response_model=PaymentOut, summary="Проверка платежа Flutterwave")
async def verify_payment(
    body: VerifyPaymentIn,
    ctx: AuthContext = Depends(require_user),
    gateway: FlutterwaveClient = Depends(get_flutterwave_client),
    db: AsyncSession = Depends(get_db),
) -> PaymentOut:
    result = await payments_service.verify_payment(
        db,
        user_id=ctx.user_id,
        transaction_id=body.transaction_id,
        gateway=gateway,
    )
    return PaymentOut.model_validate(result)


@router.get("/transactions", response_model=List[TransactionOut], summary="Мои платежи")
async def transactions(
    limit: int = Query(50, ge=1, le=200),
    ctx: AuthContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> List[TransactionOut]:
    rows = await payments_service.list_transactions(db, ctx.user_id, limit=limit)
    return [TransactionOut.model_validate(row) for row in rows]
