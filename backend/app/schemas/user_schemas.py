# -*- coding: utf-8 -*-
# backend/app/schemas/user_schemas.py
# Регистрация, вход и профиль пользователя.

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from backend.app.schemas.common_schemas import MoneyStr, ORMModel


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class LoginIn(BaseModel):
    email: str
    password: str


class UserOut(ORMModel):
    id: int
    username: str
    email: str
    balance: MoneyStr
    role: str
    created_at: datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


__all__ = ["RegisterIn", "LoginIn", "UserOut", "TokenOut"]
