# -*- coding: utf-8 -*-
# tests/conftest.py
# =============================================================================
# Общие фикстуры тестов MUB-LOG Market:
#   • окружение (SQLite-файл, тестовые секреты) выставляется ДО импорта
#     backend.*: настройки и bcrypt-контекст читаются при импорте;
#   • схема создаётся на каждый тест, после теста таблицы чистятся, а пул
#     соединений закрывается в том же event loop;
#   • фейковые провайдеры (5sim, SMM-панель, Flutterwave) без сети.
# =============================================================================
from __future__ import annotations

import itertools
import os
import tempfile
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

_DB_DIR = tempfile.mkdtemp(prefix="mublog-tests-")

os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt-signing-only"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["EXCHANGE_RATE"] = "30"
os.environ["MARKUP_PERCENT"] = "20"
os.environ["LOG_JSON"] = "false"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'market.db')}"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from backend.app import models  # noqa: E402,F401
from backend.app.core.database_core import Base, get_engine, get_session_factory  # noqa: E402
from backend.app.core.security_core import hash_password  # noqa: E402
from backend.app.integrations.fivesim_api import Activation, FiveSimError  # noqa: E402
from backend.app.integrations.flutterwave_api import PaymentGatewayError, PaymentVerification  # noqa: E402
from backend.app.integrations.smm_panel_api import SmmPanelError, SmmService  # noqa: E402
from backend.app.models.product_models import Product  # noqa: E402
from backend.app.models.user_models import ROLE_USER, User  # noqa: E402
from backend.app.services.pricing_service import PricingConfig  # noqa: E402

_counter = itertools.count(1)
TEST_PASSWORD = "secret-pass"


# -----------------------------------------------------------------------------
# База данных
# -----------------------------------------------------------------------------
@pytest_asyncio.fixture
async def db_engine():
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return get_session_factory()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# -----------------------------------------------------------------------------
# Фабрики данных
# -----------------------------------------------------------------------------
@pytest_asyncio.fixture
async def make_user(session_factory) -> Callable[..., Awaitable[int]]:
    async def _make(
        balance: Any = "0",
        *,
        email: Optional[str] = None,
        username: Optional[str] = None,
        role: str = ROLE_USER,
        password: str = TEST_PASSWORD,
    ) -> int:
        n = next(_counter)
        async with session_factory() as s:
            async with s.begin():
                user = User(
                    username=username or f"user{n}",
                    email=email or f"user{n}@example.com",
                    password_hash=hash_password(password),
                    balance=Decimal(str(balance)),
                    role=role,
                )
                s.add(user)
            return user.id

    return _make


@pytest_asyncio.fixture
async def make_product(session_factory) -> Callable[..., Awaitable[int]]:
    async def _make(
        *,
        price: Any = "300",
        stock: int = 1,
        name: str = "Netflix Premium",
        credentials: Optional[str] = "mail@example.com:pass",
        public_link: Optional[str] = "https://netflix.com",
        payload_lines: Optional[str] = None,
    ) -> int:
        async with session_factory() as s:
            async with s.begin():
                product = Product(
                    category="streaming",
                    name=name,
                    price=Decimal(str(price)),
                    stock=stock,
                    credentials=credentials,
                    public_link=public_link,
                    payload_lines=payload_lines,
                )
                s.add(product)
            return product.id

    return _make


@pytest.fixture
def pricing() -> PricingConfig:
    return PricingConfig(exchange_rate=Decimal("30"), markup_percent=Decimal("20"))


# -----------------------------------------------------------------------------
# Фейковые провайдеры
# -----------------------------------------------------------------------------
class FakeFiveSim:
    """5sim без сети: цены, покупка, код и отмена управляются из теста."""

    def __init__(self) -> None:
        self.prices: Dict[str, Any] = {
            "whatsapp": {"nigeria": {"mtn": {"cost": 2.5, "count": 10}}},
        }
        self.failures: Dict[str, FiveSimError] = {}
        self.code: Optional[str] = None
        self.on_buy: Optional[Callable[[], Awaitable[None]]] = None
        self.bought: List[Activation] = []
        self.cancelled: List[str] = []
        self.checks = 0
        self._ids = itertools.count(1000)

    def fail(self, method: str, kind: str, message: str = "boom") -> None:
        self.failures[method] = FiveSimError(kind, message)

    def _raise_if_failing(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def get_prices(self, service: str) -> Dict[str, Any]:
        self._raise_if_failing("get_prices")
        return self.prices

    async def buy_activation(self, country: str, operator: str, service: str) -> Activation:
        self._raise_if_failing("buy_activation")
        activation = Activation(id=str(next(self._ids)), phone="+2348012345678")
        self.bought.append(activation)
        if self.on_buy is not None:
            await self.on_buy()
        return activation

    async def check_code(self, activation_id: str) -> Optional[str]:
        self._raise_if_failing("check_code")
        self.checks += 1
        return self.code

    async def cancel(self, activation_id: str) -> Dict[str, Any]:
        self._raise_if_failing("cancel")
        self.cancelled.append(activation_id)
        return {"id": activation_id, "status": "CANCELED"}


class FakeSmmPanel:
    def __init__(self) -> None:
        self.services: List[SmmService] = [
            SmmService(
                service="101",
                name="Instagram Followers",
                category="Instagram",
                min=100,
                max=10000,
                rate=Decimal("2.5"),
            ),
        ]
        self.failures: Dict[str, SmmPanelError] = {}
        self.orders: List[Dict[str, Any]] = []

    def fail(self, method: str, kind: str, message: str = "boom") -> None:
        self.failures[method] = SmmPanelError(kind, message)

    async def list_services(self) -> List[SmmService]:
        if "list_services" in self.failures:
            raise self.failures["list_services"]
        return list(self.services)

    async def add_order(self, service: str, link: str, quantity: int) -> str:
        if "add_order" in self.failures:
            raise self.failures["add_order"]
        self.orders.append({"service": service, "link": link, "quantity": quantity})
        return "555"


class FakeGateway:
    def __init__(self) -> None:
        self.verification = PaymentVerification(
            status="successful",
            amount=Decimal("1500"),
            reference="MUB-REF-1",
            currency="NGN",
            transaction_id="987654",
        )
        self.error: Optional[PaymentGatewayError] = None
        self.calls: List[str] = []

    async def verify(self, transaction_id: str) -> PaymentVerification:
        self.calls.append(transaction_id)
        if self.error is not None:
            raise self.error
        return self.verification


@pytest.fixture
def fivesim() -> FakeFiveSim:
    return FakeFiveSim()


@pytest.fixture
def smm_panel() -> FakeSmmPanel:
    return FakeSmmPanel()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
