# -*- coding: utf-8 -*-
# tests/test_api.py
# HTTP-уровень: роуты, зависимости, формат ошибок. Провайдеры подменяются
# через app.dependency_overrides, БД та же SQLite, что и в сервисных тестах.
from __future__ import annotations

import logging
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from backend.app import create_app
from backend.app.core.config_core import reload_settings
from backend.app.core.logging_core import RedactingFilter, refresh_secret_redaction
from backend.app.core.security_core import create_jwt_token
from backend.app.deps import get_fivesim_client, get_flutterwave_client, get_smm_client
from backend.app.models.order_models import ORDER_STATUS_COMPLETED, ORDER_TYPE_PRODUCT, ORDER_TYPE_SMM
from backend.app.models.user_models import ROLE_ADMIN
from backend.app.services import ledger_service as ledger
from backend.app.services import sms_service

ADMIN_HEADERS = {"X-Admin-Api-Key": "test-admin-key"}


def _bearer(user_id: int, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {create_jwt_token(str(user_id), extra={'role': role})}"}


@pytest_asyncio.fixture
async def client(db_engine, fivesim, smm_panel, gateway):
    app = create_app()
    app.dependency_overrides[get_fivesim_client] = lambda: fivesim
    app.dependency_overrides[get_smm_client] = lambda: smm_panel
    app.dependency_overrides[get_flutterwave_client] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


# -----------------------------------------------------------------------------
# Служебное
# -----------------------------------------------------------------------------
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["db"] is True


async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "rid-123"})
    assert response.headers["X-Request-ID"] == "rid-123"


# -----------------------------------------------------------------------------
# Аутентификация
# -----------------------------------------------------------------------------
async def test_register_login_me(client):
    created = await client.post(
        "/api/auth/register",
        json={"username": "ada", "email": "ada@example.com", "password": "s3cret!"},
    )
    assert created.status_code == 201
    assert created.json()["balance"] == "0.00"
    assert "password_hash" not in created.json()

    duplicate = await client.post(
        "/api/auth/register",
        json={"username": "ada", "email": "ADA@example.com", "password": "s3cret!"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "already_exists"

    login = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "s3cret!"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"


async def test_bad_login(client, make_user):
    await make_user(email="bob@example.com")
    response = await client.post("/api/auth/login", json={"email": "bob@example.com", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"


async def test_protected_route_requires_token(client):
    response = await client.get("/api/auth/me")
    assert response.status_code == 401


# -----------------------------------------------------------------------------
# Покупка товара
# -----------------------------------------------------------------------------
async def test_purchase_endpoint(client, make_user, make_product):
    uid = await make_user("1000")
    pid = await make_product(price="300", stock=2)

    response = await client.post("/api/products/purchase", json={"product_id": pid}, headers=_bearer(uid))

    assert response.status_code == 200
    body = response.json()
    assert body["new_balance"] == "700.00"
    assert body["price"] == "300.00"
    assert body["details"].startswith("LOGIN: ")


async def test_purchase_errors_are_structured(client, make_user, make_product):
    uid = await make_user("100")
    empty = await make_product(price="10", stock=0)
    pricey = await make_product(price="300", stock=5)

    out_of_stock = await client.post("/api/products/purchase", json={"product_id": empty}, headers=_bearer(uid))
    assert out_of_stock.status_code == 409
    assert out_of_stock.json()["error"] == "out_of_stock"

    poor = await client.post("/api/products/purchase", json={"product_id": pricey}, headers=_bearer(uid))
    assert poor.status_code == 400
    assert poor.json()["error"] == "insufficient_balance"
    assert poor.json()["details"] == {"required": "300.00", "available": "100.00"}

    missing = await client.post("/api/products/purchase", json={"product_id": pricey + 50}, headers=_bearer(uid))
    assert missing.status_code == 404


# -----------------------------------------------------------------------------
# SMS
# -----------------------------------------------------------------------------
async def test_allowed_services_admin_only(client, make_user):
    uid = await make_user("0")
    denied = await client.post("/api/sms/allowed", json={"service_name": "telegram"}, headers=_bearer(uid))
    assert denied.status_code in (401, 403)

    created = await client.post("/api/sms/allowed", json={"service_name": "Telegram"}, headers=ADMIN_HEADERS)
    assert created.status_code == 201
    assert created.json()["service_name"] == "telegram"

    listed = await client.get("/api/sms/available-services")
    assert [item["service_name"] for item in listed.json()] == ["telegram"]

    deleted = await client.delete(f"/api/sms/allowed/{created.json()['id']}", headers=ADMIN_HEADERS)
    assert deleted.status_code == 200


async def test_sms_order_and_cancel_flow(client, session, make_user):
    uid = await make_user("200")
    await sms_service.add_allowed_service(session, service_name="whatsapp")

    ordered = await client.post(
        "/api/sms/order",
        json={"service": "whatsapp", "country": "nigeria", "operator": "mtn"},
        headers=_bearer(uid),
    )
    assert ordered.status_code == 200
    order = ordered.json()
    assert order["price"] == "90.00"
    assert order["new_balance"] == "110.00"
    assert order["status"] == "WAITING"

    check = await client.get(f"/api/sms/check/{order['order_id']}", headers=_bearer(uid))
    assert check.json() == {"order_id": order["order_id"], "status": "WAITING", "code": None}

    cancelled = await client.post(f"/api/sms/cancel/{order['order_id']}", headers=_bearer(uid))
    assert cancelled.status_code == 200
    assert cancelled.json()["new_balance"] == "200.00"

    again = await client.post(f"/api/sms/cancel/{order['order_id']}", headers=_bearer(uid))
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_state"

    history = await client.get("/api/sms/history", headers=_bearer(uid))
    assert [item["status"] for item in history.json()] == ["CANCELLED"]


async def test_sms_order_insufficient_balance(client, session, make_user, fivesim):
    uid = await make_user("50")
    await sms_service.add_allowed_service(session, service_name="whatsapp")

    response = await client.post(
        "/api/sms/order",
        json={"service": "whatsapp", "country": "nigeria", "operator": "mtn"},
        headers=_bearer(uid),
    )

    assert response.status_code == 400
    assert response.json()["details"] == {"required": "90.00", "available": "50.00"}
    assert fivesim.bought == []


async def test_live_config_provider_failure_is_503(client, fivesim):
    fivesim.fail("get_prices", "non_json", "no free phones")
    response = await client.get("/api/sms/live-config/whatsapp")
    assert response.status_code == 503
    assert response.json()["details"] == {"provider": "5sim", "reason": "non_json"}


async def test_live_config_offers(client):
    response = await client.get("/api/sms/live-config/whatsapp")
    assert response.json() == [{"country": "nigeria", "operator": "mtn", "price": 90, "stock": 10}]


# -----------------------------------------------------------------------------
# SMM
# -----------------------------------------------------------------------------
async def test_smm_catalog_and_order(client, make_user, smm_panel):
    uid = await make_user("10")

    catalog = await client.get("/api/smm/live-services")
    assert catalog.json()[0]["rate"] == "3.00"

    placed = await client.post(
        "/api/smm/order",
        json={"service": 101, "link": "https://instagram.com/mublog", "quantity": 1000},
        headers=_bearer(uid),
    )
    assert placed.status_code == 200
    assert placed.json()["provider_order_id"] == "555"
    assert placed.json()["new_balance"] == "7.00"

    below_min = await client.post(
        "/api/smm/order",
        json={"service": "101", "link": "https://instagram.com/mublog", "quantity": 10},
        headers=_bearer(uid),
    )
    assert below_min.status_code == 422
    assert len(smm_panel.orders) == 1


# -----------------------------------------------------------------------------
# Пополнение и платежи
# -----------------------------------------------------------------------------
async def test_topup_requires_idempotency_key(client, make_user):
    uid = await make_user("0")
    response = await client.post("/api/auth/topup", json={"user_id": uid, "amount": "500"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400


async def test_topup_replay_credits_once(client, session, make_user):
    uid = await make_user("0")
    headers = {**ADMIN_HEADERS, "Idempotency-Key": "topup-001"}

    first = await client.post("/api/auth/topup", json={"user_id": uid, "amount": "500"}, headers=headers)
    second = await client.post("/api/auth/topup", json={"user_id": uid, "amount": "500"}, headers=headers)

    assert first.json()["credited"] is True
    assert second.json()["credited"] is False
    assert second.json()["new_balance"] == "500.00"
    assert await ledger.get_balance(session, uid) == Decimal("500.00")


async def test_topup_forbidden_for_regular_user(client, make_user):
    uid = await make_user("0")
    response = await client.post(
        "/api/auth/topup",
        json={"user_id": uid, "amount": "500"},
        headers={**_bearer(uid), "Idempotency-Key": "k"},
    )
    assert response.status_code in (401, 403)


async def test_verify_payment_endpoint(client, make_user):
    uid = await make_user("0")
    response = await client.post("/api/auth/verify-payment", json={"transaction_id": "987654"}, headers=_bearer(uid))
    assert response.status_code == 200
    assert response.json()["credited"] is True
    assert response.json()["new_balance"] == "1500.00"

    history = await client.get("/api/auth/transactions", headers=_bearer(uid))
    assert [item["reference"] for item in history.json()] == ["MUB-REF-1"]


async def test_admin_lists_users(client, make_user):
    admin_id = await make_user("0", role=ROLE_ADMIN)
    await make_user("5")
    response = await client.get("/api/auth/users", headers=_bearer(admin_id, role=ROLE_ADMIN))
    assert response.status_code == 200
    assert len(response.json()) == 2


# -----------------------------------------------------------------------------
# История заказов
# -----------------------------------------------------------------------------
async def test_orders_keyset_pagination(client, session, make_user):
    uid = await make_user("0")
    async with ledger.unit_of_work(session):
        for i in range(3):
            await ledger.insert_order(
                session,
                user_id=uid,
                username="buyer",
                order_type=ORDER_TYPE_PRODUCT,
                product_name=f"Item {i}",
                price="10",
                status=ORDER_STATUS_COMPLETED,
            )
        await ledger.insert_order(
            session,
            user_id=uid,
            username="buyer",
            order_type=ORDER_TYPE_SMM,
            product_name="Followers",
            price="3",
            status="PENDING",
        )

    first = await client.get("/api/orders", params={"limit": 2, "type": "product"}, headers=_bearer(uid))
    page = first.json()
    assert [item["product_name"] for item in page["items"]] == ["Item 2", "Item 1"]
    assert page["next_cursor"]

    second = await client.get(
        "/api/orders",
        params={"limit": 2, "type": "product", "cursor": page["next_cursor"]},
        headers=_bearer(uid),
    )
    assert [item["product_name"] for item in second.json()["items"]] == ["Item 0"]
    assert second.json()["next_cursor"] is None

    bad = await client.get("/api/orders", params={"cursor": "%%%"}, headers=_bearer(uid))
    assert bad.status_code == 400


# -----------------------------------------------------------------------------
# Админка
# -----------------------------------------------------------------------------
async def test_admin_sweep_and_jobs(client):
    sweep = await client.post("/api/admin/sms/sweep", headers=ADMIN_HEADERS)
    assert sweep.json() == {"ok": True, "refunded": 0}

    jobs = await client.get("/api/admin/scheduler/jobs", headers=ADMIN_HEADERS)
    assert jobs.status_code == 200
    assert jobs.json()["running"] is False


@pytest.mark.parametrize("path", ["/api/admin/sms/sweep", "/api/admin/config/reload"])
async def test_admin_routes_reject_anonymous(client, path):
    response = await client.post(path)
    assert response.status_code == 401


# -----------------------------------------------------------------------------
# Управление товарами (админ)
# -----------------------------------------------------------------------------
async def test_admin_product_lifecycle(client, make_user):
    uid = await make_user("1000")

    denied = await client.post("/api/products", json={"name": "Keys", "price": "10"}, headers=_bearer(uid))
    assert denied.status_code in (401, 403)

    created = await client.post(
        "/api/products",
        json={"name": "VPN keys", "price": "250", "category": "vpn", "payload_lines": "key-1\nkey-2\n\nkey-3"},
        headers=ADMIN_HEADERS,
    )
    assert created.status_code == 201
    product = created.json()
    assert (product["stock"], product["price"], product["is_multiline"]) == (3, "250.00", True)

    bought = await client.post("/api/products/purchase", json={"product_id": product["id"]}, headers=_bearer(uid))
    assert bought.json()["details"] == "key-1"

    patched = await client.put(
        f"/api/products/{product['id']}",
        json={"price": "300", "payload_lines": "key-9"},
        headers=ADMIN_HEADERS,
    )
    assert patched.status_code == 200
    assert (patched.json()["price"], patched.json()["stock"]) == ("300.00", 1)

    deleted = await client.delete(f"/api/products/{product['id']}", headers=ADMIN_HEADERS)
    assert deleted.status_code == 200
    gone = await client.delete(f"/api/products/{product['id']}", headers=ADMIN_HEADERS)
    assert gone.status_code == 404
    assert gone.json()["error"] == "not_found"


async def test_admin_product_stock_must_match_lines(client):
    response = await client.post(
        "/api/products",
        json={"name": "VPN keys", "price": "250", "stock": 10, "payload_lines": "key-1\nkey-2"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_input"
    assert response.json()["details"] == {"stock": 10, "payload_lines": 2}


async def test_admin_all_orders(client, make_user):
    admin_id = await make_user("0", role=ROLE_ADMIN)
    buyer = await make_user("1000", username="buyer")
    created = await client.post(
        "/api/products",
        json={"name": "Spotify", "price": "100", "stock": 5, "credentials": "spot@example.com:pw"},
        headers=ADMIN_HEADERS,
    )
    for _ in range(3):
        await client.post("/api/products/purchase", json={"product_id": created.json()["id"]}, headers=_bearer(buyer))

    first = await client.get("/api/admin/orders", params={"limit": 2}, headers=_bearer(admin_id, role=ROLE_ADMIN))
    assert first.status_code == 200
    page = first.json()
    assert len(page["items"]) == 2
    assert {(item["user_id"], item["username"]) for item in page["items"]} == {(buyer, "buyer")}

    second = await client.get(
        "/api/admin/orders",
        params={"limit": 2, "cursor": page["next_cursor"], "user_id": buyer},
        headers=ADMIN_HEADERS,
    )
    assert len(second.json()["items"]) == 1
    assert second.json()["next_cursor"] is None

    denied = await client.get("/api/admin/orders", headers=_bearer(buyer))
    assert denied.status_code in (401, 403)
    anonymous = await client.get("/api/admin/orders")
    assert anonymous.status_code == 401


# -----------------------------------------------------------------------------
# Документация ошибок и перечитывание настроек
# -----------------------------------------------------------------------------
async def test_openapi_documents_error_shape(client):
    schema = (await client.get("/openapi.json")).json()
    purchase = schema["paths"]["/api/products/purchase"]["post"]["responses"]
    assert purchase["409"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
    assert set(schema["components"]["schemas"]["ErrorResponse"]["required"]) == {"error", "message"}


def _redacting_filters() -> list:
    return [
        flt
        for handler in logging.getLogger().handlers
        for flt in handler.filters
        if isinstance(flt, RedactingFilter)
    ]


async def test_config_reload_masks_rotated_secret(client, monkeypatch):
    monkeypatch.setenv("FIVESIM_API_KEY", "rotated-5sim-key")
    try:
        response = await client.post("/api/admin/config/reload", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert "rotated-5sim-key" not in response.text

        filters = _redacting_filters()
        assert filters
        for flt in filters:
            record = logging.LogRecord("t", logging.INFO, __file__, 1, "5sim key=rotated-5sim-key", None, None)
            flt.filter(record)
            assert record.msg == "5sim key=****"
    finally:
        monkeypatch.undo()
        refresh_secret_redaction(reload_settings())
