"""Test the merchant account API."""

import datetime
import time

import pytest

from salla_alerts.core.auth import create_access_token

pytestmark = pytest.mark.anyio


async def test_account_requires_a_token(api_client) -> None:
    response = await api_client.get("/api/v1/account")
    assert response.status_code in (401, 403)


async def test_unknown_user(api_client, auth_headers) -> None:
    response = await api_client.get("/api/v1/account", headers=auth_headers)
    assert response.status_code == 404


async def test_account_issues_link_tokens(
    api_client, auth_headers, memory_store, seed_store
) -> None:
    await seed_store(memory_store, merchant=1, store_name="First")
    await seed_store(memory_store, merchant=2, store_name="Second")

    response = await api_client.get("/api/v1/account", headers=auth_headers)

    assert response.status_code == 200
    account = response.json()
    assert account["email"] == "owner@example.com"
    assert account["stock_threshold"] == 5
    assert [s["merchant"] for s in account["stores"]] == [1, 2]
    first = account["stores"][0]
    assert first["telegram_link"] == (
        f"https://t.me/SallaAlertsBot?start={first['telegram_link_token']}"
    )

    # Tokens are stable across views
    again = await api_client.get("/api/v1/account", headers=auth_headers)
    assert again.json()["stores"] == account["stores"]


async def test_update_account(api_client, auth_headers, memory_store, seed_store) -> None:
    await seed_store(memory_store)

    response = await api_client.put(
        "/api/v1/account",
        headers=auth_headers,
        json={"stock_threshold": 0, "alert_email": "ops@example.com"},
    )

    assert response.status_code == 200
    assert response.json()["stock_threshold"] == 0
    user = await memory_store.retrieve_user("owner@example.com")
    assert user is not None
    assert user.stock_threshold == 0
    assert user.alert_email == "ops@example.com"


async def test_negative_threshold_is_rejected(
    api_client, auth_headers, memory_store, seed_store
) -> None:
    await seed_store(memory_store)
    response = await api_client.put(
        "/api/v1/account", headers=auth_headers, json={"stock_threshold": -1}
    )
    assert response.status_code == 422


async def test_list_and_unlink_channels(api_client, auth_headers, memory_store, seed_store) -> None:
    _, store = await seed_store(memory_store, merchant=1001)
    await memory_store.add_channel(store.id, "555", "Sara")
    await memory_store.add_channel(store.id, "777", None)

    listed = await api_client.get("/api/v1/stores/1001/channels", headers=auth_headers)
    assert [c["chat_id"] for c in listed.json()] == ["555", "777"]

    removed = await api_client.delete("/api/v1/stores/1001/channels/555", headers=auth_headers)
    assert removed.json() == {"removed": 1}

    again = await api_client.delete("/api/v1/stores/1001/channels/555", headers=auth_headers)
    assert again.status_code == 200
    assert again.json() == {"removed": 0}

    other_store = await api_client.get("/api/v1/stores/999/channels", headers=auth_headers)
    assert other_store.status_code == 404


async def test_orders_use_a_valid_token(
    api_client, auth_headers, memory_store, seed_store, fake_salla
) -> None:
    await seed_store(memory_store)

    response = await api_client.get("/api/v1/orders", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"data": [{"id": 1, "total": 99}]}
    assert fake_salla.paths() == ["/admin/v2/orders"]
    assert fake_salla.requests[0].headers["Authorization"] == "Bearer access-1"


async def test_customers_refresh_an_expired_token(
    api_client, auth_headers, memory_store, seed_store, fake_salla
) -> None:
    expired = datetime.datetime.fromtimestamp(time.time() - 7200, datetime.UTC)
    await seed_store(memory_store, merchant=1001, updated_at=expired)

    response = await api_client.get(
        "/api/v1/customers", params={"merchant": 1001}, headers=auth_headers
    )

    assert response.status_code == 200
    assert fake_salla.paths() == ["/oauth2/token", "/admin/v2/customers"]
    assert fake_salla.requests[1].headers["Authorization"] == "Bearer access-refresh_token"


async def test_unknown_store_is_not_found(
    api_client, auth_headers, memory_store, seed_store
) -> None:
    await seed_store(memory_store, merchant=1001)
    response = await api_client.get("/api/v1/orders", params={"merchant": 5}, headers=auth_headers)
    assert response.status_code == 404


async def test_revoked_refresh_token_asks_to_reconnect(
    api_client, auth_headers, memory_store, seed_store, fake_salla
) -> None:
    expired = datetime.datetime.fromtimestamp(time.time() - 7200, datetime.UTC)
    await seed_store(memory_store, updated_at=expired)
    fake_salla.token_error = 400

    response = await api_client.get("/api/v1/orders", headers=auth_headers)

    assert response.status_code == 401
    assert "reconnect" in response.json()["detail"]


async def test_orders_default_to_the_store_in_the_token(
    api_client, memory_store, seed_store, fake_salla
) -> None:
    await seed_store(memory_store, merchant=1, access_token="first")
    await seed_store(memory_store, merchant=2, access_token="second")
    token = create_access_token("owner@example.com", merchant=2)

    response = await api_client.get("/api/v1/orders", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert fake_salla.requests[0].headers["Authorization"] == "Bearer second"
