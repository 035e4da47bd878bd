"""Shared fixtures for the alerts tests."""

import datetime
import json
from typing import AsyncIterator, Awaitable, Callable, Iterator
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi import FastAPI

from salla_alerts.core.auth import create_access_token
from salla_alerts.core.database import Database
from salla_alerts.core.dependencies import (
    get_credential_store,
    get_dispatcher,
    get_notifier,
    get_salla_client,
    get_token_manager,
)
from salla_alerts.core.events import EventDispatcher
from salla_alerts.core.main import app as alerts_app
from salla_alerts.core.memory_store import MemoryCredentialStore
from salla_alerts.core.models import OAuthGrant, StoreRecord, UserProfile
from salla_alerts.core.notifications import Notifier
from salla_alerts.core.salla_api import SallaClient
from salla_alerts.core.settings import EmailSettings, SallaSettings, TelegramSettings
from salla_alerts.core.store import CredentialStore, SqlAlchemyCredentialStore
from salla_alerts.core.tokens import TokenManager

BOT_TOKEN = "123456:test-bot-token"
TELEGRAM_API = "https://telegram.test"
SALLA_ACCOUNTS = "https://accounts.salla.test"
SALLA_API = "https://api.salla.test"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeTelegram:
    """Records Bot API calls. Chats listed in ``failing`` are rejected by the "API"."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.failing: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/getMe"):
            return httpx.Response(
                200, json={"ok": True, "result": {"id": 42, "username": "SallaAlertsBot"}}
            )
        payload = json.loads(request.content)
        self.sent.append(payload)
        if str(payload["chat_id"]) in self.failing:
            return httpx.Response(
                400, json={"ok": False, "description": "Bad Request: chat not found"}
            )
        return httpx.Response(200, json={"ok": True, "result": {"message_id": len(self.sent)}})

    def texts_for(self, chat_id: str) -> list[str]:
        return [m["text"] for m in self.sent if str(m["chat_id"]) == chat_id]


@pytest.fixture
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
def telegram_settings() -> TelegramSettings:
    return TelegramSettings(bot_token=BOT_TOKEN, webhook_secret="", api_url=TELEGRAM_API)


@pytest.fixture
def email_settings() -> EmailSettings:
    """SMTP is not configured unless a test asks for it."""
    return EmailSettings(host="", port=587, user="alerts@example.com", password="secret")


@pytest.fixture
async def notifier(
    fake_telegram: FakeTelegram,
    telegram_settings: TelegramSettings,
    email_settings: EmailSettings,
) -> AsyncIterator[Notifier]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_telegram.handler))
    yield Notifier(telegram_settings, email_settings, client)
    await client.aclose()


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture(params=["memory", "sqlalchemy"])
async def credential_store(request: pytest.FixtureRequest) -> AsyncIterator[CredentialStore]:
    """Every credential store backend, the SQL one on in-memory SQLite."""
    if request.param == "memory":
        yield MemoryCredentialStore()
        return

    store = SqlAlchemyCredentialStore(Database("sqlite+aiosqlite:///:memory:"))
    await store.connect()
    await store.create_tables()
    yield store
    await store.close()


SeedStore = Callable[..., Awaitable[tuple[int, StoreRecord]]]


@pytest.fixture
def seed_store() -> SeedStore:
    """Connect a store for a user, creating the user when needed."""

    async def seed(
        store_db: CredentialStore,
        email: str = "owner@example.com",
        merchant: int = 1001,
        store_name: str | None = "Cafe Riyadh",
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        expires_in: int = 3600,
        updated_at: datetime.datetime | None = None,
    ) -> tuple[int, StoreRecord]:
        user_id = await store_db.save_user(UserProfile(email=email, username="Owner"))
        store = await store_db.save_oauth(
            user_id,
            OAuthGrant(
                merchant=merchant,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=expires_in,
                store_name=store_name,
                updated_at=updated_at,
            ),
        )
        return user_id, store

    return seed


class FakeSalla:
    """Answers the Salla OAuth and Admin API calls the app makes."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_error: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth2/token":
            if self.token_error is not None:
                return httpx.Response(
                    self.token_error,
                    json={"error": "invalid_grant", "error_description": "Token is revoked"},
                )
            form = dict(parse_qsl(request.content.decode()))
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{form['grant_type']}",
                    "refresh_token": "refresh-new",
                    "expires_in": 1209600,
                    "token_type": "bearer",
                },
            )
        if path == "/oauth2/user/info":
            return httpx.Response(
                200,
                json={
                    "status": 200,
                    "success": True,
                    "data": {
                        "id": 9001,
                        "name": "Owner",
                        "email": "owner@example.com",
                        "merchant": {
                            "id": 1001,
                            "username": "cafe-riyadh",
                            "name": "Cafe Riyadh",
                            "avatar": "https://cdn.salla.test/cafe.png",
                        },
                    },
                },
            )
        if path == "/admin/v2/orders":
            return httpx.Response(200, json={"status": 200, "data": [{"id": 1, "total": 99}]})
        if path == "/admin/v2/customers":
            return httpx.Response(200, json={"status": 200, "data": [{"id": 2}]})
        return httpx.Response(404, json={"error": {"message": "Not found"}})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def fake_salla() -> FakeSalla:
    return FakeSalla()


@pytest.fixture
def salla_settings() -> SallaSettings:
    return SallaSettings(
        oauth_client_id="client-id",
        oauth_client_secret="client-secret",
        oauth_client_redirect_uri="http://localhost:8000/salla/oauth/callback",
        webhook_secret="",
        accounts_url=SALLA_ACCOUNTS,
        api_url=f"{SALLA_API}/admin/v2",
    )


@pytest.fixture
async def salla_client(
    fake_salla: FakeSalla, salla_settings: SallaSettings
) -> AsyncIterator[SallaClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_salla.handler))
    yield SallaClient(salla_settings, client)
    await client.aclose()


@pytest.fixture
def app(memory_store, notifier, salla_client) -> Iterator[FastAPI]:
    """The application wired to the in-memory store and fake remote APIs."""
    dispatcher = EventDispatcher(memory_store, notifier, default_stock_threshold=5)
    tokens = TokenManager(memory_store, salla_client)
    overrides = alerts_app.dependency_overrides
    overrides[get_credential_store] = lambda: memory_store
    overrides[get_notifier] = lambda: notifier
    overrides[get_salla_client] = lambda: salla_client
    overrides[get_dispatcher] = lambda: dispatcher
    overrides[get_token_manager] = lambda: tokens
    yield alerts_app
    overrides.clear()


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('owner@example.com')}"}
