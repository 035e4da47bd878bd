"""Merchant account endpoints.

Everything here acts on the user identified by the bearer JWT issued at the end of the
Salla OAuth flow.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from salla_alerts.core.auth import TokenData, get_current_user
from salla_alerts.core.channels import ChannelRegistry
from salla_alerts.core.dependencies import (
    get_app_settings,
    get_credential_store,
    get_notifier,
    get_salla_client,
    get_token_manager,
)
from salla_alerts.core.linking import build_start_link, ensure_link_token
from salla_alerts.core.models import ChannelRecord, StoreRecord, UserRecord, UserSettingsUpdate
from salla_alerts.core.notifications import Notifier
from salla_alerts.core.salla_api import SallaClient
from salla_alerts.core.settings import AppSettings
from salla_alerts.core.store import CredentialStore
from salla_alerts.core.tokens import TokenManager, select_store

logger = logging.getLogger("account")

router = APIRouter(tags=["account"])


class StoreView(BaseModel):
    merchant: int
    store_name: Optional[str] = None
    store_avatar: Optional[str] = None
    telegram_link_token: Optional[str] = None
    telegram_link: Optional[str] = None


class AccountView(BaseModel):
    """Account page data."""

    email: str
    username: Optional[str] = None
    stock_threshold: int
    alert_email: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    stores: list[StoreView] = []


async def get_current_account(
    current_user: TokenData = Depends(get_current_user),
    store_db: CredentialStore = Depends(get_credential_store),
) -> UserRecord:
    """Load the authenticated user with their stores."""
    user = await store_db.retrieve_user(current_user.email, include_stores=True)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_account_store(
    merchant: int, user: UserRecord = Depends(get_current_account)
) -> StoreRecord:
    """Get one of the authenticated user's stores by Salla merchant id."""
    store = select_store(user.stores, merchant)
    if store is None:
        raise HTTPException(status_code=404, detail=f"Store {merchant} not found")
    return store


def _account_view(
    user: UserRecord, default_threshold: int, stores: list[StoreView]
) -> AccountView:
    return AccountView(
        email=user.email,
        username=user.username,
        stock_threshold=(
            default_threshold if user.stock_threshold is None else user.stock_threshold
        ),
        alert_email=user.alert_email,
        telegram_chat_id=user.telegram_chat_id,
        stores=stores,
    )


@router.get("/account", response_model=AccountView)
async def read_account(
    user: UserRecord = Depends(get_current_account),
    store_db: CredentialStore = Depends(get_credential_store),
    notifier: Notifier = Depends(get_notifier),
    app_settings: AppSettings = Depends(get_app_settings),
) -> AccountView:
    """
    Get the account settings and connected stores.

    Each store gets its Telegram link token on first view, together with the bot deep link
    that redeems it.
    """
    bot = await notifier.get_bot_info()
    bot_username = bot.get("username") if bot else None

    stores = []
    for store in user.stores:
        token = await ensure_link_token(store_db, store)
        stores.append(
            StoreView(
                merchant=store.merchant,
                store_name=store.store_name,
                store_avatar=store.store_avatar,
                telegram_link_token=token,
                telegram_link=build_start_link(bot_username, token) if bot_username else None,
            )
        )
    return _account_view(user, app_settings.default_stock_threshold, stores)


@router.put("/account", response_model=AccountView)
async def update_account(
    changes: UserSettingsUpdate,
    user: UserRecord = Depends(get_current_account),
    store_db: CredentialStore = Depends(get_credential_store),
    app_settings: AppSettings = Depends(get_app_settings),
) -> AccountView:
    """Update the alert threshold, alert email and legacy Telegram chat."""
    updated = await store_db.update_user_settings(user.email, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Updated settings for %s: %s", user.email, changes.model_dump(exclude_unset=True))
    stores = [
        StoreView.model_validate(store.model_dump(include=set(StoreView.model_fields)))
        for store in user.stores
    ]
    return _account_view(updated, app_settings.default_stock_threshold, stores)


@router.get("/stores/{merchant}/channels", response_model=list[ChannelRecord])
async def list_store_channels(
    store: StoreRecord = Depends(get_account_store),
    store_db: CredentialStore = Depends(get_credential_store),
) -> list[ChannelRecord]:
    return await ChannelRegistry(store_db).list_channels(store.id)


@router.delete("/stores/{merchant}/channels/{chat_id}")
async def unlink_store_channel(
    chat_id: str,
    store: StoreRecord = Depends(get_account_store),
    store_db: CredentialStore = Depends(get_credential_store),
) -> dict[str, int]:
    """Unlink a Telegram chat from a store. Every row of that chat is removed."""
    removed = await ChannelRegistry(store_db).remove_channel(store.id, chat_id)
    return {"removed": removed}


@router.get("/orders")
async def list_orders(
    merchant: int | None = None,
    page: int = 1,
    current_user: TokenData = Depends(get_current_user),
    tokens: TokenManager = Depends(get_token_manager),
    salla: SallaClient = Depends(get_salla_client),
) -> dict[str, Any]:
    """List the store's orders from Salla, refreshing its access token when needed."""
    access_token = await tokens.get_valid_access_token(
        current_user.email, current_user.store_for(merchant)
    )
    return {"data": await salla.get_orders(access_token, page)}


@router.get("/customers")
async def list_customers(
    merchant: int | None = None,
    page: int = 1,
    current_user: TokenData = Depends(get_current_user),
    tokens: TokenManager = Depends(get_token_manager),
    salla: SallaClient = Depends(get_salla_client),
) -> dict[str, Any]:
    """List the store's customers from Salla, refreshing its access token when needed."""
    access_token = await tokens.get_valid_access_token(
        current_user.email, current_user.store_for(merchant)
    )
    return {"data": await salla.get_customers(access_token, page)}
