"""Telegram link tokens: store-level invite codes redeemed through ``/start <token>``."""

import logging
import secrets
from urllib.parse import quote

from salla_alerts.core.models import StoreRecord
from salla_alerts.core.store import CredentialStore

logger = logging.getLogger("linking")

# 16 random bytes, hex encoded
LINK_TOKEN_BYTES = 16


def generate_link_token() -> str:
    return secrets.token_hex(LINK_TOKEN_BYTES)


async def ensure_link_token(store_db: CredentialStore, store: StoreRecord) -> str:
    """
    Return the store's link token, creating it on first use.

    Calling this again for a store that already has a token performs no write.

    Args:
        store_db (CredentialStore): Where the token is persisted.
        store (StoreRecord): The store. Its ``telegram_link_token`` is updated in place.

    Returns:
        str: The store's link token.

    Raises:
        LinkTokenConflict: If the generated token already belongs to another store.
    """
    if store.telegram_link_token:
        return store.telegram_link_token

    token = await store_db.set_link_token(store.id, generate_link_token())
    store.telegram_link_token = token
    logger.info("Issued link token %s... for merchant %s", token[:6], store.merchant)
    return token


def build_start_link(bot_username: str, token: str) -> str:
    """Deep link that opens the bot with ``/start <token>``."""
    return f"https://t.me/{quote(bot_username)}?start={quote(token)}"
