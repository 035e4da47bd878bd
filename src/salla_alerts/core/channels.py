"""Telegram channels subscribed to a store's alerts."""

import logging

from salla_alerts.core.models import ChannelRecord, StoreRecord
from salla_alerts.core.store import CredentialStore

logger = logging.getLogger("channels")


class ChannelRegistry:
    """
    Binds Telegram chats to stores.

    A chat linked twice to the same store gets two rows; fan-out delivers once per row.
    """

    def __init__(self, store_db: CredentialStore) -> None:
        self.store_db = store_db

    async def resolve_store_by_link_token(self, token: str) -> StoreRecord | None:
        """Find the store a link token belongs to. Tokens can be redeemed repeatedly."""
        token = token.strip()
        if not token:
            return None
        return await self.store_db.find_store_by_link_token(token)

    async def add_channel(self, store_id: int, chat_id: str, label: str | None) -> ChannelRecord:
        channel = await self.store_db.add_channel(store_id, str(chat_id), label)
        logger.info("Linked chat %s to store %s", channel.chat_id, store_id)
        return channel

    async def remove_channel(self, store_id: int, chat_id: str) -> int:
        removed = await self.store_db.remove_channel(store_id, str(chat_id))
        logger.info("Unlinked chat %s from store %s (%s rows)", chat_id, store_id, removed)
        return removed

    async def list_channels(self, store_id: int) -> list[ChannelRecord]:
        return await self.store_db.list_channels(store_id)
