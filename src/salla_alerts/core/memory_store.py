"""In-memory credential store, for development and tests."""

import itertools
import logging

from salla_alerts.core.exceptions import LinkTokenConflict
from salla_alerts.core.models import (
    ChannelRecord,
    OAuthGrant,
    StoreRecord,
    UserProfile,
    UserRecord,
    UserSettingsUpdate,
    utcnow,
)
from salla_alerts.core.store import CredentialStore

logger = logging.getLogger("store")


class MemoryCredentialStore(CredentialStore):
    """
    Keeps users, stores and channels in dictionaries.

    Mirrors the constraints of the SQL schema: unique emails, one store per
    (user, merchant) and unique link tokens.
    """

    def __init__(self) -> None:
        self._users: dict[int, UserRecord] = {}
        self._stores: dict[int, StoreRecord] = {}
        self._channels: dict[int, ChannelRecord] = {}
        self._ids = itertools.count(1)

    def _user_by_email(self, email: str) -> UserRecord | None:
        return next((u for u in self._users.values() if u.email == email), None)

    def _stores_of(self, user_id: int) -> list[StoreRecord]:
        stores = [s for s in self._stores.values() if s.user_id == user_id]
        return sorted(stores, key=lambda s: (s.created_at, s.id))

    async def retrieve_user(self, email: str, include_stores: bool = False) -> UserRecord | None:
        user = self._user_by_email(email)
        if user is None:
            return None
        stores = [s.model_copy() for s in self._stores_of(user.id)] if include_stores else []
        return user.model_copy(update={"stores": stores})

    async def save_user(self, profile: UserProfile) -> int:
        user = self._user_by_email(profile.email)
        if user is None:
            logger.info("Creating new user for: %s", profile.email)
            user = UserRecord(
                id=next(self._ids),
                email=profile.email,
                username=profile.username,
                salla_id=profile.salla_id,
            )
            self._users[user.id] = user
        elif profile.salla_id is not None and user.salla_id is None:
            user.salla_id = profile.salla_id
        return user.id

    async def update_user_settings(
        self, email: str, changes: UserSettingsUpdate
    ) -> UserRecord | None:
        user = self._user_by_email(email)
        if user is None:
            return None
        for field, value in changes.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        return user.model_copy()

    async def save_oauth(self, user_id: int, grant: OAuthGrant) -> StoreRecord:
        values = grant.model_dump(exclude_none=True, exclude={"merchant"})
        values.setdefault("updated_at", utcnow())

        store = next(
            (s for s in self._stores_of(user_id) if s.merchant == grant.merchant),
            None,
        )
        if store is None:
            store = StoreRecord(
                id=next(self._ids),
                user_id=user_id,
                merchant=grant.merchant,
                created_at=utcnow(),
                **values,
            )
            self._stores[store.id] = store
        else:
            for field, value in values.items():
                setattr(store, field, value)
        logger.info("Saved tokens for user %s merchant %s", user_id, grant.merchant)
        return store.model_copy()

    async def find_store_by_merchant(self, merchant: int) -> tuple[UserRecord, StoreRecord] | None:
        matches = sorted(
            (s for s in self._stores.values() if s.merchant == merchant),
            key=lambda s: (s.created_at, s.id),
        )
        if not matches:
            return None
        store = matches[0]
        return self._users[store.user_id].model_copy(), store.model_copy()

    async def find_store_by_link_token(self, token: str) -> StoreRecord | None:
        store = next(
            (s for s in self._stores.values() if s.telegram_link_token == token),
            None,
        )
        return store.model_copy() if store is not None else None

    async def set_link_token(self, store_id: int, token: str) -> str:
        store = self._stores.get(store_id)
        if store is None:
            raise LookupError(f"Store {store_id} not found")
        if store.telegram_link_token is not None:
            return store.telegram_link_token
        if any(s.telegram_link_token == token for s in self._stores.values()):
            raise LinkTokenConflict(f"Link token already in use (store {store_id})")
        store.telegram_link_token = token
        return token

    async def add_channel(self, store_id: int, chat_id: str, label: str | None) -> ChannelRecord:
        channel = ChannelRecord(
            id=next(self._ids), oauth_token_id=store_id, chat_id=chat_id, label=label
        )
        self._channels[channel.id] = channel
        return channel.model_copy()

    async def remove_channel(self, store_id: int, chat_id: str) -> int:
        doomed = [
            c.id
            for c in self._channels.values()
            if c.oauth_token_id == store_id and c.chat_id == chat_id
        ]
        for channel_id in doomed:
            del self._channels[channel_id]
        return len(doomed)

    async def list_channels(self, store_id: int) -> list[ChannelRecord]:
        return [c.model_copy() for c in self._channels.values() if c.oauth_token_id == store_id]
