"""
Credential store: users, their store OAuth tokens and the Telegram channels bound
to each store.

The core only talks to the ``CredentialStore`` interface. One concrete backend is
picked at startup from configuration.
"""

import logging
import time
from abc import ABC, abstractmethod

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from salla_alerts.core.database import Database
from salla_alerts.core.exceptions import LinkTokenConflict
from salla_alerts.core.models import (
    ChannelRecord,
    OAuthGrant,
    OauthToken,
    StoreRecord,
    StoreTelegram,
    User,
    UserProfile,
    UserRecord,
    UserSettingsUpdate,
    utcnow,
)

logger = logging.getLogger("store")


class CredentialStore(ABC):
    """Persistence capabilities the alerts core relies on."""

    async def connect(self) -> None:
        """Make sure the backend is reachable."""

    async def create_tables(self) -> None:
        """Prepare the backend's schema."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def retrieve_user(self, email: str, include_stores: bool = False) -> UserRecord | None:
        """Load a user by email, optionally with their stores oldest first."""

    @abstractmethod
    async def save_user(self, profile: UserProfile) -> int:
        """Create the user if the email is new. Returns the internal user id."""

    @abstractmethod
    async def update_user_settings(
        self, email: str, changes: UserSettingsUpdate
    ) -> UserRecord | None:
        """Apply alert settings to a user. Returns None when the user does not exist."""

    @abstractmethod
    async def save_oauth(self, user_id: int, grant: OAuthGrant) -> StoreRecord:
        """Upsert the token row keyed by (user_id, merchant)."""

    @abstractmethod
    async def find_store_by_merchant(self, merchant: int) -> tuple[UserRecord, StoreRecord] | None:
        """Find the earliest connected store for a Salla merchant id and its owner."""

    @abstractmethod
    async def find_store_by_link_token(self, token: str) -> StoreRecord | None:
        """Exact-match lookup of a store by its Telegram link token."""

    @abstractmethod
    async def set_link_token(self, store_id: int, token: str) -> str:
        """
        Store a link token on a store that has none.

        Returns the token now stored on the store, which is the existing one if
        another caller got there first.

        Raises:
            LinkTokenConflict: If the token already belongs to another store.
            LookupError: If the store does not exist.
        """

    @abstractmethod
    async def add_channel(self, store_id: int, chat_id: str, label: str | None) -> ChannelRecord:
        """Append a channel row. Existing rows for the same chat are left alone."""

    @abstractmethod
    async def remove_channel(self, store_id: int, chat_id: str) -> int:
        """Delete every row matching (store_id, chat_id). Returns the number removed."""

    @abstractmethod
    async def list_channels(self, store_id: int) -> list[ChannelRecord]:
        """All channel rows of a store."""


class SqlAlchemyCredentialStore(CredentialStore):
    """Credential store backed by SQLAlchemy on the shared ``Database`` handle."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def connect(self) -> None:
        await self.database.ensure_connected()

    async def create_tables(self) -> None:
        await self.database.create_tables()

    async def close(self) -> None:
        await self.database.dispose()

    async def retrieve_user(self, email: str, include_stores: bool = False) -> UserRecord | None:
        stmt = select(User).where(User.email == email)
        if include_stores:
            stmt = stmt.options(selectinload(User.oauth_tokens))

        async with self.database.session() as session:
            user = await session.scalar(stmt)
            if user is None:
                return None
            record = UserRecord.model_validate(user)
            if include_stores:
                record.stores = [StoreRecord.model_validate(t) for t in user.oauth_tokens]
            return record

    async def save_user(self, profile: UserProfile) -> int:
        async with self.database.session() as session:
            user = await session.scalar(select(User).where(User.email == profile.email))
            if user is None:
                logger.info("Creating new user for: %s", profile.email)
                now = int(time.time())
                user = User(
                    email=profile.email,
                    username=profile.username,
                    salla_id=profile.salla_id,
                    email_verified_at=now,
                    verified_at=now,
                )
                session.add(user)
            else:
                logger.debug("Found existing user: %s for: %s", user.id, profile.email)
                if profile.salla_id is not None and user.salla_id is None:
                    user.salla_id = profile.salla_id
            await session.commit()
            return user.id

    async def update_user_settings(
        self, email: str, changes: UserSettingsUpdate
    ) -> UserRecord | None:
        async with self.database.session() as session:
            user = await session.scalar(select(User).where(User.email == email))
            if user is None:
                return None
            for field, value in changes.model_dump(exclude_unset=True).items():
                setattr(user, field, value)
            await session.commit()
            return UserRecord.model_validate(user)

    async def save_oauth(self, user_id: int, grant: OAuthGrant) -> StoreRecord:
        values = grant.model_dump(exclude_none=True, exclude={"merchant"})
        values.setdefault("updated_at", utcnow())

        async with self.database.session() as session:
            token = await session.scalar(
                select(OauthToken).where(
                    OauthToken.user_id == user_id, OauthToken.merchant == grant.merchant
                )
            )
            if token is None:
                token = OauthToken(user_id=user_id, merchant=grant.merchant, **values)
                session.add(token)
            else:
                for field, value in values.items():
                    setattr(token, field, value)
            await session.commit()
            logger.info("Saved tokens for user %s merchant %s", user_id, grant.merchant)
            return StoreRecord.model_validate(token)

    async def find_store_by_merchant(self, merchant: int) -> tuple[UserRecord, StoreRecord] | None:
        stmt = (
            select(OauthToken, User)
            .join(User, OauthToken.user_id == User.id)
            .where(OauthToken.merchant == merchant)
            .order_by(OauthToken.created_at, OauthToken.id)
            .limit(1)
        )
        async with self.database.session() as session:
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            token, user = row
            return UserRecord.model_validate(user), StoreRecord.model_validate(token)

    async def find_store_by_link_token(self, token: str) -> StoreRecord | None:
        async with self.database.session() as session:
            store = await session.scalar(
                select(OauthToken).where(OauthToken.telegram_link_token == token)
            )
            return StoreRecord.model_validate(store) if store is not None else None

    async def set_link_token(self, store_id: int, token: str) -> str:
        stmt = (
            update(OauthToken)
            .where(OauthToken.id == store_id, OauthToken.telegram_link_token.is_(None))
            .values(telegram_link_token=token)
        )
        async with self.database.session() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise LinkTokenConflict(f"Link token already in use (store {store_id})") from e

            if result.rowcount:
                return token

            existing = await session.scalar(
                select(OauthToken.telegram_link_token).where(OauthToken.id == store_id)
            )
            if existing is None:
                raise LookupError(f"Store {store_id} not found")
            return existing

    async def add_channel(self, store_id: int, chat_id: str, label: str | None) -> ChannelRecord:
        async with self.database.session() as session:
            channel = StoreTelegram(oauth_token_id=store_id, chat_id=chat_id, label=label)
            session.add(channel)
            await session.commit()
            return ChannelRecord.model_validate(channel)

    async def remove_channel(self, store_id: int, chat_id: str) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                delete(StoreTelegram).where(
                    StoreTelegram.oauth_token_id == store_id, StoreTelegram.chat_id == chat_id
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def list_channels(self, store_id: int) -> list[ChannelRecord]:
        async with self.database.session() as session:
            channels = await session.scalars(
                select(StoreTelegram)
                .where(StoreTelegram.oauth_token_id == store_id)
                .order_by(StoreTelegram.id)
            )
            return [ChannelRecord.model_validate(c) for c in channels]
