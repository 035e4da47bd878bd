"""Just-in-time access token refresh for connected Salla stores."""

import datetime
import logging
import time
from typing import Callable, Protocol

from salla_alerts.core.exceptions import NoTokensFound
from salla_alerts.core.models import OAuthGrant, StoreRecord, TokenGrant
from salla_alerts.core.settings import REFRESH_BUFFER_SECONDS
from salla_alerts.core.store import CredentialStore

logger = logging.getLogger("tokens")


class TokenRefresher(Protocol):
    """Anything able to trade a refresh token for a new token pair."""

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant: ...


def select_store(stores: list[StoreRecord], merchant: int | None = None) -> StoreRecord | None:
    """
    Pick the store a request is about.

    Args:
        stores (list[StoreRecord]): The user's stores, oldest first.
        merchant (int | None): Requested Salla merchant id, if any.

    Returns:
        StoreRecord | None: The matching store, the default (oldest) store when no
        merchant was requested, or None.
    """
    if not stores:
        return None
    if merchant is None:
        return min(stores, key=lambda s: (s.created_at, s.id))
    return next((s for s in stores if s.merchant == merchant), None)


def expiry_timestamp(store: StoreRecord, buffer_seconds: int = REFRESH_BUFFER_SECONDS) -> float:
    """Epoch second from which the store's access token must be refreshed."""
    updated_at = store.updated_at
    if updated_at.tzinfo is None:
        # SQLite hands back naive datetimes; they are stored as UTC
        updated_at = updated_at.replace(tzinfo=datetime.UTC)
    return updated_at.timestamp() + store.expires_in - buffer_seconds


class TokenManager:
    """Hands out valid access tokens, refreshing and persisting them when expired."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        buffer_seconds: int = REFRESH_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.refresher = refresher
        self.buffer_seconds = buffer_seconds
        self.clock = clock

    async def get_valid_access_token(self, email: str, merchant: int | None = None) -> str:
        """
        Return a currently valid access token for one of the user's stores.

        Args:
            email (str): The user's email.
            merchant (int | None): Salla merchant id. Defaults to the user's first store.

        Returns:
            str: An access token that is not about to expire.

        Raises:
            NoTokensFound: If the user has no (matching) connected store.
            TokenRefreshFailed: If Salla refused to refresh an expired token.
        """
        user = await self.store.retrieve_user(email, include_stores=True)
        if user is None or not user.stores:
            raise NoTokensFound(email)

        store = select_store(user.stores, merchant)
        if store is None:
            raise NoTokensFound(email, merchant)

        now = self.clock()
        if now < expiry_timestamp(store, self.buffer_seconds):
            return store.access_token

        logger.info("Access token expired for merchant %s, requesting refresh", store.merchant)
        grant = await self.refresher.refresh_access_token(store.refresh_token)

        saved = await self.store.save_oauth(
            user.id,
            OAuthGrant(
                merchant=store.merchant,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_in=grant.expires_in,
                updated_at=datetime.datetime.fromtimestamp(now, datetime.UTC),
            ),
        )
        logger.info("Refreshed access token for merchant %s", saved.merchant)
        return saved.access_token
