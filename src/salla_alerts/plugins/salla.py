"""Salla plugin module.

This module provides the Salla endpoints of the alerts backend: the OAuth flow that
connects a store, and the webhook that receives store events (product stock changes and
app authorizations) and hands them to the event dispatcher.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Mapping
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from salla_alerts.core.auth import create_access_token
from salla_alerts.core.dependencies import (
    get_credential_store,
    get_dispatcher,
    get_salla_client,
)
from salla_alerts.core.events import EventDispatcher
from salla_alerts.core.exceptions import SallaAPIError
from salla_alerts.core.models import OAuthGrant, StoreRecord, TokenGrant, UserProfile
from salla_alerts.core.salla_api import SallaClient
from salla_alerts.core.settings import AppSettings, SallaSettings
from salla_alerts.core.store import CredentialStore

# Setup module-level logger
logger = logging.getLogger("salla")

SIGNATURE_STRATEGY = "signature"


def verify_webhook_request(headers: Mapping[str, str], body: bytes, secret: str) -> bool:
    """
    Check that a webhook call comes from Salla.

    Salla either sends the shared secret in the ``Authorization`` header ("token"
    strategy) or signs the raw body with it ("signature" strategy).

    Args:
        headers (Mapping[str, str]): Request headers (case-insensitive mapping).
        body (bytes): The raw request body.
        secret (str): The configured webhook secret. Empty disables the check.

    Returns:
        bool: Whether the request is authentic.
    """
    if not secret:
        return True

    strategy = headers.get("x-salla-security-strategy", "token").strip().lower()
    if strategy == SIGNATURE_STRATEGY:
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        received = headers.get("x-salla-signature", "").strip().lower()
        return hmac.compare_digest(received.encode(), expected.encode())

    received = headers.get("authorization", "").strip()
    if received.lower().startswith("bearer "):
        received = received[7:].strip()
    return hmac.compare_digest(received.encode(), secret.encode())


async def save_authorization(
    store_db: CredentialStore, grant: TokenGrant, owner: dict[str, Any]
) -> StoreRecord:
    """
    Persist the user and store behind a fresh token grant.

    Args:
        store_db (CredentialStore): Credential store.
        grant (TokenGrant): Tokens issued by Salla.
        owner (dict[str, Any]): The resource owner from ``/oauth2/user/info``.

    Returns:
        StoreRecord: The saved store.

    Raises:
        SallaAPIError: If the owner data lacks an email or merchant id.
    """
    merchant = owner.get("merchant") or {}
    if not owner.get("email") or merchant.get("id") is None:
        raise SallaAPIError("User info is missing the email or merchant id")

    user_id = await store_db.save_user(
        UserProfile(email=owner["email"], username=owner.get("name"), salla_id=owner.get("id"))
    )
    return await store_db.save_oauth(
        user_id,
        OAuthGrant(
            merchant=int(merchant["id"]),
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_in=grant.expires_in,
            store_name=merchant.get("name"),
            store_avatar=merchant.get("avatar"),
        ),
    )


def grant_from_authorize_event(data: dict[str, Any], now: float | None = None) -> TokenGrant:
    """
    Read the token pair of an ``app.store.authorize`` event.

    Salla sends an absolute ``expires`` epoch there rather than ``expires_in``.
    """
    now = time.time() if now is None else now
    try:
        expires_in = data.get("expires_in")
        if expires_in is None and data.get("expires") is not None:
            expires_in = max(0, int(float(data["expires"]) - now))
        return TokenGrant(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
        )
    except (TypeError, ValueError) as e:
        raise SallaAPIError(f"Malformed authorize event: {e}") from e


def create_salla_router(settings: SallaSettings, app_settings: AppSettings) -> APIRouter:
    """Create a router for the Salla OAuth flow and webhooks."""

    router = APIRouter()
    default_callback = f"{app_settings.frontend_url}/auth/callback"

    @router.get("/oauth/redirect")
    async def initiate_oauth(
        redirect_uri: str | None = None,
        salla: SallaClient = Depends(get_salla_client),
    ) -> RedirectResponse:
        """Initiate OAuth flow."""
        # The frontend callback travels in the state parameter
        state = redirect_uri or default_callback
        oauth_url = salla.authorization_url(state)
        logger.info("Redirecting to Salla authorization for callback %s", state)
        return RedirectResponse(oauth_url)

    @router.get("/oauth/callback")
    async def oauth_callback(
        code: str,
        state: str | None = None,
        salla: SallaClient = Depends(get_salla_client),
        store_db: CredentialStore = Depends(get_credential_store),
    ) -> RedirectResponse:
        """
        Handle OAuth callback from Salla.

        - Exchanges the code for the store's token pair
        - Fetches the authorizing user and their store
        - Creates or updates the user and the store's tokens
        - Redirects to the frontend with a JWT for the user

        Args:
            code (str): The authorization code from Salla.
            state (str | None): Frontend callback URL passed to the redirect endpoint.
            salla (SallaClient): Salla API client.
            store_db (CredentialStore): Credential store.
        """
        logger.info("OAuth callback received: code=%s... state=%s", code[:5], state)
        try:
            grant = await salla.obtain_token(code)
        except SallaAPIError as e:
            logger.error("Error obtaining token from Salla: %s", e.detail)
            raise HTTPException(status_code=400, detail=e.detail)

        owner = await salla.get_resource_owner(grant.access_token)
        store = await save_authorization(store_db, grant, owner)
        logger.info("Store %s connected by %s", store.merchant, owner["email"])

        frontend_auth_token = create_access_token(owner["email"], store.merchant)

        # Only hand the JWT to our own frontend
        frontend_callback_url = default_callback
        if state and state.startswith(app_settings.frontend_url):
            frontend_callback_url = state

        redirect_url = (
            f"{frontend_callback_url}?"
            f"access_token={quote(frontend_auth_token)}&"
            f"merchant={quote(str(store.merchant))}"
        )
        return RedirectResponse(url=redirect_url)

    @router.post("/webhook")
    async def webhook(
        request: Request,
        salla: SallaClient = Depends(get_salla_client),
        store_db: CredentialStore = Depends(get_credential_store),
        dispatcher: EventDispatcher = Depends(get_dispatcher),
    ) -> dict[str, str]:
        """Receive a Salla store event."""
        raw_body = await request.body()
        if not verify_webhook_request(request.headers, raw_body, settings.webhook_secret):
            logger.warning("Rejected Salla webhook with an invalid secret")
            raise HTTPException(status_code=401, detail="Invalid webhook secret")

        try:
            body = json.loads(raw_body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Body is not valid JSON")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")

        logger.info("Salla webhook: %s for merchant %s", body.get("event"), body.get("merchant"))

        async def on_authorize(event: dict[str, Any]) -> StoreRecord:
            grant = grant_from_authorize_event(event.get("data") or {})
            owner = await salla.get_resource_owner(grant.access_token)
            return await save_authorization(store_db, grant, owner)

        await dispatcher.handle_salla_event(body, on_authorize=on_authorize)
        return {"status": "ok"}

    return router
