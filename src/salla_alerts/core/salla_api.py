"""
Client for the Salla OAuth and Admin APIs.

Salla has no Python SDK, so the few endpoints the alerts need are called directly
over the shared ``httpx.AsyncClient``.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from salla_alerts.core.exceptions import SallaAPIError, TokenRefreshFailed
from salla_alerts.core.models import TokenGrant
from salla_alerts.core.settings import SallaSettings

logger = logging.getLogger("salla")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(body.get("error_description") or error or body.get("message") or body)
    return str(body)


class SallaClient:
    """Thin async wrapper around the Salla endpoints used by the app."""

    def __init__(self, settings: SallaSettings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.client = client

    @property
    def token_url(self) -> str:
        return f"{self.settings.accounts_url}/oauth2/token"

    def authorization_url(self, state: str) -> str:
        """URL of the Salla consent screen."""
        params = {
            "client_id": self.settings.oauth_client_id,
            "response_type": "code",
            "redirect_uri": self.settings.oauth_client_redirect_uri,
            "scope": self.settings.scope,
            "state": state,
        }
        return f"{self.settings.accounts_url}/oauth2/auth?{urlencode(params)}"

    async def _request_token(self, data: dict[str, str]) -> TokenGrant:
        payload = {
            "client_id": self.settings.oauth_client_id,
            "client_secret": self.settings.oauth_client_secret,
            **data,
        }
        response = await self.client.post(
            self.token_url, data=payload, headers={"Accept": "application/json"}
        )
        if response.is_error:
            raise SallaAPIError(_error_detail(response), response.status_code)
        try:
            return TokenGrant.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise SallaAPIError(f"Malformed token response: {e}", response.status_code) from e

    async def obtain_token(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code for a token pair.

        Raises:
            SallaAPIError: If Salla rejected the code.
        """
        try:
            return await self._request_token(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.settings.oauth_client_redirect_uri,
                    "scope": self.settings.scope,
                }
            )
        except httpx.HTTPError as e:
            raise SallaAPIError(f"{type(e).__name__}: {e}") from e

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Trade a refresh token for a new token pair.

        Raises:
            TokenRefreshFailed: If Salla refused the refresh or could not be reached.
        """
        try:
            return await self._request_token(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except SallaAPIError as e:
            logger.error("Salla refused token refresh: %s", e.detail)
            raise TokenRefreshFailed(e.detail, e.status_code) from e
        except httpx.HTTPError as e:
            logger.error("Token refresh request failed: %s: %s", type(e).__name__, e)
            raise TokenRefreshFailed(f"{type(e).__name__}: {e}") from e

    async def _get(self, url: str, access_token: str, params: dict | None = None) -> Any:
        try:
            response = await self.client.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise SallaAPIError(f"{type(e).__name__}: {e}") from e
        if response.is_error:
            raise SallaAPIError(_error_detail(response), response.status_code)
        try:
            return response.json().get("data")
        except (ValueError, AttributeError) as e:
            raise SallaAPIError("Malformed response", response.status_code) from e

    async def get_resource_owner(self, access_token: str) -> dict[str, Any]:
        """
        Fetch the user who authorized the app, including their ``merchant`` block.

        Returns:
            dict[str, Any]: ``{"id", "name", "email", "merchant": {"id", "name", "avatar", ...}}``
        """
        owner = await self._get(f"{self.settings.accounts_url}/oauth2/user/info", access_token)
        if not isinstance(owner, dict):
            raise SallaAPIError("User info response has no data")
        return owner

    async def get_orders(self, access_token: str, page: int = 1) -> list[dict[str, Any]]:
        return (
            await self._get(f"{self.settings.api_url}/orders", access_token, {"page": page}) or []
        )

    async def get_customers(self, access_token: str, page: int = 1) -> list[dict[str, Any]]:
        return (
            await self._get(f"{self.settings.api_url}/customers", access_token, {"page": page})
            or []
        )
