"""Errors raised by the alerts core."""


class AlertsError(Exception):
    """Base class for all alerts errors."""


class NoTokensFound(AlertsError):
    """The user has no connected store (or not the requested one)."""

    def __init__(self, email: str, merchant: int | None = None) -> None:
        self.email = email
        self.merchant = merchant
        if merchant is None:
            message = f"No tokens found for user {email}"
        else:
            message = f"No tokens found for user {email} and merchant {merchant}"
        super().__init__(message)


class TokenRefreshFailed(AlertsError):
    """Salla rejected the refresh token or the refresh call could not complete."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Token refresh failed: {detail}")


class ChannelDeliveryFailed(AlertsError):
    """A single notification channel could not be reached."""

    def __init__(self, chat_id: str, reason: str) -> None:
        self.chat_id = chat_id
        self.reason = reason
        super().__init__(f"Delivery to chat {chat_id} failed: {reason}")


class ConfigurationMissing(AlertsError):
    """A credential needed for a delivery channel is not configured."""


class UnresolvedMerchant(AlertsError):
    """An inbound event references a store nobody has connected."""

    def __init__(self, merchant: int) -> None:
        self.merchant = merchant
        super().__init__(f"No store found for merchant {merchant}")


class LinkTokenConflict(AlertsError):
    """A generated link token collided with another store's token."""


class SallaAPIError(AlertsError):
    """A Salla API call other than token refresh failed."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Salla API error: {detail}")
