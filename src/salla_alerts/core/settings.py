"""
Settings for the alerts application.
"""

import secrets
from enum import Enum

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SALLA_ACCOUNTS_URL = "https://accounts.salla.sa"
SALLA_API_URL = "https://api.salla.dev/admin/v2"
TELEGRAM_API_URL = "https://api.telegram.org"

# Access tokens are refreshed this many seconds before they actually expire
REFRESH_BUFFER_SECONDS = 300

load_dotenv()


class DatabaseBackend(Enum):
    """
    Persistence backend used for the credential store.
    """

    SQLALCHEMY = "sqlalchemy"
    MEMORY = "memory"


class AppSettings(BaseSettings):
    """
    Settings for the application itself.
    """

    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///./salla_alerts.db"
    database_backend: DatabaseBackend = DatabaseBackend.SQLALCHEMY
    default_stock_threshold: int = 5
    http_timeout: float = 10.0
    frontend_url: str = "http://localhost:3000"
    # A random key invalidates issued JWTs on restart; set JWT_SECRET_KEY in production
    jwt_secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class SallaSettings(BaseSettings):
    """
    Settings for the Salla OAuth and webhook APIs.
    """

    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_client_redirect_uri: str = "http://localhost:8000/salla/oauth/callback"
    webhook_secret: str = ""
    accounts_url: str = SALLA_ACCOUNTS_URL
    api_url: str = SALLA_API_URL
    scope: str = "offline_access"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SALLA_",
        extra="ignore",
    )


class TelegramSettings(BaseSettings):
    """
    Settings for the Telegram bot.
    """

    bot_token: str = ""
    webhook_secret: str = ""
    api_url: str = TELEGRAM_API_URL

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TELEGRAM_",
        extra="ignore",
    )

    @property
    def configured(self) -> bool:
        """Whether a bot credential is available."""
        return bool(self.bot_token.strip())


class EmailSettings(BaseSettings):
    """
    SMTP settings for email alerts.
    """

    host: str = ""
    port: int = 587
    user: str = ""
    password: str = Field(
        "", validation_alias=AliasChoices("EMAIL_PASS", "EMAIL_PASSWORD", "password")
    )
    sender_name: str = "Salla Alerts"
    subject: str = "Low Stock Alert! ⚠️"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EMAIL_",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def configured(self) -> bool:
        """Whether an SMTP host is available."""
        return bool(self.host)
