"""
FastAPI dependencies for the alerts application.

Every getter is cached, so each returns one shared instance per process.
"""

import logging
from functools import lru_cache

import httpx

from salla_alerts.core.database import Database
from salla_alerts.core.events import EventDispatcher
from salla_alerts.core.notifications import Notifier
from salla_alerts.core.salla_api import SallaClient
from salla_alerts.core.settings import (
    AppSettings,
    DatabaseBackend,
    EmailSettings,
    SallaSettings,
    TelegramSettings,
)
from salla_alerts.core.store import CredentialStore, SqlAlchemyCredentialStore
from salla_alerts.core.tokens import TokenManager

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_app_settings() -> AppSettings:
    """
    Get the settings for the alerts application.
    """
    settings = AppSettings()  # Reads app-related vars from .env
    logger.info(
        "get_app_settings returning AppSettings with environment: %s, backend: %s",
        settings.environment,
        settings.database_backend.value,
    )
    return settings


@lru_cache()
def get_salla_settings() -> SallaSettings:
    return SallaSettings()


@lru_cache()
def get_telegram_settings() -> TelegramSettings:
    return TelegramSettings()


@lru_cache()
def get_email_settings() -> EmailSettings:
    return EmailSettings()


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """
    Shared HTTP client for Salla and Telegram calls.
    """
    return httpx.AsyncClient(timeout=get_app_settings().http_timeout)


def create_credential_store(settings: AppSettings) -> CredentialStore:
    """
    Build the credential store selected by ``DATABASE_BACKEND``.

    Args:
        settings (AppSettings): Application settings.

    Returns:
        CredentialStore: The configured backend, not yet connected.
    """
    if settings.database_backend == DatabaseBackend.SQLALCHEMY:
        logger.info("Using SQLAlchemy credential store")
        return SqlAlchemyCredentialStore(Database(settings.database_url))
    elif settings.database_backend == DatabaseBackend.MEMORY:
        from salla_alerts.core.memory_store import MemoryCredentialStore

        logger.warning("Using in-memory credential store; data is lost on restart")
        return MemoryCredentialStore()
    else:
        raise ValueError(f"Invalid database backend: {settings.database_backend}")


@lru_cache()
def get_credential_store() -> CredentialStore:
    """
    Injection method to get the process-wide credential store.
    """
    return create_credential_store(get_app_settings())


@lru_cache()
def get_salla_client() -> SallaClient:
    """
    Injection method to get the Salla API client.
    """
    return SallaClient(get_salla_settings(), get_http_client())


@lru_cache()
def get_notifier() -> Notifier:
    """
    Injection method to get the notification fan-out engine.
    """
    telegram = get_telegram_settings()
    if not telegram.configured:
        logger.warning("TELEGRAM_BOT_TOKEN is not set, Telegram alerts will be skipped")
    return Notifier(telegram, get_email_settings(), get_http_client())


@lru_cache()
def get_token_manager() -> TokenManager:
    return TokenManager(get_credential_store(), get_salla_client())


@lru_cache()
def get_dispatcher() -> EventDispatcher:
    return EventDispatcher(
        get_credential_store(),
        get_notifier(),
        default_stock_threshold=get_app_settings().default_stock_threshold,
    )
