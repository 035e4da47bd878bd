"""Telegram plugin module.

Receives bot updates. Merchants link a chat to a store by opening the bot with
``/start <link token>``.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from salla_alerts.core.dependencies import get_dispatcher
from salla_alerts.core.events import EventDispatcher
from salla_alerts.core.models import TelegramUpdate
from salla_alerts.core.settings import TelegramSettings

# Setup module-level logger
logger = logging.getLogger("telegram")


def create_telegram_router(settings: TelegramSettings) -> APIRouter:
    """Create a router for the Telegram bot webhook."""

    router = APIRouter()

    @router.post("/webhook")
    async def webhook(
        request: Request,
        x_telegram_bot_api_secret_token: str | None = Header(None),
        dispatcher: EventDispatcher = Depends(get_dispatcher),
    ) -> dict[str, str]:
        """
        Handle a Telegram update.

        Telegram retries any non-2xx answer, so every update that passed the secret check
        is acknowledged, including ones that failed to process.
        """
        if settings.webhook_secret:
            received = (x_telegram_bot_api_secret_token or "").encode()
            if not hmac.compare_digest(received, settings.webhook_secret.encode()):
                logger.warning("Rejected Telegram update with an invalid secret token")
                raise HTTPException(status_code=401, detail="Invalid secret token")

        try:
            update = TelegramUpdate.model_validate(await request.json())
        except ValueError as e:
            logger.warning("Ignoring malformed Telegram update: %s", e)
            return {"status": "ignored"}

        try:
            outcome = await dispatcher.handle_chat_update(update)
        except Exception:
            logger.exception("Error handling Telegram update %s", update.update_id)
            return {"status": "error"}

        logger.info("Telegram update %s: %s", update.update_id, outcome)
        return {"status": outcome}

    return router
