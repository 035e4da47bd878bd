"""
Event dispatcher for inbound Salla webhooks and Telegram bot updates.
"""

import html
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from salla_alerts.core.channels import ChannelRegistry
from salla_alerts.core.exceptions import UnresolvedMerchant
from salla_alerts.core.models import StockEvent, StoreRecord, TelegramUpdate, UserRecord
from salla_alerts.core.notifications import Notifier
from salla_alerts.core.store import CredentialStore

logger = logging.getLogger("events")

DEFAULT_STORE_LABEL = "Salla Store"
STOCK_EVENTS = frozenset({"product.updated", "product.quantity.low"})
AUTHORIZE_EVENT = "app.store.authorize"

LINKED_MESSAGE = (
    "✅ <b>Your chat is now linked to {store}!</b>\n"
    "From now on, low stock alerts for this store will arrive here."
)
INVALID_LINK_MESSAGE = (
    "❌ <b>Sorry, this link is invalid or has expired.</b>\n"
    "Please try again from your account page."
)
WELCOME_MESSAGE = (
    "👋 <b>Welcome to the Salla stock alerts bot!</b>\n\n"
    "To link a store, open your account page in the app and press "
    "'Connect with Telegram'."
)

AuthorizeHandler = Callable[[dict[str, Any]], Awaitable[Any]]


def format_low_stock_message(product_name: str, quantity: int, threshold: int) -> str:
    return (
        "⚠️ <b>Low Stock Alert</b>\n\n"
        f"Product: <b>{html.escape(product_name)}</b>\n"
        f"Current Quantity: <b>{quantity}</b>\n"
        f"Threshold: <b>{threshold}</b>\n\n"
        "Please restock soon!"
    )


def parse_start_command(text: str) -> tuple[bool, str | None]:
    """
    Recognise ``/start`` and ``/start <token>`` (also ``/start@BotName <token>``).

    Returns:
        tuple[bool, str | None]: Whether the text is a start command, and its token.
    """
    parts = text.split()
    if not parts or parts[0].split("@", 1)[0] != "/start":
        return False, None
    return True, parts[1] if len(parts) > 1 else None


class EventDispatcher:
    """Turns inbound events into channel bindings and notifications."""

    def __init__(
        self,
        store_db: CredentialStore,
        notifier: Notifier,
        default_stock_threshold: int = 5,
    ) -> None:
        self.store_db = store_db
        self.notifier = notifier
        self.registry = ChannelRegistry(store_db)
        self.default_stock_threshold = default_stock_threshold

    async def _resolve_merchant(self, merchant: int) -> tuple[UserRecord, StoreRecord]:
        found = await self.store_db.find_store_by_merchant(merchant)
        if found is None:
            raise UnresolvedMerchant(merchant)
        return found

    def threshold_for(self, user: UserRecord) -> int:
        if user.stock_threshold is None:
            return self.default_stock_threshold
        return user.stock_threshold

    async def handle_stock_event(self, event: StockEvent) -> dict[str, int] | None:
        """
        Alert the store's channels when a product's quantity falls to its threshold.

        Args:
            event (StockEvent): Salla product event.

        Returns:
            dict[str, int] | None: The fan-out summary, or None if no alert was sent.
        """
        try:
            user, store = await self._resolve_merchant(event.merchant)
        except UnresolvedMerchant as e:
            logger.warning("%s, dropping %s event", e, event.event or "stock")
            return None

        product = event.data
        if product.quantity is None:
            logger.warning(
                "Product %s of merchant %s has no quantity, ignoring", product.id, event.merchant
            )
            return None

        threshold = self.threshold_for(user)
        store_label = store.store_name or DEFAULT_STORE_LABEL
        logger.info(
            "Checking stock for product %s in store %s: %s vs threshold %s",
            product.name,
            store_label,
            product.quantity,
            threshold,
        )
        if product.quantity > threshold:
            return None

        channels = await self.registry.list_channels(store.id)
        return await self.notifier.notify_store(
            channels,
            format_low_stock_message(product.name, product.quantity, threshold),
            store_label=store_label,
            legacy_email=user.alert_email,
            legacy_chat_id=user.telegram_chat_id,
        )

    async def handle_chat_update(self, update: TelegramUpdate) -> str:
        """
        Handle a Telegram bot update.

        Returns:
            str: One of "ignored", "welcome", "invalid" or "linked".
        """
        message = update.message
        if message is None or not message.text:
            return "ignored"

        is_start, token = parse_start_command(message.text)
        if not is_start:
            return "ignored"

        chat_id = str(message.chat.id)
        if token is None:
            await self.notifier.notify_channel(chat_id, WELCOME_MESSAGE)
            return "welcome"

        store = await self.registry.resolve_store_by_link_token(token)
        if store is None:
            logger.warning("Invalid link token %s... from chat %s", token[:6], chat_id)
            await self.notifier.notify_channel(chat_id, INVALID_LINK_MESSAGE)
            return "invalid"

        label = (message.sender.first_name if message.sender else None) or message.chat.title
        await self.registry.add_channel(store.id, chat_id, label)
        store_name = html.escape(store.store_name or DEFAULT_STORE_LABEL)
        await self.notifier.notify_channel(chat_id, LINKED_MESSAGE.format(store=store_name))
        return "linked"

    async def handle_salla_event(
        self, body: dict[str, Any], on_authorize: AuthorizeHandler | None = None
    ) -> Any:
        """
        Route a Salla webhook body by its ``event`` name.

        Args:
            body (dict[str, Any]): The decoded webhook body.
            on_authorize (AuthorizeHandler | None): Called with the body of
                ``app.store.authorize`` events.

        Returns:
            Any: Whatever the selected handler returned, None for ignored events.
        """
        event_name = body.get("event")
        if event_name in STOCK_EVENTS:
            try:
                event = StockEvent.model_validate(body)
            except ValidationError as e:
                logger.warning("Malformed %s event: %s", event_name, e)
                return None
            return await self.handle_stock_event(event)

        if event_name == AUTHORIZE_EVENT and on_authorize is not None:
            return await on_authorize(body)

        logger.debug("Ignoring Salla event %s", event_name)
        return None
