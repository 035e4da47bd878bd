"""
Notification fan-out over Telegram and email.

Every delivery is independent: one chat failing never stops or delays the reporting of
another. Failures are logged and counted, never raised to the caller.
"""

import html
import logging
import smtplib
from collections import Counter
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Sequence

import anyio
import httpx

from salla_alerts.core.exceptions import ChannelDeliveryFailed, ConfigurationMissing
from salla_alerts.core.models import ChannelRecord
from salla_alerts.core.settings import EmailSettings, TelegramSettings

# Setup module-level logger
logger = logging.getLogger("notifications")

DELIVERED = "delivered"
FAILED = "failed"
SKIPPED = "skipped"


def frame_store_message(message: str, store_label: str | None = None) -> str:
    """Prefix the message with a visible store tag when a label is given."""
    if not store_label:
        return message
    return f"🏪 <b>[{html.escape(store_label)}]</b>\n{message}"


class Notifier:
    """Sends alerts to Telegram chats and email addresses."""

    def __init__(
        self,
        telegram: TelegramSettings,
        email: EmailSettings,
        client: httpx.AsyncClient,
    ) -> None:
        self.telegram = telegram
        self.email = email
        self.client = client

    def _bot_url(self, method: str) -> str:
        if not self.telegram.configured:
            raise ConfigurationMissing("TELEGRAM_BOT_TOKEN is not set")
        return f"{self.telegram.api_url}/bot{self.telegram.bot_token.strip()}/{method}"

    async def get_bot_info(self) -> dict[str, Any] | None:
        """
        Fetch the bot's own profile (``getMe``).

        Returns:
            dict[str, Any] | None: The bot user, or None if it could not be fetched.
        """
        try:
            url = self._bot_url("getMe")
        except ConfigurationMissing as e:
            logger.warning("%s, cannot fetch bot info", e)
            return None

        try:
            response = await self.client.get(url)
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error fetching bot info: %s: %s", type(e).__name__, e)
            return None

        if not result.get("ok"):
            logger.error("Telegram API error (getMe): %s", result.get("description"))
            return None
        return result.get("result")

    async def _send_telegram(self, chat_id: str, text: str) -> None:
        url = self._bot_url("sendMessage")
        try:
            response = await self.client.post(
                url, json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
            )
        except httpx.HTTPError as e:
            raise ChannelDeliveryFailed(chat_id, f"{type(e).__name__}: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            raise ChannelDeliveryFailed(chat_id, f"HTTP {response.status_code}") from e

        if not result.get("ok"):
            raise ChannelDeliveryFailed(
                chat_id, result.get("description") or f"HTTP {response.status_code}"
            )

    async def _deliver_telegram(self, chat_id: str, text: str) -> str:
        try:
            await self._send_telegram(chat_id, text)
        except ConfigurationMissing as e:
            logger.warning("%s, skipping alert for chat %s", e, chat_id)
            return SKIPPED
        except ChannelDeliveryFailed as e:
            logger.error("Telegram API error (chat %s): %s", e.chat_id, e.reason)
            return FAILED
        logger.debug("Telegram alert sent to chat %s", chat_id)
        return DELIVERED

    async def notify_channel(self, chat_id: str, message: str) -> bool:
        """
        Send a message to a single Telegram chat.

        Returns:
            bool: True if Telegram accepted the message.
        """
        if not chat_id:
            logger.warning("Chat id missing, skipping alert")
            return False
        return await self._deliver_telegram(str(chat_id), message) == DELIVERED

    def _send_email_blocking(self, address: str, message: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = self.email.subject
        msg["From"] = formataddr((self.email.sender_name, self.email.user))
        msg["To"] = address
        body = message.replace("\n", "<br>\n")
        msg.set_content(message)
        msg.add_alternative(f"<p>{body}</p>", subtype="html")

        if self.email.port == 465:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(self.email.host, self.email.port, timeout=30)
        else:
            smtp = smtplib.SMTP(self.email.host, self.email.port, timeout=30)
        with smtp:
            if self.email.port != 465:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
            if self.email.user:
                smtp.login(self.email.user, self.email.password)
            smtp.send_message(msg)

    async def _deliver_email(self, address: str, message: str) -> str:
        if not address or not self.email.configured:
            logger.warning("Email address or SMTP settings missing, skipping alert")
            return SKIPPED
        try:
            await anyio.to_thread.run_sync(self._send_email_blocking, address, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending email alert to %s: %s: %s", address, type(e).__name__, e)
            return FAILED
        logger.info("Email alert sent to: %s", address)
        return DELIVERED

    async def notify_email(self, address: str, message: str) -> bool:
        """
        Send an alert email.

        Returns:
            bool: True if the SMTP server accepted the message.
        """
        return await self._deliver_email(address, message) == DELIVERED

    async def notify_store(
        self,
        channels: Sequence[ChannelRecord],
        message: str,
        store_label: str | None = None,
        legacy_email: str | None = None,
        legacy_chat_id: str | None = None,
    ) -> dict[str, int]:
        """
        Deliver a message to every channel of a store at once.

        Each channel row gets its own delivery, so a chat bound twice receives the
        message twice. The owner's legacy chat is added unless it is already one of the
        store's chats, and the legacy email is delivered alongside, unframed.

        Args:
            channels (Sequence[ChannelRecord]): The store's channel rows.
            message (str): HTML message body.
            store_label (str | None): Store name shown in front of Telegram messages.
            legacy_email (str | None): The owner's alert email, if configured.
            legacy_chat_id (str | None): The owner's user-level Telegram chat, if any.

        Returns:
            dict[str, int]:
            {
                "delivered": int,
                "failed": int,
                "skipped": int,
            }
        """
        outcomes: Counter[str] = Counter({DELIVERED: 0, FAILED: 0, SKIPPED: 0})
        chat_ids = [channel.chat_id for channel in channels]
        if legacy_chat_id and str(legacy_chat_id) not in chat_ids:
            chat_ids.append(str(legacy_chat_id))
        if not chat_ids and not legacy_email:
            return dict(outcomes)

        text = frame_store_message(message, store_label)

        async def deliver_chat(chat_id: str) -> None:
            try:
                outcomes[await self._deliver_telegram(chat_id, text)] += 1
            except Exception as e:
                logger.error(
                    "Unexpected error alerting chat %s: %s: %s", chat_id, type(e).__name__, e
                )
                outcomes[FAILED] += 1

        async def deliver_email(address: str) -> None:
            try:
                outcomes[await self._deliver_email(address, message)] += 1
            except Exception as e:
                logger.error("Unexpected error emailing %s: %s: %s", address, type(e).__name__, e)
                outcomes[FAILED] += 1

        async with anyio.create_task_group() as tg:
            for chat_id in chat_ids:
                tg.start_soon(deliver_chat, chat_id)
            if legacy_email:
                tg.start_soon(deliver_email, legacy_email)

        logger.info(
            "Store alert for %s: %s delivered, %s failed, %s skipped",
            store_label or "store",
            outcomes[DELIVERED],
            outcomes[FAILED],
            outcomes[SKIPPED],
        )
        return dict(outcomes)
