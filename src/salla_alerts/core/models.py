"""
Database models for users, store OAuth tokens and Telegram channels, plus the
pydantic records and payloads exchanged with the rest of the application.
"""

import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salla_alerts.core.database import Base


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class User(Base):
    """
    Represents a merchant user who signed in through Salla.

    Attributes:
        salla_id (int): Salla user id, unique when present.
        email (str): Stable lookup key for the user.
        stock_threshold (int): Quantity at or below which alerts fire. Unset means default.
        alert_email (str): Legacy single recipient for email alerts.
        telegram_chat_id (str): Legacy user-level Telegram chat.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    salla_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    email_verified_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    verified_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alert_email: Mapped[str | None] = mapped_column(String, nullable=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    oauth_tokens: Mapped[List["OauthToken"]] = relationship(
        back_populates="user", order_by=lambda: [OauthToken.created_at, OauthToken.id]
    )


class OauthToken(Base):
    """
    OAuth token pair for one (user, Salla store) combination.

    Attributes:
        merchant (int): Salla store id.
        expires_in (int): Lifetime of the access token in seconds, counted from updated_at.
        telegram_link_token (str): Store-level invite code for binding Telegram chats.
    """

    __tablename__ = "oauth_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "merchant", name="uq_oauth_tokens_user_merchant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    merchant: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    access_token: Mapped[str] = mapped_column(String, nullable=False)
    refresh_token: Mapped[str] = mapped_column(String, nullable=False)
    expires_in: Mapped[int] = mapped_column(Integer, nullable=False)
    store_name: Mapped[str | None] = mapped_column(String, nullable=True)
    store_avatar: Mapped[str | None] = mapped_column(String, nullable=True)
    telegram_link_token: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped[User] = relationship(back_populates="oauth_tokens")
    channels: Mapped[List["StoreTelegram"]] = relationship(back_populates="oauth_token")


class StoreTelegram(Base):
    """
    A Telegram chat subscribed to a store's alerts.

    (oauth_token_id, chat_id) is deliberately not unique.
    """

    __tablename__ = "store_telegrams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    oauth_token_id: Mapped[int] = mapped_column(
        ForeignKey("oauth_tokens.id"), index=True, nullable=False
    )
    chat_id: Mapped[str] = mapped_column(String, nullable=False)
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    oauth_token: Mapped[OauthToken] = relationship(back_populates="channels")


class StoreRecord(BaseModel):
    """A connected store as seen by the core."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    merchant: int
    access_token: str
    refresh_token: str
    expires_in: int
    updated_at: datetime.datetime
    created_at: datetime.datetime
    store_name: Optional[str] = None
    store_avatar: Optional[str] = None
    telegram_link_token: Optional[str] = None


class UserRecord(BaseModel):
    """A user, optionally with their stores ordered oldest first."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    username: Optional[str] = None
    salla_id: Optional[int] = None
    stock_threshold: Optional[int] = None
    alert_email: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    stores: List[StoreRecord] = Field(default_factory=list)


class ChannelRecord(BaseModel):
    """A Telegram chat bound to a store."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    oauth_token_id: int
    chat_id: str
    label: Optional[str] = None


class UserProfile(BaseModel):
    """User data received from Salla at authorization time."""

    email: str
    username: Optional[str] = None
    salla_id: Optional[int] = None


class UserSettingsUpdate(BaseModel):
    """Alert settings a merchant can change from the account page."""

    stock_threshold: Optional[int] = Field(None, ge=0)
    alert_email: Optional[str] = None
    telegram_chat_id: Optional[str] = None


class TokenGrant(BaseModel):
    """Token pair returned by the Salla token endpoint."""

    access_token: str
    refresh_token: str
    expires_in: int


class OAuthGrant(TokenGrant):
    """A token pair scoped to one store, ready to be saved."""

    merchant: int
    store_name: Optional[str] = None
    store_avatar: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None


class ProductData(BaseModel):
    """Product block of a Salla product event."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    name: str = ""
    quantity: Optional[int] = None


class StockEvent(BaseModel):
    """
    Salla product webhook body.

    Only the fields the alerts need are declared; the rest is kept as extra data.
    """

    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    merchant: int
    created_at: Optional[str] = None
    data: ProductData


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str
    title: Optional[str] = None


class TelegramSender(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    first_name: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    chat: TelegramChat
    text: Optional[str] = None
    sender: Optional[TelegramSender] = Field(None, alias="from")


class TelegramUpdate(BaseModel):
    """Telegram bot webhook update. Only plain messages are handled."""

    model_config = ConfigDict(extra="allow")

    update_id: Optional[int] = None
    message: Optional[TelegramMessage] = None
