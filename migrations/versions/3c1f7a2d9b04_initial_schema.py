"""initial_schema

Revision ID: 3c1f7a2d9b04
Revises:
Create Date: 2025-01-12 18:20:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c1f7a2d9b04"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("salla_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("email_verified_at", sa.Integer(), nullable=True),
        sa.Column("verified_at", sa.Integer(), nullable=True),
        sa.Column("stock_threshold", sa.Integer(), nullable=True),
        sa.Column("alert_email", sa.String(), nullable=True),
        sa.Column("telegram_chat_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "oauth_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("merchant", sa.BigInteger(), nullable=False),
        sa.Column("access_token", sa.String(), nullable=False),
        sa.Column("refresh_token", sa.String(), nullable=False),
        sa.Column("expires_in", sa.Integer(), nullable=False),
        sa.Column("store_name", sa.String(), nullable=True),
        sa.Column("store_avatar", sa.String(), nullable=True),
        sa.Column("telegram_link_token", sa.String(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "merchant", name="uq_oauth_tokens_user_merchant"),
    )
    op.create_index("ix_oauth_tokens_user_id", "oauth_tokens", ["user_id"])
    op.create_index("ix_oauth_tokens_merchant", "oauth_tokens", ["merchant"])

    # A chat may be bound to the same store more than once
    op.create_table(
        "store_telegrams",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "oauth_token_id", sa.Integer(), sa.ForeignKey("oauth_tokens.id"), nullable=False
        ),
        sa.Column("chat_id", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_store_telegrams_oauth_token_id", "store_telegrams", ["oauth_token_id"])


def downgrade() -> None:
    op.drop_index("ix_store_telegrams_oauth_token_id", table_name="store_telegrams")
    op.drop_table("store_telegrams")
    op.drop_index("ix_oauth_tokens_merchant", table_name="oauth_tokens")
    op.drop_index("ix_oauth_tokens_user_id", table_name="oauth_tokens")
    op.drop_table("oauth_tokens")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
