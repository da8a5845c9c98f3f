"""create subscriptions and webhook dedup tables

Revision ID: 0001_subscriptions
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_subscriptions"
down_revision = None
branch_labels = None
depends_on = None

SUBSCRIPTION_STATUS = sa.Enum("pending", "active", "failed", "expired", name="subscription_status")


def upgrade() -> None:  # noqa: D401
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("book_id", sa.String(length=36), nullable=False),
        sa.Column("plan", sa.String(length=40), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mobile_number", sa.String(length=32), nullable=False),
        sa.Column("service_provider", sa.String(length=40), nullable=False),
        sa.Column("account_name", sa.String(length=120), nullable=False),
        sa.Column("status", SUBSCRIPTION_STATUS, nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_reference", sa.String(length=100), nullable=True),
        sa.Column("authorization_url", sa.Text(), nullable=True),
        sa.Column("amount_minor", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("channel", sa.String(length=30), nullable=True),
        sa.Column("gateway_status", sa.String(length=30), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_book_id", "subscriptions", ["book_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_end_date", "subscriptions", ["end_date"])
    op.create_index("ix_subscriptions_created_at", "subscriptions", ["created_at"])
    op.create_index(
        "ix_subscriptions_external_reference", "subscriptions", ["external_reference"], unique=True
    )
    op.create_index(
        "uq_subscriptions_pending_user_book",
        "subscriptions",
        ["user_id", "book_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "webhookevent",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("event_type", sa.String(length=60), nullable=False),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "provider", "event_type", "external_id", name="uq_webhookevent_provider_event_external_id"
        ),
    )
    op.create_index("ix_webhookevent_provider", "webhookevent", ["provider"])
    op.create_index("ix_webhookevent_created_at", "webhookevent", ["created_at"])


def downgrade() -> None:  # noqa: D401
    op.drop_index("ix_webhookevent_created_at", table_name="webhookevent")
    op.drop_index("ix_webhookevent_provider", table_name="webhookevent")
    op.drop_table("webhookevent")

    op.drop_index("uq_subscriptions_pending_user_book", table_name="subscriptions")
    op.drop_index("ix_subscriptions_external_reference", table_name="subscriptions")
    op.drop_index("ix_subscriptions_created_at", table_name="subscriptions")
    op.drop_index("ix_subscriptions_end_date", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_book_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    SUBSCRIPTION_STATUS.drop(op.get_bind(), checkfirst=True)
