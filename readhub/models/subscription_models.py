"""Subscription and webhook dedup models."""
from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, Integer, Numeric, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from readhub.db.base_class import Base
from readhub.models.ids import new_identifier


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SubscriptionStatus(str, enum.Enum):
    """Subscription entitlement status."""
    PENDING = "pending"   # Created, awaiting payment confirmation
    ACTIVE = "active"     # Payment verified by the gateway
    FAILED = "failed"     # Payment abandoned or declined
    EXPIRED = "expired"   # End date passed


# new status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.PENDING}),
    SubscriptionStatus.FAILED: frozenset({SubscriptionStatus.PENDING}),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE}),
}


class Subscription(Base):
    """
    A user's time-boxed entitlement to a book.

    The payment intent (gateway reference, checkout URL, amount in minor
    units) lives inline on the row; a subscription has at most one.

    Flow:
    1. User creates subscription → status=PENDING
    2. Payment initialized → external_reference stored, still PENDING
    3. Webhook or poll verifies with Paystack → ACTIVE (paid_at set) or FAILED
    4. Sweep moves ACTIVE past end_date → EXPIRED (paid_at cleared, activated_at kept)
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        # one pending subscription per (user, book)
        Index(
            "uq_subscriptions_pending_user_book",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_identifier)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    plan: Mapped[str] = mapped_column(String(40), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    """Price in major currency units"""
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    """Entitlement length in days"""

    start_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    # Mobile money payer details
    mobile_number: Mapped[str] = mapped_column(String(32), nullable=False)
    service_provider: Mapped[str] = mapped_column(String(40), nullable=False)
    account_name: Mapped[str] = mapped_column(String(120), nullable=False)

    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=SubscriptionStatus.PENDING,
        nullable=False,
        index=True,
    )
    paid_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    """Set while active; cleared when the subscription fails or expires"""
    activated_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    """When payment was first confirmed; kept for audit after expiry"""

    # Payment intent
    external_reference: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True, index=True)
    authorization_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_minor: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Amount charged in minor units (pesewas/kobo)"""
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    channel: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    gateway_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    """Raw status string last reported by Paystack"""

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} user_id={self.user_id} status={self.status.value}>"


class WebhookEvent(Base):
    __table_args__ = (
        UniqueConstraint(
            "provider", "event_type", "external_id", name="uq_webhookevent_provider_event_external_id"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    provider: Mapped[str] = mapped_column(String(40), index=True)
    event_type: Mapped[str] = mapped_column(String(60))
    external_id: Mapped[str] = mapped_column(String(120))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
