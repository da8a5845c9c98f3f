"""Persistence operations for subscriptions.

Every status-changing write is a conditional UPDATE (``WHERE status IN
(...)``) whose rowcount decides the outcome, so a webhook and a manual verify
racing on the same subscription apply the transition at most once.
"""
from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from readhub.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from readhub.models.ids import parse_identifier
from readhub.models.subscription_models import (
    ALLOWED_TRANSITIONS,
    Subscription,
    SubscriptionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_RENEW_ATTEMPTS = 3

# A hundred years; also keeps end_date well inside datetime range
MAX_DURATION_DAYS = 36_500
# Fits the Numeric(10, 2) column
MAX_PRICE = Decimal("100000000")


class StatusUpdate(NamedTuple):
    subscription: Subscription
    applied: bool


def _require_text(value: object, field: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def _require_price(value: object) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("price is required", field="price")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("price must be a number", field="price") from exc
    if not price.is_finite() or price <= 0:
        raise ValidationError("price must be positive", field="price")
    if price >= MAX_PRICE:
        raise ValidationError(f"price must be below {MAX_PRICE}", field="price")
    if price != price.quantize(Decimal("0.01")):
        raise ValidationError("price cannot have more than two decimal places", field="price")
    return price.quantize(Decimal("0.01"))


def _require_duration(value: object) -> int:
    if value is None:
        raise ValidationError("duration is required", field="duration")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("duration must be a whole number of days", field="duration")
    if value <= 0:
        raise ValidationError("duration must be greater than zero", field="duration")
    if value > MAX_DURATION_DAYS:
        raise ValidationError(f"duration cannot exceed {MAX_DURATION_DAYS} days", field="duration")
    return value


class SubscriptionStore:
    """Owns reads and guarded writes of ``Subscription`` rows."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== CREATE ====================

    def create(
        self,
        *,
        user_id: str,
        book_id: str,
        plan: str,
        price: Decimal | int | float | str,
        duration: int,
        mobile_number: str,
        service_provider: str,
        account_name: str,
        now: dt.datetime | None = None,
    ) -> Subscription:
        user_id = parse_identifier(user_id, "user_id")
        book_id = parse_identifier(book_id, "book_id")
        plan = _require_text(plan, "plan")
        price = _require_price(price)
        duration = _require_duration(duration)
        mobile_number = _require_text(mobile_number, "mobile_number")
        service_provider = _require_text(service_provider, "service_provider")
        account_name = _require_text(account_name, "account_name")

        start = now or utcnow()
        subscription = Subscription(
            user_id=user_id,
            book_id=book_id,
            plan=plan,
            price=price,
            duration=duration,
            start_date=start,
            end_date=start + dt.timedelta(days=duration),
            renewal_count=0,
            mobile_number=mobile_number,
            service_provider=service_provider,
            account_name=account_name,
            status=SubscriptionStatus.PENDING,
            created_at=start,
            updated_at=start,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info("Created pending subscription %s for user %s book %s", subscription.id, user_id, book_id)
        return subscription

    # ==================== QUERIES ====================

    def find_by_id(self, subscription_id: str) -> Subscription | None:
        return self.db.get(Subscription, subscription_id, populate_existing=True)

    def get(self, subscription_id: str) -> Subscription:
        subscription = self.find_by_id(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    def find_by_user(self, user_id: str) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def find_by_reference(self, external_reference: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.external_reference == external_reference)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_for_book(self, user_id: str, book_id: str) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.book_id == book_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def find_pending_for_user(self, user_id: str) -> Subscription | None:
        """Return the user's pending subscription, newest first if several exist."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.PENDING)
            .order_by(Subscription.created_at.desc())
        )
        pending = list(self.db.execute(stmt).scalars())
        if len(pending) > 1:
            logger.warning(
                "User %s has %d pending subscriptions; using newest %s",
                user_id,
                len(pending),
                pending[0].id,
            )
        return pending[0] if pending else None

    def find_pending_for_user_book(self, user_id: str, book_id: str) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.book_id == book_id,
                Subscription.status == SubscriptionStatus.PENDING,
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def find_open_payment_for_user(self, user_id: str) -> Subscription | None:
        """The user's pending subscription that already holds a gateway reference, if any."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.PENDING,
                Subscription.external_reference.is_not(None),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def find_stale_pending(self, older_than: dt.datetime, limit: int = 100) -> list[Subscription]:
        """Pending subscriptions with an open payment intent untouched since ``older_than``."""
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.PENDING,
                Subscription.external_reference.is_not(None),
                Subscription.updated_at <= older_than,
            )
            .order_by(Subscription.updated_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    # ==================== GUARDED WRITES ====================

    def update_status(
        self,
        subscription_id: str,
        new_status: SubscriptionStatus,
        paid_at: dt.datetime | None = None,
    ) -> StatusUpdate:
        """Apply a transition from the allowed table as a compare-and-set.

        A repeated request for the status the row already holds is a no-op
        (``applied=False``); anything else outside the table raises
        ``InvalidTransitionError``.
        """
        new_status = SubscriptionStatus(new_status)
        allowed_from = ALLOWED_TRANSITIONS.get(new_status)
        if not allowed_from:
            current = self.get(subscription_id)
            if current.status == new_status:
                return StatusUpdate(current, False)
            raise InvalidTransitionError(current.status.value, new_status.value)

        now = utcnow()
        values: dict[str, object] = {"status": new_status, "updated_at": now}
        if new_status == SubscriptionStatus.ACTIVE:
            values["paid_at"] = paid_at or now
            values["activated_at"] = values["paid_at"]
        else:
            # paid_at only ever describes a currently active entitlement
            values["paid_at"] = None

        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id, Subscription.status.in_(sorted(allowed_from)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()

        current = self.get(subscription_id)
        if result.rowcount == 1:
            logger.info("Subscription %s transitioned to %s", subscription_id, new_status.value)
            return StatusUpdate(current, True)
        if current.status == new_status:
            logger.info("Subscription %s already %s; transition skipped", subscription_id, new_status.value)
            return StatusUpdate(current, False)
        raise InvalidTransitionError(current.status.value, new_status.value)

    def attach_payment(
        self,
        subscription_id: str,
        *,
        external_reference: str,
        authorization_url: str | None,
        amount_minor: int,
        currency: str,
        channel: str,
    ) -> Subscription:
        """Store the gateway's payment intent on a still-pending subscription."""
        stmt = (
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.status == SubscriptionStatus.PENDING,
                Subscription.external_reference.is_(None),
            )
            .values(
                external_reference=external_reference,
                authorization_url=authorization_url,
                amount_minor=amount_minor,
                currency=currency,
                channel=channel,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()

        current = self.get(subscription_id)
        if result.rowcount != 1:
            if current.external_reference == external_reference:
                return current
            raise InvalidStateError(
                "Subscription already has a payment in progress or is no longer pending",
                current_status=current.status.value,
            )
        return current

    def record_gateway_status(self, subscription_id: str, gateway_status: str) -> None:
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(gateway_status=gateway_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        self.db.commit()

    def renew(
        self,
        subscription_id: str,
        requesting_user_id: str,
        require_status: SubscriptionStatus | None = None,
    ) -> Subscription:
        """Extend ``end_date`` by one ``duration``; status is left untouched.

        Guarded on ``renewal_count`` so concurrent renewals each extend the
        entitlement exactly once.
        """
        for _ in range(_RENEW_ATTEMPTS):
            current = self.get(subscription_id)
            if current.user_id != requesting_user_id:
                raise ForbiddenError()
            if require_status is not None and current.status != require_status:
                raise InvalidStateError(
                    f"Only {require_status.value} subscriptions can be renewed",
                    current_status=current.status.value,
                )

            conditions = [
                Subscription.id == subscription_id,
                Subscription.renewal_count == current.renewal_count,
            ]
            if require_status is not None:
                conditions.append(Subscription.status == require_status)
            try:
                new_end_date = current.end_date + dt.timedelta(days=current.duration)
            except OverflowError as exc:
                raise ValidationError("Subscription cannot be renewed any further", field="duration") from exc
            stmt = (
                update(Subscription)
                .where(*conditions)
                .values(
                    end_date=new_end_date,
                    renewal_count=current.renewal_count + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            self.db.commit()
            if result.rowcount == 1:
                renewed = self.get(subscription_id)
                logger.info("Renewed subscription %s until %s", subscription_id, renewed.end_date)
                return renewed
            logger.info("Renewal of %s lost a race; retrying", subscription_id)

        raise InvalidStateError("Subscription is being modified concurrently; try again")

    def expire_due(self, now: dt.datetime | None = None) -> int:
        """Move every active subscription whose end date has passed to expired."""
        cutoff = now or utcnow()
        stmt = (
            update(Subscription)
            .where(Subscription.status == SubscriptionStatus.ACTIVE, Subscription.end_date <= cutoff)
            .values(status=SubscriptionStatus.EXPIRED, paid_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount or 0
