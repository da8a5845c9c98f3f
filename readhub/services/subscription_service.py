"""Subscription lifecycle: creation, payment initialization, reconciliation, renewal.

State machine::

    pending ──success──▶ active ──end_date passed──▶ expired
       └──abandoned/failed──▶ failed

Creation and payment initialization are separate calls so a retried
initialization never produces a second subscription. Reconciliation is
driven by either the Paystack webhook or a user polling ``verify``; both go
through the store's compare-and-set, so redeliveries and races are no-ops.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from readhub import metrics
from readhub.core.config import BaseAppSettings
from readhub.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from readhub.models.ids import parse_identifier
from readhub.models.subscription_models import Subscription, SubscriptionStatus, utcnow
from readhub.services.payment_gateway import MOBILE_MONEY_CHANNEL, PaystackGateway
from readhub.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


class ReconcileSource(str, enum.Enum):
    WEBHOOK = "webhook"
    POLL = "poll"
    SWEEP = "sweep"


@dataclass(frozen=True)
class PaymentDetails:
    mobile_number: str
    service_provider: str
    account_name: str


@dataclass(frozen=True)
class PaymentSession:
    subscription: Subscription
    reference: str
    authorization_url: str | None
    instructions: str | None
    amount_minor: int
    currency: str
    reused: bool = False


@dataclass(frozen=True)
class ReconcileResult:
    subscription: Subscription
    gateway_status: str
    changed: bool


def to_minor_units(price: Decimal) -> int:
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_reference(subscription_id: str) -> str:
    timestamp = int(time.time() * 1000)
    return f"SUB-{subscription_id.replace('-', '')}-{timestamp}"


class SubscriptionService:
    """Owns every status change of a ``Subscription``."""

    def __init__(self, db: Session, gateway: PaystackGateway, settings: BaseAppSettings):
        self.db = db
        self.store = SubscriptionStore(db)
        self.gateway = gateway
        self.settings = settings

    # ==================== CREATION ====================

    def create_subscription(
        self,
        user_id: str,
        book_id: str,
        plan: str,
        price: Decimal | int | float | str,
        duration: int,
        payment: PaymentDetails,
    ) -> tuple[Subscription, bool]:
        """Create a pending subscription, or return the existing one for this user and book.

        Returns ``(subscription, created)``.
        """
        user_id = parse_identifier(user_id, "user_id")
        book_id = parse_identifier(book_id, "book_id")

        existing = self.store.find_pending_for_user_book(user_id, book_id)
        if existing:
            logger.info("Reusing pending subscription %s for user %s book %s", existing.id, user_id, book_id)
            return existing, False

        try:
            subscription = self.store.create(
                user_id=user_id,
                book_id=book_id,
                plan=plan,
                price=price,
                duration=duration,
                mobile_number=payment.mobile_number,
                service_provider=payment.service_provider,
                account_name=payment.account_name,
            )
        except IntegrityError:
            # A concurrent request created the pending row first
            self.db.rollback()
            existing = self.store.find_pending_for_user_book(user_id, book_id)
            if existing:
                return existing, False
            raise

        metrics.subscription_created(subscription.plan)
        return subscription, True

    # ==================== PAYMENT ====================

    def initialize_payment(
        self,
        subscription_id: str,
        requesting_user_id: str,
        email: str,
        amount_minor: int | None = None,
    ) -> PaymentSession:
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required", field="email")

        subscription = self.store.get(parse_identifier(subscription_id, "subscription_id"))
        if subscription.user_id != requesting_user_id:
            raise ForbiddenError()
        if subscription.status != SubscriptionStatus.PENDING:
            raise InvalidStateError(
                "Payment can only be initialized for a pending subscription",
                current_status=subscription.status.value,
            )

        expected_amount = to_minor_units(subscription.price)
        if amount_minor is not None and amount_minor != expected_amount:
            raise ValidationError(
                "amount does not match the subscription price",
                field="amount",
                details={"expected_minor_units": expected_amount},
            )

        if subscription.external_reference:
            logger.info(
                "Subscription %s already has payment %s; returning it",
                subscription.id,
                subscription.external_reference,
            )
            return PaymentSession(
                subscription=subscription,
                reference=subscription.external_reference,
                authorization_url=subscription.authorization_url,
                instructions=None,
                amount_minor=subscription.amount_minor or expected_amount,
                currency=subscription.currency or self.settings.PAYMENT_CURRENCY,
                reused=True,
            )

        open_payment = self.store.find_open_payment_for_user(requesting_user_id)
        if open_payment and open_payment.id != subscription.id:
            raise InvalidStateError(
                "Another subscription payment is still in progress; verify it before starting a new one",
                current_status=open_payment.status.value,
            )

        currency = self.settings.PAYMENT_CURRENCY
        metadata: dict[str, Any] = {
            "subscription_id": subscription.id,
            "user_id": subscription.user_id,
            "book_id": subscription.book_id,
            "plan": subscription.plan,
            "mobile_number": subscription.mobile_number,
            "service_provider": subscription.service_provider,
            "account_name": subscription.account_name,
        }
        # GatewayError propagates; the subscription stays pending and retryable
        initialization = self.gateway.initialize(
            email=email,
            amount_minor=expected_amount,
            currency=currency,
            metadata=metadata,
            reference=build_reference(subscription.id),
        )

        subscription = self.store.attach_payment(
            subscription.id,
            external_reference=initialization.reference,
            authorization_url=initialization.authorization_url,
            amount_minor=expected_amount,
            currency=currency,
            channel=MOBILE_MONEY_CHANNEL,
        )
        metrics.subscription_payment_initiated(subscription.plan)
        logger.info(
            "Initialized payment %s for subscription %s (%s %s)",
            initialization.reference,
            subscription.id,
            expected_amount,
            currency,
        )
        return PaymentSession(
            subscription=subscription,
            reference=initialization.reference,
            authorization_url=initialization.authorization_url,
            instructions=initialization.instructions,
            amount_minor=expected_amount,
            currency=currency,
        )

    # ==================== RECONCILIATION ====================

    def reconcile(
        self,
        external_reference: str,
        source: ReconcileSource | str,
        requesting_user_id: str | None = None,
    ) -> ReconcileResult:
        """Map the gateway's verified status onto a subscription transition."""
        source = ReconcileSource(source)
        subscription = self.store.find_by_reference(external_reference)
        if not subscription:
            raise NotFoundError("Payment", external_reference)
        if source == ReconcileSource.POLL and subscription.user_id != requesting_user_id:
            raise ForbiddenError("Payment reference does not belong to you")

        verification = self.gateway.verify(external_reference)
        self.store.record_gateway_status(subscription.id, verification.gateway_status)

        if subscription.status == SubscriptionStatus.EXPIRED:
            # entitlement already ran its course; nothing left to reconcile
            return ReconcileResult(self.store.get(subscription.id), verification.status, False)

        if verification.status == "success":
            self._check_paid_amount(subscription, verification.amount_minor, verification.currency)
            try:
                update = self.store.update_status(subscription.id, SubscriptionStatus.ACTIVE, paid_at=utcnow())
            except InvalidTransitionError:
                logger.error(
                    "Payment %s succeeded at gateway but subscription %s can no longer be activated",
                    external_reference,
                    subscription.id,
                )
                raise
            if update.applied:
                metrics.subscription_payment_success(subscription.plan, source.value)
            return ReconcileResult(update.subscription, verification.status, update.applied)

        if verification.status in ("abandoned", "failed"):
            update = self.store.update_status(subscription.id, SubscriptionStatus.FAILED)
            if update.applied:
                metrics.subscription_payment_failed(subscription.plan, reason=verification.status)
            return ReconcileResult(update.subscription, verification.status, update.applied)

        logger.info("Payment %s still pending at gateway (%s)", external_reference, verification.gateway_status)
        return ReconcileResult(self.store.get(subscription.id), verification.status, False)

    def _check_paid_amount(self, subscription: Subscription, amount_minor: int | None, currency: str | None) -> None:
        amount_mismatch = (
            subscription.amount_minor is not None
            and amount_minor is not None
            and amount_minor != subscription.amount_minor
        )
        currency_mismatch = bool(subscription.currency and currency and currency.upper() != subscription.currency.upper())
        if amount_mismatch or currency_mismatch:
            logger.error(
                "Payment %s amount mismatch: expected %s %s, gateway reported %s %s",
                subscription.external_reference,
                subscription.amount_minor,
                subscription.currency,
                amount_minor,
                currency,
            )
            raise InvalidStateError(
                "Verified payment amount does not match the subscription",
                current_status=subscription.status.value,
            )

    # ==================== RENEWAL ====================

    def renew_subscription(self, subscription_id: str, requesting_user_id: str) -> Subscription:
        subscription = self.store.renew(
            parse_identifier(subscription_id, "subscription_id"),
            requesting_user_id,
            require_status=SubscriptionStatus.ACTIVE,
        )
        metrics.subscription_renewed(subscription.plan)
        return subscription

    # ==================== QUERIES ====================

    def get_subscription(self, subscription_id: str, requesting_user_id: str) -> Subscription:
        subscription = self.store.get(parse_identifier(subscription_id, "subscription_id"))
        if subscription.user_id != requesting_user_id:
            raise ForbiddenError()
        return subscription

    def list_for_user(self, user_id: str) -> list[Subscription]:
        return self.store.find_by_user(user_id)

    def get_for_book(self, user_id: str, book_id: str) -> Subscription:
        subscription = self.store.find_for_book(user_id, parse_identifier(book_id, "book_id"))
        if not subscription:
            raise NotFoundError("Subscription")
        return subscription
