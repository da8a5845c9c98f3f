"""Paystack webhook ingestion.

The signature is checked over the exact raw request bytes before anything
is parsed. Once it passes, the caller always answers 200: reconciliation
failures are logged and reported, and Paystack's redelivery (or a manual
verify) converges the subscription later.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from readhub import metrics
from readhub.core.exceptions import UnauthorizedError
from readhub.core.monitoring import report_exception
from readhub.models.subscription_models import SubscriptionStatus, WebhookEvent, utcnow
from readhub.services.payment_gateway import PaystackGateway
from readhub.services.subscription_service import ReconcileSource, SubscriptionService

logger = logging.getLogger(__name__)

RECONCILE_EVENTS = frozenset({"charge.success", "charge.failed"})
_TERMINAL = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.FAILED, SubscriptionStatus.EXPIRED})


class WebhookIngestion:
    def __init__(self, db: Session, gateway: PaystackGateway, service: SubscriptionService, provider: str = "paystack"):
        self.db = db
        self.gateway = gateway
        self.service = service
        self.provider = provider

    def handle(self, raw_body: bytes, signature: str | None) -> dict[str, Any]:
        if not signature:
            metrics.webhook_rejected("missing_signature")
            logger.warning("%s webhook received without signature", self.provider)
            raise UnauthorizedError("Missing webhook signature")
        if not self.gateway.verify_signature(raw_body, signature):
            metrics.webhook_rejected("invalid_signature")
            logger.warning("%s webhook signature verification failed", self.provider)
            raise UnauthorizedError("Invalid webhook signature")

        try:
            payload = json.loads(raw_body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("Invalid %s webhook payload: %s", self.provider, exc)
            return {"status": "ignored", "reason": "invalid payload"}
        if not isinstance(payload, dict):
            return {"status": "ignored", "reason": "invalid payload"}

        event_type = str(payload.get("event") or "").lower()
        metrics.webhook_received(event_type)
        if event_type not in RECONCILE_EVENTS:
            logger.info("Ignoring %s webhook event %r", self.provider, event_type)
            return {"status": "ignored", "event": event_type}

        data = payload.get("data") or {}
        reference = data.get("reference") if isinstance(data, dict) else None
        if not reference:
            logger.error("%s webhook %s without reference", self.provider, event_type)
            return {"status": "ignored", "reason": "missing reference"}
        reference = str(reference)

        if self._already_processed(event_type, reference):
            logger.info("%s webhook duplicate for %s (%s)", self.provider, reference, event_type)
            return {"status": "duplicate", "reference": reference}

        try:
            result = self.service.reconcile(reference, ReconcileSource.WEBHOOK)
        except Exception as exc:  # noqa: BLE001 - provider must still get a 2xx
            self.db.rollback()
            metrics.webhook_reconcile_failed()
            report_exception(exc)
            logger.exception("Reconciliation failed for %s webhook %s (%s)", self.provider, reference, event_type)
            return {"status": "error", "reference": reference}

        if result.subscription.status in _TERMINAL:
            self._record(event_type, reference)

        return {
            "status": "processed",
            "reference": reference,
            "subscription_status": result.subscription.status.value,
            "changed": result.changed,
        }

    def _already_processed(self, event_type: str, reference: str) -> bool:
        stmt = select(WebhookEvent.id).where(
            WebhookEvent.provider == self.provider,
            WebhookEvent.event_type == event_type,
            WebhookEvent.external_id == reference,
        )
        return self.db.execute(stmt).first() is not None

    def _record(self, event_type: str, reference: str) -> None:
        self.db.add(WebhookEvent(provider=self.provider, event_type=event_type, external_id=reference))
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery recorded it first
            self.db.rollback()


def prune_webhook_events(db: Session, window_hours: int, now: dt.datetime | None = None) -> int:
    """Delete dedup rows older than the redelivery window."""
    cutoff = (now or utcnow()) - dt.timedelta(hours=window_hours)
    result = db.execute(delete(WebhookEvent).where(WebhookEvent.created_at < cutoff))
    db.commit()
    return result.rowcount or 0
