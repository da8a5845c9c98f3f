"""
Subscription maintenance tasks.

Sweeps that keep subscription state converging without user action:
expiry of lapsed entitlements, re-verification of payments whose webhook
never arrived, and pruning of the webhook dedup table.
"""
from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy.orm import Session

from readhub import metrics
from readhub.core.config import BaseAppSettings, get_settings
from readhub.core.exceptions import ReadHubError
from readhub.db.session import session_scope
from readhub.models.subscription_models import utcnow
from readhub.services.payment_gateway import PaystackGateway
from readhub.services.subscription_service import ReconcileSource, SubscriptionService
from readhub.services.subscription_store import SubscriptionStore
from readhub.services.webhook_service import prune_webhook_events
from readhub.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def expire_due_subscriptions(db: Session, now: dt.datetime | None = None) -> int:
    expired = SubscriptionStore(db).expire_due(now)
    metrics.subscription_expired(expired)
    if expired:
        logger.info("Expired %d subscriptions", expired)
    return expired


def reconcile_stale_pending(
    db: Session,
    gateway: PaystackGateway,
    settings: BaseAppSettings,
    now: dt.datetime | None = None,
) -> dict[str, int]:
    """Re-verify pending payments whose webhook has not shown up.

    Per-row failures are logged and counted; they never stop the sweep.
    """
    cutoff = (now or utcnow()) - dt.timedelta(minutes=settings.PENDING_RECONCILE_AFTER_MINUTES)
    service = SubscriptionService(db, gateway, settings)
    summary = {"checked": 0, "changed": 0, "errors": 0}

    for subscription in service.store.find_stale_pending(cutoff):
        summary["checked"] += 1
        try:
            result = service.reconcile(subscription.external_reference, ReconcileSource.SWEEP)
        except ReadHubError as exc:
            db.rollback()
            summary["errors"] += 1
            logger.warning(
                "Stale payment %s could not be reconciled: %s",
                subscription.external_reference,
                exc.message,
            )
            continue
        if result.changed:
            summary["changed"] += 1

    logger.info("[subscriptions.reconcile_stale_pending] %s", summary)
    return summary


@celery_app.task(name="subscriptions.expire_due")
def expire_due() -> int:
    with session_scope() as db:
        return expire_due_subscriptions(db)


@celery_app.task(name="subscriptions.reconcile_stale_pending")
def reconcile_stale_pending_task() -> dict[str, int]:
    settings = get_settings()
    gateway = PaystackGateway.from_settings(settings)
    try:
        with session_scope() as db:
            return reconcile_stale_pending(db, gateway, settings)
    finally:
        gateway.close()


@celery_app.task(name="webhooks.prune_events")
def prune_events() -> int:
    settings = get_settings()
    with session_scope() as db:
        removed = prune_webhook_events(db, settings.WEBHOOK_DEDUP_WINDOW_HOURS)
    logger.info("Pruned %d webhook dedup rows", removed)
    return removed
