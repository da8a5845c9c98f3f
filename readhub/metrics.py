"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can
change without touching call sites.
"""

from __future__ import annotations

from prometheus_client import Counter

_SUBSCRIPTION_CREATED = Counter("subscription_created_total", "Subscriptions created", ["plan"])
_SUBSCRIPTION_PAYMENT_INITIATED = Counter(
    "subscription_payment_initiated_total", "Subscription payment initiations", ["plan"]
)
_SUBSCRIPTION_PAYMENT_SUCCESS = Counter(
    "subscription_payment_success_total", "Successful subscription payments", ["plan", "source"]
)
_SUBSCRIPTION_PAYMENT_FAILED = Counter(
    "subscription_payment_failed_total", "Failed subscription payments", ["plan", "reason"]
)
_SUBSCRIPTION_RENEWED = Counter("subscription_renewed_total", "Subscription renewals", ["plan"])
_SUBSCRIPTION_EXPIRED = Counter("subscription_expired_total", "Subscriptions expired by the sweep")
_WEBHOOK_RECEIVED = Counter("webhook_received_total", "Signature-verified webhooks", ["event"])
_WEBHOOK_REJECTED = Counter("webhook_rejected_total", "Webhooks rejected before processing", ["reason"])
_WEBHOOK_RECONCILE_FAILED = Counter(
    "webhook_reconcile_failed_total", "Verified webhooks whose reconciliation raised"
)
_GATEWAY_ERRORS = Counter("gateway_error_total", "Payment gateway call failures", ["operation"])


def subscription_created(plan: str):
    _SUBSCRIPTION_CREATED.labels(plan=plan).inc()


def subscription_payment_initiated(plan: str):
    """Record subscription payment initiation."""
    _SUBSCRIPTION_PAYMENT_INITIATED.labels(plan=plan).inc()


def subscription_payment_success(plan: str, source: str):
    """Record a pending → active transition."""
    _SUBSCRIPTION_PAYMENT_SUCCESS.labels(plan=plan, source=source).inc()


def subscription_payment_failed(plan: str, reason: str = "unknown"):
    """Record a pending → failed transition."""
    _SUBSCRIPTION_PAYMENT_FAILED.labels(plan=plan, reason=reason).inc()


def subscription_renewed(plan: str):
    _SUBSCRIPTION_RENEWED.labels(plan=plan).inc()


def subscription_expired(count: int = 1):
    if count:
        _SUBSCRIPTION_EXPIRED.inc(count)


def webhook_received(event: str):
    _WEBHOOK_RECEIVED.labels(event=event or "unknown").inc()


def webhook_rejected(reason: str):
    _WEBHOOK_REJECTED.labels(reason=reason).inc()


def webhook_reconcile_failed():
    _WEBHOOK_RECONCILE_FAILED.inc()


def gateway_error(operation: str):
    _GATEWAY_ERRORS.labels(operation=operation).inc()


__all__ = [
    "subscription_created",
    "subscription_payment_initiated",
    "subscription_payment_success",
    "subscription_payment_failed",
    "subscription_renewed",
    "subscription_expired",
    "webhook_received",
    "webhook_rejected",
    "webhook_reconcile_failed",
    "gateway_error",
]
