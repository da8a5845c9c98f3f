"""Verify subscription payment endpoint."""
from fastapi import APIRouter

from readhub.api.dependencies import CurrentUserDep, SubscriptionServiceDep
from readhub.models.subscription_models import SubscriptionStatus
from readhub.services.subscription_service import ReconcileSource

from .schemas import PaymentVerifyOut

router = APIRouter()

_MESSAGES = {
    SubscriptionStatus.ACTIVE: "Payment verified. Subscription is active.",
    SubscriptionStatus.FAILED: "Payment was not completed. Subscription failed.",
    SubscriptionStatus.PENDING: "Payment not completed yet",
    SubscriptionStatus.EXPIRED: "Subscription has expired",
}


@router.get("/verify/{reference}", response_model=PaymentVerifyOut)
def verify_subscription_payment(
    reference: str,
    current_user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
):
    """
    Poll Paystack for a payment and reconcile the subscription.

    Called by the client after the user approves the mobile money prompt;
    safe to call repeatedly and alongside the webhook.
    """
    result = service.reconcile(reference, ReconcileSource.POLL, requesting_user_id=current_user_id)
    subscription_status = result.subscription.status
    return PaymentVerifyOut(
        success=subscription_status == SubscriptionStatus.ACTIVE,
        message=_MESSAGES[subscription_status],
        status=subscription_status.value,
        reference=reference,
    )
