"""Initialize subscription payment endpoint."""
from fastapi import APIRouter

from readhub.api.dependencies import CurrentUserDep, SubscriptionServiceDep

from .schemas import PaymentInitIn, PaymentInitOut

router = APIRouter()


@router.post("/pay", response_model=PaymentInitOut)
def initialize_subscription_payment(
    body: PaymentInitIn,
    current_user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
):
    """
    Start a mobile money payment for a pending subscription.

    **Flow:**
    1. Client creates the subscription (POST /subscriptions)
    2. This endpoint opens a Paystack transaction (mobile money channel)
    3. User approves the charge on their phone / checkout page
    4. Webhook (or GET /subscriptions/verify/{reference}) activates the subscription

    Calling it again for the same subscription returns the payment already
    opened instead of charging twice. A gateway failure answers 502 and
    leaves the subscription pending, so the call can simply be retried.
    """
    session = service.initialize_payment(
        subscription_id=body.subscription_id,
        requesting_user_id=current_user_id,
        email=body.email,
        amount_minor=body.amount,
    )
    message = "Payment already initialized" if session.reused else "Payment initialized"
    return PaymentInitOut(
        subscription_id=session.subscription.id,
        reference=session.reference,
        authorization_url=session.authorization_url,
        instructions=session.instructions,
        amount=session.amount_minor,
        currency=session.currency,
        message=message,
    )
