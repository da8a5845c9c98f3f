"""Renew subscription endpoint."""
from fastapi import APIRouter

from readhub.api.dependencies import CurrentUserDep, SubscriptionServiceDep

from .schemas import RenewIn, SubscriptionOut

router = APIRouter()


@router.put("/renew", response_model=SubscriptionOut)
def renew_subscription(body: RenewIn, current_user_id: CurrentUserDep, service: SubscriptionServiceDep):
    """Extend an active subscription by one more ``duration``."""
    return service.renew_subscription(body.subscription_id, current_user_id)
