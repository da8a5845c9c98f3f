"""Create and read subscriptions."""
import logging

from fastapi import APIRouter, Response, status

from readhub.api.dependencies import CurrentUserDep, SubscriptionServiceDep
from readhub.services.subscription_service import PaymentDetails

from .schemas import SubscriptionCreateIn, SubscriptionOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=SubscriptionOut, status_code=status.HTTP_201_CREATED)
def create_subscription(
    body: SubscriptionCreateIn,
    response: Response,
    current_user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
):
    """
    Create a pending subscription for a book.

    Returns 201 with the new subscription, or 200 with the user's existing
    pending subscription for the same book so a retried request never
    produces a second row (and never a second charge).
    """
    subscription, created = service.create_subscription(
        user_id=current_user_id,
        book_id=body.book_id,
        plan=body.plan,
        price=body.price,
        duration=body.duration,
        payment=PaymentDetails(
            mobile_number=body.mobile_number,
            service_provider=body.service_provider,
            account_name=body.account_name,
        ),
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return subscription


@router.get("", response_model=list[SubscriptionOut])
def list_subscriptions(current_user_id: CurrentUserDep, service: SubscriptionServiceDep):
    return service.list_for_user(current_user_id)


@router.get("/book/{book_id}", response_model=SubscriptionOut)
def get_book_subscription(book_id: str, current_user_id: CurrentUserDep, service: SubscriptionServiceDep):
    """Latest subscription the caller holds for ``book_id``."""
    return service.get_for_book(current_user_id, book_id)


@router.get("/{subscription_id}", response_model=SubscriptionOut)
def get_subscription(subscription_id: str, current_user_id: CurrentUserDep, service: SubscriptionServiceDep):
    return service.get_subscription(subscription_id, current_user_id)
