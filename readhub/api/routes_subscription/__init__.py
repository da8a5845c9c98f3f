"""Subscription management and Paystack mobile money payments.

Sub-modules:
- manage: create and read subscriptions
- initialize: initialize payment endpoint
- verify: poll-driven reconciliation endpoint
- renew: renewal endpoint
- webhook: Paystack webhook ingestion
"""
from fastapi import APIRouter

from .initialize import router as initialize_router
from .manage import router as manage_router
from .renew import router as renew_router
from .verify import router as verify_router
from .webhook import router as webhook_router

PREFIX = "/subscriptions"

router = APIRouter(tags=["subscriptions"])
router.include_router(initialize_router, prefix=PREFIX)
router.include_router(verify_router, prefix=PREFIX)
router.include_router(renew_router, prefix=PREFIX)
router.include_router(webhook_router, prefix=PREFIX)
router.include_router(manage_router, prefix=PREFIX)

__all__ = ["router"]
