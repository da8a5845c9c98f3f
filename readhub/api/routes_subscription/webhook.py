"""Paystack webhook endpoint."""
from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from readhub.api.dependencies import SettingsDep, WebhookIngestionDep
from readhub.api.rate_limit import RATE_LIMITS, limiter

router = APIRouter()


@router.post("/webhook")
@limiter.limit(RATE_LIMITS["webhook_paystack"])
async def paystack_webhook(request: Request, settings: SettingsDep, ingestion: WebhookIngestionDep):
    """
    Receive Paystack charge events.

    The signature is computed over the untouched request bytes; the body is
    only parsed afterwards. Invalid or missing signatures answer 401, every
    verified delivery answers 200.
    """
    raw_body = await request.body()
    signature = request.headers.get(settings.WEBHOOK_SIGNATURE_HEADER)
    return await run_in_threadpool(ingestion.handle, raw_body, signature)
