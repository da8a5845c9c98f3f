from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from readhub import metrics
from readhub.core.config import BaseAppSettings
from readhub.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

MOBILE_MONEY_CHANNEL = "mobile_money"

# Paystack transaction status -> normalized status
_STATUS_MAP = {
    "success": "success",
    "abandoned": "abandoned",
    "failed": "failed",
    "reversed": "failed",
}


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 hex digest Paystack sends in the webhook signature header."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


def normalize_status(raw_status: str | None) -> str:
    """Collapse Paystack statuses onto success/abandoned/failed/pending."""
    return _STATUS_MAP.get((raw_status or "").lower(), "pending")


@dataclass(frozen=True)
class PaymentInitialization:
    reference: str
    authorization_url: str | None = None
    access_code: str | None = None
    instructions: str | None = None


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str
    gateway_status: str
    amount_minor: int | None = None
    currency: str | None = None
    channel: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaystackGateway:
    """Thin adapter over Paystack's transaction API.

    Never persists anything. Every call has a bounded timeout and any
    transport failure, non-2xx answer or ``status: false`` body surfaces as
    ``GatewayError``. Calls are not retried here: initialization is not
    idempotent upstream, so retry decisions belong to the caller.
    """

    name = "paystack"

    def __init__(
        self,
        secret: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        callback_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not secret:
            raise ValueError("Paystack secret key is required")
        self.secret = secret
        self.callback_url = callback_url
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret}"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: BaseAppSettings, transport: httpx.BaseTransport | None = None) -> PaystackGateway:
        return cls(
            secret=settings.PAYSTACK_SECRET or "",
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
            callback_url=settings.PAYMENT_CALLBACK_URL,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def initialize(
        self,
        email: str,
        amount_minor: int,
        currency: str,
        metadata: dict[str, Any],
        reference: str | None = None,
    ) -> PaymentInitialization:
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "channels": [MOBILE_MONEY_CHANNEL],
            "metadata": metadata,
        }
        if reference:
            payload["reference"] = reference
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        data = self._request("initialize", "POST", "/transaction/initialize", reference, json=payload)
        returned_reference = data.get("reference") or reference
        if not returned_reference:
            metrics.gateway_error("initialize")
            raise GatewayError("Payment provider did not return a reference")
        logger.info("Initialized Paystack transaction %s (%s %s)", returned_reference, amount_minor, currency)
        return PaymentInitialization(
            reference=returned_reference,
            authorization_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
            instructions=data.get("display_text"),
        )

    def verify(self, reference: str) -> PaymentVerification:
        data = self._request("verify", "GET", f"/transaction/verify/{quote(reference, safe='')}", reference)
        raw_status = str(data.get("status") or "")
        amount = data.get("amount")
        return PaymentVerification(
            reference=data.get("reference") or reference,
            status=normalize_status(raw_status),
            gateway_status=raw_status,
            amount_minor=int(amount) if amount is not None else None,
            currency=data.get("currency"),
            channel=data.get("channel"),
            raw=data,
        )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(compute_signature(raw_body, self.secret), signature)

    def _request(self, operation: str, method: str, path: str, reference: str | None, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            metrics.gateway_error(operation)
            logger.error("Paystack %s timed out (ref=%s)", operation, reference)
            raise GatewayError("Payment provider timed out", reference=reference) from exc
        except httpx.HTTPError as exc:
            metrics.gateway_error(operation)
            logger.error("Paystack %s request error (ref=%s): %s", operation, reference, exc)
            raise GatewayError("Payment provider unavailable", reference=reference) from exc

        if not response.is_success:
            metrics.gateway_error(operation)
            logger.error("Paystack %s failed with HTTP %s (ref=%s)", operation, response.status_code, reference)
            raise GatewayError(
                f"Payment provider rejected {operation} request",
                upstream_status=response.status_code,
                reference=reference,
            )

        try:
            body = response.json()
        except ValueError as exc:
            metrics.gateway_error(operation)
            raise GatewayError("Payment provider returned an unreadable response", reference=reference) from exc

        if not body.get("status"):
            metrics.gateway_error(operation)
            raise GatewayError(body.get("message") or f"Payment {operation} failed", reference=reference)
        return body.get("data") or {}
