"""Request and response schemas for subscription endpoints.

Request bodies accept the camelCase field names mobile clients send
(``bookId``, ``mobileNumber``) as well as snake_case. Responses never
expose the raw gateway status or Paystack metadata.
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ── Requests ──────────────────────────────────────────────────────────

class SubscriptionCreateIn(_CamelRequest):
    book_id: str
    plan: str
    price: Decimal
    duration: int
    mobile_number: str
    service_provider: str
    account_name: str


class PaymentInitIn(_CamelRequest):
    subscription_id: str
    email: str
    amount: int | None = None
    """Optional amount in minor units; must equal price × 100 when given"""


class RenewIn(_CamelRequest):
    subscription_id: str


# ── Responses ─────────────────────────────────────────────────────────

class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    book_id: str
    plan: str
    price: Decimal
    duration: int
    start_date: dt.datetime
    end_date: dt.datetime
    renewal_count: int
    mobile_number: str
    service_provider: str
    account_name: str
    status: str
    paid_at: dt.datetime | None = None
    activated_at: dt.datetime | None = None
    external_reference: str | None = None
    authorization_url: str | None = None
    amount_minor: int | None = None
    currency: str | None = None
    created_at: dt.datetime

    @field_validator("status", mode="before")
    @classmethod
    def _status_value(cls, value):
        return getattr(value, "value", value)

    @field_validator("start_date", "end_date", "paid_at", "activated_at", "created_at")
    @classmethod
    def _assume_utc(cls, value: dt.datetime | None) -> dt.datetime | None:
        # SQLite hands back naive datetimes; everything is stored in UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value


class PaymentInitOut(BaseModel):
    subscription_id: str
    reference: str
    authorization_url: str | None = None
    instructions: str | None = None
    amount: int
    currency: str
    message: str


class PaymentVerifyOut(BaseModel):
    success: bool
    message: str
    status: str
    reference: str
