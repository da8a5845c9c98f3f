from __future__ import annotations

import os

os.environ["APP_ENV"] = "test"

from dataclasses import dataclass, field  # noqa: E402
from typing import Any  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from readhub.api.main import create_app  # noqa: E402
from readhub.api.rate_limit import limiter  # noqa: E402
from readhub.core.config import TestSettings  # noqa: E402
from readhub.core.exceptions import GatewayError  # noqa: E402
from readhub.core.security import create_access_token  # noqa: E402
from readhub.db import session as db_session  # noqa: E402
from readhub.db.base_class import Base  # noqa: E402
from readhub.db.session import SessionLocal  # noqa: E402
from readhub.models import subscription_models  # noqa: E402,F401
from readhub.services.payment_gateway import (  # noqa: E402
    PaymentInitialization,
    PaymentVerification,
    compute_signature,
    normalize_status,
)
from readhub.services.subscription_service import PaymentDetails  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

test_engine = create_engine(
    TEST_DATABASE_URL,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
db_session.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@dataclass
class FakeGateway:
    """In-memory stand-in for ``PaystackGateway``.

    ``statuses`` maps a reference to the raw Paystack status ``verify`` should
    report; unknown references verify as ``ongoing`` (still pending).
    """

    secret: str = "test-paystack-secret"
    statuses: dict[str, str] = field(default_factory=dict)
    amounts: dict[str, int] = field(default_factory=dict)
    currency: str = "GHS"
    fail_initialize: bool = False
    fail_verify: bool = False
    initialized: list[dict[str, Any]] = field(default_factory=list)
    verified: list[str] = field(default_factory=list)
    closed: bool = False

    def initialize(self, email, amount_minor, currency, metadata, reference=None):
        if self.fail_initialize:
            raise GatewayError("Payment provider timed out", reference=reference)
        reference = reference or f"ref-{uuid4().hex[:12]}"
        self.initialized.append(
            {"email": email, "amount": amount_minor, "currency": currency, "metadata": metadata, "reference": reference}
        )
        self.amounts.setdefault(reference, amount_minor)
        return PaymentInitialization(
            reference=reference,
            authorization_url=f"https://checkout.paystack.test/{reference}",
            access_code="ac_test",
            instructions="Approve the prompt on your phone",
        )

    def verify(self, reference):
        self.verified.append(reference)
        if self.fail_verify:
            raise GatewayError("Payment provider unavailable", reference=reference)
        raw_status = self.statuses.get(reference, "ongoing")
        return PaymentVerification(
            reference=reference,
            status=normalize_status(raw_status),
            gateway_status=raw_status,
            amount_minor=self.amounts.get(reference),
            currency=self.currency,
            channel="mobile_money",
        )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        return bool(signature) and compute_signature(raw_body, self.secret) == signature

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Ensure each test sees a fresh database schema."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def settings() -> TestSettings:
    return TestSettings()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(settings, gateway):
    return create_app(settings=settings, gateway=gateway)


@pytest.fixture
def client(app):
    """Provide a FastAPI TestClient bound to a freshly built application."""
    return TestClient(app)


@pytest.fixture
def user_id() -> str:
    return str(uuid4())


@pytest.fixture
def book_id() -> str:
    return str(uuid4())


@pytest.fixture
def auth_headers(settings):
    def _headers(subject: str) -> dict[str, str]:
        token = create_access_token(subject, settings.JWT_SECRET)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def payment_details() -> PaymentDetails:
    return PaymentDetails(mobile_number="0241234567", service_provider="MTN", account_name="Ama Mensah")
