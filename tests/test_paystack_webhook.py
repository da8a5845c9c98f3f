import json
from uuid import uuid4

from fastapi.testclient import TestClient

from readhub.db.session import SessionLocal
from readhub.models.subscription_models import SubscriptionStatus, WebhookEvent
from readhub.services.payment_gateway import compute_signature

SECRET = "test-paystack-secret"


def _pending_with_payment(client: TestClient, auth_headers) -> tuple[dict[str, str], str, str]:
    headers = auth_headers(str(uuid4()))
    created = client.post(
        "/subscriptions",
        json={
            "bookId": str(uuid4()),
            "plan": "monthly",
            "price": "25.50",
            "duration": 30,
            "mobileNumber": "0241234567",
            "serviceProvider": "MTN",
            "accountName": "Ama Mensah",
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    subscription_id = created.json()["id"]
    paid = client.post(
        "/subscriptions/pay",
        json={"subscriptionId": subscription_id, "email": "reader@example.com"},
        headers=headers,
    )
    assert paid.status_code == 200, paid.text
    return headers, subscription_id, paid.json()["reference"]


def _post(client: TestClient, event: dict, signature: str | None = "sign") -> object:
    raw = json.dumps(event).encode()
    headers = {}
    if signature == "sign":
        headers["x-paystack-signature"] = compute_signature(raw, SECRET)
    elif signature:
        headers["x-paystack-signature"] = signature
    return client.post("/subscriptions/webhook", content=raw, headers=headers)


def _status(client: TestClient, headers, subscription_id: str) -> str:
    return client.get(f"/subscriptions/{subscription_id}", headers=headers).json()["status"]


def test_charge_success_activates_subscription(client, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "success"

    result = _post(client, {"event": "charge.success", "data": {"reference": reference}})

    assert result.status_code == 200, result.text
    payload = result.json()
    assert payload["status"] == "processed"
    assert payload["subscription_status"] == "active"
    assert payload["changed"] is True
    assert _status(client, headers, subscription_id) == "active"


def test_webhook_status_comes_from_verify_not_payload(client, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    # payload claims success, gateway still reports the charge as ongoing
    result = _post(client, {"event": "charge.success", "data": {"reference": reference, "status": "success"}})

    assert result.status_code == 200
    assert result.json()["subscription_status"] == "pending"
    assert _status(client, headers, subscription_id) == "pending"


def test_charge_failed_marks_subscription_failed(client, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "failed"

    result = _post(client, {"event": "charge.failed", "data": {"reference": reference}})

    assert result.status_code == 200
    assert _status(client, headers, subscription_id) == "failed"


def test_redelivery_is_reported_as_duplicate(client, gateway, auth_headers):
    _, _, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "success"
    event = {"event": "charge.success", "data": {"reference": reference}}

    first = _post(client, event)
    second = _post(client, event)

    assert first.json()["status"] == "processed"
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "reference": reference}
    assert gateway.verified.count(reference) == 1

    session = SessionLocal()
    try:
        assert session.query(WebhookEvent).filter_by(external_id=reference).count() == 1
    finally:
        session.close()


def test_pending_delivery_is_not_recorded(client, gateway, auth_headers):
    _, _, reference = _pending_with_payment(client, auth_headers)
    event = {"event": "charge.success", "data": {"reference": reference}}

    _post(client, event)
    gateway.statuses[reference] = "success"
    again = _post(client, event)

    assert again.json()["status"] == "processed"
    assert again.json()["subscription_status"] == SubscriptionStatus.ACTIVE.value


def test_tampered_signature_is_rejected(client, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "success"
    raw = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode()
    signature = compute_signature(raw, SECRET)
    tampered = raw.replace(b"charge.success", b"charge.successs")

    result = client.post("/subscriptions/webhook", content=tampered, headers={"x-paystack-signature": signature})

    assert result.status_code == 401
    assert result.json()["error"]["code"] == "SUB101"
    assert _status(client, headers, subscription_id) == "pending"
    assert gateway.verified == []


def test_missing_signature_is_rejected(client):
    result = _post(client, {"event": "charge.success", "data": {"reference": "x"}}, signature=None)
    assert result.status_code == 401


def test_wrong_secret_is_rejected(client):
    raw = b'{"event":"charge.success","data":{"reference":"x"}}'
    result = client.post(
        "/subscriptions/webhook",
        content=raw,
        headers={"x-paystack-signature": compute_signature(raw, "other-secret")},
    )
    assert result.status_code == 401


def test_unrelated_events_are_ignored(client, gateway):
    result = _post(client, {"event": "transfer.success", "data": {"reference": "TRF-1"}})

    assert result.status_code == 200
    assert result.json()["status"] == "ignored"
    assert gateway.verified == []


def test_missing_reference_is_ignored(client):
    result = _post(client, {"event": "charge.success", "data": {}})
    assert result.status_code == 200
    assert result.json()["status"] == "ignored"


def test_invalid_json_with_valid_signature_is_ignored(client):
    raw = b"not json"
    result = client.post(
        "/subscriptions/webhook",
        content=raw,
        headers={"x-paystack-signature": compute_signature(raw, SECRET)},
    )
    assert result.status_code == 200
    assert result.json()["status"] == "ignored"


def test_reconcile_failure_still_answers_200(client, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    gateway.fail_verify = True

    result = _post(client, {"event": "charge.success", "data": {"reference": reference}})

    assert result.status_code == 200
    assert result.json()["status"] == "error"
    assert _status(client, headers, subscription_id) == "pending"

    # not recorded, so the redelivery converges
    gateway.fail_verify = False
    gateway.statuses[reference] = "success"
    retry = _post(client, {"event": "charge.success", "data": {"reference": reference}})
    assert retry.json()["subscription_status"] == "active"


def test_unknown_reference_answers_200(client):
    result = _post(client, {"event": "charge.success", "data": {"reference": "SUB-nope"}})
    assert result.status_code == 200
    assert result.json()["status"] == "error"


def test_signature_header_name_is_configurable(client, settings, gateway, auth_headers):
    headers, subscription_id, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "success"
    settings.WEBHOOK_SIGNATURE_HEADER = "x-provider-signature"
    raw = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode()
    signature = compute_signature(raw, SECRET)

    paystack_header = client.post("/subscriptions/webhook", content=raw, headers={"x-paystack-signature": signature})
    assert paystack_header.status_code == 401

    generic_header = client.post("/subscriptions/webhook", content=raw, headers={"x-provider-signature": signature})
    assert generic_header.status_code == 200
    assert _status(client, headers, subscription_id) == "active"


def test_dedup_row_stores_no_raw_payload(client, gateway, auth_headers):
    _, _, reference = _pending_with_payment(client, auth_headers)
    gateway.statuses[reference] = "success"
    _post(client, {"event": "charge.success", "data": {"reference": reference}})

    assert set(WebhookEvent.__table__.columns.keys()) == {"id", "provider", "event_type", "external_id", "created_at"}
    session = SessionLocal()
    try:
        event = session.query(WebhookEvent).filter_by(external_id=reference).one()
        assert (event.provider, event.event_type) == ("paystack", "charge.success")
    finally:
        session.close()
