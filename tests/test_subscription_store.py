import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from readhub.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from readhub.models.subscription_models import Subscription, SubscriptionStatus, utcnow
from readhub.services.subscription_store import SubscriptionStore


def _naive(value: dt.datetime) -> dt.datetime:
    return value.replace(tzinfo=None)


def _create(store: SubscriptionStore, **overrides):
    fields = {
        "user_id": str(uuid4()),
        "book_id": str(uuid4()),
        "plan": "monthly",
        "price": "25.50",
        "duration": 30,
        "mobile_number": "0241234567",
        "service_provider": "MTN",
        "account_name": "Ama Mensah",
    }
    fields.update(overrides)
    return store.create(**fields)


def _attach(store: SubscriptionStore, subscription_id: str, reference: str = "SUB-ref-1"):
    return store.attach_payment(
        subscription_id,
        external_reference=reference,
        authorization_url="https://checkout.paystack.test/x",
        amount_minor=2550,
        currency="GHS",
        channel="mobile_money",
    )


def test_create_sets_pending_and_end_date(db_session):
    store = SubscriptionStore(db_session)
    start = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)

    sub = _create(store, now=start)

    assert sub.status == SubscriptionStatus.PENDING
    assert sub.price == Decimal("25.50")
    assert sub.renewal_count == 0
    assert sub.paid_at is None
    assert sub.external_reference is None
    assert _naive(sub.start_date) == _naive(start)
    assert _naive(sub.end_date) == _naive(start) + dt.timedelta(days=30)


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"plan": ""}, "plan"),
        ({"price": 0}, "price"),
        ({"price": "-3"}, "price"),
        ({"price": "abc"}, "price"),
        ({"duration": 0}, "duration"),
        ({"duration": 1.5}, "duration"),
        ({"duration": 36_501}, "duration"),
        ({"duration": 3_000_000}, "duration"),
        ({"price": "10.005"}, "price"),
        ({"price": "1e30"}, "price"),
        ({"mobile_number": "  "}, "mobile_number"),
        ({"service_provider": None}, "service_provider"),
        ({"account_name": ""}, "account_name"),
        ({"user_id": "not-a-uuid"}, "user_id"),
        ({"book_id": ""}, "book_id"),
    ],
)
def test_create_rejects_invalid_fields(db_session, overrides, field):
    store = SubscriptionStore(db_session)
    with pytest.raises(ValidationError) as excinfo:
        _create(store, **overrides)
    assert excinfo.value.details["field"] == field
    assert excinfo.value.status_code == 400


def test_get_unknown_raises_not_found(db_session):
    store = SubscriptionStore(db_session)
    assert store.find_by_id(str(uuid4())) is None
    with pytest.raises(NotFoundError):
        store.get(str(uuid4()))


def test_find_pending_for_user_returns_newest(db_session):
    store = SubscriptionStore(db_session)
    user_id = str(uuid4())
    older = _create(store, user_id=user_id, now=utcnow() - dt.timedelta(hours=2))
    newer = _create(store, user_id=user_id)

    assert store.find_pending_for_user(user_id).id == newer.id
    assert older.id != newer.id
    assert store.find_pending_for_user(str(uuid4())) is None


def test_find_by_user_newest_first(db_session):
    store = SubscriptionStore(db_session)
    user_id = str(uuid4())
    first = _create(store, user_id=user_id, now=utcnow() - dt.timedelta(days=1))
    second = _create(store, user_id=user_id)
    _create(store)  # another user

    assert [s.id for s in store.find_by_user(user_id)] == [second.id, first.id]


def test_update_status_pending_to_active_sets_paid_at(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)

    result = store.update_status(sub.id, SubscriptionStatus.ACTIVE)

    assert result.applied is True
    assert result.subscription.status == SubscriptionStatus.ACTIVE
    assert result.subscription.paid_at is not None


def test_update_status_repeat_is_noop(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    first = store.update_status(sub.id, SubscriptionStatus.ACTIVE)
    paid_at = first.subscription.paid_at

    second = store.update_status(sub.id, SubscriptionStatus.ACTIVE)

    assert second.applied is False
    assert second.subscription.status == SubscriptionStatus.ACTIVE
    assert second.subscription.paid_at == paid_at


def test_update_status_rejects_transition_outside_table(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    store.update_status(sub.id, SubscriptionStatus.FAILED)

    with pytest.raises(InvalidTransitionError) as excinfo:
        store.update_status(sub.id, SubscriptionStatus.ACTIVE)
    assert excinfo.value.status_code == 409
    assert excinfo.value.details == {"current_status": "failed", "new_status": "active"}

    with pytest.raises(InvalidTransitionError):
        store.update_status(sub.id, SubscriptionStatus.PENDING)

    assert store.get(sub.id).status == SubscriptionStatus.FAILED
    assert store.get(sub.id).paid_at is None


def test_pending_to_expired_is_not_allowed(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    with pytest.raises(InvalidTransitionError):
        store.update_status(sub.id, SubscriptionStatus.EXPIRED)


def test_expiry_clears_paid_at_but_keeps_activation_time(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    store.update_status(sub.id, SubscriptionStatus.ACTIVE)

    result = store.update_status(sub.id, SubscriptionStatus.EXPIRED)

    assert result.applied is True
    assert result.subscription.status == SubscriptionStatus.EXPIRED
    assert result.subscription.paid_at is None
    assert result.subscription.activated_at is not None


def test_attach_payment_once(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)

    attached = _attach(store, sub.id)
    assert attached.external_reference == "SUB-ref-1"
    assert attached.amount_minor == 2550
    assert store.find_by_reference("SUB-ref-1").id == sub.id
    assert store.find_open_payment_for_user(sub.user_id).id == sub.id

    # same reference again is idempotent, a different one is refused
    assert _attach(store, sub.id).external_reference == "SUB-ref-1"
    with pytest.raises(InvalidStateError):
        _attach(store, sub.id, reference="SUB-ref-2")


def test_attach_payment_requires_pending(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    store.update_status(sub.id, SubscriptionStatus.FAILED)

    with pytest.raises(InvalidStateError):
        _attach(store, sub.id)


def test_renew_extends_end_date_by_duration(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store, duration=7)
    store.update_status(sub.id, SubscriptionStatus.ACTIVE)

    renewed = store.renew(sub.id, sub.user_id)
    renewed = store.renew(sub.id, sub.user_id)

    assert renewed.renewal_count == 2
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert _naive(renewed.end_date) == _naive(renewed.start_date) + dt.timedelta(days=7 * 3)


def test_renew_checks_owner_before_status(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)

    with pytest.raises(ForbiddenError):
        store.renew(sub.id, str(uuid4()), require_status=SubscriptionStatus.ACTIVE)
    with pytest.raises(InvalidStateError):
        store.renew(sub.id, sub.user_id, require_status=SubscriptionStatus.ACTIVE)
    with pytest.raises(NotFoundError):
        store.renew(str(uuid4()), sub.user_id)


def test_expire_due_only_touches_lapsed_active(db_session):
    store = SubscriptionStore(db_session)
    past = utcnow() - dt.timedelta(days=40)
    lapsed = _create(store, now=past)
    store.update_status(lapsed.id, SubscriptionStatus.ACTIVE)
    current = _create(store)
    store.update_status(current.id, SubscriptionStatus.ACTIVE)
    lapsed_pending = _create(store, now=past)

    assert store.expire_due() == 1
    assert store.get(lapsed.id).status == SubscriptionStatus.EXPIRED
    assert store.get(current.id).status == SubscriptionStatus.ACTIVE
    assert store.get(lapsed_pending.id).status == SubscriptionStatus.PENDING
    assert store.expire_due() == 0


def test_find_stale_pending(db_session):
    store = SubscriptionStore(db_session)
    with_payment = _create(store)
    _attach(store, with_payment.id, reference="SUB-stale")
    _create(store)  # no payment intent yet

    later = utcnow() + dt.timedelta(minutes=30)
    assert [s.id for s in store.find_stale_pending(later)] == [with_payment.id]
    assert store.find_stale_pending(utcnow() - dt.timedelta(minutes=30)) == []


def test_active_to_pending_is_rejected(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store)
    store.update_status(sub.id, SubscriptionStatus.ACTIVE)

    with pytest.raises(InvalidTransitionError):
        store.update_status(sub.id, SubscriptionStatus.PENDING)
    assert store.get(sub.id).status == SubscriptionStatus.ACTIVE


def test_price_with_two_decimals_is_kept_exactly(db_session):
    store = SubscriptionStore(db_session)
    assert _create(store, price="10.50").price == Decimal("10.50")
    assert _create(store, price="10.500").price == Decimal("10.50")


def test_longest_duration_is_accepted(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store, duration=36_500)
    assert _naive(sub.end_date) == _naive(sub.start_date) + dt.timedelta(days=36_500)


def test_renew_past_representable_dates_is_rejected(db_session):
    store = SubscriptionStore(db_session)
    sub = _create(store, duration=36_500)
    store.update_status(sub.id, SubscriptionStatus.ACTIVE)
    db_session.execute(
        update(Subscription)
        .where(Subscription.id == sub.id)
        .values(end_date=dt.datetime(9990, 1, 1, tzinfo=dt.timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db_session.commit()

    with pytest.raises(ValidationError) as excinfo:
        store.renew(sub.id, sub.user_id)
    assert excinfo.value.details["field"] == "duration"
    assert store.get(sub.id).renewal_count == 0


def test_expire_due_clears_paid_at(db_session):
    store = SubscriptionStore(db_session)
    lapsed = _create(store, duration=1, now=utcnow() - dt.timedelta(days=3))
    store.update_status(lapsed.id, SubscriptionStatus.ACTIVE)

    assert store.expire_due() == 1
    expired = store.get(lapsed.id)
    assert expired.status == SubscriptionStatus.EXPIRED
    assert expired.paid_at is None
    assert expired.activated_at is not None
