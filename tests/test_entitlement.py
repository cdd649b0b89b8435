from datetime import datetime, timedelta, timezone

import pytest

from zpae.config import PricingConfig
from zpae.entitlement import EntitlementGate, add_months, compute_status, require_active, require_premium, trial_expiring_soon
from zpae.errors import NotFoundError, ValidationError
from zpae.storage import InMemoryStorage
from zpae.types import SubscriptionStatus

T0 = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)


def _gate(now=T0):
    clock = {"now": now}
    gate = EntitlementGate(InMemoryStorage(), PricingConfig(), now_fn=lambda: clock["now"])
    return gate, clock


def test_new_entitlement_has_thirty_day_trial():
    gate, _ = _gate()
    ent = gate.create("u1")
    assert ent.status is SubscriptionStatus.FREE
    assert ent.trial_expires_at == T0 + timedelta(days=30)

    st = gate.status_for("u1")
    assert st.days_remaining == 30
    assert st.is_premium is False
    assert st.is_active is True
    assert require_active(st).passed
    assert require_premium(st).code == "PREMIUM_REQUIRED"


def test_create_is_idempotent():
    gate, clock = _gate()
    first = gate.create("u1")
    clock["now"] = T0 + timedelta(days=3)
    assert gate.create("u1") == first


def test_trial_expiry():
    gate, clock = _gate()
    gate.create("u1")
    clock["now"] = T0 + timedelta(days=25)
    st = gate.status_for("u1")
    assert st.days_remaining == 5
    assert trial_expiring_soon(st)

    clock["now"] = T0 + timedelta(days=30)
    st = gate.status_for("u1")
    assert st.is_expired and not st.is_active
    assert st.days_remaining == 0
    check = require_active(st)
    assert not check.passed and check.code == "SUBSCRIPTION_EXPIRED"


def test_three_month_price_applies_discount():
    gate, _ = _gate()
    amount, discount = gate.price_for(3)
    assert discount == 0.05
    assert amount == 0.285


def test_plans_catalogue():
    gate, _ = _gate()
    plans = {p["duration_months"]: p for p in gate.plans()}
    assert sorted(plans) == [1, 3, 6, 12]
    assert plans[1]["price"] == 0.1
    assert plans[12]["price"] == 0.96
    assert plans[12]["price_per_month"] == 0.08


def test_upgrade_sets_premium_until_end_of_term():
    gate, _ = _gate()
    gate.create("u1")
    receipt = gate.upgrade("u1", 3)
    assert receipt.amount == 0.285
    assert receipt.entitlement.status is SubscriptionStatus.PREMIUM
    assert receipt.entitlement.subscription_expires_at == datetime(2026, 4, 5, 9, 30, tzinfo=timezone.utc)

    st = gate.status_for("u1")
    assert st.is_premium and st.is_active and not st.is_expired


def test_cancel_keeps_access_until_expiry_then_reverts_to_free():
    gate, clock = _gate()
    gate.create("u1")
    gate.upgrade("u1", 1)
    ent = gate.cancel("u1")
    assert ent.auto_renew is False
    assert gate.status_for("u1").is_premium

    clock["now"] = T0 + timedelta(days=40)
    st = gate.status_for("u1")
    assert st.status is SubscriptionStatus.FREE
    assert st.is_expired and not st.is_active and not st.is_premium


def test_cancel_without_subscription_rejected():
    gate, _ = _gate()
    gate.create("u1")
    with pytest.raises(ValidationError) as ei:
        gate.cancel("u1")
    assert ei.value.code == "NO_ACTIVE_SUBSCRIPTION"


@pytest.mark.parametrize("months", [0, 37, -1, True, 1.5, "3", None])
def test_invalid_duration_rejected(months):
    gate, _ = _gate()
    gate.create("u1")
    with pytest.raises(ValidationError) as ei:
        gate.upgrade("u1", months)
    assert ei.value.code == "INVALID_DURATION"


def test_unknown_user_and_enterprise():
    gate, _ = _gate()
    with pytest.raises(NotFoundError):
        gate.upgrade("ghost", 1)

    gate._storage.set_entitlement(
        "corp",
        {"status": SubscriptionStatus.ENTERPRISE, "trial_expires_at": T0, "subscription_expires_at": None},
    )
    st = gate.status_for("corp")
    assert st.is_premium and st.days_remaining is None
    with pytest.raises(ValidationError) as ei:
        gate.upgrade("corp", 12)
    assert ei.value.code == "ENTERPRISE_MANAGED"


def test_add_months_clamps_day():
    assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
    assert add_months(datetime(2026, 11, 15), 3) == datetime(2027, 2, 15)
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)


def test_compute_status_is_pure():
    gate, _ = _gate()
    ent = gate.create("u1")
    a = compute_status(ent, T0 + timedelta(hours=12))
    b = compute_status(ent, T0 + timedelta(hours=12))
    assert a == b
    assert a.days_remaining == 30  # 29.5 days rounds up
