from datetime import date, datetime, timedelta, timezone

import pytest

from zpae.broker import AccessBroker
from zpae.config import AnalyticsConfig, EngineConfig
from zpae.errors import NotFoundError, PaymentRequiredError
from zpae.payments import InMemoryPaymentGateway
from zpae.storage import InMemoryStorage
from zpae.types import (
    ActivitySample,
    AddressKind,
    AnonymizedRecord,
    PrivacyMode,
    Wallet,
    WalletAnalytics,
)

T0 = datetime(2026, 1, 5, tzinfo=timezone.utc)
MON = date(2026, 1, 5)
IDS = ["W1", "W2", "W3"]


def _broker(config=None, clock=None):
    clock = clock if clock is not None else {"now": T0}
    store = InMemoryStorage()
    for wid, mode in (("W1", PrivacyMode.PRIVATE), ("W2", PrivacyMode.PUBLIC), ("W3", PrivacyMode.MONETIZABLE)):
        store.add_wallet(Wallet(wid, "P1", "O", f"addr-{wid}", AddressKind.SHIELDED, mode))
    payments = InMemoryPaymentGateway(id_factory=lambda: "intent-1")
    broker = AccessBroker(store, config=config, payments=payments, now_fn=lambda: clock["now"])
    broker.gate.create("O")
    broker.gate.create("N")
    return broker, store, payments, clock


def _samples():
    return [
        ActivitySample(wid, MON + timedelta(days=7 * w), transaction_count=3, active_days=2, total_volume=1000, sequence_complexity_score=2.0)
        for wid in IDS
        for w in range(2)
    ]


def test_owner_sees_everything_in_full():
    broker, _, _, _ = _broker()
    res = broker.get_analytics(IDS, "O", _samples())
    p = res.privacy
    assert p.is_owner and not p.anonymized
    assert (p.total_wallets, p.visible_wallets, p.denied) == (3, 3, 0)
    assert all(isinstance(r, WalletAnalytics) for r in res.data["wallets"])
    assert [r.id for r in res.data["wallets"]] == IDS
    assert res.data["wallets"][0].address == "addr-W1"


def test_stranger_gets_anonymized_public_wallet_only():
    broker, _, _, _ = _broker()
    res = broker.get_analytics(IDS, "N", _samples())
    p = res.privacy
    assert not p.is_owner and p.anonymized
    assert (p.visible_wallets, p.anonymized_wallets, p.denied, p.payment_required) == (1, 1, 2, 1)

    [row] = res.data["wallets"]
    assert isinstance(row, AnonymizedRecord)
    d = res.to_dict()["data"]["wallets"][0]
    for key in ("id", "address", "project_id", "owner_id"):
        assert key not in d["metrics"]
    assert d["metrics"]["transaction_count"] == 6


def test_privacy_change_applies_to_next_request():
    broker, store, _, _ = _broker()
    assert broker.get_analytics(IDS, "N").privacy.visible_wallets == 1

    broker.update_privacy_mode("W1", "public", "O")
    assert broker.get_analytics(IDS, "N").privacy.visible_wallets == 2

    store.record_paid_access("W3", "N")
    assert broker.get_analytics(IDS, "N").privacy.visible_wallets == 3

    broker.batch_update_privacy_mode(IDS, "private", "O")
    res = broker.get_analytics(IDS, "N")
    assert res.privacy.visible_wallets == 0 and res.privacy.denied == 3
    assert res.data["wallets"] == []


def test_aggregates_cover_visible_wallets_only():
    broker, _, _, clock = _broker()
    broker.upgrade("O", 1)
    broker.upgrade("N", 1)
    clock["now"] = T0 + timedelta(days=14)
    res = broker.get_analytics(IDS, "N", _samples())
    assert sum(b.wallet_count for b in res.data["segments"]) == 1
    assert res.data["funnel"][0].wallet_count == 1
    assert [c.wallet_count for c in res.data["cohorts"]] == [1]

    res = broker.get_analytics(IDS, "O", _samples())
    assert sum(b.wallet_count for b in res.data["segments"]) == 3
    assert res.data["cohorts"][0].retention_week_1 == 100.0
    assert res.data["cohorts"][0].retention_week_2 == 0.0
    assert res.data["cohorts"][0].retention_week_3 is None


def test_unknown_wallet_counted_as_denied():
    broker, _, _, _ = _broker()
    p = broker.get_analytics(["W2", "ghost", "W2"], "O").privacy
    assert (p.total_wallets, p.visible_wallets, p.denied) == (2, 1, 1)
    assert not p.is_owner


def test_subscription_required_for_analytics():
    broker, _, _, clock = _broker()
    with pytest.raises(NotFoundError):
        broker.get_analytics(IDS, "stranger-without-account")

    clock["now"] = T0 + timedelta(days=31)
    with pytest.raises(PaymentRequiredError) as ei:
        broker.get_analytics(IDS, "N")
    assert ei.value.code == "SUBSCRIPTION_EXPIRED"

    open_cfg = EngineConfig(analytics=AnalyticsConfig(require_active_subscription=False))
    broker, _, _, _ = _broker(config=open_cfg, clock={"now": T0 + timedelta(days=31)})
    assert broker.get_analytics(IDS, "anyone").privacy.visible_wallets == 1


def test_premium_feature_starts_payment_flow():
    broker, _, payments, _ = _broker()
    gate = broker.gate_premium_feature("N", "segments")
    assert not gate.allowed and gate.requires_payment
    assert gate.payment_intent.amount == 0.1
    assert gate.to_dict()["payment_intent"]["intent_id"] == "intent-1"
    assert len(payments.intents) == 1

    basic = broker.gate_premium_feature("N", "wallets")
    assert basic.allowed and basic.payment_intent is None

    broker.upgrade("N", 1)
    assert broker.gate_premium_feature("N", "segments").allowed
    assert len(payments.intents) == 1

    broker.cancel("N")
    assert broker.gate_premium_feature("N", "cohorts").allowed


def test_trial_requester_gets_no_premium_aggregates():
    broker, _, _, _ = _broker()
    res = broker.get_analytics(IDS, "O", _samples())
    assert res.locked_features == ("cohorts", "funnel", "segments")
    assert (res.data["cohorts"], res.data["funnel"], res.data["segments"]) == ([], [], [])
    assert len(res.data["wallets"]) == 3
    assert res.to_dict()["locked_features"] == ["cohorts", "funnel", "segments"]

    broker.upgrade("O", 1)
    res = broker.get_analytics(IDS, "O", _samples())
    assert res.locked_features == ()
    assert sum(b.wallet_count for b in res.data["segments"]) == 3
    assert res.data["funnel"][0].wallet_count == 3
    assert [c.wallet_count for c in res.data["cohorts"]] == [3]


def test_only_configured_premium_aggregates_are_locked():
    cfg = EngineConfig(analytics=AnalyticsConfig(premium_features=("segments",)))
    broker, _, _, _ = _broker(config=cfg)
    res = broker.get_analytics(IDS, "O", _samples())
    assert res.locked_features == ("segments",)
    assert res.data["segments"] == []
    assert res.data["funnel"][0].wallet_count == 3
    assert [c.wallet_count for c in res.data["cohorts"]] == [3]


def test_fully_churned_cohort_reports_zero_retention():
    broker, store, _, clock = _broker()
    store.add_wallet(Wallet("W4", "P1", "O", "addr-W4", AddressKind.SHIELDED, PrivacyMode.PRIVATE))
    clock["now"] = datetime(2026, 2, 16, tzinfo=timezone.utc)
    broker.upgrade("O", 1)
    samples = [ActivitySample(wid, MON, transaction_count=2, active_days=1) for wid in IDS + ["W4"]]

    [cohort] = broker.get_analytics(IDS + ["W4"], "O", samples).data["cohorts"]
    assert cohort.cohort_period == MON and cohort.wallet_count == 4
    assert cohort.retention == (100.0, 0.0, 0.0, 0.0, 0.0)


class _CountingStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.wallet_reads = []

    def get_wallet(self, wallet_id):
        self.wallet_reads.append(wallet_id)
        return super().get_wallet(wallet_id)


def test_each_wallet_read_once_per_request():
    store = _CountingStorage()
    for wid, mode in (("W1", PrivacyMode.PRIVATE), ("W2", PrivacyMode.PUBLIC), ("W3", PrivacyMode.MONETIZABLE)):
        store.add_wallet(Wallet(wid, "P1", "O", f"addr-{wid}", AddressKind.SHIELDED, mode))
    broker = AccessBroker(store, now_fn=lambda: T0)
    broker.gate.create("N")

    res = broker.get_analytics(IDS + ["ghost"], "N", _samples())
    assert sorted(store.wallet_reads) == sorted(IDS + ["ghost"])
    assert res.privacy.visible_wallets == 1 and res.privacy.denied == 3
