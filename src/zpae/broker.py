"""
Access broker: the single entry point for analytics requests.

Per request semantics:
- The requester's subscription is checked first when the engine is configured
  to require one.
- Every wallet is checked against its current privacy mode; nothing is cached
  between calls.
- Denied wallets are dropped from the payload but counted in the privacy summary.
- Full-access wallets are returned as computed; anonymized-access wallets are
  stripped to their allowlisted metrics after computation.
- Cohorts, funnel and segments are computed over the visible wallets only,
  as of the request time. Those configured as premium features are withheld
  (empty, and listed in ``locked_features``) unless the requester is premium.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from .config import EngineConfig
from .entitlement import EntitlementGate, compute_status, require_active, require_premium
from .errors import PaymentRequiredError
from .metrics import MetricsAggregator
from .metrics.core import group_samples
from .payments import InMemoryPaymentGateway, PaymentGateway
from .privacy import PrivacyPolicy, anonymize_wallet_data_batch
from .storage import Storage
from .types import (
    ActivitySample,
    AnalyticsResult,
    DataLevel,
    Entitlement,
    EntitlementStatus,
    PremiumGate,
    PrivacySummary,
    UpgradeReceipt,
    Wallet,
    WalletAnalytics,
)

logger = structlog.get_logger(__name__)

AGGREGATE_FEATURES: Tuple[str, ...] = ("cohorts", "funnel", "segments")


class AccessBroker:
    def __init__(
        self,
        storage: Storage,
        *,
        config: Optional[EngineConfig] = None,
        policy: Optional[PrivacyPolicy] = None,
        gate: Optional[EntitlementGate] = None,
        aggregator: Optional[MetricsAggregator] = None,
        payments: Optional[PaymentGateway] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._storage = storage
        self.policy = policy or PrivacyPolicy(storage, now_fn=now_fn, audit_log_limit=self.config.audit_log_limit)
        self.gate = gate or EntitlementGate(storage, self.config.pricing, now_fn=now_fn)
        self.aggregator = aggregator or MetricsAggregator(self.config.scoring)
        self.payments = payments or InMemoryPaymentGateway(currency=self.config.pricing.currency)
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    # -- analytics -------------------------------------------------------------

    def _requester_status(self, requester_id: str) -> Optional[EntitlementStatus]:
        if not self.config.analytics.require_active_subscription:
            ent = self._storage.get_entitlement(requester_id)
            return compute_status(ent, self._now()) if ent is not None else None
        status = self.gate.status_for(requester_id)
        check = require_active(status)
        if not check.passed:
            logger.info("analytics_subscription_required", requester_id=requester_id, status=status.status.value)
            raise PaymentRequiredError.build(
                check.code or "SUBSCRIPTION_EXPIRED",
                check.reason,
                details={"user_id": requester_id, "status": status.status.value},
                remediation="Upgrade the subscription to continue.",
            )
        return status

    def _locked_features(self, status: Optional[EntitlementStatus]) -> Tuple[str, ...]:
        if status is not None and require_premium(status).passed:
            return ()
        return tuple(f for f in AGGREGATE_FEATURES if f in self.config.analytics.premium_features)

    def _analytics_row(self, wallet: Wallet, samples: Sequence[ActivitySample]) -> WalletAnalytics:
        summary = self.aggregator.summarize_activity(wallet.id, samples)
        score = self.aggregator.score_wallet(wallet.id, samples)
        return WalletAnalytics(
            id=wallet.id,
            project_id=wallet.project_id,
            owner_id=wallet.owner_id,
            address=wallet.address,
            address_kind=wallet.address_kind,
            privacy_mode=wallet.privacy_mode,
            transaction_count=summary.transaction_count,
            active_days=summary.active_days,
            total_volume=summary.total_volume,
            retention_score=score.retention_score,
            activity_score=score.activity_score,
            adoption_score=score.adoption_score,
            total_score=score.total_score,
            adoption_stage=self.aggregator.adoption_stage(wallet.id, samples),
        )

    def get_analytics(
        self,
        wallet_ids: Iterable[str],
        requester_id: str,
        samples: Iterable[ActivitySample] = (),
    ) -> AnalyticsResult:
        status = self._requester_status(requester_id)
        locked = self._locked_features(status)

        ids = list(dict.fromkeys(wallet_ids or []))
        full: List[Wallet] = []
        anonymized: List[Wallet] = []
        denied = 0
        payment_required = 0

        for wid in ids:
            wallet = self._storage.get_wallet(wid)
            decision = self.policy.decide(wallet, requester_id)
            if wallet is None or not decision.allowed:
                denied += 1
                if decision.requires_payment:
                    payment_required += 1
                logger.info(
                    "analytics_wallet_denied",
                    wallet_id=wid,
                    requester_id=requester_id,
                    reason=decision.reason,
                    requires_payment=decision.requires_payment,
                )
                continue
            if decision.data_level is DataLevel.FULL:
                full.append(wallet)
            else:
                anonymized.append(wallet)

        visible = full + anonymized
        visible_ids = [w.id for w in visible]
        by_wallet = group_samples(samples, visible_ids)
        snapshot = [s for wid in visible_ids for s in by_wallet.get(wid, [])]

        rows: Dict[str, Any] = {w.id: self._analytics_row(w, by_wallet.get(w.id, [])) for w in full}
        anon_rows = anonymize_wallet_data_batch(
            self._analytics_row(w, by_wallet.get(w.id, [])) for w in anonymized
        )
        rows.update(zip((w.id for w in anonymized), anon_rows))

        data: Dict[str, Any] = {"wallets": [rows[wid] for wid in ids if wid in rows]}
        for feature in locked:
            data[feature] = []
        if "cohorts" not in locked:
            data["cohorts"] = self.aggregator.compute_cohorts(visible_ids, snapshot, as_of=self._now().date())
        if "funnel" not in locked:
            data["funnel"] = self.aggregator.compute_funnel(visible_ids, snapshot)
        if "segments" not in locked:
            scores = {wid: self.aggregator.score_wallet(wid, by_wallet.get(wid, [])) for wid in visible_ids}
            data["segments"] = self.aggregator.segment(scores)
        if locked:
            logger.info("analytics_features_locked", requester_id=requester_id, features=list(locked))
        privacy = PrivacySummary(
            is_owner=bool(full) and not anonymized and denied == 0,
            total_wallets=len(ids),
            visible_wallets=len(visible),
            anonymized=bool(anonymized),
            anonymized_wallets=len(anonymized),
            denied=denied,
            payment_required=payment_required,
        )
        logger.info(
            "analytics_served",
            requester_id=requester_id,
            total_wallets=privacy.total_wallets,
            visible_wallets=privacy.visible_wallets,
            anonymized_wallets=privacy.anonymized_wallets,
            denied=privacy.denied,
        )
        return AnalyticsResult(data=data, privacy=privacy, locked_features=locked)

    # -- premium gating --------------------------------------------------------

    def gate_premium_feature(self, user_id: str, feature_name: str) -> PremiumGate:
        status = self.gate.status_for(user_id)
        if feature_name in self.config.analytics.premium_features:
            check = require_premium(status)
        else:
            check = require_active(status)
        if check.passed:
            return PremiumGate(allowed=True, requires_payment=False, reason=check.reason)

        amount, _ = self.gate.price_for(1)
        intent = self.payments.initiate_payment_flow(user_id, amount)
        logger.info(
            "payment_flow_initiated",
            user_id=user_id,
            feature=feature_name,
            amount=amount,
            code=check.code,
        )
        return PremiumGate(allowed=False, requires_payment=True, reason=check.reason, payment_intent=intent)

    # -- mutations -------------------------------------------------------------

    def update_privacy_mode(self, wallet_id: str, new_mode: Any, actor_id: str) -> Wallet:
        return self.policy.update_privacy_mode(wallet_id, new_mode, actor_id)

    def batch_update_privacy_mode(self, wallet_ids: Sequence[str], new_mode: Any, actor_id: str) -> List[Wallet]:
        return self.policy.batch_update_privacy_mode(wallet_ids, new_mode, actor_id)

    def upgrade(self, user_id: str, duration_months: Any) -> UpgradeReceipt:
        return self.gate.upgrade(user_id, duration_months)

    def cancel(self, user_id: str) -> Entitlement:
        return self.gate.cancel(user_id)
