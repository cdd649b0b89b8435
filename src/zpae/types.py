from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


class PrivacyMode(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    MONETIZABLE = "monetizable"


class AddressKind(str, Enum):
    TRANSPARENT = "transparent"
    SHIELDED = "shielded"
    UNIFIED = "unified"


class DataLevel(str, Enum):
    FULL = "full"
    ANONYMIZED = "anonymized"
    DENIED = "denied"


class SubscriptionStatus(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class AdoptionStage(str, Enum):
    CREATED = "created"
    FIRST_TX = "first_tx"
    FEATURE_USAGE = "feature_usage"
    RECURRING = "recurring"
    HIGH_VALUE = "high_value"


class SegmentStatus(str, Enum):
    HEALTHY = "healthy"
    AT_RISK = "at_risk"
    CHURN = "churn"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


ADOPTION_STAGES: Tuple[AdoptionStage, ...] = tuple(AdoptionStage)
STATUS_ORDER: Tuple[SegmentStatus, ...] = tuple(SegmentStatus)
RISK_ORDER: Tuple[RiskLevel, ...] = tuple(RiskLevel)


def _jsonable(d: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, Enum):
            out[k] = v.value
        elif isinstance(v, (date, datetime)):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


# =============================================================================
# Source records
# =============================================================================

@dataclass(frozen=True)
class Wallet:
    """A tracked wallet. ``owner_id`` is the user owning the wallet's project."""

    # Fields that may survive anonymization.
    ANONYMIZED_FIELDS: ClassVar[Tuple[str, ...]] = ("address_kind", "is_active")

    id: str
    project_id: str
    owner_id: str
    address: str
    address_kind: AddressKind
    privacy_mode: PrivacyMode
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class ActivitySample:
    ANONYMIZED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "period_start",
        "transaction_count",
        "active_days",
        "total_volume",
        "sequence_complexity_score",
    )

    wallet_id: str
    period_start: date
    transaction_count: int = 0
    active_days: int = 0
    total_volume: int = 0  # zatoshi
    sequence_complexity_score: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.transaction_count > 0 or self.active_days > 0

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class PrivacyAuditEntry:
    wallet_id: str
    previous_mode: PrivacyMode
    new_mode: PrivacyMode
    actor_id: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class Entitlement:
    user_id: str
    status: SubscriptionStatus
    trial_expires_at: datetime
    subscription_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    auto_renew: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


# =============================================================================
# Derived metrics
# =============================================================================

@dataclass(frozen=True)
class ActivitySummary:
    wallet_id: str
    sample_count: int
    transaction_count: int
    active_days: int
    total_volume: int
    max_complexity: float
    first_active: Optional[date]
    last_active: Optional[date]
    span_days: int

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class ProductivityScore:
    ANONYMIZED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "retention_score",
        "activity_score",
        "adoption_score",
        "total_score",
    )

    wallet_id: str
    retention_score: float
    activity_score: float
    adoption_score: float
    total_score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CohortRecord:
    """Retention of one weekly cohort. ``None`` marks a week with no data yet."""

    cohort_period: date
    wallet_count: int
    retention_week_0: Optional[float]
    retention_week_1: Optional[float]
    retention_week_2: Optional[float]
    retention_week_3: Optional[float]
    retention_week_4: Optional[float]

    @property
    def retention(self) -> Tuple[Optional[float], ...]:
        return (
            self.retention_week_0,
            self.retention_week_1,
            self.retention_week_2,
            self.retention_week_3,
            self.retention_week_4,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class FunnelStage:
    stage: AdoptionStage
    wallet_count: int
    percentage_of_total: float
    conversion_rate_from_previous: float

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class SegmentBucket:
    status: SegmentStatus
    risk_level: RiskLevel
    wallet_count: int
    avg_score: float
    avg_retention: float
    avg_adoption: float
    avg_activity: float

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class WalletAnalytics:
    """Per-wallet analytics row returned by the broker."""

    ANONYMIZED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "address_kind",
        "transaction_count",
        "active_days",
        "total_volume",
        "retention_score",
        "activity_score",
        "adoption_score",
        "total_score",
        "adoption_stage",
    )

    id: str
    project_id: str
    owner_id: str
    address: str
    address_kind: AddressKind
    privacy_mode: PrivacyMode
    transaction_count: int
    active_days: int
    total_volume: int
    retention_score: float
    activity_score: float
    adoption_score: float
    total_score: float
    adoption_stage: Optional[AdoptionStage]

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class AnonymizedRecord:
    kind: str
    metrics: Dict[str, Any]
    anonymized: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "metrics": _jsonable(dict(self.metrics)), "anonymized": self.anonymized}


# =============================================================================
# Decisions
# =============================================================================

@dataclass(frozen=True)
class TransitionCheck:
    valid: bool
    requires_setup: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str
    requires_payment: bool
    data_level: DataLevel

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class EntitlementStatus:
    user_id: str
    status: SubscriptionStatus
    is_expired: bool
    is_active: bool
    is_premium: bool
    days_remaining: Optional[int]
    expires_at: Optional[datetime]
    auto_renew: bool

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class RequirementCheck:
    passed: bool
    reason: str
    code: Optional[str] = None  # None when passed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UpgradeReceipt:
    entitlement: Entitlement
    duration_months: int
    amount: float
    discount: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entitlement": self.entitlement.to_dict(),
            "duration_months": self.duration_months,
            "amount": self.amount,
            "discount": self.discount,
        }


@dataclass(frozen=True)
class PremiumGate:
    allowed: bool
    requires_payment: bool
    reason: str
    payment_intent: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        intent = self.payment_intent
        if intent is not None and hasattr(intent, "to_dict"):
            intent = intent.to_dict()
        return {
            "allowed": self.allowed,
            "requires_payment": self.requires_payment,
            "reason": self.reason,
            "payment_intent": intent,
        }


@dataclass(frozen=True)
class PrivacySummary:
    is_owner: bool
    total_wallets: int
    visible_wallets: int
    anonymized: bool
    anonymized_wallets: int
    denied: int
    payment_required: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalyticsResult:
    data: Dict[str, Any] = field(default_factory=dict)
    privacy: Optional[PrivacySummary] = None
    locked_features: Tuple[str, ...] = ()  # premium aggregates withheld from ``data``

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": {k: [x.to_dict() for x in v] for k, v in self.data.items()},
            "privacy": self.privacy.to_dict() if self.privacy else None,
            "locked_features": list(self.locked_features),
        }
