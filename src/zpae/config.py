"""
Engine config loading.

Loads a YAML/JSON file and returns typed, validated config objects. Every key
is optional; missing keys fall back to the defaults below.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class ScoringWeights:
    retention: float = 0.4
    activity: float = 0.3
    adoption: float = 0.3

    def __post_init__(self) -> None:
        parts = (self.retention, self.activity, self.adoption)
        if any(w < 0 for w in parts):
            raise ValueError("scoring weights must be non-negative")
        if not math.isclose(sum(parts), 1.0, abs_tol=1e-9):
            raise ValueError(f"scoring weights must sum to 1.0, got {sum(parts):.6f}")


@dataclass(frozen=True)
class SegmentThresholds:
    healthy: float = 75.0
    at_risk: float = 50.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.at_risk < self.healthy <= 100.0:
            raise ValueError("segment thresholds must satisfy 0 <= at_risk < healthy <= 100")


@dataclass(frozen=True)
class RiskThresholds:
    low: float = 60.0
    medium: float = 30.0
    trend_drop: float = 10.0        # decline over the history that escalates risk
    volatility_limit: float = 15.0  # population stddev that escalates risk

    def __post_init__(self) -> None:
        if not 0.0 <= self.medium < self.low <= 100.0:
            raise ValueError("risk thresholds must satisfy 0 <= medium < low <= 100")
        if self.trend_drop <= 0 or self.volatility_limit <= 0:
            raise ValueError("trend_drop and volatility_limit must be positive")


@dataclass(frozen=True)
class ScoringConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    segments: SegmentThresholds = field(default_factory=SegmentThresholds)
    risk: RiskThresholds = field(default_factory=RiskThresholds)


DEFAULT_DISCOUNTS: Tuple[Tuple[int, float], ...] = ((1, 0.0), (3, 0.05), (6, 0.10), (12, 0.20))


@dataclass(frozen=True)
class PricingConfig:
    base_monthly: float = 0.1
    currency: str = "ZEC"
    trial_days: int = 30
    max_duration_months: int = 36
    # (min_months, discount) pairs, ascending by months
    discounts: Tuple[Tuple[int, float], ...] = DEFAULT_DISCOUNTS

    def __post_init__(self) -> None:
        if self.base_monthly < 0:
            raise ValueError("base_monthly must be non-negative")
        if self.trial_days < 1:
            raise ValueError("trial_days must be >= 1")
        if self.max_duration_months < 1:
            raise ValueError("max_duration_months must be >= 1")
        for months, discount in self.discounts:
            if months < 1 or not 0.0 <= discount < 1.0:
                raise ValueError(f"invalid discount tier: {months} months at {discount}")

    def discount_for(self, months: int) -> float:
        discount = 0.0
        for min_months, d in sorted(self.discounts):
            if months >= min_months:
                discount = d
        return discount


@dataclass(frozen=True)
class AnalyticsConfig:
    require_active_subscription: bool = True
    premium_features: Tuple[str, ...] = ("segments", "cohorts", "funnel", "export")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


@dataclass(frozen=True)
class EngineConfig:
    """Loaded engine configuration."""

    raw: Dict[str, Any] = field(default_factory=dict)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    audit_log_limit: int = 50

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> EngineConfig:
        sc = d.get("scoring") or {}
        w = sc.get("weights") or {}
        seg = sc.get("segments") or {}
        risk = sc.get("risk") or {}
        scoring = ScoringConfig(
            weights=ScoringWeights(
                retention=float(w.get("retention", 0.4)),
                activity=float(w.get("activity", 0.3)),
                adoption=float(w.get("adoption", 0.3)),
            ),
            segments=SegmentThresholds(
                healthy=float(seg.get("healthy", 75)),
                at_risk=float(seg.get("at_risk", 50)),
            ),
            risk=RiskThresholds(
                low=float(risk.get("low", 60)),
                medium=float(risk.get("medium", 30)),
                trend_drop=float(risk.get("trend_drop", 10)),
                volatility_limit=float(risk.get("volatility_limit", 15)),
            ),
        )

        pr = d.get("pricing") or {}
        discounts = pr.get("discounts")
        pricing = PricingConfig(
            base_monthly=float(pr.get("base_monthly", 0.1)),
            currency=str(pr.get("currency", "ZEC")),
            trial_days=int(pr.get("trial_days", 30)),
            max_duration_months=int(pr.get("max_duration_months", 36)),
            discounts=(
                tuple(sorted((int(k), float(v)) for k, v in discounts.items()))
                if isinstance(discounts, dict)
                else DEFAULT_DISCOUNTS
            ),
        )

        an = d.get("analytics") or {}
        analytics = AnalyticsConfig(
            require_active_subscription=bool(an.get("require_active_subscription", True)),
            premium_features=tuple(an.get("premium_features", AnalyticsConfig.premium_features)),
        )

        lg = d.get("logging") or {}
        log_cfg = LoggingConfig(level=str(lg.get("level", "INFO")), format=str(lg.get("format", "console")))

        pv = d.get("privacy") or {}
        return cls(
            raw=d,
            scoring=scoring,
            pricing=pricing,
            analytics=analytics,
            logging=log_cfg,
            audit_log_limit=int(pv.get("audit_log_limit", 50)),
        )


def load_engine_config(path: str) -> EngineConfig:
    """
    Load an engine configuration from a YAML or JSON file.

    The file must contain a mapping. Invalid values surface as ConfigError with
    the offending path in the details.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError.build(
            "CONFIG_NOT_FOUND",
            f"Config not found: {path}",
            details={"path": path},
            remediation="Verify the path is correct and the file exists.",
        )
    obj = yaml.safe_load(p.read_text(encoding="utf-8"))
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise ConfigError.build(
            "CONFIG_TOPLEVEL_NOT_OBJECT",
            f"Config must be a YAML/JSON object, got {type(obj).__name__}",
            details={"path": path},
        )
    try:
        return EngineConfig.from_dict(obj)
    except (TypeError, ValueError) as e:
        raise ConfigError.build(
            "CONFIG_INVALID",
            f"Invalid config: {e}",
            details={"path": path, "error": repr(e)},
            remediation="Fix the reported value and retry.",
            cause=e,
        )
