from __future__ import annotations
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import ScoringWeights
from ..types import ActivitySample, ActivitySummary, AdoptionStage, ADOPTION_STAGES, ProductivityScore, Wallet

Tiers = Sequence[Tuple[float, float]]  # (minimum value, points), descending by minimum

# Adoption stage criteria over a wallet's activity summary. "created" is implicit.
STAGE_CRITERIA: Dict[AdoptionStage, Dict[str, float]] = {
    AdoptionStage.FIRST_TX: {"min_transactions": 1},
    AdoptionStage.FEATURE_USAGE: {"min_transactions": 3, "min_complexity": 2.0},
    AdoptionStage.RECURRING: {"min_transactions": 5, "min_active_days": 3, "min_span_days": 7},
    AdoptionStage.HIGH_VALUE: {
        "min_transactions": 10,
        "min_active_days": 7,
        "min_span_days": 30,
        "min_total_volume": 1_000_000,  # 0.01 ZEC
    },
}

STAGE_POINTS: Dict[AdoptionStage, float] = {
    AdoptionStage.CREATED: 10,
    AdoptionStage.FIRST_TX: 20,
    AdoptionStage.FEATURE_USAGE: 30,
    AdoptionStage.RECURRING: 25,
    AdoptionStage.HIGH_VALUE: 15,
}

RETENTION_DAY_TIERS: Tiers = ((15, 50), (8, 35), (4, 20), (1, 10))
RETENTION_VOLUME_TIERS: Tiers = ((100_000_000, 30), (10_000_000, 20), (1_000_000, 10), (1, 5))
ACTIVITY_DAY_TIERS: Tiers = ((7, 50), (5, 40), (3, 30), (2, 20), (1, 10))
ACTIVITY_TX_TIERS: Tiers = ((20, 30), (10, 20), (5, 15), (2, 10), (1, 5))
ACTIVITY_COMPLEXITY_TIERS: Tiers = ((8, 20), (5, 15), (3, 10), (1, 5))


def _clamp100(x: float) -> float:
    return max(0.0, min(100.0, x))


def _tier(value: float, tiers: Tiers) -> float:
    for minimum, points in tiers:
        if value >= minimum:
            return points
    return 0.0


def _pct(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100.0, 2)


def week_start(d: date) -> date:
    """Monday of the ISO week containing ``d``."""
    return d - timedelta(days=d.weekday())


def wallet_ids(wallets: Iterable[Union[Wallet, str]]) -> List[str]:
    """Ids in first-seen order; accepts Wallet records or bare ids."""
    seen: Dict[str, None] = {}
    for w in wallets or []:
        seen[w.id if isinstance(w, Wallet) else str(w)] = None
    return list(seen)


def group_samples(samples: Iterable[ActivitySample], ids: Optional[Iterable[str]] = None) -> Dict[str, List[ActivitySample]]:
    keep = set(ids) if ids is not None else None
    out: Dict[str, List[ActivitySample]] = defaultdict(list)
    for s in samples or []:
        if keep is None or s.wallet_id in keep:
            out[s.wallet_id].append(s)
    for rows in out.values():
        rows.sort(key=lambda s: s.period_start)
    return dict(out)


def summarize_activity(wallet_id: str, samples: Sequence[ActivitySample]) -> ActivitySummary:
    """
    Merge one wallet's samples. ``span_days`` runs from the first active period
    to the last active period plus that period's active days.
    """
    active = sorted((s for s in samples if s.is_active), key=lambda s: s.period_start)
    first = active[0].period_start if active else None
    last = active[-1].period_start if active else None
    span = (last - first).days + active[-1].active_days if active else 0
    return ActivitySummary(
        wallet_id=wallet_id,
        sample_count=len(samples),
        transaction_count=sum(max(0, s.transaction_count) for s in samples),
        active_days=sum(max(0, s.active_days) for s in samples),
        total_volume=sum(max(0, s.total_volume) for s in samples),
        max_complexity=max((s.sequence_complexity_score for s in samples), default=0.0),
        first_active=first,
        last_active=last,
        span_days=span,
    )


def _meets(summary: ActivitySummary, criteria: Mapping[str, float]) -> bool:
    return (
        summary.transaction_count >= criteria.get("min_transactions", 0)
        and summary.max_complexity >= criteria.get("min_complexity", 0)
        and summary.active_days >= criteria.get("min_active_days", 0)
        and summary.span_days >= criteria.get("min_span_days", 0)
        and summary.total_volume >= criteria.get("min_total_volume", 0)
    )


def stages_reached(summary: ActivitySummary) -> List[AdoptionStage]:
    """Stages reached in order; a stage counts only if every earlier one does."""
    reached = [AdoptionStage.CREATED]
    for stage in ADOPTION_STAGES[1:]:
        if not _meets(summary, STAGE_CRITERIA[stage]):
            break
        reached.append(stage)
    return reached


def retention_score(summary: ActivitySummary) -> float:
    score = _tier(summary.active_days, RETENTION_DAY_TIERS)
    score += _tier(summary.total_volume, RETENTION_VOLUME_TIERS)
    score += min(max(summary.max_complexity, 0.0) * 4.0, 20.0)
    return _clamp100(score)


def activity_score(latest: Optional[ActivitySample]) -> float:
    """Scored on the most recent period only."""
    if latest is None:
        return 0.0
    score = _tier(latest.active_days, ACTIVITY_DAY_TIERS)
    score += _tier(latest.transaction_count, ACTIVITY_TX_TIERS)
    score += _tier(latest.sequence_complexity_score, ACTIVITY_COMPLEXITY_TIERS)
    return _clamp100(score)


def adoption_score(summary: ActivitySummary) -> float:
    return _clamp100(sum(STAGE_POINTS[s] for s in stages_reached(summary)))


def score_wallet(wallet_id: str, samples: Sequence[ActivitySample], weights: ScoringWeights) -> ProductivityScore:
    summary = summarize_activity(wallet_id, samples)
    latest = max(samples, key=lambda s: s.period_start) if samples else None
    r = retention_score(summary)
    a = activity_score(latest)
    d = adoption_score(summary)
    total = _clamp100(weights.retention * r + weights.activity * a + weights.adoption * d)
    return ProductivityScore(
        wallet_id=wallet_id,
        retention_score=round(r, 2),
        activity_score=round(a, 2),
        adoption_score=round(d, 2),
        total_score=round(total, 2),
    )


def compute_productivity_score(sample: ActivitySample, weights: Optional[ScoringWeights] = None) -> ProductivityScore:
    return score_wallet(sample.wallet_id, [sample], weights or ScoringWeights())
