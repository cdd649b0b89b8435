from __future__ import annotations
import statistics
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import RiskThresholds, SegmentThresholds
from ..types import RISK_ORDER, STATUS_ORDER, ProductivityScore, RiskLevel, SegmentBucket, SegmentStatus

ScoreHistory = Union[ProductivityScore, Sequence[ProductivityScore]]


def _history(value: ScoreHistory) -> List[ProductivityScore]:
    if isinstance(value, ProductivityScore):
        return [value]
    return list(value or [])


def classify_status(total: float, thresholds: SegmentThresholds) -> SegmentStatus:
    if total >= thresholds.healthy:
        return SegmentStatus.HEALTHY
    if total >= thresholds.at_risk:
        return SegmentStatus.AT_RISK
    return SegmentStatus.CHURN


def classify_risk(totals: Sequence[float], thresholds: RiskThresholds) -> RiskLevel:
    """
    Base level from the latest total, then escalated once for a decline of at
    least ``trend_drop`` and once for volatility of at least ``volatility_limit``.
    """
    latest = totals[-1] if totals else 0.0
    if latest >= thresholds.low:
        idx = 0
    elif latest >= thresholds.medium:
        idx = 1
    else:
        idx = 2

    if len(totals) >= 2:
        if totals[0] - latest >= thresholds.trend_drop:
            idx += 1
        if statistics.pstdev(totals) >= thresholds.volatility_limit:
            idx += 1
    return RISK_ORDER[min(idx, len(RISK_ORDER) - 1)]


def segment(
    scores_by_wallet: Mapping[str, ScoreHistory],
    thresholds: Optional[SegmentThresholds] = None,
    risk: Optional[RiskThresholds] = None,
) -> List[SegmentBucket]:
    """
    Partition wallets into (status, risk) buckets. Every input wallet lands in
    exactly one bucket, so bucket counts sum to ``len(scores_by_wallet)``.
    """
    seg_t = thresholds or SegmentThresholds()
    risk_t = risk or RiskThresholds()

    # (status, risk) -> rows of (total, retention, adoption, activity)
    groups: Dict[Tuple[SegmentStatus, RiskLevel], List[Tuple[float, float, float, float]]] = defaultdict(list)
    for _, value in (scores_by_wallet or {}).items():
        hist = _history(value)
        totals = [s.total_score for s in hist]
        last = hist[-1] if hist else None
        row = (
            (last.total_score, last.retention_score, last.adoption_score, last.activity_score)
            if last is not None
            else (0.0, 0.0, 0.0, 0.0)
        )
        key = (classify_status(row[0], seg_t), classify_risk(totals, risk_t))
        groups[key].append(row)

    out: List[SegmentBucket] = []
    for status in STATUS_ORDER:
        for level in RISK_ORDER:
            rows = groups.get((status, level))
            if not rows:
                continue
            n = len(rows)
            out.append(
                SegmentBucket(
                    status=status,
                    risk_level=level,
                    wallet_count=n,
                    avg_score=round(sum(r[0] for r in rows) / n, 2),
                    avg_retention=round(sum(r[1] for r in rows) / n, 2),
                    avg_adoption=round(sum(r[2] for r in rows) / n, 2),
                    avg_activity=round(sum(r[3] for r in rows) / n, 2),
                )
            )
    return out
