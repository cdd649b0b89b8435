"""Wallet metrics: activity summaries, productivity scores, cohorts, funnel and segments."""

from .aggregator import MetricsAggregator
from .cohorts import compute_cohorts
from .core import (
    compute_productivity_score,
    score_wallet,
    stages_reached,
    summarize_activity,
    week_start,
)
from .funnel import compute_funnel
from .segments import classify_risk, classify_status, segment

__all__ = [
    "MetricsAggregator",
    "classify_risk",
    "classify_status",
    "compute_cohorts",
    "compute_funnel",
    "compute_productivity_score",
    "score_wallet",
    "segment",
    "stages_reached",
    "summarize_activity",
    "week_start",
]
