"""
Config-bound facade over the metric functions.

Every method is a pure function of its arguments; the aggregator holds only
its ScoringConfig.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..config import ScoringConfig
from ..types import (
    ActivitySample,
    ActivitySummary,
    AdoptionStage,
    CohortRecord,
    FunnelStage,
    ProductivityScore,
    SegmentBucket,
    Wallet,
)
from .cohorts import compute_cohorts
from .core import compute_productivity_score, group_samples, score_wallet, stages_reached, summarize_activity, wallet_ids
from .funnel import compute_funnel
from .segments import ScoreHistory, segment


class MetricsAggregator:
    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def summarize_activity(self, wallet_id: str, samples: Sequence[ActivitySample]) -> ActivitySummary:
        return summarize_activity(wallet_id, samples)

    def adoption_stage(self, wallet_id: str, samples: Sequence[ActivitySample]) -> AdoptionStage:
        """Furthest funnel stage the wallet has reached."""
        return stages_reached(summarize_activity(wallet_id, samples))[-1]

    def compute_productivity_score(self, sample: ActivitySample) -> ProductivityScore:
        return compute_productivity_score(sample, self.config.weights)

    def score_wallet(self, wallet_id: str, samples: Sequence[ActivitySample]) -> ProductivityScore:
        return score_wallet(wallet_id, samples, self.config.weights)

    def score_wallets(
        self,
        wallets: Iterable[Union[Wallet, str]],
        samples: Iterable[ActivitySample],
    ) -> Dict[str, ProductivityScore]:
        ids = wallet_ids(wallets)
        by_wallet = group_samples(samples, ids)
        return {wid: self.score_wallet(wid, by_wallet.get(wid, [])) for wid in ids}

    def compute_cohorts(
        self,
        wallets: Iterable[Union[Wallet, str]],
        samples: Iterable[ActivitySample],
        as_of: Optional[date] = None,
    ) -> List[CohortRecord]:
        return compute_cohorts(wallets, samples, as_of)

    def compute_funnel(self, wallets: Iterable[Union[Wallet, str]], samples: Iterable[ActivitySample]) -> List[FunnelStage]:
        return compute_funnel(wallets, samples)

    def segment(self, scores_by_wallet: Mapping[str, ScoreHistory]) -> List[SegmentBucket]:
        return segment(scores_by_wallet, self.config.segments, self.config.risk)
