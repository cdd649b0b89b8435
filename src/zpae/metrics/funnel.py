from __future__ import annotations
from typing import Dict, Iterable, List, Union

from ..types import ADOPTION_STAGES, ActivitySample, AdoptionStage, FunnelStage, Wallet
from .core import _pct, group_samples, stages_reached, summarize_activity, wallet_ids


def compute_funnel(wallets: Iterable[Union[Wallet, str]], samples: Iterable[ActivitySample]) -> List[FunnelStage]:
    """
    Adoption funnel over the fixed stage order. Stage membership is cumulative,
    so counts never increase down the funnel.
    """
    ids = wallet_ids(wallets)
    by_wallet = group_samples(samples, ids)

    counts: Dict[AdoptionStage, int] = {s: 0 for s in ADOPTION_STAGES}
    for wid in ids:
        for stage in stages_reached(summarize_activity(wid, by_wallet.get(wid, []))):
            counts[stage] += 1

    total = len(ids)
    out: List[FunnelStage] = []
    prev = None
    for stage in ADOPTION_STAGES:
        n = counts[stage]
        conversion = 0.0 if prev is None else _pct(n, prev)
        out.append(
            FunnelStage(
                stage=stage,
                wallet_count=n,
                percentage_of_total=_pct(n, total),
                conversion_rate_from_previous=conversion,
            )
        )
        prev = n
    return out
