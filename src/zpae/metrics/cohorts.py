from __future__ import annotations
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set, Union

from ..types import ActivitySample, CohortRecord, Wallet
from .core import _pct, wallet_ids, week_start

RETENTION_WEEKS = 5  # week 0 through week 4


def compute_cohorts(
    wallets: Iterable[Union[Wallet, str]],
    samples: Iterable[ActivitySample],
    as_of: Optional[date] = None,
) -> List[CohortRecord]:
    """
    Weekly cohorts keyed by the week of each wallet's first active sample.

    Week N is reachable once ``as_of`` is on or after the cohort week plus N
    weeks; unreachable weeks are None. ``as_of`` defaults to the latest sample
    period in the snapshot so the result depends only on the inputs.
    """
    ids = set(wallet_ids(wallets))
    rows = [s for s in samples or [] if s.wallet_id in ids]
    if not rows:
        return []
    horizon = as_of or max(s.period_start for s in rows)

    active_weeks: Dict[str, Set[date]] = defaultdict(set)
    for s in rows:
        if s.is_active:
            active_weeks[s.wallet_id].add(week_start(s.period_start))

    cohorts: Dict[date, List[str]] = defaultdict(list)
    for wid, weeks in active_weeks.items():
        cohorts[min(weeks)].append(wid)

    out: List[CohortRecord] = []
    for period in sorted(cohorts):
        members = cohorts[period]
        n = len(members)
        values: List[Optional[float]] = [100.0]
        for week in range(1, RETENTION_WEEKS):
            target = period + timedelta(weeks=week)
            if horizon < target:
                values.append(None)
                continue
            retained = sum(1 for wid in members if target in active_weeks[wid])
            values.append(_pct(retained, n))
        out.append(
            CohortRecord(
                cohort_period=period,
                wallet_count=n,
                retention_week_0=values[0],
                retention_week_1=values[1],
                retention_week_2=values[2],
                retention_week_3=values[3],
                retention_week_4=values[4],
            )
        )
    return out
