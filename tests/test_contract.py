import json
from datetime import date

import pytest

from zpae.contract import AnalyticsRequest, PrivacyUpdateRequest, UpgradeRequest, canonicalize, fingerprint, parse_samples, to_json
from zpae.errors import ValidationError
from zpae.types import AdoptionStage, FunnelStage


def test_canonicalize_is_deterministic():
    stage = FunnelStage(AdoptionStage.FIRST_TX, 3, 75.0, 1 / 3 * 100)
    obj = {"b": stage, "a": (date(2026, 1, 5), None)}
    out = canonicalize(obj)
    assert list(out) == ["a", "b"]
    assert out["a"] == ["2026-01-05", None]
    assert out["b"]["stage"] == "first_tx"
    assert out["b"]["conversion_rate_from_previous"] == 33.33333333

    assert to_json(obj) == to_json(dict(reversed(list(obj.items()))))
    assert json.loads(to_json(obj, indent=None))["b"]["wallet_count"] == 3


def test_fingerprint_ignores_key_order():
    assert fingerprint({"x": 1, "y": [1, 2]}) == fingerprint({"y": [1, 2], "x": 1})
    assert fingerprint({"x": 1}) != fingerprint({"x": 2})


def test_request_parsing():
    req = AnalyticsRequest.from_dict({"wallet_ids": ["W1", "W2"], "requester_id": "N"})
    assert req.wallet_ids == ("W1", "W2")

    upd = PrivacyUpdateRequest.from_dict({"wallet_id": "W1", "new_mode": "public", "actor_id": "O"})
    assert upd.new_mode == "public"
    assert UpgradeRequest.from_dict({"user_id": "u", "duration_months": 3}).duration_months == 3

    with pytest.raises(ValidationError):
        AnalyticsRequest.from_dict({"wallet_ids": "W1", "requester_id": "N"})
    with pytest.raises(ValidationError):
        PrivacyUpdateRequest.from_dict({"wallet_id": "W1", "new_mode": "", "actor_id": "O"})


def test_parse_samples():
    rows = [{"wallet_id": "W1", "period_start": "2026-01-05", "transaction_count": "4", "sequence_complexity_score": 2}]
    [s] = parse_samples(rows)
    assert s.period_start == date(2026, 1, 5)
    assert s.transaction_count == 4
    assert s.active_days == 0
    assert s.sequence_complexity_score == 2.0

    with pytest.raises(ValidationError) as ei:
        parse_samples([rows[0], {"wallet_id": "W2"}])
    assert ei.value.code == "INVALID_SAMPLE"
    assert ei.value.problem.details == {"index": 1}
