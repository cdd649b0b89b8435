import math
from pathlib import Path

import pytest

from zpae.config import (
    EngineConfig,
    PricingConfig,
    RiskThresholds,
    ScoringWeights,
    SegmentThresholds,
    load_engine_config,
)
from zpae.errors import ConfigError, ExitCode

ENGINE_YAML = Path(__file__).resolve().parent.parent / "examples" / "configs" / "engine.yaml"


def test_valid_weights_accepted():
    w = ScoringWeights()
    assert math.isclose(w.retention + w.activity + w.adoption, 1.0)


def test_weights_not_summing_to_one_raises():
    with pytest.raises(ValueError, match="must sum to 1.0"):
        ScoringWeights(0.5, 0.5, 0.5)


def test_negative_weight_raises():
    with pytest.raises(ValueError, match="non-negative"):
        ScoringWeights(-0.1, 0.6, 0.5)


def test_weights_within_float_tolerance_accepted():
    # 0.1 + 0.2 + 0.7 is not exactly 1.0 in binary floating point
    w = ScoringWeights(0.1, 0.2, 0.7)
    assert math.isclose(w.retention + w.activity + w.adoption, 1.0)


def test_segment_cutoffs_must_be_ordered():
    with pytest.raises(ValueError, match="at_risk < healthy"):
        SegmentThresholds(healthy=50, at_risk=75)
    with pytest.raises(ValueError):
        RiskThresholds(low=20, medium=30)


def test_pricing_validation_and_discount_lookup():
    with pytest.raises(ValueError, match="trial_days"):
        PricingConfig(trial_days=0)
    p = PricingConfig()
    assert [p.discount_for(m) for m in (1, 2, 3, 5, 6, 12, 36)] == [0.0, 0.0, 0.05, 0.05, 0.10, 0.20, 0.20]


def test_load_example_config():
    cfg = load_engine_config(str(ENGINE_YAML))
    assert cfg.scoring.weights == ScoringWeights(0.4, 0.3, 0.3)
    assert cfg.pricing.discount_for(3) == 0.05
    assert cfg.analytics.premium_features == ("segments", "cohorts", "funnel", "export")
    assert cfg.audit_log_limit == 50


def test_missing_keys_fall_back_to_defaults(tmp_path: Path):
    f = tmp_path / "engine.yaml"
    f.write_text("pricing:\n  base_monthly: 0.2\n", encoding="utf-8")
    cfg = load_engine_config(str(f))
    assert cfg.pricing.base_monthly == 0.2
    assert cfg.pricing.trial_days == 30
    assert cfg.scoring == EngineConfig().scoring

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_engine_config(str(empty)).audit_log_limit == 50


def test_bad_config_files(tmp_path: Path):
    with pytest.raises(ConfigError) as ei:
        load_engine_config(str(tmp_path / "nope.yaml"))
    assert ei.value.code == "CONFIG_NOT_FOUND"
    assert ei.value.exit_code == ExitCode.CONFIG_INVALID

    lst = tmp_path / "list.yaml"
    lst.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        load_engine_config(str(lst))
    assert ei.value.code == "CONFIG_TOPLEVEL_NOT_OBJECT"

    bad = tmp_path / "bad.yaml"
    bad.write_text("scoring:\n  weights: {retention: 0.9, activity: 0.3, adoption: 0.3}\n", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        load_engine_config(str(bad))
    assert ei.value.code == "CONFIG_INVALID"
    assert "must sum to 1.0" in ei.value.problem.message
