"""
Request/response contract for the engine's callers.

Requests arrive as plain mappings (parsed JSON/YAML) and are validated into
frozen request objects. Responses are rendered with deterministic key order
and float rounding so identical inputs produce byte-identical output.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, List, Mapping, Tuple

from .errors import ValidationError
from .types import ActivitySample


# =============================================================================
# Canonical rendering
# =============================================================================

def canonicalize(obj: Any, *, float_ndigits: int = 8) -> Any:
    """
    Convert obj into a JSON-serializable, deterministic representation:
    - objects with to_dict() converted first, then plain dataclasses
    - enums to their value, dates to ISO strings
    - dict keys sorted
    - floats rounded to float_ndigits
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return canonicalize(obj.value, float_ndigits=float_ndigits)
    if isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return round(obj, float_ndigits)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [canonicalize(x, float_ndigits=float_ndigits) for x in obj]
    if hasattr(obj, "to_dict") and callable(getattr(obj, "to_dict")):
        return canonicalize(obj.to_dict(), float_ndigits=float_ndigits)
    if is_dataclass(obj) and not isinstance(obj, type):
        return canonicalize(asdict(obj), float_ndigits=float_ndigits)
    if isinstance(obj, Mapping):
        return {
            str(k): canonicalize(obj[k], float_ndigits=float_ndigits)
            for k in sorted(obj.keys(), key=lambda x: str(x))
        }
    return str(obj)


def to_json(obj: Any, *, indent: int = 2, float_ndigits: int = 8) -> str:
    return json.dumps(canonicalize(obj, float_ndigits=float_ndigits), ensure_ascii=False, sort_keys=True, indent=indent)


def fingerprint(obj: Any) -> str:
    """sha256 over the compact canonical JSON of ``obj``."""
    data = json.dumps(canonicalize(obj), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


# =============================================================================
# Requests
# =============================================================================

def _require_str(d: Mapping[str, Any], key: str) -> str:
    v = d.get(key)
    if not isinstance(v, str) or not v:
        raise ValidationError.build(
            "INVALID_REQUEST",
            f"'{key}' must be a non-empty string",
            details={"field": key},
        )
    return v


def _require_str_list(d: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    v = d.get(key)
    if not isinstance(v, list) or not all(isinstance(x, str) and x for x in v):
        raise ValidationError.build(
            "INVALID_REQUEST",
            f"'{key}' must be a list of non-empty strings",
            details={"field": key},
        )
    return tuple(v)


@dataclass(frozen=True)
class AnalyticsRequest:
    wallet_ids: Tuple[str, ...]
    requester_id: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "AnalyticsRequest":
        return cls(wallet_ids=_require_str_list(d, "wallet_ids"), requester_id=_require_str(d, "requester_id"))


@dataclass(frozen=True)
class PrivacyUpdateRequest:
    wallet_id: str
    new_mode: str
    actor_id: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "PrivacyUpdateRequest":
        return cls(
            wallet_id=_require_str(d, "wallet_id"),
            new_mode=_require_str(d, "new_mode"),
            actor_id=_require_str(d, "actor_id"),
        )


@dataclass(frozen=True)
class UpgradeRequest:
    user_id: str
    duration_months: Any  # range-checked by EntitlementGate

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "UpgradeRequest":
        return cls(user_id=_require_str(d, "user_id"), duration_months=d.get("duration_months"))


def parse_samples(rows: Iterable[Mapping[str, Any]]) -> List[ActivitySample]:
    """Build ActivitySamples from ingestion rows; ``period_start`` is an ISO date."""
    out: List[ActivitySample] = []
    for i, r in enumerate(rows or []):
        try:
            ps = r["period_start"]
            period = ps if isinstance(ps, date) else date.fromisoformat(str(ps))
            out.append(
                ActivitySample(
                    wallet_id=str(r["wallet_id"]),
                    period_start=period,
                    transaction_count=int(r.get("transaction_count", 0)),
                    active_days=int(r.get("active_days", 0)),
                    total_volume=int(r.get("total_volume", 0)),
                    sequence_complexity_score=float(r.get("sequence_complexity_score", 0.0)),
                )
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError.build(
                "INVALID_SAMPLE",
                f"Invalid activity sample at index {i}: {e}",
                details={"index": i},
                cause=e,
            )
    return out
