# src/zpae/cli.py
from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml

from .broker import AccessBroker
from .config import EngineConfig, load_engine_config
from .contract import AnalyticsRequest, canonicalize, parse_samples, to_json
from .entitlement import EntitlementGate, trial_expiring_soon
from .errors import ConfigError, ExitCode, ZPAEException, problem_to_dict
from .log import setup_logging
from .metrics import MetricsAggregator
from .storage import InMemoryStorage
from .types import ActivitySample, AddressKind, PrivacyMode, Wallet

logger = structlog.get_logger(__name__)


# =============================================================================
# Helpers: file IO + formatting
# =============================================================================

def _print_payload(payload: Any, fmt: str) -> None:
    if fmt == "json":
        print(to_json(payload))
    elif fmt == "jsonl":
        print(to_json(payload, indent=None))
    else:
        # "text": caller prints human-friendly output
        pass


def _load_document(path: str, what: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ConfigError.build(
            f"{what.upper()}_NOT_FOUND",
            f"{what.capitalize()} file not found: {path}",
            details={"path": path},
            remediation="Verify the path is correct and the file exists.",
        )
    try:
        return yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError.build(
            f"{what.upper()}_PARSE_ERROR",
            f"Failed to parse {what} file: {path}",
            details={"path": path, "error": repr(e)},
            remediation="Ensure the file is valid YAML or JSON encoded in UTF-8.",
            cause=e,
        )


def _load_config(args: argparse.Namespace) -> EngineConfig:
    return load_engine_config(args.config) if getattr(args, "config", None) else EngineConfig()


def _load_storage(path: str) -> InMemoryStorage:
    obj = _load_document(path, "snapshot")
    if not isinstance(obj, dict):
        raise ConfigError.build(
            "SNAPSHOT_TOPLEVEL_NOT_OBJECT",
            f"Snapshot must be an object at top-level: {path}",
            details={"path": path, "type": type(obj).__name__},
        )
    try:
        return InMemoryStorage.from_snapshot(obj)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError.build(
            "SNAPSHOT_INVALID",
            f"Invalid snapshot: {e}",
            details={"path": path, "error": repr(e)},
            remediation="Check wallet, entitlement and paid_access entries.",
            cause=e,
        )


def _load_samples(path: Optional[str]) -> List[ActivitySample]:
    if not path:
        return []
    obj = _load_document(path, "samples")
    rows = obj.get("samples", []) if isinstance(obj, dict) else obj
    if not isinstance(rows, list):
        raise ConfigError.build(
            "SAMPLES_NOT_A_LIST",
            f"Samples file must hold a list (or {{samples: [...]}}): {path}",
            details={"path": path},
        )
    return parse_samples(rows)


def _snapshot_wallet_ids(path: str) -> List[str]:
    obj = _load_document(path, "snapshot") or {}
    return [str(w["id"]) for w in obj.get("wallets", []) or [] if isinstance(w, dict) and "id" in w]


# =============================================================================
# Commands
# =============================================================================

def cmd_check_access(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    broker = AccessBroker(_load_storage(args.snapshot), config=cfg)
    decision = broker.policy.check_access(args.wallet, args.requester)

    if args.format in ("json", "jsonl"):
        _print_payload({"wallet_id": args.wallet, "requester_id": args.requester, **decision.to_dict()}, args.format)
    else:
        verdict = "ALLOW" if decision.allowed else "DENY"
        print(f"{verdict} {args.wallet} for {args.requester}: {decision.reason} (data_level={decision.data_level.value})")
        if decision.requires_payment:
            print("Payment required for access.")
    return 0


def cmd_analytics(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    broker = AccessBroker(_load_storage(args.snapshot), config=cfg)
    req = AnalyticsRequest.from_dict({
        "wallet_ids": list(args.wallet or _snapshot_wallet_ids(args.snapshot)),
        "requester_id": args.requester,
    })
    result = broker.get_analytics(req.wallet_ids, req.requester_id, _load_samples(args.samples))

    if args.format in ("json", "jsonl"):
        _print_payload(result, args.format)
        return 0

    p = result.privacy
    print(
        f"wallets: {p.visible_wallets}/{p.total_wallets} visible "
        f"({p.anonymized_wallets} anonymized, {p.denied} denied, {p.payment_required} payment required)"
    )
    for row in result.data["wallets"]:
        d = canonicalize(row)
        if "metrics" in d:
            print(f"- [anonymized] score={d['metrics'].get('total_score')} stage={d['metrics'].get('adoption_stage')}")
        else:
            print(f"- {d['id']} score={d['total_score']} stage={d['adoption_stage']}")
    if result.locked_features:
        print(f"locked (premium): {', '.join(result.locked_features)}")
    print("\n== Funnel ==")
    for st in result.data["funnel"]:
        print(f"{st.stage.value:<14} {st.wallet_count:>5}  {st.percentage_of_total:6.2f}%  conv={st.conversion_rate_from_previous:6.2f}%")
    print("\n== Cohorts ==")
    for c in result.data["cohorts"]:
        weeks = " ".join("-" if v is None else f"{v:.2f}" for v in c.retention)
        print(f"{c.cohort_period.isoformat()} n={c.wallet_count} {weeks}")
    print("\n== Segments ==")
    for b in result.data["segments"]:
        print(f"{b.status.value:<8} {b.risk_level.value:<6} n={b.wallet_count} avg={b.avg_score:.2f}")
    return 0


def cmd_score(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    samples = _load_samples(args.samples)
    agg = MetricsAggregator(cfg.scoring)
    ids = args.wallet or sorted({s.wallet_id for s in samples})
    scores = agg.score_wallets(ids, samples)

    if args.format in ("json", "jsonl"):
        _print_payload({"scores": list(scores.values())}, args.format)
    else:
        for wid, s in scores.items():
            print(
                f"{wid}: total={s.total_score:.2f} "
                f"(retention={s.retention_score:.2f}, activity={s.activity_score:.2f}, adoption={s.adoption_score:.2f})"
            )
    return 0


def cmd_price(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    gate = EntitlementGate(InMemoryStorage(), cfg.pricing)
    if args.months is None:
        plans = gate.plans()
    else:
        amount, discount = gate.price_for(args.months)
        plans = [{
            "duration_months": args.months,
            "price": amount,
            "discount": discount,
            "currency": cfg.pricing.currency,
        }]

    if args.format in ("json", "jsonl"):
        _print_payload({"plans": plans}, args.format)
    else:
        for p in plans:
            print(f"{p['duration_months']:>2} month(s): {p['price']} {p['currency']} (discount {p['discount']:.0%})")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    gate = EntitlementGate(_load_storage(args.snapshot), cfg.pricing)
    st = gate.status_for(args.user)

    if args.format in ("json", "jsonl"):
        _print_payload({**st.to_dict(), "trial_expiring_soon": trial_expiring_soon(st)}, args.format)
    else:
        print(f"{st.user_id}: {st.status.value} active={st.is_active} premium={st.is_premium}")
        if st.days_remaining is not None:
            print(f"days remaining: {st.days_remaining}")
        if trial_expiring_soon(st):
            print("Trial ends soon; upgrade to keep access.")
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    """Walk one owner, one stranger and three wallets through the access rules."""
    now = datetime(2026, 1, 5, tzinfo=timezone.utc)
    storage = InMemoryStorage()
    broker = AccessBroker(storage, config=_load_config(args), now_fn=lambda: now)
    for wid, mode, kind in (
        ("W1", PrivacyMode.PRIVATE, AddressKind.SHIELDED),
        ("W2", PrivacyMode.PUBLIC, AddressKind.UNIFIED),
        ("W3", PrivacyMode.MONETIZABLE, AddressKind.TRANSPARENT),
    ):
        storage.add_wallet(Wallet(wid, "demo-project", "owner", f"addr-{wid.lower()}", kind, mode, created_at=now))
    broker.gate.create("owner")
    broker.gate.create("stranger")

    start = date(2025, 12, 1)
    samples = [
        ActivitySample(wid, start + timedelta(weeks=w), transaction_count=3 + w, active_days=2 + w % 3,
                       total_volume=250_000 * (w + 1), sequence_complexity_score=2.5)
        for wid in ("W1", "W2", "W3")
        for w in range(5)
    ]

    before = {wid: broker.policy.check_access(wid, "stranger") for wid in ("W1", "W2", "W3")}
    storage.record_paid_access("W3", "stranger")
    after_payment = broker.policy.check_access("W3", "stranger")
    owner_view = broker.get_analytics(["W1", "W2", "W3"], "owner", samples)
    stranger_view = broker.get_analytics(["W1", "W2", "W3"], "stranger", samples)
    gate = broker.gate_premium_feature("stranger", "segments")
    amount, discount = broker.gate.price_for(3)

    out: Dict[str, Any] = {
        "stranger_access": before,
        "w3_after_payment": after_payment,
        "owner_privacy": owner_view.privacy,
        "stranger_privacy": stranger_view.privacy,
        "stranger_wallets": stranger_view.data["wallets"],
        "premium_gate": gate,
        "price_3_months": {"amount": amount, "discount": discount},
    }
    if args.format in ("json", "jsonl"):
        _print_payload(out, args.format)
    else:
        print("\n== Stranger access ==")
        for wid, d in before.items():
            print(f"{wid}: allowed={d.allowed} level={d.data_level.value} payment={d.requires_payment}")
        print(f"W3 after payment: allowed={after_payment.allowed} level={after_payment.data_level.value}")
        print("\n== Analytics privacy summaries ==")
        print(f"owner:    {to_json(owner_view.privacy, indent=None)}")
        print(f"stranger: {to_json(stranger_view.privacy, indent=None)}")
        print("\n== Premium gate (segments, trial user) ==")
        print(to_json(gate, indent=None))
        print(f"\n3-month upgrade: {amount} {broker.config.pricing.currency} (discount {discount:.0%})")
    return 0


# =============================================================================
# Parser + entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zpae", description="Privacy-tiered wallet analytics and entitlements")
    parser.add_argument("--config", help="Engine config (YAML/JSON)")
    parser.add_argument("--log-level", default=None, help="Override logging level")
    parser.add_argument("--format", choices=["text", "json", "jsonl"], default="text")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("check-access", help="Evaluate one wallet access decision")
    p.add_argument("--snapshot", required=True)
    p.add_argument("--wallet", required=True)
    p.add_argument("--requester", required=True)
    p.set_defaults(func=cmd_check_access)

    p = sub.add_parser("analytics", help="Privacy-filtered analytics for a requester")
    p.add_argument("--snapshot", required=True)
    p.add_argument("--samples")
    p.add_argument("--requester", required=True)
    p.add_argument("--wallet", action="append", help="Wallet id (repeatable); defaults to every snapshot wallet")
    p.set_defaults(func=cmd_analytics)

    p = sub.add_parser("score", help="Productivity scores from activity samples")
    p.add_argument("--samples", required=True)
    p.add_argument("--wallet", action="append")
    p.set_defaults(func=cmd_score)

    p = sub.add_parser("price", help="Subscription pricing")
    p.add_argument("--months", type=int, default=None)
    p.set_defaults(func=cmd_price)

    p = sub.add_parser("status", help="Entitlement status for a user")
    p.add_argument("--snapshot", required=True)
    p.add_argument("--user", required=True)
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("demo", help="Run an in-memory walkthrough")
    p.set_defaults(func=cmd_demo)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point used by the console script: `from zpae.cli import main`."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "cmd", None):
        parser.print_help()
        return 2

    try:
        cfg = _load_config(args)
        setup_logging(args.log_level or cfg.logging.level, cfg.logging.format)
        return int(args.func(args))
    except ZPAEException as e:
        payload = {"ok": False, "error": problem_to_dict(e.problem), "exit_code": int(e.exit_code)}
        if args.format in ("json", "jsonl"):
            _print_payload(payload, args.format)
        else:
            err = payload["error"]
            print(f"ERROR[{err.get('code', 'ZPAE_ERROR')}]: {err.get('message')}", file=sys.stderr)
            if err.get("remediation"):
                print(f"REMEDIATION: {err['remediation']}", file=sys.stderr)
            print(f"DETAILS: {err.get('details', {})}", file=sys.stderr)
        return int(e.exit_code)
    except Exception as e:
        logger.exception("cli_internal_error", command=args.cmd)
        payload = {
            "ok": False,
            "error": {"code": "ZPAE_INTERNAL_ERROR", "category": "internal", "message": str(e), "details": {"error": repr(e)}},
            "exit_code": int(ExitCode.INTERNAL_ERROR),
        }
        if args.format in ("json", "jsonl"):
            _print_payload(payload, args.format)
        else:
            print(f"ERROR[ZPAE_INTERNAL_ERROR]: {e}", file=sys.stderr)
        return int(ExitCode.INTERNAL_ERROR)


if __name__ == "__main__":
    raise SystemExit(main())
