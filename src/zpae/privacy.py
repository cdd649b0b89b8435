"""
Privacy policy for wallet analytics.

Design goals:
- Fail-closed: unknown wallets, unknown modes and unknown record kinds never
  widen access.
- Immediate: every decision re-reads the wallet from storage; nothing is cached.
- Allowlist anonymization: each record kind declares the fields that may leave
  the engine; everything else is dropped.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

import structlog

from .errors import ForbiddenError, NotFoundError, ValidationError
from .storage import Storage
from .types import (
    AccessDecision,
    ActivitySample,
    AnonymizedRecord,
    DataLevel,
    PrivacyAuditEntry,
    PrivacyMode,
    ProductivityScore,
    TransitionCheck,
    Wallet,
    WalletAnalytics,
)

logger = structlog.get_logger(__name__)

DEFAULT_SHARED_MODES: Tuple[PrivacyMode, ...] = (PrivacyMode.PUBLIC, PrivacyMode.MONETIZABLE)

# record kind -> (kind label, allowlisted fields)
_ANONYMIZERS: Dict[Type[Any], Tuple[str, Tuple[str, ...]]] = {
    Wallet: ("wallet", Wallet.ANONYMIZED_FIELDS),
    ActivitySample: ("activity_sample", ActivitySample.ANONYMIZED_FIELDS),
    ProductivityScore: ("productivity_score", ProductivityScore.ANONYMIZED_FIELDS),
    WalletAnalytics: ("wallet_analytics", WalletAnalytics.ANONYMIZED_FIELDS),
}


def coerce_mode(value: Any) -> Optional[PrivacyMode]:
    """Return the PrivacyMode for ``value`` or None if it is not one."""
    if isinstance(value, PrivacyMode):
        return value
    try:
        return PrivacyMode(str(value))
    except ValueError:
        return None


def _require_mode(value: Any) -> PrivacyMode:
    mode = coerce_mode(value)
    if mode is None:
        raise ValidationError.build(
            "INVALID_PRIVACY_MODE",
            f"Invalid privacy mode: {value!r}",
            details={"value": str(value), "allowed": [m.value for m in PrivacyMode]},
            remediation="Use one of: private, public, monetizable.",
        )
    return mode


def anonymize_wallet_data(record: Any) -> AnonymizedRecord:
    """
    Strip identifying fields from a record, keeping only its allowlisted
    metrics. The input is never mutated.
    """
    entry = _ANONYMIZERS.get(type(record))
    if entry is None:
        raise ValidationError.build(
            "UNSUPPORTED_RECORD_KIND",
            f"No anonymization allowlist for {type(record).__name__}",
            details={"kind": type(record).__name__},
        )
    kind, allowed = entry
    metrics = {name: getattr(record, name) for name in allowed}
    return AnonymizedRecord(kind=kind, metrics=metrics)


def anonymize_wallet_data_batch(records: Iterable[Any]) -> List[AnonymizedRecord]:
    return [anonymize_wallet_data(r) for r in records]


class PrivacyPolicy:
    def __init__(
        self,
        storage: Storage,
        *,
        now_fn: Optional[Callable[[], datetime]] = None,
        audit_log_limit: int = 50,
    ) -> None:
        self._storage = storage
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._audit_log_limit = audit_log_limit

    # -- transitions -----------------------------------------------------------

    def validate_transition(self, current: Any, next_mode: Any) -> TransitionCheck:
        cur = coerce_mode(current)
        nxt = coerce_mode(next_mode)
        if cur is None:
            return TransitionCheck(valid=False, requires_setup=False, reason=f"Invalid current privacy mode: {current}")
        if nxt is None:
            return TransitionCheck(valid=False, requires_setup=False, reason=f"Invalid privacy mode: {next_mode}")

        if nxt is PrivacyMode.MONETIZABLE:
            return TransitionCheck(
                valid=True,
                requires_setup=True,
                reason="Monetizable mode requires a payout destination before earnings can be paid",
            )
        return TransitionCheck(valid=True, requires_setup=False, reason=f"{cur.value} -> {nxt.value} allowed")

    # -- mutations -------------------------------------------------------------

    def update_privacy_mode(self, wallet_id: str, next_mode: Any, actor_id: str) -> Wallet:
        mode = _require_mode(next_mode)
        wallet = self._storage.get_wallet(wallet_id)
        if wallet is None:
            raise NotFoundError.build(
                "WALLET_NOT_FOUND",
                f"Wallet not found: {wallet_id}",
                details={"wallet_id": wallet_id},
            )
        if wallet.owner_id != actor_id:
            raise ForbiddenError.build(
                "WALLET_NOT_OWNED",
                "Only the wallet owner can change its privacy mode",
                details={"wallet_id": wallet_id, "actor_id": actor_id},
            )

        check = self.validate_transition(wallet.privacy_mode, mode)
        self._commit(wallet, mode, actor_id)
        if check.requires_setup:
            logger.warning("privacy_mode_requires_setup", wallet_id=wallet_id, reason=check.reason)

        return self._storage.get_wallet(wallet_id) or replace(wallet, privacy_mode=mode)

    def batch_update_privacy_mode(self, wallet_ids: Sequence[str], next_mode: Any, actor_id: str) -> List[Wallet]:
        """
        Validate every wallet first, then commit. Any failure rejects the whole
        batch before a single write.
        """
        mode = _require_mode(next_mode)
        ids = list(dict.fromkeys(wallet_ids))

        wallets: List[Wallet] = []
        missing: List[str] = []
        foreign: List[str] = []
        for wid in ids:
            w = self._storage.get_wallet(wid)
            if w is None:
                missing.append(wid)
            elif w.owner_id != actor_id:
                foreign.append(wid)
            else:
                wallets.append(w)

        if missing:
            logger.info("privacy_batch_rejected", reason="not_found", wallet_ids=missing, batch_size=len(ids))
            raise NotFoundError.build(
                "WALLETS_NOT_FOUND",
                f"{len(missing)} wallet(s) not found; batch rejected",
                details={"wallet_ids": missing, "batch_size": len(ids)},
                remediation="Remove unknown wallet ids and resubmit the batch.",
            )
        if foreign:
            logger.info("privacy_batch_rejected", reason="forbidden", wallet_ids=foreign, batch_size=len(ids))
            raise ForbiddenError.build(
                "WALLETS_NOT_OWNED",
                f"{len(foreign)} wallet(s) not owned by actor; batch rejected",
                details={"wallet_ids": foreign, "actor_id": actor_id, "batch_size": len(ids)},
            )

        out: List[Wallet] = []
        for w in wallets:
            self._commit(w, mode, actor_id)
            out.append(self._storage.get_wallet(w.id) or replace(w, privacy_mode=mode))
        return out

    def _commit(self, wallet: Wallet, mode: PrivacyMode, actor_id: str) -> None:
        self._storage.set_privacy_mode(wallet.id, mode)
        self._storage.append_audit_entry(
            PrivacyAuditEntry(
                wallet_id=wallet.id,
                previous_mode=wallet.privacy_mode,
                new_mode=mode,
                actor_id=actor_id,
                timestamp=self._now(),
            )
        )
        logger.info(
            "privacy_mode_changed",
            wallet_id=wallet.id,
            previous_mode=wallet.privacy_mode.value,
            new_mode=mode.value,
            actor_id=actor_id,
        )

    # -- reads -----------------------------------------------------------------

    def filter_wallets_by_privacy(
        self,
        wallet_ids: Iterable[str],
        allowed_modes: Union[Any, Iterable[Any]] = DEFAULT_SHARED_MODES,
    ) -> List[str]:
        if isinstance(allowed_modes, str):  # a single mode, PrivacyMode included
            allowed_modes = (allowed_modes,)
        allowed = {m for m in (coerce_mode(x) for x in allowed_modes) if m is not None}
        out: List[str] = []
        for wid in wallet_ids or []:
            w = self._storage.get_wallet(wid)
            if w is not None and w.privacy_mode in allowed:
                out.append(wid)
        return out

    def check_access(self, wallet_id: str, requester_id: str) -> AccessDecision:
        return self.decide(self._storage.get_wallet(wallet_id), requester_id)

    def decide(self, wallet: Optional[Wallet], requester_id: str) -> AccessDecision:
        """Access decision for a wallet record the caller has already read."""
        if wallet is None:
            return AccessDecision(False, "Wallet not found", False, DataLevel.DENIED)

        if wallet.owner_id == requester_id:
            return AccessDecision(True, "Owner access", False, DataLevel.FULL)

        mode = wallet.privacy_mode
        if mode is PrivacyMode.PUBLIC:
            return AccessDecision(True, "Wallet is public", False, DataLevel.ANONYMIZED)

        if mode is PrivacyMode.MONETIZABLE:
            if self._storage.has_paid_access(wallet.id, requester_id):
                return AccessDecision(True, "Paid access granted", False, DataLevel.ANONYMIZED)
            return AccessDecision(False, "Payment required for monetizable data", True, DataLevel.DENIED)

        return AccessDecision(False, "Wallet is private", False, DataLevel.DENIED)

    def get_audit_log(self, wallet_id: str, limit: Optional[int] = None) -> List[PrivacyAuditEntry]:
        n = self._audit_log_limit if limit is None else limit
        if n <= 0:
            return []
        entries = self._storage.list_audit_entries(wallet_id)
        # newest first; ties keep reverse insertion order
        ordered = sorted(enumerate(entries), key=lambda p: (p[1].timestamp, p[0]), reverse=True)
        return [e for _, e in ordered[:n]]

    def privacy_stats(self, wallet_ids: Iterable[str]) -> Dict[str, int]:
        stats = {m.value: 0 for m in PrivacyMode}
        stats["total"] = 0
        for wid in wallet_ids or []:
            w = self._storage.get_wallet(wid)
            if w is None:
                continue
            stats[w.privacy_mode.value] += 1
            stats["total"] += 1
        return stats

    anonymize_wallet_data = staticmethod(anonymize_wallet_data)
    anonymize_wallet_data_batch = staticmethod(anonymize_wallet_data_batch)
