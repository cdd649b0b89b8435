from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Tuple

from .types import (
    AddressKind,
    Entitlement,
    PrivacyAuditEntry,
    PrivacyMode,
    SubscriptionStatus,
    Wallet,
)


class Storage(Protocol):
    """
    Persistence collaborator. ``set_privacy_mode`` and ``set_entitlement`` are
    single-row atomic updates; the engine holds no locks of its own.
    """

    def get_wallet(self, wallet_id: str) -> Optional[Wallet]: ...
    def set_privacy_mode(self, wallet_id: str, mode: PrivacyMode) -> None: ...
    def append_audit_entry(self, entry: PrivacyAuditEntry) -> None: ...
    def list_audit_entries(self, wallet_id: str) -> List[PrivacyAuditEntry]: ...
    def get_entitlement(self, user_id: str) -> Optional[Entitlement]: ...
    def set_entitlement(self, user_id: str, patch: Mapping[str, Any]) -> Entitlement: ...
    def has_paid_access(self, wallet_id: str, requester_id: str) -> bool: ...


class InMemoryStorage:
    """
    Dict-backed Storage. Audit entries are append-only per wallet, in
    insertion order.
    """

    def __init__(self) -> None:
        self._wallets: Dict[str, Wallet] = {}
        self._audit: Dict[str, List[PrivacyAuditEntry]] = {}
        self._entitlements: Dict[str, Entitlement] = {}
        self._paid: Set[Tuple[str, str]] = set()

    # -- wallets ---------------------------------------------------------------

    def add_wallet(self, wallet: Wallet) -> None:
        self._wallets[wallet.id] = wallet

    def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        return self._wallets.get(wallet_id)

    def set_privacy_mode(self, wallet_id: str, mode: PrivacyMode) -> None:
        w = self._wallets.get(wallet_id)
        if w is None:
            raise KeyError(wallet_id)
        self._wallets[wallet_id] = replace(w, privacy_mode=PrivacyMode(mode))

    # -- audit -----------------------------------------------------------------

    def append_audit_entry(self, entry: PrivacyAuditEntry) -> None:
        self._audit.setdefault(entry.wallet_id, []).append(entry)

    def list_audit_entries(self, wallet_id: str) -> List[PrivacyAuditEntry]:
        return list(self._audit.get(wallet_id, []))

    # -- entitlements ----------------------------------------------------------

    def get_entitlement(self, user_id: str) -> Optional[Entitlement]:
        return self._entitlements.get(user_id)

    def set_entitlement(self, user_id: str, patch: Mapping[str, Any]) -> Entitlement:
        cur = self._entitlements.get(user_id)
        if cur is None:
            ent = Entitlement(user_id=user_id, **dict(patch))
        else:
            ent = replace(cur, **dict(patch))
        self._entitlements[user_id] = ent
        return ent

    # -- paid access -----------------------------------------------------------

    def record_paid_access(self, wallet_id: str, requester_id: str) -> None:
        self._paid.add((wallet_id, requester_id))

    def has_paid_access(self, wallet_id: str, requester_id: str) -> bool:
        return (wallet_id, requester_id) in self._paid

    # -- snapshot loading ------------------------------------------------------

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "InMemoryStorage":
        """
        Build storage from a plain mapping (e.g. parsed YAML/JSON):

        {
          "wallets": [{"id": ..., "project_id": ..., "owner_id": ..., "address": ...,
                       "address_kind": "shielded", "privacy_mode": "public"}],
          "entitlements": [{"user_id": ..., "status": "free", "trial_expires_at": "..."}],
          "paid_access": [{"wallet_id": ..., "requester_id": ...}]
        }
        """
        store = cls()
        for w in snapshot.get("wallets", []) or []:
            if not isinstance(w, dict):
                raise ValueError("snapshot.wallets items must be objects")
            store.add_wallet(
                Wallet(
                    id=str(w["id"]),
                    project_id=str(w.get("project_id", "")),
                    owner_id=str(w["owner_id"]),
                    address=str(w.get("address", "")),
                    address_kind=AddressKind(w.get("address_kind", "transparent")),
                    privacy_mode=PrivacyMode(w.get("privacy_mode", "private")),
                    is_active=bool(w.get("is_active", True)),
                    created_at=_parse_dt(w.get("created_at")),
                )
            )
        for e in snapshot.get("entitlements", []) or []:
            if not isinstance(e, dict):
                raise ValueError("snapshot.entitlements items must be objects")
            trial = _parse_dt(e.get("trial_expires_at"))
            if trial is None:
                raise ValueError(f"entitlement for {e.get('user_id')} missing trial_expires_at")
            store.set_entitlement(
                str(e["user_id"]),
                {
                    "status": SubscriptionStatus(e.get("status", "free")),
                    "trial_expires_at": trial,
                    "subscription_expires_at": _parse_dt(e.get("subscription_expires_at")),
                    "created_at": _parse_dt(e.get("created_at")),
                    "auto_renew": bool(e.get("auto_renew", True)),
                },
            )
        for p in snapshot.get("paid_access", []) or []:
            store.record_paid_access(str(p["wallet_id"]), str(p["requester_id"]))
        return store


def _parse_dt(v: Any) -> Optional[datetime]:
    if v is None:
        return None
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, date):
        dt = datetime(v.year, v.month, v.day)
    else:
        dt = datetime.fromisoformat(str(v))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
