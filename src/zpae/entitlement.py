from __future__ import annotations
import calendar
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from .config import PricingConfig
from .errors import NotFoundError, ValidationError
from .storage import Storage
from .types import (
    Entitlement,
    EntitlementStatus,
    RequirementCheck,
    SubscriptionStatus,
    UpgradeReceipt,
)

logger = structlog.get_logger(__name__)

DAY = timedelta(days=1)
PAID_STATUSES = (SubscriptionStatus.PREMIUM, SubscriptionStatus.ENTERPRISE)
PLAN_DURATIONS = (1, 3, 6, 12)


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's end."""
    idx = dt.month - 1 + months
    year = dt.year + idx // 12
    month = idx % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def compute_status(entitlement: Entitlement, now: datetime) -> EntitlementStatus:
    """
    Derive the effective subscription state at ``now``.

    A paid subscription past ``subscription_expires_at`` has lapsed: it reads
    as free with the trial already spent.
    """
    status = entitlement.status
    if status is SubscriptionStatus.FREE:
        expires_at: Optional[datetime] = entitlement.trial_expires_at
        is_expired = now >= entitlement.trial_expires_at
    else:
        expires_at = entitlement.subscription_expires_at
        is_expired = expires_at is not None and now >= expires_at
        if is_expired:
            status = SubscriptionStatus.FREE

    days_remaining: Optional[int] = None
    if expires_at is not None:
        days_remaining = max(0, math.ceil((expires_at - now) / DAY))

    return EntitlementStatus(
        user_id=entitlement.user_id,
        status=status,
        is_expired=is_expired,
        is_active=status is not SubscriptionStatus.FREE or not is_expired,
        is_premium=status in PAID_STATUSES and not is_expired,
        days_remaining=days_remaining,
        expires_at=expires_at,
        auto_renew=entitlement.auto_renew,
    )


def require_active(status: EntitlementStatus) -> RequirementCheck:
    if status.is_active:
        return RequirementCheck(passed=True, reason="Subscription active")
    return RequirementCheck(
        passed=False,
        reason="Your subscription has expired. Please upgrade to continue.",
        code="SUBSCRIPTION_EXPIRED",
    )


def require_premium(status: EntitlementStatus) -> RequirementCheck:
    if status.is_premium:
        return RequirementCheck(passed=True, reason="Premium subscription active")
    return RequirementCheck(
        passed=False,
        reason="This feature requires a premium subscription.",
        code="PREMIUM_REQUIRED",
    )


def trial_expiring_soon(status: EntitlementStatus, within_days: int = 7) -> bool:
    return (
        status.status is SubscriptionStatus.FREE
        and status.days_remaining is not None
        and 0 < status.days_remaining <= within_days
    )


class EntitlementGate:
    """
    Trial/subscription state machine: free trial -> premium (or enterprise),
    lapsing back to free without a second trial.
    """

    def __init__(
        self,
        storage: Storage,
        pricing: Optional[PricingConfig] = None,
        *,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._storage = storage
        self.pricing = pricing or PricingConfig()
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    compute_status = staticmethod(compute_status)
    require_active = staticmethod(require_active)
    require_premium = staticmethod(require_premium)
    trial_expiring_soon = staticmethod(trial_expiring_soon)

    def create(self, user_id: str) -> Entitlement:
        existing = self._storage.get_entitlement(user_id)
        if existing is not None:
            return existing
        now = self._now()
        ent = self._storage.set_entitlement(
            user_id,
            {
                "status": SubscriptionStatus.FREE,
                "trial_expires_at": now + timedelta(days=self.pricing.trial_days),
                "subscription_expires_at": None,
                "created_at": now,
                "auto_renew": True,
            },
        )
        logger.info("entitlement_created", user_id=user_id, trial_expires_at=ent.trial_expires_at.isoformat())
        return ent

    def get(self, user_id: str) -> Entitlement:
        ent = self._storage.get_entitlement(user_id)
        if ent is None:
            raise NotFoundError.build(
                "ENTITLEMENT_NOT_FOUND",
                f"No entitlement for user: {user_id}",
                details={"user_id": user_id},
            )
        return ent

    def status_for(self, user_id: str) -> EntitlementStatus:
        return compute_status(self.get(user_id), self._now())

    # -- pricing ---------------------------------------------------------------

    def _validate_duration(self, duration_months: Any) -> int:
        ok = isinstance(duration_months, int) and not isinstance(duration_months, bool)
        if not ok or not 1 <= duration_months <= self.pricing.max_duration_months:
            raise ValidationError.build(
                "INVALID_DURATION",
                f"Invalid subscription duration: {duration_months!r}",
                details={"value": repr(duration_months), "max_months": self.pricing.max_duration_months},
                remediation=f"Use a whole number of months between 1 and {self.pricing.max_duration_months}.",
            )
        return duration_months

    def price_for(self, duration_months: int) -> Tuple[float, float]:
        """Return (amount, discount) for a subscription of ``duration_months``."""
        months = self._validate_duration(duration_months)
        discount = self.pricing.discount_for(months)
        amount = round(self.pricing.base_monthly * months * (1 - discount), 8)
        return amount, discount

    def plans(self) -> List[Dict[str, Any]]:
        out = []
        for months in PLAN_DURATIONS:
            if months > self.pricing.max_duration_months:
                continue
            amount, discount = self.price_for(months)
            out.append({
                "duration_months": months,
                "price": amount,
                "price_per_month": round(amount / months, 8),
                "discount": discount,
                "currency": self.pricing.currency,
            })
        return out

    # -- transitions -----------------------------------------------------------

    def upgrade(self, user_id: str, duration_months: Any) -> UpgradeReceipt:
        months = self._validate_duration(duration_months)
        cur = self.get(user_id)
        if cur.status is SubscriptionStatus.ENTERPRISE:
            raise ValidationError.build(
                "ENTERPRISE_MANAGED",
                "Enterprise subscriptions are managed by contract",
                details={"user_id": user_id},
            )

        amount, discount = self.price_for(months)
        now = self._now()
        ent = self._storage.set_entitlement(
            user_id,
            {
                "status": SubscriptionStatus.PREMIUM,
                "subscription_expires_at": add_months(now, months),
                "auto_renew": True,
            },
        )
        logger.info(
            "entitlement_upgraded",
            user_id=user_id,
            duration_months=months,
            amount=amount,
            discount=discount,
            expires_at=ent.subscription_expires_at.isoformat() if ent.subscription_expires_at else None,
        )
        return UpgradeReceipt(entitlement=ent, duration_months=months, amount=amount, discount=discount)

    def cancel(self, user_id: str) -> Entitlement:
        cur = self.get(user_id)
        st = compute_status(cur, self._now())
        if not st.is_premium:
            raise ValidationError.build(
                "NO_ACTIVE_SUBSCRIPTION",
                "There is no paid subscription to cancel",
                details={"user_id": user_id, "status": st.status.value},
            )
        ent = self._storage.set_entitlement(user_id, {"auto_renew": False})
        logger.info("entitlement_cancelled", user_id=user_id, access_until=st.expires_at.isoformat() if st.expires_at else None)
        return ent
