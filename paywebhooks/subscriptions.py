"""Subscription registry — per-customer commercial state.

One Subscription per customer key. A new activation replaces the prior
record; records are never deleted, only status-transitioned.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


@dataclass(frozen=True)
class Plan:
    """Free, or a paid tier with a billing cadence."""

    tier: PlanTier
    monthly: bool = False

    @property
    def is_paid(self) -> bool:
        return self.tier != PlanTier.FREE

    @property
    def code(self) -> str:
        if not self.is_paid:
            return "free"
        return f"{self.tier.value}_{'monthly' if self.monthly else 'annual'}"


FREE_PLAN = Plan(PlanTier.FREE)

# Opaque provider plan code -> Plan. Unknown codes resolve to FREE_PLAN.
PLAN_CODES: dict[str, Plan] = {
    "pro_monthly": Plan(PlanTier.PRO, monthly=True),
    "pro_annual": Plan(PlanTier.PRO, monthly=False),
    "enterprise_monthly": Plan(PlanTier.ENTERPRISE, monthly=True),
    "enterprise_annual": Plan(PlanTier.ENTERPRISE, monthly=False),
}


def resolve_plan(plan_code: str | None) -> Plan:
    """Map a plan code to a Plan, defaulting to Free (never an error)."""
    plan = PLAN_CODES.get((plan_code or "").strip().lower())
    if plan is None:
        logger.info("Unrecognized plan code %r — defaulting to free", plan_code)
        return FREE_PLAN
    return plan


@dataclass(frozen=True)
class Subscription:
    customer_key: str
    plan: Plan
    status: SubscriptionStatus
    activated_at: datetime
    subscription_id: str = ""
    provider_customer_id: str | None = None
    provider_subscription_id: str | None = None
    current_period_end: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "customer_key": self.customer_key,
            "plan": self.plan.code,
            "status": self.status.value,
            "activated_at": self.activated_at.isoformat(),
            "current_period_end": (
                self.current_period_end.isoformat() if self.current_period_end else None
            ),
            "provider_customer_id": self.provider_customer_id,
            "provider_subscription_id": self.provider_subscription_id,
        }


class SubscriptionRegistry:
    """Owned map of customer key -> Subscription.

    Writes serialize on a single lock for the whole map. Subscriptions are
    frozen, so readers get a consistent snapshot without locking.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def activate(
        self,
        customer_key: str,
        provider_customer_id: str | None,
        provider_subscription_id: str | None,
        plan_code: str | None,
    ) -> Subscription:
        """Create or replace the subscription for *customer_key*."""
        subscription = Subscription(
            customer_key=customer_key,
            plan=resolve_plan(plan_code),
            status=SubscriptionStatus.ACTIVE,
            activated_at=datetime.now(timezone.utc),
            subscription_id=str(uuid.uuid4()),
            provider_customer_id=provider_customer_id,
            provider_subscription_id=provider_subscription_id,
        )
        async with self._lock:
            self._subscriptions[customer_key] = subscription

        logger.info("Activated %s for %s", subscription.plan.code, customer_key)
        return subscription

    async def get(self, customer_key: str) -> Subscription | None:
        return self._subscriptions.get(customer_key)

    async def cancel(self, customer_key: str) -> bool:
        """Transition to canceled. False (no-op) if the key is unknown."""
        async with self._lock:
            current = self._subscriptions.get(customer_key)
            if current is None:
                return False
            self._subscriptions[customer_key] = dataclasses.replace(
                current, status=SubscriptionStatus.CANCELED
            )

        logger.info("Canceled subscription for %s", customer_key)
        return True

    async def record_period_end(
        self, customer_key: str, period_end: datetime
    ) -> Subscription | None:
        """Update current_period_end; status is left untouched."""
        async with self._lock:
            current = self._subscriptions.get(customer_key)
            if current is None:
                return None
            updated = dataclasses.replace(current, current_period_end=period_end)
            self._subscriptions[customer_key] = updated
        return updated

    async def find_by_provider_customer(self, provider_customer_id: str) -> Subscription | None:
        for sub in list(self._subscriptions.values()):
            if sub.provider_customer_id == provider_customer_id:
                return sub
        return None

    async def find_by_provider_subscription(
        self, provider_subscription_id: str
    ) -> Subscription | None:
        for sub in list(self._subscriptions.values()):
            if sub.provider_subscription_id == provider_subscription_id:
                return sub
        return None
