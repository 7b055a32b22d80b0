"""
Subscription Updater — the only writer of subscription tier and expiration.

Credit rules:
  - Same tier, still active   → extend from the current expiration
  - Tier change, expired, new → restart from now with the target tier
  - Duration is always max(1, months) × 30 days
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.subscription import Subscription
from schemas import Tier
from services.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class SubscriptionState:
    user_id: str
    tier: Tier
    expires_at: datetime | None


@dataclass(frozen=True)
class CreditResult:
    final_tier: Tier
    new_expires_at: datetime
    months_added: int


def is_active(state: SubscriptionState, now: datetime) -> bool:
    return state.tier > Tier.FREE and state.expires_at is not None and state.expires_at > now


def effective_tier(state: SubscriptionState, now: datetime) -> Tier:
    """Stored tier while it is paid up, otherwise FREE."""
    return state.tier if is_active(state, now) else Tier.FREE


def has_access(state: SubscriptionState, required_tier: Tier, now: datetime) -> bool:
    return effective_tier(state, now) >= required_tier


def compute_credit(
    current_tier: Tier,
    current_expires_at: datetime | None,
    target_tier: Tier,
    months_to_add: int,
    now: datetime,
) -> CreditResult:
    """Pure credit computation; see module docstring."""
    months = max(1, months_to_add)
    days_to_add = timedelta(days=months * DAYS_PER_MONTH)

    if current_tier == target_tier and current_expires_at is not None and current_expires_at > now:
        new_expires_at = current_expires_at + days_to_add
    else:
        new_expires_at = now + days_to_add

    return CreditResult(final_tier=Tier(target_tier), new_expires_at=new_expires_at, months_added=months)


class SubscriptionUpdater:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    async def get_state(self, user_id: str) -> SubscriptionState:
        result = await self.session.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return SubscriptionState(user_id=user_id, tier=Tier.FREE, expires_at=None)
        return SubscriptionState(user_id=user_id, tier=Tier(row.tier), expires_at=as_utc(row.expires_at))

    async def _lock_row(self, user_id: str) -> Subscription:
        """Row-lock the user's subscription, creating the default FREE row if missing."""
        stmt = select(Subscription).where(Subscription.user_id == user_id).with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is not None:
            return row

        try:
            async with self.session.begin_nested():
                self.session.add(Subscription(user_id=user_id, tier=Tier.FREE.value, expires_at=None))
                await self.session.flush()
        except IntegrityError:
            # Created concurrently by another credit for the same user
            pass
        return (await self.session.execute(stmt)).scalar_one()

    async def apply_credit(self, user_id: str, target_tier: Tier, months_to_add: int) -> CreditResult:
        """
        Apply a paid credit to the user's subscription.

        Must run once per ledger reference; the orchestrator guarantees that by
        consulting the ledger first. Flushes but does not commit.
        """
        now = self.clock()
        row = await self._lock_row(user_id)

        credit = compute_credit(
            current_tier=Tier(row.tier),
            current_expires_at=as_utc(row.expires_at),
            target_tier=Tier(target_tier),
            months_to_add=months_to_add,
            now=now,
        )

        logger.info(
            "Subscription %s: tier %s -> %s, expires %s -> %s",
            user_id, row.tier, int(credit.final_tier), row.expires_at, credit.new_expires_at,
        )
        row.tier = int(credit.final_tier)
        row.expires_at = credit.new_expires_at
        await self.session.flush()
        return credit
