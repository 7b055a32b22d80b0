"""
Reconciliation Orchestrator — turns a normalized payment event into exactly
one subscription credit.

    event → resolve (tier, months) → ledger upsert → subscription credit → commit

The ledger row and the subscription change commit in the same transaction, so
a reference is marked completed only when its credit is durable.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, ClassVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import InvalidRequest, StorageTransient, UnresolvableAmount
from schemas import Gateway, Tier
from services.clock import utcnow
from services.ledger import PaymentLedger
from services.notifications import Notifier, notify_subscription_credited
from services.pricing import resolve_from_amount, to_amount
from services.subscriptions import SubscriptionUpdater

logger = logging.getLogger(__name__)


# ── Normalized events ──────────────────────────────────────

@dataclass(frozen=True)
class CardCapture:
    user_id: str
    amount: Decimal
    currency: str
    transaction_ref: str       # processor capture id
    gateway: ClassVar[Gateway] = Gateway.CARD_WALLET


@dataclass(frozen=True)
class OnchainClaim:
    user_id: str
    amount: Decimal
    currency: str
    transaction_ref: str       # chain transaction id
    gateway: ClassVar[Gateway] = Gateway.ONCHAIN


@dataclass(frozen=True)
class ManualApproval:
    user_id: str
    amount: Decimal
    currency: str
    transaction_ref: str       # manual submission id
    gateway: ClassVar[Gateway] = Gateway.MANUAL


PaymentEvent = CardCapture | OnchainClaim | ManualApproval


@dataclass(frozen=True)
class ReconcileResult:
    user_id: str
    tier: Tier
    expires_at: datetime
    months_added: int
    duplicate: bool
    gateway: Gateway
    transaction_ref: str


# ── Orchestrator ───────────────────────────────────────────

class ReconciliationService:
    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.notifier = notifier
        self.ledger = PaymentLedger(session)
        self.subscriptions = SubscriptionUpdater(session, clock=clock)

    @staticmethod
    def _validate(event: PaymentEvent) -> Decimal:
        if not event.user_id:
            raise InvalidRequest("user_id is required")
        if not event.transaction_ref or not event.transaction_ref.strip():
            raise InvalidRequest("transaction_ref is required")
        amount = to_amount(event.amount)
        if amount is None or amount <= 0:
            raise InvalidRequest(f"Invalid amount: {event.amount}")
        return amount

    @staticmethod
    def _target(amount: Decimal, explicit_tier: int | None, explicit_months: int | None) -> tuple[Tier, int]:
        if explicit_tier is not None:
            try:
                tier = Tier(explicit_tier)
            except ValueError:
                raise InvalidRequest(f"Unknown tier: {explicit_tier}")
            if tier == Tier.FREE:
                raise InvalidRequest("Cannot credit the free tier")
            months = explicit_months or 1
            return tier, months if months > 0 else 1

        resolved = resolve_from_amount(amount)
        if resolved is None:
            raise UnresolvableAmount(amount)
        return resolved.tier, resolved.months

    async def reconcile(
        self,
        event: PaymentEvent,
        explicit_tier: int | None = None,
        explicit_months: int | None = None,
    ) -> ReconcileResult:
        """
        Apply `event` to the user's subscription exactly once.

        A reference that was already completed returns the current state with
        duplicate=True and writes nothing. Storage failures roll back and raise
        StorageTransient; the caller must not report success in that case.
        """
        amount = self._validate(event)
        tier, months = self._target(amount, explicit_tier, explicit_months)
        ref = event.transaction_ref.strip()

        try:
            outcome = await self.ledger.record_or_get_existing(
                event.gateway, ref, event.user_id, amount, event.currency,
            )
            if outcome.already_completed:
                state = await self.subscriptions.get_state(event.user_id)
                await self.session.commit()
                logger.info("Duplicate %s/%s for user %s ignored", event.gateway.value, ref, event.user_id)
                return ReconcileResult(
                    user_id=event.user_id,
                    tier=state.tier,
                    expires_at=state.expires_at,
                    months_added=0,
                    duplicate=True,
                    gateway=event.gateway,
                    transaction_ref=ref,
                )

            credit = await self.subscriptions.apply_credit(event.user_id, tier, months)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Reconciliation of %s/%s failed: %s", event.gateway.value, ref, e)
            raise StorageTransient("Payment storage is temporarily unavailable, retry later") from e

        result = ReconcileResult(
            user_id=event.user_id,
            tier=credit.final_tier,
            expires_at=credit.new_expires_at,
            months_added=credit.months_added,
            duplicate=False,
            gateway=event.gateway,
            transaction_ref=ref,
        )
        logger.info(
            "Reconciled %s/%s: user %s tier %s (+%s months) until %s",
            event.gateway.value, ref, event.user_id, int(result.tier), result.months_added, result.expires_at,
        )
        await notify_subscription_credited(self.notifier, result)
        return result
