"""
Payment Ledger — idempotent record of every credited payment.

One row per (gateway, transaction_ref). `completed` is terminal: once a row is
completed, every later observation of the same reference is a no-op. The ledger
never commits; the caller commits the ledger row together with the
subscription change it authorizes.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.ledger import PaymentLedgerEntry
from schemas import Gateway, LedgerStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerOutcome:
    already_completed: bool


class PaymentLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_for_update(self, gateway: str, transaction_ref: str) -> PaymentLedgerEntry | None:
        result = await self.session.execute(
            select(PaymentLedgerEntry)
            .where(
                PaymentLedgerEntry.gateway == gateway,
                PaymentLedgerEntry.transaction_ref == transaction_ref,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get(self, gateway: Gateway | str, transaction_ref: str) -> PaymentLedgerEntry | None:
        gateway = Gateway(gateway).value
        result = await self.session.execute(
            select(PaymentLedgerEntry).where(
                PaymentLedgerEntry.gateway == gateway,
                PaymentLedgerEntry.transaction_ref == transaction_ref,
            )
        )
        return result.scalar_one_or_none()

    async def record_or_get_existing(
        self,
        gateway: Gateway | str,
        transaction_ref: str,
        user_id: str,
        amount: Decimal,
        currency: str,
    ) -> LedgerOutcome:
        """
        Mark (gateway, transaction_ref) completed.

        Returns already_completed=True when the reference had been completed
        before, in which case nothing is written.
        """
        gateway = Gateway(gateway).value
        existing = await self._get_for_update(gateway, transaction_ref)

        if existing is None:
            try:
                async with self.session.begin_nested():
                    self.session.add(PaymentLedgerEntry(
                        gateway=gateway,
                        transaction_ref=transaction_ref,
                        user_id=user_id,
                        amount=amount,
                        currency=currency,
                        status=LedgerStatus.COMPLETED.value,
                    ))
                    await self.session.flush()
            except IntegrityError:
                # A concurrent caller inserted the same reference first
                logger.info("Ledger insert lost race for %s/%s", gateway, transaction_ref)
                existing = await self._get_for_update(gateway, transaction_ref)
                if existing is None:
                    raise
            else:
                logger.info("Ledger recorded %s/%s for user %s (%s %s)",
                            gateway, transaction_ref, user_id, amount, currency)
                return LedgerOutcome(already_completed=False)

        if existing.status == LedgerStatus.COMPLETED.value:
            return LedgerOutcome(already_completed=True)

        logger.info("Ledger %s/%s: %s -> completed", gateway, transaction_ref, existing.status)
        existing.status = LedgerStatus.COMPLETED.value
        await self.session.flush()
        return LedgerOutcome(already_completed=False)
