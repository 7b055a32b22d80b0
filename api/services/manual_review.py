"""
Manual-Review Adapter — bank transfer / Zelle receipts verified by a reviewer.

State machine:
    pending ──approve──▶ approved   (credits the subscription)
    pending ──reject───▶ rejected   (only once the 24h cooldown has passed)

Both transitions are terminal. The `payments` mirror row follows the
submission on a best-effort basis and is never the source of truth.
"""

import logging
import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from errors import (
    BillingError, InvalidRequest, InvalidTransition, NotFound,
    ReceiptRejected, StorageTransient, UnresolvableAmount,
)
from models.manual_payment import ManualPaymentSubmission, PaymentRecord
from schemas.manual_payment import PaymentMethod, PaymentRecordStatus, SubmissionStatus
from services.clock import as_utc, utcnow
from services.notifications import Notifier, notify_manual_payment_rejected
from services.pricing import Plan, get_plan, is_approximately, to_amount
from services.reconciliation import ManualApproval, ReconcileResult, ReconciliationService
from services.storage import ReceiptStorage, StorageError, build_receipt_path

logger = logging.getLogger(__name__)

MANUAL_CURRENCY = "USD"
MIRROR_METHOD = "manual"
DEFAULT_REJECTION_NOTE = "Payment rejected"

# Regional / colloquial names folded into the reporting vocabulary
METHOD_ALIASES = {
    "pago_movil": PaymentMethod.BANK_TRANSFER,
    "mobile_transfer": PaymentMethod.BANK_TRANSFER,
    "transferencia": PaymentMethod.BANK_TRANSFER,
    "transfer": PaymentMethod.BANK_TRANSFER,
    "wire": PaymentMethod.BANK_TRANSFER,
}


def normalize_method(method: str | None) -> PaymentMethod:
    key = (method or "").strip().lower().replace("-", "_").replace(" ", "_")
    if key in METHOD_ALIASES:
        return METHOD_ALIASES[key]
    try:
        return PaymentMethod(key)
    except ValueError:
        return PaymentMethod.OTHER


def validate_receipt(content: bytes, content_type: str | None, max_bytes: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise ReceiptRejected("Receipt must be an image (JPEG, PNG, WEBP, GIF)")
    if not content:
        raise ReceiptRejected("Receipt file is empty")
    if len(content) > max_bytes:
        raise ReceiptRejected(f"Receipt is too large, maximum {max_bytes // (1024 * 1024)}MB")


class ManualReviewService:
    def __init__(
        self,
        session: AsyncSession,
        reconciler: ReconciliationService | None = None,
        storage: ReceiptStorage | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        cooldown_hours: int | None = None,
        max_receipt_bytes: int | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.clock = clock
        self.reconciler = reconciler or ReconciliationService(session, notifier=notifier, clock=clock)
        self.storage = storage
        self.cooldown_hours = cooldown_hours if cooldown_hours is not None else settings.REJECT_COOLDOWN_HOURS
        self.max_receipt_bytes = max_receipt_bytes or settings.RECEIPT_MAX_BYTES

    # ── Lookups ────────────────────────────────────────────

    async def _load(self, submission_id: str, lock: bool = False) -> ManualPaymentSubmission:
        stmt = (
            select(ManualPaymentSubmission)
            .where(ManualPaymentSubmission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        submission = (await self.session.execute(stmt)).scalar_one_or_none()
        if submission is None:
            raise NotFound(f"Manual payment {submission_id} not found")
        return submission

    async def get(self, submission_id: str) -> ManualPaymentSubmission:
        try:
            return await self._load(submission_id)
        except SQLAlchemyError as e:
            raise StorageTransient("Could not load the manual payment") from e

    async def list_submissions(self, status: str = SubmissionStatus.PENDING.value, limit: int = 100):
        """Submissions with the given status, newest first."""
        try:
            status = SubmissionStatus(status).value
        except ValueError:
            raise InvalidRequest(f"Invalid status: {status}")
        try:
            result = await self.session.execute(
                select(ManualPaymentSubmission)
                .where(ManualPaymentSubmission.status == status)
                .order_by(ManualPaymentSubmission.submitted_at.desc())
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise StorageTransient("Could not list manual payments") from e
        return list(result.scalars().all())

    # ── Submission ─────────────────────────────────────────

    def _check_plan(self, plan_id: str, amount_usd) -> tuple[Plan, Decimal]:
        plan = get_plan(plan_id)
        if plan is None:
            raise InvalidRequest(f"Unknown plan: {plan_id}")
        amount = to_amount(amount_usd)
        if amount is None or amount <= 0:
            raise InvalidRequest(f"Invalid amount: {amount_usd}")
        if not is_approximately(amount, plan.price_usd):
            raise UnresolvableAmount(amount, f"Amount {amount} does not match plan {plan.id} ({plan.price_usd})")
        return plan, amount

    async def submit(
        self,
        user_id: str,
        business_id: str,
        plan_id: str,
        amount_usd,
        method: str,
        receipt_ref: str,
        reference: str | None = None,
    ) -> str:
        """Record a pending submission and return its id."""
        if not user_id or not business_id:
            raise InvalidRequest("user_id and business_id are required")
        if not receipt_ref:
            raise InvalidRequest("A receipt is required")
        plan, amount = self._check_plan(plan_id, amount_usd)

        submission = ManualPaymentSubmission(
            id=str(uuid.uuid4()),
            user_id=user_id,
            business_id=business_id,
            plan_id=plan.id,
            amount_usd=amount,
            method=normalize_method(method).value,
            reference=(reference or "").strip() or None,
            receipt_ref=receipt_ref,
            status=SubmissionStatus.PENDING.value,
            submitted_at=self.clock(),
        )
        try:
            self.session.add(submission)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Manual payment insert failed for user %s: %s", user_id, e)
            raise StorageTransient("Could not record the manual payment") from e

        logger.info("Manual payment %s submitted by %s (plan %s, %s)", submission.id, user_id, plan.id, amount)
        await self._mirror_insert(submission)
        return submission.id

    async def submit_with_receipt(
        self,
        user_id: str,
        business_id: str,
        plan_id: str,
        amount_usd,
        method: str,
        content: bytes,
        content_type: str | None,
        filename: str | None = None,
        reference: str | None = None,
    ) -> str:
        """
        Store the receipt image, then record the submission.

        If recording fails after the image was stored, the image is deleted
        (at-least-attempted, not guaranteed).
        """
        if self.storage is None:
            raise RuntimeError("ManualReviewService needs a ReceiptStorage to accept uploads")
        validate_receipt(content, content_type, self.max_receipt_bytes)
        self._check_plan(plan_id, amount_usd)

        path = build_receipt_path(user_id, business_id, filename)
        try:
            receipt_ref = await self.storage.upload(path, content, content_type)
        except StorageError as e:
            logger.error("Receipt upload failed for user %s: %s", user_id, e)
            raise StorageTransient("Could not store the receipt, try again") from e

        try:
            return await self.submit(
                user_id, business_id, plan_id, amount_usd, method, receipt_ref, reference=reference,
            )
        except BillingError:
            await self._discard_orphaned_receipt(receipt_ref)
            raise

    async def _discard_orphaned_receipt(self, receipt_ref: str) -> None:
        try:
            await self.storage.delete(receipt_ref)
            logger.info("Deleted orphaned receipt %s", receipt_ref)
        except StorageError as e:
            logger.error("Could not delete orphaned receipt %s: %s", receipt_ref, e)

    async def _mirror_insert(self, submission: ManualPaymentSubmission) -> None:
        try:
            self.session.add(PaymentRecord(
                user_id=submission.user_id,
                business_id=submission.business_id,
                plan_id=submission.plan_id,
                method=MIRROR_METHOD,
                amount_usd=submission.amount_usd,
                currency=MANUAL_CURRENCY,
                status=PaymentRecordStatus.PENDING.value,
                external_id=submission.id,
            ))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning("Payment mirror insert for %s failed (non-critical): %s", submission.id, e)

    async def _mirror_status(self, submission_id: str, status: PaymentRecordStatus) -> None:
        await self.session.execute(
            update(PaymentRecord)
            .where(PaymentRecord.external_id == submission_id, PaymentRecord.method == MIRROR_METHOD)
            .values(status=status.value)
        )

    # ── Review ─────────────────────────────────────────────

    async def approve(self, submission_id: str, reviewer_id: str, notes: str | None = None) -> ReconcileResult:
        """
        Credit the plan's tier/months and mark the submission approved.

        The status change and the credit commit together; if the credit fails
        the submission stays pending and can be approved again.
        """
        if not reviewer_id:
            raise InvalidRequest("reviewer_id is required")
        try:
            submission = await self._load(submission_id, lock=True)
            if submission.status != SubmissionStatus.PENDING.value:
                raise InvalidTransition(f"Manual payment already {submission.status}")
            plan = get_plan(submission.plan_id)
            if plan is None:
                raise InvalidRequest(f"Unknown plan: {submission.plan_id}")

            submission.status = SubmissionStatus.APPROVED.value
            submission.reviewed_at = self.clock()
            submission.reviewed_by = reviewer_id
            submission.admin_notes = notes
            await self._mirror_status(submission.id, PaymentRecordStatus.COMPLETED)

            event = ManualApproval(
                user_id=submission.user_id,
                amount=submission.amount_usd,
                currency=MANUAL_CURRENCY,
                transaction_ref=submission.id,
            )
            result = await self.reconciler.reconcile(event, explicit_tier=plan.tier, explicit_months=plan.months)
        except BillingError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageTransient("Could not approve the manual payment") from e

        logger.info("Manual payment %s approved by %s", submission_id, reviewer_id)
        return result

    async def reject(self, submission_id: str, reviewer_id: str, notes: str | None = None) -> ManualPaymentSubmission:
        """Reject a pending submission once the cooldown since submission has passed."""
        if not reviewer_id:
            raise InvalidRequest("reviewer_id is required")
        now = self.clock()
        try:
            submission = await self._load(submission_id, lock=True)
            if submission.status != SubmissionStatus.PENDING.value:
                raise InvalidTransition(f"Manual payment already {submission.status}")

            hours_since = (now - as_utc(submission.submitted_at)).total_seconds() / 3600
            if hours_since < self.cooldown_hours:
                hours_remaining = math.ceil(self.cooldown_hours - hours_since)
                raise InvalidTransition(
                    f"Manual payments can be rejected {self.cooldown_hours}h after submission; "
                    f"about {hours_remaining} hours remaining",
                    hours_remaining=hours_remaining,
                )

            submission.status = SubmissionStatus.REJECTED.value
            submission.reviewed_at = now
            submission.reviewed_by = reviewer_id
            submission.admin_notes = notes or DEFAULT_REJECTION_NOTE
            await self._mirror_status(submission.id, PaymentRecordStatus.FAILED)
            await self.session.commit()
        except BillingError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageTransient("Could not reject the manual payment") from e

        logger.info("Manual payment %s rejected by %s", submission_id, reviewer_id)
        await notify_manual_payment_rejected(self.notifier, submission)
        return submission

    async def receipt_url(self, submission_id: str) -> str:
        submission = await self.get(submission_id)
        if self.storage is None:
            raise RuntimeError("ManualReviewService needs a ReceiptStorage to sign receipts")
        try:
            return await self.storage.signed_url(submission.receipt_ref)
        except StorageError as e:
            logger.error("Signing receipt for %s failed: %s", submission_id, e)
            raise StorageTransient("Could not load the receipt") from e
