"""Manual payment submission and payment mirror ORM models."""

import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, Text, Index, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base
from services.clock import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class ManualPaymentSubmission(Base):
    __tablename__ = "manual_payment_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[str] = mapped_column(
        PgEnum("zelle", "bank_transfer", "other", name="manual_payment_method"),
        nullable=False,
    )
    reference: Mapped[str | None] = mapped_column(String(255))
    receipt_ref: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum("pending", "approved", "rejected", name="manual_payment_status"),
        nullable=False,
        default="pending",
    )
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Review
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String(64))
    admin_notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_manual_payment_submissions_status", "status", "submitted_at"),)


class PaymentRecord(Base):
    """Reporting mirror of manual payments. Not authoritative."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(
        PgEnum("pending", "completed", "failed", name="payment_record_status"),
        nullable=False,
        default="pending",
    )
    external_id: Mapped[str | None] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
