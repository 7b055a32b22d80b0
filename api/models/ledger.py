"""Payment ledger ORM model — idempotency record per (gateway, transaction_ref)."""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, Index, Enum as PgEnum
from sqlalchemy.orm import Mapped, mapped_column

from db.database import Base
from services.clock import utcnow


class PaymentLedgerEntry(Base):
    __tablename__ = "payment_ledger"

    gateway: Mapped[str] = mapped_column(
        PgEnum("card_wallet", "onchain", "manual", name="payment_gateway"),
        primary_key=True,
    )
    transaction_ref: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        PgEnum("pending", "completed", "failed", name="ledger_status"),
        nullable=False,
        default="pending",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("ix_payment_ledger_user_id", "user_id"),)
