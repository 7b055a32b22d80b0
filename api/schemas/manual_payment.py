"""Pydantic schemas for manual (receipt-reviewed) payment endpoints."""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, Field

from schemas import Tier


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    ZELLE = "zelle"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanResponse(BaseModel):
    id: str
    tier: Tier
    months: int
    price_usd: Decimal
    label: str


class SubmissionCreated(BaseModel):
    submission_id: str
    status: SubmissionStatus = SubmissionStatus.PENDING
    message: str = "Your payment was sent for verification."


class SubmissionResponse(BaseModel):
    """Schema for returning a manual payment submission."""
    id: str
    user_id: str
    business_id: str
    plan_id: str
    amount_usd: Decimal
    method: PaymentMethod
    reference: str | None
    receipt_ref: str
    status: SubmissionStatus
    submitted_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    admin_notes: str | None

    class Config:
        from_attributes = True


class ReviewAction(BaseModel):
    """Schema for admin approve/reject action."""
    admin_notes: str | None = Field(None, max_length=1000)


class ReceiptUrlResponse(BaseModel):
    submission_id: str
    url: str
    expires_in: int
