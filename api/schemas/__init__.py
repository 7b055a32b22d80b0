"""Pydantic schemas for API request/response models."""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────

class Tier(IntEnum):
    FREE = 0
    CONECTA = 1
    DESTACA = 2
    FUNDADOR = 3   # Founder


class Gateway(str, Enum):
    CARD_WALLET = "card_wallet"
    ONCHAIN = "onchain"
    MANUAL = "manual"


class LedgerStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BadgeType(str, Enum):
    NONE = "none"
    MEMBER = "member"
    BRONZE_SHIELD = "bronze_shield"
    GOLD_CROWN = "gold_crown"


# ── Tier catalog ───────────────────────────────────────────

class TierInfo(BaseModel):
    tier: Tier
    label: str
    badge: BadgeType
    monthly_price: Decimal
    annual_price: Decimal
    max_businesses: int


# ── Subscription state ─────────────────────────────────────

class SubscriptionResponse(BaseModel):
    user_id: str
    tier: Tier
    effective_tier: Tier
    expires_at: datetime | None
    has_active_subscription: bool


class ReconcileResponse(BaseModel):
    tier: Tier
    expires_at: datetime
    months_added: int
    duplicate: bool
    gateway: Gateway
    transaction_ref: str


# ── Card / wallet ──────────────────────────────────────────

class CardOrderCreate(BaseModel):
    """Either tier (+ months) or a raw amount."""
    tier: Tier | None = None
    months: int = Field(1, ge=1, le=36)
    amount: Decimal | None = Field(None, gt=0)


class CardOrderResponse(BaseModel):
    order_id: str
    amount: Decimal
    currency: str = "USD"


# ── On-chain ───────────────────────────────────────────────

class OnchainClaimCreate(BaseModel):
    txid: str | None = Field(None, max_length=128)
    tier: Tier
    months: int = Field(1, ge=1, le=36)
