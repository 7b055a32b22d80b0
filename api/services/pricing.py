"""
Pricing Engine — Membership tiers, prices and amount resolution.

Pure functions only, no I/O.

Rules:
  1. Monthly prices: Conecta ($2.25), Destaca ($3.50), Fundador ($5.00)
  2. Annual commitment: 12 months of service for 10 paid months
  3. Amount → (tier, months): first paid tier (ascending price) whose whole-month
     multiple lies within $0.11 of the amount. A 10-month multiple is an annual
     purchase and resolves to 12 months.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from schemas import Tier, BadgeType


# ── Constants ──────────────────────────────────────────────

CENTS = Decimal("0.01")
AMOUNT_TOLERANCE = Decimal("0.11")   # gateway fee / conversion rounding

ANNUAL_MONTHS = 12
ANNUAL_PAID_MONTHS = 10

# Monthly USD prices. Chosen so no lower tier's whole-month multiple lands
# within tolerance of a higher tier's 1, 3 or 12 month total.
SUBSCRIPTION_PRICES = {
    Tier.FREE: Decimal("0.00"),
    Tier.CONECTA: Decimal("2.25"),
    Tier.DESTACA: Decimal("3.50"),
    Tier.FUNDADOR: Decimal("5.00"),
}

PAID_TIERS = sorted(
    (t for t, price in SUBSCRIPTION_PRICES.items() if price > 0),
    key=lambda t: SUBSCRIPTION_PRICES[t],
)

TIER_LABELS = {
    Tier.FREE: "Básico",
    Tier.CONECTA: "Conecta",
    Tier.DESTACA: "Destaca",
    Tier.FUNDADOR: "Fundador",
}

TIER_BADGES = {
    Tier.FREE: BadgeType.NONE,
    Tier.CONECTA: BadgeType.MEMBER,
    Tier.DESTACA: BadgeType.BRONZE_SHIELD,
    Tier.FUNDADOR: BadgeType.GOLD_CROWN,
}

# Manual-payment plan terms (plan id = "<label>-<period>")
BILLING_PERIODS = {
    "monthly": 1,
    "quarterly": 3,
    "semiannual": 6,
    "yearly": 12,
}


# ── Data classes ───────────────────────────────────────────

@dataclass(frozen=True)
class ResolvedSubscription:
    tier: Tier
    months: int


@dataclass(frozen=True)
class Plan:
    id: str
    tier: Tier
    months: int
    price_usd: Decimal
    label: str


# ── Core Functions ─────────────────────────────────────────

def to_amount(value) -> Decimal | None:
    """Coerce to a 2-decimal Decimal. None for non-finite or unparsable input."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def is_approximately(value, target, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return abs(Decimal(value) - Decimal(target)) <= tolerance


def price_for_tier(tier: int) -> Decimal:
    """Monthly price for a tier. Unknown tiers cost nothing."""
    try:
        return SUBSCRIPTION_PRICES[Tier(tier)]
    except ValueError:
        return Decimal("0.00")


def effective_months(months: int) -> int:
    """Paid months for a term: an annual term is billed as 10 months."""
    return ANNUAL_PAID_MONTHS if months == ANNUAL_MONTHS else months


def total_for_subscription(tier: int, months: int) -> Decimal:
    """
    Total to charge for `months` of `tier`.

    Returns 0 for the free tier, unknown tiers or non-positive months.
    """
    price = price_for_tier(tier)
    if price <= 0 or months <= 0:
        return Decimal("0.00")
    return (price * effective_months(months)).quantize(CENTS)


def resolve_from_amount(amount_raw) -> ResolvedSubscription | None:
    """
    Resolve (tier, months) from a paid amount.

    Returns None when nothing matches within tolerance; the caller must reject
    the claim instead of guessing.
    """
    amount = to_amount(amount_raw)
    if amount is None or amount <= 0:
        return None

    for tier in PAID_TIERS:
        price = SUBSCRIPTION_PRICES[tier]
        rounded = int((amount / price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if rounded >= 1 and is_approximately(amount, price * rounded):
            months = ANNUAL_MONTHS if rounded == ANNUAL_PAID_MONTHS else rounded
            return ResolvedSubscription(tier=tier, months=months)

    return None


def label_for_tier(tier: int) -> str:
    return TIER_LABELS.get(tier, TIER_LABELS[Tier.FREE])


def badge_for_tier(tier: int) -> BadgeType:
    return TIER_BADGES.get(tier, BadgeType.NONE)


def max_businesses_for_tier(tier: int | None) -> int:
    """Founder accounts may own two listings, everyone else one."""
    return 2 if tier == Tier.FUNDADOR else 1


# ── Plan catalog ───────────────────────────────────────────

def _build_plans() -> dict[str, Plan]:
    plans = {}
    for tier in PAID_TIERS:
        for period, months in BILLING_PERIODS.items():
            plan_id = f"{TIER_LABELS[tier].lower()}-{period}"
            plans[plan_id] = Plan(
                id=plan_id,
                tier=tier,
                months=months,
                price_usd=total_for_subscription(tier, months),
                label=f"{TIER_LABELS[tier]} ({period})",
            )
    return plans


PLANS = _build_plans()


def get_plan(plan_id: str) -> Plan | None:
    return PLANS.get((plan_id or "").strip().lower())
