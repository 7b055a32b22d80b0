"""Membership endpoints — tier catalog, current subscription, card and on-chain payments."""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from deps import Principal, get_card_adapter, get_onchain_adapter, get_principal
from errors import StorageTransient
from schemas import (
    CardOrderCreate, CardOrderResponse, OnchainClaimCreate, ReconcileResponse,
    SubscriptionResponse, Tier, TierInfo,
)
from services.card_gateway import CardWalletAdapter
from services.clock import utcnow
from services.onchain import OnchainAdapter
from services.pricing import (
    badge_for_tier, label_for_tier, max_businesses_for_tier, price_for_tier, total_for_subscription,
)
from services.reconciliation import ReconcileResult
from services.subscriptions import SubscriptionUpdater, effective_tier, is_active

router = APIRouter()


def reconcile_response(result: ReconcileResult) -> ReconcileResponse:
    return ReconcileResponse(
        tier=result.tier,
        expires_at=result.expires_at,
        months_added=result.months_added,
        duplicate=result.duplicate,
        gateway=result.gateway,
        transaction_ref=result.transaction_ref,
    )


@router.get("/tiers", response_model=list[TierInfo])
async def list_tiers():
    """Every tier with its label, badge and prices."""
    return [
        TierInfo(
            tier=tier,
            label=label_for_tier(tier),
            badge=badge_for_tier(tier),
            monthly_price=price_for_tier(tier),
            annual_price=total_for_subscription(tier, 12),
            max_businesses=max_businesses_for_tier(tier),
        )
        for tier in Tier
    ]


@router.get("/me", response_model=SubscriptionResponse)
async def get_my_subscription(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        state = await SubscriptionUpdater(db).get_state(principal.user_id)
    except SQLAlchemyError as e:
        raise StorageTransient("Could not load the subscription") from e
    now = utcnow()
    return SubscriptionResponse(
        user_id=state.user_id,
        tier=state.tier,
        effective_tier=effective_tier(state, now),
        expires_at=state.expires_at,
        has_active_subscription=is_active(state, now),
    )


@router.post("/card/orders", response_model=CardOrderResponse, status_code=201)
async def create_card_order(
    data: CardOrderCreate,
    principal: Principal = Depends(get_principal),
    adapter: CardWalletAdapter = Depends(get_card_adapter),
):
    """Create a processor order; the client approves it, then calls capture."""
    order = await adapter.create_order(
        principal.user_id, tier=data.tier, months=data.months, amount=data.amount,
    )
    return CardOrderResponse(order_id=order.order_id, amount=order.amount, currency=order.currency)


@router.post("/card/orders/{order_id}/capture", response_model=ReconcileResponse)
async def capture_card_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    adapter: CardWalletAdapter = Depends(get_card_adapter),
):
    result = await adapter.capture_order(principal.user_id, order_id)
    return reconcile_response(result)


@router.post("/onchain/claims", response_model=ReconcileResponse)
async def claim_onchain_payment(
    data: OnchainClaimCreate,
    principal: Principal = Depends(get_principal),
    adapter: OnchainAdapter = Depends(get_onchain_adapter),
):
    result = await adapter.claim(principal.user_id, tier=data.tier, months=data.months, txid=data.txid)
    return reconcile_response(result)
