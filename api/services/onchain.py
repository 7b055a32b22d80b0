"""
On-chain Adapter — USDT transfer claims reported by the client.

The caller supplies the transaction id together with the tier and months it
paid for. Verifying that the transaction actually moved that amount to the
deposit address happens upstream, before this adapter is called.
"""

import logging
import uuid

from errors import InvalidRequest
from schemas import Tier
from services.pricing import total_for_subscription
from services.reconciliation import OnchainClaim, ReconcileResult, ReconciliationService

logger = logging.getLogger(__name__)

ONCHAIN_CURRENCY = "USDT"
MOCK_TXID_PREFIX = "mock-"


class OnchainAdapter:
    def __init__(
        self,
        reconciler: ReconciliationService,
        mock_verification: bool = False,
        environment: str = "development",
    ):
        if mock_verification and environment.lower() == "production":
            raise ValueError("Mock on-chain verification cannot run in production")
        self.reconciler = reconciler
        self.mock_verification = mock_verification

    async def claim(
        self,
        user_id: str,
        tier: int,
        months: int = 1,
        txid: str | None = None,
    ) -> ReconcileResult:
        txid = (txid or "").strip()
        if not txid:
            if not self.mock_verification:
                raise InvalidRequest("txid is required")
            txid = f"{MOCK_TXID_PREFIX}{uuid.uuid4().hex}"
            logger.warning("Mock on-chain verification: synthesized txid %s for user %s", txid, user_id)

        months = months if months and months > 0 else 1
        amount = total_for_subscription(tier, months)
        if amount <= 0:
            raise InvalidRequest(f"Invalid subscription tier: {tier}")

        event = OnchainClaim(
            user_id=user_id,
            amount=amount,
            currency=ONCHAIN_CURRENCY,
            transaction_ref=txid,
        )
        return await self.reconciler.reconcile(event, explicit_tier=Tier(tier), explicit_months=months)
