"""
Request-scoped dependencies: caller identity and service wiring.

Authentication happens upstream; the proxy forwards the authenticated user in
X-User-Id and the role in X-User-Role.
"""

from dataclasses import dataclass

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db.database import get_db
from errors import PermissionDenied
from services.card_gateway import CardWalletAdapter
from services.manual_review import ManualReviewService
from services.notifications import Notifier
from services.onchain import OnchainAdapter
from services.reconciliation import ReconciliationService
from services.storage import ReceiptStorage

REVIEWER_ROLES = {"reviewer", "admin"}


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "user"

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES


async def get_principal(
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> Principal:
    if not x_user_id or not x_user_id.strip():
        raise PermissionDenied("Authentication required")
    return Principal(user_id=x_user_id.strip(), role=(x_user_role or "user").strip().lower())


async def require_reviewer(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_reviewer:
        raise PermissionDenied("Only reviewers can manage manual payments")
    return principal


# ── Service factories ──────────────────────────────────────

def get_notifier() -> Notifier:
    return Notifier(settings.NOTIFY_WEBHOOK_URL)


def get_storage() -> ReceiptStorage:
    return ReceiptStorage()


def get_reconciler(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ReconciliationService:
    return ReconciliationService(db, notifier=notifier)


def get_card_adapter(reconciler: ReconciliationService = Depends(get_reconciler)) -> CardWalletAdapter:
    return CardWalletAdapter(reconciler)


def get_onchain_adapter(reconciler: ReconciliationService = Depends(get_reconciler)) -> OnchainAdapter:
    return OnchainAdapter(
        reconciler,
        mock_verification=settings.ONCHAIN_MOCK_VERIFICATION,
        environment=settings.ENVIRONMENT,
    )


def get_manual_review(
    db: AsyncSession = Depends(get_db),
    reconciler: ReconciliationService = Depends(get_reconciler),
    storage: ReceiptStorage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
) -> ManualReviewService:
    return ManualReviewService(db, reconciler=reconciler, storage=storage, notifier=notifier)
