"""
Manual payment endpoints — receipt submission and reviewer actions.

  POST /api/manual-payments                         → submit (multipart, receipt image)
  GET  /api/admin/manual-payments?status=pending    → review queue
  POST /api/admin/manual-payments/{id}/approve      → credit + approved
  POST /api/admin/manual-payments/{id}/reject       → rejected (after 24h)
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, File, Form, UploadFile

from config import settings
from deps import Principal, get_manual_review, get_principal, require_reviewer
from schemas import ReconcileResponse
from schemas.manual_payment import (
    PlanResponse, ReceiptUrlResponse, ReviewAction, SubmissionCreated, SubmissionResponse,
)
from services.manual_review import ManualReviewService
from routers.memberships import reconcile_response
from services.pricing import PLANS

router = APIRouter()
admin_router = APIRouter()


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans():
    return [
        PlanResponse(id=p.id, tier=p.tier, months=p.months, price_usd=p.price_usd, label=p.label)
        for p in PLANS.values()
    ]


@router.post("", response_model=SubmissionCreated, status_code=201)
async def submit_manual_payment(
    business_id: str = Form(...),
    plan_id: str = Form(...),
    amount_usd: Decimal = Form(...),
    method: str = Form(...),
    reference: str | None = Form(None),
    receipt: UploadFile = File(...),
    principal: Principal = Depends(get_principal),
    service: ManualReviewService = Depends(get_manual_review),
):
    content = await receipt.read()
    submission_id = await service.submit_with_receipt(
        user_id=principal.user_id,
        business_id=business_id,
        plan_id=plan_id,
        amount_usd=amount_usd,
        method=method,
        content=content,
        content_type=receipt.content_type,
        filename=receipt.filename,
        reference=reference,
    )
    return SubmissionCreated(submission_id=submission_id)


# ── Reviewer endpoints ─────────────────────────────────────

@admin_router.get("", response_model=list[SubmissionResponse])
async def list_manual_payments(
    status: str = "pending",
    limit: int = 100,
    reviewer: Principal = Depends(require_reviewer),
    service: ManualReviewService = Depends(get_manual_review),
):
    return await service.list_submissions(status, limit=max(1, min(limit, 500)))


@admin_router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_manual_payment(
    submission_id: str,
    reviewer: Principal = Depends(require_reviewer),
    service: ManualReviewService = Depends(get_manual_review),
):
    return await service.get(submission_id)


@admin_router.get("/{submission_id}/receipt-url", response_model=ReceiptUrlResponse)
async def get_receipt_url(
    submission_id: str,
    reviewer: Principal = Depends(require_reviewer),
    service: ManualReviewService = Depends(get_manual_review),
):
    url = await service.receipt_url(submission_id)
    return ReceiptUrlResponse(submission_id=submission_id, url=url, expires_in=settings.RECEIPT_URL_TTL_SECONDS)


@admin_router.post("/{submission_id}/approve", response_model=ReconcileResponse)
async def approve_manual_payment(
    submission_id: str,
    action: ReviewAction | None = None,
    reviewer: Principal = Depends(require_reviewer),
    service: ManualReviewService = Depends(get_manual_review),
):
    notes = action.admin_notes if action else None
    result = await service.approve(submission_id, reviewer.user_id, notes=notes)
    return reconcile_response(result)


@admin_router.post("/{submission_id}/reject", response_model=SubmissionResponse)
async def reject_manual_payment(
    submission_id: str,
    action: ReviewAction | None = None,
    reviewer: Principal = Depends(require_reviewer),
    service: ManualReviewService = Depends(get_manual_review),
):
    notes = action.admin_notes if action else None
    return await service.reject(submission_id, reviewer.user_id, notes=notes)
