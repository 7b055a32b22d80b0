"""HTTP-level tests through the FastAPI app (ASGI transport, SQLite)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from conftest import RECEIPT, FakeObjectStore
from db.database import get_db
from deps import get_notifier, get_storage
from main import app
from models import ManualPaymentSubmission

USER = {"X-User-Id": "u1"}
REVIEWER = {"X-User-Id": "admin1", "X-User-Role": "reviewer"}


@pytest_asyncio.fixture
async def client(session_factory):
    store = FakeObjectStore()

    async def override_get_db():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = store.storage
    app.dependency_overrides[get_notifier] = lambda: None
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _submit(client, plan_id="fundador-monthly", amount="5.00"):
    return await client.post(
        "/api/manual-payments",
        headers=USER,
        data={"business_id": "biz1", "plan_id": plan_id, "amount_usd": amount, "method": "zelle"},
        files={"receipt": ("receipt.png", RECEIPT, "image/png")},
    )


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_tiers_catalog(client):
    resp = await client.get("/api/memberships/tiers")
    assert resp.status_code == 200
    tiers = {t["tier"]: t for t in resp.json()}
    assert tiers[3]["label"] == "Fundador"
    assert tiers[3]["annual_price"] == "50.00"
    assert tiers[3]["max_businesses"] == 2


@pytest.mark.asyncio
async def test_me_requires_identity(client):
    resp = await client.get("/api/memberships/me")
    assert resp.status_code == 403
    assert resp.json()["category"] == "permissions"


@pytest.mark.asyncio
async def test_me_defaults_to_free(client):
    resp = await client.get("/api/memberships/me", headers=USER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["tier"] == 0
    assert body["has_active_subscription"] is False


@pytest.mark.asyncio
async def test_onchain_claim_without_txid_is_format_error(client):
    resp = await client.post("/api/memberships/onchain/claims", headers=USER, json={"tier": 3, "months": 1})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "invalid_request"
    assert resp.json()["category"] == "format"


@pytest.mark.asyncio
async def test_onchain_claim_credits_and_replays(client):
    payload = {"tier": 3, "months": 1, "txid": "0xabc"}
    first = await client.post("/api/memberships/onchain/claims", headers=USER, json=payload)
    again = await client.post("/api/memberships/onchain/claims", headers=USER, json=payload)

    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert again.json()["duplicate"] is True
    assert again.json()["expires_at"] == first.json()["expires_at"]

    me = (await client.get("/api/memberships/me", headers=USER)).json()
    assert me["effective_tier"] == 3
    assert me["has_active_subscription"] is True


@pytest.mark.asyncio
async def test_manual_submission_and_approval(client):
    resp = await _submit(client)
    assert resp.status_code == 201
    submission_id = resp.json()["submission_id"]

    queue = await client.get("/api/admin/manual-payments", headers=REVIEWER)
    assert [s["id"] for s in queue.json()] == [submission_id]

    url = await client.get(f"/api/admin/manual-payments/{submission_id}/receipt-url", headers=REVIEWER)
    assert url.json()["url"].startswith("https://storage.test/object/sign/payment_receipts/u1/biz1/")

    approved = await client.post(f"/api/admin/manual-payments/{submission_id}/approve", headers=REVIEWER)
    assert approved.status_code == 200
    assert approved.json()["tier"] == 3
    assert approved.json()["gateway"] == "manual"

    again = await client.post(f"/api/admin/manual-payments/{submission_id}/approve", headers=REVIEWER)
    assert again.status_code == 409
    assert again.json()["category"] == "duplicate"


@pytest.mark.asyncio
async def test_early_rejection_reports_hours_remaining(client, session_factory):
    submission_id = (await _submit(client)).json()["submission_id"]

    # Backdate the submission by 10 hours
    async with session_factory() as s:
        submission = await s.get(ManualPaymentSubmission, submission_id)
        submission.submitted_at = datetime.now(timezone.utc) - timedelta(hours=10)
        await s.commit()

    resp = await client.post(
        f"/api/admin/manual-payments/{submission_id}/reject", headers=REVIEWER, json={"admin_notes": "no"},
    )
    assert resp.status_code == 409
    assert resp.json()["hours_remaining"] == 14


@pytest.mark.asyncio
async def test_admin_endpoints_require_reviewer(client):
    resp = await client.get("/api/admin/manual-payments", headers=USER)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_non_image_receipt_rejected(client):
    resp = await client.post(
        "/api/manual-payments",
        headers=USER,
        data={"business_id": "biz1", "plan_id": "fundador-monthly", "amount_usd": "5.00", "method": "zelle"},
        files={"receipt": ("receipt.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert resp.status_code == 400
    assert resp.json()["kind"] == "receipt_rejected"


@pytest.mark.asyncio
async def test_unknown_submission_is_404(client):
    resp = await client.get("/api/admin/manual-payments/missing", headers=REVIEWER)
    assert resp.status_code == 404
    assert resp.json()["category"] == "not_found"
