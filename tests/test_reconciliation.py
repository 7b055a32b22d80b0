"""Tests for the reconciliation orchestrator."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import NOW
from errors import InvalidRequest, StorageTransient, UnresolvableAmount
from models import PaymentLedgerEntry, Subscription
from schemas import Gateway, Tier
from services.reconciliation import CardCapture, ManualApproval, OnchainClaim, ReconciliationService
from services.subscriptions import SubscriptionUpdater


async def _count(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_founder_monthly_for_free_user(session, clock):
    service = ReconciliationService(session, clock=clock)
    result = await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))

    assert result.tier == Tier.FUNDADOR
    assert result.expires_at == NOW + timedelta(days=30)
    assert result.months_added == 1
    assert result.duplicate is False
    assert result.gateway == Gateway.CARD_WALLET


@pytest.mark.asyncio
async def test_founder_annual_extends_active_founder(session, clock):
    service = ReconciliationService(session, clock=clock)
    await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))
    result = await service.reconcile(CardCapture("u1", Decimal("50.00"), "USD", "cap_2"))

    assert result.tier == Tier.FUNDADOR
    assert result.months_added == 12
    assert result.expires_at == NOW + timedelta(days=30 + 360)


@pytest.mark.asyncio
async def test_replay_is_duplicate_and_changes_nothing(session, clock):
    service = ReconciliationService(session, clock=clock)
    first = await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))

    clock.now = NOW + timedelta(days=3)
    again = await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))

    assert again.duplicate is True
    assert again.months_added == 0
    assert again.tier == first.tier
    assert again.expires_at == first.expires_at
    assert await _count(session, PaymentLedgerEntry) == 1


@pytest.mark.asyncio
async def test_concurrent_same_reference_credits_once(session_factory, clock):
    async def attempt():
        async with session_factory() as s:
            return await ReconciliationService(s, clock=clock).reconcile(
                CardCapture("u1", Decimal("5.00"), "USD", "cap_123")
            )

    first, second = await asyncio.gather(attempt(), attempt())

    assert sorted([first.duplicate, second.duplicate]) == [False, True]
    assert first.tier == second.tier == Tier.FUNDADOR
    assert first.expires_at == second.expires_at == NOW + timedelta(days=30)

    async with session_factory() as s:
        assert await _count(s, PaymentLedgerEntry) == 1
        row = await s.get(Subscription, "u1")
        assert row.tier == Tier.FUNDADOR


@pytest.mark.asyncio
async def test_concurrent_different_references_both_credit(session_factory, clock):
    async def attempt(ref):
        async with session_factory() as s:
            return await ReconciliationService(s, clock=clock).reconcile(
                CardCapture("u1", Decimal("5.00"), "USD", ref)
            )

    results = await asyncio.gather(attempt("cap_a"), attempt("cap_b"))

    assert [r.duplicate for r in results] == [False, False]
    assert sorted(r.expires_at for r in results) == [NOW + timedelta(days=30), NOW + timedelta(days=60)]

    async with session_factory() as s:
        state = await SubscriptionUpdater(s).get_state("u1")
        assert state.tier == Tier.FUNDADOR
        assert state.expires_at == NOW + timedelta(days=60)
        assert await _count(s, PaymentLedgerEntry) == 2


@pytest.mark.asyncio
async def test_unresolvable_amount_touches_nothing(session, clock):
    service = ReconciliationService(session, clock=clock)
    with pytest.raises(UnresolvableAmount):
        await service.reconcile(CardCapture("u1", Decimal("1.00"), "USD", "cap_x"))

    assert await _count(session, PaymentLedgerEntry) == 0
    assert await _count(session, Subscription) == 0


@pytest.mark.asyncio
async def test_explicit_target_skips_resolver(session, clock):
    service = ReconciliationService(session, clock=clock)
    result = await service.reconcile(
        OnchainClaim("u1", Decimal("10.50"), "USDT", "0xabc"),
        explicit_tier=Tier.DESTACA, explicit_months=0,
    )
    assert result.tier == Tier.DESTACA
    assert result.months_added == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("event", [
    ManualApproval("", Decimal("5.00"), "USD", "sub-1"),
    ManualApproval("u1", Decimal("5.00"), "USD", "  "),
    ManualApproval("u1", Decimal("0"), "USD", "sub-1"),
    ManualApproval("u1", Decimal("NaN"), "USD", "sub-1"),
])
async def test_invalid_events_rejected(session, event):
    with pytest.raises(InvalidRequest):
        await ReconciliationService(session).reconcile(event)


@pytest.mark.asyncio
async def test_explicit_free_tier_rejected(session):
    with pytest.raises(InvalidRequest):
        await ReconciliationService(session).reconcile(
            ManualApproval("u1", Decimal("5.00"), "USD", "sub-1"), explicit_tier=Tier.FREE,
        )


@pytest.mark.asyncio
async def test_storage_failure_rolls_back(session, clock):
    service = ReconciliationService(session, clock=clock)
    failure = OperationalError("UPDATE subscriptions", {}, Exception("disk I/O error"))

    with patch.object(service.subscriptions, "apply_credit", AsyncMock(side_effect=failure)):
        with pytest.raises(StorageTransient):
            await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))

    assert await _count(session, PaymentLedgerEntry) == 0

    # The reference was not consumed, so a retry credits normally
    result = await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))
    assert result.duplicate is False


@pytest.mark.asyncio
async def test_credit_notification_emitted(session, clock):
    notifier = AsyncMock()
    service = ReconciliationService(session, notifier=notifier, clock=clock)
    await service.reconcile(CardCapture("u1", Decimal("5.00"), "USD", "cap_1"))

    notifier.emit.assert_awaited_once()
    event_type, payload = notifier.emit.await_args.args
    assert event_type == "subscription.credited"
    assert payload["user_id"] == "u1"
