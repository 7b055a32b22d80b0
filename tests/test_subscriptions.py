"""Tests for the subscription updater (credit rules and effective tier)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from datetime import timedelta

import pytest

from conftest import NOW
from models import Subscription
from schemas import Tier
from services.subscriptions import (
    SubscriptionState, SubscriptionUpdater, compute_credit, effective_tier, has_access,
)


def test_same_tier_active_extends_from_expiry():
    expires = NOW + timedelta(days=10)
    credit = compute_credit(Tier.DESTACA, expires, Tier.DESTACA, 3, NOW)
    assert credit.new_expires_at == expires + timedelta(days=90)
    assert credit.final_tier == Tier.DESTACA
    assert credit.months_added == 3


def test_expired_restarts_from_now():
    credit = compute_credit(Tier.DESTACA, NOW - timedelta(days=5), Tier.DESTACA, 1, NOW)
    assert credit.new_expires_at == NOW + timedelta(days=30)


def test_tier_change_restarts_from_now():
    """Switching tiers drops remaining time, even if that shortens the expiry."""
    credit = compute_credit(Tier.CONECTA, NOW + timedelta(days=200), Tier.FUNDADOR, 1, NOW)
    assert credit.final_tier == Tier.FUNDADOR
    assert credit.new_expires_at == NOW + timedelta(days=30)


def test_non_positive_months_count_as_one():
    credit = compute_credit(Tier.FREE, None, Tier.CONECTA, 0, NOW)
    assert credit.months_added == 1
    assert credit.new_expires_at == NOW + timedelta(days=30)


def test_effective_tier_and_access():
    active = SubscriptionState("u1", Tier.DESTACA, NOW + timedelta(days=1))
    expired = SubscriptionState("u1", Tier.DESTACA, NOW - timedelta(seconds=1))
    no_expiry = SubscriptionState("u1", Tier.FUNDADOR, None)

    assert effective_tier(active, NOW) == Tier.DESTACA
    assert effective_tier(expired, NOW) == Tier.FREE
    assert effective_tier(no_expiry, NOW) == Tier.FREE
    assert has_access(active, Tier.CONECTA, NOW)
    assert not has_access(active, Tier.FUNDADOR, NOW)


@pytest.mark.asyncio
async def test_missing_row_reads_as_free(session):
    state = await SubscriptionUpdater(session).get_state("nobody")
    assert state.tier == Tier.FREE
    assert state.expires_at is None


@pytest.mark.asyncio
async def test_apply_credit_creates_and_extends_row(session, clock):
    updater = SubscriptionUpdater(session, clock=clock)

    first = await updater.apply_credit("u1", Tier.FUNDADOR, 1)
    await session.commit()
    assert first.new_expires_at == NOW + timedelta(days=30)

    clock.now = NOW + timedelta(days=5)
    second = await updater.apply_credit("u1", Tier.FUNDADOR, 1)
    await session.commit()
    assert second.new_expires_at == NOW + timedelta(days=60)

    row = await session.get(Subscription, "u1")
    assert row.tier == Tier.FUNDADOR

    state = await updater.get_state("u1")
    assert state.expires_at == NOW + timedelta(days=60)
