"""Sybil multiplier bounds, sub-check fail-open behaviour and pattern heuristics."""
import asyncio
import itertools

import pytest

from basescore.compute.collectors import Attestation, FarcasterUser
from basescore.compute.persistence import TransactionCacheRecord
from basescore.trust.sybil import (
    SybilFactors,
    check_coinbase_verification,
    compute_sybil_multiplier,
    detect_sybil_patterns,
    evaluate_sybil_resistance,
    get_cached_passport_score,
)

from conftest import (
    ADDRESS, OTHER, THIRD, DAY, NOW, COINBASE_SCHEMA,
    FakeChain, FakeEAS, FakeNeynar, FakePassport,
)

FOURTH = "0x" + "d4" * 20


# ── 1. Pure multiplier ────────────────────────────

def test_fully_verified_identity_hits_cap_exactly():
    result = compute_sybil_multiplier(SybilFactors(
        coinbase_verified=True,
        linked_wallet_count=3,
        wallet_age_months=14,
        has_signature=True,
        passport_score=25,
        farcaster_linked=True,
    ))
    assert result.multiplier == 1.7
    assert result.breakdown["walletCountBonus"] == pytest.approx(0.2)


def test_no_signals_is_neutral():
    result = compute_sybil_multiplier(SybilFactors())
    assert result.multiplier == 1.0
    assert sum(result.breakdown.values()) == 0


def test_wallet_bonus_caps_at_three_extra_wallets():
    result = compute_sybil_multiplier(SybilFactors(linked_wallet_count=10))
    assert result.breakdown["walletCountBonus"] == pytest.approx(0.3)
    assert result.multiplier == pytest.approx(1.3)


def test_passport_threshold_is_strict():
    assert compute_sybil_multiplier(SybilFactors(passport_score=20)).multiplier == 1.0
    assert compute_sybil_multiplier(SybilFactors(passport_score=21)).multiplier == pytest.approx(1.1)


def test_multiplier_bounds_for_all_factor_combinations():
    for coinbase, wallets, months, signature, passport, farcaster in itertools.product(
        (False, True), (0, 1, 2, 4, 50), (0, 11.9, 12, 60), (False, True), (None, 0, 21, 100), (False, True),
    ):
        result = compute_sybil_multiplier(SybilFactors(
            coinbase_verified=coinbase,
            linked_wallet_count=wallets,
            wallet_age_months=months,
            has_signature=signature,
            passport_score=passport,
            farcaster_linked=farcaster,
        ))
        assert 1.0 <= result.multiplier <= 1.7


# ── 2. Evaluator ──────────────────────────────────

def test_evaluator_collects_every_signal(make_ctx):
    ctx = make_ctx(
        chain=FakeChain(first_tx={ADDRESS: NOW - 14 * 30 * DAY}),
        eas=FakeEAS({COINBASE_SCHEMA: [Attestation(id="0xcb01")]}),
        passport=FakePassport(score=25),
        neynar=FakeNeynar(user=FarcasterUser(fid=7)),
    )

    async def _run():
        user = await ctx.store.create_user(ADDRESS, NOW)
        await ctx.store.link_wallet(user.id, OTHER, signature="0xsig", now=NOW)
        await ctx.store.link_wallet(user.id, THIRD, signature=None, now=NOW)
        return await evaluate_sybil_resistance(ADDRESS, ctx, user_id=user.id)

    result = asyncio.run(_run())

    assert result.multiplier == 1.7
    assert result.factors.linked_wallet_count == 3
    assert result.factors.has_signature is True
    assert result.factors.coinbase_verified is True
    assert result.factors.farcaster_linked is True


def test_evaluator_counts_linked_wallets_from_input(ctx):
    result = asyncio.run(evaluate_sybil_resistance(ADDRESS, ctx, linked_wallets=[OTHER, FOURTH, ADDRESS]))
    assert result.factors.linked_wallet_count == 3
    assert result.multiplier == pytest.approx(1.2)


def test_evaluator_fails_open_to_neutral(make_ctx):
    ctx = make_ctx(
        chain=FakeChain(fail=True),
        eas=FakeEAS(fail=True),
        passport=FakePassport(fail=True),
        neynar=FakeNeynar(fail=True),
    )
    result = asyncio.run(evaluate_sybil_resistance(ADDRESS, ctx, user_id="user_missing"))
    assert result.multiplier == 1.0


# ── 3. Verification cache ─────────────────────────

def test_coinbase_verification_is_cached(make_ctx):
    eas = FakeEAS({COINBASE_SCHEMA: [Attestation(id="0xcb01")]})
    ctx = make_ctx(eas=eas)

    async def _run():
        first = await check_coinbase_verification(ADDRESS.upper().replace("0X", "0x"), ctx)
        second = await check_coinbase_verification(ADDRESS, ctx)
        return first, second

    first, second = asyncio.run(_run())

    assert first == second == {"isVerified": True, "method": "coinbase_attestation", "attestationId": "0xcb01"}
    assert eas.calls == 1


def test_coinbase_verification_expires(make_ctx, clock):
    eas = FakeEAS({COINBASE_SCHEMA: []})
    ctx = make_ctx(eas=eas)

    asyncio.run(check_coinbase_verification(ADDRESS, ctx))
    clock.advance(3601)
    asyncio.run(check_coinbase_verification(ADDRESS, ctx))
    assert eas.calls == 2


def test_coinbase_lookup_failure_is_not_cached(make_ctx):
    eas = FakeEAS(fail=True)
    ctx = make_ctx(eas=eas)

    result = asyncio.run(check_coinbase_verification(ADDRESS, ctx))
    assert result["isVerified"] is False
    assert ctx.verification_cache.get(ADDRESS) is None


def test_passport_score_is_cached(make_ctx):
    passport = FakePassport(score=25)
    ctx = make_ctx(passport=passport)

    async def _run():
        first = await evaluate_sybil_resistance(ADDRESS, ctx)
        second = await evaluate_sybil_resistance(ADDRESS.upper().replace("0X", "0x"), ctx)
        return first, second

    first, second = asyncio.run(_run())

    assert first.factors.passport_score == second.factors.passport_score == 25
    assert passport.calls == 1


def test_missing_passport_is_cached_until_expiry(make_ctx, clock):
    passport = FakePassport(score=None)
    ctx = make_ctx(passport=passport)

    assert asyncio.run(get_cached_passport_score(ADDRESS, ctx)) is None
    assert asyncio.run(get_cached_passport_score(ADDRESS, ctx)) is None
    assert passport.calls == 1
    clock.advance(3601)
    asyncio.run(get_cached_passport_score(ADDRESS, ctx))
    assert passport.calls == 2


def test_passport_failure_is_not_cached(make_ctx):
    passport = FakePassport(fail=True)
    ctx = make_ctx(passport=passport)

    result = asyncio.run(evaluate_sybil_resistance(ADDRESS, ctx))
    assert result.factors.passport_score is None
    assert ctx.verification_cache.get(f"passport:{ADDRESS}") is None


# ── 4. Pattern heuristics ─────────────────────────

def test_unknown_wallet_is_flagged(ctx):
    report = asyncio.run(detect_sybil_patterns(ADDRESS, ctx))

    assert report.risk_score == pytest.approx(0.5)
    assert report.is_potential_sybil is True
    assert "No transaction history" in report.reasons
    assert "No Coinbase verification" in report.reasons


def test_new_busy_wallet_risk(make_ctx):
    ctx = make_ctx()

    async def _run():
        await ctx.store.set_transaction_cache(TransactionCacheRecord(
            address=ADDRESS,
            first_tx_timestamp=NOW - 2 * DAY,
            transaction_count=60,
            expires_at=NOW + 3600,
        ))
        return await detect_sybil_patterns(ADDRESS, ctx)

    report = asyncio.run(_run())
    assert report.risk_score == pytest.approx(0.7)
    assert "Very new wallet with high activity" in report.reasons
    assert "Wallet less than 30 days old" in report.reasons


def test_established_verified_wallet_is_clean(make_ctx):
    ctx = make_ctx(eas=FakeEAS({COINBASE_SCHEMA: [Attestation(id="0xcb01")]}))

    async def _run():
        await ctx.store.set_transaction_cache(TransactionCacheRecord(
            address=ADDRESS,
            first_tx_timestamp=NOW - 400 * DAY,
            transaction_count=300,
            expires_at=NOW + 3600,
        ))
        await ctx.store.create_user(ADDRESS, NOW)
        return await detect_sybil_patterns(ADDRESS, ctx)

    report = asyncio.run(_run())
    assert report.risk_score == 0.0
    assert report.is_potential_sybil is False
    assert report.reasons == []
