"""Every metric calculator's scoring rule and its fail-open path."""
import asyncio

import pytest

from basescore.compute.collectors import Attestation, FarcasterGraph, FarcasterUser
from basescore.compute.persistence import DefiMetricsRecord
from basescore.config import METRIC_WEIGHTS, Settings
from basescore.trust.engine import ScoreInput
from basescore.trust.metrics import (
    CALCULATORS,
    Degraded,
    MetricCalculator,
    get_calculator,
    hackathon_placement_points,
)

from conftest import (
    ADDRESS, OTHER, DAY, NOW, SUMMER_SCHEMA, HACKATHON_SCHEMA,
    FakeChain, FakeEAS, FakeExplorer, FakeNeynar, FakeZora, hex_text,
)

LAUNCH = 1691539200


def _score(name: str, ctx, linked=()) -> int:
    calculator = get_calculator(name)
    return asyncio.run(calculator(ScoreInput.from_raw(ADDRESS, linked), ctx)).score


def _chain(first_days_ago=None, count=0):
    first = {ADDRESS: NOW - first_days_ago * DAY} if first_days_ago is not None else {}
    return FakeChain(first_tx=first, counts={ADDRESS: count})


# ── 1. Registry ───────────────────────────────────

def test_registry_order_and_weights():
    assert [c.name for c in CALCULATORS] == [
        "Base Tenure", "Zora Mints", "Timeliness", "Farcaster", "Builder",
        "Creator", "Onchain Summer", "Hackathon", "Early Adopter", "DeFi Metrics",
    ]
    assert sum(c.weight for c in CALCULATORS) == 110
    for calculator in CALCULATORS:
        assert calculator.max_score == METRIC_WEIGHTS[calculator.name]["max_score"]


def test_score_clamps_and_rounds():
    zora = get_calculator("Zora Mints")
    assert zora.score(500).score == 120
    assert zora.score(-5).score == 0
    assert zora.score(12.5).score == 13


def test_slow_metric_degrades_on_timeout(ctx):
    async def slow(score_input, ctx):
        await asyncio.sleep(5)
        return 100

    calculator = MetricCalculator("Zora Mints", slow)
    outcome = asyncio.run(calculator.evaluate(ScoreInput.from_raw(ADDRESS), ctx, timeout=0.01))
    assert isinstance(outcome, Degraded)
    assert "timeout" in outcome.reason


def test_failing_metric_collapses_to_zero(make_ctx):
    ctx = make_ctx(zora=FakeZora(mints=10, fail=True))
    calculator = get_calculator("Zora Mints")

    outcome = asyncio.run(calculator.evaluate(ScoreInput.from_raw(ADDRESS), ctx))
    assert isinstance(outcome, Degraded)
    assert _score("Zora Mints", ctx) == 0


# ── 2. On-chain activity ──────────────────────────

def test_tenure_days_since_first_transaction(make_ctx):
    assert _score("Base Tenure", make_ctx(chain=_chain(100))) == 100


def test_tenure_caps_at_150(make_ctx):
    assert _score("Base Tenure", make_ctx(chain=_chain(365))) == 150


def test_tenure_uses_oldest_linked_wallet(make_ctx):
    chain = FakeChain(first_tx={ADDRESS: NOW - 10 * DAY, OTHER: NOW - 120 * DAY})
    assert _score("Base Tenure", make_ctx(chain=chain), linked=[OTHER]) == 120


def test_tenure_without_history(ctx):
    assert _score("Base Tenure", ctx) == 0


def test_tenure_reads_transaction_cache(make_ctx):
    ctx = make_ctx(chain=_chain(42, count=3))
    _score("Base Tenure", ctx)

    cached = ctx.store.tx_cache[ADDRESS]
    assert cached.first_tx_timestamp == NOW - 42 * DAY
    assert cached.expires_at == NOW + 3600

    ctx.chain.calls.clear()
    assert _score("Base Tenure", ctx) == 42
    assert ctx.chain.calls == []


def test_timeliness_consistency_and_recency(make_ctx):
    # 50 tx over 100 days: consistency 5, recency 30
    assert _score("Timeliness", make_ctx(chain=_chain(100, count=50))) == 35


def test_timeliness_consistency_caps_at_50(make_ctx):
    assert _score("Timeliness", make_ctx(chain=_chain(1, count=8))) == 65


def test_timeliness_without_history(ctx):
    assert _score("Timeliness", ctx) == 0


@pytest.mark.parametrize("deployments,expected", [(12, 200), (5, 150), (3, 100), (1, 50)])
def test_builder_deployment_tiers(make_ctx, deployments, expected):
    ctx = make_ctx(explorer=FakeExplorer(enabled=True, deployments=deployments))
    assert _score("Builder", ctx) == expected


def test_builder_falls_back_to_transaction_count(make_ctx):
    ctx = make_ctx(explorer=FakeExplorer(enabled=True, deployments=0), chain=_chain(30, count=150))
    assert _score("Builder", ctx) == 10
    assert _score("Builder", make_ctx(chain=_chain(30, count=60))) == 5
    assert _score("Builder", make_ctx(chain=_chain(30, count=50))) == 0


def test_builder_without_history(ctx):
    assert _score("Builder", ctx) == 0


@pytest.mark.parametrize("days_after_launch,expected", [
    (3, 50), (20, 40), (60, 30), (100, 20), (300, 10), (400, 0),
])
def test_early_adopter_brackets(make_ctx, days_after_launch, expected):
    chain = FakeChain(first_tx={ADDRESS: LAUNCH + days_after_launch * DAY})
    assert _score("Early Adopter", make_ctx(chain=chain)) == expected


def test_early_adopter_without_history(ctx):
    assert _score("Early Adopter", ctx) == 0


# ── 3. Social ─────────────────────────────────────

def test_farcaster_without_account(ctx):
    assert _score("Farcaster", ctx) == 0


def test_farcaster_account_without_graph(make_ctx):
    neynar = FakeNeynar(user=FarcasterUser(fid=1, follower_count=99))
    # 50 for the FID + log10(100) * 10
    assert _score("Farcaster", make_ctx(neynar=neynar)) == 70


def test_farcaster_with_mutual_graph(make_ctx):
    neynar = FakeNeynar(
        user=FarcasterUser(fid=1, follower_count=0),
        graph=FarcasterGraph(fid=1, follows=[2], followers=[2], mentions={}),
    )
    # 50 FID + 50 EigenTrust (top bracket) + 25 engagement
    assert _score("Farcaster", make_ctx(neynar=neynar)) == 125


def test_farcaster_caps_at_150(make_ctx):
    neynar = FakeNeynar(
        user=FarcasterUser(fid=1, follower_count=1_000_000),
        graph=FarcasterGraph(fid=1, follows=[2], followers=[2], mentions={}),
    )
    assert _score("Farcaster", make_ctx(neynar=neynar)) == 150


def test_farcaster_source_down(make_ctx):
    assert _score("Farcaster", make_ctx(neynar=FakeNeynar(fail=True))) == 0


# ── 4. Creator economy ────────────────────────────

def test_zora_mints(make_ctx):
    assert _score("Zora Mints", make_ctx(zora=FakeZora(mints=7))) == 14
    assert _score("Zora Mints", make_ctx(zora=FakeZora(mints=100))) == 120


def test_zora_disabled(make_ctx):
    assert _score("Zora Mints", make_ctx(zora=FakeZora(mints=7, enabled=False))) == 0


def test_creator_collections_and_volume(make_ctx):
    assert _score("Creator", make_ctx(zora=FakeZora(collections=3))) == 30
    assert _score("Creator", make_ctx(zora=FakeZora(collections=10))) == 60
    # 20 for two collections + log10(10) * 5
    assert _score("Creator", make_ctx(zora=FakeZora(collections=2, volume_eth=9.0))) == 25


# ── 5. Seasonal badges ────────────────────────────

def _attestation(text: str, n: int = 0) -> Attestation:
    return Attestation(id=f"0x{n:064x}", data=hex_text(text))


def test_onchain_summer_badges(make_ctx):
    eas = FakeEAS({SUMMER_SCHEMA: [_attestation("badge", i) for i in range(2)]})
    assert _score("Onchain Summer", make_ctx(eas=eas)) == 40

    eas = FakeEAS({SUMMER_SCHEMA: [_attestation("badge", i) for i in range(5)]})
    assert _score("Onchain Summer", make_ctx(eas=eas)) == 80


def test_onchain_summer_without_schema(make_ctx):
    eas = FakeEAS({SUMMER_SCHEMA: [_attestation("badge")]})
    ctx = make_ctx(eas=eas, settings=Settings(ONCHAIN_SUMMER_SCHEMA_UID=""))
    assert _score("Onchain Summer", ctx) == 0
    assert eas.calls == 0


def test_hackathon_placement_keywords():
    assert hackathon_placement_points("winner - base buildathon") == 50
    assert hackathon_placement_points("1st place") == 50
    assert hackathon_placement_points("finalist") == 30
    assert hackathon_placement_points("3rd place") == 30
    assert hackathon_placement_points("participant") == 20


def test_hackathon_sums_and_caps(make_ctx):
    eas = FakeEAS({HACKATHON_SCHEMA: [_attestation("Winner - Base Buildathon")]})
    assert _score("Hackathon", make_ctx(eas=eas)) == 50

    eas = FakeEAS({HACKATHON_SCHEMA: [_attestation("Finalist", 1), _attestation("participant", 2)]})
    assert _score("Hackathon", make_ctx(eas=eas)) == 50

    eas = FakeEAS({HACKATHON_SCHEMA: [_attestation("Winner", 1), _attestation("Finalist", 2)]})
    assert _score("Hackathon", make_ctx(eas=eas)) == 70


def test_hackathon_source_down(make_ctx):
    assert _score("Hackathon", make_ctx(eas=FakeEAS(fail=True))) == 0


# ── 6. DeFi ───────────────────────────────────────

def test_defi_metrics_from_estimate(make_ctx):
    ctx = make_ctx(chain=_chain(100, count=100))
    # protocols 30 + vintage 15 + categories 15 + volume 0 + interactions 10
    assert _score("DeFi Metrics", ctx) == 70

    record = ctx.store.defi_metrics[ADDRESS]
    assert record.unique_protocols == 4
    assert record.capital_tier == "low"
    assert record.last_updated == NOW


def _defi_record(last_updated: float) -> DefiMetricsRecord:
    return DefiMetricsRecord(
        address=ADDRESS,
        unique_protocols=1,
        vintage_contracts=0,
        protocol_categories=["DEX"],
        total_interactions=5,
        gas_used_eth=0.01,
        volume_usd=250000.0,
        capital_tier="high",
        last_updated=last_updated,
    )


def test_defi_metrics_reuses_recent_record(make_ctx):
    ctx = make_ctx(chain=_chain(100, count=100))
    ctx.store.defi_metrics[ADDRESS] = _defi_record(NOW - 10)
    # protocols 10 + categories 5 + high tier 20
    assert _score("DeFi Metrics", ctx) == 35


def test_defi_metrics_recomputes_stale_record(make_ctx):
    ctx = make_ctx(chain=_chain(100, count=100))
    ctx.store.defi_metrics[ADDRESS] = _defi_record(NOW - 7200)
    assert _score("DeFi Metrics", ctx) == 70


def test_every_metric_within_bounds_when_sources_fail(make_ctx):
    ctx = make_ctx(
        zora=FakeZora(fail=True),
        eas=FakeEAS(fail=True),
        neynar=FakeNeynar(fail=True),
        chain=FakeChain(fail=True),
    )
    score_input = ScoreInput.from_raw(ADDRESS)

    async def _all():
        return await asyncio.gather(*[c(score_input, ctx) for c in CALCULATORS])

    for metric in asyncio.run(_all()):
        assert metric.score == 0
