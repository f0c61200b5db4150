"""
BaseScore — Reputation Pipeline
The aggregator every score request flows through:

    Validate → Pre-warm activity → [Metric Calculators] → Economic Vector ┐
                                                        → Sybil Resistance ┴→ Combine → Tier → Persist

Stages (logged, not persisted):
    INIT → METRICS_COMPUTING → VECTOR_COMPOSING → SYBIL_EVALUATING → COMBINING → DONE

The pipeline handles:
    - Input validation before any I/O (InvalidAddressError)
    - Concurrent fan-out to every calculator with per-call timeouts
    - Fail-open metrics, economic analysis and Sybil sub-checks
    - Fire-and-forget EconomicVector persistence (never blocks the response)
    - Freshness-aware read paths over persisted results

Dependencies: every collaborator is injected through Collaborators.
    If the store is down → compute every time, log warnings.
    If a source is down → that metric scores 0.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Sequence, Set, Callable, Tuple, Union

import httpx
import structlog

from basescore.chain.base_client import BaseChainClient
from basescore.chain.explorer import BaseScanClient
from basescore.compute.cache import (
    VerificationCache,
    build_verification_cache,
    reputation_policy,
    economic_policy,
    scoring_run,
)
from basescore.compute.collectors import ZoraClient, EASClient, NeynarClient, PassportClient
from basescore.compute.persistence import (
    ReputationStore,
    InMemoryReputationStore,
    Neo4jReputationStore,
    EconomicVectorRecord,
)
from basescore.config import Settings, get_settings
from basescore.trust.activity import load_wallet_activity
from basescore.trust.economic import calculate_economic_vector
from basescore.trust.engine import (
    ScoreInput,
    ReputationData,
    InvalidAddressError,
    PipelineError,
    combine_scores,
    determine_tier,
    normalize_address,
)
from basescore.trust.metrics import CALCULATORS
from basescore.trust.sybil import evaluate_sybil_resistance

logger = structlog.get_logger()


class PipelineStage(str, Enum):
    INIT = "init"
    METRICS_COMPUTING = "metrics_computing"
    VECTOR_COMPOSING = "vector_composing"
    SYBIL_EVALUATING = "sybil_evaluating"
    COMBINING = "combining"
    DONE = "done"


# =============================================
# COLLABORATORS
# =============================================

@dataclass
class Collaborators:
    """Everything a scoring run touches. Tests inject fakes for each field."""
    settings: Settings
    store: ReputationStore
    chain: Any
    explorer: Any
    zora: Any
    eas: Any
    neynar: Any
    passport: Any
    verification_cache: VerificationCache
    clock: Callable[[], float] = time.time
    _background: Set[asyncio.Task] = field(default_factory=set, repr=False)

    def spawn(self, coro) -> asyncio.Task:
        """Run coro in the background, holding a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding background writes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def build_store(settings: Settings) -> ReputationStore:
    if settings.STORE_BACKEND == "neo4j":
        return Neo4jReputationStore()
    return InMemoryReputationStore()


@asynccontextmanager
async def open_collaborators(
    settings: Optional[Settings] = None,
    store: Optional[ReputationStore] = None,
):
    """One shared HTTP client and store per session; background writes drain on exit."""
    settings = settings or get_settings()
    store = store or build_store(settings)
    if isinstance(store, Neo4jReputationStore):
        try:
            await store.init_schema()
        except Exception as e:
            logger.warning("store_schema_init_failed", error=str(e))

    async with httpx.AsyncClient(
        headers={"User-Agent": "BaseScore/1.0 (+https://basescore.xyz)"},
        follow_redirects=True,
        verify=True,
        timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS, connect=5.0),
    ) as client:
        explorer = BaseScanClient(client, settings.BASESCAN_API_URL, settings.BASESCAN_API_KEY)
        ctx = Collaborators(
            settings=settings,
            store=store,
            chain=BaseChainClient(client, settings.BASE_RPC_URL, explorer=explorer),
            explorer=explorer,
            zora=ZoraClient(client, settings.ZORA_API_URL, settings.ZORA_API_KEY),
            eas=EASClient(client, settings.EAS_GRAPHQL_URL),
            neynar=NeynarClient(client, settings.NEYNAR_API_URL, settings.NEYNAR_API_KEY),
            passport=PassportClient(client, settings.GITCOIN_PASSPORT_API_URL, settings.GITCOIN_PASSPORT_API_KEY),
            verification_cache=build_verification_cache(settings),
        )
        try:
            yield ctx
        finally:
            await ctx.drain()
            await store.close()


# =============================================
# THE PIPELINE
# =============================================

def _stage(stage: PipelineStage, address: str) -> None:
    logger.debug("pipeline_stage", stage=stage.value, address=address)


def _as_input(score_input: Union[ScoreInput, str], linked_wallets: Sequence[str] = ()) -> ScoreInput:
    if isinstance(score_input, ScoreInput):
        return score_input
    return ScoreInput.from_raw(score_input, linked_wallets)


async def _prewarm_activity(score_input: ScoreInput, ctx: Collaborators) -> None:
    """Populate the transaction cache once so calculators share a single RPC round."""
    try:
        await asyncio.gather(*[load_wallet_activity(w, ctx) for w in score_input.all_wallets])
    except Exception as e:
        logger.warning("activity_prewarm_failed", address=score_input.address, error=str(e))


async def _score(
    score_input: ScoreInput,
    ctx: Collaborators,
    user_id: Optional[str] = None,
) -> Tuple[ReputationData, EconomicVectorRecord]:
    with scoring_run():
        return await _run_stages(score_input, ctx, user_id)


async def _run_stages(
    score_input: ScoreInput,
    ctx: Collaborators,
    user_id: Optional[str],
) -> Tuple[ReputationData, EconomicVectorRecord]:
    address = score_input.address
    started = time.time()
    _stage(PipelineStage.INIT, address)
    await _prewarm_activity(score_input, ctx)

    # ── Metrics ──────────────────────────────────────
    _stage(PipelineStage.METRICS_COMPUTING, address)
    timeout = ctx.settings.METRIC_TIMEOUT_SECONDS
    metrics = await asyncio.gather(
        *[calculator(score_input, ctx, timeout=timeout) for calculator in CALCULATORS]
    )
    base_score = sum(m.score for m in metrics)

    # ── Economic vector + Sybil, concurrently ────────
    _stage(PipelineStage.VECTOR_COMPOSING, address)
    _stage(PipelineStage.SYBIL_EVALUATING, address)
    vector, sybil = await asyncio.gather(
        calculate_economic_vector(metrics, base_score, address, ctx),
        evaluate_sybil_resistance(address, ctx, user_id=user_id, linked_wallets=score_input.linked_wallets),
    )

    # ── Combine ──────────────────────────────────────
    _stage(PipelineStage.COMBINING, address)
    total_score, combined = combine_scores(base_score, vector.multiplier, sybil.multiplier)
    tier = determine_tier(total_score)
    now = ctx.clock()

    breakdown = dict(vector.breakdown)
    breakdown["baseScore"] = base_score
    breakdown["totalScore"] = total_score
    breakdown["sybilResistance"] = sybil.to_dict()
    breakdown["economicMultiplier"] = vector.multiplier
    breakdown["finalMultiplier"] = combined

    reputation = ReputationData(
        total_score=total_score,
        tier=tier,
        metrics=tuple(metrics),
        last_calculated=datetime.fromtimestamp(now, tz=timezone.utc),
        breakdown=breakdown,
    )
    record = EconomicVectorRecord(
        address=address,
        capital_pillar=vector.capital_pillar,
        diversity_pillar=vector.diversity_pillar,
        identity_pillar=vector.identity_pillar,
        total_score=total_score,
        multiplier=combined,
        breakdown=breakdown,
        calculated_at=now,
    )
    ctx.spawn(_persist_economic_vector(record, ctx))

    _stage(PipelineStage.DONE, address)
    logger.info(
        "score_computed",
        address=address,
        score=total_score,
        tier=tier.value,
        base_score=base_score,
        multiplier=combined,
        pipeline_ms=round((time.time() - started) * 1000, 2),
    )
    return reputation, record


async def _persist_economic_vector(record: EconomicVectorRecord, ctx: Collaborators) -> None:
    try:
        await ctx.store.upsert_economic_vector(record)
    except Exception as e:
        logger.warning("economic_vector_persist_failed", address=record.address, error=str(e))


async def calculate_reputation(
    score_input: Union[ScoreInput, str],
    ctx: Collaborators,
    user_id: Optional[str] = None,
) -> ReputationData:
    """
    The single scoring entry point.

    Raises InvalidAddressError before any I/O for a malformed address, and
    PipelineError for anything unexpected inside the aggregator itself.
    Metric, analysis and Sybil failures never surface here.
    """
    score_input = _as_input(score_input)
    try:
        reputation, _ = await _score(score_input, ctx, user_id=user_id)
    except Exception as e:
        logger.error("pipeline_failed", address=score_input.address, error=str(e))
        raise PipelineError(f"reputation computation failed for {score_input.address}") from e
    return reputation


# =============================================
# FRESHNESS-AWARE READ PATHS
# =============================================

async def _resolve_user(score_input: ScoreInput, ctx: Collaborators):
    """Get-or-create the user and merge its stored wallets into the input."""
    address = score_input.address
    try:
        user = await ctx.store.get_user_by_address(address)
        if user is None:
            user = await ctx.store.create_user(address, ctx.clock())
        wallets = await ctx.store.get_wallets(user.id)
    except Exception as e:
        logger.warning("user_lookup_failed", address=address, error=str(e))
        return None, score_input

    linked = list(score_input.linked_wallets) + [w.address for w in wallets]
    return user, ScoreInput.from_raw(address, linked)


async def get_reputation(
    address: str,
    ctx: Collaborators,
    force_refresh: bool = False,
    linked_wallets: Sequence[str] = (),
) -> ReputationData:
    """Persisted reputation while younger than the 5 minute policy, else recompute and upsert."""
    score_input = ScoreInput.from_raw(address, linked_wallets)
    user, score_input = await _resolve_user(score_input, ctx)
    policy = reputation_policy(ctx.settings)

    if user is not None and not force_refresh:
        try:
            existing = await ctx.store.get_reputation(user.id)
        except Exception as e:
            logger.warning("reputation_read_failed", address=score_input.address, error=str(e))
            existing = None
        if existing is not None and policy.is_fresh(existing.last_calculated.timestamp(), ctx.clock()):
            logger.debug("reputation_cache_hit", address=score_input.address)
            return existing.to_reputation()

    reputation = await calculate_reputation(score_input, ctx, user_id=user.id if user else None)

    if user is not None:
        try:
            await ctx.store.upsert_reputation(user.id, reputation)
        except Exception as e:
            logger.warning("reputation_persist_failed", address=score_input.address, error=str(e))
    return reputation


async def get_economic_vector(
    address: str,
    ctx: Collaborators,
    force_refresh: bool = False,
) -> Dict[str, Any]:
    """Persisted economic vector while younger than the 15 minute policy, else recompute."""
    score_input = ScoreInput.from_raw(address)
    address = score_input.address
    policy = economic_policy(ctx.settings)

    try:
        existing = await ctx.store.get_economic_vector(address)
    except Exception as e:
        logger.warning("economic_vector_read_failed", address=address, error=str(e))
        existing = None

    cached = existing is not None and policy.is_fresh(existing.calculated_at, ctx.clock(), force_refresh)
    if cached:
        logger.debug("economic_vector_cache_hit", address=address)
        record = existing
    else:
        user, score_input = await _resolve_user(score_input, ctx)
        try:
            _, record = await _score(score_input, ctx, user_id=user.id if user else None)
        except Exception as e:
            logger.error("pipeline_failed", address=address, error=str(e))
            raise PipelineError(f"economic vector computation failed for {address}") from e

    try:
        defi = await ctx.store.get_defi_metrics(address)
    except Exception as e:
        logger.warning("defi_metrics_read_failed", address=address, error=str(e))
        defi = None

    result = record.to_dict()
    result["defiMetrics"] = {
        "uniqueProtocols": defi.unique_protocols,
        "vintageContracts": defi.vintage_contracts,
        "protocolCategories": list(defi.protocol_categories),
        "totalInteractions": defi.total_interactions,
        "gasUsedETH": defi.gas_used_eth,
        "volumeUSD": defi.volume_usd,
        "liquidityDurationDays": defi.liquidity_duration_days,
        "liquidityPositions": defi.liquidity_positions,
        "lendingUtilization": defi.lending_utilization,
        "capitalTier": defi.capital_tier,
    } if defi is not None else None
    result["cached"] = cached
    return result


# =============================================
# BATCH
# =============================================

async def compute_batch(
    addresses: List[str],
    ctx: Collaborators,
    max_concurrent: int = 5,
) -> List[Dict[str, Any]]:
    """Score many addresses, at most max_concurrent at a time. Failures become error entries."""
    semaphore = asyncio.Semaphore(max_concurrent)

    async def _one(address: str) -> Dict[str, Any]:
        async with semaphore:
            try:
                reputation = await calculate_reputation(address, ctx)
            except (InvalidAddressError, PipelineError) as e:
                return {"address": address, "error": str(e)}
            result = reputation.to_dict()
            result["address"] = normalize_address(address)
            return result

    return await asyncio.gather(*[_one(a) for a in addresses])