"""
BaseScore — Metric Calculators

Ten independent calculators, each (ScoreInput, Collaborators) → MetricScore:

    Base Tenure      15  days since first tx, earliest across linked wallets
    Zora Mints       12  2 points per mint
    Timeliness        8  tx/day consistency + recency bonus
    Farcaster        15  FID, rank percentile, EigenTrust, engagement, followers
    Builder          20  contract deployments (tx-count proxy when none found)
    Creator          10  Zora collections + log volume
    Onchain Summer    8  20 per badge attestation
    Hackathon         7  winner 50 / finalist 30 / submission 20
    Early Adopter     5  first tx relative to network launch
    DeFi Metrics     10  protocols, vintage, categories, volume tier, interactions

Calculators never raise. Internally each run yields MetricScore | Degraded;
Degraded is logged and collapsed to a zero score at the boundary, so a
single source outage never blocks the reputation computation.
"""
import asyncio
import math
from dataclasses import dataclass
from typing import Optional, List, Union, Callable, Awaitable, TYPE_CHECKING

import structlog

from basescore.compute.collectors import rank_percentile
from basescore.compute.persistence import DefiMetricsRecord
from basescore.config import METRIC_WEIGHTS
from basescore.trust.activity import load_wallet_activity, SECONDS_PER_DAY
from basescore.trust.economic import analyze_transactions, capital_tier
from basescore.trust.eigentrust import (
    build_farcaster_social_graph,
    build_ego_network,
    calculate_eigentrust,
    calculate_social_graph_score,
)
from basescore.trust.engine import MetricScore, ScoreInput, round_half_up, clamp

if TYPE_CHECKING:
    from basescore.compute.pipeline import Collaborators

logger = structlog.get_logger()


@dataclass(frozen=True)
class Degraded:
    """A metric whose source failed. Never leaves this module as anything but a zero score."""
    metric: str
    reason: str


MetricOutcome = Union[MetricScore, Degraded]
RawCalculator = Callable[[ScoreInput, "Collaborators"], Awaitable[float]]


class MetricCalculator:

    def __init__(self, name: str, func: RawCalculator):
        config = METRIC_WEIGHTS[name]
        self.name = name
        self.weight = config["weight"]
        self.max_score = config["max_score"]
        self._func = func

    def __repr__(self) -> str:
        return f"<MetricCalculator {self.name} weight={self.weight} max={self.max_score}>"

    def score(self, raw: float) -> MetricScore:
        """Clamp a raw value into [0, max_score] as an integer score."""
        value = int(clamp(round_half_up(max(0.0, raw)), 0, self.max_score))
        return MetricScore(name=self.name, score=value, weight=self.weight, max_score=self.max_score)

    def zero(self) -> MetricScore:
        return self.score(0)

    async def evaluate(
        self,
        score_input: ScoreInput,
        ctx: "Collaborators",
        timeout: Optional[float] = None,
    ) -> MetricOutcome:
        try:
            if timeout is not None:
                raw = await asyncio.wait_for(self._func(score_input, ctx), timeout=timeout)
            else:
                raw = await self._func(score_input, ctx)
        except asyncio.TimeoutError:
            return Degraded(self.name, f"timeout after {timeout}s")
        except Exception as e:
            return Degraded(self.name, f"{type(e).__name__}: {e}")
        return self.score(raw)

    async def __call__(
        self,
        score_input: ScoreInput,
        ctx: "Collaborators",
        timeout: Optional[float] = None,
    ) -> MetricScore:
        outcome = await self.evaluate(score_input, ctx, timeout=timeout)
        if isinstance(outcome, Degraded):
            logger.warning(
                "metric_degraded",
                metric=outcome.metric,
                address=score_input.address,
                error=outcome.reason[:200],
            )
            return self.zero()
        return outcome


CALCULATORS: List[MetricCalculator] = []

# Output order follows METRIC_WEIGHTS, not definition order.
_METRIC_ORDER = list(METRIC_WEIGHTS)


def metric_calculator(name: str):
    """Register a raw scoring coroutine as a fail-open calculator."""
    def decorator(func: RawCalculator) -> MetricCalculator:
        calculator = MetricCalculator(name, func)
        CALCULATORS.append(calculator)
        CALCULATORS.sort(key=lambda c: _METRIC_ORDER.index(c.name))
        return calculator
    return decorator


def get_calculator(name: str) -> MetricCalculator:
    for calculator in CALCULATORS:
        if calculator.name == name:
            return calculator
    raise KeyError(name)


# =============================================
# ON-CHAIN ACTIVITY
# =============================================

@metric_calculator("Base Tenure")
async def base_tenure(score_input: ScoreInput, ctx: "Collaborators") -> float:
    activities = await asyncio.gather(
        *[load_wallet_activity(w, ctx) for w in score_input.all_wallets]
    )
    firsts = [a.first_tx_timestamp for a in activities if a.first_tx_timestamp is not None]
    if not firsts:
        return 0
    return max(0, math.floor((ctx.clock() - min(firsts)) / SECONDS_PER_DAY))


@metric_calculator("Zora Mints")
async def zora_mints(score_input: ScoreInput, ctx: "Collaborators") -> float:
    if not ctx.zora.enabled:
        return 0
    return await ctx.zora.count_mints(score_input.address) * 2


@metric_calculator("Timeliness")
async def timeliness(score_input: ScoreInput, ctx: "Collaborators") -> float:
    activity = await load_wallet_activity(score_input.address, ctx)
    if not activity.has_history:
        return 0

    age_days = (ctx.clock() - activity.first_tx_timestamp) / SECONDS_PER_DAY
    tx_count = activity.transaction_count
    consistency = min(50.0, tx_count / max(1.0, age_days) * 10)

    if tx_count > 10:
        recency = 30
    elif tx_count > 5:
        recency = 15
    else:
        recency = 0
    return consistency + recency


@metric_calculator("Builder")
async def builder(score_input: ScoreInput, ctx: "Collaborators") -> float:
    """
    Tiered on detected contract deployments. Without any detected deployment
    it falls back to a transaction-count proxy, which is imprecise: busy
    traders look like builders.
    """
    deployments = None
    if ctx.explorer is not None and ctx.explorer.enabled:
        deployments = await ctx.explorer.count_contract_deployments(score_input.address)

    if deployments:
        if deployments >= 10:
            return 200
        if deployments >= 5:
            return 150
        if deployments >= 3:
            return 100
        return 50

    activity = await load_wallet_activity(score_input.address, ctx)
    if activity.transaction_count > 100:
        return 10
    if activity.transaction_count > 50:
        return 5
    return 0


@metric_calculator("Early Adopter")
async def early_adopter(score_input: ScoreInput, ctx: "Collaborators") -> float:
    activity = await load_wallet_activity(score_input.address, ctx)
    if not activity.has_history:
        return 0

    days_since_launch = (activity.first_tx_timestamp - ctx.settings.BASE_LAUNCH_TIMESTAMP) / SECONDS_PER_DAY
    if days_since_launch <= 7:
        return 50
    if days_since_launch <= 30:
        return 40
    if days_since_launch <= 90:
        return 30
    if days_since_launch <= 180:
        return 20
    if days_since_launch <= 365:
        return 10
    return 0


# =============================================
# SOCIAL
# =============================================

@metric_calculator("Farcaster")
async def farcaster(score_input: ScoreInput, ctx: "Collaborators") -> float:
    user = await ctx.neynar.get_user_by_address(score_input.address)
    if user is None or not user.fid:
        return 0

    score = 50
    graph = await ctx.neynar.get_social_graph(user.fid)

    percentile = rank_percentile(len(graph.followers)) if graph is not None else 0
    if percentile >= 90:
        score += 100
    elif percentile >= 75:
        score += 75
    elif percentile >= 50:
        score += 50
    elif percentile >= 25:
        score += 25

    if graph is not None:
        node = build_farcaster_social_graph(user.fid, graph.follows, graph.followers, graph.mentions)
        trust = calculate_eigentrust(build_ego_network(node))
        social_graph_score = calculate_social_graph_score(trust, node.id)
        score += round_half_up(social_graph_score * 0.5)

        engagement = min(25.0, graph.mutual_follows / max(1, len(graph.follows)) * 25)
        score += round_half_up(engagement)

    score += round_half_up(min(50.0, math.log10(user.follower_count + 1) * 10))
    return score


# =============================================
# CREATOR ECONOMY
# =============================================

@metric_calculator("Creator")
async def creator(score_input: ScoreInput, ctx: "Collaborators") -> float:
    if not ctx.zora.enabled:
        return 0
    collections = await ctx.zora.get_creator_collections(score_input.address)
    score = min(collections.count * 10, 60)
    if collections.total_volume_eth > 0:
        score += min(40.0, math.log10(collections.total_volume_eth + 1) * 5)
    return score


# =============================================
# SEASONAL BADGES
# =============================================

@metric_calculator("Onchain Summer")
async def onchain_summer(score_input: ScoreInput, ctx: "Collaborators") -> float:
    schema = ctx.settings.ONCHAIN_SUMMER_SCHEMA_UID
    if not schema:
        return 0
    badges = await ctx.eas.get_attestations(score_input.address, schema)
    return len(badges) * 20


WINNER_KEYWORDS = ("winner", "1st", "first")
FINALIST_KEYWORDS = ("finalist", "2nd", "3rd", "second", "third")


def hackathon_placement_points(text: str) -> int:
    if any(k in text for k in WINNER_KEYWORDS):
        return 50
    if any(k in text for k in FINALIST_KEYWORDS):
        return 30
    return 20


@metric_calculator("Hackathon")
async def hackathon(score_input: ScoreInput, ctx: "Collaborators") -> float:
    schema = ctx.settings.HACKATHON_SCHEMA_UID
    if not schema:
        return 0
    attestations = await ctx.eas.get_attestations(score_input.address, schema)
    return sum(hackathon_placement_points(a.decoded_text()) for a in attestations)


# =============================================
# DEFI
# =============================================

def defi_metrics_score(record: DefiMetricsRecord) -> int:
    protocol_score = min(record.unique_protocols * 10, 30)
    vintage_score = min(record.vintage_contracts * 5, 15)
    category_score = min(len(record.protocol_categories) * 5, 25)
    volume_bonus = {"high": 20, "mid": 10}.get(record.capital_tier, 0)
    interaction_score = min(record.total_interactions // 10, 30)
    return min(protocol_score + vintage_score + category_score + volume_bonus + interaction_score, 100)


async def load_defi_metrics(address: str, ctx: "Collaborators") -> DefiMetricsRecord:
    """Persisted DefiMetrics while younger than the tx cache TTL, else a fresh analysis."""
    now = ctx.clock()
    try:
        record = await ctx.store.get_defi_metrics(address)
    except Exception as e:
        logger.warning("defi_metrics_read_failed", address=address, error=str(e))
        record = None

    if record is not None and now - record.last_updated < ctx.settings.TX_CACHE_TTL_SECONDS:
        return record

    analysis = await analyze_transactions(address, ctx)
    record = DefiMetricsRecord(
        address=address,
        unique_protocols=len(analysis.unique_protocols),
        vintage_contracts=analysis.vintage_contracts,
        protocol_categories=sorted(analysis.protocol_categories),
        total_interactions=analysis.transaction_count,
        gas_used_eth=analysis.gas_used_eth,
        volume_usd=analysis.total_volume_usd,
        capital_tier=capital_tier(analysis.total_volume_usd),
        liquidity_duration_days=analysis.liquidity_duration_days,
        liquidity_positions=analysis.liquidity_positions,
        lending_utilization=analysis.lending_utilization,
        last_updated=now,
    )
    try:
        await ctx.store.upsert_defi_metrics(record)
    except Exception as e:
        logger.warning("defi_metrics_persist_failed", address=address, error=str(e))
    return record


@metric_calculator("DeFi Metrics")
async def defi_metrics(score_input: ScoreInput, ctx: "Collaborators") -> float:
    record = await load_defi_metrics(score_input.address, ctx)
    return defi_metrics_score(record)
