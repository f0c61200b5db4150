"""
BaseScore — Economic Model
DeFi/Transaction Analyzer + Economic Vector Composer.

Two analysis paths, selected by DATA_MODE:
    exact      BaseScan transaction list → real protocol hits, values, gas
    estimated  transaction count only → tiered per-tx value, tiered gas,
               log-scaled DeFi share, protocols picked oldest-first

The estimated path is a low-confidence approximation and is labelled as
such in every breakdown (analysis.source == "estimated"). Both paths fill
every TransactionAnalysis field with a non-negative value.

Economic Vector:
    capital   = min(400, builder*1.2 + creator*1.2 + defi*1.5 + whale*0.8 + deployment*0.5)
    diversity = min(300, (defi + mints) * 3)
    identity  = min(300, (social + early_adopter) * 2)
    multiplier = 1.0 + 0.1 (early adopter) + 0.1 (any seasonal badge)
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, FrozenSet, Sequence, TYPE_CHECKING

import structlog

from basescore.chain.explorer import ExplorerTransaction
from basescore.compute.cache import run_memoized
from basescore.compute.persistence import TransactionRecord
from basescore.trust.activity import load_wallet_activity, SECONDS_PER_DAY
from basescore.trust.engine import MetricScore

if TYPE_CHECKING:
    from basescore.compute.pipeline import Collaborators

logger = structlog.get_logger()

WEI_PER_ETH = 10 ** 18
ONE_YEAR_SECONDS = 31536000
CAPITAL_CATEGORIES = frozenset({"Lending", "Staking"})


# =============================================
# PROTOCOL REGISTRY
# =============================================

@dataclass(frozen=True)
class Protocol:
    name: str
    category: str
    deployed_at: int

    def is_vintage(self, now: float) -> bool:
        return self.deployed_at < now - ONE_YEAR_SECONDS


PROTOCOL_REGISTRY: Dict[str, Protocol] = {
    # DEX
    "0x4752ba5dbc23f44d87826276bf6fd6b1c372ad24": Protocol("Uniswap V3", "DEX", 1690848000),
    "0x03a520b32c04bf3beef7beb72e919cf822ed34f1": Protocol("Aerodrome", "DEX", 1696000000),
    "0x9409280dc1e6d33ab7a8c6ec03e5763fb61772b5": Protocol("BaseSwap", "DEX", 1694000000),
    # Lending
    "0xa238dd80c259a72e81d7e4664a9801593f98d1c5": Protocol("Aave V3", "Lending", 1696000000),
    "0xbb505c54d71e9e599cb8435b4f0ceec05fc71cbd": Protocol("Morpho", "Lending", 1695000000),
    # Bridge
    "0x4200000000000000000000000000000000000010": Protocol("Base Bridge", "Bridge", 1690000000),
    # Staking
    "0x4b48841d4b32c4650e4abc117a03fe8b51f3f964": Protocol("Stakewise", "Staking", 1697000000),
    # NFT
    "0x04e2516a2c207e84a1839755675dfd8ef6302f0a": Protocol("Zora", "NFT", 1680000000),
}


# =============================================
# TRANSACTION ANALYSIS
# =============================================

@dataclass(frozen=True)
class TransactionAnalysis:
    total_volume_eth: float = 0.0
    total_volume_usd: float = 0.0
    defi_volume_usd: float = 0.0
    unique_protocols: FrozenSet[str] = frozenset()
    protocol_categories: FrozenSet[str] = frozenset()
    vintage_contracts: int = 0
    gas_used_eth: float = 0.0
    capital_deployed: float = 0.0
    transaction_count: int = 0
    liquidity_duration_days: int = 0
    liquidity_positions: int = 0
    lending_utilization: float = 0.0
    source: str = "estimated"

    def to_summary(self) -> Dict[str, Any]:
        return {
            "totalVolumeETH": self.total_volume_eth,
            "totalVolumeUSD": self.total_volume_usd,
            "defiVolumeUSD": self.defi_volume_usd,
            "uniqueProtocols": sorted(self.unique_protocols),
            "protocolCategories": sorted(self.protocol_categories),
            "vintageContracts": self.vintage_contracts,
            "gasUsedETH": self.gas_used_eth,
            "capitalDeployed": self.capital_deployed,
            "transactionCount": self.transaction_count,
            "liquidityDurationDays": self.liquidity_duration_days,
            "liquidityPositions": self.liquidity_positions,
            "lendingUtilization": self.lending_utilization,
            "source": self.source,
        }


def _avg_tx_value_eth(tx_count: int) -> float:
    if tx_count > 1000:
        return 0.05
    if tx_count > 500:
        return 0.02
    if tx_count > 100:
        return 0.01
    if tx_count > 50:
        return 0.008
    return 0.005


def estimated_defi_share(tx_count: int) -> float:
    """Share of volume assumed to be DeFi: 20% floor, +10% per decade of activity, 60% ceiling."""
    return min(0.6, 0.2 + math.log10(tx_count + 1) * 0.1)


def estimate_transaction_analysis(
    transaction_count: int,
    now: float,
    eth_price_usd: float,
) -> TransactionAnalysis:
    """Statistical model driven solely by transaction count. Deterministic."""
    n = max(0, transaction_count)
    if n == 0:
        return TransactionAnalysis()

    total_eth = n * _avg_tx_value_eth(n)
    total_usd = total_eth * eth_price_usd
    defi_usd = total_usd * estimated_defi_share(n)
    gas_eth = n * (0.002 if n > 100 else 0.001)

    protocol_count = min(
        len(PROTOCOL_REGISTRY),
        max(1, int(math.floor(math.log10(n + 1) * 2))),
    )
    oldest_first = sorted(PROTOCOL_REGISTRY.items(), key=lambda item: item[1].deployed_at)
    selected = oldest_first[:protocol_count]

    return TransactionAnalysis(
        total_volume_eth=total_eth,
        total_volume_usd=total_usd,
        defi_volume_usd=defi_usd,
        unique_protocols=frozenset(addr for addr, _ in selected),
        protocol_categories=frozenset(p.category for _, p in selected),
        vintage_contracts=sum(1 for _, p in selected if p.is_vintage(now)),
        gas_used_eth=gas_eth,
        capital_deployed=defi_usd * (0.3 if n > 200 else 0.15),
        transaction_count=n,
        liquidity_positions=sum(1 for _, p in selected if p.category in CAPITAL_CATEGORIES),
        source="estimated",
    )


def analyze_explorer_transactions(
    address: str,
    transactions: Sequence[ExplorerTransaction],
    now: float,
    eth_price_usd: float,
) -> TransactionAnalysis:
    """Exact analysis over a real transaction list."""
    address = address.lower()
    sent = [tx for tx in transactions if tx.from_address == address and not tx.is_error]

    total_wei = sum(tx.value_wei for tx in sent)
    gas_wei = sum(tx.gas_used * tx.gas_price_wei for tx in sent)

    protocols: Dict[str, Protocol] = {}
    defi_wei = 0
    capital_wei = 0
    lending_wei = 0
    first_capital_ts: Optional[int] = None
    for tx in sent:
        protocol = PROTOCOL_REGISTRY.get(tx.to or "")
        if protocol is None:
            continue
        protocols[tx.to] = protocol
        defi_wei += tx.value_wei
        if protocol.category == "Lending":
            lending_wei += tx.value_wei
        if protocol.category in CAPITAL_CATEGORIES:
            capital_wei += tx.value_wei
            if first_capital_ts is None or tx.timestamp < first_capital_ts:
                first_capital_ts = tx.timestamp

    total_eth = total_wei / WEI_PER_ETH
    liquidity_days = 0
    if first_capital_ts is not None:
        liquidity_days = max(0, int((now - first_capital_ts) // SECONDS_PER_DAY))

    return TransactionAnalysis(
        total_volume_eth=total_eth,
        total_volume_usd=total_eth * eth_price_usd,
        defi_volume_usd=defi_wei / WEI_PER_ETH * eth_price_usd,
        unique_protocols=frozenset(protocols),
        protocol_categories=frozenset(p.category for p in protocols.values()),
        vintage_contracts=sum(1 for p in protocols.values() if p.is_vintage(now)),
        gas_used_eth=gas_wei / WEI_PER_ETH,
        capital_deployed=capital_wei / WEI_PER_ETH * eth_price_usd,
        transaction_count=len(sent),
        liquidity_duration_days=liquidity_days,
        liquidity_positions=sum(1 for p in protocols.values() if p.category in CAPITAL_CATEGORIES),
        lending_utilization=lending_wei / defi_wei if defi_wei else 0.0,
        source="explorer",
    )


async def analyze_transactions(address: str, ctx: "Collaborators") -> TransactionAnalysis:
    """
    Exact path when DATA_MODE=exact and the explorer answers,
    otherwise the estimate from cached-or-fetched transaction count.
    Runs once per scoring run; DeFi Metrics and the economic vector share it.
    """
    address = address.lower()
    return await run_memoized(("analysis", address), lambda: _analyze(address, ctx))


async def _analyze(address: str, ctx: "Collaborators") -> TransactionAnalysis:
    now = ctx.clock()
    price = ctx.settings.ETH_PRICE_USD

    if ctx.settings.exact_mode and ctx.explorer is not None and ctx.explorer.enabled:
        txs = await ctx.explorer.get_transactions(address)
        if txs is not None:
            await _record_transactions(address, txs, ctx)
            return analyze_explorer_transactions(address, txs, now, price)
        logger.info("explorer_unavailable_estimating", address=address)

    activity = await load_wallet_activity(address, ctx)
    return estimate_transaction_analysis(activity.transaction_count, now, price)


async def _record_transactions(address: str, txs: List[ExplorerTransaction], ctx: "Collaborators") -> None:
    records = [
        TransactionRecord(
            address=address,
            tx_hash=tx.tx_hash,
            timestamp=tx.timestamp,
            gas_used=str(tx.gas_used),
            gas_price=str(tx.gas_price_wei),
            value=str(tx.value_wei),
            to=tx.to,
            block_number=tx.block_number,
        )
        for tx in txs
    ]
    try:
        await ctx.store.add_transaction_records(records)
    except Exception as e:
        logger.warning("tx_records_persist_failed", address=address, count=len(records), error=str(e))


# =============================================
# DERIVED SCORES
# =============================================

def whale_resistance_score(volume_usd: float) -> float:
    """Logarithmic damping: $10 → 10, $1k → 30, $1M → 60, capped at 100."""
    return min(100.0, math.log10(max(0.0, volume_usd) + 1) * 10)


def capital_deployment_score(capital_deployed: float, liquidity_duration_days: int) -> float:
    score = min(50.0, math.log10(max(0.0, capital_deployed) + 1) * 5)
    if liquidity_duration_days >= 30:
        score += 50
    elif liquidity_duration_days >= 7:
        score += 25
    return min(100.0, score)


def capital_tier(volume_usd: float) -> str:
    if volume_usd >= 100000:
        return "high"
    if volume_usd >= 10000:
        return "mid"
    return "low"


# =============================================
# ECONOMIC VECTOR
# =============================================

@dataclass(frozen=True)
class EconomicVector:
    capital_pillar: float
    diversity_pillar: float
    identity_pillar: float
    multiplier: float
    breakdown: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capitalPillar": self.capital_pillar,
            "diversityPillar": self.diversity_pillar,
            "identityPillar": self.identity_pillar,
            "multiplier": self.multiplier,
            "breakdown": self.breakdown,
        }


def _score_of(metrics: Sequence[MetricScore], name: str) -> int:
    for m in metrics:
        if m.name == name:
            return m.score
    return 0


def compose_economic_vector(
    metrics: Sequence[MetricScore],
    base_score: int,
    analysis: Optional[TransactionAnalysis] = None,
) -> EconomicVector:
    """Pure combination. Every intermediate value lands in the breakdown."""
    builder = _score_of(metrics, "Builder")
    creator = _score_of(metrics, "Creator")
    defi = _score_of(metrics, "DeFi Metrics")
    mints = _score_of(metrics, "Zora Mints")
    social = _score_of(metrics, "Farcaster")
    early = _score_of(metrics, "Early Adopter")
    summer = _score_of(metrics, "Onchain Summer")
    hackathon = _score_of(metrics, "Hackathon")

    whale = 0.0
    deployment = 0.0
    if analysis is not None:
        whale = whale_resistance_score(analysis.total_volume_usd)
        deployment = capital_deployment_score(analysis.capital_deployed, analysis.liquidity_duration_days)
    volume = min(100.0, whale)

    capital = min(400.0, builder * 1.2 + creator * 1.2 + defi * 1.5 + volume * 0.8 + deployment * 0.5)
    diversity = min(300.0, (defi + mints) * 3.0)
    identity = min(300.0, (social + early) * 2.0)

    early_bonus = 0.1 if early > 0 else 0.0
    seasonal_bonus = 0.1 if (summer > 0 or hackathon > 0) else 0.0
    multiplier = 1.0 + early_bonus + seasonal_bonus

    breakdown = {
        "capital": {
            "builder": builder,
            "creator": creator,
            "defi": defi,
            "volume": volume,
            "whaleResistance": whale,
            "capitalDeployment": deployment,
            "total": capital,
        },
        "diversity": {
            "defi": defi,
            "zora": mints,
            "total": diversity,
        },
        "identity": {
            "farcaster": social,
            "earlyAdopter": early,
            "total": identity,
        },
        "multiplierBreakdown": {
            "base": 1.0,
            "earlyAdopterBonus": early_bonus,
            "seasonalBonus": seasonal_bonus,
            "onchainSummer": summer,
            "hackathon": hackathon,
        },
        "multiplier": multiplier,
        "totalScore": base_score,
        "analysis": analysis.to_summary() if analysis is not None else None,
    }

    return EconomicVector(
        capital_pillar=capital,
        diversity_pillar=diversity,
        identity_pillar=identity,
        multiplier=multiplier,
        breakdown=breakdown,
    )


async def calculate_economic_vector(
    metrics: Sequence[MetricScore],
    base_score: int,
    address: str,
    ctx: "Collaborators",
) -> EconomicVector:
    """Compose with a live analysis. Analysis failure composes without volume scoring."""
    try:
        analysis = await analyze_transactions(address, ctx)
    except Exception as e:
        logger.warning("transaction_analysis_failed", address=address, error=str(e))
        analysis = None
    return compose_economic_vector(metrics, base_score, analysis)
