"""
BaseScore — Sybil Resistance Evaluator

Additive bonuses on a 1.0 floor, capped at 1.7:

    +0.20  Coinbase verification attestation (EAS)
    +0.10  per linked wallet beyond the primary, max +0.30
    +0.10  wallet age >= 12 months
    +0.05  signature proving control of a linked wallet
    +0.10  Gitcoin Passport score > 20
    +0.05  linked Farcaster identity

Every sub-check fails open to its default. A run where every lookup fails
yields exactly 1.0.

detect_sybil_patterns() is a separate advisory heuristic. It does not feed
the multiplier.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence, TYPE_CHECKING

import structlog

from basescore.trust.activity import load_wallet_activity, SECONDS_PER_DAY
from basescore.trust.engine import MAX_COMBINED_MULTIPLIER

if TYPE_CHECKING:
    from basescore.compute.pipeline import Collaborators

logger = structlog.get_logger()

COINBASE_BONUS = 0.2
WALLET_BONUS_PER_WALLET = 0.1
MAX_WALLET_BONUS = 0.3
WALLET_AGE_BONUS = 0.1
WALLET_AGE_MONTHS_REQUIRED = 12
SIGNATURE_BONUS = 0.05
PASSPORT_BONUS = 0.1
PASSPORT_THRESHOLD = 20
FARCASTER_BONUS = 0.05

SYBIL_RISK_THRESHOLD = 0.5


@dataclass(frozen=True)
class SybilFactors:
    coinbase_verified: bool = False
    linked_wallet_count: int = 1
    wallet_age_months: float = 0.0
    has_signature: bool = False
    passport_score: Optional[float] = None
    farcaster_linked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coinbaseVerified": self.coinbase_verified,
            "linkedWalletCount": self.linked_wallet_count,
            "walletAgeMonths": self.wallet_age_months,
            "hasSignature": self.has_signature,
            "passportScore": self.passport_score,
            "farcasterLinked": self.farcaster_linked,
        }


@dataclass(frozen=True)
class SybilResistanceResult:
    multiplier: float
    factors: SybilFactors
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "multiplier": self.multiplier,
            "factors": self.factors.to_dict(),
            "breakdown": dict(self.breakdown),
        }


def compute_sybil_multiplier(factors: SybilFactors) -> SybilResistanceResult:
    """Pure bonus arithmetic over already-gathered factors."""
    breakdown = {
        "coinbaseBonus": COINBASE_BONUS if factors.coinbase_verified else 0.0,
        "walletCountBonus": min(
            MAX_WALLET_BONUS,
            max(0, factors.linked_wallet_count - 1) * WALLET_BONUS_PER_WALLET,
        ),
        "walletAgeBonus": WALLET_AGE_BONUS if factors.wallet_age_months >= WALLET_AGE_MONTHS_REQUIRED else 0.0,
        "signatureBonus": SIGNATURE_BONUS if factors.has_signature else 0.0,
        "passportBonus": (
            PASSPORT_BONUS
            if factors.passport_score is not None and factors.passport_score > PASSPORT_THRESHOLD
            else 0.0
        ),
        "farcasterBonus": FARCASTER_BONUS if factors.farcaster_linked else 0.0,
    }
    # 1.0 + 0.2 + 0.3 + ... accumulates float noise; 9 places keeps 1.7 exact.
    multiplier = round(1.0 + sum(breakdown.values()), 9)
    multiplier = min(MAX_COMBINED_MULTIPLIER, max(1.0, multiplier))
    return SybilResistanceResult(multiplier=multiplier, factors=factors, breakdown=breakdown)


# =============================================
# IDENTITY VERIFICATION
# =============================================

async def check_coinbase_verification(address: str, ctx: "Collaborators") -> Dict[str, Any]:
    """
    Coinbase verification via EAS attestation, memoized in the verification
    cache. Lookup failures are reported as unverified and are not cached.
    """
    address = address.lower()
    cached = ctx.verification_cache.get(address)
    if cached is not None:
        return cached

    schema = ctx.settings.COINBASE_ATTESTATION_SCHEMA_UID
    if not schema:
        return {"isVerified": False, "method": None, "attestationId": None}

    try:
        attestations = await ctx.eas.get_attestations(address, schema)
    except Exception as e:
        logger.warning("coinbase_verification_failed", address=address, error=str(e))
        return {"isVerified": False, "method": None, "attestationId": None}

    if attestations:
        result = {"isVerified": True, "method": "coinbase_attestation", "attestationId": attestations[0].id}
    else:
        result = {"isVerified": False, "method": None, "attestationId": None}

    ctx.verification_cache.set(address, result)
    return result


async def get_cached_passport_score(address: str, ctx: "Collaborators") -> Optional[float]:
    """
    Gitcoin Passport score, memoized in the verification cache next to the
    Coinbase result. A missing passport is cached as None; errors propagate
    uncached.
    """
    key = f"passport:{address.lower()}"
    cached = ctx.verification_cache.get(key)
    if cached is not None:
        return cached.get("score")

    score = await ctx.passport.get_score(address)
    ctx.verification_cache.set(key, {"score": score})
    return score


# =============================================
# SUB-CHECKS
# =============================================
# Each returns its default on any failure.

async def _coinbase_verified(address: str, ctx: "Collaborators") -> bool:
    try:
        result = await check_coinbase_verification(address, ctx)
    except Exception as e:
        logger.warning("sybil_check_failed", check="coinbase", address=address, error=str(e))
        return False
    return bool(result.get("isVerified"))


async def _wallet_links(
    address: str,
    ctx: "Collaborators",
    user_id: Optional[str],
    linked_wallets: Sequence[str],
):
    """(wallet count including the primary, any wallet carries a signature)."""
    extra = {w.lower() for w in linked_wallets if w.lower() != address}
    has_signature = False
    if user_id:
        try:
            wallets = await ctx.store.get_wallets(user_id)
        except Exception as e:
            logger.warning("sybil_check_failed", check="wallets", address=address, error=str(e))
            wallets = []
        for wallet in wallets:
            if wallet.address != address:
                extra.add(wallet.address)
            if wallet.signature:
                has_signature = True
    return 1 + len(extra), has_signature


async def _wallet_age_months(address: str, ctx: "Collaborators") -> float:
    try:
        activity = await load_wallet_activity(address, ctx)
    except Exception as e:
        logger.warning("sybil_check_failed", check="wallet_age", address=address, error=str(e))
        return 0.0
    return activity.age_days(ctx.clock()) / 30


async def _passport_score(address: str, ctx: "Collaborators") -> Optional[float]:
    try:
        return await get_cached_passport_score(address, ctx)
    except Exception as e:
        logger.warning("sybil_check_failed", check="passport", address=address, error=str(e))
        return None


async def _farcaster_linked(address: str, ctx: "Collaborators") -> bool:
    try:
        user = await ctx.neynar.get_user_by_address(address)
    except Exception as e:
        logger.warning("sybil_check_failed", check="farcaster", address=address, error=str(e))
        return False
    return user is not None and bool(user.fid)


async def evaluate_sybil_resistance(
    address: str,
    ctx: "Collaborators",
    user_id: Optional[str] = None,
    linked_wallets: Sequence[str] = (),
) -> SybilResistanceResult:
    address = address.lower()
    coinbase, links, age_months, passport, farcaster = await asyncio.gather(
        _coinbase_verified(address, ctx),
        _wallet_links(address, ctx, user_id, linked_wallets),
        _wallet_age_months(address, ctx),
        _passport_score(address, ctx),
        _farcaster_linked(address, ctx),
    )
    wallet_count, has_signature = links

    result = compute_sybil_multiplier(SybilFactors(
        coinbase_verified=coinbase,
        linked_wallet_count=wallet_count,
        wallet_age_months=age_months,
        has_signature=has_signature,
        passport_score=passport,
        farcaster_linked=farcaster,
    ))
    logger.debug("sybil_evaluated", address=address, multiplier=result.multiplier)
    return result


# =============================================
# HEURISTIC PATTERN DETECTION
# =============================================

@dataclass(frozen=True)
class SybilPatternReport:
    is_potential_sybil: bool
    risk_score: float
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isPotentialSybil": self.is_potential_sybil,
            "riskScore": self.risk_score,
            "reasons": list(self.reasons),
        }


async def detect_sybil_patterns(address: str, ctx: "Collaborators") -> SybilPatternReport:
    """Advisory risk score in [0, 1]. Never gates scoring."""
    address = address.lower()
    now = ctx.clock()
    risk = 0.0
    reasons: List[str] = []

    try:
        cached = await ctx.store.get_transaction_cache(address)
    except Exception as e:
        logger.warning("sybil_pattern_lookup_failed", check="tx_cache", address=address, error=str(e))
        cached = None

    if cached is not None:
        age_days = (now - cached.first_tx_timestamp) / SECONDS_PER_DAY
        if age_days < 7 and cached.transaction_count > 50:
            risk += 0.3
            reasons.append("Very new wallet with high activity")
        if age_days < 30:
            risk += 0.1
            reasons.append("Wallet less than 30 days old")
    else:
        risk += 0.2
        reasons.append("No transaction history")

    verification = await _coinbase_verified(address, ctx)
    if not verification:
        risk += 0.2
        reasons.append("No Coinbase verification")

    try:
        user = await ctx.store.get_user_by_wallet(address)
        if user is None:
            user = await ctx.store.get_user_by_address(address)
    except Exception as e:
        logger.warning("sybil_pattern_lookup_failed", check="user", address=address, error=str(e))
        user = None
    if user is None:
        risk += 0.1
        reasons.append("Wallet not linked to an account")

    risk = min(1.0, round(risk, 9))
    return SybilPatternReport(
        is_potential_sybil=risk >= SYBIL_RISK_THRESHOLD,
        risk_score=risk,
        reasons=reasons,
    )
