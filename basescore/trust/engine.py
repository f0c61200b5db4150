"""
BaseScore — Reputation Engine Core Types
The vocabulary every scoring component speaks.

Reputation = f(Metrics, Economic Vector, Sybil Resistance)

    Metrics           : ten independent calculators, each bounded to [0, maxScore]
    Economic Vector   : Capital / Diversity / Identity pillars + base multiplier
    Sybil Resistance  : identity-verification multiplier in [1.0, 1.7]

    total = min(1000, floor(sum(metrics) * min(1.7, economic * sybil)))

Score Ranges:
    951-1000  LEGEND
    851-950   BASED
    651-850   BUILDER
    351-650   RESIDENT
    0-350     TOURIST
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Sequence, Tuple, Annotated

from pydantic import BaseModel, Field, ValidationError, field_validator

from basescore.config import TIER_THRESHOLDS

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
MAX_TOTAL_SCORE = 1000
MAX_COMBINED_MULTIPLIER = 1.7


# =============================================
# ERRORS
# =============================================

class InvalidAddressError(ValueError):
    """Raised before any I/O when an address is not 0x + 40 hex characters."""

    def __init__(self, address: Any, detail: str = "invalid address format"):
        self.address = address
        super().__init__(f"{detail}: {address!r}")


class PipelineError(RuntimeError):
    """Unexpected failure inside the aggregator itself."""


# =============================================
# ENUMS
# =============================================

class Tier(str, Enum):
    TOURIST  = "TOURIST"
    RESIDENT = "RESIDENT"
    BUILDER  = "BUILDER"
    BASED    = "BASED"
    LEGEND   = "LEGEND"

    @property
    def rank(self) -> int:
        """Ordinal position, TOURIST = 0 ... LEGEND = 4."""
        return list(Tier).index(self)


# =============================================
# INPUT
# =============================================

def normalize_address(address: str) -> str:
    return address.strip().lower()


class ScoreInput(BaseModel):
    """An address plus any wallets cryptographically linked to it."""

    address: str = Field(pattern=ADDRESS_PATTERN)
    linked_wallets: List[Annotated[str, Field(pattern=ADDRESS_PATTERN)]] = Field(default_factory=list)

    model_config = {"frozen": True}

    @field_validator("address", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("address", mode="after")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.lower()

    @field_validator("linked_wallets", mode="before")
    @classmethod
    def _strip_linked(cls, v):
        if isinstance(v, (list, tuple)):
            return [w.strip() if isinstance(w, str) else w for w in v]
        return v

    @field_validator("linked_wallets", mode="after")
    @classmethod
    def _normalize_linked(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for wallet in v:
            w = normalize_address(wallet)
            if w not in seen:
                seen.append(w)
        return seen

    @classmethod
    def from_raw(cls, address: Any, linked_wallets: Sequence[str] = ()) -> "ScoreInput":
        """Validate and normalize, raising InvalidAddressError instead of a pydantic error."""
        try:
            parsed = cls(address=address, linked_wallets=list(linked_wallets))
        except ValidationError as e:
            error = e.errors()[0]
            raise InvalidAddressError(error.get("input", address), error.get("msg", "invalid address")) from e
        # The primary wallet is never counted as its own linked wallet.
        if parsed.address in parsed.linked_wallets:
            parsed = cls(
                address=parsed.address,
                linked_wallets=[w for w in parsed.linked_wallets if w != parsed.address],
            )
        return parsed

    @property
    def all_wallets(self) -> List[str]:
        return [self.address] + list(self.linked_wallets)


# =============================================
# OUTPUT
# =============================================

@dataclass(frozen=True)
class MetricScore:
    name: str
    score: int
    weight: int
    max_score: int

    def __post_init__(self):
        if not 0 <= self.score <= self.max_score:
            raise ValueError(f"{self.name} score {self.score} outside [0, {self.max_score}]")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "score": self.score,
            "weight": self.weight,
            "maxScore": self.max_score,
        }


@dataclass(frozen=True)
class ReputationData:
    """
    The externally visible artifact. A recalculation produces a new value,
    it never mutates an existing one.
    """
    total_score: int
    tier: Tier
    metrics: Tuple[MetricScore, ...]
    last_calculated: datetime
    breakdown: Dict[str, Any] = field(default_factory=dict, compare=False)

    def metric(self, name: str) -> Optional[MetricScore]:
        for m in self.metrics:
            if m.name == name:
                return m
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalScore": self.total_score,
            "tier": self.tier.value,
            "metrics": [m.to_dict() for m in self.metrics],
            "lastCalculated": self.last_calculated.isoformat(),
        }

    def to_full(self) -> Dict[str, Any]:
        d = self.to_dict()
        d["breakdown"] = self.breakdown
        return d


# =============================================
# SCORING RULES
# =============================================

def determine_tier(total_score: int) -> Tier:
    for name, (low, high) in TIER_THRESHOLDS.items():
        if low <= total_score <= high:
            return Tier(name)
    if total_score > MAX_TOTAL_SCORE:
        return Tier.LEGEND
    return Tier.TOURIST


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def combine_scores(
    base_score: int,
    economic_multiplier: float,
    sybil_multiplier: float,
) -> Tuple[int, float]:
    """
    Combine the raw metric sum with both multipliers.
    Returns (total_score, combined_multiplier).
    """
    combined = min(MAX_COMBINED_MULTIPLIER, economic_multiplier * sybil_multiplier)
    # Float noise such as 1.1 * 1.2 = 1.3200000000000003 must not cost a point.
    total = math.floor(round(base_score * combined, 9))
    return min(MAX_TOTAL_SCORE, max(0, total)), combined


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
