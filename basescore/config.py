"""
BaseScore — Configuration
Unified config for the reputation engine, its data sources and its stores.

All settings load from environment variables with safe defaults for development.
Anything left unset degrades the dependent metric to zero instead of failing.
"""
import logging
import os
from functools import lru_cache
from typing import Dict, Any

import structlog
from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self, **overrides: Any):
        # === Chain ===
        self.BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
        self.BASESCAN_API_URL = os.getenv("BASESCAN_API_URL", "https://api.basescan.org/api")
        self.BASESCAN_API_KEY = os.getenv("BASESCAN_API_KEY", "")
        self.BASE_LAUNCH_TIMESTAMP = int(os.getenv("BASE_LAUNCH_TIMESTAMP", "1691539200"))  # 2023-08-09

        # === Social / identity APIs ===
        self.NEYNAR_API_URL = os.getenv("NEYNAR_API_URL", "https://api.neynar.com/v2/farcaster")
        self.NEYNAR_API_KEY = os.getenv("NEYNAR_API_KEY", "")
        self.ZORA_API_URL = os.getenv("ZORA_API_URL", "https://api.zora.co/graphql")
        self.ZORA_API_KEY = os.getenv("ZORA_API_KEY", "")
        self.GITCOIN_PASSPORT_API_URL = os.getenv(
            "GITCOIN_PASSPORT_API_URL", "https://api.scorer.gitcoin.co/registry/score"
        )
        self.GITCOIN_PASSPORT_API_KEY = os.getenv("GITCOIN_PASSPORT_API_KEY", "")
        self.EAS_GRAPHQL_URL = os.getenv("EAS_GRAPHQL_URL", "https://base.easscan.org/graphql")

        # === Attestation schemas ===
        self.ONCHAIN_SUMMER_SCHEMA_UID = os.getenv("ONCHAIN_SUMMER_SCHEMA_UID", "")
        self.HACKATHON_SCHEMA_UID = os.getenv("HACKATHON_SCHEMA_UID", "")
        self.COINBASE_ATTESTATION_SCHEMA_UID = os.getenv("COINBASE_ATTESTATION_SCHEMA_UID", "")

        # === Persistence ===
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "basescore_dev_password")

        # === Verification cache ===
        self.VERIFICATION_CACHE_BACKEND = os.getenv("VERIFICATION_CACHE_BACKEND", "memory")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.VERIFICATION_CACHE_TTL = int(os.getenv("VERIFICATION_CACHE_TTL", "86400"))  # 24 hours
        self.VERIFICATION_CACHE_MAX_ENTRIES = int(os.getenv("VERIFICATION_CACHE_MAX_ENTRIES", "10000"))

        # === Timing ===
        self.HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
        self.METRIC_TIMEOUT_SECONDS = float(os.getenv("METRIC_TIMEOUT_SECONDS", "30"))
        self.REPUTATION_MAX_AGE_SECONDS = int(os.getenv("REPUTATION_MAX_AGE_SECONDS", "300"))   # 5 min
        self.ECONOMIC_MAX_AGE_SECONDS = int(os.getenv("ECONOMIC_MAX_AGE_SECONDS", "900"))       # 15 min
        self.TX_CACHE_TTL_SECONDS = int(os.getenv("TX_CACHE_TTL_SECONDS", "3600"))               # 1 hour

        # === Estimation ===
        self.DATA_MODE = os.getenv("DATA_MODE", "estimated")  # estimated | exact
        self.ETH_PRICE_USD = float(os.getenv("ETH_PRICE_USD", "2500"))

        # === Logging ===
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def exact_mode(self) -> bool:
        return self.DATA_MODE == "exact"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# === Tiers ===
# Inclusive ranges, non-overlapping, covering 0-1000.
TIER_THRESHOLDS = {
    "TOURIST": (0, 350),
    "RESIDENT": (351, 650),
    "BUILDER": (651, 850),
    "BASED": (851, 950),
    "LEGEND": (951, 1000),
}


# === Metric weights ===
# maxScore is weight * 10 for every metric except DeFi Metrics.
METRIC_WEIGHTS: Dict[str, Dict[str, int]] = {
    "Base Tenure": {"weight": 15, "max_score": 150},
    "Zora Mints": {"weight": 12, "max_score": 120},
    "Timeliness": {"weight": 8, "max_score": 80},
    "Farcaster": {"weight": 15, "max_score": 150},
    "Builder": {"weight": 20, "max_score": 200},
    "Creator": {"weight": 10, "max_score": 100},
    "Onchain Summer": {"weight": 8, "max_score": 80},
    "Hackathon": {"weight": 7, "max_score": 70},
    "Early Adopter": {"weight": 5, "max_score": 50},
    "DeFi Metrics": {"weight": 10, "max_score": 100},
}


def get_metric_config(name: str) -> Dict[str, int]:
    return METRIC_WEIGHTS[name]


# === Logging ===

def configure_logging(level: str = None, json_logs: bool = None) -> None:
    """Install the structlog processor chain used by every module."""
    settings = get_settings()
    level = level or settings.LOG_LEVEL
    json_logs = settings.LOG_JSON if json_logs is None else json_logs

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )
