"""
Pytest fixtures for BaseScore tests. Fake chain/explorer/social/identity
collaborators, an in-memory store and a fixed clock, so no test touches the network.
"""
from typing import Dict, List, Optional

import pytest

from basescore.chain.explorer import ExplorerTransaction
from basescore.compute.cache import InMemoryTTLCache
from basescore.compute.collectors import Attestation, CreatorCollections, FarcasterGraph, FarcasterUser
from basescore.compute.persistence import InMemoryReputationStore
from basescore.compute.pipeline import Collaborators
from basescore.config import Settings

NOW = 1_760_000_000          # 2025-10-09T08:53:20Z
DAY = 86400

ADDRESS = "0x" + "a1" * 20
OTHER = "0x" + "b2" * 20
THIRD = "0x" + "c3" * 20

SUMMER_SCHEMA = "0x" + "51" * 32
HACKATHON_SCHEMA = "0x" + "4a" * 32
COINBASE_SCHEMA = "0x" + "cb" * 32


class FixedClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChain:
    def __init__(self, first_tx: Dict[str, int] = None, counts: Dict[str, int] = None, fail: bool = False):
        self.first_tx = {k.lower(): v for k, v in (first_tx or {}).items()}
        self.counts = {k.lower(): v for k, v in (counts or {}).items()}
        self.fail = fail
        self.calls: List[str] = []

    async def get_first_transaction_timestamp(self, address: str) -> Optional[int]:
        self.calls.append(f"first:{address}")
        if self.fail:
            return None
        return self.first_tx.get(address.lower())

    async def get_transaction_count(self, address: str) -> int:
        self.calls.append(f"count:{address}")
        if self.fail:
            return 0
        return self.counts.get(address.lower(), 0)


class FakeExplorer:
    def __init__(self, enabled: bool = False, deployments: Optional[int] = None,
                 transactions: Optional[List[ExplorerTransaction]] = None):
        self.enabled = enabled
        self.deployments = deployments
        self.transactions = transactions

    async def count_contract_deployments(self, address: str) -> Optional[int]:
        return self.deployments

    async def get_transactions(self, address: str, sort: str = "asc", limit: int = 10000):
        return self.transactions


class FakeZora:
    def __init__(self, mints: int = 0, collections: int = 0, volume_eth: float = 0.0,
                 enabled: bool = True, fail: bool = False):
        self.enabled = enabled
        self.mints = mints
        self.collections = collections
        self.volume_eth = volume_eth
        self.fail = fail

    async def count_mints(self, address: str) -> int:
        if self.fail:
            raise RuntimeError("zora down")
        return self.mints

    async def get_creator_collections(self, address: str) -> CreatorCollections:
        if self.fail:
            raise RuntimeError("zora down")
        return CreatorCollections(count=self.collections, total_volume_eth=self.volume_eth)


class FakeEAS:
    def __init__(self, attestations: Dict[str, List[Attestation]] = None, fail: bool = False):
        self.attestations = attestations or {}
        self.fail = fail
        self.calls = 0

    async def get_attestations(self, recipient: str, schema_id: str) -> List[Attestation]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("eas down")
        return list(self.attestations.get(schema_id, []))


class FakeNeynar:
    def __init__(self, user: Optional[FarcasterUser] = None, graph: Optional[FarcasterGraph] = None,
                 fail: bool = False):
        self.user = user
        self.graph = graph
        self.fail = fail

    async def get_user_by_address(self, address: str) -> Optional[FarcasterUser]:
        if self.fail:
            raise RuntimeError("neynar down")
        return self.user

    async def get_social_graph(self, fid: int) -> Optional[FarcasterGraph]:
        if self.fail:
            raise RuntimeError("neynar down")
        return self.graph


class FakePassport:
    def __init__(self, score: Optional[float] = None, fail: bool = False):
        self.score = score
        self.fail = fail
        self.calls = 0

    async def get_score(self, address: str) -> Optional[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("passport down")
        return self.score


def hex_text(text: str) -> str:
    return "0x" + text.encode().hex()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings(
        ONCHAIN_SUMMER_SCHEMA_UID=SUMMER_SCHEMA,
        HACKATHON_SCHEMA_UID=HACKATHON_SCHEMA,
        COINBASE_ATTESTATION_SCHEMA_UID=COINBASE_SCHEMA,
        DATA_MODE="estimated",
        METRIC_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def make_ctx(settings, clock):
    """Factory: make_ctx(chain=FakeChain(...), ...) with empty defaults for everything else."""
    def _make(**overrides) -> Collaborators:
        fields = dict(
            settings=settings,
            store=InMemoryReputationStore(),
            chain=FakeChain(),
            explorer=FakeExplorer(),
            zora=FakeZora(),
            eas=FakeEAS(),
            neynar=FakeNeynar(),
            passport=FakePassport(),
            verification_cache=InMemoryTTLCache(default_ttl=3600, clock=clock),
            clock=clock,
        )
        fields.update(overrides)
        return Collaborators(**fields)
    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()
