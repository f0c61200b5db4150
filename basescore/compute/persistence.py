"""
BaseScore — Reputation Persistence Layer

Everything the engine remembers between requests lives behind ReputationStore:

    User               primary address, owns wallets and one reputation
    Wallet             linked address + optional signature proving control
    Reputation         latest ReputationData per user          (upsert)
    TransactionCache   first-tx timestamp + tx count, 1h TTL   (upsert)
    TransactionRecord  scanned transactions                     (append)
    DefiMetrics        summarized TransactionAnalysis           (upsert)
    EconomicVector     pillars, multiplier, audit breakdown     (upsert)

Every record is keyed by normalized (lowercase) address or user id.

Two backends:
    InMemoryReputationStore  — process-local, used by tests and the CLI default
    Neo4jReputationStore     — MERGE-based upserts against the graph

Callers treat every store error as a persistence warning, never a scoring failure.

Dependencies: neo4j >= 5.17.0 (Neo4j backend only)
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import structlog

from basescore.db.neo4j import get_session, init_schema, close as close_driver
from basescore.trust.engine import ReputationData, MetricScore, Tier, normalize_address

logger = structlog.get_logger()


# =============================================
# RECORDS
# =============================================

@dataclass(frozen=True)
class UserRecord:
    id: str
    primary_address: str
    created_at: float


@dataclass(frozen=True)
class WalletRecord:
    user_id: str
    address: str
    signature: Optional[str] = None
    linked_at: float = 0.0


@dataclass(frozen=True)
class ReputationRecord:
    user_id: str
    total_score: int
    tier: str
    metrics: List[Dict[str, Any]]
    last_calculated: datetime

    @classmethod
    def from_reputation(cls, user_id: str, data: ReputationData) -> "ReputationRecord":
        return cls(
            user_id=user_id,
            total_score=data.total_score,
            tier=data.tier.value,
            metrics=[m.to_dict() for m in data.metrics],
            last_calculated=data.last_calculated,
        )

    def to_reputation(self) -> ReputationData:
        return ReputationData(
            total_score=self.total_score,
            tier=Tier(self.tier),
            metrics=tuple(
                MetricScore(
                    name=m["name"],
                    score=m["score"],
                    weight=m["weight"],
                    max_score=m["maxScore"],
                )
                for m in self.metrics
            ),
            last_calculated=self.last_calculated,
        )


@dataclass(frozen=True)
class TransactionCacheRecord:
    address: str
    first_tx_timestamp: int
    transaction_count: int
    expires_at: float
    last_block_number: Optional[int] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class TransactionRecord:
    address: str
    tx_hash: str
    timestamp: int
    gas_used: str
    gas_price: str
    value: str
    to: Optional[str] = None
    block_number: Optional[int] = None


@dataclass(frozen=True)
class DefiMetricsRecord:
    address: str
    unique_protocols: int
    vintage_contracts: int
    protocol_categories: List[str]
    total_interactions: int
    gas_used_eth: float
    volume_usd: float
    capital_tier: str
    liquidity_duration_days: int = 0
    liquidity_positions: int = 0
    lending_utilization: float = 0.0
    last_updated: float = 0.0


@dataclass(frozen=True)
class EconomicVectorRecord:
    address: str
    capital_pillar: float
    diversity_pillar: float
    identity_pillar: float
    total_score: int
    multiplier: float
    breakdown: Dict[str, Any] = field(default_factory=dict)
    calculated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "capitalPillar": self.capital_pillar,
            "diversityPillar": self.diversity_pillar,
            "identityPillar": self.identity_pillar,
            "totalScore": self.total_score,
            "multiplier": self.multiplier,
            "breakdown": self.breakdown,
            "calculatedAt": datetime.fromtimestamp(self.calculated_at, tz=timezone.utc).isoformat(),
        }


# =============================================
# STORE INTERFACE
# =============================================

class ReputationStore:
    """Async persistence collaborator. Upserts are create-or-update."""

    async def get_user_by_address(self, address: str) -> Optional[UserRecord]:
        raise NotImplementedError

    async def create_user(self, address: str, now: float) -> UserRecord:
        raise NotImplementedError

    async def get_user_by_wallet(self, address: str) -> Optional[UserRecord]:
        raise NotImplementedError

    async def get_wallets(self, user_id: str) -> List[WalletRecord]:
        raise NotImplementedError

    async def link_wallet(self, user_id: str, address: str, signature: Optional[str], now: float) -> WalletRecord:
        raise NotImplementedError

    async def get_reputation(self, user_id: str) -> Optional[ReputationRecord]:
        raise NotImplementedError

    async def upsert_reputation(self, user_id: str, data: ReputationData) -> ReputationRecord:
        raise NotImplementedError

    async def get_transaction_cache(self, address: str) -> Optional[TransactionCacheRecord]:
        raise NotImplementedError

    async def set_transaction_cache(self, record: TransactionCacheRecord) -> TransactionCacheRecord:
        raise NotImplementedError

    async def add_transaction_records(self, records: List[TransactionRecord]) -> int:
        raise NotImplementedError

    async def get_defi_metrics(self, address: str) -> Optional[DefiMetricsRecord]:
        raise NotImplementedError

    async def upsert_defi_metrics(self, record: DefiMetricsRecord) -> DefiMetricsRecord:
        raise NotImplementedError

    async def get_economic_vector(self, address: str) -> Optional[EconomicVectorRecord]:
        raise NotImplementedError

    async def upsert_economic_vector(self, record: EconomicVectorRecord) -> EconomicVectorRecord:
        raise NotImplementedError

    async def close(self) -> None:
        return None


# =============================================
# IN-MEMORY BACKEND
# =============================================

class InMemoryReputationStore(ReputationStore):
    """
    Dict-backed store. Each write replaces a whole frozen record under one
    lock, so concurrent requests never observe a torn record.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self.users: Dict[str, UserRecord] = {}
        self.wallets: Dict[str, WalletRecord] = {}
        self.reputations: Dict[str, ReputationRecord] = {}
        self.tx_cache: Dict[str, TransactionCacheRecord] = {}
        self.tx_records: Dict[str, TransactionRecord] = {}
        self.defi_metrics: Dict[str, DefiMetricsRecord] = {}
        self.economic_vectors: Dict[str, EconomicVectorRecord] = {}

    async def get_user_by_address(self, address: str) -> Optional[UserRecord]:
        address = normalize_address(address)
        for user in self.users.values():
            if user.primary_address == address:
                return user
        return None

    async def create_user(self, address: str, now: float) -> UserRecord:
        address = normalize_address(address)
        async with self._lock:
            for user in self.users.values():
                if user.primary_address == address:
                    return user
            user = UserRecord(id=f"user_{uuid.uuid4().hex[:16]}", primary_address=address, created_at=now)
            self.users[user.id] = user
            return user

    async def get_user_by_wallet(self, address: str) -> Optional[UserRecord]:
        wallet = self.wallets.get(normalize_address(address))
        if wallet is None:
            return None
        return self.users.get(wallet.user_id)

    async def get_wallets(self, user_id: str) -> List[WalletRecord]:
        return [w for w in self.wallets.values() if w.user_id == user_id]

    async def link_wallet(self, user_id: str, address: str, signature: Optional[str], now: float) -> WalletRecord:
        wallet = WalletRecord(
            user_id=user_id,
            address=normalize_address(address),
            signature=signature,
            linked_at=now,
        )
        async with self._lock:
            self.wallets[wallet.address] = wallet
        return wallet

    async def get_reputation(self, user_id: str) -> Optional[ReputationRecord]:
        return self.reputations.get(user_id)

    async def upsert_reputation(self, user_id: str, data: ReputationData) -> ReputationRecord:
        record = ReputationRecord.from_reputation(user_id, data)
        async with self._lock:
            self.reputations[user_id] = record
        return record

    async def get_transaction_cache(self, address: str) -> Optional[TransactionCacheRecord]:
        return self.tx_cache.get(normalize_address(address))

    async def set_transaction_cache(self, record: TransactionCacheRecord) -> TransactionCacheRecord:
        record = replace(record, address=normalize_address(record.address))
        async with self._lock:
            self.tx_cache[record.address] = record
        return record

    async def add_transaction_records(self, records: List[TransactionRecord]) -> int:
        added = 0
        async with self._lock:
            for record in records:
                if record.tx_hash not in self.tx_records:
                    self.tx_records[record.tx_hash] = record
                    added += 1
        return added

    async def get_defi_metrics(self, address: str) -> Optional[DefiMetricsRecord]:
        return self.defi_metrics.get(normalize_address(address))

    async def upsert_defi_metrics(self, record: DefiMetricsRecord) -> DefiMetricsRecord:
        record = replace(record, address=normalize_address(record.address))
        async with self._lock:
            self.defi_metrics[record.address] = record
        return record

    async def get_economic_vector(self, address: str) -> Optional[EconomicVectorRecord]:
        return self.economic_vectors.get(normalize_address(address))

    async def upsert_economic_vector(self, record: EconomicVectorRecord) -> EconomicVectorRecord:
        record = replace(record, address=normalize_address(record.address))
        async with self._lock:
            self.economic_vectors[record.address] = record
        return record


# =============================================
# NEO4J BACKEND
# =============================================

class Neo4jReputationStore(ReputationStore):
    """
    Graph-backed store.

    Schema:
        (:User {id, primary_address, created_at})
        (:Wallet {address, signature, linked_at})
        (:User)-[:OWNS]->(:Wallet)
        (:User)-[:HAS_REPUTATION]->(:Reputation {user_id, total_score, tier, metrics, last_calculated})
        (:TransactionCache {address, first_tx_timestamp, transaction_count, expires_at, last_block_number})
        (:Transaction {tx_hash, address, timestamp, gas_used, gas_price, to, value, block_number})
        (:DefiMetrics {address, ...})
        (:EconomicVector {address, ..., breakdown})

    Structured fields (metrics, categories, breakdown) are stored as JSON strings.
    """

    async def _read_one(self, query: str, **params) -> Optional[Dict[str, Any]]:
        async with get_session() as session:
            result = await session.run(query, **params)
            record = await result.single()
            return dict(record["n"]) if record else None

    async def _write(self, query: str, **params) -> None:
        async with get_session() as session:
            result = await session.run(query, **params)
            await result.consume()

    async def get_user_by_address(self, address: str) -> Optional[UserRecord]:
        data = await self._read_one(
            "MATCH (n:User {primary_address: $address}) RETURN n {.*} AS n",
            address=normalize_address(address),
        )
        return UserRecord(**data) if data else None

    async def create_user(self, address: str, now: float) -> UserRecord:
        address = normalize_address(address)
        await self._write("""
            MERGE (u:User {primary_address: $address})
            ON CREATE SET u.id = $user_id, u.created_at = $now
        """, address=address, user_id=f"user_{uuid.uuid4().hex[:16]}", now=now)
        user = await self.get_user_by_address(address)
        logger.info("user_created", address=address, user_id=user.id)
        return user

    async def get_user_by_wallet(self, address: str) -> Optional[UserRecord]:
        data = await self._read_one(
            "MATCH (n:User)-[:OWNS]->(:Wallet {address: $address}) RETURN n {.*} AS n",
            address=normalize_address(address),
        )
        return UserRecord(**data) if data else None

    async def get_wallets(self, user_id: str) -> List[WalletRecord]:
        async with get_session() as session:
            result = await session.run("""
                MATCH (:User {id: $user_id})-[:OWNS]->(w:Wallet)
                RETURN w {.*} AS w
            """, user_id=user_id)
            rows = [dict(r["w"]) async for r in result]
        return [
            WalletRecord(
                user_id=user_id,
                address=row["address"],
                signature=row.get("signature"),
                linked_at=row.get("linked_at", 0.0),
            )
            for row in rows
        ]

    async def link_wallet(self, user_id: str, address: str, signature: Optional[str], now: float) -> WalletRecord:
        address = normalize_address(address)
        await self._write("""
            MATCH (u:User {id: $user_id})
            MERGE (w:Wallet {address: $address})
            SET w.signature = $signature, w.linked_at = $now
            WITH u, w
            OPTIONAL MATCH (:User)-[old:OWNS]->(w)
            DELETE old
            CREATE (u)-[:OWNS]->(w)
        """, user_id=user_id, address=address, signature=signature, now=now)
        return WalletRecord(user_id=user_id, address=address, signature=signature, linked_at=now)

    async def get_reputation(self, user_id: str) -> Optional[ReputationRecord]:
        data = await self._read_one(
            "MATCH (n:Reputation {user_id: $user_id}) RETURN n {.*} AS n",
            user_id=user_id,
        )
        if not data:
            return None
        return ReputationRecord(
            user_id=data["user_id"],
            total_score=data["total_score"],
            tier=data["tier"],
            metrics=json.loads(data["metrics"]),
            last_calculated=datetime.fromisoformat(data["last_calculated"]),
        )

    async def upsert_reputation(self, user_id: str, data: ReputationData) -> ReputationRecord:
        record = ReputationRecord.from_reputation(user_id, data)
        await self._write("""
            MATCH (u:User {id: $user_id})
            MERGE (r:Reputation {user_id: $user_id})
            SET r.total_score = $total_score,
                r.tier = $tier,
                r.metrics = $metrics,
                r.last_calculated = $last_calculated
            MERGE (u)-[:HAS_REPUTATION]->(r)
        """,
            user_id=user_id,
            total_score=record.total_score,
            tier=record.tier,
            metrics=json.dumps(record.metrics),
            last_calculated=record.last_calculated.isoformat(),
        )
        return record

    async def get_transaction_cache(self, address: str) -> Optional[TransactionCacheRecord]:
        data = await self._read_one(
            "MATCH (n:TransactionCache {address: $address}) RETURN n {.*} AS n",
            address=normalize_address(address),
        )
        return TransactionCacheRecord(**data) if data else None

    async def set_transaction_cache(self, record: TransactionCacheRecord) -> TransactionCacheRecord:
        record = replace(record, address=normalize_address(record.address))
        await self._write("""
            MERGE (c:TransactionCache {address: $address})
            SET c.first_tx_timestamp = $first_tx_timestamp,
                c.transaction_count = $transaction_count,
                c.expires_at = $expires_at,
                c.last_block_number = $last_block_number
        """, **asdict(record))
        return record

    async def add_transaction_records(self, records: List[TransactionRecord]) -> int:
        if not records:
            return 0
        await self._write("""
            UNWIND $rows AS row
            MERGE (t:Transaction {tx_hash: row.tx_hash})
            ON CREATE SET t += row
        """, rows=[asdict(r) for r in records])
        return len(records)

    async def get_defi_metrics(self, address: str) -> Optional[DefiMetricsRecord]:
        data = await self._read_one(
            "MATCH (n:DefiMetrics {address: $address}) RETURN n {.*} AS n",
            address=normalize_address(address),
        )
        if not data:
            return None
        data["protocol_categories"] = json.loads(data["protocol_categories"])
        return DefiMetricsRecord(**data)

    async def upsert_defi_metrics(self, record: DefiMetricsRecord) -> DefiMetricsRecord:
        record = replace(record, address=normalize_address(record.address))
        props = asdict(record)
        props["protocol_categories"] = json.dumps(record.protocol_categories)
        await self._write("""
            MERGE (d:DefiMetrics {address: $address})
            SET d += $props
        """, address=record.address, props=props)
        return record

    async def get_economic_vector(self, address: str) -> Optional[EconomicVectorRecord]:
        data = await self._read_one(
            "MATCH (n:EconomicVector {address: $address}) RETURN n {.*} AS n",
            address=normalize_address(address),
        )
        if not data:
            return None
        data["breakdown"] = json.loads(data["breakdown"])
        return EconomicVectorRecord(**data)

    async def upsert_economic_vector(self, record: EconomicVectorRecord) -> EconomicVectorRecord:
        record = replace(record, address=normalize_address(record.address))
        props = asdict(record)
        props["breakdown"] = json.dumps(record.breakdown, default=str)
        await self._write("""
            MERGE (v:EconomicVector {address: $address})
            SET v += $props
        """, address=record.address, props=props)
        logger.debug("economic_vector_persisted", address=record.address, total_score=record.total_score)
        return record

    async def init_schema(self) -> None:
        await init_schema()

    async def close(self) -> None:
        await close_driver()
