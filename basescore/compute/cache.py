"""
BaseScore — Cache Layer
Short-lived verification results and the freshness rules for everything else.

Verification cache (identity checks rarely change, so they are cached):
    InMemoryTTLCache  — process-local map, explicit expiry per entry
    RedisTTLCache     — shared cache for multi-process deployments

Eviction policy (in-memory):
    - Every entry carries an absolute expiry (monotonic clock).
    - Expired entries are dropped lazily on read.
    - When max_entries is reached, expired entries are purged first, then
      the entries closest to expiry.
    - Access is serialized with a lock, so concurrent writers race only
      to last-write-wins, never to a partial entry.

Freshness policies:
    reputation reads     REPUTATION_MAX_AGE_SECONDS  (5 min)
    economic-vector reads ECONOMIC_MAX_AGE_SECONDS   (15 min)
    raw tx count/timestamp TX_CACHE_TTL_SECONDS      (1 hour, separate key space)

Run memo:
    Inside scoring_run(), run_memoized(key, factory) awaits factory() once per
    key and shares the result with every task of that run. Outside a run it
    is a plain call.

Key Schema (Redis):
    basescore:verify:{address}  → JSON verification result

Dependencies: redis >= 5.0.0 (Redis backend only)
"""
import asyncio
import json
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, Tuple, Awaitable, Hashable

import redis
import structlog

from basescore.config import Settings

logger = structlog.get_logger()


class VerificationCache:
    """get / set / expire by normalized address."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def expire(self, key: str) -> bool:
        raise NotImplementedError


class InMemoryTTLCache(VerificationCache):

    def __init__(
        self,
        default_ttl: int = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        key = key.lower()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return dict(value)

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        key = key.lower()
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict()
            self._entries[key] = (self._clock() + ttl, dict(value))

    def expire(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key.lower(), None) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        for k in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            del self._entries[k]
        overflow = len(self._entries) - self._max_entries + 1
        if overflow > 0:
            soonest = sorted(self._entries.items(), key=lambda item: item[1][0])[:overflow]
            for k, _ in soonest:
                del self._entries[k]


class RedisTTLCache(VerificationCache):
    """
    Redis-backed verification cache. Lazy connect; if Redis is down every
    call degrades to a miss and the caller simply re-verifies.
    """

    PREFIX = "basescore:verify:"

    def __init__(self, redis_url: str, default_ttl: int = 86400):
        self._url = redis_url
        self._default_ttl = default_ttl
        self._client: Optional[redis.Redis] = None
        self._enabled = True

    def _connect(self) -> Optional[redis.Redis]:
        """Lazy connect — only opens connection when first used."""
        if self._client is None and self._enabled:
            try:
                pool = redis.ConnectionPool.from_url(
                    self._url,
                    max_connections=20,
                    decode_responses=True,
                    socket_connect_timeout=3,
                    socket_timeout=2,
                    retry_on_timeout=True,
                )
                self._client = redis.Redis(connection_pool=pool)
                self._client.ping()
                logger.info("verification_cache_connected", url=self._url.split("@")[-1])
            except redis.RedisError as e:
                logger.warning("verification_cache_unavailable", error=str(e))
                self._enabled = False
                self._client = None
        return self._client

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        client = self._connect()
        if not client:
            return None
        try:
            raw = client.get(self.PREFIX + key.lower())
            if raw:
                logger.debug("verification_cache_hit", key=key)
                return json.loads(raw)
        except (redis.RedisError, ValueError) as e:
            logger.debug("verification_cache_get_error", error=str(e))
        return None

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        client = self._connect()
        if not client:
            return
        try:
            client.setex(
                self.PREFIX + key.lower(),
                self._default_ttl if ttl is None else ttl,
                json.dumps(value, default=str),
            )
        except redis.RedisError as e:
            logger.debug("verification_cache_set_error", error=str(e))

    def expire(self, key: str) -> bool:
        client = self._connect()
        if not client:
            return False
        try:
            return bool(client.delete(self.PREFIX + key.lower()))
        except redis.RedisError as e:
            logger.debug("verification_cache_expire_error", error=str(e))
            return False


def build_verification_cache(settings: Settings) -> VerificationCache:
    if settings.VERIFICATION_CACHE_BACKEND == "redis":
        return RedisTTLCache(settings.REDIS_URL, default_ttl=settings.VERIFICATION_CACHE_TTL)
    return InMemoryTTLCache(
        default_ttl=settings.VERIFICATION_CACHE_TTL,
        max_entries=settings.VERIFICATION_CACHE_MAX_ENTRIES,
    )


# =============================================
# FRESHNESS
# =============================================

@dataclass(frozen=True)
class FreshnessPolicy:
    """Reuse a persisted result while now - last_calculated < max_age, unless forced."""

    max_age_seconds: float

    def is_fresh(
        self,
        last_calculated: Optional[float],
        now: float,
        force_refresh: bool = False,
    ) -> bool:
        if force_refresh or last_calculated is None:
            return False
        return now - last_calculated < self.max_age_seconds


def reputation_policy(settings: Settings) -> FreshnessPolicy:
    return FreshnessPolicy(settings.REPUTATION_MAX_AGE_SECONDS)


def economic_policy(settings: Settings) -> FreshnessPolicy:
    return FreshnessPolicy(settings.ECONOMIC_MAX_AGE_SECONDS)


# =============================================
# RUN MEMO
# =============================================

_run_memo: ContextVar[Optional[Dict[Hashable, asyncio.Future]]] = ContextVar("basescore_run_memo", default=None)


@contextmanager
def scoring_run():
    """Scope for run_memoized(). Tasks created inside inherit the same memo."""
    memo: Dict[Hashable, asyncio.Future] = {}
    token = _run_memo.set(memo)
    try:
        yield memo
    finally:
        _run_memo.reset(token)
        for task in memo.values():
            if not task.done():
                task.cancel()


async def run_memoized(key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
    memo = _run_memo.get()
    if memo is None:
        return await factory()
    task = memo.get(key)
    if task is None:
        task = asyncio.ensure_future(factory())
        memo[key] = task
    # A timed-out caller must not cancel the lookup other callers are sharing.
    return await asyncio.shield(task)
