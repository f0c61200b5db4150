"""
Wallet activity: first-transaction timestamp and transaction count.

Read from the persisted transaction cache while it is unexpired, otherwise
fetched from the chain and written back with TX_CACHE_TTL_SECONDS. This is a
separate key space from the reputation cache and exists to keep RPC volume down.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import structlog

from basescore.compute.persistence import TransactionCacheRecord

if TYPE_CHECKING:
    from basescore.compute.pipeline import Collaborators

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class WalletActivity:
    address: str
    first_tx_timestamp: Optional[int]
    transaction_count: int
    from_cache: bool = False

    @property
    def has_history(self) -> bool:
        return self.first_tx_timestamp is not None

    def age_days(self, now: float) -> int:
        if self.first_tx_timestamp is None:
            return 0
        return max(0, int((now - self.first_tx_timestamp) // SECONDS_PER_DAY))


async def load_wallet_activity(address: str, ctx: "Collaborators") -> WalletActivity:
    """Cached-or-fetched activity. Store errors are warnings, chain errors read as no history."""
    address = address.lower()
    now = ctx.clock()

    try:
        cached = await ctx.store.get_transaction_cache(address)
    except Exception as e:
        logger.warning("tx_cache_read_failed", address=address, error=str(e))
        cached = None

    if cached is not None and not cached.is_expired(now):
        return WalletActivity(
            address=address,
            first_tx_timestamp=cached.first_tx_timestamp,
            transaction_count=cached.transaction_count,
            from_cache=True,
        )

    first_tx, tx_count = await asyncio.gather(
        ctx.chain.get_first_transaction_timestamp(address),
        ctx.chain.get_transaction_count(address),
    )

    if first_tx is not None:
        try:
            await ctx.store.set_transaction_cache(TransactionCacheRecord(
                address=address,
                first_tx_timestamp=first_tx,
                transaction_count=tx_count,
                expires_at=now + ctx.settings.TX_CACHE_TTL_SECONDS,
            ))
        except Exception as e:
            logger.warning("tx_cache_write_failed", address=address, error=str(e))

    return WalletActivity(address=address, first_tx_timestamp=first_tx, transaction_count=tx_count)
