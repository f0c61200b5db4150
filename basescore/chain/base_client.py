"""
BaseScore — Base Chain Client
Minimal JSON-RPC over httpx for the two facts the engine needs per wallet:
how many transactions it has sent and when it sent the first one.

Every public method is resilient: RPC failures return 0 / None, never raise.

First-transaction lookup:
    1. Block explorer, if configured (first ascending transaction)
    2. Binary search over block heights for the first block at which the
       account nonce is non-zero, then that block's timestamp
       (needs an RPC endpoint that serves historical state)
"""
import itertools
from typing import Optional, Any, List

import httpx
import structlog

from basescore.chain.explorer import BaseScanClient

logger = structlog.get_logger()


class RPCError(RuntimeError):
    pass


class BaseChainClient:

    def __init__(
        self,
        client: httpx.AsyncClient,
        rpc_url: str,
        explorer: Optional[BaseScanClient] = None,
    ):
        self._client = client
        self._rpc_url = rpc_url
        self._explorer = explorer
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await self._client.post(self._rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if data.get("error"):
            raise RPCError(f"{method}: {data['error']}")
        return data.get("result")

    async def _nonce_at(self, address: str, block: str) -> int:
        result = await self._call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    # ── Public API ────────────────────────────────

    async def get_transaction_count(self, address: str) -> int:
        """Sent transaction count (nonce) at the latest block."""
        try:
            return await self._nonce_at(address.lower(), "latest")
        except (httpx.HTTPError, RPCError, ValueError, TypeError) as e:
            logger.warning("rpc_tx_count_failed", address=address, error=str(e))
            return 0

    async def get_block_number(self) -> Optional[int]:
        try:
            return int(await self._call("eth_blockNumber", []), 16)
        except (httpx.HTTPError, RPCError, ValueError, TypeError) as e:
            logger.warning("rpc_block_number_failed", error=str(e))
            return None

    async def get_block_timestamp(self, block_number: int) -> Optional[int]:
        try:
            block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
            if not block:
                return None
            return int(block["timestamp"], 16)
        except (httpx.HTTPError, RPCError, ValueError, TypeError, KeyError) as e:
            logger.warning("rpc_block_failed", block=block_number, error=str(e))
            return None

    async def get_first_transaction_timestamp(self, address: str) -> Optional[int]:
        """Unix timestamp of the first transaction, or None if there is none or lookup failed."""
        address = address.lower()

        if self._explorer is not None and self._explorer.enabled:
            first = await self._explorer.get_first_transaction(address)
            if first is not None:
                return first.timestamp

        try:
            latest = int(await self._call("eth_blockNumber", []), 16)
            if await self._nonce_at(address, hex(latest)) == 0:
                return None

            # Smallest block with nonce > 0 is the block of the first sent transaction.
            low, high = 0, latest
            while low < high:
                mid = (low + high) // 2
                if await self._nonce_at(address, hex(mid)) > 0:
                    high = mid
                else:
                    low = mid + 1
        except (httpx.HTTPError, RPCError, ValueError, TypeError) as e:
            logger.warning("rpc_first_tx_failed", address=address, error=str(e))
            return None

        return await self.get_block_timestamp(low)
