"""
BaseScore — Block Explorer Client
Real transaction lists from the BaseScan account API.

Returns None whenever the explorer is unconfigured or unavailable so that
callers fall back to the statistical estimation path.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

import httpx
import structlog

from basescore.compute.cache import run_memoized

logger = structlog.get_logger()

MAX_RESULTS = 10000


@dataclass(frozen=True)
class ExplorerTransaction:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to: Optional[str]
    value_wei: int
    gas_used: int
    gas_price_wei: int
    contract_address: Optional[str]
    is_error: bool

    @property
    def is_contract_deployment(self) -> bool:
        return not self.to and bool(self.contract_address)

    @classmethod
    def from_api(cls, row: Dict[str, Any]) -> "ExplorerTransaction":
        return cls(
            tx_hash=row.get("hash", ""),
            block_number=int(row.get("blockNumber") or 0),
            timestamp=int(row.get("timeStamp") or 0),
            from_address=(row.get("from") or "").lower(),
            to=(row.get("to") or "").lower() or None,
            value_wei=int(row.get("value") or 0),
            gas_used=int(row.get("gasUsed") or 0),
            gas_price_wei=int(row.get("gasPrice") or 0),
            contract_address=(row.get("contractAddress") or "").lower() or None,
            is_error=row.get("isError", "0") == "1",
        )


class BaseScanClient:
    """
    Usage:
        explorer = BaseScanClient(client, api_url, api_key)
        txs = await explorer.get_transactions("0xabc...")
        if txs is None:
            ...  # explorer unavailable, estimate instead
    """

    def __init__(self, client: httpx.AsyncClient, api_url: str, api_key: str = ""):
        self._client = client
        self._api_url = api_url
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def get_transactions(
        self,
        address: str,
        sort: str = "asc",
        limit: int = MAX_RESULTS,
    ) -> Optional[List[ExplorerTransaction]]:
        """
        Normal transactions sent or received by address, oldest first by default.
        Fetched once per scoring run however many calculators ask.
        """
        if not self.enabled:
            return None
        address = address.lower()
        return await run_memoized(
            ("txlist", address, sort, limit),
            lambda: self._fetch_transactions(address, sort, limit),
        )

    async def _fetch_transactions(self, address: str, sort: str, limit: int) -> Optional[List[ExplorerTransaction]]:
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": limit,
            "sort": sort,
            "apikey": self._api_key,
        }
        try:
            resp = await self._client.get(self._api_url, params=params)
            if resp.status_code != 200:
                logger.warning("explorer_http_error", status=resp.status_code)
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("explorer_request_failed", error=str(e))
            return None

        result = data.get("result")
        if data.get("status") != "1":
            # "No transactions found" is a valid empty answer, anything else is an error
            if isinstance(result, list) or "no transactions" in str(data.get("message", "")).lower():
                return []
            logger.warning("explorer_api_error", message=data.get("message"), result=str(result)[:100])
            return None

        if not isinstance(result, list):
            return None
        try:
            return [ExplorerTransaction.from_api(row) for row in result]
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("explorer_parse_failed", error=str(e))
            return None

    async def get_first_transaction(self, address: str) -> Optional[ExplorerTransaction]:
        txs = await self.get_transactions(address, sort="asc", limit=1)
        if not txs:
            return None
        return txs[0]

    async def count_contract_deployments(self, address: str) -> Optional[int]:
        """Contracts created by address (empty `to` + contractAddress set)."""
        txs = await self.get_transactions(address)
        if txs is None:
            return None
        address = address.lower()
        return sum(
            1 for tx in txs
            if tx.is_contract_deployment and not tx.is_error and tx.from_address == address
        )
