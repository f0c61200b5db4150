"""
BaseScore — Data Collectors
The social, creator and identity sources behind the metrics.

Every collector returns raw facts. No scoring logic.

Sources:
    1. Zora GraphQL       (mints by minter, collections by creator) — API key
    2. EAS GraphQL        (attestations by recipient + schema)     — public
    3. Neynar             (Farcaster user, follows/followers/casts) — API key
    4. Gitcoin Passport   (decentralized identity score 0-100)     — API key

A missing key means "no data": the collector returns None / empty without
touching the network. Unexpected HTTP status or payloads raise CollectorError,
which the calling metric or Sybil check converts into its default.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

import httpx
import structlog

logger = structlog.get_logger()

WEI_PER_ETH = 10 ** 18


class CollectorError(RuntimeError):
    """A third-party source answered with something we cannot use."""

    def __init__(self, source: str, detail: str):
        self.source = source
        super().__init__(f"{source}: {detail}")


async def _post_graphql(
    client: httpx.AsyncClient,
    source: str,
    url: str,
    query: str,
    variables: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    try:
        resp = await client.post(
            url,
            json={"query": query, "variables": variables},
            headers={"Content-Type": "application/json", **(headers or {})},
        )
    except httpx.HTTPError as e:
        raise CollectorError(source, f"request failed: {e}") from e

    if resp.status_code != 200:
        raise CollectorError(source, f"HTTP {resp.status_code}")
    try:
        body = resp.json()
    except ValueError as e:
        raise CollectorError(source, "invalid JSON") from e
    if body.get("errors"):
        raise CollectorError(source, f"GraphQL errors: {str(body['errors'])[:200]}")
    return body.get("data") or {}


# ── 1. Zora ───────────────────────────────────────

@dataclass(frozen=True)
class CreatorCollections:
    count: int
    total_volume_eth: float


class ZoraClient:
    MINTS_QUERY = """
        query GetUserMints($address: String!) {
            mints(where: { minter: $address }) {
                id
                tokenId
                collectionAddress
                timestamp
            }
        }
    """

    COLLECTIONS_QUERY = """
        query GetCreatorCollections($address: String!) {
            collections(where: { creator: $address }) {
                id
                address
                totalMints
                totalVolume
            }
        }
    """

    def __init__(self, client: httpx.AsyncClient, api_url: str, api_key: str = ""):
        self._client = client
        self._api_url = api_url
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def count_mints(self, address: str) -> int:
        if not self.enabled:
            return 0
        data = await _post_graphql(
            self._client, "zora", self._api_url, self.MINTS_QUERY,
            {"address": address.lower()}, headers={"X-API-KEY": self._api_key},
        )
        return len(data.get("mints") or [])

    async def get_creator_collections(self, address: str) -> CreatorCollections:
        if not self.enabled:
            return CreatorCollections(count=0, total_volume_eth=0.0)
        data = await _post_graphql(
            self._client, "zora", self._api_url, self.COLLECTIONS_QUERY,
            {"address": address.lower()}, headers={"X-API-KEY": self._api_key},
        )
        collections = data.get("collections") or []
        volume = 0.0
        for col in collections:
            try:
                volume += float(col.get("totalVolume") or 0) / WEI_PER_ETH
            except (TypeError, ValueError):
                logger.debug("zora_bad_volume", collection=col.get("id"))
        return CreatorCollections(count=len(collections), total_volume_eth=volume)


# ── 2. EAS attestations ───────────────────────────

@dataclass(frozen=True)
class Attestation:
    id: str
    data: str = ""
    attester: str = ""
    time_created: int = 0

    def decoded_text(self) -> str:
        """Best-effort ASCII view of hex-encoded attestation data, lowercased."""
        raw = self.data or ""
        hex_part = raw[2:] if raw.startswith("0x") else raw
        try:
            decoded = bytes.fromhex(hex_part).decode("utf-8", errors="ignore")
        except ValueError:
            return raw.lower()
        printable = "".join(ch if ch.isprintable() else " " for ch in decoded)
        return printable.lower()


class EASClient:
    ATTESTATIONS_QUERY = """
        query GetAttestations($where: AttestationWhereInput) {
            attestations(where: $where) {
                id
                attester
                data
                timeCreated
            }
        }
    """

    def __init__(self, client: httpx.AsyncClient, graphql_url: str):
        self._client = client
        self._url = graphql_url

    async def get_attestations(self, recipient: str, schema_id: str) -> List[Attestation]:
        """Non-revoked attestations of schema_id to recipient. Empty if schema_id is unset."""
        if not schema_id:
            return []
        data = await _post_graphql(
            self._client, "eas", self._url, self.ATTESTATIONS_QUERY,
            {
                "where": {
                    "recipient": {"equals": recipient.lower()},
                    "schemaId": {"equals": schema_id},
                    "revoked": {"equals": False},
                }
            },
        )
        return [
            Attestation(
                id=a.get("id", ""),
                data=a.get("data") or "",
                attester=a.get("attester") or "",
                time_created=int(a.get("timeCreated") or 0),
            )
            for a in data.get("attestations") or []
        ]


# ── 3. Neynar (Farcaster) ─────────────────────────

@dataclass(frozen=True)
class FarcasterUser:
    fid: int
    username: str = ""
    follower_count: int = 0
    following_count: int = 0
    verified_addresses: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FarcasterGraph:
    fid: int
    follows: List[int]
    followers: List[int]
    mentions: Dict[int, int]

    @property
    def mutual_follows(self) -> int:
        followers = set(self.followers)
        return sum(1 for f in set(self.follows) if f in followers)


def rank_percentile(follower_count: int) -> int:
    """Follower-count proxy for a global social rank percentile."""
    if follower_count > 10000:
        return 90
    if follower_count > 5000:
        return 75
    if follower_count > 1000:
        return 50
    if follower_count > 100:
        return 25
    return 10


def _fid_of(item: Any) -> Optional[int]:
    if isinstance(item, int):
        return item
    if isinstance(item, dict):
        if "fid" in item:
            return int(item["fid"])
        if isinstance(item.get("user"), dict) and "fid" in item["user"]:
            return int(item["user"]["fid"])
    return None


class NeynarClient:
    GRAPH_LIMIT = 5000
    CASTS_LIMIT = 100

    def __init__(self, client: httpx.AsyncClient, api_url: str, api_key: str = ""):
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def _get(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._client.get(
                f"{self._api_url}/{path}",
                params=params,
                headers={"api_key": self._api_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise CollectorError("neynar", f"request failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise CollectorError("neynar", f"{path} HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise CollectorError("neynar", "invalid JSON") from e

    async def get_user_by_address(self, address: str) -> Optional[FarcasterUser]:
        if not self.enabled:
            return None
        data = await self._get("user/by_verification", {"address": address.lower()})
        if not data:
            return None
        user = data.get("result") or data.get("user")
        if isinstance(user, dict) and isinstance(user.get("user"), dict):
            user = user["user"]
        if not isinstance(user, dict) or not user.get("fid"):
            return None
        return FarcasterUser(
            fid=int(user["fid"]),
            username=user.get("username", ""),
            follower_count=int(user.get("follower_count") or 0),
            following_count=int(user.get("following_count") or 0),
            verified_addresses=list((user.get("verified_addresses") or {}).get("eth_addresses") or []),
        )

    @staticmethod
    def _users(payload: Optional[Dict[str, Any]]) -> List[int]:
        if not payload:
            return []
        result = payload.get("result") or payload
        fids = (_fid_of(u) for u in result.get("users") or [])
        return [f for f in fids if f is not None]

    async def get_social_graph(self, fid: int) -> Optional[FarcasterGraph]:
        """Follows, followers and mention counts from recent casts. None if unavailable."""
        if not self.enabled:
            return None

        follows_data, followers_data, casts_data = await asyncio.gather(
            self._get("following", {"fid": fid, "limit": self.GRAPH_LIMIT}),
            self._get("followers", {"fid": fid, "limit": self.GRAPH_LIMIT}),
            self._get("casts", {"fid": fid, "limit": self.CASTS_LIMIT}),
            return_exceptions=True,
        )
        for item in (follows_data, followers_data):
            if isinstance(item, BaseException):
                raise item
        if follows_data is None or followers_data is None:
            return None

        mentions: Dict[int, int] = {}
        if isinstance(casts_data, BaseException):
            logger.debug("neynar_casts_unavailable", fid=fid, error=str(casts_data))
        elif casts_data:
            casts = (casts_data.get("result") or casts_data).get("casts") or []
            for cast in casts:
                for mentioned in cast.get("mentions") or []:
                    mentioned_fid = _fid_of(mentioned)
                    if mentioned_fid is not None:
                        mentions[mentioned_fid] = mentions.get(mentioned_fid, 0) + 1

        return FarcasterGraph(
            fid=fid,
            follows=self._users(follows_data),
            followers=self._users(followers_data),
            mentions=mentions,
        )


# ── 4. Gitcoin Passport ───────────────────────────

class PassportClient:

    def __init__(self, client: httpx.AsyncClient, api_url: str, api_key: str = ""):
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def get_score(self, address: str) -> Optional[float]:
        """Passport score clamped to 0-100, or None if there is no passport."""
        if not self.enabled:
            return None
        try:
            resp = await self._client.get(
                f"{self._api_url}/{address.lower()}",
                headers={"X-API-Key": self._api_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise CollectorError("passport", f"request failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise CollectorError("passport", f"HTTP {resp.status_code}")
        try:
            score = resp.json().get("score")
            if score is None:
                return None
            return min(100.0, max(0.0, float(score)))
        except (TypeError, ValueError) as e:
            raise CollectorError("passport", "unreadable score") from e
