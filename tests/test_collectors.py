"""Third-party client parsing against httpx.MockTransport."""
import asyncio
import json

import httpx
import pytest

from basescore.compute.collectors import (
    CollectorError,
    EASClient,
    NeynarClient,
    PassportClient,
    ZoraClient,
    rank_percentile,
)

from conftest import ADDRESS, COINBASE_SCHEMA, hex_text


def _run(handler, fn):
    """Run fn(client) against a mock transport."""
    async def _main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fn(client)
    return asyncio.run(_main())


def _unreachable(request):
    raise AssertionError(f"unexpected request to {request.url}")


# ── 1. Zora ───────────────────────────────────────

def test_zora_counts_mints():
    def handler(request):
        body = json.loads(request.content)
        assert body["variables"] == {"address": ADDRESS}
        assert request.headers["X-API-KEY"] == "zk"
        return httpx.Response(200, json={"data": {"mints": [{"id": "1"}, {"id": "2"}]}})

    count = _run(handler, lambda c: ZoraClient(c, "https://zora.test/graphql", "zk").count_mints(ADDRESS.upper()))
    assert count == 2


def test_zora_creator_collections_volume():
    def handler(request):
        return httpx.Response(200, json={"data": {"collections": [
            {"id": "a", "totalVolume": "2000000000000000000"},
            {"id": "b", "totalVolume": "2000000000000000000"},
            {"id": "c", "totalVolume": None},
        ]}})

    result = _run(handler, lambda c: ZoraClient(c, "https://zora.test/graphql", "zk").get_creator_collections(ADDRESS))
    assert result.count == 3
    assert result.total_volume_eth == pytest.approx(4.0)


def test_zora_without_key_makes_no_request():
    assert _run(_unreachable, lambda c: ZoraClient(c, "https://zora.test/graphql").count_mints(ADDRESS)) == 0


def test_graphql_errors_raise():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "bad query"}]})

    with pytest.raises(CollectorError):
        _run(handler, lambda c: ZoraClient(c, "https://zora.test/graphql", "zk").count_mints(ADDRESS))


def test_http_error_status_raises():
    with pytest.raises(CollectorError):
        _run(lambda r: httpx.Response(500), lambda c: ZoraClient(c, "https://zora.test/graphql", "zk").count_mints(ADDRESS))


# ── 2. EAS ────────────────────────────────────────

def test_eas_attestations():
    def handler(request):
        where = json.loads(request.content)["variables"]["where"]
        assert where["recipient"] == {"equals": ADDRESS}
        assert where["schemaId"] == {"equals": COINBASE_SCHEMA}
        assert where["revoked"] == {"equals": False}
        return httpx.Response(200, json={"data": {"attestations": [
            {"id": "0x01", "attester": "0xatt", "data": hex_text("Hackathon Winner"), "timeCreated": 1700000000},
        ]}})

    result = _run(handler, lambda c: EASClient(c, "https://eas.test/graphql").get_attestations(ADDRESS, COINBASE_SCHEMA))
    assert len(result) == 1
    assert result[0].id == "0x01"
    assert result[0].time_created == 1700000000
    assert "winner" in result[0].decoded_text()


def test_eas_without_schema_makes_no_request():
    assert _run(_unreachable, lambda c: EASClient(c, "https://eas.test/graphql").get_attestations(ADDRESS, "")) == []


# ── 3. Neynar ─────────────────────────────────────

def test_neynar_user_by_address():
    def handler(request):
        assert request.url.path.endswith("/user/by_verification")
        assert request.headers["api_key"] == "nk"
        return httpx.Response(200, json={"result": {"user": {
            "fid": 42,
            "username": "alice",
            "follower_count": 120,
            "following_count": 10,
            "verified_addresses": {"eth_addresses": [ADDRESS]},
        }}})

    user = _run(handler, lambda c: NeynarClient(c, "https://neynar.test/v2/farcaster", "nk").get_user_by_address(ADDRESS))
    assert user.fid == 42
    assert user.follower_count == 120
    assert user.verified_addresses == [ADDRESS]


def test_neynar_user_not_found():
    user = _run(
        lambda r: httpx.Response(404),
        lambda c: NeynarClient(c, "https://neynar.test/v2/farcaster", "nk").get_user_by_address(ADDRESS),
    )
    assert user is None


def _graph_handler(casts_status=200, following_status=200):
    def handler(request):
        path = request.url.path
        if path.endswith("/following"):
            if following_status != 200:
                return httpx.Response(following_status)
            return httpx.Response(200, json={"users": [{"user": {"fid": 2}}, {"user": {"fid": 3}}]})
        if path.endswith("/followers"):
            return httpx.Response(200, json={"users": [{"fid": 2}, {"fid": 4}]})
        if path.endswith("/casts"):
            if casts_status != 200:
                return httpx.Response(casts_status)
            return httpx.Response(200, json={"casts": [{"mentions": [{"fid": 3}, 3]}]})
        return httpx.Response(404)
    return handler


def test_neynar_social_graph():
    graph = _run(_graph_handler(), lambda c: NeynarClient(c, "https://neynar.test/v2/farcaster", "nk").get_social_graph(1))

    assert graph.follows == [2, 3]
    assert graph.followers == [2, 4]
    assert graph.mentions == {3: 2}
    assert graph.mutual_follows == 1


def test_neynar_graph_survives_casts_failure():
    graph = _run(
        _graph_handler(casts_status=500),
        lambda c: NeynarClient(c, "https://neynar.test/v2/farcaster", "nk").get_social_graph(1),
    )
    assert graph.mentions == {}
    assert graph.follows == [2, 3]


def test_neynar_graph_missing_follows():
    graph = _run(
        _graph_handler(following_status=404),
        lambda c: NeynarClient(c, "https://neynar.test/v2/farcaster", "nk").get_social_graph(1),
    )
    assert graph is None


@pytest.mark.parametrize("followers,percentile", [
    (20000, 90), (6000, 75), (1500, 50), (150, 25), (100, 10), (0, 10),
])
def test_rank_percentile(followers, percentile):
    assert rank_percentile(followers) == percentile


# ── 4. Gitcoin Passport ───────────────────────────

def test_passport_score_clamped():
    def handler(request):
        assert request.url.path.endswith(ADDRESS)
        return httpx.Response(200, json={"score": "150.5"})

    score = _run(handler, lambda c: PassportClient(c, "https://passport.test/score", "pk").get_score(ADDRESS))
    assert score == 100.0


def test_passport_not_found():
    score = _run(lambda r: httpx.Response(404), lambda c: PassportClient(c, "https://passport.test/score", "pk").get_score(ADDRESS))
    assert score is None


def test_passport_server_error_raises():
    with pytest.raises(CollectorError):
        _run(lambda r: httpx.Response(503), lambda c: PassportClient(c, "https://passport.test/score", "pk").get_score(ADDRESS))


def test_passport_without_key_makes_no_request():
    assert _run(_unreachable, lambda c: PassportClient(c, "https://passport.test/score").get_score(ADDRESS)) is None
