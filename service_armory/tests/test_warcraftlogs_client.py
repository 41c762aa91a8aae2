"""
Unit tests for the Warcraft Logs client.
"""

import httpx
import pytest

from service_armory.app.adapters.oauth import ClientCredentials
from service_armory.app.adapters.warcraftlogs_client import WarcraftLogsClient
from service_armory.app.adapters.warcraftlogs_queries import RATE_LIMIT_QUERY
from service_armory.app.domain.models import (
    CharacterOptions,
    CharacterParsesOptions,
    RatedQuery,
    RateLimitQuery,
)
from service_armory.app.ratelimit.point_budget import PointBudget
from shared.errors import ExternalServiceError, RateLimitError, UpstreamHTTPError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, RecordedUpstream, TestDataFactory, graphql_body

API_PATH = "/api/v2/client"


class TestWarcraftLogsClient:
    """Test cases for WarcraftLogsClient."""

    @pytest.fixture
    def upstream(self):
        upstream = RecordedUpstream()
        upstream.json("POST", "/oauth/token", TestDataFactory.token_response("wl-token"))
        return upstream

    @pytest.fixture
    def budget(self):
        return PointBudget(3600, reset_in=1800, name="warcraftlogs", clock=FakeClock())

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("armory-test")

    @pytest.fixture
    def client(self, upstream, budget, metrics):
        return WarcraftLogsClient(
            ClientCredentials("wl-id", "wl-secret", "https://wl.test/oauth/token"),
            api_url=f"https://wl.test{API_PATH}",
            points=budget,
            http_client=upstream.client(),
            metrics=metrics,
        )

    @pytest.fixture
    def parses_options(self):
        return CharacterParsesOptions(
            character=CharacterOptions(region="us", realm="illidan", character="thrall"),
            zone_id=33,
        )

    def route_queries(self, upstream, responses):
        """Answer GraphQL requests by operation name."""

        def handler(request):
            document = graphql_body(request)["query"]
            for operation, payload in responses.items():
                if f"query {operation}" in document:
                    if isinstance(payload, httpx.Response):
                        return payload
                    return httpx.Response(200, json=payload)
            return httpx.Response(400, text="unknown query")

        upstream.add("POST", API_PATH, handler)

    @pytest.mark.asyncio
    async def test_query_records_reported_cost(self, client, upstream, budget, metrics):
        self.route_queries(upstream, {"RateLimit": {"data": {"rateLimitData": TestDataFactory.rate_limit_data(250.5)}}})

        result = await client.query(RATE_LIMIT_QUERY, None, RateLimitQuery)

        assert isinstance(result, RatedQuery)
        assert result.rate_limit().points_spent_this_hour == 250.5
        assert budget.points_spent == 250.5
        assert metrics.get_metric("points_spent_this_hour").labels(upstream="warcraftlogs")._value.get() == 250.5

        request = upstream.calls(API_PATH)[0]
        assert request.headers["Authorization"] == "Bearer wl-token"
        assert graphql_body(request)["variables"] == {}

    @pytest.mark.asyncio
    async def test_exhausted_budget_refuses_without_dispatch(self, client, upstream, budget):
        budget.spend_all()

        with pytest.raises(RateLimitError) as exc_info:
            await client.get_rate_limit()

        assert exc_info.value.retry_after == 1800
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_throttled_response_spends_all_points(self, client, upstream, budget):
        self.route_queries(upstream, {"RateLimit": httpx.Response(429, text="too many")})

        with pytest.raises(RateLimitError):
            await client.get_rate_limit()

        assert budget.points_spent == budget.limit_per_hour
        assert budget.try_admit().allowed is False

    @pytest.mark.asyncio
    async def test_other_http_errors_propagate(self, client, upstream):
        self.route_queries(upstream, {"RateLimit": httpx.Response(502, text="bad gateway")})

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.get_rate_limit()
        assert exc_info.value.upstream_status == 502

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, client, upstream, budget):
        self.route_queries(upstream, {"RateLimit": {"errors": [{"message": "Field does not exist"}], "data": None}})

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_rate_limit()

        assert "Field does not exist" in exc_info.value.message
        assert budget.points_spent == 0

    @pytest.mark.asyncio
    async def test_expansion_encounters_picks_latest_and_memoizes(self, client, upstream):
        self.route_queries(upstream, {"ExpansionEncounters": TestDataFactory.expansion_encounters()})

        first = await client.get_expansion_encounters()
        second = await client.get_expansion_encounters()

        assert first.id == 6
        assert first.name == "Dragonflight"
        assert second is first
        assert len(upstream.calls(API_PATH)) == 1

    @pytest.mark.asyncio
    async def test_default_partition(self, client, upstream):
        self.route_queries(upstream, {"ExpansionEncounters": TestDataFactory.expansion_encounters()})

        assert await client.get_default_partition(33) == 2
        assert await client.get_default_partition(35) is None
        assert await client.get_default_partition(999) is None

    @pytest.mark.asyncio
    async def test_clear_partitioned_expansion_refetches(self, client, upstream):
        self.route_queries(upstream, {"ExpansionEncounters": TestDataFactory.expansion_encounters()})

        await client.get_expansion_encounters()
        await client.clear_partitioned_expansion()
        assert client.expansions.peek() is None

        await client.get_expansion_encounters()
        assert len(upstream.calls(API_PATH)) == 2

    @pytest.mark.asyncio
    async def test_parses_use_default_partition(self, client, upstream, parses_options):
        self.route_queries(upstream, {
            "ExpansionEncounters": TestDataFactory.expansion_encounters(),
            "CharacterParses": TestDataFactory.character_parses(),
        })

        result = await client.get_parses_for_character(parses_options)

        assert result.character_data.character.zone_rankings["bestPerformanceAverage"] == 95.2
        variables = graphql_body(upstream.calls(API_PATH)[-1])["variables"]
        assert variables == {
            "name": "thrall",
            "server_slug": "illidan",
            "server_region": "us",
            "zone_id": 33,
            "partition": 2,
        }

    @pytest.mark.asyncio
    async def test_parses_with_explicit_partition_skip_reference_fetch(self, client, upstream, parses_options):
        self.route_queries(upstream, {"CharacterParses": TestDataFactory.character_parses()})
        options = CharacterParsesOptions(character=parses_options.character, zone_id=33, partition=1)

        await client.get_parses_for_character(options)

        calls = upstream.calls(API_PATH)
        assert len(calls) == 1
        assert graphql_body(calls[0])["variables"]["partition"] == 1

    @pytest.mark.asyncio
    async def test_parses_omit_unknown_partition(self, client, upstream, parses_options):
        self.route_queries(upstream, {
            "ExpansionEncounters": TestDataFactory.expansion_encounters(),
            "CharacterParses": TestDataFactory.character_parses(),
        })
        options = CharacterParsesOptions(character=parses_options.character, zone_id=35)

        await client.get_parses_for_character(options)

        assert "partition" not in graphql_body(upstream.calls(API_PATH)[-1])["variables"]

    @pytest.mark.asyncio
    async def test_initialize_syncs_budget_and_warms_reference(self, client, upstream, budget):
        self.route_queries(upstream, {
            "RateLimit": {"data": {"rateLimitData": TestDataFactory.rate_limit_data(100)}},
            "ExpansionEncounters": TestDataFactory.expansion_encounters(spent=112),
        })

        await client.initialize()

        assert client.expansions.peek() is not None
        assert budget.points_spent == 112

    @pytest.mark.asyncio
    async def test_rejected_service_token_is_dropped(self, client, upstream):
        self.route_queries(upstream, {"RateLimit": httpx.Response(401, text="unauthorized")})

        with pytest.raises(UpstreamHTTPError):
            await client.get_rate_limit()
        with pytest.raises(UpstreamHTTPError):
            await client.get_rate_limit()

        assert len(upstream.calls("/oauth/token")) == 2
