"""
Unit tests for the Raider.IO client.
"""

import httpx
import pytest

from service_armory.app.adapters.raiderio_client import PROFILE_FIELDS, RaiderIOClient
from service_armory.app.domain.models import CharacterOptions
from service_armory.app.ratelimit.token_bucket import TokenBucket
from shared.errors import RateLimitError, UpstreamHTTPError
from shared.test_helpers import FakeClock, RecordedUpstream, TestDataFactory

PROFILE_PATH = "/api/v1/characters/profile"


class TestRaiderIOClient:
    """Test cases for RaiderIOClient."""

    @pytest.fixture
    def upstream(self):
        return RecordedUpstream()

    @pytest.fixture
    def limiter(self):
        return TokenBucket(300, 60.0, penalty=60.0, name="raiderio_per_minute", clock=FakeClock())

    @pytest.fixture
    def client(self, upstream, limiter):
        return RaiderIOClient(api_url="https://rio.test/api/v1", limiter=limiter, http_client=upstream.client())

    @pytest.fixture
    def options(self):
        return CharacterOptions(region="us", realm="illidan", character="thrall")

    @pytest.mark.asyncio
    async def test_character_profile(self, client, upstream, options):
        upstream.json("GET", PROFILE_PATH, TestDataFactory.raiderio_profile())

        profile = await client.character_profile(options)

        assert profile["mythic_plus_scores_by_season"][0]["scores"]["all"] == 3150.5
        params = upstream.calls(PROFILE_PATH)[0].url.params
        assert params["region"] == "us"
        assert params["realm"] == "illidan"
        assert params["name"] == "thrall"
        assert params["fields"] == PROFILE_FIELDS
        assert "mythic_plus_scores_by_season:current" in PROFILE_FIELDS

    @pytest.mark.asyncio
    async def test_only_200_is_success(self, client, upstream, options):
        upstream.add("GET", PROFILE_PATH, httpx.Response(204))

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.character_profile(options)
        assert exc_info.value.upstream_status == 204

    @pytest.mark.asyncio
    async def test_error_body_is_kept(self, client, upstream, options):
        upstream.add("GET", PROFILE_PATH, httpx.Response(400, json={"message": "Could not find requested character"}))

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await client.character_profile(options)

        assert "Could not find requested character" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_throttled_response_drains_bucket(self, client, upstream, limiter, options):
        upstream.add("GET", PROFILE_PATH, httpx.Response(429, text="slow down"))

        with pytest.raises(UpstreamHTTPError):
            await client.character_profile(options)

        assert limiter.tokens == 0
        with pytest.raises(RateLimitError):
            await client.character_profile(options, timeout=5)
        assert len(upstream.requests) == 1
