"""
Raider.IO REST client.
"""

from typing import Any, Dict, Optional

from shared.errors import RateLimitError

from ..domain.models import CharacterOptions
from ..ratelimit.token_bucket import TokenBucket
from .upstream import UpstreamClient

RIO_API_URL = "https://raider.io/api/v1"
PROFILE_FIELDS = (
    "mythic_plus_ranks,mythic_plus_recent_runs,mythic_plus_best_runs,"
    "mythic_plus_scores_by_season:current"
)


class RaiderIOClient(UpstreamClient):
    """Unauthenticated client guarded by a per-minute token bucket."""

    service_name = "raiderio"

    def __init__(
        self,
        *,
        api_url: str = RIO_API_URL,
        limiter: Optional[TokenBucket] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_url = api_url.rstrip("/")
        self.limiter = limiter or TokenBucket(300, 60.0, penalty=60.0, name="raiderio_per_minute")

    async def character_profile(
        self,
        options: CharacterOptions,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Mythic+ ranks, runs and season scores for a character."""
        request = self._client.build_request(
            "GET",
            f"{self.api_url}/characters/profile",
            params={
                "region": options.region,
                "realm": options.realm,
                "name": options.character,
                "fields": PROFILE_FIELDS,
            },
        )
        response = await self.do(request, timeout)
        return self._decode_json(response)

    async def do(self, request, timeout: Optional[float] = None):
        """Admit against the bucket, then send; only a 200 counts as success."""
        timeout = self._timeout(timeout)
        try:
            await self.limiter.wait(timeout)
        except RateLimitError:
            self._record_denial()
            raise

        return await self._execute(
            request,
            timeout=timeout,
            on_throttled=self.limiter.drain,
            success_statuses=range(200, 201),
        )
