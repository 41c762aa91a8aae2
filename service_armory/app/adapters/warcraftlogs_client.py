"""
Warcraft Logs v2 GraphQL client.
"""

from typing import Any, Dict, Optional, Type, TypeVar

from shared.errors import ExternalServiceError, RateLimitError, UpstreamHTTPError

from ..caching.reference_cache import ReferenceDataCache
from ..domain.models import (
    CharacterParsesOptions,
    CharacterParsesQuery,
    ExpansionEncountersQuery,
    PartitionedExpansion,
    RateLimitQuery,
    RatedQuery,
)
from ..ratelimit.point_budget import PointBudget
from .oauth import ClientCredentials, ClientCredentialsTokenSource, bearer
from .upstream import UpstreamClient
from .warcraftlogs_queries import CHARACTER_PARSES_QUERY, EXPANSION_ENCOUNTERS_QUERY, RATE_LIMIT_QUERY

WL_API_URL = "https://www.warcraftlogs.com/api/v2/client"
DEFAULT_POINTS_PER_HOUR = 3600

QueryT = TypeVar("QueryT", bound=RatedQuery)


class WarcraftLogsClient(UpstreamClient):
    """Client-credentials GraphQL client with an hourly points budget."""

    service_name = "warcraftlogs"

    def __init__(
        self,
        credentials: ClientCredentials,
        *,
        api_url: str = WL_API_URL,
        points: Optional[PointBudget] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_url = api_url
        self.points = points or PointBudget(DEFAULT_POINTS_PER_HOUR, name="warcraftlogs")
        self.token_source = ClientCredentialsTokenSource(
            credentials,
            service_name=self.service_name,
            http_client=self._client,
            metrics=self.metrics,
            default_timeout=self.default_timeout,
        )
        self.expansions: ReferenceDataCache[PartitionedExpansion] = ReferenceDataCache(
            self._fetch_latest_expansion,
            name="warcraftlogs_expansion",
        )

    async def query(
        self,
        document: str,
        variables: Optional[Dict[str, Any]],
        result_type: Type[QueryT],
        timeout: Optional[float] = None,
    ) -> QueryT:
        """Run a GraphQL query and feed its reported cost back into the budget."""
        try:
            self.points.check()
        except RateLimitError:
            self._record_denial()
            raise

        timeout = self._timeout(timeout)
        access_token = await self.token_source.token(timeout)
        request = self._client.build_request(
            "POST",
            self.api_url,
            json={"query": document, "variables": variables or {}},
            headers={"Authorization": bearer(access_token)},
        )

        try:
            response = await self._execute(request, timeout=timeout, on_throttled=self.points.spend_all)
        except UpstreamHTTPError as exc:
            if exc.upstream_status == 429:
                raise RateLimitError(
                    "Warcraft Logs rate limit exceeded, spent all remaining points",
                    retry_after=self.points.reset_in_seconds,
                ) from exc
            if exc.upstream_status == 401:
                self.token_source.invalidate()
            raise

        payload = self._decode_json(response)
        if not isinstance(payload, dict):
            raise ExternalServiceError(self.service_name, "GraphQL response was not an object")

        errors = payload.get("errors")
        if errors:
            messages = [error.get("message", "unknown error") for error in errors if isinstance(error, dict)]
            self.logger.error("GraphQL query errored", errors=messages)
            raise ExternalServiceError(self.service_name, "; ".join(messages) or "GraphQL query failed")

        result = self._decode_model(payload.get("data"), result_type, "graphql")
        self.points.record(result.rate_limit())
        if self.metrics:
            self.metrics.set_gauge(
                "points_spent_this_hour",
                self.points.points_spent,
                upstream=self.service_name,
            )
        return result

    async def get_rate_limit(self, timeout: Optional[float] = None) -> RateLimitQuery:
        """Sync the local budget with the upstream's view of this hour."""
        return await self.query(RATE_LIMIT_QUERY, None, RateLimitQuery, timeout)

    async def get_expansion_encounters(self) -> PartitionedExpansion:
        """Latest expansion with its zones, memoized for the process lifetime."""
        return await self.expansions.get_or_fetch()

    async def _fetch_latest_expansion(self) -> PartitionedExpansion:
        result = await self.query(EXPANSION_ENCOUNTERS_QUERY, None, ExpansionEncountersQuery)
        latest = result.latest_expansion()
        if latest is None:
            raise ExternalServiceError(self.service_name, "no expansions returned")
        return latest

    async def get_default_partition(self, zone_id: int) -> Optional[int]:
        """Partition flagged default for ``zone_id``, or None when unknown."""
        expansion = await self.get_expansion_encounters()
        return expansion.default_partition_id(zone_id)

    async def get_parses_for_character(
        self,
        options: CharacterParsesOptions,
        timeout: Optional[float] = None,
    ) -> CharacterParsesQuery:
        partition = options.partition
        if partition is None:
            partition = await self.get_default_partition(options.zone_id)

        variables: Dict[str, Any] = {
            "name": options.character.character,
            "server_slug": options.character.realm,
            "server_region": options.character.region,
            "zone_id": options.zone_id,
        }
        if partition is not None:
            variables["partition"] = partition
        return await self.query(CHARACTER_PARSES_QUERY, variables, CharacterParsesQuery, timeout)

    async def clear_partitioned_expansion(self) -> None:
        """Drop the memoized expansion so the next read refetches it."""
        await self.expansions.clear()

    async def initialize(self) -> None:
        """Sync the points budget and warm the reference data."""
        await self.get_rate_limit()
        await self.get_expansion_encounters()
