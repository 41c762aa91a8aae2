"""
Typed payloads exchanged with the upstream APIs.

Most upstream bodies are passed through to the web client untouched and are
kept as plain dicts. The models here are the ones the gateway itself reads:
OAuth tokens, token checks, Warcraft Logs rate-limit figures and the
expansion/zone/partition reference hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

TOKEN_EXPIRY_SKEW = timedelta(seconds=10)


class RateLimitData(BaseModel):
    """Rate-limit figures reported by the Warcraft Logs API."""

    model_config = ConfigDict(populate_by_name=True)

    limit_per_hour: int = Field(alias="limitPerHour")
    points_spent_this_hour: float = Field(alias="pointsSpentThisHour")
    points_reset_in: int = Field(alias="pointsResetIn")


@runtime_checkable
class RatedQuery(Protocol):
    """A query result that knows what it cost against the points budget."""

    def rate_limit(self) -> RateLimitData:
        ...


class RatedQueryResult(BaseModel):
    """Base for GraphQL results; every query selects ``rateLimitData``."""

    model_config = ConfigDict(populate_by_name=True)

    rate_limit_data: RateLimitData = Field(alias="rateLimitData")

    def rate_limit(self) -> RateLimitData:
        return self.rate_limit_data


class Encounter(BaseModel):
    id: int
    name: str


class Partition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    compact_name: Optional[str] = Field(default=None, alias="compactName")
    default: bool = False


class Zone(BaseModel):
    id: int
    name: str
    partitions: List[Partition] = Field(default_factory=list)
    encounters: List[Encounter] = Field(default_factory=list)

    def default_partition(self) -> Optional[Partition]:
        for partition in self.partitions:
            if partition.default:
                return partition
        return None


class PartitionedExpansion(BaseModel):
    """Reference snapshot: one expansion with its zones and partitions."""

    id: int
    name: str
    zones: List[Zone] = Field(default_factory=list)

    def default_partition_id(self, zone_id: int) -> Optional[int]:
        for zone in self.zones:
            if zone.id == zone_id:
                partition = zone.default_partition()
                return partition.id if partition else None
        return None


class WorldData(BaseModel):
    expansions: List[PartitionedExpansion] = Field(default_factory=list)


class RateLimitQuery(RatedQueryResult):
    pass


class ExpansionEncountersQuery(RatedQueryResult):
    model_config = ConfigDict(populate_by_name=True)

    world_data: WorldData = Field(alias="worldData")

    def latest_expansion(self) -> Optional[PartitionedExpansion]:
        """The expansion with the highest id, or None when there are none."""
        expansions = sorted(self.world_data.expansions, key=lambda e: e.id, reverse=True)
        return expansions[0] if expansions else None


class CharacterParses(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hidden: Optional[bool] = None
    zone_rankings: Optional[Dict[str, Any]] = Field(default=None, alias="zoneRankings")


class CharacterData(BaseModel):
    character: Optional[CharacterParses] = None


class CharacterParsesQuery(RatedQueryResult):
    model_config = ConfigDict(populate_by_name=True)

    character_data: CharacterData = Field(alias="characterData")


class UserToken(BaseModel):
    """Token obtained through the authorization-code flow; owned by the session."""

    access_token: str
    token_type: str = "bearer"
    expiry: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    refresh_token: Optional[str] = None

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any]) -> "UserToken":
        expiry = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

        scope = payload.get("scope") or ""
        scopes = scope.split() if isinstance(scope, str) else list(scope)
        return cls(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "bearer",
            expiry=expiry,
            scopes=scopes,
            refresh_token=payload.get("refresh_token"),
        )

    def is_valid(self) -> bool:
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        expiry = self.expiry if self.expiry.tzinfo else self.expiry.replace(tzinfo=timezone.utc)
        return expiry - TOKEN_EXPIRY_SKEW > datetime.now(timezone.utc)

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


class CheckTokenResponse(BaseModel):
    user_name: Optional[str] = None
    scope: List[str] = Field(default_factory=list)


class UserInfoResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    battletag: Optional[str] = None


@dataclass(frozen=True)
class CharacterOptions:
    """Normalized region/realm/character triple shared by every upstream."""

    region: str
    realm: str
    character: str


@dataclass(frozen=True)
class CharacterParsesOptions:
    character: CharacterOptions
    zone_id: int
    partition: Optional[int] = None
