"""
Tagged lookup results and the per-endpoint 404 policy.

A 404 from an upstream means different things per endpoint: for a character
summary it is a real failure, for a keystone season it only means the
character did not play that season. Endpoints listed in ``NOT_FOUND_POLICY``
as ``ABSENT`` turn a 404 into ``NotFound``; everything else raises.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generic, TypeVar, Union

from shared.errors import UpstreamHTTPError

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    data: T


@dataclass(frozen=True)
class NotFound:
    reason: str = "not found"


LookupResult = Union[Found[T], NotFound]


class NotFoundPolicy(str, Enum):
    ERROR = "error"
    ABSENT = "absent"


# Endpoints not listed here treat a 404 as an error.
NOT_FOUND_POLICY: Dict[str, NotFoundPolicy] = {
    "mythic_keystone_season": NotFoundPolicy.ABSENT,
}


def policy_for(endpoint: str) -> NotFoundPolicy:
    return NOT_FOUND_POLICY.get(endpoint, NotFoundPolicy.ERROR)


def resolve_not_found(endpoint: str, error: UpstreamHTTPError) -> NotFound:
    """Convert a 404 into NotFound when the endpoint allows it, else re-raise."""
    if error.is_not_found and policy_for(endpoint) is NotFoundPolicy.ABSENT:
        return NotFound(reason=f"{endpoint} returned 404")
    raise error

