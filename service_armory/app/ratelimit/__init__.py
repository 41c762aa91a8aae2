"""
Rate limiting package for the Gateway.

Holds the admission controllers that guard every upstream call: token
buckets with cooperative waiting for the REST APIs, and the hourly points
budget for the GraphQL API.
"""

from .point_budget import PointBudget
from .token_bucket import Admission, TieredTokenBucket, TokenBucket

__all__ = [
    "Admission",
    "PointBudget",
    "TieredTokenBucket",
    "TokenBucket",
]
