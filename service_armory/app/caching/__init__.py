"""
Gateway caching package.

Provides the Redis response cache used to avoid repeat upstream calls and
the lock-guarded reference-data snapshot. Prefer short-lived caches and
explicit invalidation.
"""

from .reference_cache import ReferenceDataCache
from .response_cache import CacheTTL, ResponseCache

__all__ = [
    "CacheTTL",
    "ReferenceDataCache",
    "ResponseCache",
]
