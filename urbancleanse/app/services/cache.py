"""
Caching Service.

Memory-based TTL cache for statistics kept off the assignment path.
"""

from datetime import timedelta
from typing import Dict, Any, Optional

from urbancleanse.app.domain.scheduling.identifiers import utcnow

_cache_store: Dict[str, dict] = {}


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        entry = _cache_store.get(key)
        if not entry:
            return None

        if utcnow() > entry["expires_at"]:
            del _cache_store[key]
            return None

        return entry["data"]

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: int = 300):
        _cache_store[key] = {
            "data": data,
            "expires_at": utcnow() + timedelta(seconds=ttl_seconds)
        }

    @staticmethod
    async def invalidate(prefix: str):
        for key in [k for k in _cache_store if k.startswith(prefix)]:
            del _cache_store[key]

    @staticmethod
    async def clear():
        _cache_store.clear()
