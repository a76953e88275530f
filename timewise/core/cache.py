"""In-process TTL cache for analytics and platform statistics.

Keys are tuples whose first two elements are ``(namespace, tenant_id)`` so a
tenant's cached reports can be dropped as soon as new attendance lands.
"""

import time
from collections.abc import Hashable
from typing import Any

_cache: dict[tuple, tuple[float, Any]] = {}

# Default TTL in seconds
DEFAULT_TTL = 60


def get(key: tuple, ttl: float = DEFAULT_TTL) -> Any | None:
    """Return cached value if present and not expired, else None."""
    entry = _cache.get(key)
    if entry is None:
        return None
    stored_at, value = entry
    if time.monotonic() - stored_at > ttl:
        _cache.pop(key, None)
        return None
    return value


def put(key: tuple, value: Any) -> None:
    _cache[key] = (time.monotonic(), value)


def invalidate_tenant(tenant_id: Hashable) -> None:
    """Drop every entry cached for ``tenant_id``."""
    for key in [k for k in _cache if len(k) > 1 and k[1] == tenant_id]:
        _cache.pop(key, None)


def clear() -> None:
    _cache.clear()
