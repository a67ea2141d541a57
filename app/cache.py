from threading import Lock
from typing import Any, Iterable, Optional

from cachetools import TTLCache


def image_cache_key(name: str) -> str:
    return f"/images/v1/image/{name}"


def metadata_cache_key(name: str) -> str:
    return f"/images/v1/image/{name}/metadata"


class ResponseCache:
    """Derived responses keyed by request path. Always safe to drop."""

    def __init__(self, maxsize: int = 1024, ttl: int = 3600):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._cache.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def invalidate(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._cache.pop(key, None)
