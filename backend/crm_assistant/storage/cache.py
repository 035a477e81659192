import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from ..utils.logger import logger


class CacheInvalidator(Protocol):
    def clear_user_cache(self, user_id: str) -> None:
        ...


class SearchCache:
    """Short-lived per-user cache for contact search results.

    Keys are namespaced as ``<user_id>:<query key>`` so one user's writes can
    drop every cached search of that user at once.
    """

    def __init__(self, ttl_seconds: float = 30, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    @staticmethod
    def _key(user_id: str, key: str) -> str:
        return f"{user_id}:{key}"

    def get(self, user_id: str, key: str) -> Optional[Any]:
        full_key = self._key(user_id, key)
        entry = self._entries.get(full_key)
        if entry is None:
            return None

        stored_at, value = entry
        if self.clock() - stored_at > self.ttl_seconds:
            del self._entries[full_key]
            return None

        return value

    def set(self, user_id: str, key: str, value: Any) -> None:
        self._entries[self._key(user_id, key)] = (self.clock(), value)

    def clear_user_cache(self, user_id: str) -> None:
        prefix = f"{user_id}:"
        stale = [k for k in self._entries if k.startswith(prefix)]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug(f"Cleared {len(stale)} cached searches for user {user_id}")
