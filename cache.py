import threading
import time
from typing import Any, Mapping, Optional

CacheKey = tuple[str, int, tuple[tuple[str, str], ...]]


def make_key(
    operation: str, user_id: int, params: Optional[Mapping[str, object]] = None
) -> CacheKey:
    items = tuple(
        sorted(
            (str(k), str(v))
            for k, v in (params or {}).items()
            if v is not None and v != ""
        )
    )
    return (operation, user_id, items)


class ResponseCache:
    """Short-lived memo of per-user responses.

    Entries expire ``ttl_secs`` after being stored. Writes to a user's data
    must call :meth:`invalidate_user` before the next read is served.
    """

    def __init__(self, ttl_secs: float, clock=time.monotonic) -> None:
        self.ttl_secs = ttl_secs
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            expires_at, value = hit
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_secs, value)

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[1] == user_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [key for key, (exp, _) in self._entries.items() if now >= exp]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
