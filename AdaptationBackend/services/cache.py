import threading
import time
from typing import Any, Callable, Optional

# ======================================================
# 🗃️ CACHE EN MÉMOIRE AVEC TTL
# ======================================================
# Optimisation pure : une entrée absente ou expirée = recalcul.


class InMemoryCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024):
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            if len(self._entries) >= self._max_entries and key not in self._entries:
                # on évince l'entrée qui expire le plus tôt
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
