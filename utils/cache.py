"""Generic TTL cache."""
import time
import threading


class TTLCache:
    """Thread-safe key-value cache with per-key TTL and prefix invalidation."""

    def __init__(self, default_ttl=300):
        self.default_ttl = default_ttl
        self._store = {}
        self._lock = threading.Lock()

    def get(self, key):
        """Get value if exists and not expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if time.time() > entry["expires"]:
                del self._store[key]
                return None
            return entry["value"]

    def set(self, key, value, ttl=None):
        """Set key with TTL in seconds."""
        with self._lock:
            self._store[key] = {
                "value": value,
                "expires": time.time() + (self.default_ttl if ttl is None else ttl),
            }

    def invalidate(self, key):
        """Remove a specific key."""
        with self._lock:
            self._store.pop(key, None)

    def delete_prefix(self, prefix):
        """Remove every key starting with prefix. Returns the number removed."""
        with self._lock:
            doomed = [k for k in self._store if k.startswith(prefix)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def purge_expired(self):
        """Drop expired entries. Returns the number removed."""
        now = time.time()
        with self._lock:
            doomed = [k for k, e in self._store.items() if now > e["expires"]]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def clear(self):
        """Remove all entries."""
        with self._lock:
            self._store.clear()

    def __len__(self):
        with self._lock:
            return len(self._store)
