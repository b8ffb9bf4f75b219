import threading
import time

# Process-scoped; each worker keeps its own copy.
_cache = {}
_lock = threading.Lock()


def get_cached(key: str):
    with _lock:
        entry = _cache.get(key)
        if not entry:
            return None
        value, expires_at = entry
        if expires_at < time.time():
            _cache.pop(key, None)
            return None
        return value


def set_cached(key: str, value, ttl_seconds: int = 60):
    with _lock:
        _cache[key] = (value, time.time() + ttl_seconds)


def invalidate(key: str) -> None:
    with _lock:
        _cache.pop(key, None)


def invalidate_prefix(prefix: str) -> int:
    with _lock:
        keys = [key for key in _cache if key.startswith(prefix)]
        for key in keys:
            _cache.pop(key, None)
        return len(keys)


def clear_cache() -> None:
    with _lock:
        _cache.clear()
