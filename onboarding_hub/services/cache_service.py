"""
Cache Service — read-through cache for rarely-changing configuration.

Only questionnaire templates are cached (TEMPLATE_CACHE_TTL, 5 min default).
Mutable entities (partners, submissions) are never cached.  Every successful
template write invalidates the affected keys.

Uses Redis when REDIS_URL is set, falls back to a simple in-memory dict for
development/testing.
"""

import json
import logging
import time

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _redis_url():
    if has_app_context():
        url = current_app.config.get("REDIS_URL")
        if url:
            return url
    import os
    return os.getenv("REDIS_URL")


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = _redis_url()
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


def reset_backend():
    """Forget the chosen backend so the next call re-reads REDIS_URL (tests)."""
    global _backend
    _backend = None


# ── Default TTLs ─────────────────────────────────────────────────────────

DEFAULT_TTL = 300  # 5 minutes


def template_ttl() -> int:
    if has_app_context():
        return int(current_app.config.get("TEMPLATE_CACHE_TTL", DEFAULT_TTL))
    return DEFAULT_TTL


# ── Key builders ─────────────────────────────────────────────────────────

def template_key(template_id):
    return f"tpl:current:{template_id}"


# ── Public API ───────────────────────────────────────────────────────────


def get_cached(key, ttl=DEFAULT_TTL, loader=None):
    """Generic cache-aside.  If *loader* is provided, it's called on miss
    and the result is cached."""
    be = _get_backend()
    raw = be.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            pass
    if loader is None:
        return None
    value = loader()
    if value is not None:
        be.setex(key, ttl, json.dumps(value))
    return value


def delete_cached(key):
    """Generic delete."""
    _get_backend().delete(key)


def invalidate_template(template_id):
    """Drop the cached current template after a successful save."""
    delete_cached(template_key(template_id))


def clear_all():
    """Flush entire cache (use sparingly — mainly for testing)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
        backend = "memory" if isinstance(be, _MemoryBackend) else "redis"
        return {"status": "ok", "backend": backend}
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
