from __future__ import annotations

import logging
import os
import threading
import time
from functools import wraps

from flask import g, request

from marketplace.errors import RateLimited
from marketplace.utils.settings import env_bool

try:
    import redis
except Exception:  # pragma: no cover - optional dependency fallback
    redis = None

logger = logging.getLogger(__name__)


def rate_limit_enabled(default: bool = True) -> bool:
    return env_bool("RATE_LIMIT_ENABLED", default)


def _redis_url() -> str:
    return (os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()


class FixedWindowLimiter:
    """Counts hits per key in fixed windows.

    Counters live in Redis when a URL is configured and reachable, so every
    worker shares them. Otherwise each process keeps its own sliding list of
    timestamps, which is enough for a single dev server and for tests.
    A Redis error on one call falls through to the in-process counters.
    """

    SWEEP_INTERVAL_SECONDS = 60

    def __init__(self):
        self._lock = threading.Lock()
        self._hits: dict[str, tuple[int, list[float]]] = {}
        self._last_sweep = time.time()
        self._client = None
        self._client_checked = False
        self.stats = {"redis_hits": 0, "redis_errors": 0, "memory_hits": 0, "rejected": 0}

    def _bump(self, name: str) -> None:
        with self._lock:
            self.stats[name] = int(self.stats.get(name, 0)) + 1

    def _redis(self):
        with self._lock:
            if self._client_checked:
                return self._client
            self._client_checked = True
        url = _redis_url()
        if redis is None or not url:
            return None
        try:
            client = redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=0.75, socket_timeout=0.75)
            client.ping()
        except Exception as e:
            logger.warning("rate_limit_redis_unavailable err=%s", type(e).__name__)
            return None
        with self._lock:
            self._client = client
        return client

    def _hit_redis(self, client, key: str, limit: int, window: int) -> tuple[bool, int]:
        now = int(time.time())
        counter = f"rl:v1:{key}:{now // window}"
        count = int(client.incr(counter))
        if count == 1:
            client.expire(counter, window + 1)
        self._bump("redis_hits")
        if count <= limit:
            return True, 0
        return False, max(1, window - (now % window))

    def _sweep(self, now: float) -> None:
        # Caller holds the lock. Drops keys whose newest hit left its window.
        stale = [k for k, (window, stamps) in self._hits.items() if not stamps or stamps[-1] < now - window]
        for k in stale:
            self._hits.pop(k, None)
        self._last_sweep = now

    def _hit_memory(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        now = time.time()
        with self._lock:
            if now - self._last_sweep >= self.SWEEP_INTERVAL_SECONDS:
                self._sweep(now)
            _, stamps = self._hits.get(key, (window, []))
            recent = [ts for ts in stamps if ts >= now - window]
            self.stats["memory_hits"] = int(self.stats.get("memory_hits", 0)) + 1
            if len(recent) >= limit:
                self._hits[key] = (window, recent)
                return False, int(max(1, window - (now - recent[0])))
            recent.append(now)
            self._hits[key] = (window, recent)
        return True, 0

    def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
        limit = max(1, int(limit))
        window = max(1, int(window_seconds))
        client = self._redis() if rate_limit_enabled(True) else None
        allowed = None
        if client is not None:
            try:
                allowed, retry_after = self._hit_redis(client, key, limit, window)
            except Exception:
                self._bump("redis_errors")
        if allowed is None:
            allowed, retry_after = self._hit_memory(key, limit, window)
        if not allowed:
            self._bump("rejected")
        return allowed, retry_after

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "enabled": rate_limit_enabled(True),
                "redis_configured": bool(_redis_url()),
                "redis_connected": self._client is not None,
                "memory_keys": len(self._hits),
                **{k: int(v) for k, v in self.stats.items()},
            }


_LIMITER = FixedWindowLimiter()


def check_limit(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    return _LIMITER.hit(key, limit=limit, window_seconds=window_seconds)


def limiter_stats() -> dict:
    return _LIMITER.snapshot()


def reset_limits() -> None:
    _LIMITER.reset()


def _client_ip(req) -> str:
    if env_bool("TRUST_PROXY_HEADERS", False):
        forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return (req.remote_addr or "").strip() or "unknown"


def build_rate_limit_subject(*, scope: str, user_id: str | None, request_obj=None) -> str:
    if (scope or "ip").strip().lower() == "user" and user_id:
        return f"u:{user_id}"
    return f"ip:{_client_ip(request_obj or request)}"


def rate_limit(key: str, per_seconds: int, limit: int, *, scope: str = "ip"):
    """Per-route limit; raises RateLimited, rendered by the app error handler.

    scope="user" keys on the bearer subject captured before the request and
    falls back to the client IP for anonymous calls.
    """

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            subject = build_rate_limit_subject(scope=scope, user_id=getattr(g, "auth_user_id", None))
            ok, retry_after = check_limit(f"{key}:{subject}", limit=limit, window_seconds=per_seconds)
            if not ok:
                logger.info("rate_limited route=%s subject=%s retry_after=%s", key, subject, retry_after)
                raise RateLimited(retry_after)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
