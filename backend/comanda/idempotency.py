# Overview: Idempotency guard for mutating POS requests; cache backends and the route decorator.

"""
Idempotency Guard

WHY: A terminal that times out waiting for "create order" or "add payment"
cannot know whether the server applied it. It resubmits with the same
X-Idempotency-Key and must get the original response back instead of a
second order or a second charge.

DESIGN:
- Cache key is tenant_id:user_id:client_key so one tenant's (or one
  user's) keys never collide with another's
- Only 2xx responses are stored; a failed attempt can be retried with the
  same key
- Entries expire after a TTL; the in-memory store is also bounded and
  evicts the oldest entry first
- The backend is picked once at startup from configuration
- Cache failures never block a request: the call proceeds without
  dedup and a warning is logged
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from functools import wraps

import redis
from flask import current_app, g, jsonify, request

from .extensions import IDEMPOTENCY_EXTENSION_KEY, get_idempotency_cache


IDEMPOTENCY_HEADER = "X-Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replay"
MAX_CLIENT_KEY_LENGTH = 128


def scoped_key(tenant_id: int, user_id: int, client_key: str) -> str:
    return f"{tenant_id}:{user_id}:{client_key}"


class MemoryIdempotencyCache:
    """
    Process-local bounded map with TTL expiry.

    Only suitable for a single server process; use the Redis backend when
    several instances sit behind a load balancer.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 10000, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return json.loads(payload)

    def set(self, key: str, value: dict) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + self.ttl_seconds, payload)
            self._purge_expired()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired(self) -> None:
        # Insertion order == expiry order (constant TTL), so stop at the first live entry
        now = self._clock()
        while self._entries:
            oldest_key, (expires_at, _) = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[oldest_key]


class RedisIdempotencyCache:
    """Shared cache for multi-instance deployments; entries expire via SETEX."""

    PREFIX = "idempotency:"

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 300) -> "RedisIdempotencyCache":
        client = redis.from_url(url, socket_timeout=1.0, socket_connect_timeout=1.0)
        return cls(client, ttl_seconds=ttl_seconds)

    def get(self, key: str) -> dict | None:
        raw = self.client.get(self.PREFIX + key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: dict) -> None:
        self.client.setex(self.PREFIX + key, self.ttl_seconds, json.dumps(value))


def build_cache(config):
    """Construct the backend named by IDEMPOTENCY_BACKEND ("memory", "redis" or "none")."""
    backend = (config.get("IDEMPOTENCY_BACKEND") or "memory").strip().lower()
    ttl = int(config.get("IDEMPOTENCY_TTL_SECONDS", 300))

    if backend == "memory":
        return MemoryIdempotencyCache(
            ttl_seconds=ttl,
            max_entries=int(config.get("IDEMPOTENCY_MAX_ENTRIES", 10000)),
        )
    if backend == "redis":
        return RedisIdempotencyCache.from_url(config["REDIS_URL"], ttl_seconds=ttl)
    if backend == "none":
        return None
    raise ValueError(f"Unknown IDEMPOTENCY_BACKEND: {backend!r}")


def init_app(app) -> None:
    cache = build_cache(app.config)
    app.extensions[IDEMPOTENCY_EXTENSION_KEY] = cache
    app.logger.info(
        "Idempotency backend: %s",
        type(cache).__name__ if cache is not None else "disabled",
    )


def idempotent(f):
    """
    Deduplicate retried requests carrying X-Idempotency-Key.

    Must be applied after @require_auth (needs g.tenant_id and g.current_user).
    Requests without the header run normally.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        client_key = (request.headers.get(IDEMPOTENCY_HEADER) or "").strip()
        cache = get_idempotency_cache()

        if not client_key or cache is None:
            return f(*args, **kwargs)

        if len(client_key) > MAX_CLIENT_KEY_LENGTH:
            return jsonify({"error": {
                "code": "VALIDATION_ERROR",
                "message": f"{IDEMPOTENCY_HEADER} exceeds {MAX_CLIENT_KEY_LENGTH} characters",
            }}), 400

        key = scoped_key(g.tenant_id, g.current_user.id, client_key)

        protected = True
        try:
            cached = cache.get(key)
        except Exception as exc:
            current_app.logger.warning("Idempotency cache unavailable, proceeding without dedup: %s", exc)
            cached = None
            protected = False

        if cached is not None:
            current_app.logger.info("Idempotent replay for key %s", key)
            response = jsonify(cached["body"])
            response.status_code = cached["status"]
            response.headers[REPLAY_HEADER] = "true"
            return response

        response = current_app.make_response(f(*args, **kwargs))

        if protected and 200 <= response.status_code < 300 and response.is_json:
            try:
                cache.set(key, {"status": response.status_code, "body": response.get_json()})
            except Exception as exc:
                current_app.logger.warning("Failed to store idempotent response for key %s: %s", key, exc)

        return response

    return decorated_function
