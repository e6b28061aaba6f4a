# Overview: Pytest coverage for the idempotency guard; cache backends and request replay.

"""
Idempotency Guard Tests

Verifies:
- Replaying create-order with the same key returns the same body, one order
- Keys are scoped per tenant and user
- Failed responses are not cached
- A broken cache degrades to "no dedup", never to a failed request
- Memory backend honours TTL and its size bound
"""

import pytest

from comanda.extensions import IDEMPOTENCY_EXTENSION_KEY, db
from comanda.idempotency import MemoryIdempotencyCache, RedisIdempotencyCache, build_cache, scoped_key
from comanda.models import Order, Payment


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenCache:
    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value):
        raise ConnectionError("cache down")


# =============================================================================
# MEMORY BACKEND
# =============================================================================


class TestMemoryCache:

    def test_get_returns_stored_value(self):
        cache = MemoryIdempotencyCache(ttl_seconds=60)
        cache.set("1:2:abc", {"status": 201, "body": {"ok": True}})
        assert cache.get("1:2:abc") == {"status": 201, "body": {"ok": True}}
        assert cache.get("1:2:other") is None

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = MemoryIdempotencyCache(ttl_seconds=300, clock=clock)
        cache.set("k", {"status": 201, "body": {}})

        clock.now += 299
        assert cache.get("k") is not None
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_oldest_entry_is_evicted_at_capacity(self):
        cache = MemoryIdempotencyCache(ttl_seconds=300, max_entries=2)
        cache.set("a", {"n": 1})
        cache.set("b", {"n": 2})
        cache.set("c", {"n": 3})

        assert cache.get("a") is None
        assert cache.get("b") == {"n": 2}
        assert len(cache) == 2

    def test_stored_value_is_a_copy(self):
        cache = MemoryIdempotencyCache()
        value = {"status": 201, "body": {"items": [1]}}
        cache.set("k", value)
        value["body"]["items"].append(2)
        assert cache.get("k")["body"]["items"] == [1]

    def test_scoped_key_format(self):
        assert scoped_key(3, 7, "abc") == "3:7:abc"


class TestBackendSelection:

    def test_memory_backend(self):
        cache = build_cache({"IDEMPOTENCY_BACKEND": "memory", "IDEMPOTENCY_TTL_SECONDS": 10, "IDEMPOTENCY_MAX_ENTRIES": 5})
        assert isinstance(cache, MemoryIdempotencyCache)
        assert cache.ttl_seconds == 10
        assert cache.max_entries == 5

    def test_redis_backend(self):
        cache = build_cache({"IDEMPOTENCY_BACKEND": "redis", "REDIS_URL": "redis://localhost:6379/15"})
        assert isinstance(cache, RedisIdempotencyCache)

    def test_disabled_backend(self):
        assert build_cache({"IDEMPOTENCY_BACKEND": "none"}) is None

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_cache({"IDEMPOTENCY_BACKEND": "memcached"})


# =============================================================================
# REQUEST REPLAY
# =============================================================================


class TestReplay:

    def test_create_order_replay_returns_same_response(self, client, cashier_headers, soda):
        payload = {"items": [{"product_id": soda.id, "quantity": 1}]}
        headers = {**cashier_headers, "X-Idempotency-Key": "order-retry-1"}

        first = client.post("/api/orders", json=payload, headers=headers)
        second = client.post("/api/orders", json=payload, headers=headers)

        assert first.status_code == second.status_code == 201
        assert first.get_json() == second.get_json()
        assert second.headers.get("Idempotent-Replay") == "true"
        assert db.session.query(Order).count() == 1

    def test_without_key_each_request_runs(self, client, cashier_headers, soda):
        payload = {"items": [{"product_id": soda.id, "quantity": 1}]}
        client.post("/api/orders", json=payload, headers=cashier_headers)
        client.post("/api/orders", json=payload, headers=cashier_headers)
        assert db.session.query(Order).count() == 2

    def test_keys_are_scoped_per_user(self, client, cashier_headers, manager_headers, soda):
        payload = {"items": [{"product_id": soda.id, "quantity": 1}]}
        client.post("/api/orders", json=payload, headers={**cashier_headers, "X-Idempotency-Key": "same"})
        client.post("/api/orders", json=payload, headers={**manager_headers, "X-Idempotency-Key": "same"})
        assert db.session.query(Order).count() == 2

    def test_payment_replay_charges_once(self, client, cashier_headers, soda):
        order_id = client.post(
            "/api/orders", json={"items": [{"product_id": soda.id, "quantity": 2}]}, headers=cashier_headers
        ).get_json()["order"]["id"]
        headers = {**cashier_headers, "X-Idempotency-Key": "pay-1"}

        first = client.post(f"/api/orders/{order_id}/payments", json={"method": "CARD", "amount_cents": 600}, headers=headers)
        second = client.post(f"/api/orders/{order_id}/payments", json={"method": "CARD", "amount_cents": 600}, headers=headers)

        assert first.status_code == second.status_code == 201
        assert db.session.query(Payment).count() == 1

    def test_failed_response_is_not_cached(self, client, cashier_headers, soda):
        headers = {**cashier_headers, "X-Idempotency-Key": "retry-after-fix"}

        failed = client.post("/api/orders", json={"items": []}, headers=headers)
        fixed = client.post("/api/orders", json={"items": [{"product_id": soda.id, "quantity": 1}]}, headers=headers)

        assert failed.status_code == 400
        assert fixed.status_code == 201
        assert "Idempotent-Replay" not in fixed.headers

    def test_overlong_key_rejected(self, client, cashier_headers, soda):
        headers = {**cashier_headers, "X-Idempotency-Key": "x" * 129}
        resp = client.post("/api/orders", json={"items": [{"product_id": soda.id, "quantity": 1}]}, headers=headers)
        assert resp.status_code == 400

    def test_broken_cache_does_not_block_requests(self, app, monkeypatch, client, cashier_headers, soda):
        monkeypatch.setitem(app.extensions, IDEMPOTENCY_EXTENSION_KEY, BrokenCache())
        payload = {"items": [{"product_id": soda.id, "quantity": 1}]}
        headers = {**cashier_headers, "X-Idempotency-Key": "cache-down"}

        first = client.post("/api/orders", json=payload, headers=headers)
        second = client.post("/api/orders", json=payload, headers=headers)

        assert first.status_code == second.status_code == 201
        # No dedup while the cache is down
        assert db.session.query(Order).count() == 2

    def test_disabled_cache_runs_every_request(self, app, monkeypatch, client, cashier_headers, soda):
        monkeypatch.setitem(app.extensions, IDEMPOTENCY_EXTENSION_KEY, None)
        payload = {"items": [{"product_id": soda.id, "quantity": 1}]}
        headers = {**cashier_headers, "X-Idempotency-Key": "disabled"}

        client.post("/api/orders", json=payload, headers=headers)
        client.post("/api/orders", json=payload, headers=headers)
        assert db.session.query(Order).count() == 2
