from starlette.requests import Request

from therapypro import rate_limiter
from therapypro.rate_limiter import check_rate_limit, get_client_ip


class FakeRedis:
    def __init__(self, store=None, ttl=0):
        self.store = dict(store or {})
        self._ttl = ttl
        self.writes = []

    def get(self, key):
        return self.store.get(key)

    def ttl(self, key):
        return self._ttl

    def set(self, key, value, ex=None):
        self.store[key] = str(value)
        self.writes.append((key, value, ex))


def make_request(headers=None, client=("198.51.100.7", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_memory_window_blocks_after_limit():
    results = [check_rate_limit("t:key", 3, 60)[0] for _ in range(4)]
    assert results == [True, True, True, False]
    allowed, count, ttl = check_rate_limit("t:key", 3, 60)
    assert (allowed, count) == (False, 3)
    assert 0 < ttl <= 60


def test_window_resets(monkeypatch):
    clock = [1_000_000]
    monkeypatch.setattr(rate_limiter.time, "time", lambda: clock[0])
    check_rate_limit("t:reset", 1, 10)
    assert check_rate_limit("t:reset", 1, 10)[0] is False
    clock[0] += 11
    assert check_rate_limit("t:reset", 1, 10)[0] is True


def test_counts_are_loaded_from_and_synced_to_redis():
    redis = FakeRedis({"t:shared": "5"}, ttl=30)
    allowed, count, ttl = check_rate_limit("t:shared", 5, 60, redis)
    assert allowed is False
    assert count == 5
    assert ttl == 30

    fresh = FakeRedis()
    rate_limiter.memory_cache["t:sync"] = {"count": 0, "reset_time": 10**12, "last_redis_sync": 0}
    check_rate_limit("t:sync", 5, 60, fresh)
    assert fresh.writes[0][:2] == ("t:sync", 1)


def test_client_ip_resolution():
    assert get_client_ip(make_request({"X-Forwarded-For": "unknown, 203.0.113.5"})) == "203.0.113.5"
    assert get_client_ip(make_request({"X-Real-IP": " 192.0.2.1 "})) == "192.0.2.1"
    assert get_client_ip(make_request()) == "198.51.100.7"
    assert get_client_ip(make_request(client=None)) == "unknown"


def test_limited_endpoint_returns_retry_after(client, user):
    for _ in range(10):
        client.post("/2fa/verify", json={"email": user.email, "emailCode": "000000"})
    response = client.post("/2fa/verify", json={"email": user.email, "emailCode": "000000"})
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    assert response.json()["detail"]["limit"] == 10
