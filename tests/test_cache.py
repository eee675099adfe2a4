from cache import ResponseCache, make_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = ResponseCache(60, clock=clock)
    key = make_key("stats", 1)
    cache.set(key, {"count": 1})

    clock.now += 59
    assert cache.get(key) == {"count": 1}
    clock.now += 1
    assert cache.get(key) is None


def test_key_ignores_param_order_and_empty_values() -> None:
    assert make_key("transactions", 1, {"a": "1", "b": "2"}) == make_key(
        "transactions", 1, {"b": "2", "a": "1", "c": None, "d": ""}
    )
    assert make_key("transactions", 1) != make_key("transactions", 2)


def test_invalidate_user_only_drops_that_user() -> None:
    cache = ResponseCache(60)
    cache.set(make_key("stats", 1), "one")
    cache.set(make_key("analytics", 1), "one-b")
    cache.set(make_key("stats", 2), "two")

    assert cache.invalidate_user(1) == 2
    assert cache.get(make_key("stats", 1)) is None
    assert cache.get(make_key("stats", 2)) == "two"


def test_purge_expired_removes_stale_entries() -> None:
    clock = FakeClock()
    cache = ResponseCache(10, clock=clock)
    cache.set(make_key("stats", 1), "old")
    clock.now += 5
    cache.set(make_key("stats", 2), "new")
    clock.now += 6

    assert cache.purge_expired() == 1
    assert len(cache) == 1
    assert cache.get(make_key("stats", 2)) == "new"
