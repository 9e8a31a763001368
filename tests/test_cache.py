"""
Tests for the feed page cache.
"""
import threading

from trendfeed.cache import FeedPageCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestFeedPageCache:

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = FeedPageCache(ttl_seconds=300, clock=clock)
        key = cache.make_key("u1", None, 20)
        cache.set(key, "page")

        clock.now += 299
        assert cache.get(key) == "page"
        clock.now += 1
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_least_recently_used_is_evicted(self):
        cache = FeedPageCache(max_entries=2)
        a, b, c = (cache.make_key(u, None, 20) for u in ("a", "b", "c"))
        cache.set(a, 1)
        cache.set(b, 2)
        cache.get(a)
        cache.set(c, 3)

        assert cache.get(a) == 1
        assert cache.get(b) is None
        assert cache.get(c) == 3

    def test_invalidate_user_only_drops_that_user(self):
        cache = FeedPageCache()
        cache.set(cache.make_key("u1", None, 20), "p1")
        cache.set(cache.make_key("u1", "cursor-2", 20), "p2")
        cache.set(cache.make_key("u2", None, 20), "p3")

        assert cache.invalidate_user("u1") == 2
        assert cache.get(cache.make_key("u1", None, 20)) is None
        assert cache.get(cache.make_key("u2", None, 20)) == "p3"
        assert cache.invalidate_user("nobody") == 0

    def test_clear(self):
        cache = FeedPageCache()
        cache.set(cache.make_key("u1", None, 20), "p1")
        cache.clear()
        assert len(cache) == 0

    def test_write_after_invalidation_is_refused(self):
        cache = FeedPageCache()
        key = cache.make_key("u1", None, 20)
        generation = cache.generation("u1")

        cache.invalidate_user("u1")
        assert cache.set(key, "stale", generation) is False
        assert cache.get(key) is None

        assert cache.set(key, "fresh", cache.generation("u1")) is True
        assert cache.get(key) == "fresh"

    def test_other_users_writes_unaffected(self):
        cache = FeedPageCache()
        generation = cache.generation("u2")
        cache.invalidate_user("u1")
        assert cache.set(cache.make_key("u2", None, 20), "p", generation) is True

    def test_write_after_clear_is_refused(self):
        cache = FeedPageCache()
        generation = cache.generation("u1")
        cache.clear()
        assert cache.set(cache.make_key("u1", None, 20), "stale", generation) is False

    def test_concurrent_reads_writes_and_invalidation(self):
        cache = FeedPageCache(max_entries=50)
        errors = []

        def worker(n: int) -> None:
            try:
                for i in range(200):
                    user = f"u{(n + i) % 5}"
                    key = cache.make_key(user, i % 7, 20)
                    cache.set(key, i)
                    cache.get(key)
                    if i % 13 == 0:
                        cache.invalidate_user(user)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(cache) <= 50
