"""Tests for SchemaCache: TTL expiry, invalidation patterns and stats."""

from db_admin.schema.cache import SchemaCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_cache(ttl: float = 60) -> tuple[SchemaCache, FakeClock]:
    clock = FakeClock()
    return SchemaCache(ttl=ttl, clock=clock), clock


class TestKeys:
    """Cache key generation."""

    def test_plain_key(self) -> None:
        assert SchemaCache.generate_key("books", "schema") == "schema:books"

    def test_param_order_irrelevant(self) -> None:
        """Logically identical params share a key."""
        a = SchemaCache.generate_key("books", "relationships", {"depth": 2, "x": 1})
        b = SchemaCache.generate_key("books", "relationships", {"x": 1, "depth": 2})
        assert a == b
        assert a.startswith("relationships:books:")

    def test_different_params_differ(self) -> None:
        a = SchemaCache.generate_key("books", "relationships", {"depth": 1})
        b = SchemaCache.generate_key("books", "relationships", {"depth": 2})
        assert a != b


class TestExpiry:
    """Entries expire after the TTL."""

    def test_hit_then_expire(self) -> None:
        cache, clock = make_cache(ttl=60)
        cache.set("schema:books", {"x": 1})
        assert cache.get("schema:books") == {"x": 1}

        clock.now += 61
        assert cache.get("schema:books") is None
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["evictions"] == 1
        assert stats["size"] == 0

    def test_has_does_not_count(self) -> None:
        cache, _ = make_cache()
        cache.set("k:t", 1)
        assert cache.has("k:t")
        assert cache.get_stats()["hits"] == 0

    def test_cleanup(self) -> None:
        cache, clock = make_cache(ttl=10)
        cache.set("a:t", 1)
        clock.now += 5
        cache.set("b:t", 2)
        clock.now += 6
        assert cache.cleanup() == 1
        assert cache.size == 1


class TestGetOrLoad:
    """Loader runs once per key."""

    async def test_loads_once(self) -> None:
        cache, _ = make_cache()
        calls = []

        async def loader():
            calls.append(1)
            return ["id", "name"]

        first = await cache.get_or_load("columns:authors", loader)
        second = await cache.get_or_load("columns:authors", loader)
        assert first == (["id", "name"], False)
        assert second == (["id", "name"], True)
        assert len(calls) == 1

    async def test_refresh_reloads(self) -> None:
        cache, _ = make_cache()
        values = iter([1, 2])

        async def loader():
            return next(values)

        await cache.get_or_load("k:t", loader)
        value, cached = await cache.get_or_load("k:t", loader, refresh=True)
        assert (value, cached) == (2, False)


class TestInvalidation:
    """Invalidation by table, pattern and clear."""

    def test_invalidate_table(self) -> None:
        """Only entries for the table (and table listings) are dropped."""
        cache, _ = make_cache()
        cache.set(SchemaCache.generate_key("books", "schema"), 1)
        cache.set(SchemaCache.generate_key("books", "relationships", {"depth": 2}), 2)
        cache.set(SchemaCache.generate_key("book_genres", "schema"), 3)
        cache.set(SchemaCache.generate_key("all", "tables", {"pattern": None}), 4)

        assert cache.invalidate_table("books") == 3
        assert cache.has(SchemaCache.generate_key("book_genres", "schema"))

    def test_invalidate_pattern(self) -> None:
        cache, _ = make_cache()
        cache.set("schema:a", 1)
        cache.set("columns:a", 2)
        assert cache.invalidate_pattern("^schema:") == 1
        assert cache.size == 1

    def test_clear_keeps_stats(self) -> None:
        cache, _ = make_cache()
        cache.set("k:t", 1)
        cache.get("k:t")
        cache.clear()
        assert cache.size == 0
        assert cache.get_stats()["hits"] == 1

    def test_hit_rate(self) -> None:
        cache, _ = make_cache()
        cache.set("k:t", 1)
        cache.get("k:t")
        cache.get("missing:t")
        assert cache.get_stats()["hit_rate"] == 0.5
