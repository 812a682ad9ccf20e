from cache import FeaturedProductsCache, InMemoryStore, build_store
from config import Settings


def test_featured_cache_loads_once():
    calls = []

    def loader():
        calls.append(1)
        return [{"name": "Ceiling Fan"}]

    cache = FeaturedProductsCache(InMemoryStore())
    assert cache.get_or_load(loader) == [{"name": "Ceiling Fan"}]
    assert cache.get_or_load(loader) == [{"name": "Ceiling Fan"}]
    assert len(calls) == 1


def test_featured_cache_does_not_store_empty_listing():
    cache = FeaturedProductsCache(InMemoryStore())
    assert cache.get_or_load(lambda: []) == []
    assert cache.get() is None


def test_featured_cache_refresh_swallows_loader_errors():
    cache = FeaturedProductsCache(InMemoryStore())
    cache.set([{"name": "Old"}])

    def broken():
        raise RuntimeError("db down")

    cache.refresh(broken)
    assert cache.get() == [{"name": "Old"}]


def test_memory_store_expires_entries():
    store = InMemoryStore()
    store.set("k", "v", ex=-1)
    assert store.get("k") is None
    store.set("k", "v")
    assert store.get("k") == "v"
    assert store.delete("k") == 1


def test_memory_store_used_unless_redis_enabled():
    assert isinstance(build_store(Settings()), InMemoryStore)
    assert isinstance(build_store(Settings(use_redis=True)), InMemoryStore)
