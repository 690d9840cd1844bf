import pytest

from feed_resolution.config.loader import CacheConfig
from feed_resolution.models.cache_entry import ResultClass
from feed_resolution.models.validation_result import ValidationResult, ValidationStatus
from feed_resolution.tools.cache_tool import ResultCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(CacheConfig(), clock=clock)


def test_hit_and_miss_are_counted(cache):
    key = ResultCache.make_key("https://example.com/rss.xml", "validate")
    assert key == "validate:https://example.com/rss.xml"
    assert cache.get(key) is None
    result = ValidationResult(url="https://example.com/rss.xml", is_valid=True, status=ValidationStatus.VALID)
    assert cache.set(key, result, ResultClass.SUCCESS)
    assert cache.get(key) is result

    stats = cache.get_stats()
    assert stats.hit_count == 1
    assert stats.miss_count == 1
    assert stats.hit_rate == pytest.approx(0.5)
    assert stats.total_entries == 1


def test_ttl_depends_on_result_class(cache, clock):
    cache.set("ok", "value", ResultClass.SUCCESS)
    cache.set("bad", "value", ResultClass.FAILURE)
    cache.set("pick", "value", ResultClass.DISCOVERY)

    clock.advance(301)
    assert cache.get("bad") is None
    assert cache.get("pick") == "value"
    assert cache.get("ok") == "value"

    clock.advance(300)
    assert cache.get("pick") is None
    assert cache.get("ok") == "value"

    clock.advance(1200)
    assert cache.get("ok") is None
    assert len(cache) == 0


def test_cleanup_purges_expired_entries(cache, clock):
    cache.set("a", 1, ResultClass.FAILURE)
    cache.set("b", 2, ResultClass.SUCCESS)
    clock.advance(600)
    assert cache.cleanup() == 1
    assert len(cache) == 1
    assert cache.get_stats().ttl_distribution == {"success": 1, "failure": 0, "discovery": 0}


def test_least_recently_used_entry_is_evicted(clock):
    cache = ResultCache(CacheConfig(max_entries=2), clock=clock)
    cache.set("a", 1, ResultClass.SUCCESS)
    cache.set("b", 2, ResultClass.SUCCESS)
    cache.get("a")
    cache.set("c", 3, ResultClass.SUCCESS)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_expired_entries_are_evicted_before_live_ones(clock):
    cache = ResultCache(CacheConfig(max_entries=2), clock=clock)
    cache.set("live", 1, ResultClass.SUCCESS)
    cache.set("stale", 2, ResultClass.FAILURE)
    clock.advance(400)
    cache.set("new", 3, ResultClass.SUCCESS)
    assert cache.get("live") == 1
    assert cache.get("new") == 3


def test_memory_stays_under_budget(clock):
    cache = ResultCache(CacheConfig(max_memory_bytes=4096, max_entries=1000), clock=clock)
    for i in range(200):
        cache.set(f"key-{i}", "x" * 200, ResultClass.SUCCESS)
        assert cache.get_stats().memory_usage.percentage < 100
    stats = cache.get_stats()
    assert 0 < stats.total_entries < 200
    assert stats.memory_usage.used_bytes == stats.total_size


def test_oversized_entry_is_rejected(clock):
    cache = ResultCache(CacheConfig(max_memory_bytes=1024), clock=clock)
    assert not cache.set("big", "x" * 5000, ResultClass.SUCCESS)
    assert len(cache) == 0


def test_replacing_a_key_does_not_leak_size(cache):
    cache.set("k", "x" * 100, ResultClass.SUCCESS)
    size = cache.get_stats().total_size
    cache.set("k", "x" * 100, ResultClass.SUCCESS)
    assert cache.get_stats().total_size == size
    assert len(cache) == 1


def test_delete_and_delete_matching(cache):
    cache.set("validate:https://a.example/rss", 1, ResultClass.SUCCESS)
    cache.set("resolve:https://a.example/rss", 2, ResultClass.SUCCESS)
    cache.set("validate:https://b.example/rss", 3, ResultClass.SUCCESS)
    assert cache.delete("validate:https://b.example/rss")
    assert not cache.delete("validate:https://b.example/rss")
    assert cache.delete_matching("a.example") == 2
    assert len(cache) == 0


def test_faults_degrade_instead_of_raising(cache):
    class Unsizable:
        def __repr__(self):
            raise RuntimeError("boom")

    assert cache.set("k", Unsizable(), ResultClass.SUCCESS) is False
    assert cache.get("k") is None


def test_clear_resets_counters(cache):
    cache.set("k", 1, ResultClass.SUCCESS)
    cache.get("k")
    cache.clear()
    stats = cache.get_stats()
    assert stats.total_entries == 0
    assert stats.hit_count == 0
    assert stats.memory_usage.percentage == 0
