import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from result_cache import CACHE_TTL_SECONDS, ResultCache, page_identity
from scan_models import Occurrence, ScanResult
from storage import MemoryStore, SQLAlchemyStore, StorageError, StorageQuotaExceeded


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FailingStore(MemoryStore):
    """Rejects every write that still carries source content (or all writes)"""

    def __init__(self, fail_all=False):
        super().__init__()
        self.fail_all = fail_all
        self.attempts = 0

    def set(self, key, value):
        self.attempts += 1
        if self.fail_all or '"contentMap": {}' not in value:
            raise StorageQuotaExceeded("quota exceeded")
        super().set(key, value)


def _result(with_finding=True):
    result = ScanResult.empty(['Endpoints'])
    result.content_map['inline'] = 'fetch("/api/v1/users")'
    if with_finding:
        result.add('Endpoints', '/api/v1/users', Occurrence('inline', None, 6, 13))
    return result


def test_page_identity():
    assert page_identity(7, "https://a.test/") == "7|https://a.test/"
    assert page_identity(None, "https://a.test/") == "https://a.test/"


def test_ttl_boundary():
    clock = FakeClock()
    cache = ResultCache(MemoryStore(), clock=clock)
    assert cache.put("1|https://a.test/", _result())

    clock.now += CACHE_TTL_SECONDS - 0.001
    cached = cache.get("1|https://a.test/")
    assert cached is not None
    assert '/api/v1/users' in cached.results_by_category['Endpoints']

    clock.now += 0.002
    assert cache.get("1|https://a.test/") is None


def test_missing_entry():
    assert ResultCache(MemoryStore()).get("nope") is None


def test_content_map_kept_within_budget():
    cache = ResultCache(MemoryStore())
    cache.put("k", _result())
    assert cache.get("k").content_map == {'inline': 'fetch("/api/v1/users")'}


def test_content_map_dropped_over_budget():
    cache = ResultCache(MemoryStore(), max_bytes=10)
    assert cache.put("k", _result())
    cached = cache.get("k")
    assert cached.content_map == {}
    assert cached.findings_count() == 1


def test_content_map_dropped_without_findings():
    cache = ResultCache(MemoryStore())
    cache.put("k", _result(with_finding=False))
    cached = cache.get("k")
    assert cached.is_empty()
    assert cached.content_map == {}


def test_quota_failure_retried_without_content():
    store = FailingStore()
    cache = ResultCache(store)
    assert cache.put("k", _result())
    assert store.attempts == 2
    cached = cache.get("k")
    assert cached.content_map == {}
    occurrence = cached.get('Endpoints', '/api/v1/users').occurrences[0]
    assert cached.context(occurrence) is None


def test_persistent_failure_does_not_raise():
    store = FailingStore(fail_all=True)
    cache = ResultCache(store)
    assert cache.put("k", _result()) is False
    assert store.attempts == 2
    assert cache.get("k") is None


def test_delete_for_tab_only_touches_that_tab():
    cache = ResultCache(MemoryStore())
    cache.put(page_identity(7, "https://a.test/"), _result())
    cache.put(page_identity(7, "https://b.test/"), _result())
    cache.put(page_identity(70, "https://a.test/"), _result())

    cache.delete_for_tab(7)
    assert cache.get(page_identity(7, "https://a.test/")) is None
    assert cache.get(page_identity(7, "https://b.test/")) is None
    assert cache.get(page_identity(70, "https://a.test/")) is not None


def test_sqlalchemy_store_round_trip(tmp_path):
    store = SQLAlchemyStore(f"sqlite:///{tmp_path / 'cache.db'}")
    try:
        cache = ResultCache(store)
        cache.put(page_identity(3, "https://a.test/"), _result())
        cached = cache.get(page_identity(3, "https://a.test/"))
        assert cached.get('Endpoints', '/api/v1/users') is not None
        assert store.keys("scan_cache_3|") == ["scan_cache_3|https://a.test/"]

        cache.delete(page_identity(3, "https://a.test/"))
        assert store.keys() == []
    finally:
        store.close()


def test_memory_store_quota():
    store = MemoryStore(quota_bytes=4)
    store.set("a", "1234")
    with pytest.raises(StorageError):
        store.set("b", "12345")
    assert store.keys() == ["a"]


def test_entry_carries_write_timestamp():
    clock = FakeClock()
    cache = ResultCache(MemoryStore(), clock=clock)
    cache.put("k", _result())

    result, cached_at = cache.get_entry("k")
    assert cached_at == clock.now
    assert '/api/v1/users' in result.results_by_category['Endpoints']

    clock.now += CACHE_TTL_SECONDS + 1
    assert cache.is_expired(cached_at)
    assert cache.get_entry("k") is None
