from datetime import timedelta

from sqlalchemy import update

from screener.core.clock import utcnow
from screener.models.cache_entry import CacheEntry
from screener.schemas.screening import JobRequirements, ResultFilter, ResultPage, ScreeningAnalytics
from screener.services.cache import DatabaseCacheBackend, ScreeningCache


class BrokenBackend:
    """Every call fails, as if the cache store were down."""

    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl):
        raise ConnectionError("cache down")

    def keys(self, prefix):
        raise ConnectionError("cache down")

    def delete(self, keys):
        raise ConnectionError("cache down")


def test_key_scheme():
    assert ScreeningCache.job_key(4) == "screening:job:4"
    assert ScreeningCache.analytics_key(4, 2) == "screening:analytics:4:2"
    assert ScreeningCache.candidate_key("a@example.com") == "screening:candidate:a@example.com"
    assert ScreeningCache.results_key(4, 2, ResultFilter()).startswith("screening:results:4:2:")


def test_each_revision_has_its_own_entry(cache):
    cache.set_analytics(1, 0, ScreeningAnalytics(total_screened=1))
    assert cache.get_analytics(1, 1) is None
    cache.set_analytics(1, 1, ScreeningAnalytics(total_screened=2))
    assert cache.get_analytics(1, 0).total_screened == 1
    assert cache.get_analytics(1, 1).total_screened == 2


def test_equal_filters_share_a_key():
    assert ResultFilter(limit=10).cache_hash() == ResultFilter(limit=10, offset=0).cache_hash()
    assert ResultFilter(limit=10).cache_hash() != ResultFilter(limit=11).cache_hash()


def test_round_trip_job_requirements(cache):
    requirements = JobRequirements(job_id=3, title="Engineer", skills_required=["Python"])
    assert cache.get_job_requirements(3) is None
    cache.set_job_requirements(requirements)
    assert cache.get_job_requirements(3) == requirements


def test_expired_entries_are_misses(cache, session_factory):
    cache.set_analytics(1, 0, ScreeningAnalytics(total_screened=2))
    with session_factory() as db:
        db.execute(update(CacheEntry).values(expires_at=utcnow() - timedelta(seconds=1)))
        db.commit()
    assert cache.get_analytics(1, 0) is None


def test_purge_expired(session_factory):
    backend = DatabaseCacheBackend(session_factory)
    backend.set("screening:analytics:1:0", {"total_screened": 1}, ttl=-5)
    backend.set("screening:analytics:2:0", {"total_screened": 1}, ttl=60)
    assert backend.purge_expired() == 1
    assert backend.keys("screening:") == ["screening:analytics:2:0"]


def test_broken_backend_fails_open():
    cache = ScreeningCache(BrokenBackend(), enabled=True)
    assert cache.get_job_requirements(1) is None
    cache.set_job_requirements(JobRequirements(job_id=1))
    assert cache.invalidate(1) == 0
    assert cache.clear_all() == 0
    assert cache.stats()["total_keys"] is None


def test_corrupt_entry_is_a_miss(cache):
    cache.backend.set(cache.analytics_key(5, 0), {"total_screened": "lots"}, ttl=60)
    assert cache.get_analytics(5, 0) is None


def test_disabled_cache_never_stores(session_factory):
    cache = ScreeningCache(DatabaseCacheBackend(session_factory), enabled=False)
    cache.set_analytics(1, 0, ScreeningAnalytics())
    assert cache.get_analytics(1, 0) is None
    assert cache.stats()["total_keys"] == 0


def test_invalidate_is_scoped_to_one_screening_job(cache):
    page = ResultPage(results=[], total=0)
    for screening_job_id in (1, 12):
        cache.set_screening_results(screening_job_id, 0, ResultFilter(), page)
        cache.set_screening_results(screening_job_id, 1, ResultFilter(limit=5), page)
        cache.set_analytics(screening_job_id, 0, ScreeningAnalytics())
        cache.set_analytics(screening_job_id, 1, ScreeningAnalytics())
    cache.set_job_requirements(JobRequirements(job_id=1))

    assert cache.invalidate(1) == 4
    assert cache.get_screening_results(1, 0, ResultFilter()) is None
    assert cache.get_analytics(1, 1) is None
    assert cache.get_screening_results(12, 0, ResultFilter()) == page
    assert cache.get_analytics(12, 1) is not None
    assert cache.get_job_requirements(1) is not None


def test_stats_and_clear_all(cache):
    cache.set_job_requirements(JobRequirements(job_id=1))
    cache.set_analytics(1, 0, ScreeningAnalytics())
    cache.set_analytics(2, 0, ScreeningAnalytics())

    stats = cache.stats()
    assert stats["total_keys"] == 3
    assert stats["namespaces"] == {"job": 1, "analytics": 2}

    assert cache.clear_all() == 3
    assert cache.stats()["total_keys"] == 0
