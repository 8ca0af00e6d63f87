"""
Screening cache layer.

Namespaced TTL entries fronting job requirements, result pages and analytics.
Reads fail open (an error is a miss), writes are fire-and-forget: the cache
never fails or blocks the critical path.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from screener.core.clock import utc_after, utcnow
from screener.core.config import settings
from screener.models.cache_entry import CacheEntry
from screener.schemas.screening import (
    JobRequirements, ParsedResume, ResultFilter, ResultPage, ScreeningAnalytics,
)

logger = logging.getLogger(__name__)

# Time to live in seconds
CACHE_TTL = {
    "job_requirements": 86400,  # 24 hours
    "screening_results": 3600,  # 1 hour
    "analytics": 3600,  # 1 hour
    "candidate_profile": 1800,  # 30 minutes
}

PREFIX = "screening:"


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...
    def set(self, key: str, value: Any, ttl: int) -> None: ...
    def keys(self, prefix: str) -> List[str]: ...
    def delete(self, keys: List[str]) -> int: ...


class DatabaseCacheBackend:
    """Key-value store on the `cache_entries` table; expiry is checked on read."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[Any]:
        with self.session_factory() as db:
            entry = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
            if entry is None:
                return None
            if entry.expires_at <= utcnow():
                db.delete(entry)
                db.commit()
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        expires_at = utc_after(ttl)
        with self.session_factory() as db:
            entry = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
            if entry is None:
                db.add(CacheEntry(key=key, value=value, expires_at=expires_at))
            else:
                entry.value = value
                entry.expires_at = expires_at
            try:
                db.commit()
            except IntegrityError:
                # Another writer inserted the same key first; last write wins
                db.rollback()
                entry = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one()
                entry.value = value
                entry.expires_at = expires_at
                db.commit()

    def keys(self, prefix: str) -> List[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self.session_factory() as db:
            rows = db.execute(
                select(CacheEntry.key).where(CacheEntry.key.like(f"{escaped}%", escape="\\"))
            ).scalars()
            return list(rows)

    def delete(self, keys: List[str]) -> int:
        if not keys:
            return 0
        with self.session_factory() as db:
            result = db.execute(delete(CacheEntry).where(CacheEntry.key.in_(keys)))
            db.commit()
            return result.rowcount or 0

    def purge_expired(self) -> int:
        with self.session_factory() as db:
            result = db.execute(delete(CacheEntry).where(CacheEntry.expires_at <= utcnow()))
            db.commit()
            return result.rowcount or 0


class ScreeningCache:
    def __init__(self, backend: CacheBackend, enabled: bool = settings.enable_caching):
        self.backend = backend
        self.enabled = enabled

    # --- keys ---

    @staticmethod
    def job_key(job_id: int) -> str:
        return f"{PREFIX}job:{job_id}"

    @staticmethod
    def results_key(screening_job_id: int, revision: int, filters: ResultFilter) -> str:
        return f"{PREFIX}results:{screening_job_id}:{revision}:{filters.cache_hash()}"

    @staticmethod
    def analytics_key(screening_job_id: int, revision: int) -> str:
        return f"{PREFIX}analytics:{screening_job_id}:{revision}"

    @staticmethod
    def candidate_key(candidate_id: str) -> str:
        return f"{PREFIX}candidate:{candidate_id}"

    # --- fail-open primitives ---

    def _get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            value = self.backend.get(key)
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None
        logger.debug(f"Cache {'hit' if value is not None else 'miss'}: {key}")
        return value

    def _set(self, key: str, value: Any, ttl: int) -> None:
        if not self.enabled:
            return
        try:
            self.backend.set(key, value, ttl)
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")

    def _load(self, key: str, model):
        """Read and validate; a corrupt entry counts as a miss."""
        raw = self._get(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except Exception as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    # --- job requirements ---

    def get_job_requirements(self, job_id: int) -> Optional[JobRequirements]:
        return self._load(self.job_key(job_id), JobRequirements)

    def set_job_requirements(self, requirements: JobRequirements) -> None:
        self._set(
            self.job_key(requirements.job_id),
            requirements.model_dump(mode="json"),
            CACHE_TTL["job_requirements"],
        )

    # --- result pages ---

    # Entries are keyed by the job's revision as read before the store query,
    # so a page read while a worker was writing is never served for a later revision.

    def get_screening_results(self, screening_job_id: int, revision: int, filters: ResultFilter) -> Optional[ResultPage]:
        return self._load(self.results_key(screening_job_id, revision, filters), ResultPage)

    def set_screening_results(self, screening_job_id: int, revision: int, filters: ResultFilter, page: ResultPage) -> None:
        self._set(
            self.results_key(screening_job_id, revision, filters),
            page.model_dump(mode="json"),
            CACHE_TTL["screening_results"],
        )

    # --- analytics ---

    def get_analytics(self, screening_job_id: int, revision: int) -> Optional[ScreeningAnalytics]:
        return self._load(self.analytics_key(screening_job_id, revision), ScreeningAnalytics)

    def set_analytics(
        self, screening_job_id: int, revision: int, analytics: ScreeningAnalytics, ttl: int = CACHE_TTL["analytics"]
    ) -> None:
        self._set(self.analytics_key(screening_job_id, revision), analytics.model_dump(mode="json"), ttl)

    # --- candidate profiles ---

    def get_candidate_profile(self, candidate_id: str) -> Optional[ParsedResume]:
        return self._load(self.candidate_key(candidate_id), ParsedResume)

    def set_candidate_profile(self, candidate_id: str, profile: ParsedResume) -> None:
        self._set(self.candidate_key(candidate_id), profile.model_dump(mode="json"), CACHE_TTL["candidate_profile"])

    # --- invalidation ---

    def invalidate(self, screening_job_id: int) -> int:
        """Delete every key namespaced under a screening job."""
        try:
            keys = self.backend.keys(f"{PREFIX}results:{screening_job_id}:")
            keys += self.backend.keys(f"{PREFIX}analytics:{screening_job_id}:")
            deleted = self.backend.delete(keys)
        except Exception as e:
            logger.error(f"Cache invalidation error for screening job {screening_job_id}: {e}")
            return 0
        logger.info(f"Cache invalidated for screening job {screening_job_id} ({deleted} keys)")
        return deleted

    def clear_all(self) -> int:
        try:
            deleted = self.backend.delete(self.backend.keys(PREFIX))
        except Exception as e:
            logger.error(f"Cache clear all error: {e}")
            return 0
        logger.warning(f"All screening caches cleared ({deleted} keys)")
        return deleted

    def stats(self) -> Dict[str, Any]:
        try:
            keys = self.backend.keys(PREFIX)
        except Exception as e:
            logger.error(f"Cache stats error: {e}")
            return {"enabled": self.enabled, "total_keys": None}
        by_namespace: Dict[str, int] = {}
        for key in keys:
            namespace = key[len(PREFIX):].split(":", 1)[0]
            by_namespace[namespace] = by_namespace.get(namespace, 0) + 1
        return {"enabled": self.enabled, "total_keys": len(keys), "namespaces": by_namespace}
