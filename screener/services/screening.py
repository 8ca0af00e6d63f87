"""
ScreeningCoordinator: the single entry point for bulk screening.

Validates and enqueues batches, then serves progress, results, analytics,
shortlisting and deletion. Reads go through the cache with the store as
fallback; every write invalidates the job's cache namespace.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from screener.core.config import settings
from screener.core.exceptions import DependencyError, NotFoundError, ValidationError
from screener.database import SessionLocal
from screener.schemas.screening import (
    ResultFilter, ResultPage, ResumeUpload, ScreeningAnalytics,
    ScreeningJobPage, ScreeningJobRecord,
)
from screener.services.analyzer import OpenRouterAnalyzer
from screener.services.cache import DatabaseCacheBackend, ScreeningCache
from screener.services.job_requirements import JobRequirementsService
from screener.services.ranking import RankingEngine
from screener.services.result_store import ResultStore
from screener.services.resume_parser import ResumeParser, validate_filename
from screener.services.task_queue import QueuedResume, RetryPolicy, TaskQueue
from screener.services.worker import Analyzer, Parser, ScreeningTaskProcessor, WorkerPool

logger = logging.getLogger(__name__)


class ScreeningCoordinator:
    def __init__(
        self,
        store: ResultStore,
        queue: TaskQueue,
        cache: ScreeningCache,
        requirements: JobRequirementsService,
        ranking: RankingEngine,
        retry_policy: Optional[RetryPolicy] = None,
        max_resumes: int = settings.screening.max_resumes,
        max_resume_bytes: int = settings.screening.max_resume_bytes,
    ):
        self.store = store
        self.queue = queue
        self.cache = cache
        self.requirements = requirements
        self.ranking = ranking
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_resumes = max_resumes
        self.max_resume_bytes = max_resume_bytes

    # --- intake ---

    def _validate_batch(self, resumes: List[ResumeUpload]) -> None:
        if not resumes:
            raise ValidationError("At least one resume is required")
        if len(resumes) > self.max_resumes:
            raise ValidationError(
                f"A batch may contain at most {self.max_resumes} resumes",
                details={"received": len(resumes)},
            )
        for resume in resumes:
            size = len(resume.buffer)
            if size == 0:
                raise ValidationError("Resume file is empty", details={"filename": resume.filename})
            if size > self.max_resume_bytes:
                raise ValidationError(
                    f"Resume exceeds the {self.max_resume_bytes // (1024 * 1024)}MB limit",
                    details={"filename": resume.filename, "size": size},
                )
            validate_filename(resume.filename)

    def initiate_bulk_screening(
        self, employer_id: str, job_id: int, resumes: List[ResumeUpload]
    ) -> ScreeningJobRecord:
        """Create the screening job and queue one task per resume; processing happens in the workers."""
        self._validate_batch(resumes)

        job = self.store.create_screening_job(employer_id, job_id, len(resumes))
        self.requirements.warm(job_id)

        items = [
            QueuedResume(
                screening_job_id=job.id,
                generation=job.generation,
                job_id=job_id,
                filename=resume.filename,
                data=resume.buffer,
            )
            for resume in resumes
        ]
        try:
            self.queue.enqueue_many(items, self.retry_policy, priority=settings.screening.task_priority)
        except SQLAlchemyError as e:
            logger.error(f"Failed to enqueue resumes for screening job {job.id}: {e}", exc_info=True)
            self.store.mark_job_failed(job.id)
            raise DependencyError("Failed to queue resumes for screening") from e

        logger.info(f"Bulk screening {job.id} started by employer {employer_id}: {len(resumes)} resumes for job {job_id}")
        return job

    # --- progress ---

    def get_screening_job(self, screening_job_id: int, employer_id: Optional[str] = None) -> ScreeningJobRecord:
        job = self.store.get_screening_job(screening_job_id)
        if employer_id is not None and job.employer_id != employer_id:
            # Another employer's job is indistinguishable from a missing one
            raise NotFoundError("Screening job not found", details={"screening_job_id": screening_job_id})
        return job

    def list_employer_screening_jobs(
        self, employer_id: str, limit: int = settings.screening.default_page_size, offset: int = 0
    ) -> ScreeningJobPage:
        if not 1 <= limit <= settings.screening.max_page_size or offset < 0:
            raise ValidationError("Invalid pagination parameters", details={"limit": limit, "offset": offset})
        return self.store.list_employer_screening_jobs(employer_id, limit, offset)

    # --- results ---

    def get_screening_results(
        self,
        screening_job_id: int,
        filters: Optional[ResultFilter] = None,
        employer_id: Optional[str] = None,
    ) -> ResultPage:
        filters = filters or ResultFilter()
        revision = self.get_screening_job(screening_job_id, employer_id).revision

        cached = self.cache.get_screening_results(screening_job_id, revision, filters)
        if cached is not None:
            return cached

        page = self.store.get_screening_results(screening_job_id, filters)
        self.cache.set_screening_results(screening_job_id, revision, filters, page)
        return page

    def get_screening_analytics(self, screening_job_id: int, employer_id: Optional[str] = None) -> ScreeningAnalytics:
        revision = self.get_screening_job(screening_job_id, employer_id).revision

        cached = self.cache.get_analytics(screening_job_id, revision)
        if cached is not None:
            return cached

        analytics = self.store.get_screening_analytics(
            screening_job_id,
            strong_threshold=self.ranking.strong_threshold,
            moderate_threshold=self.ranking.moderate_threshold,
        )
        self.cache.set_analytics(screening_job_id, revision, analytics)
        return analytics

    # --- mutations ---

    def save_shortlist(self, screening_job_id: int, result_ids: List[int], employer_id: Optional[str] = None) -> int:
        if not result_ids:
            raise ValidationError("result_ids must not be empty")
        self.get_screening_job(screening_job_id, employer_id)

        updated = self.store.save_shortlist(screening_job_id, result_ids)
        self.cache.invalidate(screening_job_id)
        logger.info(f"Shortlisted {updated} candidate(s) in screening job {screening_job_id}")
        return updated

    def delete_screening_job(self, screening_job_id: int, employer_id: Optional[str] = None) -> int:
        self.get_screening_job(screening_job_id, employer_id)

        removed = self.store.delete_screening_job(screening_job_id)
        self.cache.invalidate(screening_job_id)
        return removed


@dataclass
class ScreeningServices:
    coordinator: ScreeningCoordinator
    worker_pool: WorkerPool
    cache: ScreeningCache
    queue: TaskQueue


def build_screening_services(
    session_factory: Callable[[], Session] = SessionLocal,
    parser: Optional[Parser] = None,
    analyzer: Optional[Analyzer] = None,
    concurrency: int = settings.screening.worker_concurrency,
    retry_policy: Optional[RetryPolicy] = None,
) -> ScreeningServices:
    """Wire the coordinator and worker pool over one database."""
    store = ResultStore(session_factory)
    queue = TaskQueue(session_factory)
    cache = ScreeningCache(DatabaseCacheBackend(session_factory))
    requirements = JobRequirementsService(cache, session_factory)
    ranking = RankingEngine()

    coordinator = ScreeningCoordinator(store, queue, cache, requirements, ranking, retry_policy=retry_policy)
    processor = ScreeningTaskProcessor(
        parser=parser or ResumeParser(),
        analyzer=analyzer or OpenRouterAnalyzer(),
        requirements=requirements,
        ranking=ranking,
        store=store,
        cache=cache,
    )
    pool = WorkerPool(queue, processor, store, concurrency=concurrency)
    return ScreeningServices(coordinator=coordinator, worker_pool=pool, cache=cache, queue=queue)
