import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from screener.core.exceptions import DependencyError, NotFoundError
from screener.database import SessionLocal
from screener.models.job import Job
from screener.schemas.screening import JobRequirements
from screener.services.cache import ScreeningCache

logger = logging.getLogger(__name__)


class JobRequirementsService:
    """Read-through access to job requirements owned by the job-posting service."""

    def __init__(self, cache: ScreeningCache, session_factory: Callable[[], Session] = SessionLocal):
        self.cache = cache
        self.session_factory = session_factory

    def _load(self, job_id: int) -> Optional[JobRequirements]:
        try:
            with self.session_factory() as db:
                job = db.get(Job, job_id)
                if job is None or not job.is_active:
                    return None
                return JobRequirements(
                    job_id=job.id,
                    title=job.title or "",
                    skills_required=job.required_skills or [],
                    nice_to_have_skills=job.nice_to_have_skills or [],
                    experience_required_years=job.experience_required_years or 0,
                    strengths_expected=job.strengths_expected or [],
                    description=job.description or "",
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load requirements for job {job_id}: {e}", exc_info=True)
            raise DependencyError("Failed to load job requirements") from e

    def get(self, job_id: int) -> JobRequirements:
        cached = self.cache.get_job_requirements(job_id)
        if cached is not None:
            return cached

        requirements = self._load(job_id)
        if requirements is None:
            raise NotFoundError("Job requirements not found", details={"job_id": job_id})
        self.cache.set_job_requirements(requirements)
        return requirements

    def warm(self, job_id: int) -> bool:
        """Prime the cache ahead of a batch; a missing job is reported, not raised."""
        try:
            self.get(job_id)
            return True
        except NotFoundError:
            logger.warning(f"Job {job_id} has no requirements yet; its screening tasks will fail until it does")
        except DependencyError as e:
            logger.warning(f"Could not warm requirements for job {job_id}: {e.message}")
        return False
