import logging
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from sqlalchemy import case, delete, func, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from screener.core.exceptions import AppException, DependencyError, NotFoundError
from screener.database import SessionLocal
from screener.models.screening import ScreeningJob, ScreeningResult, ScreeningStatus
from screener.models.task import ScreeningTask
from screener.schemas.screening import (
    NewScreeningResult, ResultFilter, ResultPage, ScreeningAnalytics,
    ScreeningJobPage, ScreeningJobRecord, ScreeningResultRecord,
)
from screener.services.ranking import MODERATE_MATCH_THRESHOLD, STRONG_MATCH_THRESHOLD

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "match_percentage": ScreeningResult.match_percentage,
    "created_at": ScreeningResult.created_at,
    "candidate_id": ScreeningResult.candidate_id,
}


class ResultStore:
    """
    Persistence for screening jobs and their results.
    Every public method runs in its own transaction and returns typed records,
    never live ORM objects.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def _unit_of_work(self, action: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except AppException:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to {action}: {e}", exc_info=True)
            raise DependencyError(f"Failed to {action}") from e
        finally:
            db.close()

    @staticmethod
    def _require_job(db: Session, screening_job_id: int) -> ScreeningJob:
        job = db.get(ScreeningJob, screening_job_id)
        if job is None:
            raise NotFoundError("Screening job not found", details={"screening_job_id": screening_job_id})
        return job

    # --- jobs ---

    def create_screening_job(self, employer_id: str, job_id: int, total_resumes: int) -> ScreeningJobRecord:
        with self._unit_of_work("create screening job") as db:
            job = ScreeningJob(
                employer_id=employer_id,
                job_id=job_id,
                status=ScreeningStatus.processing,
                total_resumes=total_resumes,
                processed_count=0,
                failed_count=0,
                generation=uuid.uuid4().hex,
            )
            db.add(job)
            db.flush()
            db.refresh(job)
            record = ScreeningJobRecord.model_validate(job)
        logger.info(f"Created screening job {record.id} for job {job_id} ({total_resumes} resumes)")
        return record

    def get_screening_job(self, screening_job_id: int) -> ScreeningJobRecord:
        with self._unit_of_work("fetch screening job") as db:
            return ScreeningJobRecord.model_validate(self._require_job(db, screening_job_id))

    def list_employer_screening_jobs(self, employer_id: str, limit: int, offset: int) -> ScreeningJobPage:
        with self._unit_of_work("fetch screening jobs") as db:
            total = db.execute(
                select(func.count(ScreeningJob.id)).where(ScreeningJob.employer_id == employer_id)
            ).scalar_one()
            jobs = db.execute(
                select(ScreeningJob)
                .where(ScreeningJob.employer_id == employer_id)
                .order_by(ScreeningJob.created_at.desc(), ScreeningJob.id.desc())
                .limit(limit)
                .offset(offset)
            ).scalars().all()
            return ScreeningJobPage(jobs=[ScreeningJobRecord.model_validate(j) for j in jobs], total=total)

    def mark_job_failed(self, screening_job_id: int) -> None:
        with self._unit_of_work("mark screening job failed") as db:
            db.execute(
                update(ScreeningJob)
                .where(ScreeningJob.id == screening_job_id)
                .values(status=ScreeningStatus.failed)
            )

    def delete_screening_job(self, screening_job_id: int) -> int:
        """Remove the job, its results and any queued tasks in one transaction."""
        with self._unit_of_work("delete screening job") as db:
            self._require_job(db, screening_job_id)
            removed = db.execute(
                delete(ScreeningResult).where(ScreeningResult.screening_job_id == screening_job_id)
            ).rowcount
            db.execute(delete(ScreeningTask).where(ScreeningTask.screening_job_id == screening_job_id))
            db.execute(delete(ScreeningJob).where(ScreeningJob.id == screening_job_id))
        logger.info(f"Deleted screening job {screening_job_id} and {removed} results")
        return removed

    # --- progress counters ---

    @staticmethod
    def _increment(db: Session, screening_job_id: int, column) -> bool:
        """
        Single-statement increment; the database applies it atomically so
        concurrent workers never lose updates. The job completes in the same
        statement once every resume is accounted for.
        """
        accounted = ScreeningJob.processed_count + ScreeningJob.failed_count
        result = db.execute(
            update(ScreeningJob)
            .where(ScreeningJob.id == screening_job_id, accounted < ScreeningJob.total_resumes)
            .values(
                {
                    column: column + 1,
                    ScreeningJob.status: case(
                        (
                            accounted + 1 >= ScreeningJob.total_resumes,
                            literal(ScreeningStatus.completed, ScreeningJob.__table__.c.status.type),
                        ),
                        else_=ScreeningJob.status,
                    ),
                }
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def increment_processed_count(self, screening_job_id: int) -> bool:
        with self._unit_of_work("increment processed count") as db:
            return self._increment(db, screening_job_id, ScreeningJob.processed_count)

    def record_task_failure(self, screening_job_id: int, generation: str, task_id: Optional[int] = None) -> bool:
        with self._unit_of_work("record task failure") as db:
            if not self._generation_matches(db, screening_job_id, generation):
                return False
            if not self._mark_counted(db, task_id):
                return False
            return self._increment(db, screening_job_id, ScreeningJob.failed_count)

    @staticmethod
    def _mark_counted(db: Session, task_id: Optional[int]) -> bool:
        """
        Flip the task's `counted` flag; False when it was already set, so a
        redelivered task never moves the job's counters twice.
        """
        if task_id is None:
            return True
        return bool(db.execute(
            update(ScreeningTask)
            .where(ScreeningTask.id == task_id, ScreeningTask.counted.is_(False))
            .values(counted=True)
            .execution_options(synchronize_session=False)
        ).rowcount)

    @staticmethod
    def _bump_revision(db: Session, screening_job_id: int) -> None:
        db.execute(
            update(ScreeningJob)
            .where(ScreeningJob.id == screening_job_id)
            .values(revision=ScreeningJob.revision + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _generation_matches(db: Session, screening_job_id: int, generation: str) -> bool:
        return db.execute(
            select(ScreeningJob.id).where(
                ScreeningJob.id == screening_job_id, ScreeningJob.generation == generation
            )
        ).first() is not None

    # --- results ---

    def save_result(
        self,
        screening_job_id: int,
        generation: str,
        result: NewScreeningResult,
        task_id: Optional[int] = None,
    ) -> ScreeningResultRecord:
        """
        Upsert the candidate's result and count the task as processed.
        Refuses to write for a job that was deleted (or recreated) after the
        task was queued. A task that was already counted only updates its result.
        """
        fields = result.model_dump(exclude={"candidate_id"})
        with self._unit_of_work("store screening result") as db:
            if not self._generation_matches(db, screening_job_id, generation):
                raise NotFoundError(
                    "Screening job no longer exists",
                    details={"screening_job_id": screening_job_id},
                )
            row = self._upsert_result(db, screening_job_id, result.candidate_id, fields)
            self._bump_revision(db, screening_job_id)
            if self._mark_counted(db, task_id):
                self._increment(db, screening_job_id, ScreeningJob.processed_count)
            db.flush()
            record = ScreeningResultRecord.model_validate(row)
        return record

    @staticmethod
    def _find_result(db: Session, screening_job_id: int, candidate_id: str):
        return db.execute(
            select(ScreeningResult).where(
                ScreeningResult.screening_job_id == screening_job_id,
                ScreeningResult.candidate_id == candidate_id,
            )
        ).scalar_one_or_none()

    def _upsert_result(self, db: Session, screening_job_id: int, candidate_id: str, fields: dict) -> ScreeningResult:
        existing = self._find_result(db, screening_job_id, candidate_id)
        if existing is not None:
            logger.info(f"Replacing existing result for candidate {candidate_id} in screening job {screening_job_id}")
            for name, value in fields.items():
                setattr(existing, name, value)
            return existing

        # A concurrent insert of the same candidate violates the unique constraint;
        # the IntegrityError surfaces as a DependencyError and the retry takes the update path.
        row = ScreeningResult(screening_job_id=screening_job_id, candidate_id=candidate_id, **fields)
        db.add(row)
        db.flush()
        db.refresh(row)
        return row

    def get_screening_results(self, screening_job_id: int, filters: ResultFilter) -> ResultPage:
        with self._unit_of_work("fetch screening results") as db:
            conditions = [ScreeningResult.screening_job_id == screening_job_id]
            if filters.min_match_percentage is not None:
                conditions.append(ScreeningResult.match_percentage >= filters.min_match_percentage)
            if filters.shortlisted is not None:
                conditions.append(ScreeningResult.shortlisted == filters.shortlisted)

            total = db.execute(select(func.count(ScreeningResult.id)).where(*conditions)).scalar_one()

            column = SORTABLE_COLUMNS[filters.sort_by or "match_percentage"]
            direction = column.desc() if filters.sort_desc else column.asc()
            rows = db.execute(
                select(ScreeningResult)
                .where(*conditions)
                .order_by(direction, ScreeningResult.id.asc())
                .limit(filters.limit)
                .offset(filters.offset)
            ).scalars().all()

            return ResultPage(results=[ScreeningResultRecord.model_validate(r) for r in rows], total=total)

    def save_shortlist(self, screening_job_id: int, result_ids: List[int]) -> int:
        """Flag exactly `result_ids` (scoped to the job); other results are left as they are."""
        with self._unit_of_work("save shortlist") as db:
            self._require_job(db, screening_job_id)
            updated = db.execute(
                update(ScreeningResult)
                .where(
                    ScreeningResult.screening_job_id == screening_job_id,
                    ScreeningResult.id.in_(result_ids),
                )
                .values(shortlisted=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            self._bump_revision(db, screening_job_id)
        if updated < len(set(result_ids)):
            logger.warning(
                f"Shortlist for screening job {screening_job_id}: "
                f"{len(set(result_ids)) - updated} id(s) did not belong to the job"
            )
        return updated

    # --- analytics ---

    def get_screening_analytics(
        self,
        screening_job_id: int,
        strong_threshold: int = STRONG_MATCH_THRESHOLD,
        moderate_threshold: int = MODERATE_MATCH_THRESHOLD,
    ) -> ScreeningAnalytics:
        match = ScreeningResult.match_percentage
        with self._unit_of_work("fetch screening analytics") as db:
            row = db.execute(
                select(
                    func.count(ScreeningResult.id),
                    func.avg(match),
                    func.max(match),
                    func.min(match),
                    func.sum(case((match >= strong_threshold, 1), else_=0)),
                    func.sum(case(((match >= moderate_threshold) & (match < strong_threshold), 1), else_=0)),
                    func.sum(case((match < moderate_threshold, 1), else_=0)),
                ).where(ScreeningResult.screening_job_id == screening_job_id)
            ).one()

        total, avg, max_match, min_match, strong, moderate, weak = row
        return ScreeningAnalytics(
            total_screened=total or 0,
            average_match=round(float(avg), 2) if avg is not None else 0.0,
            max_match=max_match,
            min_match=min_match,
            strong_matches=strong or 0,
            moderate_matches=moderate or 0,
            weak_matches=weak or 0,
        )
