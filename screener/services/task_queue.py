"""
Durable screening task queue.

Tasks live in the `screening_tasks` table. Delivery is at-least-once: a worker
claims a task with a compare-and-set UPDATE and holds a time-limited lock that
it keeps renewing; a task whose lock expires (crashed worker) becomes
claimable again, or failed if that was its last attempt.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from screener.core.clock import utc_after, utcnow
from screener.core.config import settings
from screener.database import SessionLocal
from screener.models.task import ScreeningTask, TaskStatus

logger = logging.getLogger(__name__)

CLAIM_CANDIDATES = 5


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = settings.screening.retry_attempts
    base_delay: float = settings.screening.retry_base_delay  # seconds
    backoff_multiplier: float = settings.screening.retry_backoff_multiplier

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.backoff_multiplier < 1:
            raise ValueError("base_delay must be >= 0 and backoff_multiplier >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows failed attempt number `attempt` (1-based)."""
        return self.base_delay * (self.backoff_multiplier ** max(0, attempt - 1))


@dataclass
class QueuedResume:
    screening_job_id: int
    generation: str
    job_id: int
    filename: str
    data: bytes


@dataclass
class ClaimedTask:
    id: int
    screening_job_id: int
    generation: str
    job_id: int
    filename: str
    resume_data: bytes
    attempts: int
    max_attempts: int
    retry_policy: RetryPolicy


@dataclass
class ReapedTask:
    id: int
    screening_job_id: int
    generation: str


class TaskQueue:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        lock_seconds: float = settings.screening.lock_seconds,
    ):
        self.session_factory = session_factory
        self.lock_seconds = lock_seconds

    def enqueue_many(
        self,
        items: List[QueuedResume],
        policy: RetryPolicy,
        priority: int = settings.screening.task_priority,
    ) -> List[int]:
        """Insert all tasks in one transaction; either the whole batch is queued or none of it."""
        now = utcnow()
        tasks = [
            ScreeningTask(
                screening_job_id=item.screening_job_id,
                generation=item.generation,
                job_id=item.job_id,
                filename=item.filename,
                resume_data=item.data,
                status=TaskStatus.pending,
                priority=priority,
                attempts=0,
                max_attempts=policy.max_attempts,
                base_delay=policy.base_delay,
                backoff_multiplier=policy.backoff_multiplier,
                available_at=now,
            )
            for item in items
        ]
        with self.session_factory() as db:
            db.add_all(tasks)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            ids = [t.id for t in tasks]
        logger.info(f"Enqueued {len(ids)} screening task(s)")
        return ids

    @staticmethod
    def _claimable(now):
        waiting = and_(
            ScreeningTask.status.in_([TaskStatus.pending, TaskStatus.retrying]),
            ScreeningTask.available_at <= now,
        )
        abandoned = and_(
            ScreeningTask.status == TaskStatus.processing,
            ScreeningTask.locked_until < now,
            ScreeningTask.attempts < ScreeningTask.max_attempts,
        )
        return or_(waiting, abandoned)

    @staticmethod
    def _exhausted(now):
        return and_(
            ScreeningTask.status == TaskStatus.processing,
            ScreeningTask.locked_until < now,
            ScreeningTask.attempts >= ScreeningTask.max_attempts,
        )

    def reap_exhausted(self) -> List[ReapedTask]:
        """
        Fail tasks whose lock expired during their last allowed attempt.
        Each one is returned exactly once, to whichever caller moved it to failed.
        """
        reaped = []
        with self.session_factory() as db:
            now = utcnow()
            rows = db.execute(
                select(ScreeningTask.id, ScreeningTask.screening_job_id, ScreeningTask.generation, ScreeningTask.attempts)
                .where(self._exhausted(now))
            ).all()
            for task_id, screening_job_id, generation, attempts in rows:
                failed = db.execute(
                    update(ScreeningTask)
                    .where(ScreeningTask.id == task_id, self._exhausted(now))
                    .values(
                        status=TaskStatus.failed,
                        locked_by=None,
                        locked_until=None,
                        last_error="lock expired during the final attempt",
                        resume_data=b"",
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                db.commit()
                if failed:
                    logger.error(f"Task {task_id} failed permanently: lock expired after {attempts} attempt(s)")
                    reaped.append(ReapedTask(task_id, screening_job_id, generation))
        return reaped

    def claim(self, worker_id: str) -> Optional[ClaimedTask]:
        """Lock the next available task for `worker_id`, or return None when nothing is due."""
        with self.session_factory() as db:
            now = utcnow()
            candidate_ids = db.execute(
                select(ScreeningTask.id)
                .where(self._claimable(now))
                .order_by(ScreeningTask.priority.asc(), ScreeningTask.available_at.asc(), ScreeningTask.id.asc())
                .limit(CLAIM_CANDIDATES)
            ).scalars().all()

            for task_id in candidate_ids:
                # Compare-and-set: only one worker can move a claimable row to processing
                claimed = db.execute(
                    update(ScreeningTask)
                    .where(ScreeningTask.id == task_id, self._claimable(now))
                    .values(
                        status=TaskStatus.processing,
                        locked_by=worker_id,
                        locked_until=utc_after(self.lock_seconds),
                        attempts=ScreeningTask.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                db.commit()
                if not claimed:
                    continue

                task = db.get(ScreeningTask, task_id, populate_existing=True)
                if task is None:
                    # Cascaded away by a job deletion between claim and load
                    continue
                logger.info(f"Worker {worker_id} claimed task {task.id} (attempt {task.attempts}/{task.max_attempts})")
                return ClaimedTask(
                    id=task.id,
                    screening_job_id=task.screening_job_id,
                    generation=task.generation,
                    job_id=task.job_id,
                    filename=task.filename,
                    resume_data=task.resume_data,
                    attempts=task.attempts,
                    max_attempts=task.max_attempts,
                    retry_policy=RetryPolicy(
                        max_attempts=task.max_attempts,
                        base_delay=task.base_delay,
                        backoff_multiplier=task.backoff_multiplier,
                    ),
                )
        return None

    def renew_lock(self, task_id: int, worker_id: str) -> bool:
        with self.session_factory() as db:
            renewed = db.execute(
                update(ScreeningTask)
                .where(
                    ScreeningTask.id == task_id,
                    ScreeningTask.locked_by == worker_id,
                    ScreeningTask.status == TaskStatus.processing,
                )
                .values(locked_until=utc_after(self.lock_seconds))
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        return bool(renewed)

    def complete(self, task_id: int, worker_id: str) -> bool:
        with self.session_factory() as db:
            done = db.execute(
                update(ScreeningTask)
                .where(ScreeningTask.id == task_id, ScreeningTask.locked_by == worker_id)
                .values(
                    status=TaskStatus.completed,
                    locked_by=None,
                    locked_until=None,
                    last_error=None,
                    resume_data=b"",
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        if not done:
            logger.warning(f"Task {task_id} finished by {worker_id} after losing its lock")
        return bool(done)

    def fail(self, task: ClaimedTask, worker_id: str, error: str, retryable: bool) -> Optional[TaskStatus]:
        """
        Schedule a retry with exponential backoff, or mark the task failed
        once attempts are exhausted or the error is permanent.
        Returns the new status, or None if the task is gone or no longer ours.
        """
        if retryable and task.attempts < task.max_attempts:
            delay = task.retry_policy.delay_for(task.attempts)
            values = dict(status=TaskStatus.retrying, available_at=utc_after(delay))
            new_status = TaskStatus.retrying
        else:
            delay = None
            values = dict(status=TaskStatus.failed, resume_data=b"")
            new_status = TaskStatus.failed

        with self.session_factory() as db:
            updated = db.execute(
                update(ScreeningTask)
                .where(ScreeningTask.id == task.id, ScreeningTask.locked_by == worker_id)
                .values(locked_by=None, locked_until=None, last_error=error[:2000], **values)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()

        if not updated:
            logger.warning(f"Task {task.id} could not be marked {new_status.value}: lock lost or task deleted")
            return None
        if delay is not None:
            logger.warning(
                f"Task {task.id} attempt {task.attempts}/{task.max_attempts} failed ({error}), retrying in {delay:.1f}s"
            )
        else:
            logger.error(f"Task {task.id} failed permanently after {task.attempts} attempt(s): {error}")
        return new_status

    def stats(self, screening_job_id: Optional[int] = None) -> Dict[str, int]:
        with self.session_factory() as db:
            query = select(ScreeningTask.status, func.count(ScreeningTask.id)).group_by(ScreeningTask.status)
            if screening_job_id is not None:
                query = query.where(ScreeningTask.screening_job_id == screening_job_id)
            counts = {status.value: 0 for status in TaskStatus}
            for status, count in db.execute(query).all():
                counts[TaskStatus(status).value] = count
        return counts
