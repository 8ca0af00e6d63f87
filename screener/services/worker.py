"""
Screening workers.

A pool of threads pulls tasks from the durable queue. Each task is one resume:
parse, fetch requirements, analyze, score, store. The lock on a claimed task
is renewed in the background while it is being processed.
"""
import hashlib
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Protocol

from screener.core.config import settings
from screener.core.exceptions import AppException, NotFoundError, ValidationError
from screener.core.logging import request_id_var
from screener.models.task import TaskStatus
from screener.schemas.screening import (
    CandidateAnalysis, NewScreeningResult, ParsedResume, ResumeAnalysis, ScreeningResultRecord,
)
from screener.services.cache import ScreeningCache
from screener.services.job_requirements import JobRequirementsService
from screener.services.ranking import RankingEngine
from screener.services.result_store import ResultStore
from screener.services.task_queue import ClaimedTask, TaskQueue

logger = logging.getLogger(__name__)


class Parser(Protocol):
    def parse(self, buffer: bytes, filename: str) -> ParsedResume: ...


class Analyzer(Protocol):
    def analyze(self, full_text: str, job_title: str, description: str) -> ResumeAnalysis: ...


def resume_digest(buffer: bytes) -> str:
    return f"resume-{hashlib.sha256(buffer).hexdigest()[:24]}"


def is_retryable(exc: Exception) -> bool:
    """Bad input and vanished jobs won't fix themselves; everything else gets another attempt."""
    return not isinstance(exc, (NotFoundError, ValidationError))


def _error_message(exc: Exception) -> str:
    if isinstance(exc, AppException):
        return f"{exc.error_code}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


class ScreeningTaskProcessor:
    def __init__(
        self,
        parser: Parser,
        analyzer: Analyzer,
        requirements: JobRequirementsService,
        ranking: RankingEngine,
        store: ResultStore,
        cache: ScreeningCache,
    ):
        self.parser = parser
        self.analyzer = analyzer
        self.requirements = requirements
        self.ranking = ranking
        self.store = store
        self.cache = cache

    def _parse(self, task: ClaimedTask) -> ParsedResume:
        # Keyed by content so a retried task skips text extraction
        digest = resume_digest(task.resume_data)
        profile = self.cache.get_candidate_profile(digest)
        if profile is None:
            profile = self.parser.parse(task.resume_data, task.filename)
            self.cache.set_candidate_profile(digest, profile)
        return profile

    def process(self, task: ClaimedTask) -> ScreeningResultRecord:
        profile = self._parse(task)
        candidate_id = profile.email or resume_digest(task.resume_data)
        requirements = self.requirements.get(task.job_id)

        matched, missing = self.ranking.match_skills(
            profile.skills, requirements.skills_required, requirements.nice_to_have_skills
        )
        ai = self.analyzer.analyze(profile.full_text, requirements.title, requirements.description)

        analysis = CandidateAnalysis(
            skills_matched=matched,
            skills_missing=missing,
            experience_years=profile.experience_years,
            strengths=ai.strengths,
            gaps=ai.gaps,
            recommendations=ai.recommendations,
            overall_match=self.ranking.calculate_overall_match(
                matched, requirements.skills_required, requirements.nice_to_have_skills
            ),
        )
        score = self.ranking.calculate_screening_score(analysis, requirements)

        record = self.store.save_result(
            task.screening_job_id,
            task.generation,
            NewScreeningResult(
                candidate_id=candidate_id,
                filename=task.filename,
                match_percentage=score,
                match_category=self.ranking.categorize_by_match(score),
                skills_matched=analysis.skills_matched,
                skills_missing=analysis.skills_missing,
                strengths=analysis.strengths,
                improvement_areas=analysis.gaps,
                recommendations=analysis.recommendations,
            ),
            task_id=task.id,
        )
        self.cache.invalidate(task.screening_job_id)
        logger.info(
            f"Screened {task.filename} for screening job {task.screening_job_id}: "
            f"{score}% ({record.match_category})"
        )
        return record


class LockRenewer(threading.Thread):
    """Heartbeat that keeps a claimed task's lock alive until stopped."""

    def __init__(self, queue: TaskQueue, task_id: int, worker_id: str, interval: float):
        super().__init__(name=f"lock-renewer-{task_id}", daemon=True)
        self.queue = queue
        self.task_id = task_id
        self.worker_id = worker_id
        self.interval = interval
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            try:
                if not self.queue.renew_lock(self.task_id, self.worker_id):
                    logger.warning(f"Lost lock on task {self.task_id}; another worker may pick it up")
                    return
            except Exception as e:
                logger.error(f"Lock renewal failed for task {self.task_id}: {e}")

    def stop(self):
        self._stopped.set()
        if self.is_alive():
            self.join(timeout=self.interval)


class WorkerPool:
    def __init__(
        self,
        queue: TaskQueue,
        processor: ScreeningTaskProcessor,
        store: ResultStore,
        concurrency: int = settings.screening.worker_concurrency,
        lock_renew_seconds: float = settings.screening.lock_renew_seconds,
        poll_interval: float = settings.screening.poll_interval_seconds,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.processor = processor
        self.store = store
        self.concurrency = concurrency
        self.lock_renew_seconds = lock_renew_seconds
        self.poll_interval = poll_interval
        self.instance_id = uuid.uuid4().hex[:8]
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def _worker_id(self, index: int) -> str:
        return f"worker-{self.instance_id}-{index}"

    # --- single task ---

    def _handle(self, task: ClaimedTask, worker_id: str) -> TaskStatus:
        token = request_id_var.set(f"task-{task.id}")
        renewer = LockRenewer(self.queue, task.id, worker_id, self.lock_renew_seconds)
        renewer.start()
        try:
            self.processor.process(task)
        except Exception as e:
            status = self.queue.fail(task, worker_id, _error_message(e), retryable=is_retryable(e))
            if status == TaskStatus.failed:
                try:
                    self.store.record_task_failure(task.screening_job_id, task.generation, task.id)
                except AppException as record_error:
                    logger.error(f"Could not count failed task {task.id}: {record_error.message}")
            return status or TaskStatus.failed
        else:
            self.queue.complete(task.id, worker_id)
            return TaskStatus.completed
        finally:
            renewer.stop()
            request_id_var.reset(token)

    def _reap(self):
        """Count tasks that ran out of attempts while their worker was gone."""
        for reaped in self.queue.reap_exhausted():
            try:
                self.store.record_task_failure(reaped.screening_job_id, reaped.generation, reaped.id)
            except AppException as record_error:
                logger.error(f"Could not count failed task {reaped.id}: {record_error.message}")

    def _next_task(self, worker_id: str) -> Optional[ClaimedTask]:
        self._reap()
        return self.queue.claim(worker_id)

    # --- background mode ---

    def _handle_safely(self, task: ClaimedTask, worker_id: str):
        try:
            self._handle(task, worker_id)
        except Exception as e:
            # The lock expires and the task is redelivered
            logger.error(f"Critical error handling task {task.id}: {e}", exc_info=True)

    def _loop(self, worker_id: str):
        logger.info(f"{worker_id} started")
        while not self._stop.is_set():
            try:
                task = self._next_task(worker_id)
            except Exception as e:
                logger.error(f"{worker_id} could not claim a task: {e}")
                task = None
            if task is None:
                self._stop.wait(self.poll_interval)
                continue
            self._handle_safely(task, worker_id)
        logger.info(f"{worker_id} stopped")

    def start(self):
        if self._threads:
            return
        self._stop.clear()
        for index in range(self.concurrency):
            thread = threading.Thread(target=self._loop, args=(self._worker_id(index),), daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Worker pool started with {self.concurrency} worker(s)")

    def stop(self, timeout: Optional[float] = None):
        """Signal workers to exit after their current task and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Worker pool stopped")

    # --- drain mode ---

    def run_pending(self, max_tasks: Optional[int] = None) -> int:
        """
        Process tasks that are due right now and return how many were handled.
        Tasks waiting out a retry backoff are left for a later call.
        """
        budget = {"left": max_tasks}
        budget_lock = threading.Lock()

        def take() -> bool:
            with budget_lock:
                if budget["left"] is None:
                    return True
                if budget["left"] <= 0:
                    return False
                budget["left"] -= 1
                return True

        def drain(worker_id: str) -> int:
            handled = 0
            while take():
                task = self._next_task(worker_id)
                if task is None:
                    break
                self._handle_safely(task, worker_id)
                handled += 1
            return handled

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = [pool.submit(drain, self._worker_id(i)) for i in range(self.concurrency)]
            total = sum(future.result() for future in as_completed(futures))
        logger.info(f"Drained {total} screening task(s)")
        return total
