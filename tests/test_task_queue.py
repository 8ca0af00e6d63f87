from datetime import timedelta

import pytest
from sqlalchemy import update

from screener.core.clock import utcnow
from screener.models.task import ScreeningTask, TaskStatus
from screener.services.task_queue import QueuedResume, RetryPolicy, TaskQueue


@pytest.fixture
def screening_job(store):
    return store.create_screening_job("employer-1", job_id=1, total_resumes=3)


def _enqueue(queue, job, count=1, policy=None, priority=5):
    items = [QueuedResume(job.id, job.generation, job.job_id, f"r{i}.txt", b"resume") for i in range(count)]
    return queue.enqueue_many(items, policy or RetryPolicy(max_attempts=3, base_delay=0, backoff_multiplier=1), priority)


def test_retry_policy_backoff():
    policy = RetryPolicy(max_attempts=3, base_delay=2, backoff_multiplier=2)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2, 4, 8]


@pytest.mark.parametrize("kwargs", [
    {"max_attempts": 0},
    {"base_delay": -1},
    {"backoff_multiplier": 0.5},
])
def test_retry_policy_rejects_nonsense(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_claim_locks_task_once(queue, screening_job):
    _enqueue(queue, screening_job)

    task = queue.claim("w1")
    assert task is not None
    assert task.attempts == 1
    assert task.resume_data == b"resume"
    assert queue.claim("w2") is None


def test_claim_respects_priority(queue, screening_job):
    _enqueue(queue, screening_job, priority=9)
    urgent_id = _enqueue(queue, screening_job, priority=1)[0]
    assert queue.claim("w1").id == urgent_id


def test_complete_requires_the_lock(queue, screening_job):
    _enqueue(queue, screening_job)
    task = queue.claim("w1")

    assert queue.complete(task.id, "someone-else") is False
    assert queue.complete(task.id, "w1") is True
    assert queue.stats(screening_job.id)["completed"] == 1


def test_retryable_failure_backs_off(session_factory, screening_job):
    queue = TaskQueue(session_factory)
    _enqueue(queue, screening_job, policy=RetryPolicy(max_attempts=3, base_delay=60, backoff_multiplier=2))
    task = queue.claim("w1")

    assert queue.fail(task, "w1", "timeout", retryable=True) == TaskStatus.retrying
    # Not due again for a minute
    assert queue.claim("w1") is None
    with session_factory() as db:
        row = db.get(ScreeningTask, task.id)
        assert row.available_at > utcnow() + timedelta(seconds=50)
        assert row.last_error == "timeout"


def test_exhausted_attempts_fail_permanently(queue, screening_job):
    _enqueue(queue, screening_job, policy=RetryPolicy(max_attempts=2, base_delay=0, backoff_multiplier=1))

    first = queue.claim("w1")
    assert queue.fail(first, "w1", "boom", retryable=True) == TaskStatus.retrying
    second = queue.claim("w1")
    assert second.attempts == 2
    assert queue.fail(second, "w1", "boom", retryable=True) == TaskStatus.failed
    assert queue.claim("w1") is None


def test_permanent_error_is_not_retried(queue, screening_job):
    _enqueue(queue, screening_job)
    task = queue.claim("w1")
    assert queue.fail(task, "w1", "no requirements", retryable=False) == TaskStatus.failed
    assert queue.stats()["failed"] == 1


def test_expired_lock_is_redelivered(queue, session_factory, screening_job):
    _enqueue(queue, screening_job)
    task = queue.claim("crashed-worker")

    with session_factory() as db:
        db.execute(update(ScreeningTask).values(locked_until=utcnow() - timedelta(seconds=1)))
        db.commit()

    again = queue.claim("w2")
    assert again.id == task.id
    assert again.attempts == 2
    # The original holder can no longer finish it
    assert queue.complete(task.id, "crashed-worker") is False
    assert queue.renew_lock(task.id, "crashed-worker") is False
    assert queue.renew_lock(task.id, "w2") is True



def test_expired_lock_on_last_attempt_is_failed_not_redelivered(queue, session_factory, screening_job):
    _enqueue(queue, screening_job, policy=RetryPolicy(max_attempts=1, base_delay=0, backoff_multiplier=1))
    task = queue.claim("crashed-worker")

    with session_factory() as db:
        db.execute(update(ScreeningTask).values(locked_until=utcnow() - timedelta(seconds=1)))
        db.commit()

    assert queue.claim("w2") is None
    reaped = queue.reap_exhausted()
    assert [(r.id, r.screening_job_id, r.generation) for r in reaped] == [
        (task.id, screening_job.id, screening_job.generation)
    ]
    # Only reported once
    assert queue.reap_exhausted() == []
    assert queue.stats(screening_job.id)["failed"] == 1
    assert queue.complete(task.id, "crashed-worker") is False
    with session_factory() as db:
        row = db.get(ScreeningTask, task.id)
        assert row.resume_data == b""
        assert "lock expired" in row.last_error


def test_live_lock_on_last_attempt_is_left_alone(queue, screening_job):
    _enqueue(queue, screening_job, policy=RetryPolicy(max_attempts=1, base_delay=0, backoff_multiplier=1))
    queue.claim("w1")
    assert queue.reap_exhausted() == []
    assert queue.stats(screening_job.id)["processing"] == 1


def test_stats_counts_by_status(queue, screening_job):
    _enqueue(queue, screening_job, count=3)
    queue.claim("w1")
    stats = queue.stats(screening_job.id)
    assert stats["pending"] == 2
    assert stats["processing"] == 1
