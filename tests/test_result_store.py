import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from screener.core.exceptions import NotFoundError
from screener.database import build_engine, init_db
from screener.models.screening import ScreeningResult, ScreeningStatus
from screener.models.task import ScreeningTask
from screener.schemas.screening import NewScreeningResult, ResultFilter
from screener.services.result_store import ResultStore
from screener.services.task_queue import QueuedResume, RetryPolicy, TaskQueue


def _result(candidate_id, match, **fields):
    return NewScreeningResult(
        candidate_id=candidate_id,
        match_percentage=match,
        match_category="strong" if match >= 70 else "moderate" if match >= 50 else "weak",
        **fields,
    )


def test_create_screening_job_starts_processing(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=3)
    assert job.status == ScreeningStatus.processing
    assert job.total_resumes == 3
    assert job.processed_count == 0
    assert job.generation


def test_unknown_job_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get_screening_job(999)


def test_save_result_counts_progress_and_completes_job(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=2)

    store.save_result(job.id, job.generation, _result("a@example.com", 80))
    assert store.get_screening_job(job.id).processed_count == 1
    assert store.get_screening_job(job.id).status == ScreeningStatus.processing

    store.save_result(job.id, job.generation, _result("b@example.com", 40))
    finished = store.get_screening_job(job.id)
    assert finished.processed_count == 2
    assert finished.status == ScreeningStatus.completed


def test_match_percentage_is_clamped(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=1)
    record = store.save_result(job.id, job.generation, _result("a@example.com", 180))
    assert record.match_percentage == 100


def test_reprocessed_candidate_is_upserted(store, session_factory):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=2)
    first = store.save_result(job.id, job.generation, _result("a@example.com", 40))
    second = store.save_result(job.id, job.generation, _result("a@example.com", 75, strengths=["sql"]))

    assert first.id == second.id
    assert second.match_percentage == 75
    with session_factory() as db:
        count = db.execute(select(func.count(ScreeningResult.id))).scalar_one()
    assert count == 1


def test_each_task_is_counted_once(store, session_factory):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=3)
    first, second, third = TaskQueue(session_factory).enqueue_many(
        [QueuedResume(job.id, job.generation, 7, f"r{i}.txt", b"resume") for i in range(3)], RetryPolicy()
    )

    store.save_result(job.id, job.generation, _result("a@example.com", 40), task_id=first)
    store.save_result(job.id, job.generation, _result("a@example.com", 60), task_id=first)
    assert store.record_task_failure(job.id, job.generation, second) is True
    assert store.record_task_failure(job.id, job.generation, second) is False

    progress = store.get_screening_job(job.id)
    assert progress.processed_count == 1
    assert progress.failed_count == 1
    assert progress.status == ScreeningStatus.processing

    store.save_result(job.id, job.generation, _result("b@example.com", 80), task_id=third)
    finished = store.get_screening_job(job.id)
    assert finished.processed_count == 2
    assert finished.status == ScreeningStatus.completed


def test_result_writes_bump_the_revision(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=2)
    assert job.revision == 0

    record = store.save_result(job.id, job.generation, _result("a@example.com", 80))
    assert store.get_screening_job(job.id).revision == 1
    store.save_shortlist(job.id, [record.id])
    assert store.get_screening_job(job.id).revision == 2


def test_processed_count_never_exceeds_total(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=1)
    assert store.increment_processed_count(job.id) is True
    assert store.increment_processed_count(job.id) is False
    assert store.get_screening_job(job.id).processed_count == 1


def test_failed_tasks_also_complete_the_job(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=2)
    store.save_result(job.id, job.generation, _result("a@example.com", 80))
    assert store.record_task_failure(job.id, job.generation) is True

    finished = store.get_screening_job(job.id)
    assert finished.failed_count == 1
    assert finished.status == ScreeningStatus.completed


def test_stale_generation_cannot_write(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=1)
    with pytest.raises(NotFoundError):
        store.save_result(job.id, "stale-generation", _result("a@example.com", 80))
    assert store.record_task_failure(job.id, "stale-generation") is False
    assert store.get_screening_job(job.id).processed_count == 0


def test_delete_cascades_results_and_tasks(store, session_factory):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=2)
    TaskQueue(session_factory).enqueue_many(
        [QueuedResume(job.id, job.generation, 7, "b.txt", b"resume")], RetryPolicy()
    )
    store.save_result(job.id, job.generation, _result("a@example.com", 80))

    assert store.delete_screening_job(job.id) == 1
    with session_factory() as db:
        assert db.execute(select(func.count(ScreeningResult.id))).scalar_one() == 0
        assert db.execute(select(func.count(ScreeningTask.id))).scalar_one() == 0
    with pytest.raises(NotFoundError):
        store.get_screening_job(job.id)


def test_results_filter_sort_and_paginate(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=4)
    for candidate, match in [("a", 30), ("b", 90), ("c", 60), ("d", 75)]:
        store.save_result(job.id, job.generation, _result(f"{candidate}@example.com", match))

    page = store.get_screening_results(job.id, ResultFilter(min_match_percentage=50, limit=2))
    assert page.total == 3
    assert [r.match_percentage for r in page.results] == [90, 75]

    ascending = store.get_screening_results(job.id, ResultFilter(sort_desc=False, offset=1, limit=2))
    assert [r.match_percentage for r in ascending.results] == [60, 75]

    by_candidate = store.get_screening_results(job.id, ResultFilter(sort_by="candidate_id", sort_desc=False))
    assert [r.candidate_id for r in by_candidate.results][0] == "a@example.com"


def test_shortlist_marks_exactly_the_given_ids(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=3)
    records = [
        store.save_result(job.id, job.generation, _result(f"{c}@example.com", 60)) for c in "abc"
    ]
    other = store.create_screening_job("employer-1", job_id=7, total_resumes=1)
    foreign = store.save_result(other.id, other.generation, _result("z@example.com", 60))

    updated = store.save_shortlist(job.id, [records[0].id, records[2].id, foreign.id])
    assert updated == 2

    page = store.get_screening_results(job.id, ResultFilter(sort_by="candidate_id", sort_desc=False))
    assert [r.shortlisted for r in page.results] == [True, False, True]
    shortlisted_only = store.get_screening_results(job.id, ResultFilter(shortlisted=True))
    assert shortlisted_only.total == 2
    assert store.get_screening_results(other.id, ResultFilter()).results[0].shortlisted is False


def test_analytics_bands(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=4)
    for candidate, match in [("a", 30), ("b", 90), ("c", 60), ("d", 70)]:
        store.save_result(job.id, job.generation, _result(f"{candidate}@example.com", match))

    analytics = store.get_screening_analytics(job.id, strong_threshold=70, moderate_threshold=50)
    assert analytics.total_screened == 4
    assert analytics.average_match == 62.5
    assert analytics.max_match == 90
    assert analytics.min_match == 30
    assert (analytics.strong_matches, analytics.moderate_matches, analytics.weak_matches) == (2, 1, 1)


def test_analytics_for_empty_job(store):
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=1)
    analytics = store.get_screening_analytics(job.id)
    assert analytics.total_screened == 0
    assert analytics.average_match == 0.0
    assert analytics.max_match is None


def test_concurrent_increments_are_not_lost(tmp_path):
    """N threads incrementing at once must add exactly N."""
    file_engine = build_engine(f"sqlite:///{tmp_path / 'counters.db'}")
    init_db(bind=file_engine)
    store = ResultStore(sessionmaker(autocommit=False, autoflush=False, bind=file_engine))
    job = store.create_screening_job("employer-1", job_id=7, total_resumes=50)

    start = threading.Barrier(10)

    def bump():
        start.wait()
        for _ in range(4):
            store.increment_processed_count(job.id)

    threads = [threading.Thread(target=bump) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_screening_job(job.id).processed_count == 40
    file_engine.dispose()
