import pytest
import os

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENABLE_CACHING"] = "true"
os.environ.pop("SCREENING_RUN_WORKERS", None)

from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from screener.core.exceptions import DependencyError
from screener.database import build_engine, init_db
from screener.dependencies import get_coordinator
from screener.main import app
from screener.models.job import Job
from screener.schemas.screening import ResumeAnalysis, ResumeUpload
from screener.services.cache import DatabaseCacheBackend, ScreeningCache
from screener.services.job_requirements import JobRequirementsService
from screener.services.ranking import RankingEngine
from screener.services.result_store import ResultStore
from screener.services.resume_parser import ResumeParser
from screener.services.screening import ScreeningCoordinator
from screener.services.task_queue import RetryPolicy, TaskQueue
from screener.services.worker import ScreeningTaskProcessor, WorkerPool

EMPLOYER = "employer-1"

# Immediate retries so a drain sees them without sleeping
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0, backoff_multiplier=1)


class StubAnalyzer:
    """Canned AI analysis; `failures` makes the first N calls raise a DependencyError."""

    def __init__(self, strengths=None, failures=0):
        self.strengths = strengths if strengths is not None else ["communication"]
        self.failures = failures
        self.calls = 0

    def analyze(self, full_text, job_title, description):
        self.calls += 1
        if self.calls <= self.failures:
            raise DependencyError("AI analysis unavailable")
        return ResumeAnalysis(
            strengths=self.strengths,
            gaps=["Kubernetes in production"],
            recommendations=["Add measurable outcomes"],
        )


def resume_text(email, skills, years):
    """A plain-text resume the real parser understands."""
    return (
        f"Jane Candidate\n{email}\n{years} years of experience building web services\n\n"
        f"Skills: {', '.join(skills)}\n"
    ).encode()


def upload(email, skills, years, filename=None):
    return ResumeUpload(filename=filename or f"{email.split('@')[0]}.txt", buffer=resume_text(email, skills, years))


@pytest.fixture(scope="function")
def engine():
    """A fresh in-memory database per test."""
    test_engine = build_engine("sqlite:///:memory:")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def job_id(session_factory):
    """An active job posting with requirements."""
    with session_factory() as db:
        job = Job(
            title="Backend Engineer",
            description="Build APIs",
            required_skills=["Python", "PostgreSQL", "Docker"],
            nice_to_have_skills=["Kubernetes", "Redis"],
            experience_required_years=3,
            strengths_expected=["communication"],
            is_active=True,
        )
        db.add(job)
        db.commit()
        return job.id


@pytest.fixture(scope="function")
def store(session_factory):
    return ResultStore(session_factory)


@pytest.fixture(scope="function")
def queue(session_factory):
    return TaskQueue(session_factory, lock_seconds=30)


@pytest.fixture(scope="function")
def cache(session_factory):
    return ScreeningCache(DatabaseCacheBackend(session_factory), enabled=True)


@pytest.fixture(scope="function")
def requirements(cache, session_factory):
    return JobRequirementsService(cache, session_factory)


@pytest.fixture(scope="function")
def ranking():
    return RankingEngine(strong_threshold=70, moderate_threshold=50)


@pytest.fixture(scope="function")
def analyzer():
    return StubAnalyzer()


@pytest.fixture(scope="function")
def coordinator(store, queue, cache, requirements, ranking):
    return ScreeningCoordinator(store, queue, cache, requirements, ranking, retry_policy=FAST_RETRY)


@pytest.fixture(scope="function")
def processor(analyzer, requirements, ranking, store, cache):
    return ScreeningTaskProcessor(ResumeParser(), analyzer, requirements, ranking, store, cache)


@pytest.fixture(scope="function")
def pool(queue, processor, store):
    return WorkerPool(queue, processor, store, concurrency=1, lock_renew_seconds=5, poll_interval=0.01)


@pytest.fixture(scope="function")
def client(coordinator):
    """TestClient wired to the test coordinator via dependency override."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_upload():
    return upload
