# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import job, screening, task, cache_entry

# Explicit class exports for cleaner imports
from .job import Job
from .screening import ScreeningJob, ScreeningResult, ScreeningStatus
from .task import ScreeningTask, TaskStatus
from .cache_entry import CacheEntry

__all__ = [
    "Job",
    "ScreeningJob",
    "ScreeningResult",
    "ScreeningStatus",
    "ScreeningTask",
    "TaskStatus",
    "CacheEntry",
]
