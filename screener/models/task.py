from sqlalchemy import Column, Integer, Float, String, Text, Boolean, DateTime, ForeignKey, LargeBinary, Enum as SQLEnum
from sqlalchemy.sql import func
import enum
from screener.database import Base

class TaskStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    retrying = "retrying"
    completed = "completed"
    failed = "failed"

class ScreeningTask(Base):
    """
    One queued resume. Persisted so delivery survives process restarts;
    rows are removed together with their screening job.
    """
    __tablename__ = "screening_tasks"

    id = Column(Integer, primary_key=True, index=True)
    screening_job_id = Column(
        Integer, ForeignKey("screening_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    generation = Column(String(32), nullable=False)
    job_id = Column(Integer, nullable=False)
    filename = Column(String(255), nullable=False)
    resume_data = Column(LargeBinary, nullable=False)

    status = Column(SQLEnum(TaskStatus), default=TaskStatus.pending, nullable=False, index=True)
    priority = Column(Integer, default=5, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    base_delay = Column(Float, default=2.0, nullable=False)  # seconds
    backoff_multiplier = Column(Float, default=2.0, nullable=False)

    available_at = Column(DateTime, nullable=False, index=True)
    locked_by = Column(String(64), nullable=True)
    locked_until = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    # Set once the task has moved its job's processed or failed counter
    counted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
