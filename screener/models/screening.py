from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, JSON,
    CheckConstraint, UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from screener.database import Base

class ScreeningStatus(str, enum.Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"

class ScreeningJob(Base):
    __tablename__ = "screening_jobs"
    __table_args__ = (
        CheckConstraint("total_resumes >= 1", name="ck_screening_jobs_total_positive"),
        CheckConstraint("processed_count >= 0", name="ck_screening_jobs_processed_non_negative"),
        CheckConstraint("processed_count <= total_resumes", name="ck_screening_jobs_processed_bounded"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employer_id = Column(String(64), nullable=False, index=True)
    job_id = Column(Integer, nullable=False, index=True)  # External job-posting reference
    status = Column(SQLEnum(ScreeningStatus), default=ScreeningStatus.processing, nullable=False, index=True)
    total_resumes = Column(Integer, nullable=False)
    processed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    # Fencing token carried by every queued task; a task whose token no longer
    # matches a live job must not write results.
    generation = Column(String(32), nullable=False)
    # Bumped on every change to the job's results; part of the cache keys for them
    revision = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    results = relationship(
        "ScreeningResult",
        back_populates="screening_job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

class ScreeningResult(Base):
    __tablename__ = "screening_results"
    __table_args__ = (
        UniqueConstraint("screening_job_id", "candidate_id", name="uq_screening_results_job_candidate"),
        CheckConstraint(
            "match_percentage >= 0 AND match_percentage <= 100",
            name="ck_screening_results_match_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    screening_job_id = Column(
        Integer, ForeignKey("screening_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    candidate_id = Column(String(128), nullable=False, index=True)
    filename = Column(String(255))
    match_percentage = Column(Integer, nullable=False, index=True)
    match_category = Column(String(16), nullable=False)
    skills_matched = Column(JSON, default=list)
    skills_missing = Column(JSON, default=list)
    strengths = Column(JSON, default=list)
    improvement_areas = Column(JSON, default=list)
    recommendations = Column(JSON, default=list)
    shortlisted = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    screening_job = relationship("ScreeningJob", back_populates="results")
