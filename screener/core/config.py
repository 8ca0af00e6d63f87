import os
import logging
from pydantic import BaseModel, Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

class AISettings(BaseModel):
    openrouter_api_key: Optional[str] = Field(default=os.getenv("OPENROUTER_API_KEY"))
    model_name: str = Field(default=os.getenv("AI_MODEL_NAME", "google/gemini-2.0-flash-001"))
    kill_switch: bool = Field(default=os.getenv("AI_KILL_SWITCH", "false").lower() == "true")
    timeout_seconds: float = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))
    temperature: float = 0.2

class ScreeningSettings(BaseModel):
    max_resumes: int = int(os.getenv("SCREENING_MAX_RESUMES", "500"))
    max_resume_bytes: int = int(os.getenv("SCREENING_MAX_RESUME_BYTES", str(50 * 1024 * 1024)))  # 50MB

    # Queue / worker pool
    worker_concurrency: int = int(os.getenv("SCREENING_WORKER_CONCURRENCY", "5"))
    lock_seconds: float = float(os.getenv("SCREENING_LOCK_SECONDS", "30"))
    lock_renew_seconds: float = float(os.getenv("SCREENING_LOCK_RENEW_SECONDS", "15"))
    poll_interval_seconds: float = float(os.getenv("SCREENING_POLL_INTERVAL", "1"))
    task_priority: int = 5

    # Retry policy for queued tasks
    retry_attempts: int = int(os.getenv("SCREENING_RETRY_ATTEMPTS", "3"))
    retry_base_delay: float = float(os.getenv("SCREENING_RETRY_BASE_DELAY", "2"))
    retry_backoff_multiplier: float = 2.0

    # Match categorization
    strong_match_threshold: int = int(os.getenv("SCREENING_STRONG_MATCH_THRESHOLD", "70"))
    moderate_match_threshold: int = int(os.getenv("SCREENING_MODERATE_MATCH_THRESHOLD", "50"))

    # Result pagination
    default_page_size: int = 20
    max_page_size: int = 100

class Config(BaseModel):
    app_name: str = "Bulk Resume Screening"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"
    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"
    employer_id_header: str = "X-Employer-ID"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./screening.db")

    # AI Components
    ai: AISettings = AISettings()

    screening: ScreeningSettings = ScreeningSettings()

    # Scalability & Performance
    enable_caching: bool = os.getenv("ENABLE_CACHING", "true").lower() == "true"
    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
    bulk_upload_rate_limit: str = os.getenv("BULK_UPLOAD_RATE_LIMIT", "10/minute")

settings = Config()

_logger = logging.getLogger(__name__)
if settings.environment != "development" and not settings.ai.openrouter_api_key:
    _logger.warning("⚠ OPENROUTER_API_KEY is not set; resume analysis tasks will fail and retry.")
