import hashlib
import json
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from screener.models.screening import ScreeningStatus

# --- REQUIREMENTS / COLLABORATOR CONTRACTS ---

class JobRequirements(BaseModel):
    job_id: int
    title: str = ""
    skills_required: List[str] = Field(default_factory=list)
    nice_to_have_skills: List[str] = Field(default_factory=list)
    experience_required_years: float = 0
    strengths_expected: List[str] = Field(default_factory=list)
    description: str = ""

class ParsedResume(BaseModel):
    skills: List[str] = Field(default_factory=list)
    experience_years: float = 0
    full_text: str = ""
    email: Optional[str] = None

class ResumeAnalysis(BaseModel):
    """What the AI analyzer returns for one resume."""
    strengths: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

class CandidateAnalysis(BaseModel):
    """Everything the ranking engine needs to score one candidate."""
    skills_matched: List[str] = Field(default_factory=list)
    skills_missing: List[str] = Field(default_factory=list)
    experience_years: float = 0
    strengths: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    overall_match: float = 0

class ResumeUpload(BaseModel):
    filename: str
    buffer: bytes

# --- STORED RECORDS ---

class ScreeningJobRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employer_id: str
    job_id: int
    status: ScreeningStatus
    total_resumes: int
    processed_count: int
    failed_count: int = 0
    generation: str = Field(default="", exclude=True)
    revision: int = Field(default=0, exclude=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ScreeningJobPage(BaseModel):
    jobs: List[ScreeningJobRecord]
    total: int

class ScreeningResultRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    screening_job_id: int
    candidate_id: str
    filename: Optional[str] = None
    match_percentage: int = Field(ge=0, le=100)
    match_category: str
    skills_matched: List[str] = Field(default_factory=list)
    skills_missing: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    improvement_areas: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    shortlisted: bool = False
    created_at: Optional[datetime] = None

class NewScreeningResult(BaseModel):
    candidate_id: str
    filename: Optional[str] = None
    match_percentage: int
    match_category: str
    skills_matched: List[str] = Field(default_factory=list)
    skills_missing: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    improvement_areas: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("match_percentage")
    @classmethod
    def clamp_match(cls, value: int) -> int:
        return max(0, min(100, int(value)))

# --- QUERIES ---

SortField = Literal["match_percentage", "created_at", "candidate_id"]

class ResultFilter(BaseModel):
    min_match_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    shortlisted: Optional[bool] = None
    sort_by: Optional[SortField] = None
    sort_desc: bool = True
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    def cache_hash(self) -> str:
        """Stable digest so equal filters share one cache entry."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()[:16]

class ResultPage(BaseModel):
    results: List[ScreeningResultRecord]
    total: int

class ScreeningAnalytics(BaseModel):
    total_screened: int = 0
    average_match: float = 0.0
    max_match: Optional[int] = None
    min_match: Optional[int] = None
    strong_matches: int = 0
    moderate_matches: int = 0
    weak_matches: int = 0

# --- REQUEST / RESPONSE BODIES ---

class ShortlistRequest(BaseModel):
    result_ids: List[int]

class ShortlistResponse(BaseModel):
    screening_job_id: int
    shortlisted: int
    message: str

class RankedCandidate(BaseModel):
    rank: int
    id: str
    score: float
    match_category: str
