import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status

from screener.core.config import settings
from screener.core.limiter import limiter
from screener.dependencies import get_coordinator, get_employer_id
from screener.schemas.screening import (
    ResultFilter, ResultPage, ResumeUpload, ScreeningAnalytics, ScreeningJobPage,
    ScreeningJobRecord, ShortlistRequest, ShortlistResponse, SortField,
)
from screener.services.screening import ScreeningCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/bulk", response_model=ScreeningJobRecord, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.bulk_upload_rate_limit)
def initiate_bulk_screening(
    request: Request,
    job_id: int = Form(...),
    files: List[UploadFile] = File(...),
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    """Queue a batch of resumes for screening against a job posting."""
    resumes = [ResumeUpload(filename=f.filename or "", buffer=f.file.read()) for f in files]
    return coordinator.initiate_bulk_screening(employer_id, job_id, resumes)


@router.get("", response_model=ScreeningJobPage)
def list_screening_jobs(
    limit: int = Query(settings.screening.default_page_size, ge=1, le=settings.screening.max_page_size),
    offset: int = Query(0, ge=0),
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    return coordinator.list_employer_screening_jobs(employer_id, limit=limit, offset=offset)


@router.get("/{screening_job_id}", response_model=ScreeningJobRecord)
def get_screening_job(
    screening_job_id: int,
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    return coordinator.get_screening_job(screening_job_id, employer_id)


@router.get("/{screening_job_id}/results", response_model=ResultPage)
def get_screening_results(
    screening_job_id: int,
    min_match_percentage: Optional[int] = Query(None, ge=0, le=100),
    shortlisted: Optional[bool] = None,
    sort_by: Optional[SortField] = None,
    sort_desc: bool = True,
    limit: int = Query(settings.screening.default_page_size, ge=1, le=settings.screening.max_page_size),
    offset: int = Query(0, ge=0),
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    filters = ResultFilter(
        min_match_percentage=min_match_percentage,
        shortlisted=shortlisted,
        sort_by=sort_by,
        sort_desc=sort_desc,
        limit=limit,
        offset=offset,
    )
    return coordinator.get_screening_results(screening_job_id, filters, employer_id)


@router.get("/{screening_job_id}/analytics", response_model=ScreeningAnalytics)
def get_screening_analytics(
    screening_job_id: int,
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    return coordinator.get_screening_analytics(screening_job_id, employer_id)


@router.put("/{screening_job_id}/shortlist", response_model=ShortlistResponse)
def save_shortlist(
    screening_job_id: int,
    body: ShortlistRequest,
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    updated = coordinator.save_shortlist(screening_job_id, body.result_ids, employer_id)
    return ShortlistResponse(
        screening_job_id=screening_job_id,
        shortlisted=updated,
        message=f"{updated} candidate(s) shortlisted",
    )


@router.delete("/{screening_job_id}")
def delete_screening_job(
    screening_job_id: int,
    employer_id: str = Depends(get_employer_id),
    coordinator: ScreeningCoordinator = Depends(get_coordinator),
):
    removed = coordinator.delete_screening_job(screening_job_id, employer_id)
    return {"success": True, "screening_job_id": screening_job_id, "results_removed": removed}
