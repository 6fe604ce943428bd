"""Job and session listing endpoints."""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from ...domain.sessions import group_sessions
from ...services import Services
from ..dependencies import get_services
from ..schemas import JobResponse, SessionResponse

router = APIRouter()

# Jobs considered when building sessions
SESSION_SCAN_LIMIT = 500


@router.get("", response_model=list[JobResponse])
def list_jobs(
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> list[JobResponse]:
    return [JobResponse.from_job(job) for job in services.store.list_jobs(limit=limit)]


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(
    window_minutes: int | None = Query(None, ge=0, le=24 * 60),
    limit: int | None = Query(None, ge=1, le=100),
    services: Services = Depends(get_services),
) -> list[SessionResponse]:
    """Recent jobs grouped into upload sessions, newest first."""
    config = services.settings.sessions
    window = timedelta(
        minutes=window_minutes if window_minutes is not None else config.window_minutes
    )
    jobs = services.store.list_jobs(limit=SESSION_SCAN_LIMIT)
    sessions = group_sessions(jobs, window=window, max_sessions=limit or config.max_sessions)
    return [SessionResponse.from_session(s) for s in sessions]


@router.get("/{job_id:path}", response_model=JobResponse)
def get_job(job_id: str, services: Services = Depends(get_services)) -> JobResponse:
    job = services.store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Unknown job {job_id}")
    return JobResponse.from_job(job)
