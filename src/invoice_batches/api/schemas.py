"""Response models for the HTTP surface."""

from datetime import datetime

from pydantic import BaseModel

from ..domain.models import Job, JobError, Session, SweepSummary


class JobErrorResponse(BaseModel):
    message: str
    kind: str
    job_id: str | None = None
    document_key: str | None = None
    line: int | None = None
    created_at: datetime

    @classmethod
    def from_error(cls, error: JobError) -> "JobErrorResponse":
        return cls(
            message=error.message,
            kind=error.kind,
            job_id=error.job_id,
            document_key=error.document_key,
            line=error.line,
            created_at=error.created_at,
        )


class JobResponse(BaseModel):
    id: str
    status: str
    total_documents: int
    processed_count: int
    success_count: int
    failure_count: int
    blocked_count: int
    retry_attempts: int
    retried_document_count: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    errors: list[JobErrorResponse] = []

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            status=job.status.value,
            total_documents=job.total_documents,
            processed_count=job.processed_count,
            success_count=job.success_count,
            failure_count=job.failure_count,
            blocked_count=job.blocked_count,
            retry_attempts=job.retry_attempts,
            retried_document_count=job.retried_document_count,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            errors=[JobErrorResponse.from_error(e) for e in job.errors],
        )


class SessionResponse(BaseModel):
    """Jobs created close together, shown as one upload."""

    id: str
    status: str
    created_at: datetime
    total_documents: int
    processed_count: int
    success_count: int
    failure_count: int
    blocked_count: int
    retry_attempts: int
    retried_document_count: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    job_ids: list[str] = []
    errors: list[JobErrorResponse] = []

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            status=session.status.value,
            created_at=session.created_at,
            total_documents=session.total_documents,
            processed_count=session.processed_count,
            success_count=session.success_count,
            failure_count=session.failure_count,
            blocked_count=session.blocked_count,
            retry_attempts=session.retry_attempts,
            retried_document_count=session.retried_document_count,
            started_at=session.started_at,
            completed_at=session.completed_at,
            job_ids=session.job_ids,
            errors=[JobErrorResponse.from_error(e) for e in session.errors],
        )


class SweepResponse(BaseModel):
    checked: int
    active: int
    completed: int
    failed: int

    @classmethod
    def from_summary(cls, summary: SweepSummary) -> "SweepResponse":
        return cls(**summary.to_dict())


class WebhookResponse(BaseModel):
    status: str
    job_id: str | None = None
    job_status: str | None = None
