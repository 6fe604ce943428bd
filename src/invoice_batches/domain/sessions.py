"""Grouping of jobs submitted close together into upload sessions."""

from collections.abc import Iterable
from datetime import timedelta

from .models import Job, JobStatus, Session

DEFAULT_WINDOW = timedelta(minutes=5)
DEFAULT_MAX_SESSIONS = 10

# Lower sorts first; Pending is shown as Processing
_STATUS_PRECEDENCE = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 0,
    JobStatus.FAILED: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.CANCELLED: 3,
}


def _session_status(current: JobStatus, other: JobStatus) -> JobStatus:
    if other is JobStatus.PENDING:
        other = JobStatus.PROCESSING
    if _STATUS_PRECEDENCE[other] < _STATUS_PRECEDENCE[current]:
        return other
    return current


def _new_session(anchor: Job) -> Session:
    millis = int(anchor.created_at.timestamp() * 1000)
    status = JobStatus.PROCESSING if anchor.status is JobStatus.PENDING else anchor.status
    return Session(id=f"session-{millis}", status=status, created_at=anchor.created_at)


def _merge(session: Session, job: Job) -> None:
    session.job_ids.append(job.id)
    session.total_documents += job.total_documents
    session.processed_count += job.processed_count
    session.success_count += job.success_count
    session.failure_count += job.failure_count
    session.blocked_count += job.blocked_count
    session.retry_attempts += job.retry_attempts
    session.retried_document_count += job.retried_document_count
    session.errors.extend(job.errors)
    session.status = _session_status(session.status, job.status)

    if job.started_at and (session.started_at is None or job.started_at < session.started_at):
        session.started_at = job.started_at
    if job.completed_at and (session.completed_at is None or job.completed_at > session.completed_at):
        session.completed_at = job.completed_at


def group_sessions(
    jobs: Iterable[Job],
    window: timedelta = DEFAULT_WINDOW,
    max_sessions: int = DEFAULT_MAX_SESSIONS,
) -> list[Session]:
    """Merge jobs whose creation times fall within ``window`` of a session's
    first (newest) job. Returns at most ``max_sessions``, newest first."""
    sessions: list[Session] = []

    for job in sorted(jobs, key=lambda j: j.created_at, reverse=True):
        for session in sessions:
            if abs(session.created_at - job.created_at) <= window:
                _merge(session, job)
                break
        else:
            session = _new_session(job)
            _merge(session, job)
            sessions.append(session)

    return sessions[:max_sessions]
