"""Reconciliation of local jobs against the remote batch service."""

import logging
import time
from collections.abc import Callable
from datetime import datetime

from ..ports.batch_service import BatchServicePort
from ..ports.repository import JobRepository
from .exceptions import IngestionError, RemoteServiceError, UnmappedRemoteStateError
from .ingestion import IngestionService
from .models import (
    ACTIVE_STATUSES,
    Job,
    JobError,
    JobStatus,
    RemoteJobStatus,
    RequestCounts,
    ResultHandle,
    SweepSummary,
    utcnow,
)
from .status import map_remote_state

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("rate limit", "quota exceeded", "resource_exhausted")


def is_rate_limit_error(exc: Exception) -> bool:
    """True for HTTP 429 or an error message that reads like a quota rejection."""
    if getattr(exc, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


class ReconciliationService:
    """Drives active jobs towards a terminal status.

    Completion is claimed through the store before ingestion, so concurrent
    sweeps, webhooks and manual runs ingest each job at most once.
    """

    def __init__(
        self,
        jobs: JobRepository,
        remote: BatchServicePort,
        ingestion: IngestionService,
        status_attempts: int = 3,
        rate_limit_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.jobs = jobs
        self.remote = remote
        self.ingestion = ingestion
        self.status_attempts = max(1, status_attempts)
        self.rate_limit_delay = rate_limit_delay
        self.sleep = sleep
        self.clock = clock

    def sweep(self) -> SweepSummary:
        """Reconcile every job that is not yet terminal."""
        summary = SweepSummary()
        jobs = self.jobs.list_jobs(statuses=ACTIVE_STATUSES)
        logger.info(f"Reconciling {len(jobs)} active jobs")

        for job in jobs:
            summary.checked += 1
            try:
                job = self.reconcile_job(job)
            except Exception as e:
                logger.exception(f"Reconciliation of job {job.id} failed: {e}")

            if job.status is JobStatus.COMPLETED:
                summary.completed += 1
            elif job.status is JobStatus.FAILED:
                summary.failed += 1
            elif job.is_active:
                summary.active += 1

        logger.info(f"Sweep finished: {summary.to_dict()}")
        return summary

    def reconcile_job(self, job: Job) -> Job:
        """Poll one job and advance it; returns the job as now stored."""
        try:
            remote = self._fetch_status(job.id)
        except RemoteServiceError as e:
            logger.warning(f"Skipping job {job.id} this pass: {e}")
            return job

        try:
            status = map_remote_state(remote.state)
        except UnmappedRemoteStateError as e:
            logger.warning(f"Job {job.id}: {e}")
            self.jobs.append_errors(job.id, [JobError(message=str(e), kind="remote")])
            return self.jobs.get_job(job.id) or job

        return self._advance(job, status, remote.counts, remote.output)

    def apply_push_event(
        self, job_id: str, phase: str, counts: RequestCounts | None = None
    ) -> Job | None:
        """Apply a pushed status notification.

        Returns None for jobs this store does not know about.
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            logger.info(f"Ignoring event for unknown job {job_id}")
            return None

        try:
            status = map_remote_state(phase)
        except UnmappedRemoteStateError:
            logger.info(f"Job {job_id}: ignoring push event with unknown phase {phase!r}")
            return job

        if status is JobStatus.COMPLETED:
            # Output handle only comes from the remote status call
            return self.reconcile_job(job)

        return self.jobs.update_progress(job_id, status, counts, self.clock())

    def _fetch_status(self, job_id: str) -> RemoteJobStatus:
        for attempt in range(1, self.status_attempts + 1):
            try:
                return self.remote.get_job_status(job_id)
            except RemoteServiceError as e:
                if not is_rate_limit_error(e) or attempt == self.status_attempts:
                    raise
                logger.warning(
                    f"Rate limited polling job {job_id} (attempt {attempt}/{self.status_attempts}), "
                    f"retrying in {self.rate_limit_delay}s"
                )
                self.sleep(self.rate_limit_delay)
        raise RemoteServiceError(f"Status of job {job_id} unavailable")

    def _advance(
        self,
        job: Job,
        status: JobStatus,
        counts: RequestCounts | None,
        output: ResultHandle | None,
    ) -> Job:
        now = self.clock()

        if status is not JobStatus.COMPLETED:
            return self.jobs.update_progress(job.id, status, counts, now)

        # Ingestion needs the final counts; wait for them on a later pass
        if counts is None:
            logger.info(f"Job {job.id} succeeded remotely but reported no counts yet")
            return self.jobs.update_progress(job.id, JobStatus.PROCESSING, None, now)

        self.jobs.update_progress(job.id, JobStatus.PROCESSING, counts, now)
        if not self.jobs.claim_completion(job.id, now):
            logger.info(f"Job {job.id} already claimed by another run")
            return self.jobs.get_job(job.id) or job

        logger.info(f"Claimed job {job.id}, ingesting results")
        self._ingest(job.id, output)
        return self.jobs.get_job(job.id) or job

    def _ingest(self, job_id: str, output: ResultHandle | None) -> None:
        if output is None:
            self._fail(job_id, "Batch ingestion error: job succeeded without output", [])
            return

        try:
            summary = self.ingestion.ingest(job_id, output)
        except IngestionError as e:
            logger.error(f"Ingestion of job {job_id} failed: {e}")
            self._fail(job_id, f"Batch ingestion error: {e}", e.errors)
            return
        except Exception as e:
            logger.exception(f"Ingestion of job {job_id} failed: {e}")
            self._fail(job_id, f"Batch ingestion error: {e}", [])
            return

        self.jobs.record_ingestion(job_id, summary)

    def _fail(self, job_id: str, message: str, errors: list[JobError]) -> None:
        if errors:
            self.jobs.append_errors(job_id, errors)
        self.jobs.mark_failed(job_id, JobError(message=message, kind="ingestion"), self.clock())
