"""Domain layer - core business logic."""

from .models import IngestionSummary, Job, JobError, JobStatus, Session, SweepSummary

__all__ = ["IngestionSummary", "Job", "JobError", "JobStatus", "Session", "SweepSummary"]
