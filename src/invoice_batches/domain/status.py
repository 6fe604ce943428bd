"""Mapping of remote batch states onto local job statuses."""

from enum import Enum

from .exceptions import UnmappedRemoteStateError
from .models import JobStatus

_PREFIXES = ("JOB_STATE_", "BATCH_STATE_")


class RemoteState(str, Enum):
    """Every state the remote batch service is known to report."""

    PENDING = "pending"
    VALIDATING = "validating"
    RUNNING = "running"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, raw: str | None) -> "RemoteState":
        """Normalise a service-specific state string.

        Accepts Gemini (``JOB_STATE_RUNNING``, ``BATCH_STATE_SUCCEEDED``) and
        OpenAI style (``in_progress``, ``completed``) vocabularies.
        """
        if not raw or not raw.strip():
            raise UnmappedRemoteStateError(raw)
        value = raw.strip().upper()
        for prefix in _PREFIXES:
            if value.startswith(prefix):
                value = value[len(prefix):]
                break
        value = value.lower()
        value = _ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise UnmappedRemoteStateError(raw) from None


_ALIASES = {
    "queued": "pending",
    "in_progress": "running",
    "completed": "succeeded",
    "canceled": "cancelled",
    "canceling": "cancelling",
}

STATUS_MAP: dict[RemoteState, JobStatus] = {
    RemoteState.PENDING: JobStatus.PENDING,
    RemoteState.VALIDATING: JobStatus.PENDING,
    RemoteState.RUNNING: JobStatus.PROCESSING,
    RemoteState.FINALIZING: JobStatus.PROCESSING,
    RemoteState.SUCCEEDED: JobStatus.COMPLETED,
    RemoteState.FAILED: JobStatus.FAILED,
    RemoteState.EXPIRED: JobStatus.FAILED,
    RemoteState.CANCELLING: JobStatus.PROCESSING,
    RemoteState.CANCELLED: JobStatus.CANCELLED,
}


def map_remote_state(raw: str | None) -> JobStatus:
    """Map a raw remote state to a local status, or raise UnmappedRemoteStateError."""
    return STATUS_MAP[RemoteState.parse(raw)]


def resolve_transition(current: JobStatus, proposed: JobStatus) -> JobStatus:
    """Return the status a job should hold after observing ``proposed``.

    Terminal statuses are final and a job never moves back towards Pending,
    so stale remote reports keep the current status.
    """
    if current.is_terminal:
        return current
    if proposed.rank < current.rank:
        return current
    return proposed
