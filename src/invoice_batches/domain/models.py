"""Domain models."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from .exceptions import RetryStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Local lifecycle of a submitted extraction batch."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position along Pending -> Processing -> terminal."""
        if self is JobStatus.PENDING:
            return 0
        if self is JobStatus.PROCESSING:
            return 1
        return 2


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class AlertStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class JobError:
    """Structured error entry appended to a job."""

    message: str
    kind: str = "document"
    document_key: str | None = None
    line: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "kind": self.kind,
            "document_key": self.document_key,
            "line": self.line,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobError":
        created = data.get("created_at")
        return cls(
            message=data.get("message", ""),
            kind=data.get("kind", "document"),
            document_key=data.get("document_key"),
            line=data.get("line"),
            created_at=datetime.fromisoformat(created) if created else utcnow(),
            job_id=data.get("job_id"),
        )


@dataclass
class Job:
    """One submitted extraction batch."""

    id: str
    status: JobStatus = JobStatus.PENDING
    total_documents: int = 0
    processed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    blocked_count: int = 0
    errors: list[JobError] = field(default_factory=list)
    retry_attempts: int = 0
    retried_document_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal


@dataclass
class RequestCounts:
    """Progress counters reported by the remote service."""

    total: int | None = None
    completed: int | None = None
    failed: int | None = None

    @property
    def processed(self) -> int:
        return (self.completed or 0) + (self.failed or 0)

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> "RequestCounts | None":
        """Build from either snake_case or camelCase remote payloads."""
        if not data:
            return None

        def pick(*names: str) -> int | None:
            for name in names:
                if data.get(name) is not None:
                    return int(data[name])
            return None

        return cls(
            total=pick("total", "requestCount", "total_count"),
            completed=pick("completed", "successfulRequestCount", "succeeded"),
            failed=pick("failed", "failedRequestCount"),
        )


@dataclass
class InlineResults:
    """Result lines delivered inside the status response."""

    records: list[dict[str, Any]]


@dataclass
class ResultFile:
    """Result lines stored in a remote file."""

    name: str


ResultHandle = InlineResults | ResultFile


@dataclass
class RemoteJobStatus:
    state: str | None
    counts: RequestCounts | None = None
    output: ResultHandle | None = None


@dataclass
class ExtractionRecord:
    """One parsed result line; never persisted as-is."""

    key: str
    text: str | None = None
    error: Any = None
    blocked: bool = False
    line: int | None = None


@dataclass
class LineError:
    line: int
    raw: str
    message: str


@dataclass
class ParseResult:
    records: list[ExtractionRecord] = field(default_factory=list)
    errors: list[LineError] = field(default_factory=list)


@dataclass
class Provider:
    id: int
    tax_id: str
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None


@dataclass
class Material:
    id: int
    code: str
    name: str
    description: str | None = None


@dataclass
class Invoice:
    id: int
    code: str
    provider_id: int
    issue_date: date
    total_amount: Decimal
    has_totals_mismatch: bool = False
    document_key: str | None = None
    job_id: str | None = None


@dataclass
class InvoiceItem:
    id: int
    invoice_id: int
    material_id: int
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    item_date: date
    work_order: str | None = None


@dataclass
class PriceObservation:
    """A unit price seen for a material/provider pair on a given date."""

    material_id: int
    provider_id: int
    unit_price: Decimal
    effective_date: date
    invoice_item_id: int | None = None


@dataclass
class PriceAlert:
    id: int
    material_id: int
    provider_id: int
    old_price: Decimal
    new_price: Decimal
    percentage: Decimal
    effective_date: date
    status: AlertStatus = AlertStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class IngestionSummary:
    """Aggregate outcome of ingesting one job's output."""

    created: int = 0
    updated: int = 0
    mismatched: int = 0
    failed: int = 0
    blocked: int = 0
    resolved: int = 0
    missing: int = 0
    alerts: int = 0
    errors: list[JobError] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.blocked + self.missing


@dataclass
class SweepSummary:
    checked: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
        }


class RetryState(str, Enum):
    PENDING = "PENDING"
    RETRYING = "RETRYING"
    RESOLVED = "RESOLVED"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class DocumentRetry:
    """Retry bookkeeping for one mismatched document.

    Transitions: PENDING -> RETRYING(n) -> RESOLVED | EXHAUSTED.
    """

    document_key: str
    invoice_id: int
    max_attempts: int = 3
    attempts: int = 0
    state: RetryState = RetryState.PENDING
    errors: list[str] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.state in (RetryState.RESOLVED, RetryState.EXHAUSTED)

    @property
    def can_retry(self) -> bool:
        return not self.is_finished and self.attempts < self.max_attempts

    def start_attempt(self) -> int:
        if not self.can_retry:
            raise RetryStateError(
                f"Cannot start attempt {self.attempts + 1} for {self.document_key} "
                f"in state {self.state.value}"
            )
        self.attempts += 1
        self.state = RetryState.RETRYING
        return self.attempts

    def resolve(self) -> None:
        if self.state is not RetryState.RETRYING:
            raise RetryStateError(f"Cannot resolve {self.document_key} from {self.state.value}")
        self.state = RetryState.RESOLVED

    def fail_attempt(self, reason: str) -> None:
        if self.state is not RetryState.RETRYING:
            raise RetryStateError(f"No attempt in flight for {self.document_key}")
        self.errors.append(reason)
        if self.attempts >= self.max_attempts:
            self.state = RetryState.EXHAUSTED

    def exhaust(self, reason: str) -> None:
        """Give up without further attempts (e.g. source document unavailable)."""
        if self.is_finished:
            raise RetryStateError(f"{self.document_key} already {self.state.value}")
        self.errors.append(reason)
        self.state = RetryState.EXHAUSTED


@dataclass
class Session:
    """User-facing grouping of jobs created close together."""

    id: str
    status: JobStatus
    created_at: datetime
    total_documents: int = 0
    processed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    blocked_count: int = 0
    retry_attempts: int = 0
    retried_document_count: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    errors: list[JobError] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)
