"""Domain exceptions."""


class InvoiceBatchesError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(InvoiceBatchesError):
    """Required configuration (credentials, secrets) is missing or invalid."""


class RemoteServiceError(InvoiceBatchesError):
    """The remote batch service returned an error or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnmappedRemoteStateError(InvoiceBatchesError):
    """The remote service reported a job state with no local equivalent."""

    def __init__(self, state: str | None) -> None:
        super().__init__(f"Unmapped remote job state: {state!r}")
        self.state = state


class ExtractionPayloadError(InvoiceBatchesError):
    """An extraction payload could not be decoded into an invoice."""


class IngestionError(InvoiceBatchesError):
    """Ingestion of a job's output failed as a whole.

    ``errors`` holds the per-line errors collected before giving up.
    """

    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class DocumentNotFoundError(InvoiceBatchesError):
    """A source document is missing from durable storage."""


class RetryStateError(InvoiceBatchesError):
    """A document retry was driven through an illegal transition."""


class InvalidStatusTransition(InvoiceBatchesError):
    """A job status change would move backwards or leave a terminal state."""


class RecordNotFoundError(InvoiceBatchesError, LookupError):
    """A job, invoice or alert referenced by id does not exist."""
