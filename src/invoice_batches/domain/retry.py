"""Bounded re-extraction of invoices whose totals do not add up."""

import logging
import mimetypes

from ..ports.batch_service import BatchServicePort
from ..ports.repository import JobRepository
from ..ports.storage import DocumentStoragePort
from .exceptions import DocumentNotFoundError, ExtractionPayloadError, RemoteServiceError
from .extraction import decode_payload
from .models import DocumentRetry, Invoice, JobError, RetryState
from .writer import InvoiceWriter

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/pdf"


def guess_mime_type(document_key: str) -> str:
    mime_type, _ = mimetypes.guess_type(document_key)
    return mime_type or DEFAULT_MIME_TYPE


class MismatchRetryService:
    """Resubmits a mismatched document until a consistent result comes back
    or the attempt budget runs out. The invoice stays flagged otherwise."""

    def __init__(
        self,
        jobs: JobRepository,
        storage: DocumentStoragePort,
        remote: BatchServicePort,
        writer: InvoiceWriter,
        max_attempts: int = 3,
    ) -> None:
        self.jobs = jobs
        self.storage = storage
        self.remote = remote
        self.writer = writer
        self.max_attempts = max_attempts

    def retry(self, job_id: str, invoice: Invoice) -> DocumentRetry:
        key = invoice.document_key or f"invoice-{invoice.id}"
        state = DocumentRetry(document_key=key, invoice_id=invoice.id, max_attempts=self.max_attempts)

        data = self._load_source(invoice, state)
        if data is not None:
            self._run_attempts(invoice, state, data)

        if state.attempts:
            self.jobs.add_retry_counts(job_id, attempts=state.attempts, documents=1)

        if state.state is RetryState.EXHAUSTED:
            reason = state.errors[-1] if state.errors else "unknown"
            logger.warning(
                f"Invoice {invoice.code} still mismatched after {state.attempts} attempts: {reason}"
            )
            self.jobs.append_errors(
                job_id,
                [
                    JobError(
                        message=(
                            f"Totals mismatch unresolved for invoice {invoice.code} "
                            f"after {state.attempts} attempts: {reason}"
                        ),
                        kind="mismatch",
                        document_key=invoice.document_key,
                    )
                ],
            )
        return state

    def _load_source(self, invoice: Invoice, state: DocumentRetry) -> bytes | None:
        if not invoice.document_key:
            state.exhaust("No source document recorded")
            return None
        try:
            return self.storage.get(invoice.document_key)
        except DocumentNotFoundError as e:
            state.exhaust(f"Source document unavailable: {e}")
            return None
        except Exception as e:
            logger.warning(f"Could not read {invoice.document_key} for retry: {e}")
            state.exhaust(f"Source document unavailable: {e}")
            return None

    def _run_attempts(self, invoice: Invoice, state: DocumentRetry, data: bytes) -> None:
        mime_type = guess_mime_type(state.document_key)

        while state.can_retry:
            attempt = state.start_attempt()
            logger.info(f"Re-extracting {state.document_key} (attempt {attempt}/{state.max_attempts})")
            try:
                text = self.remote.extract_document(data, mime_type=mime_type)
                extracted = decode_payload(text)
            except (RemoteServiceError, ExtractionPayloadError) as e:
                state.fail_attempt(str(e))
                continue
            except Exception as e:
                logger.warning(f"Unexpected error re-extracting {state.document_key}: {e}")
                state.fail_attempt(f"Unexpected error: {e}")
                continue

            if extracted.has_totals_mismatch(self.writer.tolerance):
                state.fail_attempt(
                    f"items total {extracted.items_total} != declared {extracted.total_amount}"
                )
                continue

            self.writer.overwrite(invoice, extracted)
            state.resolve()
            logger.info(f"Resolved mismatch for {state.document_key} on attempt {attempt}")
            return

        if not state.is_finished:
            state.exhaust("Retry budget is zero")
