"""Ingestion of a completed job's output into the domain store."""

import logging
from collections.abc import Iterator
from typing import Any

from ..ports.batch_service import BatchServicePort
from ..ports.repository import JobRepository
from .exceptions import ExtractionPayloadError, IngestionError
from .extraction import decode_payload
from .models import (
    ExtractionRecord,
    IngestionSummary,
    InlineResults,
    Invoice,
    JobError,
    LineError,
    ResultFile,
    ResultHandle,
    RetryState,
)
from .parser import RAW_PREVIEW_LENGTH, iter_result_lines, to_extraction_record
from .retry import MismatchRetryService
from .writer import InvoiceWriter

logger = logging.getLogger(__name__)


class IngestionService:
    """Streams result records into the store.

    A bad record is recorded against the job and skipped; only an output with
    no usable records at all fails the ingestion as a whole.
    """

    def __init__(
        self,
        jobs: JobRepository,
        remote: BatchServicePort,
        writer: InvoiceWriter,
        retrier: MismatchRetryService | None = None,
    ) -> None:
        self.jobs = jobs
        self.remote = remote
        self.writer = writer
        self.retrier = retrier

    def ingest(self, job_id: str, output: ResultHandle) -> IngestionSummary:
        summary = IngestionSummary()
        seen: set[str] = set()
        mismatched: list[Invoice] = []
        records_found = 0

        for item in self._iter_output(output):
            if isinstance(item, LineError):
                summary.errors.append(
                    JobError(
                        message=f"Line {item.line}: {item.message} ({item.raw})",
                        kind="parse",
                        line=item.line,
                    )
                )
                continue

            records_found += 1
            if item.key in seen:
                logger.warning(f"Job {job_id}: duplicate result key {item.key} skipped")
                continue
            seen.add(item.key)

            invoice = self._ingest_record(job_id, item, summary)
            if invoice is not None and invoice.has_totals_mismatch:
                mismatched.append(invoice)

        if records_found == 0:
            raise IngestionError(
                f"No parseable records in output of job {job_id} "
                f"({len(summary.errors)} malformed lines)",
                errors=summary.errors,
            )

        self._check_manifest(job_id, seen, summary)

        if self.retrier is not None:
            for invoice in mismatched:
                try:
                    state = self.retrier.retry(job_id, invoice)
                except Exception as e:
                    logger.exception(f"Job {job_id}: retry of invoice {invoice.code} failed")
                    summary.errors.append(
                        JobError(
                            message=f"Totals mismatch retry failed for invoice {invoice.code}: {e}",
                            kind="mismatch",
                            document_key=invoice.document_key,
                        )
                    )
                    continue
                if state.state is RetryState.RESOLVED:
                    summary.resolved += 1

        logger.info(
            f"Job {job_id}: {summary.created} created, {summary.updated} updated, "
            f"{summary.failed} failed, {summary.blocked} blocked, {summary.missing} missing, "
            f"{summary.mismatched} mismatched ({summary.resolved} resolved)"
        )
        return summary

    def _iter_output(self, output: ResultHandle) -> Iterator[ExtractionRecord | LineError]:
        if isinstance(output, ResultFile):
            with self.remote.open_results(output.name) as stream:
                yield from iter_result_lines(stream)
        elif isinstance(output, InlineResults):
            yield from _iter_inline(output.records)
        else:
            raise IngestionError(f"Unsupported output handle: {output!r}")

    def _ingest_record(
        self, job_id: str, record: ExtractionRecord, summary: IngestionSummary
    ) -> Invoice | None:
        if record.error:
            summary.failed += 1
            summary.errors.append(
                JobError(
                    message=f"Extraction failed: {record.error}",
                    document_key=record.key,
                    line=record.line,
                )
            )
            return None

        if record.blocked:
            summary.blocked += 1
            summary.errors.append(
                JobError(
                    message="Document blocked by the extraction service",
                    document_key=record.key,
                    line=record.line,
                )
            )
            return None

        try:
            extracted = decode_payload(record.text)
            result = self.writer.write(job_id, record.key, extracted)
        except ExtractionPayloadError as e:
            logger.warning(f"Job {job_id}: {record.key}: {e}")
            summary.failed += 1
            summary.errors.append(JobError(message=str(e), document_key=record.key, line=record.line))
            return None
        except Exception as e:
            logger.exception(f"Job {job_id}: failed to store {record.key}: {e}")
            summary.failed += 1
            summary.errors.append(
                JobError(message=f"Failed to store invoice: {e}", document_key=record.key, line=record.line)
            )
            return None

        if result.created:
            summary.created += 1
        else:
            summary.updated += 1
        summary.alerts += len(result.alerts)
        if result.invoice.has_totals_mismatch:
            summary.mismatched += 1
        return result.invoice

    def _check_manifest(self, job_id: str, seen: set[str], summary: IngestionSummary) -> None:
        for key in self.jobs.document_keys(job_id):
            if key in seen:
                continue
            summary.missing += 1
            summary.errors.append(
                JobError(message="No result returned for document", kind="missing", document_key=key)
            )


def _iter_inline(records: list[Any]) -> Iterator[ExtractionRecord | LineError]:
    for index, data in enumerate(records):
        if not isinstance(data, dict):
            raw = repr(data)
            if len(raw) > RAW_PREVIEW_LENGTH:
                raw = raw[:RAW_PREVIEW_LENGTH] + "..."
            yield LineError(line=index + 1, raw=raw, message="Inline result is not an object")
            continue
        if not data.get("key"):
            data = {**data, "key": f"inline-{index}"}
        yield to_extraction_record(data, index + 1)
