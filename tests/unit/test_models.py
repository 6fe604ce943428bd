"""Unit tests for domain models."""

from datetime import datetime, timezone

import pytest

from invoice_batches.domain.exceptions import RetryStateError
from invoice_batches.domain.models import (
    DocumentRetry,
    IngestionSummary,
    JobError,
    JobStatus,
    RequestCounts,
    RetryState,
)


class TestJobStatus:
    def test_terminal_statuses(self) -> None:
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.PROCESSING.is_terminal
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert JobStatus.CANCELLED.is_terminal


class TestDocumentRetry:
    """Tests for the retry state machine."""

    def test_starts_pending(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1)
        assert retry.state is RetryState.PENDING
        assert retry.can_retry

    def test_resolve_after_attempt(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1)
        assert retry.start_attempt() == 1
        retry.resolve()

        assert retry.state is RetryState.RESOLVED
        assert not retry.can_retry

    def test_exhausts_after_max_attempts(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1, max_attempts=3)
        for _ in range(3):
            retry.start_attempt()
            retry.fail_attempt("still wrong")

        assert retry.state is RetryState.EXHAUSTED
        assert retry.attempts == 3
        assert retry.errors == ["still wrong"] * 3

    def test_refuses_attempt_beyond_max(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1, max_attempts=1)
        retry.start_attempt()
        retry.fail_attempt("bad")

        with pytest.raises(RetryStateError):
            retry.start_attempt()

    def test_refuses_attempt_after_resolve(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1)
        retry.start_attempt()
        retry.resolve()

        with pytest.raises(RetryStateError):
            retry.start_attempt()

    def test_resolve_requires_attempt_in_flight(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1)
        with pytest.raises(RetryStateError):
            retry.resolve()

    def test_exhaust_without_attempts(self) -> None:
        retry = DocumentRetry(document_key="doc.pdf", invoice_id=1)
        retry.exhaust("source missing")

        assert retry.state is RetryState.EXHAUSTED
        assert retry.attempts == 0
        with pytest.raises(RetryStateError):
            retry.exhaust("again")


class TestRequestCounts:
    def test_camel_case_payload(self) -> None:
        counts = RequestCounts.from_payload(
            {"requestCount": "4", "successfulRequestCount": "3", "failedRequestCount": "1"}
        )
        assert counts == RequestCounts(total=4, completed=3, failed=1)
        assert counts.processed == 4

    def test_snake_case_payload(self) -> None:
        counts = RequestCounts.from_payload({"total": 2, "completed": 2, "failed": 0})
        assert counts.processed == 2

    def test_empty_payload(self) -> None:
        assert RequestCounts.from_payload(None) is None
        assert RequestCounts.from_payload({}) is None


class TestJobError:
    def test_round_trip(self) -> None:
        created = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        error = JobError(message="bad line", kind="parse", line=7, created_at=created)

        restored = JobError.from_dict(error.to_dict())

        assert restored == error


class TestIngestionSummary:
    def test_processed_counts_every_outcome(self) -> None:
        summary = IngestionSummary(created=2, updated=1, failed=1, blocked=1, missing=1)
        assert summary.succeeded == 3
        assert summary.processed == 6
