"""Tests for ingesting a completed job's output."""

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from invoice_batches.adapters.store import SqliteStore
from invoice_batches.domain.alerts import PriceAlertDetector
from invoice_batches.domain.exceptions import IngestionError
from invoice_batches.domain.ingestion import IngestionService
from invoice_batches.domain.models import DocumentRetry, InlineResults, ResultFile, RetryState
from invoice_batches.domain.retry import MismatchRetryService
from invoice_batches.domain.writer import InvoiceWriter

MakeInvoice = Callable[..., dict[str, Any]]
ResultLine = Callable[[str, dict[str, Any]], str]


@pytest.fixture
def writer(store: SqliteStore) -> InvoiceWriter:
    return InvoiceWriter(store, PriceAlertDetector(store))


@pytest.fixture
def service(store: SqliteStore, mock_remote: MagicMock, writer: InvoiceWriter) -> IngestionService:
    return IngestionService(store, mock_remote, writer)


class TestResultFiles:
    """Tests for outputs delivered as a result file."""

    def test_ingests_every_record(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf", "b.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1")),
                result_line("b.pdf", make_invoice(code="F-2")),
            ]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        mock_remote.open_results.assert_called_once_with("files/out-1")
        assert summary.created == 2
        assert summary.processed == 2
        assert summary.errors == []
        invoices = store.list_invoices("batches/1")
        assert sorted(i.code for i in invoices) == ["F-1", "F-2"]
        assert {i.document_key for i in invoices} == {"a.pdf", "b.pdf"}
        assert len(store.list_items()) == 4

    def test_reingest_updates_without_duplicates(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf", "b.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1")),
                result_line("b.pdf", make_invoice(code="F-2")),
            ]
        )

        service.ingest("batches/1", ResultFile("files/out-1"))
        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert summary.created == 0
        assert summary.updated == 2
        assert len(store.list_invoices()) == 2
        assert len(store.list_items()) == 4

    def test_bad_lines_are_recorded_and_skipped(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf", "b.pdf", "c.pdf", "d.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1")),
                '{"key": "x.pdf", "response": ',
                json.dumps({"key": "b.pdf", "error": {"code": 13, "message": "internal"}}),
                json.dumps({"key": "c.pdf", "response": {"promptFeedback": {"blockReason": "SAFETY"}}}),
            ]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert summary.created == 1
        assert summary.failed == 1
        assert summary.blocked == 1
        assert summary.missing == 1
        assert summary.processed == 4
        assert [(e.kind, e.document_key) for e in summary.errors] == [
            ("parse", None),
            ("document", "b.pdf"),
            ("document", "c.pdf"),
            ("missing", "d.pdf"),
        ]
        assert summary.errors[0].line == 2
        assert summary.errors[1].message.startswith("Extraction failed:")

    def test_duplicate_keys_ingested_once(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1")),
                result_line("a.pdf", make_invoice(code="F-9")),
            ]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert summary.created == 1
        assert [i.code for i in store.list_invoices()] == ["F-1"]

    def test_unusable_payload_fails_document(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [json.dumps({"key": "a.pdf", "response": {"text": "Sorry, I cannot read this."}})]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert summary.failed == 1
        assert summary.errors[0].message == "Extraction payload is not valid JSON"
        assert store.list_invoices() == []

    def test_no_records_raises(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        mock_remote.open_results.side_effect = results_file(["not json", "[1, 2]"])

        with pytest.raises(IngestionError) as exc_info:
            service.ingest("batches/1", ResultFile("files/out-1"))

        assert len(exc_info.value.errors) == 2
        assert all(e.kind == "parse" for e in exc_info.value.errors)

    def test_empty_file_raises(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        results_file: Callable,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        mock_remote.open_results.side_effect = results_file([])

        with pytest.raises(IngestionError):
            service.ingest("batches/1", ResultFile("files/out-1"))


class TestInlineResults:
    """Tests for outputs delivered inline in the status response."""

    def test_inline_records(
        self,
        service: IngestionService,
        store: SqliteStore,
        mock_remote: MagicMock,
        make_invoice: MakeInvoice,
    ) -> None:
        store.register_job("batches/2", ["a.pdf"])
        output = InlineResults(
            [
                {"key": "a.pdf", "response": {"text": json.dumps(make_invoice(code="F-1"))}},
                "garbage",
            ]
        )

        summary = service.ingest("batches/2", output)

        mock_remote.open_results.assert_not_called()
        assert summary.created == 1
        assert [(e.kind, e.line) for e in summary.errors] == [("parse", 2)]

    def test_inline_records_without_key(
        self,
        service: IngestionService,
        store: SqliteStore,
        make_invoice: MakeInvoice,
    ) -> None:
        store.register_job("batches/2", [])
        output = InlineResults([{"response": {"text": json.dumps(make_invoice(code="F-1"))}}])

        service.ingest("batches/2", output)

        assert store.list_invoices()[0].document_key == "inline-0"


class TestPricesAndMismatches:
    """Tests for alert counting and mismatch handling during ingestion."""

    def test_price_change_counted(
        self,
        service: IngestionService,
        store: SqliteStore,
        make_invoice: MakeInvoice,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        store.register_job("batches/2", ["b.pdf"])
        first = make_invoice(code="F-1", issue_date="2024-03-01")
        second = make_invoice(
            code="F-2",
            issue_date="2024-04-01",
            total="170.00",
            items=[("Cement", "2", "60.00", "120.00"), ("Sand", "1", "50.00", "50.00")],
        )

        service.ingest("batches/1", InlineResults([{"key": "a.pdf", "response": {"text": json.dumps(first)}}]))
        summary = service.ingest(
            "batches/2", InlineResults([{"key": "b.pdf", "response": {"text": json.dumps(second)}}])
        )

        assert summary.alerts == 1
        [alert] = store.list_alerts()
        assert alert.old_price == 50
        assert alert.new_price == 60

    def test_mismatch_handed_to_retrier(
        self,
        store: SqliteStore,
        mock_remote: MagicMock,
        writer: InvoiceWriter,
        make_invoice: MakeInvoice,
    ) -> None:
        retrier = MagicMock(spec=MismatchRetryService)
        retrier.retry.return_value = DocumentRetry(
            document_key="a.pdf", invoice_id=1, attempts=1, state=RetryState.RESOLVED
        )
        service = IngestionService(store, mock_remote, writer, retrier=retrier)
        store.register_job("batches/1", ["a.pdf"])
        payload = make_invoice(code="F-1", total="999.00")

        summary = service.ingest(
            "batches/1", InlineResults([{"key": "a.pdf", "response": {"text": json.dumps(payload)}}])
        )

        assert summary.mismatched == 1
        assert summary.resolved == 1
        job_id, invoice = retrier.retry.call_args.args
        assert job_id == "batches/1"
        assert invoice.code == "F-1"
        assert invoice.has_totals_mismatch

    def test_mismatch_within_tolerance_not_flagged(
        self,
        service: IngestionService,
        store: SqliteStore,
        make_invoice: MakeInvoice,
    ) -> None:
        store.register_job("batches/1", ["a.pdf"])
        payload = make_invoice(code="F-1", total="150.02")

        summary = service.ingest(
            "batches/1", InlineResults([{"key": "a.pdf", "response": {"text": json.dumps(payload)}}])
        )

        assert summary.mismatched == 0
        assert not store.list_invoices()[0].has_totals_mismatch

    def test_retry_failure_keeps_earlier_errors(
        self,
        store: SqliteStore,
        mock_remote: MagicMock,
        mock_storage: MagicMock,
        writer: InvoiceWriter,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        mock_storage.get.side_effect = PermissionError("bucket unavailable")
        retrier = MismatchRetryService(store, mock_storage, mock_remote, writer)
        service = IngestionService(store, mock_remote, writer, retrier=retrier)
        store.register_job("batches/1", ["a.pdf", "b.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1", total="999.00")),
                "{corrupt",
                json.dumps({"key": "b.pdf", "error": {"code": 13, "message": "internal"}}),
            ]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert summary.mismatched == 1
        assert summary.resolved == 0
        assert [(e.kind, e.document_key) for e in summary.errors] == [
            ("parse", None),
            ("document", "b.pdf"),
        ]
        mock_remote.extract_document.assert_not_called()
        job = store.get_job("batches/1")
        mismatch_errors = [e for e in job.errors if e.kind == "mismatch"]
        assert len(mismatch_errors) == 1
        assert "bucket unavailable" in mismatch_errors[0].message

    def test_unexpected_retry_crash_recorded_per_invoice(
        self,
        store: SqliteStore,
        mock_remote: MagicMock,
        writer: InvoiceWriter,
        make_invoice: MakeInvoice,
        result_line: ResultLine,
        results_file: Callable,
    ) -> None:
        retrier = MagicMock(spec=MismatchRetryService)
        retrier.retry.side_effect = [
            RuntimeError("database is locked"),
            DocumentRetry(document_key="b.pdf", invoice_id=2, attempts=1, state=RetryState.RESOLVED),
        ]
        service = IngestionService(store, mock_remote, writer, retrier=retrier)
        store.register_job("batches/1", ["a.pdf", "b.pdf"])
        mock_remote.open_results.side_effect = results_file(
            [
                result_line("a.pdf", make_invoice(code="F-1", total="999.00")),
                "{corrupt",
                result_line("b.pdf", make_invoice(code="F-2", total="999.00")),
            ]
        )

        summary = service.ingest("batches/1", ResultFile("files/out-1"))

        assert retrier.retry.call_count == 2
        assert summary.resolved == 1
        assert [(e.kind, e.document_key) for e in summary.errors] == [
            ("parse", None),
            ("mismatch", "a.pdf"),
        ]
        assert "database is locked" in summary.errors[1].message
