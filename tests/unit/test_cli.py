"""Tests for the command line interface."""

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from invoice_batches import __main__ as main
from invoice_batches.__main__ import cli, format_job, read_manifest
from invoice_batches.adapters.store import SqliteStore
from invoice_batches.domain.models import Job, JobError, JobStatus, PriceObservation, SweepSummary
from invoice_batches.domain.reconciler import ReconciliationService
from invoice_batches.services import Services


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    path = tmp_path / "config.toml"
    path.write_text(
        f"""
[database]
path = "{tmp_path / 'invoices.db'}"

[storage]
root = "{tmp_path / 'documents'}"
"""
    )
    return path


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def run(runner: CliRunner, config_path: Path, *args: str):
    return runner.invoke(cli, ["-c", str(config_path), *args])


class TestReadManifest:
    def test_skips_blanks_and_comments(self, tmp_path: Path) -> None:
        manifest = tmp_path / "keys.txt"
        manifest.write_text("# uploaded 2024-03-01\na.pdf\n\n  b.pdf  \n")

        assert read_manifest(manifest) == ["a.pdf", "b.pdf"]


class TestFormatJob:
    def test_lists_errors_and_retries(self) -> None:
        job = Job(
            id="batches/1",
            status=JobStatus.FAILED,
            total_documents=2,
            retry_attempts=2,
            retried_document_count=1,
            created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            errors=[JobError(message="No result returned for document", kind="missing", document_key="b.pdf")],
        )

        lines = format_job(job)

        assert lines[0] == "batches/1: FAILED"
        assert "  retries: 2 attempts on 1 documents" in lines
        assert lines[-1] == "  ! missing [b.pdf]: No result returned for document"


class TestCommands:
    """Tests for the CLI commands against a temporary database."""

    def test_init_db(self, runner: CliRunner, config_path: Path, tmp_path: Path) -> None:
        result = run(runner, config_path, "init-db")

        assert result.exit_code == 0
        assert (tmp_path / "invoices.db").exists()

    def test_register_and_status(self, runner: CliRunner, config_path: Path, tmp_path: Path) -> None:
        manifest = tmp_path / "keys.txt"
        manifest.write_text("b.pdf\nc.pdf\n")

        registered = run(runner, config_path, "register", "batches/1", "a.pdf", "-m", str(manifest), "--blocked", "1")
        status = run(runner, config_path, "status", "batches/1")

        assert registered.exit_code == 0
        assert "Registered batches/1 (4 documents)" in registered.output
        assert status.exit_code == 0
        assert "batches/1: PENDING" in status.output
        assert "4 total" in status.output

    def test_register_requires_keys(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "register", "batches/1")

        assert result.exit_code == 2
        assert "No document keys given" in result.output

    def test_unknown_job(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "status", "batches/missing")

        assert result.exit_code == 1
        assert "Unknown job batches/missing" in result.output

    def test_sessions(self, runner: CliRunner, config_path: Path) -> None:
        run(runner, config_path, "register", "batches/1", "a.pdf")
        run(runner, config_path, "register", "batches/2", "b.pdf")

        result = run(runner, config_path, "sessions")

        assert result.exit_code == 0
        assert result.output.count("session-") == 1
        assert "jobs=2 docs=2" in result.output

    def test_invoices_empty(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "invoices", "--job", "batches/1")

        assert result.exit_code == 0
        assert "No invoices" in result.output

    def test_alerts_empty(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "alerts", "--status", "pending")

        assert result.exit_code == 0
        assert "No alerts" in result.output

    def test_prices_empty(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "prices")

        assert result.exit_code == 0
        assert "No prices" in result.output

    def test_prices_lists_latest(self, runner: CliRunner, config_path: Path, tmp_path: Path) -> None:
        store = SqliteStore(tmp_path / "invoices.db")
        store.init_db()
        provider = store.upsert_provider("B1", "Acme")
        other = store.upsert_provider("B2", "Globex")
        sand = store.resolve_material("Sand")
        store.record_latest_price(PriceObservation(sand.id, provider.id, Decimal("12.50"), date(2024, 3, 5)))
        store.record_latest_price(PriceObservation(sand.id, other.id, Decimal("11.00"), date(2024, 3, 1)))

        result = run(runner, config_path, "prices", "--provider", str(provider.id))

        assert result.exit_code == 0
        assert f"material {sand.id} provider {provider.id}: 12.50 since 2024-03-05" in result.output
        assert "11.00" not in result.output

    def test_review_unknown_alert(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "review-alert", "5", "approve")

        assert result.exit_code == 1
        assert "Unknown alert 5" in result.output

    def test_reconcile_requires_api_key(self, runner: CliRunner, config_path: Path) -> None:
        result = run(runner, config_path, "reconcile")

        assert result.exit_code == 1
        assert "GEMINI_API_KEY is not configured" in result.output

    def test_reconcile_sweep(
        self, runner: CliRunner, config_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        reconciler = MagicMock(spec=ReconciliationService)
        reconciler.sweep.return_value = SweepSummary(checked=2, active=1, completed=1, failed=0)
        monkeypatch.setattr(
            main,
            "build_services",
            lambda settings, store: Services(settings, store, MagicMock(), MagicMock(), reconciler),
        )

        result = run(runner, config_path, "reconcile")

        assert result.exit_code == 0
        assert "Checked 2: 1 active, 1 completed, 0 failed" in result.output
