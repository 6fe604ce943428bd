"""Shared test fixtures."""

import io
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from invoice_batches.adapters.store import SqliteStore
from invoice_batches.config import DatabaseConfig, RemoteConfig, ServerConfig, Settings, StorageConfig
from invoice_batches.ports.batch_service import BatchServicePort
from invoice_batches.ports.repository import JobRepository
from invoice_batches.ports.storage import DocumentStoragePort


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temp directory with all secrets present."""
    return Settings(
        database=DatabaseConfig(path=tmp_path / "data" / "invoices.db"),
        storage=StorageConfig(root=tmp_path / "documents"),
        remote=RemoteConfig(api_key="test-key", base_url="https://gemini.test/v1beta"),
        server=ServerConfig(api_secret_key="cron-secret", webhook_secret="hook-secret"),
    )


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    """Fresh SQLite store per test."""
    store = SqliteStore(tmp_path / "test.db")
    store.init_db()
    return store


@pytest.fixture
def mock_remote() -> MagicMock:
    """Mock batch service port."""
    return MagicMock(spec=BatchServicePort)


@pytest.fixture
def mock_storage() -> MagicMock:
    """Mock document storage port."""
    mock = MagicMock(spec=DocumentStoragePort)
    mock.get.return_value = b"%PDF-1.4 test content"
    return mock


@pytest.fixture
def mock_jobs() -> MagicMock:
    """Mock job repository."""
    return MagicMock(spec=JobRepository)


@pytest.fixture
def make_invoice() -> Callable[..., dict[str, Any]]:
    """Factory for extraction payloads as the remote service returns them."""

    def _make(
        code: str = "F-001",
        tax_id: str = "B12345678",
        total: str = "150.00",
        items: list[tuple[str, str, str, str]] | None = None,
        issue_date: str = "2024-03-01",
    ) -> dict[str, Any]:
        if items is None:
            items = [("Cement", "2", "50.00", "100.00"), ("Sand", "1", "50.00", "50.00")]
        return {
            "invoiceCode": code,
            "issueDate": issue_date,
            "totalAmount": total,
            "provider": {"name": "Materiales SL", "cif": tax_id, "email": "info@materiales.test"},
            "items": [
                {
                    "materialName": name,
                    "quantity": quantity,
                    "unitPrice": unit_price,
                    "totalPrice": total_price,
                }
                for name, quantity, unit_price, total_price in items
            ],
        }

    return _make


@pytest.fixture
def result_line() -> Callable[[str, dict[str, Any]], str]:
    """Encode one result-file line for a document key and payload."""

    def _line(key: str, payload: dict[str, Any]) -> str:
        return json.dumps({"key": key, "response": {"text": json.dumps(payload)}})

    return _line


@pytest.fixture
def results_file() -> Callable[[list[str]], Callable[[str], io.BytesIO]]:
    """Build an open_results side effect serving the given lines on every call."""

    def _build(lines: list[str]) -> Callable[[str], io.BytesIO]:
        data = ("\n".join(lines) + "\n").encode("utf-8")
        return lambda name: io.BytesIO(data)

    return _build
