"""Tests for settings loading."""

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from invoice_batches.config import RemoteConfig, ServerConfig, SessionsConfig, Settings, load_settings
from invoice_batches.domain.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("GEMINI_API_KEY", "API_SECRET_KEY", "WEBHOOK_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("INVOICE_BATCHES_DATABASE_PATH", str(tmp_path / "env" / "invoices.db"))
    monkeypatch.setenv("INVOICE_BATCHES_STORAGE_ROOT", str(tmp_path / "env" / "documents"))


class TestLoadSettings:
    def test_reads_toml_sections(self, tmp_path: Path) -> None:
        config = tmp_path / "config.toml"
        config.write_text(
            f"""
[database]
path = "{tmp_path / 'db' / 'invoices.db'}"

[storage]
root = "{tmp_path / 'docs'}"
public_base_url = "https://files.test"

[remote]
api_key = "file-key"
model = "gemini-test"

[ingestion]
mismatch_tolerance = "0.05"
max_retry_attempts = 1

[sessions]
window_minutes = 10

[server]
api_secret_key = "cron"
webhook_secret = "hook"
"""
        )

        settings = load_settings(config)

        assert settings.database.path == tmp_path / "db" / "invoices.db"
        assert settings.remote.api_key == "file-key"
        assert settings.remote.model == "gemini-test"
        assert settings.ingestion.mismatch_tolerance == Decimal("0.05")
        assert settings.ingestion.max_retry_attempts == 1
        assert settings.sessions.window_minutes == 10
        assert settings.alerts.threshold_percent == Decimal("10")
        assert settings.require_server().webhook_secret == "hook"
        assert (tmp_path / "db").is_dir()
        assert (tmp_path / "docs").is_dir()

    def test_missing_file_uses_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        monkeypatch.setenv("API_SECRET_KEY", "env-cron")

        settings = load_settings(tmp_path / "absent.toml")

        assert settings.database.path == tmp_path / "env" / "invoices.db"
        assert settings.remote.api_key == "env-key"
        assert settings.server.api_secret_key == "env-cron"
        assert settings.remote.base_url == "https://generativelanguage.googleapis.com/v1beta"


class TestRequirements:
    def test_remote_key_required(self) -> None:
        settings = Settings(remote=RemoteConfig(api_key=None))

        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            settings.require_remote()

    def test_server_secrets_required(self) -> None:
        settings = Settings(server=ServerConfig(api_secret_key="cron", webhook_secret=None))

        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_server()

        assert str(exc_info.value) == "Missing server secrets: WEBHOOK_SECRET"

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SessionsConfig(max_sessions=0)
