"""Configuration management using pydantic-settings."""

import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Self

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain.exceptions import ConfigurationError

DEFAULT_DATA_DIR = "~/.local/share/invoice-batches"
DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
CONFIG_PATH = Path("~/.config/invoice-batches/config.toml").expanduser()


class DatabaseConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_DATABASE_")

    path: Path = Path(DEFAULT_DATA_DIR) / "invoices.db"

    @field_validator("path", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class RemoteConfig(BaseSettings):
    """Gemini batch API configuration."""

    model_config = SettingsConfigDict(env_prefix="GEMINI_")

    api_key: str | None = None
    base_url: str = DEFAULT_GEMINI_URL
    model: str = DEFAULT_GEMINI_MODEL
    timeout: float = 60.0
    status_attempts: int = Field(default=3, ge=1)
    rate_limit_delay: float = Field(default=3.0, ge=0)


class StorageConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_STORAGE_")

    root: Path = Path(DEFAULT_DATA_DIR) / "documents"
    public_base_url: str | None = None

    @field_validator("root", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()


class IngestionConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_INGESTION_")

    mismatch_tolerance: Decimal = Field(default=Decimal("0.02"), ge=0)
    max_retry_attempts: int = Field(default=3, ge=0)


class AlertsConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_ALERTS_")

    threshold_percent: Decimal = Field(default=Decimal("10"), ge=0)


class SessionsConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_SESSIONS_")

    window_minutes: int = Field(default=5, ge=0)
    max_sessions: int = Field(default=10, ge=1)


class ServerConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_SERVER_")

    host: str = "127.0.0.1"
    port: int = 8000
    api_secret_key: str | None = Field(
        default=None, validation_alias=AliasChoices("api_secret_key", "API_SECRET_KEY")
    )
    webhook_secret: str | None = Field(
        default=None, validation_alias=AliasChoices("webhook_secret", "WEBHOOK_SECRET")
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INVOICE_BATCHES_")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @model_validator(mode="after")
    def ensure_dirs(self) -> Self:
        self.database.path.parent.mkdir(parents=True, exist_ok=True)
        self.storage.root.mkdir(parents=True, exist_ok=True)
        return self

    def require_remote(self) -> RemoteConfig:
        if not self.remote.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        return self.remote

    def require_server(self) -> ServerConfig:
        missing = [
            name
            for name, value in (
                ("API_SECRET_KEY", self.server.api_secret_key),
                ("WEBHOOK_SECRET", self.server.webhook_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing server secrets: {', '.join(missing)}")
        return self.server


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from TOML file, falling back to defaults."""
    path = config_path or CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            data = tomllib.load(f)

        return Settings(
            database=DatabaseConfig(**data.get("database", {})),
            remote=RemoteConfig(**data.get("remote", {})),
            storage=StorageConfig(**data.get("storage", {})),
            ingestion=IngestionConfig(**data.get("ingestion", {})),
            alerts=AlertsConfig(**data.get("alerts", {})),
            sessions=SessionsConfig(**data.get("sessions", {})),
            server=ServerConfig(**data.get("server", {})),
        )

    return Settings()
