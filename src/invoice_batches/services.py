"""Wiring of adapters into the domain services."""

from dataclasses import dataclass

from .adapters.remote import create_batch_adapter
from .adapters.storage import FilesystemStorageAdapter
from .adapters.store import SqliteStore
from .config import Settings
from .domain.alerts import PriceAlertDetector
from .domain.ingestion import IngestionService
from .domain.reconciler import ReconciliationService
from .domain.retry import MismatchRetryService
from .domain.writer import InvoiceWriter
from .ports.batch_service import BatchServicePort
from .ports.storage import DocumentStoragePort


@dataclass
class Services:
    settings: Settings
    store: SqliteStore
    remote: BatchServicePort
    storage: DocumentStoragePort
    reconciler: ReconciliationService


def build_services(
    settings: Settings,
    store: SqliteStore | None = None,
    remote: BatchServicePort | None = None,
    storage: DocumentStoragePort | None = None,
) -> Services:
    """Wire up adapters. Raises ConfigurationError without Gemini credentials
    unless a remote adapter is passed in."""
    store = store or SqliteStore(settings.database.path)
    remote = remote or create_batch_adapter(settings.require_remote())
    storage = storage or FilesystemStorageAdapter(
        settings.storage.root, settings.storage.public_base_url
    )

    detector = PriceAlertDetector(store, threshold_percent=settings.alerts.threshold_percent)
    writer = InvoiceWriter(store, detector, tolerance=settings.ingestion.mismatch_tolerance)
    retrier = MismatchRetryService(
        jobs=store,
        storage=storage,
        remote=remote,
        writer=writer,
        max_attempts=settings.ingestion.max_retry_attempts,
    )
    ingestion = IngestionService(jobs=store, remote=remote, writer=writer, retrier=retrier)
    reconciler = ReconciliationService(
        jobs=store,
        remote=remote,
        ingestion=ingestion,
        status_attempts=settings.remote.status_attempts,
        rate_limit_delay=settings.remote.rate_limit_delay,
    )
    return Services(
        settings=settings,
        store=store,
        remote=remote,
        storage=storage,
        reconciler=reconciler,
    )
