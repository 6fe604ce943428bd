"""Repository ports - interfaces for the domain store."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..domain.models import (
        AlertStatus,
        IngestionSummary,
        Invoice,
        InvoiceItem,
        Job,
        JobError,
        JobStatus,
        Material,
        PriceAlert,
        PriceObservation,
        Provider,
        RequestCounts,
    )


class JobRepository(ABC):
    """Persistence of extraction jobs.

    Jobs are never deleted and their status only moves forward.
    """

    @abstractmethod
    def register_job(
        self,
        job_id: str,
        document_keys: Sequence[str],
        blocked: int = 0,
        created_at: datetime | None = None,
    ) -> "Job":
        """Record a submitted job together with its document manifest."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> "Job | None":
        pass

    @abstractmethod
    def list_jobs(
        self, statuses: Sequence["JobStatus"] | None = None, limit: int | None = None
    ) -> list["Job"]:
        """List jobs newest first, optionally filtered by status."""
        pass

    @abstractmethod
    def document_keys(self, job_id: str) -> list[str]:
        """Return the manifest of document keys submitted with a job."""
        pass

    @abstractmethod
    def update_progress(
        self,
        job_id: str,
        status: "JobStatus",
        counts: "RequestCounts | None",
        at: datetime,
    ) -> "Job":
        """Apply a remote progress report without ever moving status backwards."""
        pass

    @abstractmethod
    def claim_completion(self, job_id: str, at: datetime) -> bool:
        """Atomically mark a job Completed if its completion time is unset.

        Returns True only for the single caller whose update took effect.
        """
        pass

    @abstractmethod
    def mark_failed(self, job_id: str, error: "JobError", at: datetime) -> None:
        """Force a job to Failed, recording the error and completion time."""
        pass

    @abstractmethod
    def append_errors(self, job_id: str, errors: Sequence["JobError"]) -> None:
        pass

    @abstractmethod
    def record_ingestion(self, job_id: str, summary: "IngestionSummary") -> None:
        """Fold ingestion counts into the job counters."""
        pass

    @abstractmethod
    def add_retry_counts(self, job_id: str, attempts: int, documents: int) -> None:
        pass


class InvoiceRepository(ABC):
    """Persistence of providers, materials, invoices, items and price alerts."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Group subsequent calls on this thread into one atomic unit."""
        pass

    @abstractmethod
    def upsert_provider(
        self,
        tax_id: str,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        address: str | None = None,
    ) -> "Provider":
        """Find a provider by tax id, creating it or refreshing its details."""
        pass

    @abstractmethod
    def resolve_material(
        self, name: str, description: str | None = None, code: str | None = None
    ) -> "Material":
        """Find a material by code, then by case-insensitive name, else create it."""
        pass

    @abstractmethod
    def upsert_invoice(
        self,
        provider_id: int,
        code: str,
        issue_date: date,
        total_amount: Decimal,
        has_totals_mismatch: bool,
        document_key: str | None,
        job_id: str | None,
    ) -> tuple["Invoice", bool]:
        """Insert or update the invoice keyed on (provider, code).

        Returns the invoice and whether it was newly created.
        """
        pass

    @abstractmethod
    def update_invoice(
        self,
        invoice_id: int,
        issue_date: date,
        total_amount: Decimal,
        has_totals_mismatch: bool,
    ) -> "Invoice":
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: int) -> "Invoice | None":
        pass

    @abstractmethod
    def list_invoices(self, job_id: str | None = None) -> list["Invoice"]:
        pass

    @abstractmethod
    def delete_items(self, invoice_id: int) -> int:
        pass

    @abstractmethod
    def add_item(
        self,
        invoice_id: int,
        material_id: int,
        quantity: Decimal,
        unit_price: Decimal,
        total_price: Decimal,
        item_date: date,
        work_order: str | None = None,
    ) -> "InvoiceItem":
        pass

    @abstractmethod
    def list_items(self, invoice_id: int | None = None) -> list["InvoiceItem"]:
        pass

    @abstractmethod
    def previous_price(
        self, material_id: int, provider_id: int, before: date
    ) -> "PriceObservation | None":
        """Most recent observation for the pair strictly before ``before``."""
        pass

    @abstractmethod
    def record_latest_price(self, observation: "PriceObservation") -> None:
        """Track the newest known price for the pair; older observations are ignored."""
        pass

    @abstractmethod
    def latest_price(self, material_id: int, provider_id: int) -> "PriceObservation | None":
        pass

    @abstractmethod
    def list_latest_prices(self, provider_id: int | None = None) -> list["PriceObservation"]:
        """Current price per material/provider pair, optionally for one provider."""
        pass

    @abstractmethod
    def find_alert(
        self,
        material_id: int,
        provider_id: int,
        effective_date: date,
        old_price: Decimal,
        new_price: Decimal,
    ) -> "PriceAlert | None":
        pass

    @abstractmethod
    def add_alert(
        self,
        material_id: int,
        provider_id: int,
        old_price: Decimal,
        new_price: Decimal,
        percentage: Decimal,
        effective_date: date,
    ) -> "PriceAlert":
        pass

    @abstractmethod
    def list_alerts(self, status: "AlertStatus | None" = None) -> list["PriceAlert"]:
        pass

    @abstractmethod
    def review_alert(self, alert_id: int, status: "AlertStatus") -> "PriceAlert":
        """Set an alert's review status; the only way alert status changes."""
        pass
