"""Writes decoded invoices into the store."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from ..ports.repository import InvoiceRepository
from .alerts import PriceAlertDetector
from .extraction import ExtractedInvoice
from .models import Invoice, InvoiceItem, PriceAlert, PriceObservation

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    invoice: Invoice
    created: bool
    items: list[InvoiceItem] = field(default_factory=list)
    alerts: list[PriceAlert] = field(default_factory=list)


class InvoiceWriter:
    """Upserts an invoice and replaces its items in a single transaction."""

    def __init__(
        self,
        repository: InvoiceRepository,
        detector: PriceAlertDetector,
        tolerance: Decimal = Decimal("0.02"),
    ) -> None:
        self.repository = repository
        self.detector = detector
        self.tolerance = Decimal(tolerance)

    def write(self, job_id: str | None, document_key: str | None, extracted: ExtractedInvoice) -> WriteResult:
        """Insert or update the invoice keyed on (provider, code)."""
        mismatch = extracted.has_totals_mismatch(self.tolerance)

        with self.repository.transaction():
            provider = self.repository.upsert_provider(
                tax_id=extracted.provider.tax_id,
                name=extracted.provider.name,
                email=extracted.provider.email,
                phone=extracted.provider.phone,
                address=extracted.provider.address,
            )
            invoice, created = self.repository.upsert_invoice(
                provider_id=provider.id,
                code=extracted.invoice_code,
                issue_date=extracted.issue_date,
                total_amount=extracted.total_amount,
                has_totals_mismatch=mismatch,
                document_key=document_key,
                job_id=job_id,
            )
            result = WriteResult(invoice=invoice, created=created)
            self._replace_items(result, extracted)

        action = "Created" if created else "Updated"
        logger.info(f"{action} invoice {invoice.code} ({len(result.items)} items)")
        if mismatch:
            logger.warning(
                f"Invoice {invoice.code}: items total {extracted.items_total} "
                f"!= declared {extracted.total_amount}"
            )
        return result

    def overwrite(self, invoice: Invoice, extracted: ExtractedInvoice) -> WriteResult:
        """Replace an existing invoice's data with a re-extracted version."""
        mismatch = extracted.has_totals_mismatch(self.tolerance)

        with self.repository.transaction():
            updated = self.repository.update_invoice(
                invoice.id,
                issue_date=extracted.issue_date,
                total_amount=extracted.total_amount,
                has_totals_mismatch=mismatch,
            )
            result = WriteResult(invoice=updated, created=False)
            self._replace_items(result, extracted)

        logger.info(f"Overwrote invoice {updated.code} from re-extraction")
        return result

    def _replace_items(self, result: WriteResult, extracted: ExtractedInvoice) -> None:
        invoice = result.invoice
        self.repository.delete_items(invoice.id)

        for item in extracted.items:
            material = self.repository.resolve_material(
                item.material_name, item.material_description, item.material_code
            )
            item_date = item.item_date or extracted.issue_date
            stored = self.repository.add_item(
                invoice_id=invoice.id,
                material_id=material.id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                item_date=item_date,
                work_order=item.work_order,
            )
            result.items.append(stored)

            alert = self.detector.observe(
                PriceObservation(
                    material_id=material.id,
                    provider_id=invoice.provider_id,
                    unit_price=item.unit_price,
                    effective_date=item_date,
                    invoice_item_id=stored.id,
                )
            )
            if alert is not None:
                result.alerts.append(alert)
