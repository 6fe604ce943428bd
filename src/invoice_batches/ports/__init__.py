"""Ports - interfaces for external dependencies."""

from .batch_service import BatchServicePort
from .repository import InvoiceRepository, JobRepository
from .storage import DocumentStoragePort

__all__ = ["BatchServicePort", "DocumentStoragePort", "InvoiceRepository", "JobRepository"]
