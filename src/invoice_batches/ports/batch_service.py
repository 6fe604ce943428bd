"""Batch service port - interface for the remote extraction service."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from ..domain.models import RemoteJobStatus


class BatchServicePort(ABC):
    """Interface for the asynchronous document-extraction service."""

    @abstractmethod
    def get_job_status(self, job_id: str) -> "RemoteJobStatus":
        """Fetch remote state, progress counts and output location of a job.

        Raises RemoteServiceError on failure.
        """
        pass

    @abstractmethod
    def open_results(self, file_name: str) -> AbstractContextManager[BinaryIO]:
        """Open a job's result file as a binary stream of JSON lines."""
        pass

    @abstractmethod
    def extract_document(self, data: bytes, mime_type: str = "application/pdf") -> str:
        """Run a single document through extraction and return the payload text."""
        pass
