"""Storage port - interface for durable source-document storage."""

from abc import ABC, abstractmethod


class DocumentStoragePort(ABC):
    """Interface for durable storage of submitted source documents."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the stored bytes for key.

        Raises DocumentNotFoundError if nothing is stored under key.
        """
        pass

    @abstractmethod
    def put(self, data: bytes, key: str | None = None) -> str:
        """Store bytes and return their public URL."""
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return the public URL for a stored key."""
        pass
