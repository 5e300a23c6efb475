"""
Byte storage contract for uploaded files.

The rest of the service only ever holds the opaque URI returned by
``store``; the backend decides where and how the bytes live.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class StorageError(Exception):
    """Raised when a storage backend cannot complete an operation."""
    pass


class StorageFetchError(StorageError):
    """Raised when stored bytes cannot be read back."""
    pass


class StorageAdapter(ABC):
    """
    Write-once store for uploads.

    Files are written once at admission, read back whole by ingestion jobs,
    previews and downloads, and removed with their dataset.
    """

    @abstractmethod
    def store(self, data: bytes, filename: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Persist an upload and return its URI.

        Args:
            data: File contents
            filename: Client-supplied filename (sanitized by the backend)
            metadata: Descriptive fields kept next to the file

        Raises:
            StorageError: If the bytes could not be written
        """

    @abstractmethod
    def fetch(self, uri: str) -> bytes:
        """
        Raises:
            StorageFetchError: If the file is missing or unreadable
        """

    @abstractmethod
    def exists(self, uri: str) -> bool:
        ...

    @abstractmethod
    def remove(self, uri: str) -> None:
        """Delete a stored file; raises StorageError if it is not there."""

    @abstractmethod
    def get_size(self, uri: str) -> int:
        ...
