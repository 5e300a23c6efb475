"""
Storage backend abstraction for uploaded files.

Provides the adapter interface and the filesystem backend.
"""

from insightdeck.storage.adapter import StorageAdapter, StorageError, StorageFetchError
from insightdeck.storage.filesystem import FilesystemStorage
from insightdeck.storage.factory import get_storage_adapter

__all__ = [
    "StorageAdapter",
    "StorageError",
    "StorageFetchError",
    "FilesystemStorage",
    "get_storage_adapter",
]
