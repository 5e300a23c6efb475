"""Resolve the configured storage backend once per process."""

from functools import lru_cache

from insightdeck.config.settings import get_settings
from insightdeck.storage.adapter import StorageAdapter, StorageError
from insightdeck.storage.filesystem import FilesystemStorage


@lru_cache()
def get_storage_adapter() -> StorageAdapter:
    """
    Build the adapter named by ``STORAGE_BACKEND``.

    Only ``fs://`` is available; uploads land under ``STORAGE_PATH``.
    """
    backend = get_settings().storage_backend
    if not backend.startswith("fs"):
        raise StorageError(f"Unsupported storage backend: {backend}")
    return FilesystemStorage(base_path=get_settings().storage_path)
