"""
Local-disk storage for uploaded datasets.

Layout under ``base_path``::

    uploads/{yyyy}/{mm}/{hex id}/{sanitized filename}
    uploads/{yyyy}/{mm}/{hex id}/metadata.json

URIs are ``fs://`` followed by the path relative to ``base_path``.
"""

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from insightdeck.storage.adapter import StorageAdapter, StorageError, StorageFetchError

SCHEME = "fs://"
METADATA_FILENAME = "metadata.json"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a single safe path component."""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "upload"


class FilesystemStorage(StorageAdapter):
    """Keeps each upload in its own directory so equal filenames never clash."""

    def __init__(self, base_path: str = "./storage"):
        self.base_path = Path(base_path).resolve()
        self.uploads_path = self.base_path / "uploads"
        self.uploads_path.mkdir(parents=True, exist_ok=True)

    def _uri_to_path(self, uri: str) -> Path:
        """Resolve a URI, refusing other schemes and anything outside ``base_path``."""
        if not uri.startswith(SCHEME):
            raise StorageError(f"Not a filesystem URI: {uri}")

        path = (self.base_path / uri[len(SCHEME):]).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StorageError(f"URI outside storage root: {uri}")
        return path

    def _stored_file(self, uri: str) -> Path:
        path = self._uri_to_path(uri)
        if not path.is_file():
            raise StorageError(f"Stored file not found: {uri}")
        return path

    def store(self, data: bytes, filename: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        now = datetime.utcnow()
        upload_dir = self.uploads_path / f"{now:%Y}" / f"{now:%m}" / uuid4().hex
        target = upload_dir / safe_filename(filename)

        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            if metadata:
                (upload_dir / METADATA_FILENAME).write_text(
                    json.dumps(metadata, default=str), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not write upload {filename!r}: {e}") from e

        return SCHEME + target.relative_to(self.base_path).as_posix()

    def fetch(self, uri: str) -> bytes:
        try:
            return self._stored_file(uri).read_bytes()
        except StorageError as e:
            raise StorageFetchError(str(e)) from e
        except OSError as e:
            raise StorageFetchError(f"Could not read {uri}: {e}") from e

    def exists(self, uri: str) -> bool:
        return self._uri_to_path(uri).is_file()

    def remove(self, uri: str) -> None:
        """Delete the file and its metadata, then prune directories left empty."""
        path = self._stored_file(uri)
        try:
            path.unlink()
            (path.parent / METADATA_FILENAME).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not delete {uri}: {e}") from e

        directory = path.parent
        while directory != self.uploads_path and self.uploads_path in directory.parents:
            if any(directory.iterdir()):
                break
            try:
                directory.rmdir()
            except OSError:
                # Another upload landed here concurrently
                break
            directory = directory.parent

    def get_size(self, uri: str) -> int:
        return self._stored_file(uri).stat().st_size

    def read_metadata(self, uri: str) -> Dict[str, Any]:
        """Metadata written alongside the upload, or ``{}`` if there was none."""
        sidecar = self._uri_to_path(uri).parent / METADATA_FILENAME
        if not sidecar.exists():
            return {}
        try:
            return json.loads(sidecar.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read metadata for {uri}: {e}") from e
