"""
Upload admission control.

Checks the declared filename, MIME type and size of an upload before any
dataset record or ingestion job exists for it.
"""

import os
from typing import Dict, FrozenSet, Optional

from insightdeck.ingest.parsers import DataFormat

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB


class AdmissionError(Exception):
    """
    Raised when an upload is rejected.

    ``rule`` names the failed check: "extension", "mime_type", "empty" or
    "size_limit".
    """

    def __init__(self, rule: str, message: str):
        super().__init__(message)
        self.rule = rule
        self.message = message


EXTENSION_FORMATS: Dict[str, DataFormat] = {
    ".csv": DataFormat.CSV,
    ".json": DataFormat.JSON,
    ".xlsx": DataFormat.EXCEL,
    ".xls": DataFormat.EXCEL,
}

# Browsers disagree on CSV/Excel MIME types, so each extension accepts a
# small set of values actually sent for it.
EXTENSION_MIME_TYPES: Dict[str, FrozenSet[str]] = {
    ".csv": frozenset({
        "text/csv", "application/csv", "text/plain", "application/vnd.ms-excel",
    }),
    ".json": frozenset({"application/json", "text/json"}),
    ".xlsx": frozenset({
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/octet-stream",
    }),
    ".xls": frozenset({"application/vnd.ms-excel", "application/octet-stream"}),
}


def format_bytes(size: int, decimals: int = 2) -> str:
    """Human readable byte size, e.g. ``10 MB``."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, decimals):g} {units[index]}"


def _normalize_mime(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


class UploadGate:
    """Synchronous admission check for uploaded files."""

    def __init__(self, max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES):
        self.max_upload_bytes = max_upload_bytes

    def admit(self, filename: Optional[str], mime_type: Optional[str], size: int) -> DataFormat:
        """
        Validate an upload and return the format it will be parsed as.

        Args:
            filename: Client-declared filename
            mime_type: Client-declared content type
            size: Upload size in bytes

        Returns:
            DataFormat for the file

        Raises:
            AdmissionError: If any rule fails
        """
        extension = os.path.splitext(filename or "")[1].lower()
        if extension not in EXTENSION_FORMATS:
            allowed = ", ".join(EXTENSION_FORMATS)
            raise AdmissionError(
                "extension",
                f"Invalid file type '{extension or filename}'. Only {allowed} files are supported.",
            )

        mime = _normalize_mime(mime_type)
        if mime not in EXTENSION_MIME_TYPES[extension]:
            raise AdmissionError(
                "mime_type",
                f"MIME type '{mime or 'unknown'}' does not match a {extension} file.",
            )

        if size <= 0:
            raise AdmissionError("empty", "Uploaded file is empty.")

        if size > self.max_upload_bytes:
            raise AdmissionError(
                "size_limit",
                f"File size {format_bytes(size)} exceeds maximum limit of "
                f"{format_bytes(self.max_upload_bytes)}.",
            )

        return EXTENSION_FORMATS[extension]
