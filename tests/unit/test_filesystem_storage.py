"""
Unit tests for filesystem storage backend.
"""

import re

import pytest

from insightdeck.storage.adapter import StorageError, StorageFetchError
from insightdeck.storage.filesystem import FilesystemStorage, safe_filename


@pytest.fixture
def temp_storage(tmp_path):
    """Create a temporary storage instance."""
    return FilesystemStorage(str(tmp_path))


class TestFilesystemStorageInit:
    """Test storage initialization."""

    def test_init_creates_uploads_directory(self, tmp_path):
        storage = FilesystemStorage(str(tmp_path))
        assert (storage.base_path / "uploads").is_dir()

    def test_init_with_existing_structure(self, tmp_path):
        (tmp_path / "uploads").mkdir()
        storage = FilesystemStorage(str(tmp_path))
        assert storage.base_path == tmp_path.resolve()


class TestStore:
    """Test storing uploads."""

    def test_store_layout(self, temp_storage):
        uri = temp_storage.store(b"a,b\n1,2\n", "data.csv")
        assert re.fullmatch(r"fs://uploads/\d{4}/\d{2}/[0-9a-f]{32}/data\.csv", uri)
        assert temp_storage.exists(uri)

    def test_same_filename_never_collides(self, temp_storage):
        first = temp_storage.store(b"one", "data.csv")
        second = temp_storage.store(b"two", "data.csv")

        assert first != second
        assert temp_storage.fetch(first) == b"one"
        assert temp_storage.fetch(second) == b"two"

    def test_store_metadata(self, temp_storage):
        uri = temp_storage.store(b"x", "data.json", metadata={"owner": "ana"})
        assert temp_storage.read_metadata(uri) == {"owner": "ana"}

    def test_metadata_missing(self, temp_storage):
        uri = temp_storage.store(b"x", "data.json")
        assert temp_storage.read_metadata(uri) == {}

    def test_filename_is_sanitized(self, temp_storage):
        uri = temp_storage.store(b"x", "../../etc/pass wd.csv")
        assert uri.endswith("/pass_wd.csv")
        assert "/etc/" not in uri


class TestFetch:
    """Test reading stored files."""

    def test_fetch_round_trip(self, temp_storage):
        uri = temp_storage.store(b"\x00\x01binary", "book.xlsx")
        assert temp_storage.fetch(uri) == b"\x00\x01binary"

    def test_fetch_missing_file(self, temp_storage):
        with pytest.raises(StorageFetchError, match="not found"):
            temp_storage.fetch("fs://uploads/2024/01/missing/data.csv")

    def test_fetch_invalid_scheme(self, temp_storage):
        with pytest.raises(StorageFetchError):
            temp_storage.fetch("s3://bucket/data.csv")

    def test_fetch_error_is_storage_error(self):
        assert issubclass(StorageFetchError, StorageError)

    def test_path_traversal_rejected(self, temp_storage):
        with pytest.raises(StorageError):
            temp_storage.exists("fs://../../etc/passwd")


class TestRemove:
    """Test deleting stored files."""

    def test_remove_cleans_empty_directories(self, temp_storage):
        uri = temp_storage.store(b"x", "data.csv", metadata={"a": 1})
        upload_dir = temp_storage._uri_to_path(uri).parent

        temp_storage.remove(uri)

        assert not temp_storage.exists(uri)
        assert not upload_dir.exists()
        assert temp_storage.uploads_path.exists()

    def test_remove_keeps_sibling_uploads(self, temp_storage):
        keep = temp_storage.store(b"keep", "a.csv")
        drop = temp_storage.store(b"drop", "b.csv")

        temp_storage.remove(drop)

        assert temp_storage.fetch(keep) == b"keep"

    def test_remove_missing_file(self, temp_storage):
        with pytest.raises(StorageError):
            temp_storage.remove("fs://uploads/2024/01/missing/data.csv")


class TestGetSize:
    """Test file size lookup."""

    def test_get_size(self, temp_storage):
        uri = temp_storage.store(b"12345", "data.csv")
        assert temp_storage.get_size(uri) == 5

    def test_get_size_missing(self, temp_storage):
        with pytest.raises(StorageError):
            temp_storage.get_size("fs://uploads/nothing.csv")


class TestSafeFilename:
    """Tests for safe_filename."""

    @pytest.mark.parametrize("raw,expected", [
        ("data.csv", "data.csv"),
        ("my file (1).csv", "my_file_1_.csv"),
        ("C:\\Users\\me\\report.xlsx", "report.xlsx"),
        ("...", "upload"),
    ])
    def test_safe_filename(self, raw, expected):
        assert safe_filename(raw) == expected
