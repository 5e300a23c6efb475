# Test configuration

import io
import os
import sys
import tempfile

import pytest

# Tests run against a throwaway SQLite database and storage directory; the
# settings are read once, so they must be in the environment before any
# insightdeck module is imported.
_TEST_ROOT = tempfile.mkdtemp(prefix="insightdeck-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'test.db')}"
os.environ["STORAGE_PATH"] = os.path.join(_TEST_ROOT, "storage")
os.environ["LOG_JSON"] = "false"
os.environ["WORKER_THREADS"] = "2"
os.environ["JOB_TIMEOUT_SECONDS"] = "30"

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture(scope="session", autouse=True)
def database():
    """Create the catalog tables once per test session."""
    from insightdeck.catalog.database import engine, init_db
    init_db()
    yield engine


@pytest.fixture(autouse=True)
def clean_tables(database):
    """Empty the catalog tables after every test."""
    yield
    from insightdeck.catalog.database import get_db_session
    from insightdeck.catalog.models import Dataset, DatasetEvent
    with get_db_session() as db:
        db.execute(DatasetEvent.__table__.delete())
        db.execute(Dataset.__table__.delete())


@pytest.fixture
def session_factory():
    from insightdeck.catalog.database import SessionLocal
    return SessionLocal


@pytest.fixture
def repository(session_factory):
    from insightdeck.catalog.repository import DatasetRepository
    return DatasetRepository(session_factory)


@pytest.fixture
def storage(tmp_path):
    """Filesystem storage rooted in a per-test directory."""
    from insightdeck.storage.filesystem import FilesystemStorage
    return FilesystemStorage(str(tmp_path / "storage"))


@pytest.fixture
def sample_csv():
    """The signup CSV used by the end-to-end scenarios."""
    return (
        b"name,age,signup_date\n"
        b"Alice,30,2023-01-01\n"
        b"Bob,,2023-02-15\n"
        b"Cara,28,\n"
    )


@pytest.fixture
def make_xlsx():
    """Build an .xlsx workbook in memory from a list of rows."""
    from openpyxl import Workbook

    def _make(rows, extra_sheets=None):
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Data"
        for row in rows:
            sheet.append(list(row))
        for title, sheet_rows in (extra_sheets or {}).items():
            other = workbook.create_sheet(title)
            for row in sheet_rows:
                other.append(list(row))
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make


@pytest.fixture
def sample_xls():
    """
    Legacy .xls workbook with two sheets.

    Sheet "Signups": name, age, joined; Alice, 30, 2023-01-01 (date cell);
    Bob, 41 with no joined cell. Sheet "Other" holds a single "ignored" cell.
    """
    with open(os.path.join(FIXTURES_DIR, "signups.xls"), "rb") as f:
        return f.read()


@pytest.fixture
def create_dataset(repository, storage):
    """Store bytes and create a pending dataset record for them."""
    def _create(data: bytes, filename: str = "data.csv", file_type: str = "csv", **fields):
        uri = storage.store(data, filename)
        dataset_id = repository.create_dataset(
            name=fields.pop("name", filename),
            file_name=filename,
            file_size=len(data),
            file_type=file_type,
            uri=uri,
            **fields,
        )
        return dataset_id, uri

    return _create
