"""
Catalog module for dataset records.

Provides ORM models, database connections, the status state machine and
the dataset repository.
"""

from insightdeck.catalog.models import (
    Base,
    Dataset,
    DatasetEvent,
)
from insightdeck.catalog.database import (
    engine,
    SessionLocal,
    init_db,
    get_db_session,
    check_database_connection,
)
from insightdeck.catalog.state import ProcessingStatus
from insightdeck.catalog.repository import ConflictError, DatasetRepository

__all__ = [
    # Models
    "Base",
    "Dataset",
    "DatasetEvent",
    # Database
    "engine",
    "SessionLocal",
    "init_db",
    "get_db_session",
    "check_database_connection",
    # Records
    "ProcessingStatus",
    "ConflictError",
    "DatasetRepository",
]
