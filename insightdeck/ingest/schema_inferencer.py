"""
Schema inference over a whole uploaded file.

Drives a format parser across every row, classifies each value, and
unifies the observations per column into an ordered list of column
descriptors plus the row count.
"""

import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from insightdeck.ingest.parsers import DataFormat, get_parser
from insightdeck.ingest.type_detector import ColumnType, detect_type
from insightdeck.ingest.type_unifier import unify_types

# Rows between deadline checks
DEADLINE_CHECK_INTERVAL = 1000


class UnsupportedFormatError(Exception):
    """Raised when a declared format has no parser."""
    pass


class InferenceTimeoutError(Exception):
    """Raised when inference runs past its deadline."""
    pass


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    type: ColumnType
    nullable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type.value, "nullable": self.nullable}


@dataclass(frozen=True)
class SchemaResult:
    columns: List[ColumnDescriptor]
    row_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [column.to_dict() for column in self.columns],
            "rowCount": self.row_count,
        }


class SchemaInferencer:
    """
    Infers column types and row count for one file.

    Accumulators live only for the duration of a single ``infer`` call, so
    one instance can be shared between worker threads.
    """

    def infer(
        self,
        data: bytes,
        declared_format: Any,
        deadline: Optional[float] = None,
    ) -> SchemaResult:
        """
        Infer the schema of a file.

        Args:
            data: Raw file bytes
            declared_format: DataFormat (or its string value)
            deadline: Optional ``time.monotonic()`` value after which the
                scan is abandoned

        Returns:
            SchemaResult with columns in first-seen order

        Raises:
            UnsupportedFormatError: If the format is not csv, json or excel
            ParseError: If the content does not match the format
            InferenceTimeoutError: If the deadline passes mid-scan
        """
        try:
            data_format = DataFormat(declared_format)
        except ValueError:
            raise UnsupportedFormatError(
                f"Unsupported file type: {declared_format}") from None

        scan = get_parser(data_format).scan(data)

        # dicts keep insertion order, which is first-seen column order
        observations: Dict[str, Counter] = {
            name: Counter() for name in scan.header}
        row_count = 0

        for row in scan.rows:
            row_count += 1
            if isinstance(row, Mapping):
                for name, value in row.items():
                    column = observations.setdefault(str(name), Counter())
                    column[detect_type(value)] += 1

            if deadline is not None and row_count % DEADLINE_CHECK_INTERVAL == 0:
                if time.monotonic() > deadline:
                    raise InferenceTimeoutError(
                        f"Schema inference exceeded its time budget after {row_count} rows")

        return SchemaResult(
            columns=[
                self._describe(name, counts, row_count)
                for name, counts in observations.items()
            ],
            row_count=row_count,
        )

    @staticmethod
    def _describe(name: str, counts: Counter, row_count: int) -> ColumnDescriptor:
        # Rows that never mentioned the column count as null observations
        absent = row_count - sum(counts.values())
        if absent > 0:
            counts = counts.copy()
            counts[ColumnType.NULL] += absent

        unified = unify_types(counts)
        return ColumnDescriptor(name=name, type=unified.type, nullable=unified.nullable)
