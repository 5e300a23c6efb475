"""
Ingest module for tabular uploads.

Provides per-value type detection, column type unification, format
parsers and schema inference. Jobs, orchestration and dataset services
live in their own modules and are imported from there.
"""

from insightdeck.ingest.type_detector import ColumnType, detect_type
from insightdeck.ingest.type_unifier import UnifiedType, unify_types
from insightdeck.ingest.parsers import (
    DataFormat,
    FormatParser,
    ParseError,
    ParseResult,
    get_parser,
)
from insightdeck.ingest.schema_inferencer import (
    ColumnDescriptor,
    SchemaInferencer,
    SchemaResult,
    UnsupportedFormatError,
)
from insightdeck.ingest.validator import AdmissionError, UploadGate

__all__ = [
    # Type detection
    "ColumnType",
    "detect_type",
    "UnifiedType",
    "unify_types",
    # Parsing
    "DataFormat",
    "FormatParser",
    "ParseError",
    "ParseResult",
    "get_parser",
    # Inference
    "ColumnDescriptor",
    "SchemaInferencer",
    "SchemaResult",
    "UnsupportedFormatError",
    # Admission
    "AdmissionError",
    "UploadGate",
]
