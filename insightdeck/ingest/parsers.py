"""
Format parsers for uploaded tabular files.

Each parser turns the raw bytes of one declared format (CSV, JSON, Excel)
into a header plus a stream of row records mapping column name to value.
The same reader backs both full ingestion and row previews, so a file is
always split into rows and columns the same way. Previews show cells as
stored; ``scan`` may type them for inference.
"""

import csv
import io
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from itertools import islice
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import xlrd
from openpyxl import load_workbook
from xlrd.xldate import xldate_as_datetime

from insightdeck.ingest.type_detector import NUMERIC_PATTERN

RawRow = Dict[str, Any]

ZIP_SIGNATURE = b"PK\x03\x04"
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_INTEGER_PATTERN = re.compile(r"[-+]?\d+")


class DataFormat(str, Enum):
    """Supported upload formats."""
    CSV = "csv"
    JSON = "json"
    EXCEL = "excel"


class ParseError(Exception):
    """Raised when file content does not conform to its declared format."""
    pass


@dataclass
class ScanResult:
    """Header plus a lazily consumed row stream."""
    header: List[str]
    rows: Iterator[Any]


@dataclass
class ParseResult:
    """Materialized rows, optionally cut at a preview limit."""
    rows: List[Any]
    truncated: bool = False


class FormatParser(ABC):
    """Base class for all format parsers."""

    format: DataFormat

    @abstractmethod
    def scan(self, data: bytes) -> ScanResult:
        """
        Open a full scan over every row of the file.

        Args:
            data: Raw file bytes

        Returns:
            ScanResult with the header and a row iterator

        Raises:
            ParseError: If the bytes are not valid for this format. Errors
                found mid-file are raised while iterating ``rows``.
        """
        pass

    def scan_stored(self, data: bytes) -> ScanResult:
        """Scan with cell values exactly as the file stores them."""
        return self.scan(data)

    def parse(self, data: bytes, limit: Optional[int] = None) -> ParseResult:
        """
        Read rows for previewing, with cells as the file stores them.

        Args:
            data: Raw file bytes
            limit: Maximum rows to return (None = all rows)

        Returns:
            ParseResult; ``truncated`` is True when rows beyond ``limit`` exist
        """
        if limit is not None and limit < 0:
            raise ValueError("limit must be >= 0")

        scan = self.scan_stored(data)
        if limit is None:
            return ParseResult(rows=list(scan.rows), truncated=False)

        rows = list(islice(scan.rows, limit))
        truncated = next(scan.rows, _EXHAUSTED) is not _EXHAUSTED
        return ParseResult(rows=rows, truncated=truncated)


_EXHAUSTED = object()


def _decode_text(data: bytes, label: str) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"{label} file is not valid UTF-8 text: {e}") from e


def _is_blank(values: Sequence[Any]) -> bool:
    return all(v is None or (isinstance(v, str) and not v.strip()) for v in values)


def _build_header(cells: Sequence[Any]) -> List[str]:
    """
    Turn the first record into unique column names.

    Blank cells become ``column_<n>`` (1-based position) and repeated names
    get a ``_<k>`` suffix so every position maps to its own column.
    """
    header: List[str] = []
    seen: Dict[str, int] = {}
    for index, cell in enumerate(cells):
        name = "" if cell is None else str(cell).strip()
        if not name:
            name = f"column_{index + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        seen.setdefault(name, 1)
        header.append(name)
    return header


def _zip_row(header: List[str], values: Sequence[Any]) -> RawRow:
    # Missing trailing cells become None, surplus cells are dropped
    return {
        name: values[i] if i < len(values) else None
        for i, name in enumerate(header)
    }


def _table_scan(records: Iterable[Sequence[Any]]) -> ScanResult:
    """Build a scan from a grid whose first non-blank record is the header."""
    iterator = iter(records)
    header: List[str] = []
    for record in iterator:
        if record and not _is_blank(record):
            header = _build_header(record)
            break

    def rows() -> Iterator[RawRow]:
        for record in iterator:
            if not record or _is_blank(record):
                continue
            yield _zip_row(header, record)

    return ScanResult(header=header, rows=rows())


def coerce_csv_cell(text: Optional[str]) -> Any:
    """
    Type a CSV cell the way spreadsheet readers do.

    Empty cells become None, complete integer literals become ``int`` and
    other decimal literals become ``float``; everything else stays text.
    """
    if text is None:
        return None
    stripped = text.strip()
    if not stripped:
        return None
    if _INTEGER_PATTERN.fullmatch(stripped):
        return int(stripped)
    if NUMERIC_PATTERN.fullmatch(stripped):
        return float(stripped)
    return text


class CsvParser(FormatParser):
    """
    CSV parser: first record is the header, ragged rows are null-filled.

    ``scan`` types cells with ``coerce_csv_cell`` for inference;
    ``scan_stored`` keeps the text, so "02134" previews as written.
    """

    format = DataFormat.CSV

    def scan(self, data: bytes) -> ScanResult:
        return self._read(data, coerce_csv_cell)

    def scan_stored(self, data: bytes) -> ScanResult:
        return self._read(data, None)

    def _read(self, data: bytes, convert: Optional[Callable[[str], Any]]) -> ScanResult:
        text = _decode_text(data, "CSV")
        reader = csv.reader(io.StringIO(text, newline=""))

        header: Optional[List[str]] = None
        try:
            for record in reader:
                if record:
                    header = _build_header(record)
                    break
        except csv.Error as e:
            raise ParseError(
                f"Malformed CSV at line {reader.line_num}: {e}") from e

        if header is None:
            raise ParseError("CSV file contains no header row")

        def rows() -> Iterator[RawRow]:
            try:
                for record in reader:
                    if not record:
                        continue
                    if convert is not None:
                        record = [convert(cell) for cell in record]
                    yield _zip_row(header, record)
            except csv.Error as e:
                raise ParseError(
                    f"Malformed CSV at line {reader.line_num}: {e}") from e

        return ScanResult(header=header, rows=rows())


def select_json_rows(root: Any) -> List[Any]:
    """
    Locate the row collection inside a decoded JSON document.

    An array is the row collection itself. For an object, the first property
    holding an array wins; an object without one is a single row.
    """
    if isinstance(root, list):
        return root
    if isinstance(root, dict):
        for value in root.values():
            if isinstance(value, list):
                return value
        return [root]
    raise ParseError(
        f"JSON root must be an array or an object, got {type(root).__name__}")


class JsonParser(FormatParser):
    """JSON parser using the array-or-first-array-property heuristic."""

    format = DataFormat.JSON

    def scan(self, data: bytes) -> ScanResult:
        text = _decode_text(data, "JSON")
        try:
            root = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e}") from e

        records = select_json_rows(root)
        first_object = next((r for r in records if isinstance(r, dict)), None)
        header = [str(key) for key in first_object] if first_object else []
        return ScanResult(header=header, rows=iter(records))


class ExcelParser(FormatParser):
    """
    Excel parser for .xlsx (openpyxl) and legacy .xls (xlrd) workbooks.

    Only the first worksheet is read. The workbook kind is chosen from the
    file signature rather than the filename.
    """

    format = DataFormat.EXCEL

    def scan(self, data: bytes) -> ScanResult:
        if data.startswith(ZIP_SIGNATURE):
            grid = self._read_xlsx(data)
        elif data.startswith(OLE2_SIGNATURE):
            grid = self._read_xls(data)
        else:
            raise ParseError(
                "File is not an Excel workbook (expected a ZIP or OLE2 signature)")
        return _table_scan(grid)

    def _read_xlsx(self, data: bytes) -> List[tuple]:
        try:
            workbook = load_workbook(
                io.BytesIO(data), read_only=True, data_only=True)
        except Exception as e:
            raise ParseError(f"Unable to open .xlsx workbook: {e}") from e

        try:
            if not workbook.worksheets:
                raise ParseError("Workbook contains no worksheets")
            sheet = workbook.worksheets[0]
            return [tuple(row) for row in sheet.iter_rows(values_only=True)]
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Unable to read .xlsx worksheet: {e}") from e
        finally:
            workbook.close()

    def _read_xls(self, data: bytes) -> List[list]:
        try:
            book = xlrd.open_workbook(file_contents=data, on_demand=True)
        except Exception as e:
            raise ParseError(f"Unable to open .xls workbook: {e}") from e

        try:
            if book.nsheets == 0:
                raise ParseError("Workbook contains no worksheets")
            sheet = book.sheet_by_index(0)
            return [
                [self._xls_value(cell, book.datemode) for cell in sheet.row(r)]
                for r in range(sheet.nrows)
            ]
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Unable to read .xls worksheet: {e}") from e
        finally:
            book.release_resources()

    @staticmethod
    def _xls_value(cell, datemode: int) -> Any:
        if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
            return None
        if cell.ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xldate_as_datetime(cell.value, datemode)
        return cell.value


_PARSERS: Dict[DataFormat, FormatParser] = {
    DataFormat.CSV: CsvParser(),
    DataFormat.JSON: JsonParser(),
    DataFormat.EXCEL: ExcelParser(),
}


def get_parser(data_format: DataFormat) -> FormatParser:
    """
    Look up the parser for a format.

    Raises:
        ValueError: If ``data_format`` is not a DataFormat value
    """
    return _PARSERS[DataFormat(data_format)]
