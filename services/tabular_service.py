"""
Tabular Ingestion - Parse catalog bytes into rows of cell values.

Supports OOXML workbooks (via openpyxl) and delimited text. Only cell values
matter: formulas are read as their cached values and styles are ignored.
"""

import csv
import io
import logging
import math
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from services.errors import ParseError

logger = logging.getLogger(__name__)

CellValue = Union[str, int, float, None]
Row = List[CellValue]

SNIFF_DELIMITERS = ',;\t|'
SNIFF_SAMPLE_BYTES = 8192


class TabularFormat(str, Enum):
    """Declared format of an uploaded catalog."""
    SPREADSHEET = 'spreadsheet'
    DELIMITED_TEXT = 'delimited-text'


SPREADSHEET_EXTENSIONS = ('.xlsx', '.xlsm', '.xls')
DELIMITED_EXTENSIONS = ('.csv', '.tsv', '.txt')

# Column aliases, in priority order. The first header cell matching any alias
# of a field claims that column.
COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    'subcategory': ('subcategory', 'subcategories', 'sub-category', 'sub category'),
    'job': ('job', 'jobs', 'service', 'services', 'service name', 'job name'),
    'description': ('description', 'desc', 'details'),
    'estimated_time': ('estimated time', 'time', 'duration', 'minutes', 'hours'),
    'price': ('price', 'cost', 'fee', 'rate'),
}

# Column A..E when there is no usable header
POSITIONAL_COLUMNS = {
    'subcategory': 0,
    'job': 1,
    'description': 2,
    'estimated_time': 3,
    'price': 4,
}


@dataclass(frozen=True)
class ColumnSchema:
    """Fixed column positions for the hierarchy fields (None = absent)."""
    subcategory: Optional[int] = 0
    job: Optional[int] = 1
    description: Optional[int] = 2
    estimated_time: Optional[int] = 3
    price: Optional[int] = 4
    source: str = 'positional'

    def cell(self, row: Sequence[CellValue], field_name: str) -> CellValue:
        index = getattr(self, field_name)
        if index is None or index >= len(row):
            return None
        return row[index]


POSITIONAL_SCHEMA = ColumnSchema()


@dataclass
class TabularDocument:
    """Parsed table: optional header row plus data rows."""
    header: Optional[Row]
    rows: List[Row] = field(default_factory=list)
    sheet_name: Optional[str] = None

    def column_schema(self) -> ColumnSchema:
        """Resolve the header (if any) against COLUMN_ALIASES."""
        return resolve_column_schema(self.header)


def resolve_column_schema(header: Optional[Sequence[CellValue]]) -> ColumnSchema:
    """
    Resolve header cells into a fixed ColumnSchema.

    Fields without a matching header keep no column. When nothing matches at
    all the positional A..E layout is used instead.
    """
    if not header:
        return POSITIONAL_SCHEMA

    labels = [str(h).strip().casefold() if h is not None else '' for h in header]
    resolved: Dict[str, Optional[int]] = {}
    claimed = set()

    for field_name, aliases in COLUMN_ALIASES.items():
        resolved[field_name] = None
        for alias in aliases:
            matches = [i for i, label in enumerate(labels) if label == alias and i not in claimed]
            if matches:
                resolved[field_name] = matches[0]
                claimed.add(matches[0])
                break

    if not claimed:
        logger.info("Header did not match any known column; using positional layout")
        return POSITIONAL_SCHEMA

    logger.debug(f"Resolved header columns: {resolved}")
    return ColumnSchema(source='header', **resolved)


def format_for_filename(filename: str) -> TabularFormat:
    """Infer the declared format from a filename extension."""
    ext = Path(filename).suffix.lower()
    if ext in SPREADSHEET_EXTENSIONS:
        return TabularFormat.SPREADSHEET
    if ext in DELIMITED_EXTENSIONS:
        return TabularFormat.DELIMITED_TEXT
    raise ParseError(f"Unsupported catalog file type '{ext}'", stage='parsing', entity_name=filename)


def normalize_cell(value) -> CellValue:
    """Reduce a raw cell value to str, int, float or None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    text = str(value)
    return text if text != '' else None


def _is_blank(value: CellValue) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == '')


def trim_table(rows: List[Row]) -> List[Row]:
    """Drop wholly blank trailing rows and columns, pad rows to one width."""
    while rows and all(_is_blank(v) for v in rows[-1]):
        rows.pop()

    width = 0
    for row in rows:
        for index in range(len(row) - 1, -1, -1):
            if not _is_blank(row[index]):
                width = max(width, index + 1)
                break

    return [list(row[:width]) + [None] * (width - len(row[:width])) for row in rows]


def read_spreadsheet(content: bytes, sheet_name: Optional[str] = None) -> List[TabularDocument]:
    """Read cell values from an OOXML workbook, one document per worksheet."""
    try:
        workbook = openpyxl.load_workbook(
            io.BytesIO(content), read_only=True, data_only=True
        )
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as e:
        raise ParseError(
            'Content is not a readable .xlsx workbook (legacy .xls is not supported)',
            stage='parsing', cause=e
        ) from e

    try:
        if sheet_name:
            if sheet_name not in workbook.sheetnames:
                raise ParseError(f"Worksheet '{sheet_name}' not found", stage='parsing')
            worksheets = [workbook[sheet_name]]
        else:
            worksheets = workbook.worksheets

        documents = []
        for worksheet in worksheets:
            rows = [
                [normalize_cell(v) for v in row]
                for row in worksheet.iter_rows(values_only=True)
            ]
            logger.info(f"Read {len(rows)} rows from worksheet '{worksheet.title}'")
            documents.append(TabularDocument(header=None, rows=rows, sheet_name=worksheet.title))
    except ParseError:
        raise
    except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise ParseError('Workbook content is corrupt', stage='parsing', cause=e) from e
    finally:
        workbook.close()

    return documents


def decode_text(content: bytes) -> str:
    """Decode delimited text: UTF-8 (with or without BOM), then cp1252."""
    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        pass
    try:
        return content.decode('cp1252')
    except UnicodeDecodeError as e:
        raise ParseError('Delimited text is not valid UTF-8 or cp1252', stage='parsing', cause=e) from e


def sniff_delimiter(text: str) -> str:
    """Guess the delimiter from a sample; fall back to comma."""
    sample = text[:SNIFF_SAMPLE_BYTES]
    try:
        return csv.Sniffer().sniff(sample, delimiters=SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return ','


def read_delimited(content: bytes, delimiter: Optional[str] = None) -> TabularDocument:
    """Read rows from CSV-like text with strict quoting."""
    text = decode_text(content)
    if '\x00' in text:
        raise ParseError('Delimited text contains NUL bytes (binary content?)', stage='parsing')

    delimiter = delimiter or sniff_delimiter(text)
    reader = csv.reader(io.StringIO(text, newline=''), delimiter=delimiter, strict=True)

    rows = []
    try:
        for raw_row in reader:
            rows.append([normalize_cell(v) for v in raw_row])
    except csv.Error as e:
        raise ParseError(
            f"Malformed delimited text near line {reader.line_num}: {e}",
            stage='parsing', cause=e
        ) from e

    logger.info(f"Read {len(rows)} rows of delimited text (delimiter={delimiter!r})")
    return TabularDocument(header=None, rows=rows)


def parse_tables(
    content: bytes,
    fmt: Union[TabularFormat, str],
    has_header: bool = False,
    sheet_name: Optional[str] = None,
    delimiter: Optional[str] = None
) -> List[TabularDocument]:
    """
    Parse raw catalog bytes into one or more ordered tables.

    A workbook yields one table per worksheet that holds any data (only the
    named worksheet when sheet_name is given); delimited text yields one.
    The header row, when requested, is split off each table separately.

    Args:
        content: Raw file bytes
        fmt: 'spreadsheet' or 'delimited-text'
        has_header: Treat the first row of each table as header
        sheet_name: Worksheet to read (spreadsheets only; default every sheet)
        delimiter: Field delimiter (delimited text only; default sniffed)

    Returns:
        List of TabularDocument, never empty

    Raises:
        ParseError: If content does not match the declared format
    """
    try:
        fmt = TabularFormat(fmt)
    except ValueError as e:
        raise ParseError(f"Unknown format '{fmt}'", stage='parsing', cause=e) from e

    if fmt is TabularFormat.SPREADSHEET:
        documents = read_spreadsheet(content, sheet_name)
    else:
        documents = [read_delimited(content, delimiter)]

    for document in documents:
        rows = trim_table(document.rows)
        header = None
        if has_header and rows:
            header, rows = rows[0], rows[1:]
        document.header = header
        document.rows = rows

    tables = [d for d in documents if d.rows or d.header]
    empty = [d.sheet_name for d in documents if not (d.rows or d.header)]
    if empty and len(documents) > 1:
        logger.info(f"Ignoring {len(empty)} empty worksheet(s): {', '.join(empty)}")
    return tables or documents[:1]


def parse_table(
    content: bytes,
    fmt: Union[TabularFormat, str],
    has_header: bool = False,
    sheet_name: Optional[str] = None,
    delimiter: Optional[str] = None
) -> TabularDocument:
    """Parse a single table: the named worksheet, else the first one with data."""
    return parse_tables(content, fmt, has_header, sheet_name, delimiter)[0]
