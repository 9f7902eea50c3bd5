"""
Workbook reading and row coercion for Vista exports.

Vista exports arrive as Excel workbooks with one sheet per entity type. Header
text is inconsistent between exports (padded with spaces, renamed columns), so
each target field lists the header aliases it accepts. Values are coerced into
Python types here; anything unparseable becomes ``None`` rather than failing
the row.
"""

from __future__ import annotations

import io
import math
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import IO, Any, Callable, Iterator, Mapping, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import WorkbookReadError

EXCEL_EPOCH = date(1899, 12, 30)
_TRUE_FLAGS = {"y", "yes", "true", "t", "1", "active"}
_NUMBER_NOISE = re.compile(r"[\s$,]")
_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


def normalize_header(value: object | None) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def coerce_key(value: Any) -> str | None:
    """Render a natural key as a stripped string; numeric keys drop any ``.0``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return str(int(value))
    text = coerce_text(value)
    if text and text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    return text


def coerce_number(value: Any) -> float | None:
    """Parse currency and accounting-style numbers; zero is preserved."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    text = _NUMBER_NOISE.sub("", str(value))
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    if text.endswith("%"):
        text = text[:-1]
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return -number if negative else number


def coerce_date(value: Any) -> date | None:
    """Accept datetimes, Excel serial numbers and common date strings."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return EXCEL_EPOCH + timedelta(days=int(value))
        except OverflowError:
            return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def coerce_flag(value: Any) -> bool:
    """Vista uses ``Y``/``N`` flags; anything other than a truthy marker is False."""

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if value is None:
        return False
    return str(value).strip().casefold() in _TRUE_FLAGS


@dataclass(frozen=True)
class ColumnSpec:
    """Target field plus the header spellings that feed it."""

    field: str
    headers: tuple[str, ...]
    coerce: Callable[[Any], Any] = coerce_text

    @property
    def normalized_headers(self) -> tuple[str, ...]:
        return tuple(normalize_header(header) for header in self.headers)


@dataclass
class ParsedRow:
    row_number: int
    values: dict[str, Any]
    raw: dict[str, Any] = field(default_factory=dict)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value != value:
        return None
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class HeaderMap:
    """Resolves each ``ColumnSpec`` to a column index in a sheet's header row."""

    def __init__(self, header_row: Sequence[Any], columns: Sequence[ColumnSpec]):
        self.headers: list[str | None] = [
            " ".join(str(cell).split()) if cell is not None and str(cell).strip() else None for cell in header_row
        ]
        positions: dict[str, int] = {}
        for index, header in enumerate(self.headers):
            if header is not None:
                positions.setdefault(header.casefold(), index)
        self.indexes: dict[str, int | None] = {}
        for spec in columns:
            self.indexes[spec.field] = next(
                (positions[alias] for alias in spec.normalized_headers if alias in positions),
                None,
            )
        self.columns = tuple(columns)

    @property
    def missing_fields(self) -> tuple[str, ...]:
        return tuple(name for name, index in self.indexes.items() if index is None)

    def parse(self, row_number: int, row: Sequence[Any]) -> ParsedRow | None:
        """Return the coerced row, or ``None`` for a fully blank row."""

        if not any(cell is not None and str(cell).strip() for cell in row):
            return None
        values: dict[str, Any] = {}
        for spec in self.columns:
            index = self.indexes[spec.field]
            cell = row[index] if index is not None and index < len(row) else None
            values[spec.field] = spec.coerce(cell)
        raw = {
            header: _jsonable(row[index] if index < len(row) else None)
            for index, header in enumerate(self.headers)
            if header is not None
        }
        return ParsedRow(row_number=row_number, values=values, raw=raw)


def open_workbook(source: bytes | IO[bytes]):
    """Open a workbook in streaming (read-only) mode."""

    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        return load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise WorkbookReadError(f"Could not read workbook: {exc}") from exc


def iter_parsed_chunks(
    worksheet,
    columns: Sequence[ColumnSpec],
    *,
    chunk_size: int = 500,
) -> Iterator[list[ParsedRow]]:
    """Yield coerced rows from ``worksheet`` in lists of at most ``chunk_size``."""

    rows = worksheet.iter_rows(values_only=True)
    header_row = next(rows, None)
    if header_row is None:
        return
    header_map = HeaderMap(header_row, columns)
    chunk: list[ParsedRow] = []
    for offset, row in enumerate(rows, start=2):
        parsed = header_map.parse(offset, row)
        if parsed is None:
            continue
        chunk.append(parsed)
        if len(chunk) >= chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def parse_mapping(row: Mapping[str, Any], columns: Sequence[ColumnSpec], *, row_number: int = 0) -> ParsedRow:
    """Coerce a header->value mapping (e.g. from tests or JSON) the same way as a sheet row."""

    headers = list(row.keys())
    header_map = HeaderMap(headers, columns)
    parsed = header_map.parse(row_number, [row[key] for key in headers])
    if parsed is None:
        return ParsedRow(row_number=row_number, values={spec.field: spec.coerce(None) for spec in columns})
    return parsed


__all__ = [
    "EXCEL_EPOCH",
    "ColumnSpec",
    "HeaderMap",
    "ParsedRow",
    "coerce_date",
    "coerce_flag",
    "coerce_key",
    "coerce_number",
    "coerce_text",
    "iter_parsed_chunks",
    "normalize_header",
    "open_workbook",
    "parse_mapping",
]
