"""
Turn a sniffed upload into a ParsedTable.

Text input goes through a CSV path; OLE2 and ZIP containers are opened with
pandas, picking the engine from what the container holds rather than from
the filename. Both paths finish with a binary-junk scan that catches
polyglots which slipped past the magic-number checks.
"""
from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import math
import re
import zipfile
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import pandas as pd

from recon.core.config import settings
from recon.core.errors import ValidationError
from recon.services.content_sniffer import OLE2, ZIP_BASED, SniffResult
from recon.services.upload_types import ErrorKind, UploadCandidate

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool]


@dataclass
class TableSummary:
    total_rows: int
    column_count: int


@dataclass
class ParsedTable:
    filename: str
    headers: list[str]
    rows: list[dict[str, Scalar]]
    summary: TableSummary = field(init=False)

    def __post_init__(self) -> None:
        self.summary = TableSummary(total_rows=len(self.rows), column_count=len(self.headers))

    def as_matrix(self) -> list[list[Scalar]]:
        """Header row followed by one list per data row, in source order."""
        return [list(self.headers)] + [[row[h] for h in self.headers] for row in self.rows]


_NON_TABULAR_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"<\s*html\s*>|<\s*!doctype\s+html", re.IGNORECASE), "HTML"),
    (re.compile(r"<\?xml\s+version", re.IGNORECASE), "XML"),
    (re.compile(r"^\s*[\{\[]", re.MULTILINE), "JSON"),
    (re.compile(r"^\s*(?:function|var|const|let|import|export|class)\s+[\w${(]", re.MULTILINE), "JavaScript"),
    (re.compile(r"^\s*#include|^\s*int\s+main", re.MULTILINE), "C/C++"),
    (re.compile(r"^\s*package\s+|^\s*import\s+java", re.MULTILINE), "Java"),
)

_NULL_RUN = re.compile(r"\x00{3,}")
_CONTROL_RUN = re.compile(r"[\x01-\x08\x0b\x0c\x0e-\x1f]{10,}")
_REPLACEMENT_RUN = re.compile("�{3,}")
_NON_PRINTABLE_RUN_LENGTH = 20


def _structural(message: str, security_flag: Optional[str] = None) -> ValidationError:
    return ValidationError(ErrorKind.STRUCTURAL_INVALID, message, security_flag)


def _clean_field(value: str) -> str:
    return value.strip().strip('"').strip("'").strip()


def _unique_headers(raw: list[Any]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for idx, value in enumerate(raw):
        name = _clean_field(str(value)) if value is not None else ""
        if not name:
            name = f"column_{idx + 1}"
        count = seen.get(name, 0) + 1
        seen[name] = count
        headers.append(name if count == 1 else f"{name}_{count}")
    return headers


def _rows_to_objects(headers: list[str], body: list[list[Scalar]]) -> list[dict[str, Scalar]]:
    rows: list[dict[str, Scalar]] = []
    for values in body:
        rows.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})
    return rows


def _screen_text(text: str) -> None:
    for pattern, kind in _NON_TABULAR_PATTERNS:
        if pattern.search(text):
            raise _structural(
                f"File appears to be {kind} code, not CSV data",
                "Potential code injection attempt detected",
            )


def parse_csv_text(text: str) -> tuple[list[str], list[list[Scalar]]]:
    _screen_text(text)

    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise _structural("CSV file must have at least 2 lines (header + data)")
    if "," not in lines[0]:
        raise _structural("File does not appear to be comma-separated (CSV)")

    try:
        records = list(csv.reader(lines, skipinitialspace=True))
    except csv.Error as exc:
        raise _structural(f"File cannot be parsed as CSV: {exc}") from exc
    headers = _unique_headers(records[0])
    body: list[list[Scalar]] = [[_clean_field(v) for v in record] for record in records[1:]]
    return headers, body


def _cell(value: Any) -> Scalar:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, (pd.Timestamp, dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        value = value.item()
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _excel_engine(data: bytes, detected_type: Optional[str]) -> str:
    if detected_type == OLE2:
        return "xlrd"
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile as exc:
        raise _structural("ZIP container is corrupt", "File may be a disguised ZIP archive") from exc
    if "xl/workbook.xml" in names:
        return "openpyxl"
    if "content.xml" in names:
        return "odf"
    raise _structural("ZIP file is not a valid spreadsheet document", "File may be a disguised ZIP archive")


def parse_container(data: bytes, detected_type: Optional[str]) -> tuple[list[str], list[list[Scalar]]]:
    engine = _excel_engine(data, detected_type)
    try:
        frame = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object, engine=engine)
    except Exception as exc:
        logger.info("container read failed engine=%s error=%s", engine, exc)
        raise _structural("File cannot be parsed as a valid spreadsheet") from exc

    if frame.empty:
        raise _structural("File does not contain valid spreadsheet data")

    matrix = [[_cell(v) for v in row] for row in frame.itertuples(index=False, name=None)]
    matrix = [row for row in matrix if any(v != "" for v in row)]
    if len(matrix) < 2:
        raise _structural("Spreadsheet must contain at least a header row and one data row")

    return _unique_headers(matrix[0]), matrix[1:]


def _has_non_printable_run(text: str) -> bool:
    run = 0
    for ch in text:
        if not ch.isprintable() and not ch.isspace():
            run += 1
            if run >= _NON_PRINTABLE_RUN_LENGTH:
                return True
        else:
            run = 0
    return False


def check_binary_junk(headers: list[str], body: list[list[Scalar]], sample_rows: int) -> None:
    """Raise BinaryJunkDetected if the sampled cells look like decoded binary."""
    sample = [headers] + body[: max(sample_rows - 1, 1)]
    text = "\n".join(",".join(str(v) for v in row) for row in sample)

    reason: Optional[str] = None
    if _has_non_printable_run(text):
        reason = "long sequences of non-printable characters"
    elif _NULL_RUN.search(text):
        reason = "multiple null bytes"
    elif _CONTROL_RUN.search(text):
        reason = "control character sequences"
    elif _REPLACEMENT_RUN.search(text):
        reason = "replacement character sequences"

    if reason:
        raise ValidationError(
            ErrorKind.BINARY_JUNK_DETECTED,
            f"File contains binary data ({reason}). This usually indicates a non-spreadsheet file with a fake extension.",
            "Binary data pattern detected - possible file type spoofing",
        )


def parse_table(
    candidate: UploadCandidate,
    sniff: SniffResult,
    *,
    junk_sample_rows: Optional[int] = None,
) -> ParsedTable:
    """Parse a candidate that passed sniffing. Raises ValidationError on failure."""
    if sniff.detected_type in (ZIP_BASED, OLE2):
        headers, body = parse_container(candidate.data, sniff.detected_type)
    else:
        # Text, or indeterminate content left for parsing to fail naturally.
        text = candidate.data.decode("utf-8-sig", errors="replace")
        headers, body = parse_csv_text(text)

    sample_rows = settings.junk_sample_rows if junk_sample_rows is None else junk_sample_rows
    check_binary_junk(headers, body, sample_rows)

    return ParsedTable(filename=candidate.filename, headers=headers, rows=_rows_to_objects(headers, body))
