"""
CSV structure detector for legacy uploads.

Sniffs the delimiter, header row and encoding of raw CSV text, parses the
rows and gives a first coarse typing of every column.
"""

import csv
import re
from dataclasses import dataclass, field
from typing import Optional
import structlog

import pandas as pd

from exceptions import EmptyCSVError
from models.analysis import ColumnKind

logger = structlog.get_logger(__name__)

COMMON_DELIMITERS = [",", ";", "\t", "|", ":"]

# Lines inspected when scoring delimiters
DELIMITER_SAMPLE_LINES = 10

SAMPLE_ROWS = 10

HEADER_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
NUMERIC_VALUE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

# Value patterns used by analyze_columns, checked in this order
COLUMN_PATTERNS: dict[ColumnKind, re.Pattern] = {
    ColumnKind.CPF: re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$"),
    ColumnKind.CNPJ: re.compile(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$"),
    ColumnKind.EMAIL: re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    ColumnKind.PHONE: re.compile(r"^\(?\d{2}\)?\s?\d{4,5}-?\d{4}$"),
    ColumnKind.DATE: re.compile(r"^\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}|\d{2}-\d{2}-\d{4}$"),
    ColumnKind.CURRENCY: re.compile(r"^-?\d+[.,]\d{2}$"),
    ColumnKind.NUMBER: re.compile(r"^-?\d+([.,]\d+)?$"),
    ColumnKind.BOOLEAN: re.compile(r"^(true|false|sim|não|s|n|0|1)$", re.IGNORECASE),
}

ID_PATTERN = re.compile(r"^[A-Z]{2}-\d+|\d+$")

# Column name keywords checked before looking at values
NAME_KEYWORDS: list[tuple[tuple[str, ...], ColumnKind]] = [
    (("cpf",), ColumnKind.CPF),
    (("cnpj",), ColumnKind.CNPJ),
    (("email",), ColumnKind.EMAIL),
    (("telefone", "phone"), ColumnKind.PHONE),
    (("data", "date"), ColumnKind.DATE),
    (("valor", "preco", "price"), ColumnKind.CURRENCY),
    (("id", "codigo"), ColumnKind.ID),
]


@dataclass
class ColumnInfo:
    """Coarse typing of one CSV column."""
    name: str
    type: ColumnKind
    nullable: bool
    unique: bool
    sample_values: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "nullable": self.nullable,
            "unique": self.unique,
            "sample_values": self.sample_values,
            "confidence": round(self.confidence, 4),
        }


@dataclass
class CSVStructure:
    """Result of sniffing and parsing a CSV document."""
    delimiter: str
    has_header: bool
    encoding: str
    headers: list[str]
    rows: list[list[str]]
    confidence: float
    line_count: int

    @property
    def column_count(self) -> int:
        return len(self.headers)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def sample(self) -> list[list[str]]:
        """First data rows, used for analysis and previews."""
        return self.rows[:SAMPLE_ROWS]

    def to_records(self) -> list[dict[str, str]]:
        return rows_to_records(self.headers, self.rows)

    def to_dict(self, include_rows: bool = False) -> dict:
        """Convert to dictionary for API response."""
        data = {
            "delimiter": self.delimiter,
            "has_header": self.has_header,
            "encoding": self.encoding,
            "line_count": self.line_count,
            "column_count": self.column_count,
            "total_rows": self.total_rows,
            "headers": self.headers,
            "sample": self.sample,
            "confidence": round(self.confidence, 4),
        }
        if include_rows:
            data["rows"] = self.rows
        return data


# ===================
# PUBLIC API
# ===================

def decode_csv_bytes(raw: bytes) -> str:
    """
    Decode uploaded bytes.

    Tries UTF-8 (stripping a BOM) first and falls back to ISO-8859-1,
    which accepts any byte sequence.
    """
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("csv_decoded_as_latin1", size=len(raw))
        return raw.decode("iso-8859-1")


def detect_csv_structure(content: str) -> CSVStructure:
    """
    Detect delimiter, header row and encoding and parse every line.

    Args:
        content: Raw CSV text

    Returns:
        CSVStructure with headers and all data rows

    Raises:
        EmptyCSVError: If content has no non-blank lines
    """
    lines = [line for line in re.split(r"\r?\n", content) if line.strip()]

    if not lines:
        raise EmptyCSVError()

    delimiter = detect_delimiter(lines)
    has_header = detect_header(lines, delimiter)
    encoding = detect_encoding(content)

    parsed = [parse_line(line, delimiter) for line in lines]
    headers = parsed[0] if has_header else generate_headers(len(parsed[0]))
    rows = parsed[1:] if has_header else parsed

    structure = CSVStructure(
        delimiter=delimiter,
        has_header=has_header,
        encoding=encoding,
        headers=headers,
        rows=rows,
        confidence=calculate_confidence(parsed),
        line_count=len(lines),
    )

    logger.info(
        "csv_structure_detected",
        delimiter=repr(delimiter),
        has_header=has_header,
        encoding=encoding,
        columns=structure.column_count,
        rows=structure.total_rows,
        confidence=round(structure.confidence, 3),
    )
    return structure


def rows_to_records(headers: list[str], rows: list[list[str]]) -> list[dict[str, str]]:
    """Zip rows with headers. Short rows are padded with empty strings."""
    records = []
    for row in rows:
        records.append({
            header: row[i] if i < len(row) else ""
            for i, header in enumerate(headers)
        })
    return records


def analyze_columns(structure: CSVStructure) -> list[ColumnInfo]:
    """
    Coarse per-column typing over the sample rows.

    Type comes from the column name when it contains a known keyword,
    otherwise from the first value pattern matching more than 80% of the
    non-empty values.
    """
    sample = structure.sample
    frame = pd.DataFrame(
        [[row[i] if i < len(row) else "" for i in range(structure.column_count)] for row in sample],
        columns=range(structure.column_count),
        dtype="object",
    )

    columns = []
    for index, name in enumerate(structure.headers):
        if frame.empty:
            series = pd.Series([], dtype="object")
        else:
            series = frame[index].fillna("").astype(str).str.strip()
        values = series[series != ""]

        kind = _infer_column_kind(values.tolist(), name)
        columns.append(
            ColumnInfo(
                name=name,
                type=kind,
                nullable=len(values) < len(sample),
                unique=bool(values.is_unique),
                sample_values=values.head(5).tolist(),
                confidence=_kind_confidence(values.tolist(), kind),
            )
        )
    return columns


# ===================
# DETECTION HELPERS
# ===================

def parse_line(line: str, delimiter: str) -> list[str]:
    """Split one line honoring double quotes. Values are trimmed."""
    reader = csv.reader([line], delimiter=delimiter, quotechar='"', skipinitialspace=True)
    try:
        values = next(reader)
    except (csv.Error, StopIteration):
        values = line.split(delimiter)
    return [value.strip() for value in values] or [""]


def detect_delimiter(lines: list[str]) -> str:
    """
    Score each candidate delimiter on the first lines.

    score = consistent_lines / inspected * min(first_line_columns, 10) / 10
    """
    inspected = lines[:DELIMITER_SAMPLE_LINES]
    best_delimiter = COMMON_DELIMITERS[0]
    best_score = -1.0

    for delimiter in COMMON_DELIMITERS:
        counts = [len(parse_line(line, delimiter)) for line in inspected]
        first_columns = counts[0]
        consistent = sum(1 for c in counts if c == first_columns and c > 1)
        score = (consistent / len(inspected)) * min(first_columns, 10) / 10

        if score > best_score:
            best_delimiter, best_score = delimiter, score

    return best_delimiter


def detect_header(lines: list[str], delimiter: str) -> bool:
    """Decide whether the first line holds column names."""
    if len(lines) < 2:
        return True

    first_row = parse_line(lines[0], delimiter)
    second_row = parse_line(lines[1], delimiter)

    if len(first_row) != len(second_row):
        return False

    score = 0
    for first, second in zip(first_row, second_row):
        if not _is_numeric(first) and _is_numeric(second):
            score += 1
        if "." not in first and "-" not in first and ("." in second or "-" in second):
            score += 1
        if len(first) > 3 and HEADER_IDENTIFIER.match(first):
            score += 1

    return score >= len(first_row) * 0.6


def detect_encoding(content: str) -> str:
    if re.search(r"[\u00C0-\u017F]", content):
        return "UTF-8"
    if re.search(r"[\u0080-\u00FF]", content):
        return "ISO-8859-1"
    if content.isascii():
        return "ASCII"
    return "UTF-8"


def generate_headers(column_count: int) -> list[str]:
    return [f"column_{i + 1}" for i in range(column_count)]


def calculate_confidence(parsed_lines: list[list[str]]) -> float:
    """Share of lines with the same column count as the first one."""
    if not parsed_lines:
        return 0.0
    expected = len(parsed_lines[0])
    consistent = sum(1 for row in parsed_lines if len(row) == expected)
    return consistent / len(parsed_lines)


def _is_numeric(value: str) -> bool:
    value = value.strip()
    # An empty cell counts as numeric, like a blank spreadsheet cell
    return value == "" or bool(NUMERIC_VALUE.match(value))


def _infer_column_kind(values: list[str], column_name: Optional[str]) -> ColumnKind:
    if not values:
        return ColumnKind.STRING

    name = (column_name or "").lower()
    for keywords, kind in NAME_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return kind

    for kind, pattern in COLUMN_PATTERNS.items():
        matches = sum(1 for v in values if pattern.search(v.strip()))
        if matches / len(values) > 0.8:
            return kind

    return ColumnKind.STRING


def _kind_confidence(values: list[str], kind: ColumnKind) -> float:
    if not values:
        return 0.0
    if kind == ColumnKind.STRING:
        return 1.0
    pattern = ID_PATTERN if kind == ColumnKind.ID else COLUMN_PATTERNS.get(kind)
    if pattern is None:
        return 0.5
    matches = sum(1 for v in values if pattern.search(v.strip()))
    return matches / len(values)
