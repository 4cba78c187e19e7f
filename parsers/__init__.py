"""
CSV parsers module.

Structure detection (delimiter, header, encoding) and column summaries.
"""

from parsers.csv_detector import (
    ColumnInfo,
    CSVStructure,
    analyze_columns,
    decode_csv_bytes,
    detect_csv_structure,
)

__all__ = [
    "ColumnInfo",
    "CSVStructure",
    "analyze_columns",
    "decode_csv_bytes",
    "detect_csv_structure",
]
