"""Parsing modules."""

from .delimited import (
    ParsedTable,
    decode_content,
    detect_delimiter,
    detect_encoding,
    parse_csv_line,
    parse_table,
)
from .workbook import workbook_to_csv

__all__ = [
    "ParsedTable",
    "decode_content",
    "detect_delimiter",
    "detect_encoding",
    "parse_csv_line",
    "parse_table",
    "workbook_to_csv",
]
