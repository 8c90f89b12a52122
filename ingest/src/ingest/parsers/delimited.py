"""Delimited text parsing: delimiter and encoding detection plus a quote-aware row splitter."""

from __future__ import annotations

import codecs
import re

import chardet
from pydantic import BaseModel, Field

from ..errors import EmptyFile

CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","
YEAR_HEADER_PATTERN = re.compile(r"^(19|20)\d{2}$")

_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


class ParsedTable(BaseModel):
    """Header plus data rows split out of a delimited file."""

    headers: list[str]
    rows: list[list[str]] = Field(default_factory=list)
    delimiter: str = DEFAULT_DELIMITER
    encoding: str = "utf-8"
    file_size: int = 0
    detected_years: list[int] = Field(default_factory=list)
    # 1-based line of each row in the uploaded file; empty means rows follow the header directly.
    line_numbers: list[int] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    def numbered_rows(self) -> list[tuple[int, list[str]]]:
        numbers = self.line_numbers or range(2, len(self.rows) + 2)
        return list(zip(numbers, self.rows))


def detect_delimiter(line: str) -> str:
    """Pick the candidate delimiter that occurs most often in ``line``.

    Ties keep the earlier candidate, so a line without any candidate yields a comma.
    """

    best = DEFAULT_DELIMITER
    best_count = 0
    for candidate in CANDIDATE_DELIMITERS:
        count = line.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def detect_encoding(raw: bytes) -> str:
    """Guess the text encoding of an uploaded file."""

    for bom, name in _BOMS:
        if raw.startswith(bom):
            return name

    try:
        raw.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        pass

    guess = chardet.detect(raw).get("encoding")
    if guess:
        try:
            codecs.lookup(guess)
            return guess.lower()
        except LookupError:
            pass
    return "latin-1"


def decode_content(raw: bytes) -> tuple[str, str]:
    """Decode bytes into text, returning ``(text, encoding)`` with any BOM removed."""

    encoding = detect_encoding(raw)
    text = raw.decode(encoding, errors="replace")
    return text.lstrip("\ufeff"), encoding


def parse_csv_line(line: str, delimiter: str = DEFAULT_DELIMITER, *, escaped_quotes: bool = False) -> list[str]:
    """Split one line into trimmed fields, honouring quoted segments.

    A ``"`` toggles the in-quotes state. With ``escaped_quotes`` a doubled ``""``
    inside a quoted segment produces a literal quote instead of toggling twice.
    """

    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    index = 0
    length = len(line)

    while index < length:
        char = line[index]
        if char == '"':
            if escaped_quotes and in_quotes and index + 1 < length and line[index + 1] == '"':
                current.append('"')
                index += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        index += 1

    fields.append("".join(current).strip())
    return fields


def numbered_lines(text: str) -> list[tuple[int, str]]:
    """Normalise line endings and drop blank lines, keeping each line's 1-based number."""

    normalised = text.replace("\r\n", "\n").replace("\r", "\n")
    return [(number, line) for number, line in enumerate(normalised.split("\n"), start=1) if line.strip()]


def split_lines(text: str) -> list[str]:
    """Normalise line endings and drop blank lines."""

    return [line for _, line in numbered_lines(text)]


def detect_years(headers: list[str], pattern: re.Pattern[str] | str | None = None) -> list[int]:
    """Return the sorted year values found among ``headers``."""

    regex = re.compile(pattern) if isinstance(pattern, str) else (pattern or YEAR_HEADER_PATTERN)
    years = {int(header.strip()) for header in headers if regex.match(header.strip()) and header.strip().isdigit()}
    return sorted(years)


def parse_table(
    content: str | bytes,
    *,
    escaped_quotes: bool = False,
    filename: str | None = None,
    delimiter: str | None = None,
) -> ParsedTable:
    """Parse a whole delimited file into a :class:`ParsedTable`."""

    if isinstance(content, bytes):
        file_size = len(content)
        text, encoding = decode_content(content)
    else:
        file_size = len(content.encode("utf-8"))
        text, encoding = content.lstrip("\ufeff"), "utf-8"

    lines = numbered_lines(text)
    if not lines:
        raise EmptyFile(filename)

    header_line = lines[0][1]
    resolved_delimiter = delimiter or detect_delimiter(header_line)
    headers = parse_csv_line(header_line, resolved_delimiter, escaped_quotes=escaped_quotes)
    rows = [parse_csv_line(line, resolved_delimiter, escaped_quotes=escaped_quotes) for _, line in lines[1:]]

    return ParsedTable(
        headers=headers,
        rows=rows,
        delimiter=resolved_delimiter,
        encoding=encoding,
        file_size=file_size,
        detected_years=detect_years(headers),
        line_numbers=[number for number, _ in lines[1:]],
    )
