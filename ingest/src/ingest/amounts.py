"""Sanitisation helpers for monetary amounts, dates and free-text fields."""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import InvalidAmount, InvalidDate

_CURRENCY_SYMBOLS = re.compile(r"[$€£¥₹]")
_NON_NUMERIC = re.compile(r"[^\d.\-]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_SCRIPT_TAG = re.compile(r"</?script\b[^>]*>", re.IGNORECASE)
_MARKUP = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_CENT = Decimal("0.01")

MIN_YEAR = 1900
MAX_YEAR = 2100
ACCOUNT_NAME_MAX = 100
DESCRIPTION_MAX = 500

_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d", "%d/%m/%y")


def round_amount(value: float | Decimal) -> float:
    """Round half-up to two decimals using the decimal representation of ``value``."""

    quantised = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return float(quantised) + 0.0


def _normalise_separators(cleaned: str) -> str:
    comma_index = cleaned.rfind(",")
    dot_index = cleaned.rfind(".")

    if comma_index > dot_index and dot_index != -1:
        # 1.234,56
        return cleaned.replace(".", "").replace(",", ".")
    if dot_index > comma_index:
        # 1,234.56
        return cleaned.replace(",", "")
    if comma_index != -1:
        # lone comma is a decimal separator: 123,45
        return cleaned.replace(",", ".", 1).replace(",", "")
    return cleaned


def sanitize_amount(value: str | int | float | Decimal) -> float:
    """Normalise ``value`` into a signed float rounded to two decimals.

    Strings may carry a currency symbol and either European (``1.234,56``) or
    US (``1,234.56``) grouping. Raises :class:`InvalidAmount` for anything that
    does not end up as a finite number.
    """

    if isinstance(value, bool):
        raise InvalidAmount(value)

    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, InvalidOperation) as exc:
            raise InvalidAmount(value) from exc
        if not math.isfinite(number):
            raise InvalidAmount(value)
        return round_amount(number)

    if not isinstance(value, str):
        raise InvalidAmount(value)

    cleaned = _CURRENCY_SYMBOLS.sub("", value).strip()
    cleaned = _normalise_separators(cleaned)
    cleaned = _NON_NUMERIC.sub("", cleaned)

    try:
        number = float(cleaned)
    except ValueError as exc:
        raise InvalidAmount(value) from exc

    if not math.isfinite(number):
        raise InvalidAmount(value)
    return round_amount(number)


def try_sanitize_amount(value: object) -> float | None:
    """Return the sanitised amount or ``None`` when it cannot be parsed."""

    try:
        return sanitize_amount(value)  # type: ignore[arg-type]
    except InvalidAmount:
        return None


def parse_date(value: str) -> date | None:
    """Parse ISO or day-first dates; ``None`` when nothing matches."""

    text = value.strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def sanitize_date(value: str | date | datetime) -> date:
    """Return a date within 1900-2100 or raise :class:`InvalidDate`."""

    if isinstance(value, datetime):
        parsed: date | None = value.date()
    elif isinstance(value, date):
        parsed = value
    elif isinstance(value, str):
        parsed = parse_date(value)
    else:
        parsed = None

    if parsed is None:
        raise InvalidDate(value)
    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        raise InvalidDate(value, out_of_range=True)
    return parsed


def sanitize_text(value: str | None) -> str:
    """Strip script blocks and markup from free text."""

    if not value:
        return ""
    text = _SCRIPT_BLOCK.sub("", value.strip())
    text = _SCRIPT_TAG.sub("", text)
    text = _MARKUP.sub("", text)
    return text.replace("<", "").replace(">", "")


def sanitize_account_name(value: str | None) -> str:
    """Clean an account label: no markup, no double quotes, bounded length."""

    text = _SCRIPT_TAG.sub("", (value or "").strip())
    text = _MARKUP.sub("", text)
    text = re.sub(r"[<>\"]", "", text)
    return text.strip()[:ACCOUNT_NAME_MAX]


def sanitize_description(value: str | None) -> str:
    """Collapse whitespace and bound the length of a description."""

    text = _WHITESPACE.sub(" ", sanitize_text(value)).strip()
    return text[:DESCRIPTION_MAX]
