"""Tolerant parsers for the NCF, date and numeric columns."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Optional


LOGGER = logging.getLogger(__name__)

DEFAULT_NCF_PREFIX = "B010000"

DATE_FORMATS = (
    "%Y-%m-%d",  # yyyy-MM-dd
    "%d/%m/%Y",  # dd/MM/yyyy and d/M/yyyy, strptime accepts unpadded values
    "%m/%d/%Y",  # MM/dd/yyyy
    "%d-%m-%Y",  # dd-MM-yyyy
)
MIN_YEAR = 1900
MAX_YEAR = 2100

_NON_DIGIT = re.compile(r"\D")
_NON_NUMERIC = re.compile(r"[^0-9,.\-]")


def extract_ncf_suffix(value: Optional[str]) -> str:
    """Return the 4 digit grouping key of an NCF, ``""`` when it has no digits."""

    digits = _NON_DIGIT.sub("", value or "")
    if not digits:
        return ""
    return digits[-4:].zfill(4)


def full_ncf(suffix: str, prefix: str = DEFAULT_NCF_PREFIX) -> str:
    return f"{prefix}{suffix}"


def parse_date(value: Optional[str]) -> Optional[date]:
    text = (value or "").strip()
    if not text:
        return None

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if MIN_YEAR <= parsed.year < MAX_YEAR:
            return parsed.date()
    LOGGER.debug("Unable to parse date value '%s'", value)
    return None


def _decimal_candidate(text: str, separator: str) -> bool:
    if text.count(separator) != 1:
        return False
    trailing = text.rsplit(separator, 1)[1]
    return 1 <= len(trailing) <= 3 and trailing.isdigit()


def parse_number(value: Optional[str]) -> Optional[float]:
    """Parse quantities and prices written with either decimal convention.

    ``1.234,56`` and ``1,234.56`` both read as ``1234.56``: when both
    separators appear the rightmost one is the decimal point.  A lone
    separator type is a decimal point only when it occurs once with one to
    three digits after it, otherwise it is a thousands separator.
    """

    text = _NON_NUMERIC.sub("", value or "")
    if not text:
        return None

    has_comma = "," in text
    has_dot = "." in text
    if has_comma and has_dot:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif has_comma:
        text = text.replace(",", ".") if _decimal_candidate(text, ",") else text.replace(",", "")
    elif has_dot:
        if not _decimal_candidate(text, "."):
            text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        LOGGER.debug("Unable to parse numeric value '%s'", value)
        return None


def parse_quantity(value: Optional[str]) -> Optional[float]:
    number = parse_number(value)
    if number is None or number <= 0:
        return None
    return number


def parse_price(value: Optional[str]) -> Optional[float]:
    number = parse_number(value)
    if number is None or number < 0:
        return None
    return number


__all__ = [
    "DEFAULT_NCF_PREFIX",
    "DATE_FORMATS",
    "extract_ncf_suffix",
    "full_ncf",
    "parse_date",
    "parse_number",
    "parse_quantity",
    "parse_price",
]
