"""
Text/number normalizers for raw listing fragments.

Pure functions: any input type is accepted and anything unusable degrades
to None. Nothing here raises. Rounding is half-up (1250.5 -> 1251), which is
what portal-side price-per-sqm figures use; Python's round() is half-even.
"""
import math
import re
from datetime import date, datetime
from typing import Any, Optional

from dateutil import parser as dateutil_parser

from marketintel.vocabulary import FLOOR_NAMES

_CURRENCY_RE = re.compile(r"[€$£]")
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_INT_RE = re.compile(r"\d+")
_SIGNED_INT_RE = re.compile(r"-?\d+")
_YEAR_RE = re.compile(r"\b(1[89]\d\d|20\d\d)\b")
# Year-first dates; dateutil would read "2024-03-05" as 3 May under dayfirst
_YEAR_FIRST_RE = re.compile(r"^\d{4}[-/.]\d{1,2}[-/.]\d{1,2}")

# "85 τ.μ.", "85τμ", "120,5 m²", "90 m2", "70 sqm"
_AREA_UNIT = r"(?:τ\.?\s?μ\.?|m²|m2|sq\.?\s?m|sqm)"
_SIZE_WITH_UNIT_RE = re.compile(r"(\d+(?:[.,]\d+)*)\s*" + _AREA_UNIT, re.IGNORECASE)
_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)*)")
# "1.200" with dot groups of exactly three digits is a thousands separator
_DOT_THOUSANDS_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+$")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite(value: Any) -> Optional[float]:
    if not _is_number(value):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def normalize_text(value: Any) -> Optional[str]:
    """Trim and collapse internal whitespace. Blank or non-text input -> None."""
    if value is None:
        return None
    if _is_number(value):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = _WHITESPACE_RE.sub(" ", value).strip()
    return cleaned or None


def parse_price(text: Any) -> Optional[int]:
    """
    Parse a price from European-formatted text.

    "150.000€" -> 150000, "1.250,50" -> 1251, "no price" -> None.
    Numeric input is rounded directly.
    """
    if text is None:
        return None
    number = _finite(text)
    if number is not None:
        return round_half_up(number) if number >= 0 else None
    if not isinstance(text, str):
        return None
    cleaned = _CURRENCY_RE.sub("", text)
    cleaned = _WHITESPACE_RE.sub("", cleaned)
    cleaned = cleaned.replace(".", "").replace(",", ".")
    match = _NUMBER_RE.search(cleaned)
    if not match:
        return None
    return round_half_up(float(match.group(0)))


def _size_number(token: str) -> float:
    if "," in token and "." in token:
        token = token.replace(".", "").replace(",", ".")
    elif _DOT_THOUSANDS_RE.match(token):
        token = token.replace(".", "")
    else:
        token = token.replace(",", ".")
    # Only the first separator counts as the decimal point
    head, _, tail = token.partition(".")
    tail = tail.replace(".", "")
    return float(f"{head}.{tail}" if tail else head)


def parse_size(text: Any) -> Optional[int]:
    """
    Parse a floor area in square meters.

    A number followed by an area unit wins over a bare number elsewhere in
    the string ("2 υπν. 85 τ.μ." -> 85). "120,5 m²" -> 121, "studio" -> None.
    """
    if text is None:
        return None
    number = _finite(text)
    if number is not None:
        return round_half_up(number) if number >= 0 else None
    if not isinstance(text, str):
        return None
    match = _SIZE_WITH_UNIT_RE.search(text) or _SIZE_RE.search(text)
    if not match:
        return None
    return round_half_up(_size_number(match.group(1)))


def parse_rooms(text: Any) -> Optional[int]:
    """First integer run ("3 υπνοδωμάτια" -> 3)."""
    if text is None:
        return None
    number = _finite(text)
    if number is not None:
        return int(number) if number >= 0 else None
    if not isinstance(text, str):
        return None
    match = _INT_RE.search(text)
    return int(match.group(0)) if match else None


def parse_year(value: Any) -> Optional[int]:
    """Construction year between 1800 and 2099, else None."""
    if value is None:
        return None
    number = _finite(value)
    if number is not None:
        year = int(number)
        return year if 1800 <= year <= 2099 else None
    if not isinstance(value, str):
        return None
    match = _YEAR_RE.search(value)
    return int(match.group(1)) if match else None


def parse_coordinate(value: Any, limit: float) -> Optional[float]:
    if value is None:
        return None
    number = _finite(value)
    if number is None and isinstance(value, str):
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
    if number is None or abs(number) > limit:
        return None
    return number


def normalize_floor(text: Any) -> Optional[str]:
    """
    Map a floor description onto the signed numeric-string scale.

    Named floors: basement "-1", semi-basement "-0.5", ground "0",
    semi-ground "0.5", ordinals "N". Otherwise the first integer run, and
    failing that the trimmed original, so floor information is never dropped.
    """
    if _is_number(text):
        number = _finite(text)
        if number is None:
            return None
        return str(int(number)) if number.is_integer() else str(number)
    if not isinstance(text, str) or not text.strip():
        return None
    original = text.strip()
    lowered = _WHITESPACE_RE.sub(" ", original).lower()
    if lowered in FLOOR_NAMES:
        return FLOOR_NAMES[lowered]
    match = _SIGNED_INT_RE.search(lowered)
    if match:
        return match.group(0)
    return original


def normalize_phone(text: Any) -> Optional[str]:
    """Digits with an optional leading "+"; at least 10 characters or None."""
    if text is None:
        return None
    if _is_number(text):
        number = _finite(text)
        if number is None:
            return None
        text = str(int(number))
    if not isinstance(text, str):
        return None
    stripped = text.strip()
    digits = re.sub(r"\D", "", stripped)
    phone = f"+{digits}" if stripped.startswith("+") else digits
    return phone if len(phone) >= 10 else None


def normalize_postal_code(text: Any) -> Optional[str]:
    """Greek postal codes are five digits ("106 71" -> "10671")."""
    if text is None:
        return None
    if _is_number(text):
        number = _finite(text)
        if number is None:
            return None
        text = str(int(number))
    if not isinstance(text, str):
        return None
    digits = re.sub(r"\D", "", text)
    return digits if len(digits) == 5 else None


def parse_listing_date(value: Any) -> Optional[str]:
    """Return YYYY-MM-DD or None. Day-first, as Greek portals print dates."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        parsed = dateutil_parser.parse(text, dayfirst=not _YEAR_FIRST_RE.match(text))
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def price_per_sqm(price: Optional[int], size_sqm: Optional[int]) -> Optional[int]:
    if price is None or size_sqm is None or size_sqm <= 0:
        return None
    return round_half_up(price / size_sqm)
