from __future__ import annotations

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any


# page ids: a fixed 'c' followed by 24 lowercase alphanumerics (25 chars total).
PAGE_ID_PREFIX = "c"
PAGE_ID_BODY_LENGTH = 24
PAGE_ID_PATTERN = r"^c[a-z0-9]{24}$"
_PAGE_ID_RE = re.compile(PAGE_ID_PATTERN)
_PAGE_ID_ALPHABET = string.ascii_lowercase + string.digits

# analytics exports use this for "no lookup result".
_COUNTRY_PLACEHOLDERS = {"(not set)"}

# plain ASCII digits only, no "1_000" or non-Latin numerals.
_INT_RE = re.compile(r"[+-]?[0-9]+")


def normalize_cell(v: Any) -> Any:
    """
    Transform a raw CSV cell into normalized shape.

    Strips whitespace from strings, and treats an empty string as absent (`None`).
    Non `str` values pass through unchanged.
    """
    if v is None:
        return None
    if isinstance(v, str):
        s = v.strip()
        return s or None
    return v


## -- identifiers

def generate_page_id() -> str:
    """Generate a new page id in the canonical `c` + 24 `[a-z0-9]` format."""
    body = "".join(secrets.choice(_PAGE_ID_ALPHABET) for _ in range(PAGE_ID_BODY_LENGTH))
    return PAGE_ID_PREFIX + body


def is_valid_page_id(v: Any) -> bool:
    """Whether `v` is a `str` in the canonical page id format."""
    return isinstance(v, str) and _PAGE_ID_RE.match(v) is not None


def convert_to_page_id(v: Any) -> tuple[str, bool]:
    """
    Returns `(page_id, was_replaced)`.

    - empty/absent -> a freshly generated id, `was_replaced=False` (nothing to replace)
    - canonical    -> unchanged
    - anything else (ex: a legacy UUID v4) -> a freshly generated id, `was_replaced=True`

    Replacement is one-way: the original value is not kept anywhere but the run log.
    """
    v = normalize_cell(v)
    if v is None:
        return generate_page_id(), False
    if is_valid_page_id(v):
        return v, False
    return generate_page_id(), True


## -- text fields

def parse_optional_text(v: Any) -> str | None:
    """Optional text, `None` when absent or empty (so "not provided" and "empty" look the same)."""
    v = normalize_cell(v)
    if v is None:
        return None
    return str(v)


def text_or_default(default: str):
    """Build a converter that falls back to `default` for absent/empty text."""
    def _convert(v: Any) -> str:
        s = parse_optional_text(v)
        return default if s is None else s
    return _convert


def parse_country_code(v: Any) -> str | None:
    """
    Accept only exactly-2-character codes that are not a known placeholder.
    Everything else becomes `None`.
    """
    s = parse_optional_text(v)
    if s is None or s in _COUNTRY_PLACEHOLDERS:
        return None
    if len(s) != 2:
        return None
    return s


## -- numeric / bool fields (fail open to "no value")

def parse_optional_int(v: Any) -> int | None:
    """
    Parse integers, fails open to `None`.

    Empty, non-numeric, fractional ("12.5") or exponent ("1e3") content -> `None`,
    never zero. Rejecting a required field left `None` is the validator's job.
    """
    v = normalize_cell(v)
    if v is None:
        return None
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    s = str(v)
    # "12.3" or "1e-4" should not be sneakily coerced to `int`
    if not _INT_RE.fullmatch(s):
        return None
    try:
        return int(s)
    except ValueError:
        # over the interpreter digit limit
        return None


def int_or_default(default: int):
    """Build a converter that falls back to `default` when `parse_optional_int` gives `None`."""
    def _convert(v: Any) -> int:
        n = parse_optional_int(v)
        return default if n is None else n
    return _convert


def parse_flag(v: Any) -> bool:
    """Case-insensitive exact `"true"` -> `True`. Anything else, absent included, -> `False`."""
    if isinstance(v, bool):
        return v
    v = normalize_cell(v)
    if v is None:
        return False
    return str(v).lower() == "true"


## -- timestamps

def parse_timestamp_iso(v: Any) -> datetime:
    """
    Parse an ISO 8601 timestamp carrying a zone designator.

    Accepts:
    - `2024-10-24T10:00:00.000Z`
    - `2024-10-24T10:00:00+02:00`
    - `2024-10-24 10:00:00Z` (space separated)

    Raises `ValueError` on anything else, including naive or date-only values.
    The result is converted to UTC and truncated to millisecond precision,
    matching the store's `timestamptz(3)` column.
    """
    if isinstance(v, datetime):
        dt = v
    else:
        s = normalize_cell(v)
        if s is None:
            raise ValueError("timestamp is required")
        if not isinstance(s, str) or ("T" not in s and " " not in s):
            raise ValueError(f"not an ISO 8601 timestamp: {v!r}")

        s = s.replace("z", "Z").replace("Z", "+00:00").replace(" ", "T", 1)
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise ValueError(f"not an ISO 8601 timestamp: {v!r}") from None

    if dt.tzinfo is None:
        raise ValueError(f"timestamp has no timezone: {v!r}")

    try:
        dt = dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # ex: 0001-01-01T00:00:00+01:00 lands before datetime.min in UTC
        raise ValueError(f"timestamp out of range: {v!r}") from None
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
