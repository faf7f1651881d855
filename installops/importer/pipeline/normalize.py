"""
Cell normalizers for partner job rows.

Normalizers never raise on bad input. Those that can reject a value return a
``(value, warning)`` pair so the caller can attach the warning to the row and
keep processing it.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

MIN_DURATION_HOURS = Decimal("0")
MAX_DURATION_HOURS = Decimal("12")

DATE_PLACEHOLDERS = frozenset({"tbc", "tba", "tbd", "n/a", "na", "-", "--", "none", "pending", "unknown"})

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_DMY_SHORT_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")
_DECIMAL_RE = re.compile(r"^-?\d+(?:\.\d+)?$|^-?\.\d+$")
_CLOCK_RE = re.compile(r"^(\d{1,2}):([0-5]\d)$")
_TEXT_DURATION_RE = re.compile(
    r"^(?:(?P<hours>\d+(?:\.\d+)?)\s*h(?:ours?|rs?)?)?\s*(?:(?P<minutes>\d+)\s*m(?:ins?|inutes?)?)?$",
    re.IGNORECASE,
)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_TWO_PLACES = Decimal("0.01")


class Unset(enum.Enum):
    """Marker for a field that must be left out of a write payload."""

    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = Unset.UNSET

# Present-and-null (None) means "write null"; UNSET means "do not touch".
Patch = Union[Decimal, None, Unset]


def _clean(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_email(value: object | None) -> str | None:
    """Lower-case and trim an email address; blank becomes None."""

    token = _clean(value).lower()
    return token or None


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value))


def normalize_phone(value: object | None) -> tuple[str | None, str | None]:
    """
    Normalize a UK phone number to the 11 digit national ``0...`` form.

    Non-digits are stripped and a leading ``44`` or ``0044`` country code is
    rewritten to ``0``. Anything that is not then 11 digits starting with 0 is
    rejected with a warning.
    """

    token = _clean(value)
    if not token:
        return None, None
    digits = re.sub(r"\D", "", token)
    if digits.startswith("0044"):
        digits = "0" + digits[4:]
    elif digits.startswith("44"):
        digits = "0" + digits[2:]
    if len(digits) == 11 and digits.startswith("0"):
        return digits, None
    return None, f"Invalid phone number '{token}'"


def parse_scheduled_date(value: object | None) -> datetime | None:
    """
    Parse DD/MM/YYYY, YYYY-MM-DD or DD/MM/YY into a UTC datetime at 12:00.

    Noon keeps the calendar day stable under any display timezone offset.
    Placeholders such as ``TBC`` and unparseable values return None without a
    warning.
    """

    token = _clean(value)
    if not token or token.lower() in DATE_PLACEHOLDERS:
        return None

    match = _DMY_RE.match(token)
    if match:
        day, month, year = (int(part) for part in match.groups())
    else:
        match = _ISO_RE.match(token)
        if match:
            year, month, day = (int(part) for part in match.groups())
        else:
            match = _DMY_SHORT_RE.match(token)
            if not match:
                return None
            day, month, short_year = (int(part) for part in match.groups())
            year = 2000 + short_year

    try:
        return datetime(year, month, day, 12, 0, 0, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_amount(value: object | None) -> tuple[Decimal | None, str | None]:
    """Strip currency symbols and separators and parse a money amount."""

    token = _clean(value)
    if not token:
        return None, None
    cleaned = re.sub(r"[^\d.\-]", "", token)
    if not _DECIMAL_RE.match(cleaned):
        return None, f"Invalid amount '{token}'"
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None, f"Invalid amount '{token}'"
    return amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP), None


def _parse_duration_token(token: str) -> Decimal | None:
    if _DECIMAL_RE.match(token):
        return Decimal(token)

    match = _CLOCK_RE.match(token)
    if match:
        hours, minutes = (int(part) for part in match.groups())
        return Decimal(hours) + Decimal(minutes) / Decimal(60)

    match = _TEXT_DURATION_RE.match(token)
    if match and (match.group("hours") or match.group("minutes")):
        hours = Decimal(match.group("hours") or "0")
        minutes = Decimal(match.group("minutes") or "0")
        return hours + minutes / Decimal(60)
    return None


def parse_duration(value: object | None) -> tuple[Patch, str | None]:
    """
    Parse a duration in hours.

    Accepted forms, tried in order: plain decimal (``4.5``), clock (``4:30``),
    free text (``2h 15m``). Results are clamped to 0-12 hours with a warning
    when clamping applies. Blank input returns ``(UNSET, None)``; unparseable
    input returns ``(UNSET, warning)`` so a stored value is preserved.
    """

    token = _clean(value)
    if not token:
        return UNSET, None

    hours = _parse_duration_token(token)
    if hours is None:
        return UNSET, f"Unparseable duration '{token}'; existing value kept"

    warning = None
    if hours < MIN_DURATION_HOURS or hours > MAX_DURATION_HOURS:
        clamped = min(max(hours, MIN_DURATION_HOURS), MAX_DURATION_HOURS)
        warning = f"Duration '{token}' outside {MIN_DURATION_HOURS}-{MAX_DURATION_HOURS}h; clamped to {clamped}"
        hours = clamped
    return hours.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP), warning


def normalize_job_type_key(value: object | None) -> str:
    """Lower-case a job type and drop every non-alphanumeric character."""

    return _NON_ALNUM_RE.sub("", _clean(value).lower())


def clamp_duration(hours: Decimal) -> Decimal:
    return min(max(hours, MIN_DURATION_HOURS), MAX_DURATION_HOURS).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
