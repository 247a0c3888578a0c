"""
Field Normalizer - Value parsing for dates, amounts, slugs and coupon enums

Every function here is pure and total: unparseable input yields None (or the
documented default), never an exception.
"""

import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from bond_directory.db.models import ActiveStatus, CouponFrequency, CouponType

ISIN_RE = re.compile(r"^[A-Z]{2}[A-Z0-9]{10}$")

_DMY_RE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ][\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$")
_TEXT_MONTH_FORMATS = ("%d-%b-%Y", "%d %b %Y", "%d-%B-%Y", "%d %B %Y", "%b %d, %Y")

# Spreadsheet day zero and the largest serial a spreadsheet can hold (9999-12-31)
_SERIAL_EPOCH = datetime(1899, 12, 30)
_SERIAL_MAX = 2958465

SLUG_MAX_LENGTH = 80
SLUG_CONTRACTIONS = (
    (re.compile(r"\blimited\b"), "ltd"),
    (re.compile(r"\bprivate\b"), "pvt"),
    (re.compile(r"\bcorporation\b"), "corp"),
    (re.compile(r"\bcompany\b"), "co"),
)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

_AMOUNT_NOISE_RE = re.compile(r"(?i)(₹|rs\.?|inr|,|\s)")
_RATE_NOISE_RE = re.compile(r"(?i)(%|p\.?a\.?|,|\s)")

_TRUE_FLAGS = {"yes", "y", "true", "1"}
_FALSE_FLAGS = {"no", "n", "false", "0"}


def _midnight(value: date) -> datetime:
    return datetime.combine(value, time())


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date into a naive datetime at midnight

    Accepts DD-MM-YYYY, DD/MM/YYYY, YYYY-MM-DD (optionally with a time part),
    day-month-name forms such as 15-Mar-2030, date/datetime objects and
    spreadsheet serial day numbers.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        try:
            return _midnight(value.date())
        except (ValueError, TypeError):
            return None
    if isinstance(value, date):
        return _midnight(value)

    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        if not 1 <= value <= _SERIAL_MAX:
            return None
        return _SERIAL_EPOCH + timedelta(days=int(value))

    text = str(value).strip()
    if not text:
        return None

    try:
        match = _DMY_RE.match(text)
        if match:
            day, month, year = (int(part) for part in match.groups())
            return datetime(year, month, day)

        match = _ISO_RE.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return datetime(year, month, day)
    except ValueError:
        return None

    for fmt in _TEXT_MONTH_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def generate_slug(name: Any) -> str:
    """
    URL-safe issuer id

    "Reliance Industries Limited" and "Reliance Industries Ltd." both become
    "reliance-industries-ltd".
    """
    if name is None:
        return "unknown"
    slug = str(name).lower()
    for pattern, replacement in SLUG_CONTRACTIONS:
        slug = pattern.sub(replacement, slug)
    slug = _NON_ALNUM_RE.sub("-", slug).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    return slug or "unknown"


def _parse_number(value: Any, noise: re.Pattern) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = noise.sub("", str(value))
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def parse_amount(value: Any) -> Optional[float]:
    """Non-negative amount; thousands separators and rupee markers are ignored"""
    return _parse_number(value, _AMOUNT_NOISE_RE)


def parse_rate(value: Any) -> Optional[float]:
    """Non-negative percentage such as '7.85', '7.85%' or 7.85"""
    return _parse_number(value, _RATE_NOISE_RE)


def parse_count(value: Any) -> Optional[int]:
    number = parse_amount(value)
    return int(number) if number is not None else None


def parse_flag(value: Any) -> Optional[bool]:
    """Yes/No style flags; None when the value says neither"""
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    return None


def map_coupon_type(raw: Any) -> CouponType:
    text = str(raw or "").lower()
    if "float" in text or "variable" in text:
        return CouponType.FLOATING
    if "zero" in text:
        return CouponType.ZERO
    return CouponType.FIXED


def map_coupon_frequency(raw: Any) -> Optional[CouponFrequency]:
    text = str(raw or "").lower()
    if "semi" in text or "half" in text:
        return CouponFrequency.SEMI_ANNUAL
    if "quarter" in text:
        return CouponFrequency.QUARTERLY
    if "month" in text:
        return CouponFrequency.MONTHLY
    if "annual" in text or "yearly" in text:
        return CouponFrequency.ANNUAL
    return None


def determine_active_status(
    maturity_date: Optional[datetime],
    today: Optional[date] = None
) -> ActiveStatus:
    """Matured once the maturity date is today or earlier; no date means Active"""
    if maturity_date is None:
        return ActiveStatus.ACTIVE
    today = today or datetime.utcnow().date()
    return ActiveStatus.ACTIVE if maturity_date.date() > today else ActiveStatus.MATURED


def normalize_isin(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def is_valid_isin(isin: str) -> bool:
    return bool(ISIN_RE.match(isin or ""))
