"""Normalization utilities shared by the CSV and email channels.

Covers:
  - Amount parsing (currency symbols, thousands separators, accounting negatives)
  - Date parsing (ISO first, then US and long-form month formats)
  - Description → vendor-name extraction
  - Dollars → integer cents
"""

import decimal
import re
from datetime import date, datetime, timezone
from typing import Optional, Union

from .vendor_patterns import detect_saas_vendor

# ─────────────────────────────────────────────────────────────────────────────
# Amount parsing
# ─────────────────────────────────────────────────────────────────────────────

_CURRENCY_NOISE_RE = re.compile(r"[$€£¥₹,\s]")


def parse_amount(value: Union[str, int, float, None]) -> float:
    """Parse a spend amount as a non-negative float.

    Handles:
      42.99  |  -42.99  |  (1,234.50)  |  $1,234.56  |  €99
    Spending is tracked by magnitude, so signs and accounting parentheses are
    dropped.  Unparseable input yields 0.0, which callers treat as "skip row".
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return abs(float(value))

    v = _CURRENCY_NOISE_RE.sub("", value)

    # Accounting negative: (123.45)
    if v.startswith("(") and v.endswith(")"):
        v = v[1:-1]

    v = re.sub(r"^-", "", v)

    try:
        amount = float(v)
    except ValueError:
        return 0.0
    if amount != amount or amount in (float("inf"), float("-inf")):  # NaN / inf
        return 0.0
    return abs(amount)


def to_cents(amount: float) -> int:
    """Convert float dollars to integer cents (ROUND_HALF_UP)."""
    return int(
        (decimal.Decimal(str(amount)) * 100).quantize(
            decimal.Decimal("1"), rounding=decimal.ROUND_HALF_UP
        )
    )


def from_cents(cents: Optional[int]) -> Optional[float]:
    if cents is None:
        return None
    return round(cents / 100, 2)


# ─────────────────────────────────────────────────────────────────────────────
# Date parsing
# ─────────────────────────────────────────────────────────────────────────────

# Tried in order after ISO. US month-first wins over day-first on ambiguity.
_DATE_FORMATS = [
    "%m/%d/%Y",             # 01/15/2026
    "%m/%d/%y",             # 01/15/26
    "%m-%d-%Y",             # 01-15-2026
    "%Y/%m/%d",             # 2026/01/15
    "%B %d, %Y",            # January 15, 2026
    "%B %d %Y",             # January 15 2026
    "%b %d, %Y",            # Jan 15, 2026
    "%b %d %Y",             # Jan 15 2026
    "%d %B %Y",             # 15 January 2026
    "%d %b %Y",             # 15 Jan 2026
    "%d-%b-%Y",             # 15-Jan-2026
]


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Return a naive datetime, or None when the value is not a recognisable date.

    Callers reject the row/field on None; nothing here defaults to "now".
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    v = value.strip()
    if not v:
        return None

    try:
        return _to_naive_utc(datetime.fromisoformat(v.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt)
        except ValueError:
            continue
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Description → vendor name
# ─────────────────────────────────────────────────────────────────────────────

# Bank / card-network prefixes that carry no vendor signal.
_PREFIX_RE = re.compile(
    r"^(?:"
    r"(?:purchase|payment|debit|withdrawal|ach|wire|eft|pos)(?:\s+(?:purchase|payment|debit))?\s+|"
    r"recurring (?:charge|payment|pmt)\s+|"
    r"sq\s*\*\s*|"
    r"pp\s*\*\s*|"
    r"paypal\s*\*\s*"
    r")",
    re.IGNORECASE,
)

# Trailing noise, applied in order until the string stops changing.
_TRAILING = [
    re.compile(r"\s*(?:recurring|subscription|monthly|annual|payment)\b.*$", re.IGNORECASE),
    re.compile(r"\s*\d{2}/\d{2}.*$"),              # 07/15 …
    re.compile(r"\s*#\d+.*$"),                     # #12345 …
    re.compile(r"\s*\*+\d+.*$"),                   # ****1234 card suffix
    re.compile(r"\s+REF\s*#?\w+$", re.IGNORECASE), # REF 123456
    re.compile(r"\s+\d{6,}$"),                     # long digit ref
]


def _strip_trailing_noise(s: str) -> str:
    prev = None
    while prev != s:
        prev = s
        for pat in _TRAILING:
            s = pat.sub("", s)
    return s.strip()


def _capitalize_words(s: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in s.split(" "))


def clean_description(raw: str) -> str:
    """Strip prefixes, trailing refs and dates, then capitalise each word.

    "ACH DEBIT ACME HOSTING 01/15 #4411"  → "Acme Hosting"
    "PAYMENT PIXEL FORGE RECURRING"       → "Pixel Forge"
    """
    s = _PREFIX_RE.sub("", raw.strip()).strip()
    s = _strip_trailing_noise(s)
    s = re.sub(r"\s+", " ", s).strip()
    return _capitalize_words(s) if s else ""


def extract_vendor_name(description: str, explicit_vendor: Optional[str] = None) -> str:
    """Vendor display name for a transaction row.

    Explicit vendor column → known registry vendor → cleaned description →
    "Unknown Vendor".
    """
    if explicit_vendor and explicit_vendor.strip():
        return explicit_vendor.strip()

    known = detect_saas_vendor(description)
    if known:
        return known.name

    return clean_description(description) or "Unknown Vendor"
