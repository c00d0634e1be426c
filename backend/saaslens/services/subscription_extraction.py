"""
Stage-2 subscription extraction from a single email.

An extractor is any callable ``(subject, body, sender) -> ExtractedSubscription | None``
that raises on failure.  The LLM-backed one lives in llm_service.make_extractor();
when it fails, the deterministic regex extractor below takes over.

Neither path may invent values: a field that is not written in the email
stays None.
"""

import json
import logging
import re
from typing import Callable, NamedTuple, Optional

import httpx
from pydantic import ValidationError

from ..schemas import ExtractedSubscription
from .normalizer import parse_amount, parse_date
from .retry import ProviderError
from .vendor_patterns import (
    category_for_name,
    detect_saas_vendor,
    is_generic_email_domain,
    lookup_domain,
)

logger = logging.getLogger(__name__)

Extractor = Callable[[str, str, str], Optional[ExtractedSubscription]]

MAX_BODY_CHARS = 8000


class ExtractionParseError(ValueError):
    """Provider output was not JSON of the ExtractedSubscription shape."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM prompt & response parsing
# ─────────────────────────────────────────────────────────────────────────────

EXTRACTION_PROMPT = """\
You extract SaaS subscription details from a billing or renewal email.

Rules:
- Only use information written in the email. Never guess or infer.
- Any field not explicitly stated must be null.
- renewal_date must be YYYY-MM-DD.
- billing_cycle is one of "monthly", "quarterly", "yearly", or null.
- amount is a number without currency symbols; currency is a 3-letter code.
- confidence is "high" when amount, renewal date and plan are all stated,
  "medium" when two of them are, otherwise "low".
- If the email is not about a paid subscription, respond with null.

Respond with JSON only, no prose, in exactly this shape:
{{"vendor_name": string|null, "vendor_domain": string|null, "plan": string|null,
  "seats": integer|null, "billing_cycle": string|null, "renewal_date": string|null,
  "amount": number|null, "currency": string|null, "confidence": "low"|"medium"|"high"}}

From: {sender}
Subject: {subject}

{body}
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_prompt(subject: str, body: str, sender: str) -> str:
    return EXTRACTION_PROMPT.format(
        sender=sender or "",
        subject=subject or "",
        body=(body or "")[:MAX_BODY_CHARS],
    )


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_extraction_response(text: str) -> Optional[ExtractedSubscription]:
    """Turn raw provider text into an ExtractedSubscription.

    A literal ``null`` means "no subscription in this email" and returns None.
    Anything that is not a JSON object raises ExtractionParseError.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        raise ExtractionParseError("Empty extraction response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"Extraction response is not JSON: {exc}") from exc
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ExtractionParseError(f"Expected a JSON object, got {type(data).__name__}")
    try:
        return ExtractedSubscription.model_validate(data)
    except ValidationError as exc:
        raise ExtractionParseError(str(exc)) from exc


# ─────────────────────────────────────────────────────────────────────────────
# Regex fallback
# ─────────────────────────────────────────────────────────────────────────────
# Each field has an ordered list of patterns; the first one that yields a
# usable value wins.

_VENDOR_SUBJECT_RE = re.compile(r"^(\w+)\s+(?:Billing|Subscription|Plan|Renewal)", re.IGNORECASE)

_PLAN_PATTERNS = [
    re.compile(r"Plan[:\s]+([A-Za-z0-9]+(?:\s+[A-Za-z0-9]+)?)\s+Seats", re.IGNORECASE),
    re.compile(r"Plan[:\s]+([A-Za-z0-9 ]+?)\s+Billing", re.IGNORECASE),
    re.compile(r"your\s+([A-Za-z0-9 ]+?)\s+(?:subscription|plan)\b", re.IGNORECASE),
]

_SEATS_RE = re.compile(r"Seats[:\s]+(\d+)", re.IGNORECASE)

# Priority order: an email that says "annual" anywhere is a yearly contract
# even if it also quotes a per-month price.
_CYCLE_TOKENS = [
    ("yearly", re.compile(r"yearly|annual|per year|/year|/yr\b", re.IGNORECASE)),
    ("monthly", re.compile(r"monthly|per month|/month|/mo\b", re.IGNORECASE)),
    ("quarterly", re.compile(r"quarterly|per quarter|/quarter", re.IGNORECASE)),
]

_DATE_VALUE = r"([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4}|\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})"
_MONTHS = (
    r"(?:January|February|March|April|May|June|July|August|"
    r"September|October|November|December)"
)
_DATE_PATTERNS = [
    re.compile(r"Renewal\s+date[:\s]+" + _DATE_VALUE, re.IGNORECASE),
    re.compile(r"renew(?:s|ing|al)?\s+(?:on\s+)?" + _DATE_VALUE, re.IGNORECASE),
    re.compile(r"date[:\s]+" + _DATE_VALUE, re.IGNORECASE),
    re.compile(r"(" + _MONTHS + r"\s+\d{1,2},?\s+\d{4})", re.IGNORECASE),
]

_AMOUNT_PATTERNS = [
    re.compile(r"Amount[:\s]+[$€£₹]?\s*([\d,]+(?:\.\d+)?)\s*(USD|EUR|GBP|INR)?", re.IGNORECASE),
    re.compile(r"\$\s*([\d,]+(?:\.\d+)?)\s*(USD)?", re.IGNORECASE),
    re.compile(r"([\d,]+(?:\.\d+)?)\s*(USD|EUR|GBP|INR)\b", re.IGNORECASE),
]


def _first_group(patterns: list[re.Pattern], text: str) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(1).strip()
    return None


def _find_plan(text: str) -> Optional[str]:
    plan = _first_group(_PLAN_PATTERNS, text)
    return plan or None


def _find_seats(text: str) -> Optional[int]:
    m = _SEATS_RE.search(text)
    return int(m.group(1)) if m else None


def _find_billing_cycle(text: str) -> Optional[str]:
    for cycle, pattern in _CYCLE_TOKENS:
        if pattern.search(text):
            return cycle
    return None


def _find_renewal_date(text: str) -> Optional[str]:
    for pattern in _DATE_PATTERNS:
        for m in pattern.finditer(text):
            parsed = parse_date(m.group(1).replace(".", ""))
            if parsed is not None:
                return parsed.strftime("%Y-%m-%d")
    return None


def _find_amount(text: str) -> tuple[Optional[float], Optional[str]]:
    for pattern in _AMOUNT_PATTERNS:
        for m in pattern.finditer(text):
            amount = parse_amount(m.group(1))
            if amount > 0:
                currency = (m.group(2) or "USD").upper()
                return amount, currency
    return None, None


def extract_with_regex(subject: str, body: str) -> Optional[ExtractedSubscription]:
    """Deterministic fallback extractor.

    Returns None when no field at all is found, never an empty record.
    """
    subject = subject or ""
    text = body or ""

    vendor_match = _VENDOR_SUBJECT_RE.search(subject)
    vendor_name = vendor_match.group(1) if vendor_match else None
    combined = f"{subject}\n{text}"
    plan = _find_plan(text)
    seats = _find_seats(combined)
    cycle = _find_billing_cycle(combined)
    renewal_date = _find_renewal_date(combined)
    amount, currency = _find_amount(combined)

    if not any(v is not None for v in (vendor_name, plan, seats, cycle, renewal_date, amount)):
        return None

    return ExtractedSubscription(
        vendor_name=vendor_name,
        plan=plan,
        seats=seats,
        billing_cycle=cycle,
        renewal_date=renewal_date,
        amount=amount,
        currency=currency,
        confidence="medium" if (amount is not None and renewal_date is not None) else "low",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Stage-2 entry point
# ─────────────────────────────────────────────────────────────────────────────

_RECOVERABLE = (ProviderError, ExtractionParseError, httpx.HTTPError)


def extract_subscription_from_email(
    subject: str,
    body: str,
    sender: str,
    extract: Optional[Extractor] = None,
) -> Optional[ExtractedSubscription]:
    """Run the provider extractor, falling back to regexes when it fails.

    A provider answer of "no subscription" (None) is accepted as is; only a
    failure triggers the fallback.
    """
    if extract is not None:
        try:
            result = extract(subject, body, sender)
            logger.info("Extraction via provider: %s", "found" if result else "nothing")
            return result
        except _RECOVERABLE as exc:
            logger.warning("Provider extraction failed (%s); falling back to regex", exc)

    result = extract_with_regex(subject, body)
    logger.info("Extraction via regex: %s", "found" if result else "nothing")
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Vendor resolution
# ─────────────────────────────────────────────────────────────────────────────


class VendorClues(NamedTuple):
    extracted_name: Optional[str]
    sender_domain: Optional[str]
    subject: str


class ResolvedVendor(NamedTuple):
    name: str
    category: Optional[str]


def _from_extracted_name(clues: VendorClues) -> Optional[ResolvedVendor]:
    # The known tables only contribute a category here; the name is kept.
    name = (clues.extracted_name or "").strip()
    if not name:
        return None
    known = detect_saas_vendor(name)
    category = known.category if known else category_for_name(name)
    return ResolvedVendor(name, category)


def _from_known_domain(clues: VendorClues) -> Optional[ResolvedVendor]:
    known = lookup_domain(clues.sender_domain)
    return ResolvedVendor(*known) if known else None


def _from_subject_pattern(clues: VendorClues) -> Optional[ResolvedVendor]:
    known = detect_saas_vendor(clues.subject)
    return ResolvedVendor(known.name, known.category) if known else None


def _from_domain_label(clues: VendorClues) -> Optional[ResolvedVendor]:
    domain = clues.sender_domain
    if not domain or is_generic_email_domain(domain):
        return None
    labels = [p for p in domain.lower().split(".") if p]
    if not labels:
        return None
    # billing.acme.com → acme
    label = labels[-2] if len(labels) >= 2 else labels[0]
    return ResolvedVendor(label.capitalize(), None)


VENDOR_STRATEGIES: list[Callable[[VendorClues], Optional[ResolvedVendor]]] = [
    _from_extracted_name,
    _from_known_domain,
    _from_subject_pattern,
    _from_domain_label,
]

UNKNOWN_VENDOR = ResolvedVendor("Unknown", None)


def resolve_vendor_name(
    extracted_name: Optional[str],
    sender_domain: Optional[str],
    subject: Optional[str],
) -> ResolvedVendor:
    """Canonical vendor for an email, first strategy with an answer wins."""
    clues = VendorClues(extracted_name, sender_domain, subject or "")
    for strategy in VENDOR_STRATEGIES:
        resolved = strategy(clues)
        if resolved is not None:
            return resolved
    return UNKNOWN_VENDOR
