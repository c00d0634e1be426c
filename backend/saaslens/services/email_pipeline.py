"""
Two-stage inbox pipeline.

Per message:
  already stored          → skip (idempotent; gmail_id is UNIQUE)
  stage 1 keyword check   → not a subscription email: store, stop
  stage 2 extraction      → provider extractor, regex fallback on failure
  vendor resolution       → extracted name / known domain / subject / domain label
  vendor upsert           → by compact name, then by non-generic domain
  signal check            → no amount, renewal date or plan: no subscription
  subscription upsert     → keyed (user, vendor, 'gmail'), non-null fields only

Each message commits on its own so one bad message never rolls back the
rest of the batch.
"""

import logging
from datetime import datetime
from typing import Iterable, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config
from ..models import GmailMessage, Subscription, Vendor
from ..schemas import ExtractedSubscription, InboundMessage, ScanResult
from .message_parser import sender_domain
from .normalizer import parse_date, to_cents
from .subscription_extraction import (
    Extractor,
    ResolvedVendor,
    extract_subscription_from_email,
    resolve_vendor_name,
)
from .vendor_patterns import get_vendor_category, is_generic_email_domain, vendor_key

logger = logging.getLogger(__name__)

SUBSCRIPTION_KEYWORDS = [
    "renewal",
    "auto-renew",
    "auto renew",
    "subscription",
    "invoice",
    "payment",
    "billing",
    "upcoming charge",
    "annual renewal",
    "monthly renewal",
    "your plan",
    "payment due",
    "receipt",
    "charge",
]


class MessageOutcome(NamedTuple):
    status: str                      # skipped | stored | processed
    vendor_created: bool = False
    subscription_upserted: bool = False


# ─────────────────────────────────────────────────────────────────────────────
# Stage 1
# ─────────────────────────────────────────────────────────────────────────────


def classify_message(
    subject: Optional[str],
    snippet: Optional[str],
    body: Optional[str],
) -> tuple[bool, list[str]]:
    """Keyword check over subject, snippet and body. Returns (is_subscription, matched)."""
    text = " ".join(p for p in (subject, snippet, body) if p).lower()
    matched = [kw for kw in SUBSCRIPTION_KEYWORDS if kw in text]
    return bool(matched), matched


# ─────────────────────────────────────────────────────────────────────────────
# Upserts
# ─────────────────────────────────────────────────────────────────────────────


def _find_or_create_vendor(
    db: Session,
    resolved: ResolvedVendor,
    extracted: ExtractedSubscription,
    domain: Optional[str],
) -> tuple[Vendor, bool]:
    key = vendor_key(resolved.name)
    generic = is_generic_email_domain(domain)

    vendor = db.query(Vendor).filter(Vendor.normalized_name == key).first()
    if vendor is None and domain and not generic:
        vendor = db.query(Vendor).filter(Vendor.domain == domain).first()

    if vendor is not None:
        vendor.is_saas = True
        if not vendor.domain and domain and not generic:
            vendor.domain = domain
        return vendor, False

    if extracted.vendor_domain:
        vendor_domain = extracted.vendor_domain.lower()
    elif generic or not domain:
        vendor_domain = f"{key}.com"
    else:
        vendor_domain = domain

    vendor = Vendor(
        name=resolved.name,
        normalized_name=key,
        domain=vendor_domain,
        category=resolved.category or get_vendor_category(domain) or "Uncategorized",
        is_saas=True,
    )
    db.add(vendor)
    db.flush()
    logger.info("Created vendor %s (%s)", vendor.name, vendor.domain)
    return vendor, True


def upsert_gmail_subscription(
    db: Session,
    user_id: str,
    vendor: Vendor,
    extracted: ExtractedSubscription,
    gmail_message_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """Create or update the (user, vendor, 'gmail') subscription.

    Only fields the email actually stated overwrite stored values.
    """
    sub = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.vendor_id == vendor.id,
            Subscription.source == "gmail",
        )
        .first()
    )
    if sub is None:
        sub = Subscription(user_id=user_id, vendor_id=vendor.id, source="gmail")
        db.add(sub)

    if extracted.renewal_date is not None:
        sub.renewal_date = parse_date(extracted.renewal_date)
    if extracted.billing_cycle is not None:
        sub.billing_cycle = extracted.billing_cycle
    if extracted.amount is not None:
        sub.amount_cents = to_cents(extracted.amount)
    if extracted.plan is not None:
        sub.plan = extracted.plan
    if extracted.seats is not None:
        sub.seats = extracted.seats
    sub.currency = extracted.currency or sub.currency or "USD"
    sub.confidence_score = extracted.confidence
    sub.gmail_message_id = gmail_message_id
    sub.last_detected_at = now or datetime.now()
    return sub


# ─────────────────────────────────────────────────────────────────────────────
# Per-message state machine
# ─────────────────────────────────────────────────────────────────────────────


def _already_stored(db: Session, gmail_id: str) -> bool:
    return db.query(GmailMessage.id).filter(GmailMessage.gmail_id == gmail_id).first() is not None


def process_message(
    db: Session,
    user_id: str,
    message: InboundMessage,
    extract: Optional[Extractor] = None,
    now: Optional[datetime] = None,
) -> MessageOutcome:
    """Run one message through both stages and commit the result."""
    if _already_stored(db, message.id):
        logger.info("Message %s already processed, skipping", message.id)
        return MessageOutcome("skipped")

    domain = sender_domain(message.sender)
    is_subscription, matched = classify_message(message.subject, message.snippet, message.body)

    row = GmailMessage(
        user_id=user_id,
        gmail_id=message.id,
        thread_id=message.thread_id,
        subject=message.subject,
        sender=message.sender,
        sender_domain=domain,
        snippet=message.snippet,
        body=message.body,
        date=message.date,
        has_attachment=message.has_attachment,
        is_subscription=is_subscription,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        # Another scan stored it between our check and insert.
        db.rollback()
        logger.info("Message %s stored concurrently, skipping", message.id)
        return MessageOutcome("skipped")

    logger.info(
        "Message %s stage 1: %s%s",
        message.id,
        "subscription" if is_subscription else "not subscription",
        f" ({', '.join(matched)})" if matched else "",
    )
    if not is_subscription or not domain:
        db.commit()
        return MessageOutcome("stored")

    extracted = extract_subscription_from_email(
        message.subject or "",
        message.body or message.snippet or "",
        message.sender or "",
        extract,
    )
    row.is_processed = True

    if extracted is None:
        logger.info("Message %s: no subscription details found", message.id)
        db.commit()
        return MessageOutcome("processed")

    resolved = resolve_vendor_name(extracted.vendor_name, domain, message.subject)
    vendor, vendor_created = _find_or_create_vendor(db, resolved, extracted, domain)
    logger.info("Message %s: vendor resolved to %s", message.id, vendor.name)

    if not extracted.has_signal():
        logger.info(
            "Message %s: no amount, renewal date or plan for %s; subscription skipped",
            message.id, vendor.name,
        )
        db.commit()
        return MessageOutcome("processed", vendor_created=vendor_created)

    upsert_gmail_subscription(db, user_id, vendor, extracted, message.id, now)
    db.commit()
    logger.info("Message %s: subscription upserted for %s", message.id, vendor.name)
    return MessageOutcome("processed", vendor_created=vendor_created, subscription_upserted=True)


# ─────────────────────────────────────────────────────────────────────────────
# Batch
# ─────────────────────────────────────────────────────────────────────────────


def scan_limit(max_results: Optional[int] = None) -> int:
    requested = max_results or config.GMAIL_SCAN_MAX_RESULTS
    return max(1, min(requested, config.GMAIL_SCAN_HARD_MAX))


def _summary_message(scanned: int, new: int, subs: int, vendors: int) -> str:
    if new == 0:
        return f"Checked {scanned} emails, no new messages to process"
    msg = f"Processed {new} new emails, created {subs} subscriptions"
    if vendors:
        msg += f" and {vendors} new vendors"
    return msg


def scan_messages(
    db: Session,
    user_id: str,
    messages: Iterable[InboundMessage],
    extract: Optional[Extractor] = None,
    max_results: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ScanResult:
    """Process the first ``max_results`` messages; per-message failures are counted, not raised."""
    batch = list(messages)[: scan_limit(max_results)]
    result = ScanResult(messages_scanned=len(batch))

    for message in batch:
        try:
            outcome = process_message(db, user_id, message, extract, now)
        except Exception:
            db.rollback()
            logger.exception("Failed to process message %s", message.id)
            result.errored_count += 1
            continue

        if outcome.status == "skipped":
            result.skipped_count += 1
            continue
        result.new_messages += 1
        if outcome.vendor_created:
            result.vendors_created += 1
        if outcome.subscription_upserted:
            result.subscriptions_created += 1

    result.message = _summary_message(
        result.messages_scanned, result.new_messages,
        result.subscriptions_created, result.vendors_created,
    )
    logger.info("Scan for user %s: %s", user_id, result.message)
    return result
