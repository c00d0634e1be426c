"""CSV transaction import service.

Public entry points:

  parse_csv(text)                   – headers → canonical columns → ParsedTransaction list
  calculate_vendor_summaries(txs)   – per-vendor aggregates, biggest spend first
  preview_csv(content)              – headers, resolved mapping, first rows
  import_csv(db, user_id, content)  – parse + persist vendors, transactions and
                                      csv-sourced subscriptions
"""

import csv
import io
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Subscription, Transaction, Vendor
from ..schemas import (
    ColumnMapping,
    CSVParseResult,
    ImportResponse,
    ImportSummary,
    ParsedTransaction,
    TopVendor,
    VendorSummary,
)
from .normalizer import extract_vendor_name, parse_amount, parse_date, to_cents
from .renewal import detect_frequency, frequency_to_billing_cycle, get_renewal_info
from .vendor_patterns import detect_saas_vendor, is_saas_subscription, normalize_vendor_name, vendor_key

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Column resolution
# ─────────────────────────────────────────────────────────────────────────────

DATE_COLUMNS = ["date", "transaction date", "trans date", "posted date", "txn date"]
DESCRIPTION_COLUMNS = ["description", "memo", "name", "payee", "merchant", "trans description"]
AMOUNT_COLUMNS = ["amount", "debit", "withdrawal", "payment", "charge"]
VENDOR_COLUMNS = ["vendor", "payee", "merchant", "name"]
CATEGORY_COLUMNS = ["category", "type", "class"]

MAX_REPORTED_ERRORS = 10
TOP_VENDORS_IN_RESPONSE = 10


def find_column(headers: list[str], candidates: list[str]) -> Optional[str]:
    """Return the header for the first candidate that matches exactly (case-insensitive),
    else the first header containing a candidate as a substring, else None."""
    normalized = [h.strip().lower() for h in headers]

    for candidate in candidates:
        if candidate in normalized:
            return headers[normalized.index(candidate)]

    for candidate in candidates:
        for i, h in enumerate(normalized):
            if candidate in h:
                return headers[i]

    return None


def resolve_columns(headers: list[str]) -> ColumnMapping:
    return ColumnMapping(
        date=find_column(headers, DATE_COLUMNS),
        description=find_column(headers, DESCRIPTION_COLUMNS),
        amount=find_column(headers, AMOUNT_COLUMNS),
        vendor=find_column(headers, VENDOR_COLUMNS),
        category=find_column(headers, CATEGORY_COLUMNS),
    )


def _read_rows(text: str) -> tuple[list[str], list[dict[str, str]], list[str]]:
    """Split CSV text into trimmed headers, row dicts and structural errors.

    Blank lines are skipped.  Rows with the wrong field count are still
    returned (short rows padded with "") but reported.  Text the csv module
    cannot tokenize (e.g. a field over the csv field size limit) yields no
    rows and a single structural error.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    try:
        lines = [r for r in reader if any(cell.strip() for cell in r)]
    except csv.Error as exc:
        logger.info("Unreadable CSV at line %d: %s", reader.line_num, exc)
        return [], [], [f"Line {reader.line_num}: malformed CSV ({exc})"]
    if not lines:
        return [], [], []

    headers = [h.strip() for h in lines[0]]
    rows: list[dict[str, str]] = []
    errors: list[str] = []

    for i, cells in enumerate(lines[1:]):
        if len(cells) != len(headers):
            errors.append(
                f"Row {i + 2}: expected {len(headers)} fields but found {len(cells)}"
            )
        padded = cells + [""] * (len(headers) - len(cells))
        rows.append(dict(zip(headers, padded)))

    return headers, rows, errors


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────


def parse_csv(text: str) -> CSVParseResult:
    """Parse raw CSV text into normalized transactions.

    Missing date, description/vendor or amount columns abort the whole parse.
    Rows with unparseable dates are reported; rows whose amount resolves to 0
    are dropped silently.  Only the first MAX_REPORTED_ERRORS errors are kept.
    """
    headers, rows, errors = _read_rows(text)
    if not headers and errors:
        return CSVParseResult(transactions=[], errors=errors, total_rows=0, saas_count=0)
    mapping = resolve_columns(headers)

    def _abort(message: str) -> CSVParseResult:
        errors.append(message)
        logger.info("CSV parse aborted: %s (headers=%r)", message, headers)
        return CSVParseResult(
            transactions=[], errors=errors[:MAX_REPORTED_ERRORS], total_rows=len(rows), saas_count=0
        )

    if not mapping.date:
        return _abort("Could not find date column")
    if not mapping.description and not mapping.vendor:
        return _abort("Could not find description or vendor column")
    if not mapping.amount:
        return _abort("Could not find amount column")

    transactions: list[ParsedTransaction] = []

    for i, row in enumerate(rows):
        row_no = i + 2
        try:
            date_str = (row.get(mapping.date) or "").strip()
            description = (row.get(mapping.description) or "").strip() if mapping.description else ""
            explicit_vendor = (row.get(mapping.vendor) or "").strip() if mapping.vendor else None
            row_category = (row.get(mapping.category) or "").strip() if mapping.category else ""

            posted = parse_date(date_str)
            if posted is None:
                errors.append(f'Row {row_no}: Invalid date "{date_str}"')
                continue

            amount = parse_amount(row.get(mapping.amount) or "")
            if amount == 0:
                continue

            vendor_name = extract_vendor_name(description, explicit_vendor)
            known = detect_saas_vendor(description) or detect_saas_vendor(vendor_name)

            transactions.append(
                ParsedTransaction(
                    date=posted,
                    vendor_name=vendor_name,
                    normalized_vendor_name=normalize_vendor_name(vendor_name),
                    amount=amount,
                    raw_description=description,
                    is_saas=is_saas_subscription(description) or is_saas_subscription(vendor_name),
                    category=known.category if known else (row_category or None),
                )
            )
        except (ValueError, KeyError, TypeError) as exc:
            errors.append(f"Row {row_no}: {exc}")

    saas_count = sum(1 for t in transactions if t.is_saas)
    logger.info(
        "Parsed CSV: %d rows, %d transactions (%d SaaS), %d errors",
        len(rows), len(transactions), saas_count, len(errors),
    )
    return CSVParseResult(
        transactions=transactions,
        errors=errors[:MAX_REPORTED_ERRORS],
        total_rows=len(rows),
        saas_count=saas_count,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Aggregation
# ─────────────────────────────────────────────────────────────────────────────


def group_by_vendor(transactions: list[ParsedTransaction]) -> dict[str, list[ParsedTransaction]]:
    groups: dict[str, list[ParsedTransaction]] = defaultdict(list)
    for tx in transactions:
        groups[tx.normalized_vendor_name].append(tx)
    return dict(groups)


def calculate_vendor_summaries(transactions: list[ParsedTransaction]) -> list[VendorSummary]:
    """One summary per normalized vendor name, sorted by total spend descending.

    A vendor is SaaS if any of its transactions looks like SaaS; its category
    is the first non-empty category seen.
    """
    summaries: list[VendorSummary] = []

    for normalized_name, txs in group_by_vendor(transactions).items():
        dates = sorted(t.date for t in txs)
        total = sum(t.amount for t in txs)
        summaries.append(
            VendorSummary(
                vendor_name=txs[0].vendor_name,
                normalized_name=normalized_name,
                total_amount=total,
                transaction_count=len(txs),
                first_date=dates[0],
                last_date=dates[-1],
                average_amount=total / len(txs),
                is_saas=any(t.is_saas for t in txs),
                category=next((t.category for t in txs if t.category), None),
            )
        )

    summaries.sort(key=lambda s: s.total_amount, reverse=True)
    return summaries


# ─────────────────────────────────────────────────────────────────────────────
# Preview (no DB interaction)
# ─────────────────────────────────────────────────────────────────────────────


def preview_csv(content: bytes, max_rows: int = 20) -> dict:
    """Return headers, the auto-resolved column mapping and the first *max_rows* rows."""
    headers, rows, errors = _read_rows(content.decode("utf-8-sig"))
    if not headers and errors:
        raise ValueError(errors[0])
    preview = rows[:max_rows]
    return {
        "headers": headers,
        "mapping": resolve_columns(headers),
        "rows": preview,
        "total_rows_previewed": len(preview),
        "total_rows": len(rows),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────────────────────────────


def _confidence_for(count: int) -> str:
    if count >= 3:
        return "high"
    if count == 2:
        return "medium"
    return "low"


def _upsert_vendor(db: Session, summary: VendorSummary) -> tuple[Vendor, bool]:
    """Find by compact key or create.  Existing rows are updated, never replaced;
    a stored vendor_type is left alone."""
    key = vendor_key(summary.vendor_name)
    vendor = db.query(Vendor).filter(Vendor.normalized_name == key).first()
    if vendor:
        if summary.category:
            vendor.category = summary.category
        vendor.is_saas = bool(vendor.is_saas or summary.is_saas)
        return vendor, False

    vendor = Vendor(
        name=summary.vendor_name,
        normalized_name=key,
        category=summary.category,
        is_saas=summary.is_saas,
    )
    db.add(vendor)
    db.flush()
    return vendor, True


def _already_imported(db: Session, user_id: str, vendor_id: int, posted: datetime, cents: int) -> bool:
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.vendor_id == vendor_id,
            Transaction.posted_date == posted,
            Transaction.amount_cents == cents,
        )
        .first()
        is not None
    )


def _upsert_csv_subscription(
    db: Session,
    user_id: str,
    vendor: Vendor,
    txs: list[ParsedTransaction],
    now: Optional[datetime],
) -> Subscription:
    info = get_renewal_info([t.date for t in txs], now=now)
    latest = max(txs, key=lambda t: t.date)

    sub = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.vendor_id == vendor.id,
            Subscription.source == "csv",
        )
        .first()
    )
    if sub is None:
        sub = Subscription(user_id=user_id, vendor_id=vendor.id, source="csv")
        db.add(sub)

    sub.renewal_date = info.renewal_date
    sub.billing_cycle = frequency_to_billing_cycle(info.frequency)
    sub.amount_cents = to_cents(latest.amount)
    sub.confidence_score = _confidence_for(len(txs))
    sub.last_detected_at = now or datetime.now()
    return sub


def import_csv(
    db: Session,
    user_id: str,
    content: bytes,
    now: Optional[datetime] = None,
) -> ImportResponse:
    """Parse an uploaded CSV and persist its vendors, transactions and subscriptions.

    Transactions already stored for the same vendor, date and amount are
    skipped so re-uploading an overlapping export does not double-count spend.
    SaaS vendors additionally get (or refresh) a csv-sourced Subscription.
    """
    result = parse_csv(content.decode("utf-8-sig"))

    if not result.transactions:
        return ImportResponse(
            success=False,
            summary=ImportSummary(
                total_rows=result.total_rows,
                valid_transactions=0,
                saas_count=0,
                vendors_created=0,
                transactions_created=0,
                subscriptions_upserted=0,
                errors=result.errors,
            ),
            vendors=[],
        )

    summaries = calculate_vendor_summaries(result.transactions)
    groups = group_by_vendor(result.transactions)

    vendors_created = transactions_created = duplicates = subscriptions_upserted = 0

    try:
        for summary in summaries:
            vendor, created = _upsert_vendor(db, summary)
            if created:
                vendors_created += 1

            txs = groups[summary.normalized_name]
            frequency = detect_frequency([t.date for t in txs])
            # Same vendor, day and amount twice in one file are both kept;
            # only rows matching an earlier upload count as duplicates.
            batch_seen: set[tuple] = set()

            for tx in txs:
                cents = to_cents(tx.amount)
                fingerprint = (tx.date, cents)
                if (
                    fingerprint not in batch_seen
                    and not created
                    and _already_imported(db, user_id, vendor.id, tx.date, cents)
                ):
                    duplicates += 1
                    continue
                batch_seen.add(fingerprint)

                db.add(
                    Transaction(
                        user_id=user_id,
                        vendor_id=vendor.id,
                        posted_date=tx.date,
                        amount_cents=cents,
                        frequency=frequency,
                        description_raw=tx.raw_description,
                    )
                )
                transactions_created += 1

            if summary.is_saas:
                _upsert_csv_subscription(db, user_id, vendor, txs, now)
                subscriptions_upserted += 1

        db.commit()
    except Exception:
        db.rollback()
        raise

    if duplicates:
        logger.info("Skipped %d transactions already imported for user %s", duplicates, user_id)

    return ImportResponse(
        success=True,
        summary=ImportSummary(
            total_rows=result.total_rows,
            valid_transactions=len(result.transactions),
            saas_count=result.saas_count,
            vendors_created=vendors_created,
            transactions_created=transactions_created,
            subscriptions_upserted=subscriptions_upserted,
            duplicates_skipped=duplicates,
            errors=result.errors,
        ),
        vendors=[
            TopVendor(
                name=s.vendor_name,
                total_spend=round(s.total_amount, 2),
                transaction_count=s.transaction_count,
                is_saas=s.is_saas,
                category=s.category,
            )
            for s in summaries[:TOP_VENDORS_IN_RESPONSE]
        ],
    )
