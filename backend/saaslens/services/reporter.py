"""Reporting service: per-user dashboard totals, upcoming renewals and negotiation outcomes."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models import GmailMessage, Subscription, Transaction, Vendor
from ..schemas import DashboardResponse, UpcomingRenewal
from .intelligence import monthly_amount
from .negotiation_tracker import negotiation_totals
from .normalizer import from_cents
from .renewal import URGENT_WINDOW_DAYS, days_until, get_urgency_label


def _cents_to_dollars(cents: Optional[int]) -> float:
    return round((cents or 0) / 100, 2)


def _user_vendor_ids(db: Session, user_id: str) -> set[int]:
    """Vendors the user has either a subscription or a transaction for."""
    subs = db.query(Subscription.vendor_id).filter(Subscription.user_id == user_id)
    txs = db.query(Transaction.vendor_id).filter(Transaction.user_id == user_id).distinct()
    return {row.vendor_id for row in subs} | {row.vendor_id for row in txs}


def get_upcoming_renewals(
    db: Session,
    user_id: str,
    within_days: int = URGENT_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> list[UpcomingRenewal]:
    now = now or datetime.now()
    subs = (
        db.query(Subscription)
        .options(joinedload(Subscription.vendor))
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            Subscription.renewal_date >= now,
            Subscription.renewal_date <= now + timedelta(days=within_days),
        )
        .order_by(Subscription.renewal_date)
        .all()
    )
    renewals = []
    for s in subs:
        remaining = days_until(s.renewal_date, now)
        renewals.append(
            UpcomingRenewal(
                subscription_id=s.id,
                vendor_name=s.vendor.name,
                renewal_date=s.renewal_date,
                days_until_renewal=remaining,
                amount=from_cents(s.amount_cents),
                urgency=get_urgency_label(remaining),
            )
        )
    return renewals


def get_dashboard(db: Session, user_id: str, now: Optional[datetime] = None) -> DashboardResponse:
    now = now or datetime.now()

    vendor_ids = _user_vendor_ids(db, user_id)
    vendors_q = db.query(Vendor).filter(Vendor.id.in_(list(vendor_ids)))
    total_vendors = vendors_q.count()
    saas_vendors = vendors_q.filter(Vendor.is_saas.is_(True)).count()

    by_source = {"gmail": 0, "csv": 0, "manual": 0}
    for source, count in (
        db.query(Subscription.source, func.count(Subscription.id))
        .filter(Subscription.user_id == user_id)
        .group_by(Subscription.source)
    ):
        by_source[source] = count

    active = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == "active")
        .all()
    )
    monthly_total = sum(
        monthly_amount(from_cents(s.amount_cents), s.billing_cycle)
        for s in active
        if s.amount_cents is not None
    )

    total_spend_cents = (
        db.query(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .filter(Transaction.user_id == user_id)
        .scalar()
    )

    emails_scanned = db.query(func.count(GmailMessage.id)).filter(GmailMessage.user_id == user_id).scalar()
    subscription_emails = (
        db.query(func.count(GmailMessage.id))
        .filter(GmailMessage.user_id == user_id, GmailMessage.is_subscription.is_(True))
        .scalar()
    )

    negotiations_by_status, estimated_savings, confirmed_savings = negotiation_totals(db, user_id)

    return DashboardResponse(
        total_vendors=total_vendors,
        saas_vendors=saas_vendors,
        subscriptions_by_source=by_source,
        active_subscriptions=len(active),
        upcoming_renewals=get_upcoming_renewals(db, user_id, now=now),
        total_tracked_spend=_cents_to_dollars(total_spend_cents),
        monthly_subscription_spend=round(monthly_total, 2),
        emails_scanned=emails_scanned or 0,
        subscription_emails=subscription_emails or 0,
        negotiations_by_status=negotiations_by_status,
        estimated_savings=estimated_savings,
        confirmed_savings=confirmed_savings,
    )
