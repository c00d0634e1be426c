"""Subscription and vendor queries/updates behind the management routes."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ..models import Subscription, Transaction, Vendor
from ..schemas import (
    ManualSubscriptionCreate,
    RenewalEstimateResponse,
    SubscriptionSchema,
    SubscriptionUpdate,
)
from .normalizer import from_cents, to_cents
from .renewal import URGENT_WINDOW_DAYS, days_until, get_renewal_info, get_urgency_label
from .vendor_patterns import category_for_name, detect_saas_vendor, vendor_key

logger = logging.getLogger(__name__)

SUBSCRIPTION_FILTERS = ("all", "renewing", "active", "cancelled")


def to_schema(sub: Subscription, now: Optional[datetime] = None) -> SubscriptionSchema:
    remaining = days_until(sub.renewal_date, now) if sub.renewal_date else None
    return SubscriptionSchema(
        id=sub.id,
        vendor_id=sub.vendor_id,
        vendor_name=sub.vendor.name,
        source=sub.source,
        renewal_date=sub.renewal_date,
        billing_cycle=sub.billing_cycle,
        amount=from_cents(sub.amount_cents),
        currency=sub.currency,
        plan=sub.plan,
        seats=sub.seats,
        confidence_score=sub.confidence_score,
        status=sub.status,
        last_detected_at=sub.last_detected_at,
        days_until_renewal=remaining,
        urgency=get_urgency_label(remaining) if remaining is not None else None,
    )


def list_subscriptions(
    db: Session,
    user_id: str,
    filter: str = "all",
    source: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[SubscriptionSchema]:
    """Subscriptions for a user, soonest renewal first (undated last).

    filter: all | renewing (active, renews within 30 days) | active | cancelled
    """
    if filter not in SUBSCRIPTION_FILTERS:
        raise ValueError(f"filter must be one of {', '.join(SUBSCRIPTION_FILTERS)}")
    now = now or datetime.now()

    q = (
        db.query(Subscription)
        .options(joinedload(Subscription.vendor))
        .filter(Subscription.user_id == user_id)
    )
    if source:
        q = q.filter(Subscription.source == source)
    if filter == "renewing":
        q = q.filter(
            Subscription.status == "active",
            Subscription.renewal_date >= now,
            Subscription.renewal_date <= now + timedelta(days=URGENT_WINDOW_DAYS),
        )
    elif filter in ("active", "cancelled"):
        q = q.filter(Subscription.status == filter)

    subs = q.all()
    subs.sort(key=lambda s: (s.renewal_date is None, s.renewal_date or now, s.id))
    return [to_schema(s, now) for s in subs]


def get_subscription(db: Session, user_id: str, subscription_id: int) -> Subscription:
    sub = (
        db.query(Subscription)
        .options(joinedload(Subscription.vendor))
        .filter(Subscription.id == subscription_id, Subscription.user_id == user_id)
        .first()
    )
    if sub is None:
        raise LookupError(f"Subscription {subscription_id} not found")
    return sub


def update_subscription(
    db: Session,
    user_id: str,
    subscription_id: int,
    body: SubscriptionUpdate,
) -> Subscription:
    sub = get_subscription(db, user_id, subscription_id)
    changes = body.model_dump(exclude_unset=True)
    if "amount" in changes:
        amount = changes.pop("amount")
        changes["amount_cents"] = to_cents(amount) if amount is not None else None
    # same null-signal rule as the extraction pipeline
    if all(changes.get(f, getattr(sub, f)) is None for f in ("amount_cents", "renewal_date", "plan")):
        raise ValueError("A subscription needs at least one of amount, renewal_date or plan")
    for field, value in changes.items():
        setattr(sub, field, value)
    db.commit()
    db.refresh(sub)
    logger.info("Updated subscription %s: %s", sub.id, ", ".join(sorted(body.model_fields_set)))
    return sub


def create_manual_subscription(
    db: Session,
    user_id: str,
    body: ManualSubscriptionCreate,
    now: Optional[datetime] = None,
) -> Subscription:
    """Add or replace the user's manual entry for a vendor, creating the vendor if needed."""
    name = body.vendor_name.strip()
    known = detect_saas_vendor(name)
    key = vendor_key(known.name if known else name)

    vendor = db.query(Vendor).filter(Vendor.normalized_name == key).first()
    if vendor is None:
        vendor = Vendor(
            name=known.name if known else name,
            normalized_name=key,
            category=known.category if known else category_for_name(name),
            is_saas=True,
        )
        db.add(vendor)
        db.flush()

    sub = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.vendor_id == vendor.id,
            Subscription.source == "manual",
        )
        .first()
    )
    if sub is None:
        sub = Subscription(user_id=user_id, vendor_id=vendor.id, source="manual")
        db.add(sub)

    sub.amount_cents = to_cents(body.amount) if body.amount is not None else None
    sub.currency = body.currency
    sub.billing_cycle = body.billing_cycle
    sub.renewal_date = body.renewal_date
    sub.plan = body.plan
    sub.seats = body.seats
    sub.notes = body.notes
    sub.confidence_score = "high"
    sub.last_detected_at = now or datetime.now()
    db.commit()
    db.refresh(sub)
    return sub


# ─────────────────────────────────────────────────────────────────────────────
# Vendors
# ─────────────────────────────────────────────────────────────────────────────


def list_vendors(db: Session, saas_only: bool = False) -> list[Vendor]:
    q = db.query(Vendor)
    if saas_only:
        q = q.filter(Vendor.is_saas.is_(True))
    return q.order_by(Vendor.name).all()


def vendor_renewal_info(
    db: Session,
    user_id: str,
    vendor_id: int,
    now: Optional[datetime] = None,
) -> RenewalEstimateResponse:
    """Renewal projection from the user's stored transactions for one vendor.

    Raises LookupError for an unknown vendor and NoTransactionsError when the
    user has no charges for it.
    """
    if db.query(Vendor.id).filter(Vendor.id == vendor_id).first() is None:
        raise LookupError(f"Vendor {vendor_id} not found")

    dates = [
        row.posted_date
        for row in db.query(Transaction.posted_date).filter(
            Transaction.user_id == user_id,
            Transaction.vendor_id == vendor_id,
        )
    ]
    info = get_renewal_info(dates, now=now)
    return RenewalEstimateResponse(**info.model_dump(), urgency=get_urgency_label(info.days_until_renewal))
