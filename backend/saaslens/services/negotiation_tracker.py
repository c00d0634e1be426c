"""
Stored negotiations and the savings they produce.

A negotiation moves draft -> approved -> sent -> closed. Drafts and approved
emails can still be edited; once sent the text is frozen. Confirming a
saving greater than zero closes the negotiation. Delivery of the email itself
happens outside this service, which only records that it went out.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models import Negotiation, Saving, Subscription
from ..schemas import (
    NegotiationDraftResponse,
    NegotiationSchema,
    NegotiationSend,
    NegotiationUpdate,
    SavingCreate,
    SavingSchema,
    SavingUpdate,
)
from .negotiation import STRATEGY_NAMES
from .normalizer import from_cents, to_cents

logger = logging.getLogger(__name__)

STATUSES = ("draft", "approved", "sent", "closed")
EDITABLE = ("draft", "approved")


class InvalidTransitionError(ValueError):
    """The negotiation's status does not allow the requested change."""


# ─────────────────────────────────────────────────────────────────────────────
# Serialisation
# ─────────────────────────────────────────────────────────────────────────────


def saving_to_schema(saving: Saving) -> SavingSchema:
    return SavingSchema(
        id=saving.id,
        negotiation_id=saving.negotiation_id,
        estimated_amount=from_cents(saving.estimated_amount_cents) or 0.0,
        confirmed_amount=from_cents(saving.confirmed_amount_cents),
        notes=saving.notes,
    )


def to_schema(neg: Negotiation) -> NegotiationSchema:
    return NegotiationSchema(
        id=neg.id,
        vendor_id=neg.vendor_id,
        vendor_name=neg.vendor.name,
        subscription_id=neg.subscription_id,
        strategy=neg.strategy,
        strategy_name=STRATEGY_NAMES.get(neg.strategy, neg.strategy),
        subject=neg.subject,
        body=neg.body,
        generated_by=neg.generated_by,
        status=neg.status,
        recipient_email=neg.recipient_email,
        renewal_date=neg.renewal_date,
        sent_at=neg.sent_at,
        created_at=neg.created_at,
        estimated_savings=from_cents(sum(s.estimated_amount_cents or 0 for s in neg.savings)),
        confirmed_savings=from_cents(sum(s.confirmed_amount_cents or 0 for s in neg.savings)),
        savings=[saving_to_schema(s) for s in neg.savings],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


def save_draft(
    db: Session,
    user_id: str,
    sub: Subscription,
    draft: NegotiationDraftResponse,
) -> Negotiation:
    neg = Negotiation(
        user_id=user_id,
        vendor_id=sub.vendor_id,
        subscription_id=sub.id,
        strategy=draft.strategy,
        subject=draft.subject,
        body=draft.body,
        generated_by=draft.generated_by,
        renewal_date=sub.renewal_date,
        status="draft",
    )
    db.add(neg)
    db.commit()
    db.refresh(neg)
    logger.info("Stored %s draft %s for vendor %s", draft.strategy, neg.id, sub.vendor_id)
    return neg


def list_negotiations(db: Session, user_id: str, status: Optional[str] = None) -> list[Negotiation]:
    """Newest first; ``status`` narrows to one lifecycle stage."""
    q = (
        db.query(Negotiation)
        .options(joinedload(Negotiation.vendor), joinedload(Negotiation.savings))
        .filter(Negotiation.user_id == user_id)
    )
    if status:
        if status not in STATUSES:
            raise ValueError(f"status must be one of {', '.join(STATUSES)}")
        q = q.filter(Negotiation.status == status)
    return q.order_by(Negotiation.created_at.desc(), Negotiation.id.desc()).all()


def get_negotiation(db: Session, user_id: str, negotiation_id: int) -> Negotiation:
    neg = (
        db.query(Negotiation)
        .filter(Negotiation.id == negotiation_id, Negotiation.user_id == user_id)
        .first()
    )
    if neg is None:
        raise LookupError(f"Negotiation {negotiation_id} not found")
    return neg


def update_draft(db: Session, user_id: str, negotiation_id: int, body: NegotiationUpdate) -> Negotiation:
    """Apply edits and mark the email approved. Sent or closed ones are frozen."""
    neg = get_negotiation(db, user_id, negotiation_id)
    if neg.status not in EDITABLE:
        raise InvalidTransitionError(f"Cannot edit a {neg.status} negotiation")

    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(neg, field, value)
    neg.status = "approved"
    db.commit()
    db.refresh(neg)
    logger.info("Negotiation %s approved", neg.id)
    return neg


def mark_sent(
    db: Session,
    user_id: str,
    negotiation_id: int,
    body: NegotiationSend,
    now: Optional[datetime] = None,
) -> Negotiation:
    """Record delivery. Requires explicit approval in the request."""
    if not body.approved:
        raise ValueError("Approval required before sending. Set approved to true to confirm.")
    neg = get_negotiation(db, user_id, negotiation_id)
    if neg.status not in EDITABLE:
        raise InvalidTransitionError(f"Negotiation {neg.id} is already {neg.status}")

    neg.status = "sent"
    neg.sent_at = now or datetime.now()
    neg.recipient_email = body.recipient_email
    if body.estimated_savings:
        neg.savings.append(Saving(estimated_amount_cents=to_cents(body.estimated_savings)))
    db.commit()
    db.refresh(neg)
    logger.info("Negotiation %s sent to %s", neg.id, neg.recipient_email)
    return neg


def _close_if_confirmed(neg: Negotiation, confirmed_cents: Optional[int]) -> None:
    if confirmed_cents and neg.status != "closed":
        neg.status = "closed"
        logger.info("Negotiation %s closed with confirmed savings", neg.id)


def record_saving(db: Session, user_id: str, negotiation_id: int, body: SavingCreate) -> Saving:
    """Attach a savings estimate (and optionally a confirmed amount) to a sent negotiation."""
    neg = get_negotiation(db, user_id, negotiation_id)
    if neg.status in EDITABLE:
        raise InvalidTransitionError("Savings can only be recorded once the negotiation is sent")

    saving = Saving(
        estimated_amount_cents=to_cents(body.estimated_amount),
        confirmed_amount_cents=to_cents(body.confirmed_amount) if body.confirmed_amount is not None else None,
        notes=body.notes,
    )
    neg.savings.append(saving)
    _close_if_confirmed(neg, saving.confirmed_amount_cents)
    db.commit()
    db.refresh(saving)
    return saving


def confirm_saving(db: Session, user_id: str, saving_id: int, body: SavingUpdate) -> Saving:
    saving = (
        db.query(Saving)
        .join(Negotiation, Saving.negotiation_id == Negotiation.id)
        .filter(Saving.id == saving_id, Negotiation.user_id == user_id)
        .first()
    )
    if saving is None:
        raise LookupError(f"Saving {saving_id} not found")

    saving.confirmed_amount_cents = to_cents(body.confirmed_amount)
    if "notes" in body.model_fields_set:
        saving.notes = body.notes
    _close_if_confirmed(saving.negotiation, saving.confirmed_amount_cents)
    db.commit()
    db.refresh(saving)
    logger.info("Saving %s confirmed at %s", saving.id, body.confirmed_amount)
    return saving


# ─────────────────────────────────────────────────────────────────────────────
# Totals
# ─────────────────────────────────────────────────────────────────────────────


def negotiation_totals(db: Session, user_id: str) -> tuple[dict[str, int], float, float]:
    """(counts by status, estimated savings, confirmed savings) for the dashboard."""
    by_status = {s: 0 for s in STATUSES}
    for status, count in (
        db.query(Negotiation.status, func.count(Negotiation.id))
        .filter(Negotiation.user_id == user_id)
        .group_by(Negotiation.status)
    ):
        by_status[status] = count

    estimated, confirmed = (
        db.query(
            func.coalesce(func.sum(Saving.estimated_amount_cents), 0),
            func.coalesce(func.sum(Saving.confirmed_amount_cents), 0),
        )
        .join(Negotiation, Saving.negotiation_id == Negotiation.id)
        .filter(Negotiation.user_id == user_id)
        .one()
    )
    return by_status, round(estimated / 100, 2), round(confirmed / 100, 2)
