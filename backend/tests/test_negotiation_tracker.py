from datetime import datetime

import pytest
from pydantic import ValidationError

from saaslens.models import Negotiation, Subscription, Vendor
from saaslens.schemas import (
    NegotiationDraftResponse,
    NegotiationSend,
    NegotiationUpdate,
    SavingCreate,
    SavingUpdate,
)
from saaslens.services.negotiation_tracker import (
    InvalidTransitionError,
    confirm_saving,
    get_negotiation,
    list_negotiations,
    mark_sent,
    negotiation_totals,
    record_saving,
    save_draft,
    to_schema,
    update_draft,
)

USER = "user-1"
SENT_AT = datetime(2024, 5, 1, 9, 30)


def _subscription(db, user_id=USER):
    vendor = Vendor(name="Datadog", normalized_name="datadog", category="Developer Tools")
    db.add(vendor)
    db.flush()
    sub = Subscription(
        user_id=user_id, vendor_id=vendor.id, source="manual", amount_cents=120000,
        billing_cycle="yearly", renewal_date=datetime(2024, 6, 1),
    )
    db.add(sub)
    db.commit()
    return sub


def _draft(db, strategy="seat_reduction"):
    sub = _subscription(db)
    result = NegotiationDraftResponse(
        subject="Seat review", body="Hello team", strategy=strategy, generated_by="template",
    )
    return save_draft(db, USER, sub, result)


def _send(db, neg, estimated=None):
    body = NegotiationSend(recipient_email="sales@datadog.com", approved=True, estimated_savings=estimated)
    return mark_sent(db, USER, neg.id, body, now=SENT_AT)


class TestSaveDraft:
    def test_stored_as_draft(self, db):
        neg = _draft(db)
        assert neg.id is not None
        assert neg.status == "draft"
        assert neg.renewal_date == datetime(2024, 6, 1)
        schema = to_schema(neg)
        assert schema.vendor_name == "Datadog"
        assert schema.strategy_name == "Seat Reduction"
        assert schema.estimated_savings == 0.0

    def test_other_user_cannot_see_it(self, db):
        neg = _draft(db)
        with pytest.raises(LookupError):
            get_negotiation(db, "someone-else", neg.id)


class TestUpdateDraft:
    def test_edit_approves(self, db):
        neg = _draft(db)
        neg = update_draft(db, USER, neg.id, NegotiationUpdate(subject="Seat review, take two"))
        assert neg.status == "approved"
        assert neg.subject == "Seat review, take two"
        assert neg.body == "Hello team"

    def test_null_field_keeps_text(self, db):
        neg = _draft(db)
        neg = update_draft(db, USER, neg.id, NegotiationUpdate(body=None))
        assert neg.body == "Hello team"

    def test_sent_negotiation_is_frozen(self, db):
        neg = _send(db, _draft(db))
        with pytest.raises(InvalidTransitionError):
            update_draft(db, USER, neg.id, NegotiationUpdate(body="changed"))
        db.refresh(neg)
        assert neg.body == "Hello team"

    def test_invalid_email_rejected(self):
        with pytest.raises(ValidationError):
            NegotiationUpdate(recipient_email="not-an-address")


class TestMarkSent:
    def test_requires_approval_flag(self, db):
        neg = _draft(db)
        body = NegotiationSend(recipient_email="sales@datadog.com")
        with pytest.raises(ValueError, match="Approval required"):
            mark_sent(db, USER, neg.id, body)
        db.refresh(neg)
        assert neg.status == "draft"

    def test_records_delivery(self, db):
        neg = _send(db, _draft(db))
        assert neg.status == "sent"
        assert neg.sent_at == SENT_AT
        assert neg.recipient_email == "sales@datadog.com"
        assert neg.savings == []

    def test_estimate_creates_saving(self, db):
        neg = _send(db, _draft(db), estimated=250.0)
        assert [s.estimated_amount_cents for s in neg.savings] == [25000]
        assert to_schema(neg).estimated_savings == 250.0

    def test_cannot_send_twice(self, db):
        neg = _send(db, _draft(db))
        with pytest.raises(InvalidTransitionError):
            _send(db, neg)


class TestSavings:
    def test_only_after_sending(self, db):
        neg = _draft(db)
        with pytest.raises(InvalidTransitionError):
            record_saving(db, USER, neg.id, SavingCreate(estimated_amount=100))

    def test_estimate_keeps_negotiation_open(self, db):
        neg = _send(db, _draft(db))
        saving = record_saving(db, USER, neg.id, SavingCreate(estimated_amount=100))
        assert saving.confirmed_amount_cents is None
        db.refresh(neg)
        assert neg.status == "sent"

    def test_confirming_closes(self, db):
        neg = _send(db, _draft(db), estimated=300.0)
        saving_id = neg.savings[0].id
        saving = confirm_saving(db, USER, saving_id, SavingUpdate(confirmed_amount=275.5, notes="Signed"))
        assert saving.confirmed_amount_cents == 27550
        assert saving.notes == "Signed"
        db.refresh(neg)
        assert neg.status == "closed"

    def test_zero_confirmation_leaves_status(self, db):
        neg = _send(db, _draft(db), estimated=300.0)
        confirm_saving(db, USER, neg.savings[0].id, SavingUpdate(confirmed_amount=0))
        db.refresh(neg)
        assert neg.status == "sent"

    def test_confirm_created_with_amount_closes(self, db):
        neg = _send(db, _draft(db))
        record_saving(db, USER, neg.id, SavingCreate(estimated_amount=100, confirmed_amount=80))
        db.refresh(neg)
        assert neg.status == "closed"

    def test_other_users_saving_is_missing(self, db):
        neg = _send(db, _draft(db), estimated=300.0)
        with pytest.raises(LookupError):
            confirm_saving(db, "someone-else", neg.savings[0].id, SavingUpdate(confirmed_amount=1))


class TestListAndTotals:
    def test_status_filter(self, db):
        first = _draft(db)
        sub = db.query(Subscription).one()
        second = save_draft(db, USER, sub, NegotiationDraftResponse(
            subject="Prepay", body="Hi", strategy="annual_prepay", generated_by="llm",
        ))
        _send(db, first)

        assert [n.id for n in list_negotiations(db, USER, "draft")] == [second.id]
        assert [n.id for n in list_negotiations(db, USER, "sent")] == [first.id]
        assert {n.id for n in list_negotiations(db, USER)} == {first.id, second.id}

    def test_unknown_status(self, db):
        with pytest.raises(ValueError):
            list_negotiations(db, USER, "pending")

    def test_totals(self, db):
        neg = _send(db, _draft(db), estimated=300.0)
        confirm_saving(db, USER, neg.savings[0].id, SavingUpdate(confirmed_amount=120))
        by_status, estimated, confirmed = negotiation_totals(db, USER)
        assert by_status == {"draft": 0, "approved": 0, "sent": 0, "closed": 1}
        assert (estimated, confirmed) == (300.0, 120.0)

    def test_totals_empty(self, db):
        by_status, estimated, confirmed = negotiation_totals(db, USER)
        assert sum(by_status.values()) == 0
        assert (estimated, confirmed) == (0.0, 0.0)
        assert db.query(Negotiation).count() == 0
