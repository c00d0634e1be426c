from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    normalized_name = Column(String(200), nullable=False, unique=True, index=True)
    domain = Column(String(255), nullable=True, index=True)
    category = Column(String(100), nullable=True)
    vendor_type = Column(String(20), nullable=True)   # FIXED_PLAN | NEGOTIABLE | None
    is_saas = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    subscriptions = relationship("Subscription", back_populates="vendor", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="vendor", cascade="all, delete-orphan")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "vendor_id", "source", name="uq_subscription_user_vendor_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    source = Column(String(20), nullable=False)            # gmail | csv | manual
    renewal_date = Column(DateTime, nullable=True)
    billing_cycle = Column(String(20), nullable=True)      # monthly | quarterly | yearly
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    plan = Column(String(100), nullable=True)
    seats = Column(Integer, nullable=True)
    confidence_score = Column(String(10), nullable=False, default="low")  # low | medium | high
    status = Column(String(20), nullable=False, default="active")         # active | cancelled | pending
    gmail_message_id = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    last_detected_at = Column(DateTime, default=_utcnow)
    created_at = Column(DateTime, default=_utcnow)

    vendor = relationship("Vendor", back_populates="subscriptions")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    posted_date = Column(DateTime, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    frequency = Column(String(20), nullable=True)     # monthly | quarterly | annual | one-time
    description_raw = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_utcnow)

    vendor = relationship("Vendor", back_populates="transactions")


class GmailMessage(Base):
    __tablename__ = "gmail_messages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    gmail_id = Column(String(100), nullable=False, unique=True, index=True)
    thread_id = Column(String(100), nullable=True)
    subject = Column(Text, nullable=True)
    sender = Column(String(255), nullable=True)
    sender_domain = Column(String(255), nullable=True)
    snippet = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    date = Column(DateTime, nullable=True)
    has_attachment = Column(Boolean, nullable=False, default=False)
    is_subscription = Column(Boolean, nullable=False, default=False)
    is_processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow)


class Negotiation(Base):
    __tablename__ = "negotiations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)
    strategy = Column(String(30), nullable=False)
    subject = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    generated_by = Column(String(10), nullable=False, default="template")   # llm | template
    status = Column(String(20), nullable=False, default="draft")            # draft | approved | sent | closed
    recipient_email = Column(String(255), nullable=True)
    renewal_date = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    vendor = relationship("Vendor")
    savings = relationship("Saving", back_populates="negotiation", cascade="all, delete-orphan")


class Saving(Base):
    __tablename__ = "savings"

    id = Column(Integer, primary_key=True, index=True)
    negotiation_id = Column(Integer, ForeignKey("negotiations.id"), nullable=False, index=True)
    estimated_amount_cents = Column(Integer, nullable=False, default=0)
    confirmed_amount_cents = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    negotiation = relationship("Negotiation", back_populates="savings")
