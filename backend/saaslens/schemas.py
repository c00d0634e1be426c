import re
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

BillingCycle = Literal["monthly", "quarterly", "yearly"]
Confidence = Literal["low", "medium", "high"]
Source = Literal["gmail", "csv", "manual"]
VendorType = Literal["FIXED_PLAN", "NEGOTIABLE"]


# ─────────────────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    version: str


# ─────────────────────────────────────────────────────────────────────────────
# Renewal estimation
# ─────────────────────────────────────────────────────────────────────────────


class RenewalInfo(BaseModel):
    frequency: Literal["monthly", "quarterly", "annual", "one-time"]
    renewal_date: datetime
    days_until_renewal: int
    is_urgent: bool


class UrgencyLabel(BaseModel):
    label: str
    color: Literal["red", "orange", "yellow", "green", "gray"]


class RenewalEstimateRequest(BaseModel):
    dates: list[datetime] = Field(min_length=1)
    frequency: Optional[Literal["monthly", "quarterly", "annual", "one-time"]] = None


class RenewalEstimateResponse(RenewalInfo):
    urgency: UrgencyLabel


# ─────────────────────────────────────────────────────────────────────────────
# CSV normalizer
# ─────────────────────────────────────────────────────────────────────────────


class ParsedTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: datetime
    vendor_name: str
    normalized_vendor_name: str
    amount: float = Field(ge=0)
    raw_description: str
    is_saas: bool
    category: Optional[str] = None


class VendorSummary(BaseModel):
    vendor_name: str
    normalized_name: str
    total_amount: float
    transaction_count: int
    first_date: datetime
    last_date: datetime
    average_amount: float
    is_saas: bool
    category: Optional[str] = None


class CSVParseResult(BaseModel):
    transactions: list[ParsedTransaction]
    errors: list[str]
    total_rows: int
    saas_count: int


class ColumnMapping(BaseModel):
    date: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None


class PreviewResponse(BaseModel):
    filename: str
    headers: list[str]
    mapping: ColumnMapping
    rows: list[dict[str, str]]
    total_rows_previewed: int
    total_rows: int


class TopVendor(BaseModel):
    name: str
    total_spend: float
    transaction_count: int
    is_saas: bool
    category: Optional[str] = None


class ImportSummary(BaseModel):
    total_rows: int
    valid_transactions: int
    saas_count: int
    vendors_created: int
    transactions_created: int
    subscriptions_upserted: int
    duplicates_skipped: int = 0
    errors: list[str]


class ImportResponse(BaseModel):
    success: bool
    summary: ImportSummary
    vendors: list[TopVendor]


# ─────────────────────────────────────────────────────────────────────────────
# Email extraction
# ─────────────────────────────────────────────────────────────────────────────

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_CYCLE_ALIASES = {
    "monthly": "monthly",
    "month": "monthly",
    "yearly": "yearly",
    "annual": "yearly",
    "annually": "yearly",
    "year": "yearly",
    "quarterly": "quarterly",
    "quarter": "quarterly",
}


class ExtractedSubscription(BaseModel):
    """Structured fields found in one email.

    None always means "not stated in the text"; validators drop values that
    do not have the expected shape instead of guessing a replacement.
    """

    vendor_name: Optional[str] = None
    vendor_domain: Optional[str] = None
    plan: Optional[str] = None
    seats: Optional[int] = None
    billing_cycle: Optional[BillingCycle] = None
    renewal_date: Optional[str] = None        # YYYY-MM-DD
    amount: Optional[float] = None
    currency: Optional[str] = None
    confidence: Confidence = "low"

    @field_validator("vendor_name", "vendor_domain", "plan", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        s = str(v).strip()
        if not s or s.lower() in {"null", "none", "n/a", "unknown"}:
            return None
        return s

    @field_validator("seats", mode="before")
    @classmethod
    def _coerce_seats(cls, v: Any) -> Optional[int]:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return int(v) if v > 0 else None
        m = re.search(r"\d+", str(v))
        return int(m.group()) if m and int(m.group()) > 0 else None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v: Any) -> Optional[float]:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return float(v) if v > 0 else None
        cleaned = re.sub(r"[^\d.]", "", str(v))
        try:
            amount = float(cleaned)
        except ValueError:
            return None
        return amount if amount > 0 else None

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def _coerce_cycle(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return _CYCLE_ALIASES.get(str(v).strip().lower())

    @field_validator("renewal_date", mode="before")
    @classmethod
    def _coerce_renewal_date(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, (date, datetime)):
            return v.strftime("%Y-%m-%d")
        s = str(v).strip()
        if not _ISO_DATE_RE.match(s):
            return None
        try:
            date.fromisoformat(s)
        except ValueError:
            return None
        return s

    @field_validator("currency", mode="before")
    @classmethod
    def _coerce_currency(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip().upper()
        return s if re.fullmatch(r"[A-Z]{3}", s) else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> str:
        s = str(v or "").strip().lower()
        return s if s in {"low", "medium", "high"} else "low"

    def has_signal(self) -> bool:
        """At least one of amount, renewal date or plan was found."""
        return self.amount is not None or self.renewal_date is not None or self.plan is not None


class InboundMessage(BaseModel):
    """One message from the inbound mail source, already decoded to text."""

    id: str
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    sender: Optional[str] = None
    date: Optional[datetime] = None
    snippet: Optional[str] = None
    body: Optional[str] = None
    has_attachment: bool = False


class ScanRequest(BaseModel):
    messages: list[InboundMessage]
    max_results: Optional[int] = Field(default=None, gt=0, le=50)


class ScanResult(BaseModel):
    success: bool = True
    messages_scanned: int = 0
    new_messages: int = 0
    subscriptions_created: int = 0
    vendors_created: int = 0
    skipped_count: int = 0
    errored_count: int = 0
    message: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Vendors & subscriptions
# ─────────────────────────────────────────────────────────────────────────────


class VendorSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    normalized_name: str
    domain: Optional[str] = None
    category: Optional[str] = None
    vendor_type: Optional[str] = None
    is_saas: bool
    created_at: datetime


class VendorClassificationUpdate(BaseModel):
    vendor_type: VendorType


class VendorClassificationResponse(BaseModel):
    vendor_id: int
    vendor_type: VendorType
    stored: bool


class SubscriptionSchema(BaseModel):
    id: int
    vendor_id: int
    vendor_name: str
    source: str
    renewal_date: Optional[datetime] = None
    billing_cycle: Optional[str] = None
    amount: Optional[float] = None
    currency: str
    plan: Optional[str] = None
    seats: Optional[int] = None
    confidence_score: str
    status: str
    last_detected_at: Optional[datetime] = None
    days_until_renewal: Optional[int] = None
    urgency: Optional[UrgencyLabel] = None


class SubscriptionUpdate(BaseModel):
    renewal_date: Optional[datetime] = None
    billing_cycle: Optional[BillingCycle] = None
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    plan: Optional[str] = Field(default=None, max_length=100)
    seats: Optional[int] = Field(default=None, gt=0)
    status: Optional[Literal["active", "cancelled", "pending"]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_fields(self) -> "SubscriptionUpdate":
        for field in ("status", "currency"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        if self.currency:
            self.currency = self.currency.upper()
        return self


# ─────────────────────────────────────────────────────────────────────────────
# Negotiation
# ─────────────────────────────────────────────────────────────────────────────

NegotiationStrategy = Literal["seat_reduction", "tier_downgrade", "annual_prepay"]
NegotiationStatus = Literal["draft", "approved", "sent", "closed"]


class NegotiationContext(BaseModel):
    vendor_name: str
    monthly_spend: float
    billing_cycle: Optional[str] = None
    estimated_seats: Optional[int] = None
    current_tier: Optional[str] = None
    renewal_date: Optional[datetime] = None
    company_name: Optional[str] = None


class NegotiationDraftRequest(BaseModel):
    subscription_id: int
    strategy: NegotiationStrategy
    company_name: Optional[str] = None


class NegotiationDraftResponse(BaseModel):
    subject: str
    body: str
    strategy: NegotiationStrategy
    generated_by: Literal["llm", "template"]
    id: Optional[int] = None
    status: Optional[NegotiationStatus] = None


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not _EMAIL_RE.match(v):
        raise ValueError("Valid recipient email required")
    return v


class NegotiationUpdate(BaseModel):
    """Edits to a stored draft; saving them marks the negotiation approved."""

    subject: Optional[str] = Field(default=None, min_length=1, max_length=300)
    body: Optional[str] = Field(default=None, min_length=1)
    recipient_email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("recipient_email")
    @classmethod
    def _valid_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class NegotiationSend(BaseModel):
    recipient_email: str = Field(max_length=255)
    approved: bool = False
    estimated_savings: Optional[float] = Field(default=None, ge=0)

    @field_validator("recipient_email")
    @classmethod
    def _valid_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class SavingCreate(BaseModel):
    estimated_amount: float = Field(ge=0)
    confirmed_amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class SavingUpdate(BaseModel):
    confirmed_amount: float = Field(ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class SavingSchema(BaseModel):
    id: int
    negotiation_id: int
    estimated_amount: float
    confirmed_amount: Optional[float] = None
    notes: Optional[str] = None


class NegotiationSchema(BaseModel):
    id: int
    vendor_id: int
    vendor_name: str
    subscription_id: Optional[int] = None
    strategy: NegotiationStrategy
    strategy_name: str
    subject: str
    body: str
    generated_by: Literal["llm", "template"]
    status: NegotiationStatus
    recipient_email: Optional[str] = None
    renewal_date: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    estimated_savings: float = 0.0
    confirmed_savings: float = 0.0
    savings: list[SavingSchema] = []


# ─────────────────────────────────────────────────────────────────────────────
# Intelligence
# ─────────────────────────────────────────────────────────────────────────────


class Alternative(BaseModel):
    name: str
    website: str
    price_range: str
    category: str
    strengths: list[str]
    best_for: str
    why_better: str


class ValueSummary(BaseModel):
    summary: str
    assumptions: list[str]


class IntelligenceReport(BaseModel):
    subscription_id: int
    vendor_name: str
    vendor_type: VendorType
    monthly_amount: Optional[float] = None
    per_seat_monthly_cost: Optional[float] = None
    value: ValueSummary
    alternatives: list[Alternative]


class ManualSubscriptionCreate(BaseModel):
    vendor_name: str = Field(min_length=1, max_length=200)
    amount: Optional[float] = Field(default=None, gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    billing_cycle: Optional[BillingCycle] = None
    renewal_date: Optional[datetime] = None
    plan: Optional[str] = Field(default=None, max_length=100)
    seats: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _needs_signal(self) -> "ManualSubscriptionCreate":
        if self.amount is None and self.renewal_date is None and self.plan is None:
            raise ValueError("At least one of amount, renewal_date or plan is required")
        self.currency = self.currency.upper()
        return self


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard
# ─────────────────────────────────────────────────────────────────────────────


class UpcomingRenewal(BaseModel):
    subscription_id: int
    vendor_name: str
    renewal_date: datetime
    days_until_renewal: int
    amount: Optional[float] = None
    urgency: UrgencyLabel


class DashboardResponse(BaseModel):
    total_vendors: int
    saas_vendors: int
    subscriptions_by_source: dict[str, int]
    active_subscriptions: int
    upcoming_renewals: list[UpcomingRenewal]
    total_tracked_spend: float
    monthly_subscription_spend: float
    emails_scanned: int
    subscription_emails: int
    negotiations_by_status: dict[str, int] = {}
    estimated_savings: float = 0.0
    confirmed_savings: float = 0.0
