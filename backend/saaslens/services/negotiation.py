"""
Negotiation email drafting.

The LLM writes the email from a strategy prompt; when the provider is
unavailable a fixed template per strategy is returned instead, so a draft
is always produced for negotiable vendors.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from ..models import Subscription
from ..schemas import NegotiationContext, NegotiationDraftResponse
from . import llm_service
from .intelligence import monthly_amount
from .normalizer import from_cents
from .retry import ProviderError
from .vendor_classifier import FIXED_PLAN, classify_vendor

logger = logging.getLogger(__name__)

Complete = Callable[[str], str]

STRATEGY_NAMES = {
    "seat_reduction": "Seat Reduction",
    "tier_downgrade": "Tier Downgrade",
    "annual_prepay": "Annual Prepay Discount",
}

STRATEGY_DESCRIPTIONS = {
    "seat_reduction": "Request fewer licenses based on actual utilization",
    "tier_downgrade": "Explore lower-cost tier options that match your needs",
    "annual_prepay": "Offer annual payment upfront in exchange for a discount",
}


# ─────────────────────────────────────────────────────────────────────────────
# Prompts
# ─────────────────────────────────────────────────────────────────────────────

_PROMPT_HEADER = (
    "You are a professional procurement specialist helping a finance team reduce SaaS costs.\n\n"
)

_PROMPT_FOOTER = """
Generate a subject line and email body. Format as:
SUBJECT: [subject line]
BODY:
[email body]"""

_COMMON_RULES = """\
- Do NOT make any legal commitments or promises
- Keep the email concise (under 200 words)
- Do not include placeholders; use reasonable assumptions
"""

PROMPT_TEMPLATES = {
    "seat_reduction": """\
Draft a polite, professional email to {vendor} requesting a seat reduction.

Context:
- Current spend: {spend}/month
- Estimated seats: {seats}
- Company: {company}
- Renewal date: {renewal}

Requirements:
- Be professional and collaborative in tone
- Reference that a utilization review shows underutilization
- Request a seat reduction to match actual usage
- Ask about options for reducing the license count
""",
    "tier_downgrade": """\
Draft a polite, professional email to {vendor} requesting a tier downgrade evaluation.

Context:
- Current spend: {spend}/month
- Current tier: {tier}
- Company: {company}
- Renewal date: {renewal}

Requirements:
- Be professional and collaborative in tone
- Reference that feature utilization review suggests current tier may be more than needed
- Ask about options for a more cost-effective tier
- Request a meeting to discuss options
""",
    "annual_prepay": """\
Draft a polite, professional email to {vendor} offering annual prepayment in exchange for a discount.

Context:
- Current spend: {spend}/month
- Company: {company}
- Renewal date: {renewal}

Requirements:
- Be professional and collaborative in tone
- Mention that budget availability allows for upfront annual payment
- Request their best discount for annual commitment
- Ask about multi-year discount options as well
""",
}


def build_prompt(strategy: str, context: NegotiationContext) -> str:
    if strategy not in PROMPT_TEMPLATES:
        raise ValueError(f"Unknown negotiation strategy {strategy!r}")
    body = PROMPT_TEMPLATES[strategy].format(
        vendor=context.vendor_name,
        spend=f"${context.monthly_spend:.2f}",
        seats=context.estimated_seats or "10-15",
        tier=context.current_tier or "Professional/Business",
        company=context.company_name or "our company",
        renewal=context.renewal_date.strftime("%B %d, %Y") if context.renewal_date else "upcoming",
    )
    return _PROMPT_HEADER + body + _COMMON_RULES + _PROMPT_FOOTER


_SUBJECT_RE = re.compile(r"SUBJECT:\s*(.+?)(?:\n|BODY:)", re.IGNORECASE)
_BODY_RE = re.compile(r"BODY:\s*([\s\S]+)$", re.IGNORECASE)


def parse_email_response(response: str, now: Optional[datetime] = None) -> tuple[str, str]:
    """Split 'SUBJECT: ... BODY: ...' output; the raw text becomes the body if unlabelled."""
    subject_match = _SUBJECT_RE.search(response)
    body_match = _BODY_RE.search(response)
    year = (now or datetime.now()).year
    subject = subject_match.group(1).strip() if subject_match else ""
    body = body_match.group(1).strip() if body_match else ""
    return (
        subject or f"Regarding our {year} subscription renewal",
        body or response.strip(),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Fallback templates
# ─────────────────────────────────────────────────────────────────────────────

_FALLBACK_SUBJECTS = {
    "seat_reduction": "License Review Request - {vendor}",
    "tier_downgrade": "Subscription Tier Review - {vendor}",
    "annual_prepay": "Annual Prepayment Inquiry - {vendor}",
}

_FALLBACK_BODIES = {
    "seat_reduction": """\
Dear {vendor} Team,

I hope this email finds you well. As we approach our upcoming renewal, we've been reviewing our software utilization and would like to discuss our current license count.

Our internal review suggests we may have more seats than our current active usage requires. We'd appreciate the opportunity to discuss options for right-sizing our subscription to better match our actual needs.

Could we schedule a brief call to review our options? We value our partnership with {vendor} and want to ensure we're on the right plan for our organization.

Thank you for your time.

Best regards""",
    "tier_downgrade": """\
Dear {vendor} Team,

I hope this email finds you well. As we approach our renewal period, we've been evaluating our feature usage and would like to explore our subscription options.

After reviewing our team's usage patterns, we're interested in understanding whether a different tier might better align with our current needs while still meeting our requirements.

Would it be possible to schedule a call to discuss the available options? We'd like to understand the differences and find the best fit for our organization.

Thank you for your assistance.

Best regards""",
    "annual_prepay": """\
Dear {vendor} Team,

I hope this email finds you well. As we plan our budget for the upcoming year, we're exploring opportunities to optimize our software spend.

We're interested in discussing annual prepayment options for our {vendor} subscription. If we commit to an annual payment upfront, would there be any discount available?

Additionally, we'd be interested in hearing about any multi-year commitment options that might offer additional savings.

Please let us know your availability for a brief call to discuss these options.

Best regards""",
}


def fallback_email(strategy: str, context: NegotiationContext) -> NegotiationDraftResponse:
    return NegotiationDraftResponse(
        subject=_FALLBACK_SUBJECTS[strategy].format(vendor=context.vendor_name),
        body=_FALLBACK_BODIES[strategy].format(vendor=context.vendor_name),
        strategy=strategy,
        generated_by="template",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Entry points
# ─────────────────────────────────────────────────────────────────────────────


def draft_negotiation_email(
    context: NegotiationContext,
    strategy: str,
    complete: Optional[Complete] = None,
) -> NegotiationDraftResponse:
    prompt = build_prompt(strategy, context)
    complete = complete or llm_service.complete

    try:
        response = complete(prompt)
    except (ProviderError, httpx.HTTPError) as exc:
        logger.warning("Negotiation draft for %s fell back to template: %s", context.vendor_name, exc)
        return fallback_email(strategy, context)

    subject, body = parse_email_response(response)
    return NegotiationDraftResponse(subject=subject, body=body, strategy=strategy, generated_by="llm")


def context_for_subscription(
    db: Session,
    sub: Subscription,
    company_name: Optional[str] = None,
) -> NegotiationContext:
    """Negotiation context from a stored subscription; fixed-plan vendors are refused."""
    vendor = sub.vendor
    if classify_vendor(db, vendor.name, vendor.category) == FIXED_PLAN:
        raise ValueError(f"{vendor.name} has fixed pricing; there is nothing to negotiate")

    amount = from_cents(sub.amount_cents)
    return NegotiationContext(
        vendor_name=vendor.name,
        monthly_spend=monthly_amount(amount, sub.billing_cycle) or 0.0,
        billing_cycle=sub.billing_cycle,
        estimated_seats=sub.seats,
        current_tier=sub.plan,
        renewal_date=sub.renewal_date,
        company_name=company_name,
    )
