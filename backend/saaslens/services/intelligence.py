"""
Spend intelligence for a single subscription: normalized monthly cost,
per-seat cost, a short value summary and curated alternatives.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Subscription
from ..schemas import Alternative, IntelligenceReport, ValueSummary
from .normalizer import from_cents
from .vendor_classifier import classify_vendor

logger = logging.getLogger(__name__)

_CYCLE_MONTHS = {"monthly": 1, "quarterly": 3, "yearly": 12}

_COST_EFFECTIVE_BELOW = 50
_MODERATE_BELOW = 200
MAX_ALTERNATIVES = 3


def monthly_amount(amount: Optional[float], billing_cycle: Optional[str]) -> Optional[float]:
    """Amount per month; an unknown cycle is taken as monthly."""
    if amount is None:
        return None
    return amount / _CYCLE_MONTHS.get(billing_cycle or "monthly", 1)


def per_seat_monthly_cost(
    amount: Optional[float],
    seats: Optional[int],
    billing_cycle: Optional[str],
) -> Optional[float]:
    if amount is None or not seats or seats <= 0:
        return None
    return monthly_amount(amount, billing_cycle) / seats


def generate_value_summary(
    vendor_name: str,
    plan: Optional[str],
    amount: Optional[float],
    seats: Optional[int],
    billing_cycle: Optional[str],
    category: Optional[str] = None,
) -> ValueSummary:
    assumptions: list[str] = []
    summary = ""

    if amount and plan:
        monthly = monthly_amount(amount, billing_cycle)
        if monthly < _COST_EFFECTIVE_BELOW:
            summary = f"{vendor_name} {plan} is a cost-effective choice at ${monthly:.0f}/month."
            assumptions.append("Low cost relative to typical SaaS pricing")
        elif monthly < _MODERATE_BELOW:
            summary = f"{vendor_name} {plan} is moderately priced at ${monthly:.0f}/month."
            assumptions.append("Mid-range pricing for category")
        else:
            summary = f"{vendor_name} {plan} is a premium investment at ${monthly:.0f}/month."
            assumptions.append("Higher-end pricing suggests enterprise features")

        per_seat = per_seat_monthly_cost(amount, seats, billing_cycle)
        if per_seat is not None:
            summary += f" Per-seat cost: ${per_seat:.2f}/seat/month."
            assumptions.append(f"Based on {seats} seats")
    elif vendor_name:
        summary = f"{vendor_name} subscription detected. Additional details needed for full assessment."
        assumptions.append("Limited data available for analysis")

    if category:
        assumptions.append(f"Category: {category}")
    return ValueSummary(summary=summary, assumptions=assumptions)


# ─────────────────────────────────────────────────────────────────────────────
# Alternatives
# ─────────────────────────────────────────────────────────────────────────────


def _alt(name, website, price_range, category, strengths, best_for, why_better) -> Alternative:
    return Alternative(
        name=name,
        website=website,
        price_range=price_range,
        category=category,
        strengths=strengths,
        best_for=best_for,
        why_better=why_better,
    )


ALTERNATIVES: dict[str, list[Alternative]] = {
    "Communication": [
        _alt("Microsoft Teams", "https://teams.microsoft.com", "$4-12.50/user/month", "Communication",
             ["Office 365 integration", "Video conferencing", "Enterprise security"],
             "Organizations using Microsoft ecosystem",
             "Bundled with Microsoft 365, potentially reducing total cost"),
        _alt("Discord", "https://discord.com", "Free-$9.99/month", "Communication",
             ["Free tier", "Great audio quality", "Community features"],
             "Small teams and developer communities",
             "Generous free tier with excellent voice chat"),
        _alt("Slack", "https://slack.com", "$7.25-15/user/month", "Communication",
             ["Rich integrations", "Threaded conversations", "Workflows"],
             "Teams needing extensive app integrations",
             "Industry-leading integration ecosystem"),
    ],
    "Productivity": [
        _alt("Notion", "https://notion.so", "Free-$15/user/month", "Productivity",
             ["All-in-one workspace", "Databases", "Wiki"],
             "Teams wanting docs + projects in one place",
             "Consolidates multiple tools into one"),
        _alt("Obsidian", "https://obsidian.md", "Free-$8/user/month", "Productivity",
             ["Local-first", "Markdown", "Extensible"],
             "Privacy-conscious knowledge workers",
             "No vendor lock-in, own your data"),
        _alt("Coda", "https://coda.io", "Free-$10/user/month", "Productivity",
             ["Doc + spreadsheet hybrid", "Automations"],
             "Teams needing dynamic documents",
             "More powerful automation than traditional docs"),
    ],
    "Project Management": [
        _alt("Linear", "https://linear.app", "Free-$8/user/month", "Project Management",
             ["Fast UI", "Developer-focused", "Keyboard shortcuts"],
             "Engineering teams",
             "Purpose-built for software development workflows"),
        _alt("Asana", "https://asana.com", "Free-$24.99/user/month", "Project Management",
             ["Flexible workflows", "Timeline view", "Goals"],
             "Cross-functional teams",
             "Better for non-engineering project management"),
        _alt("ClickUp", "https://clickup.com", "Free-$12/user/month", "Project Management",
             ["All-in-one", "Customizable", "Time tracking"],
             "Teams wanting maximum features",
             "More features at lower price point"),
    ],
    "Design": [
        _alt("Figma", "https://figma.com", "Free-$15/editor/month", "Design",
             ["Real-time collaboration", "Web-based", "Prototyping"],
             "Collaborative design teams",
             "Industry standard for UI/UX design collaboration"),
        _alt("Penpot", "https://penpot.app", "Free (open source)", "Design",
             ["Free", "Self-hosted option", "Open source"],
             "Budget-conscious or privacy-focused teams",
             "Zero cost with no vendor lock-in"),
    ],
}


def generate_alternatives(vendor_name: str, category: Optional[str]) -> list[Alternative]:
    """Up to three curated alternatives in the same category, never the vendor itself."""
    candidates = ALTERNATIVES.get(category or "")
    if not candidates:
        candidates = [
            _alt("Research needed", "", "Varies", category or "Uncategorized",
                 ["Specific research recommended"],
                 "Your specific use case",
                 "Direct comparison needed based on your requirements"),
        ]
    current = vendor_name.lower()
    return [a for a in candidates if current not in a.name.lower()][:MAX_ALTERNATIVES]


def analyze_subscription(db: Session, sub: Subscription) -> IntelligenceReport:
    vendor = sub.vendor
    vendor_type = classify_vendor(db, vendor.name, vendor.category)
    if vendor.vendor_type != vendor_type:
        vendor.vendor_type = vendor_type
        db.commit()
        logger.info("Vendor %s (%s) classified as %s", vendor.id, vendor.name, vendor_type)
    amount = from_cents(sub.amount_cents)
    per_seat = per_seat_monthly_cost(amount, sub.seats, sub.billing_cycle)
    report = IntelligenceReport(
        subscription_id=sub.id,
        vendor_name=vendor.name,
        vendor_type=vendor_type,
        monthly_amount=round(monthly_amount(amount, sub.billing_cycle), 2) if amount is not None else None,
        per_seat_monthly_cost=round(per_seat, 2) if per_seat is not None else None,
        value=generate_value_summary(vendor.name, sub.plan, amount, sub.seats, sub.billing_cycle, vendor.category),
        alternatives=generate_alternatives(vendor.name, vendor.category),
    )
    logger.debug("Intelligence for subscription %s: %s", sub.id, report.vendor_type)
    return report
