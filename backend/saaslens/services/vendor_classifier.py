"""
FIXED_PLAN vs NEGOTIABLE vendor classification.

Priority: stored vendor_type → fixed-plan brand list → negotiable brand list →
category keywords → NEGOTIABLE.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Vendor
from .vendor_patterns import vendor_key

logger = logging.getLogger(__name__)

FIXED_PLAN = "FIXED_PLAN"
NEGOTIABLE = "NEGOTIABLE"

# Consumer subscriptions with published, non-negotiable pricing.
FIXED_PLAN_VENDORS = [
    "spotify",
    "netflix",
    "disney+",
    "hulu",
    "amazon prime",
    "apple music",
    "youtube premium",
    "hbo max",
    "paramount+",
]

NEGOTIABLE_VENDORS = [
    "salesforce", "hubspot", "marketo", "pardot",
    "workday", "servicenow",
    "snowflake", "databricks",
    "okta", "auth0", "onelogin",
    "datadog", "splunk", "new relic", "dynatrace",
    "aws", "azure", "gcp",
    "sap", "oracle", "ibm",
    "zendesk", "intercom", "freshdesk",
    "atlassian", "jira", "confluence",
    "slack", "teams",
    "docusign", "adobe", "autodesk",
]

NEGOTIABLE_CATEGORY_KEYWORDS = [
    "enterprise", "crm", "erp", "security", "infrastructure",
    "analytics", "data", "hr", "finance", "devops", "cloud",
]


def _stored_type(db: Session, name: str) -> Optional[str]:
    if not name or not name.strip():
        return None
    key = vendor_key(name)
    vendor = db.query(Vendor).filter(Vendor.normalized_name == key).first()
    if vendor is None:
        vendor = (
            db.query(Vendor)
            .filter(func.lower(Vendor.name).contains(name.strip().lower()))
            .first()
        )
    return vendor.vendor_type if vendor and vendor.vendor_type else None


def explain_classification(name: str, category: Optional[str] = None) -> tuple[str, str]:
    """(vendor_type, rule) from the static lists; rule names the step that decided."""
    lowered = (name or "").lower()
    if any(brand in lowered for brand in FIXED_PLAN_VENDORS):
        return FIXED_PLAN, "fixed_plan_list"
    if any(brand in lowered for brand in NEGOTIABLE_VENDORS):
        return NEGOTIABLE, "negotiable_list"
    cat = (category or "").lower()
    if cat and any(kw in cat for kw in NEGOTIABLE_CATEGORY_KEYWORDS):
        return NEGOTIABLE, "category"
    return NEGOTIABLE, "default"


def classify_vendor_sync(name: str, category: Optional[str] = None) -> str:
    """Classification from the static lists alone, no storage lookup."""
    vendor_type, rule = explain_classification(name, category)
    logger.debug("Vendor %r classified %s by %s", name, vendor_type, rule)
    return vendor_type


def classify_vendor(db: Session, name: str, category: Optional[str] = None) -> str:
    """Like classify_vendor_sync, but a vendor_type stored on the Vendor row wins."""
    stored = _stored_type(db, name)
    if stored:
        logger.debug("Vendor %r has stored type %s", name, stored)
        return stored
    return classify_vendor_sync(name, category)


def set_vendor_type(db: Session, vendor_id: int, vendor_type: str) -> Vendor:
    """Store a manual classification; raises LookupError for an unknown vendor."""
    if vendor_type not in (FIXED_PLAN, NEGOTIABLE):
        raise ValueError(f"vendor_type must be {FIXED_PLAN} or {NEGOTIABLE}")
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if vendor is None:
        raise LookupError(f"Vendor {vendor_id} not found")
    vendor.vendor_type = vendor_type
    db.commit()
    db.refresh(vendor)
    logger.info("Vendor %s (%s) classified as %s", vendor.id, vendor.name, vendor_type)
    return vendor
