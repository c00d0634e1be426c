"""Known SaaS vendor registry.

Static, ordered tables used to recognise vendors in free text:

  SAAS_PATTERNS         – (compiled regex, name, category); first match wins
  KNOWN_SAAS_DOMAINS    – sender/vendor domain → (name, category)
  GENERIC_EMAIL_DOMAINS – consumer mail providers that never identify a vendor

Order in SAAS_PATTERNS is priority: specific multi-word products come before
the short generic words that could shadow them (e.g. "Microsoft 365" before
anything matching "microsoft", "Google Cloud" before "cloud").
"""

import re
from typing import NamedTuple, Optional


class VendorPattern(NamedTuple):
    pattern: re.Pattern
    name: str
    category: str


def _p(regex: str, name: str, category: str) -> VendorPattern:
    return VendorPattern(re.compile(regex, re.IGNORECASE), name, category)


# ─────────────────────────────────────────────────────────────────────────────
# Pattern table
# ─────────────────────────────────────────────────────────────────────────────

SAAS_PATTERNS: list[VendorPattern] = [
    # Communication & collaboration
    _p(r"slack", "Slack", "Communication"),
    _p(r"zoom", "Zoom", "Communication"),
    _p(r"microsoft\s*365|office\s*365|ms\s*365", "Microsoft 365", "Productivity"),
    _p(r"google\s*workspace|gsuite|g\s*suite", "Google Workspace", "Productivity"),
    # "teams" alone is too generic ("Notion Teams", "Team plan"); require the brand.
    _p(r"microsoft\s*teams|ms\s*teams", "Microsoft Teams", "Communication"),
    _p(r"discord", "Discord", "Communication"),
    _p(r"webex", "Webex", "Communication"),
    _p(r"\bloom\b", "Loom", "Communication"),

    # Project management & docs
    _p(r"notion", "Notion", "Productivity"),
    _p(r"asana", "Asana", "Project Management"),
    _p(r"trello", "Trello", "Project Management"),
    _p(r"monday\.com|monday\s", "Monday.com", "Project Management"),
    _p(r"clickup", "ClickUp", "Project Management"),
    _p(r"basecamp", "Basecamp", "Project Management"),
    _p(r"jira", "Jira", "Project Management"),
    _p(r"confluence", "Confluence", "Documentation"),
    _p(r"atlassian", "Atlassian", "Project Management"),
    _p(r"\blinear\b", "Linear", "Project Management"),
    _p(r"airtable", "Airtable", "Database"),

    # Design
    _p(r"figma", "Figma", "Design"),
    _p(r"canva", "Canva", "Design"),
    _p(r"adobe", "Adobe Creative Cloud", "Design"),
    _p(r"\bsketch\b", "Sketch", "Design"),
    _p(r"invision", "InVision", "Design"),
    _p(r"\bmiro\b", "Miro", "Design"),

    # Development
    _p(r"github", "GitHub", "DevOps"),
    _p(r"gitlab", "GitLab", "DevOps"),
    _p(r"bitbucket", "Bitbucket", "DevOps"),
    _p(r"vercel", "Vercel", "DevOps"),
    _p(r"netlify", "Netlify", "DevOps"),
    _p(r"heroku", "Heroku", "DevOps"),
    _p(r"digitalocean", "DigitalOcean", "Cloud"),
    _p(r"datadog", "Datadog", "DevOps"),
    _p(r"\bsentry\b", "Sentry", "DevOps"),
    _p(r"pagerduty", "PagerDuty", "DevOps"),
    _p(r"new\s*relic", "New Relic", "DevOps"),
    _p(r"mongodb", "MongoDB", "Database"),

    # Cloud infrastructure
    _p(r"\baws\b|amazon\s*web\s*services", "AWS", "Cloud"),
    _p(r"azure", "Microsoft Azure", "Cloud"),
    _p(r"google\s*cloud|\bgcp\b", "Google Cloud", "Cloud"),

    # CRM, sales & support
    _p(r"salesforce", "Salesforce", "CRM"),
    _p(r"hubspot", "HubSpot", "CRM"),
    _p(r"pipedrive", "Pipedrive", "CRM"),
    _p(r"zendesk", "Zendesk", "Support"),
    _p(r"intercom", "Intercom", "Support"),
    _p(r"freshdesk", "Freshdesk", "Support"),
    _p(r"freshworks", "Freshworks", "Support"),

    # Marketing
    _p(r"mailchimp", "Mailchimp", "Marketing"),
    _p(r"sendgrid", "SendGrid", "Marketing"),
    _p(r"mailgun", "Mailgun", "Marketing"),
    _p(r"constant\s*contact", "Constant Contact", "Marketing"),
    _p(r"hootsuite", "Hootsuite", "Marketing"),
    _p(r"\bbuffer\b", "Buffer", "Marketing"),
    _p(r"semrush", "SEMrush", "Marketing"),
    _p(r"ahrefs", "Ahrefs", "Marketing"),

    # Finance & accounting
    _p(r"quickbooks", "QuickBooks", "Finance"),
    _p(r"\bxero\b", "Xero", "Finance"),
    _p(r"stripe", "Stripe", "Payments"),
    _p(r"\bsquare\b", "Square", "Payments"),
    _p(r"paypal", "PayPal", "Payments"),
    _p(r"\bbrex\b", "Brex", "Finance"),
    _p(r"\bramp\b", "Ramp", "Finance"),
    _p(r"bill\.com", "Bill.com", "Finance"),
    _p(r"expensify", "Expensify", "Finance"),

    # HR & payroll
    _p(r"gusto", "Gusto", "HR"),
    _p(r"rippling", "Rippling", "HR"),
    _p(r"workday", "Workday", "HR"),
    _p(r"bamboohr|bamboo\s*hr", "BambooHR", "HR"),
    _p(r"\bdeel\b", "Deel", "HR"),

    # Security
    _p(r"1password|onepassword", "1Password", "Security"),
    _p(r"lastpass", "LastPass", "Security"),
    _p(r"\bokta\b", "Okta", "Security"),
    _p(r"auth0", "Auth0", "Security"),

    # Storage & files
    _p(r"dropbox", "Dropbox", "Storage"),
    _p(r"box\.com|\bbox\s", "Box", "Storage"),
    _p(r"google\s*drive", "Google Drive", "Storage"),

    # Analytics
    _p(r"mixpanel", "Mixpanel", "Analytics"),
    _p(r"amplitude", "Amplitude", "Analytics"),
    _p(r"\bsegment\b", "Segment", "Analytics"),
    _p(r"\bheap\b", "Heap", "Analytics"),
    _p(r"hotjar", "Hotjar", "Analytics"),
    _p(r"fullstory", "FullStory", "Analytics"),

    # E-commerce
    _p(r"shopify", "Shopify", "E-commerce"),
    _p(r"bigcommerce", "BigCommerce", "E-commerce"),
    _p(r"woocommerce", "WooCommerce", "E-commerce"),

    # Communication APIs
    _p(r"twilio", "Twilio", "APIs"),
    _p(r"plivo", "Plivo", "APIs"),

    # AI & ML
    _p(r"openai", "OpenAI", "AI"),
    _p(r"anthropic", "Anthropic", "AI"),
    _p(r"\bcohere\b", "Cohere", "AI"),
]

# Lexical hints for vendors the table does not know. Recall over precision.
_SAAS_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"subscription",
        r"monthly",
        r"annual",
        r"recurring",
        r"license",
        r"saas",
        r"software",
        r"\.com",
        r"\.io",
        r"cloud",
        r"pro\s*plan",
        r"enterprise",
        r"team\s*plan",
        r"business\s*plan",
    )
]


# ─────────────────────────────────────────────────────────────────────────────
# Domain tables
# ─────────────────────────────────────────────────────────────────────────────

KNOWN_SAAS_DOMAINS: dict[str, tuple[str, str]] = {
    "slack.com": ("Slack", "Communication"),
    "notion.so": ("Notion", "Productivity"),
    "github.com": ("GitHub", "DevOps"),
    "figma.com": ("Figma", "Design"),
    "zoom.us": ("Zoom", "Communication"),
    "atlassian.com": ("Atlassian", "Project Management"),
    "jira.com": ("Jira", "Project Management"),
    "trello.com": ("Trello", "Project Management"),
    "dropbox.com": ("Dropbox", "Storage"),
    "hubspot.com": ("HubSpot", "CRM"),
    "salesforce.com": ("Salesforce", "CRM"),
    "intercom.io": ("Intercom", "Customer Support"),
    "zendesk.com": ("Zendesk", "Customer Support"),
    "mailchimp.com": ("Mailchimp", "Marketing"),
    "sendgrid.com": ("SendGrid", "Email"),
    "stripe.com": ("Stripe", "Payments"),
    "aws.amazon.com": ("AWS", "Cloud Infrastructure"),
    "cloud.google.com": ("Google Cloud", "Cloud Infrastructure"),
    "azure.microsoft.com": ("Microsoft Azure", "Cloud Infrastructure"),
    "vercel.com": ("Vercel", "DevOps"),
    "heroku.com": ("Heroku", "Cloud Infrastructure"),
    "mongodb.com": ("MongoDB", "Database"),
    "datadog.com": ("Datadog", "Monitoring"),
    "newrelic.com": ("New Relic", "Monitoring"),
    "sentry.io": ("Sentry", "Monitoring"),
    "auth0.com": ("Auth0", "Security"),
    "okta.com": ("Okta", "Security"),
    "linear.app": ("Linear", "Project Management"),
    "asana.com": ("Asana", "Project Management"),
    "monday.com": ("Monday.com", "Project Management"),
    "airtable.com": ("Airtable", "Database"),
    "canva.com": ("Canva", "Design"),
    "miro.com": ("Miro", "Collaboration"),
    "loom.com": ("Loom", "Communication"),
    "calendly.com": ("Calendly", "Scheduling"),
    "openai.com": ("OpenAI", "AI"),
    "anthropic.com": ("Anthropic", "AI"),
}

GENERIC_EMAIL_DOMAINS = frozenset({
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "live.com",
    "aol.com",
    "icloud.com",
    "me.com",
    "mail.com",
    "protonmail.com",
    "proton.me",
})


# ─────────────────────────────────────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────────────────────────────────────


def detect_saas_vendor(text: str) -> Optional[VendorPattern]:
    """Return the first registry entry whose pattern occurs in *text*, else None."""
    if not text:
        return None
    for entry in SAAS_PATTERNS:
        if entry.pattern.search(text):
            return entry
    return None


def is_saas_subscription(text: str) -> bool:
    """True if *text* names a known vendor or carries a subscription-ish hint."""
    if not text:
        return False
    if detect_saas_vendor(text):
        return True
    return any(ind.search(text) for ind in _SAAS_INDICATORS)


def normalize_vendor_name(name: str) -> str:
    """Identity key for grouping: lowercase, punctuation stripped, whitespace collapsed.

    "Slack Technologies, Inc." → "slack technologies inc"
    "  Monday.com  "           → "mondaycom"
    """
    s = name.lower().strip()
    s = re.sub(r"[^\w\s]", "", s)
    return re.sub(r"\s+", " ", s).strip()


def vendor_key(name: str) -> str:
    """Persistence key: normalized name with all whitespace removed."""
    return normalize_vendor_name(name).replace(" ", "")


def is_generic_email_domain(domain: Optional[str]) -> bool:
    return bool(domain) and domain.lower() in GENERIC_EMAIL_DOMAINS


def lookup_domain(domain: Optional[str]) -> Optional[tuple[str, str]]:
    """(name, category) for a known vendor domain; subdomains resolve to their parent."""
    if not domain:
        return None
    d = domain.lower().strip().rstrip(".")
    while d:
        known = KNOWN_SAAS_DOMAINS.get(d)
        if known:
            return known
        if "." not in d:
            break
        d = d.split(".", 1)[1]
    return None


def get_vendor_category(domain: Optional[str]) -> Optional[str]:
    known = lookup_domain(domain)
    return known[1] if known else None


def category_for_name(name: str) -> Optional[str]:
    """Category for a vendor name that matches a known domain entry exactly (case-insensitive)."""
    target = name.strip().lower()
    for known_name, category in KNOWN_SAAS_DOMAINS.values():
        if known_name.lower() == target:
            return category
    return None
