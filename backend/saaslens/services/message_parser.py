"""
Decode Gmail API message resources into InboundMessage objects.

Only the pieces the extraction pipeline reads are pulled out: a handful of
headers, the text body (text/plain preferred, HTML stripped to text when
that is all there is), and whether any part carries an attachment.
"""

import base64
import html
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from bs4 import BeautifulSoup, Comment

from ..schemas import InboundMessage
from .normalizer import parse_date

logger = logging.getLogger(__name__)

_SENDER_DOMAIN_RE = re.compile(r"@([a-zA-Z0-9.-]+)")
_WS_RE = re.compile(r"\s+")


def get_header(message: dict, name: str) -> Optional[str]:
    """Case-insensitive header lookup on a Gmail message resource."""
    target = name.lower()
    for header in message.get("payload", {}).get("headers", []):
        if header.get("name", "").lower() == target:
            return header.get("value")
    return None


def sender_domain(from_header: Optional[str]) -> Optional[str]:
    """'Slack <billing@slack.com>' → 'slack.com'."""
    if not from_header:
        return None
    m = _SENDER_DOMAIN_RE.search(from_header)
    return m.group(1).lower().rstrip(".") if m else None


def decode_body_data(data: str) -> str:
    # Gmail drops base64 padding
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="ignore")


def html_to_text(content: str) -> str:
    """Visible text of an HTML body; scripts, styles and comments dropped."""
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    # Outlook conditional blocks live inside comments
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    text = soup.get_text(separator=" ", strip=True)
    return _WS_RE.sub(" ", text).strip()


def _collect_bodies(part: dict, plain: list[str], rich: list[str]) -> None:
    mime = part.get("mimeType", "")
    data = part.get("body", {}).get("data")
    if data and not part.get("filename"):
        if mime == "text/plain":
            plain.append(decode_body_data(data))
        elif mime == "text/html":
            rich.append(decode_body_data(data))
    for sub in part.get("parts", []) or []:
        _collect_bodies(sub, plain, rich)


def extract_body(message: dict) -> str:
    """Full text body of a message; empty string when it has none."""
    plain: list[str] = []
    rich: list[str] = []
    _collect_bodies(message.get("payload", {}), plain, rich)
    if plain:
        return "\n".join(plain).strip()
    if rich:
        return html_to_text("\n".join(rich))
    return ""


def _has_attachment(part: dict) -> bool:
    if part.get("filename"):
        return True
    return any(_has_attachment(sub) for sub in part.get("parts", []) or [])


def has_attachment(message: dict) -> bool:
    return _has_attachment(message.get("payload", {}))


def _message_date(message: dict) -> Optional[datetime]:
    raw = get_header(message, "Date")
    if raw:
        try:
            dt = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            dt = None
        if dt is not None:
            return parse_date(dt)
    internal = message.get("internalDate")
    if internal:
        try:
            return parse_date(datetime.fromtimestamp(int(internal) / 1000.0, tz=timezone.utc))
        except (TypeError, ValueError, OverflowError, OSError):
            logger.debug("Bad internalDate %r on message %s", internal, message.get("id"))
    return None


def to_inbound_message(message: dict) -> InboundMessage:
    """Build the pipeline's InboundMessage from a Gmail ``format=full`` resource."""
    return InboundMessage(
        id=message["id"],
        thread_id=message.get("threadId"),
        subject=get_header(message, "Subject"),
        sender=get_header(message, "From"),
        date=_message_date(message),
        snippet=html.unescape(message.get("snippet", "") or ""),
        body=extract_body(message),
        has_attachment=has_attachment(message),
    )
