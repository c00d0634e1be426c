import base64
from datetime import datetime

from saaslens.services.message_parser import (
    decode_body_data,
    extract_body,
    get_header,
    has_attachment,
    html_to_text,
    sender_domain,
    to_inbound_message,
)


def _b64(text: str) -> str:
    # Gmail-style: urlsafe, padding stripped
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _message(**overrides) -> dict:
    msg = {
        "id": "m1",
        "threadId": "t1",
        "snippet": "Your receipt &amp; invoice",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": "Slack <billing@slack.com>"},
                {"name": "subject", "value": "Your Slack receipt"},
                {"name": "Date", "value": "Mon, 15 Jan 2024 10:30:00 +0000"},
            ],
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>HTML version</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Amount: $80.00")}},
            ],
        },
    }
    msg.update(overrides)
    return msg


class TestHeaders:
    def test_case_insensitive(self):
        assert get_header(_message(), "Subject") == "Your Slack receipt"

    def test_missing(self):
        assert get_header(_message(), "Reply-To") is None

    def test_sender_domain(self):
        assert sender_domain("Slack <Billing@Mail.Slack.com>") == "mail.slack.com"

    def test_sender_domain_none(self):
        assert sender_domain("no address here") is None
        assert sender_domain(None) is None


class TestBody:
    def test_decode_without_padding(self):
        assert decode_body_data(_b64("ab")) == "ab"

    def test_plain_preferred(self):
        assert extract_body(_message()) == "Amount: $80.00"

    def test_html_only_is_stripped(self):
        html_part = "<html><style>p {color: red}</style><body><p>Total&nbsp;due:</p><b>$10</b></body></html>"
        msg = _message(payload={"mimeType": "text/html", "body": {"data": _b64(html_part)}})
        assert extract_body(msg) == "Total due: $10"

    def test_script_removed(self):
        assert html_to_text("<script>alert(1)</script>Hello <i>there</i>") == "Hello there"

    def test_conditional_comment_dropped(self):
        content = "<!--[if mso]><table><tr><td>hidden</td></tr></table><![endif]--><p>Total due: $10</p>"
        assert html_to_text(content) == "Total due: $10"

    def test_attribute_with_angle_bracket(self):
        assert html_to_text('<a title="a > b">Pay</a> now') == "Pay now"

    def test_empty(self):
        assert extract_body({"id": "x", "payload": {}}) == ""

    def test_attachment_parts_not_body(self):
        msg = _message(payload={
            "mimeType": "multipart/mixed",
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("body text")}},
                {"mimeType": "text/plain", "filename": "invoice.txt", "body": {"data": _b64("attached")}},
            ],
        })
        assert extract_body(msg) == "body text"
        assert has_attachment(msg) is True

    def test_no_attachment(self):
        assert has_attachment(_message()) is False


class TestToInboundMessage:
    def test_fields(self):
        inbound = to_inbound_message(_message())
        assert inbound.id == "m1"
        assert inbound.thread_id == "t1"
        assert inbound.sender == "Slack <billing@slack.com>"
        assert inbound.subject == "Your Slack receipt"
        assert inbound.snippet == "Your receipt & invoice"
        assert inbound.body == "Amount: $80.00"
        assert inbound.date == datetime(2024, 1, 15, 10, 30)

    def test_internal_date_fallback(self):
        msg = _message(internalDate="1705314600000")
        msg["payload"]["headers"] = [h for h in msg["payload"]["headers"] if h["name"] != "Date"]
        assert to_inbound_message(msg).date == datetime(2024, 1, 15, 10, 30)

    def test_no_date(self):
        msg = {"id": "m2", "payload": {"headers": []}}
        inbound = to_inbound_message(msg)
        assert inbound.date is None
        assert inbound.subject is None
        assert inbound.body == ""
