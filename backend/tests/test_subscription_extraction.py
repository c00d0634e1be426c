import pytest

from saaslens.schemas import ExtractedSubscription
from saaslens.services.retry import ProviderError
from saaslens.services.subscription_extraction import (
    ExtractionParseError,
    build_prompt,
    extract_subscription_from_email,
    extract_with_regex,
    parse_extraction_response,
    resolve_vendor_name,
    strip_code_fences,
)


class TestParseResponse:
    def test_plain_json(self):
        result = parse_extraction_response('{"vendor_name": "Slack", "amount": 80, "confidence": "high"}')
        assert result.vendor_name == "Slack"
        assert result.amount == 80.0
        assert result.confidence == "high"

    def test_code_fence_stripped(self):
        raw = '```json\n{"plan": "Pro", "renewal_date": "2025-03-01"}\n```'
        result = parse_extraction_response(raw)
        assert result.plan == "Pro"
        assert result.renewal_date == "2025-03-01"

    def test_strip_bare_fence(self):
        assert strip_code_fences("```\n{}\n```") == "{}"

    def test_null_means_nothing_found(self):
        assert parse_extraction_response("null") is None

    @pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", '"text"'])
    def test_invalid_raises(self, raw):
        with pytest.raises(ExtractionParseError):
            parse_extraction_response(raw)

    def test_badly_shaped_values_become_null(self):
        result = parse_extraction_response(
            '{"vendor_name": "unknown", "renewal_date": "next month", "billing_cycle": "weekly",'
            ' "amount": "$1,200.00", "seats": "12 users", "currency": "usd", "confidence": "very"}'
        )
        assert result.vendor_name is None
        assert result.renewal_date is None
        assert result.billing_cycle is None
        assert result.amount == 1200.0
        assert result.seats == 12
        assert result.currency == "USD"
        assert result.confidence == "low"

    def test_cycle_aliases(self):
        assert parse_extraction_response('{"billing_cycle": "Annual"}').billing_cycle == "yearly"


class TestPrompt:
    def test_contains_email_parts(self):
        prompt = build_prompt("Your invoice", "Amount: $10", "billing@slack.com")
        assert "Subject: Your invoice" in prompt
        assert "From: billing@slack.com" in prompt
        assert "Amount: $10" in prompt
        assert '"vendor_name"' in prompt

    def test_body_truncated(self):
        prompt = build_prompt("s", "x" * 20000, "a@b.com")
        assert "x" * 8001 not in prompt


class TestRegexFallback:
    def test_plan_and_seats(self):
        result = extract_with_regex("Notion Billing Plan", "Plan: Notion Team Seats: 12")
        assert result.plan == "Notion Team"
        assert result.seats == 12
        assert result.vendor_name == "Notion"

    def test_amount_and_date_give_medium_confidence(self):
        body = "Your plan renews on March 1, 2025. Amount: $1,200.00 USD"
        result = extract_with_regex("Receipt", body)
        assert result.amount == 1200.0
        assert result.currency == "USD"
        assert result.renewal_date == "2025-03-01"
        assert result.confidence == "medium"

    def test_renewal_date_label(self):
        result = extract_with_regex("x", "Renewal date: Dec 15, 2024")
        assert result.renewal_date == "2024-12-15"

    def test_non_usd_currency(self):
        result = extract_with_regex("x", "Total 99.00 EUR charged")
        assert (result.amount, result.currency) == (99.0, "EUR")

    def test_yearly_beats_monthly(self):
        result = extract_with_regex("x", "Annual plan, billed as $10 per month")
        assert result.billing_cycle == "yearly"

    def test_monthly(self):
        assert extract_with_regex("x", "Billed monthly").billing_cycle == "monthly"

    def test_quarterly(self):
        assert extract_with_regex("x", "Billed quarterly").billing_cycle == "quarterly"

    def test_amount_in_subject_only(self):
        result = extract_with_regex("Your Slack receipt for $120.00", "Thanks for your business.")
        assert result is not None
        assert (result.amount, result.currency) == (120.0, "USD")

    def test_seats_in_subject_only(self):
        result = extract_with_regex("Team plan updated, Seats: 8", "See your dashboard.")
        assert result.seats == 8

    def test_nothing_found_returns_none(self):
        assert extract_with_regex("Hello", "Lunch on Friday?") is None

    def test_vendor_not_guessed(self):
        result = extract_with_regex("Receipt", "Amount: $10")
        assert result.vendor_name is None
        assert result.plan is None
        assert result.confidence == "low"


class TestExtractFromEmail:
    def test_provider_result_used(self):
        expected = ExtractedSubscription(vendor_name="Slack", amount=10)
        result = extract_subscription_from_email("s", "b", "a@slack.com", lambda *_: expected)
        assert result is expected

    def test_provider_none_is_respected(self):
        result = extract_subscription_from_email("Slack Billing", "Amount: $10", "a@slack.com", lambda *_: None)
        assert result is None

    @pytest.mark.parametrize("exc", [ProviderError("quota", status_code=429), ExtractionParseError("bad")])
    def test_falls_back_to_regex_on_failure(self, exc):
        def failing(*_):
            raise exc

        result = extract_subscription_from_email("Notion Billing Plan", "Plan: Notion Team Seats: 12", "x@notion.so", failing)
        assert result.plan == "Notion Team"

    def test_no_extractor_uses_regex(self):
        result = extract_subscription_from_email("Receipt", "Amount: $5.00", "x@y.com")
        assert result.amount == 5.0

    def test_unexpected_errors_propagate(self):
        def broken(*_):
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            extract_subscription_from_email("s", "b", "a@b.com", broken)


class TestResolveVendorName:
    def test_extracted_name_wins_and_gets_category(self):
        resolved = resolve_vendor_name("Figma", "gmail.com", "Your invoice")
        assert resolved.name == "Figma"
        assert resolved.category == "Design"

    def test_extracted_name_not_overridden(self):
        resolved = resolve_vendor_name("Acme Analytics", "slack.com", "Slack billing")
        assert resolved.name == "Acme Analytics"

    def test_known_domain(self):
        assert resolve_vendor_name(None, "mail.notion.so", "Receipt").name == "Notion"

    def test_generic_domain_uses_subject_pattern(self):
        resolved = resolve_vendor_name(None, "gmail.com", "Your Figma subscription renews soon")
        assert resolved.name == "Figma"
        assert resolved.name != "Gmail"

    def test_domain_label(self):
        assert resolve_vendor_name(None, "billing.acmehosting.com", "Invoice").name == "Acmehosting"

    def test_generic_domain_without_signal(self):
        assert resolve_vendor_name(None, "gmail.com", "Invoice").name == "Unknown"

    def test_blank_extracted_name_ignored(self):
        assert resolve_vendor_name("  ", "slack.com", "x").name == "Slack"
