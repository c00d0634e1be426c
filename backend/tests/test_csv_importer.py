from datetime import datetime

from saaslens.models import Subscription, Transaction, Vendor
from saaslens.services.csv_importer import (
    MAX_REPORTED_ERRORS,
    calculate_vendor_summaries,
    find_column,
    import_csv,
    parse_csv,
    preview_csv,
    resolve_columns,
)

USER = "user-1"
NOW = datetime(2024, 4, 1)

BANK_CSV = """Date,Description,Amount
01/15/2024,SLACK T0123ABC,-80.00
02/15/2024,SLACK T0123ABC,-80.00
03/15/2024,SLACK T0123ABC,-80.00
03/02/2024,CORNER BAKERY,(12.50)
03/05/2024,FIGMA MONTHLY,$45.00
"""


class TestColumnResolution:
    def test_exact_match_preferred(self):
        assert find_column(["Posted Date", "Date"], ["date", "posted date"]) == "Date"

    def test_substring_fallback(self):
        assert find_column(["Transaction Amount (USD)"], ["amount"]) == "Transaction Amount (USD)"

    def test_case_insensitive(self):
        assert find_column(["DESCRIPTION"], ["description"]) == "DESCRIPTION"

    def test_resolve(self):
        mapping = resolve_columns(["Date", "Description", "Amount", "Category"])
        assert mapping.date == "Date"
        assert mapping.description == "Description"
        assert mapping.amount == "Amount"
        assert mapping.category == "Category"
        assert mapping.vendor is None


class TestParseCsv:
    def test_happy_path(self):
        result = parse_csv(BANK_CSV)
        assert result.total_rows == 5
        assert len(result.transactions) == 5
        assert result.errors == []
        slack = [t for t in result.transactions if t.vendor_name == "Slack"]
        assert len(slack) == 3
        assert all(t.amount == 80.0 and t.is_saas for t in slack)
        assert slack[0].category == "Communication"

    def test_missing_amount_column_aborts(self):
        result = parse_csv("Date,Description\n01/15/2024,SLACK\n")
        assert result.transactions == []
        assert result.errors
        assert "amount" in result.errors[0].lower()

    def test_missing_date_column_aborts(self):
        result = parse_csv("When,Description,Amount\nyesterday,SLACK,10\n")
        assert result.transactions == []
        assert "date" in result.errors[0].lower()

    def test_vendor_column_alone_is_enough(self):
        result = parse_csv("Date,Vendor,Amount\n2024-01-15,Acme Hosting,10\n")
        assert [t.vendor_name for t in result.transactions] == ["Acme Hosting"]

    def test_invalid_date_reported(self):
        result = parse_csv("Date,Description,Amount\nsoon,SLACK,10\n2024-01-15,SLACK,10\n")
        assert len(result.transactions) == 1
        assert result.errors == ['Row 2: Invalid date "soon"']

    def test_zero_amount_skipped_silently(self):
        result = parse_csv("Date,Description,Amount\n2024-01-15,SLACK,$0.00\n2024-02-15,SLACK,10\n")
        assert len(result.transactions) == 1
        assert result.errors == []

    def test_errors_truncated(self):
        rows = "".join(f"bad{i},SLACK,10\n" for i in range(25))
        result = parse_csv("Date,Description,Amount\n" + rows)
        assert len(result.errors) == MAX_REPORTED_ERRORS
        assert result.total_rows == 25

    def test_explicit_vendor_column(self):
        csv_text = "Date,Description,Vendor,Amount\n2024-01-15,CARD 4411 ONLINE,Pixel Forge,19.99\n"
        tx = parse_csv(csv_text).transactions[0]
        assert tx.vendor_name == "Pixel Forge"
        assert tx.normalized_vendor_name == "pixel forge"

    def test_bom_and_blank_lines(self):
        result = parse_csv("\ufeffDate,Description,Amount\n\n2024-01-15,SLACK,10\n\n")
        assert len(result.transactions) == 1

    def test_saas_count(self):
        assert parse_csv(BANK_CSV).saas_count == 4

    def test_oversized_field_is_reported_not_raised(self):
        csv_text = "Date,Description,Amount\n2024-01-15," + "x" * 200_000 + ",10\n2024-01-16,SLACK,10\n"
        result = parse_csv(csv_text)
        assert result.transactions == []
        assert len(result.errors) == 1
        assert "malformed CSV" in result.errors[0]

    def test_payee_column_is_explicit_vendor(self):
        result = parse_csv("Date,Payee,Amount\n2024-01-15,SQ *BLUE BOTTLE #12,4.50\n")
        assert resolve_columns(["Date", "Payee", "Amount"]).vendor == "Payee"
        assert result.transactions[0].vendor_name == "SQ *BLUE BOTTLE #12"


class TestVendorSummaries:
    def test_sorted_by_total_desc(self):
        summaries = calculate_vendor_summaries(parse_csv(BANK_CSV).transactions)
        totals = [s.total_amount for s in summaries]
        assert totals == sorted(totals, reverse=True)
        assert summaries[0].vendor_name == "Slack"
        assert summaries[0].transaction_count == 3
        assert summaries[0].average_amount == 80.0
        assert summaries[0].first_date == datetime(2024, 1, 15)
        assert summaries[0].last_date == datetime(2024, 3, 15)

    def test_saas_is_or_reduced(self):
        csv_text = (
            "Date,Vendor,Description,Amount\n"
            "2024-01-15,Acme,one-off purchase,10\n"
            "2024-02-15,Acme,recurring plan,10\n"
        )
        summaries = calculate_vendor_summaries(parse_csv(csv_text).transactions)
        assert len(summaries) == 1
        assert summaries[0].is_saas


class TestPreview:
    def test_preview(self):
        data = preview_csv(BANK_CSV.encode(), max_rows=2)
        assert data["headers"] == ["Date", "Description", "Amount"]
        assert data["mapping"].amount == "Amount"
        assert data["total_rows_previewed"] == 2
        assert data["total_rows"] == 5


class TestImportCsv:
    def test_persists_vendors_transactions_and_subscriptions(self, db):
        resp = import_csv(db, USER, BANK_CSV.encode(), now=NOW)

        assert resp.success
        assert resp.summary.valid_transactions == 5
        assert resp.summary.transactions_created == 5
        assert resp.summary.vendors_created == 3
        assert resp.vendors[0].name == "Slack"

        slack = db.query(Vendor).filter(Vendor.normalized_name == "slack").one()
        assert slack.is_saas
        sub = db.query(Subscription).filter(Subscription.vendor_id == slack.id).one()
        assert sub.source == "csv"
        assert sub.billing_cycle == "monthly"
        assert sub.amount_cents == 8000
        assert sub.confidence_score == "high"
        assert sub.renewal_date == datetime(2024, 4, 15)

    def test_non_saas_vendor_gets_no_subscription(self, db):
        import_csv(db, USER, BANK_CSV.encode(), now=NOW)
        bakery = db.query(Vendor).filter(Vendor.name == "Corner Bakery").one()
        assert not bakery.is_saas
        assert db.query(Subscription).filter(Subscription.vendor_id == bakery.id).count() == 0

    def test_single_charge_is_low_confidence(self, db):
        import_csv(db, USER, BANK_CSV.encode(), now=NOW)
        figma = db.query(Vendor).filter(Vendor.normalized_name == "figma").one()
        assert figma.subscriptions[0].confidence_score == "low"

    def test_reimport_skips_duplicates(self, db):
        import_csv(db, USER, BANK_CSV.encode(), now=NOW)
        resp = import_csv(db, USER, BANK_CSV.encode(), now=NOW)
        assert resp.summary.transactions_created == 0
        assert resp.summary.duplicates_skipped == 5
        assert resp.summary.vendors_created == 0
        assert db.query(Transaction).count() == 5
        assert db.query(Subscription).filter(Subscription.source == "csv").count() == 2

    def test_same_charge_twice_in_one_file_is_kept(self, db):
        csv_text = "Date,Description,Amount\n2024-01-15,SLACK,10\n2024-01-15,SLACK,10\n"
        resp = import_csv(db, USER, csv_text.encode(), now=NOW)
        assert resp.summary.transactions_created == 2

    def test_stored_vendor_type_untouched(self, db):
        import_csv(db, USER, BANK_CSV.encode(), now=NOW)
        slack = db.query(Vendor).filter(Vendor.normalized_name == "slack").one()
        slack.vendor_type = "FIXED_PLAN"
        db.commit()
        import_csv(db, USER, "Date,Description,Amount\n2024-04-15,SLACK,80\n".encode(), now=NOW)
        db.refresh(slack)
        assert slack.vendor_type == "FIXED_PLAN"

    def test_no_transactions_is_unsuccessful(self, db):
        resp = import_csv(db, USER, b"Date,Description\n2024-01-15,SLACK\n", now=NOW)
        assert not resp.success
        assert resp.summary.errors
        assert db.query(Vendor).count() == 0
