import pytest

from saaslens.models import Vendor
from saaslens.services.vendor_classifier import (
    FIXED_PLAN,
    NEGOTIABLE,
    classify_vendor,
    classify_vendor_sync,
    explain_classification,
    set_vendor_type,
)


class TestStaticClassification:
    @pytest.mark.parametrize("name", ["Spotify", "Netflix Premium", "YouTube Premium"])
    def test_fixed_plan_brands(self, name):
        assert classify_vendor_sync(name) == FIXED_PLAN

    def test_negotiable_brand(self):
        assert explain_classification("Salesforce") == (NEGOTIABLE, "negotiable_list")

    def test_category_keyword(self):
        assert explain_classification("Pixel Forge", "Customer Data Platform") == (NEGOTIABLE, "category")

    def test_default(self):
        assert explain_classification("Pixel Forge", "Design") == (NEGOTIABLE, "default")

    def test_fixed_list_checked_before_negotiable(self):
        assert explain_classification("Hulu + Live TV")[1] == "fixed_plan_list"

    def test_empty_name(self):
        assert classify_vendor_sync("") == NEGOTIABLE


class TestStoredClassification:
    def test_stored_type_wins(self, db):
        db.add(Vendor(name="Spotify", normalized_name="spotify", vendor_type=NEGOTIABLE))
        db.commit()
        assert classify_vendor(db, "Spotify") == NEGOTIABLE

    def test_stored_type_by_partial_name(self, db):
        db.add(Vendor(name="Acme Hosting Inc", normalized_name="acmehostinginc", vendor_type=FIXED_PLAN))
        db.commit()
        assert classify_vendor(db, "acme hosting") == FIXED_PLAN

    def test_no_stored_type_falls_through(self, db):
        db.add(Vendor(name="Netflix", normalized_name="netflix"))
        db.commit()
        assert classify_vendor(db, "Netflix") == FIXED_PLAN

    def test_blank_name_does_not_match_everything(self, db):
        db.add(Vendor(name="Acme", normalized_name="acme", vendor_type=FIXED_PLAN))
        db.commit()
        assert classify_vendor(db, "  ") == NEGOTIABLE


class TestSetVendorType:
    def test_stores(self, db):
        vendor = Vendor(name="Slack", normalized_name="slack")
        db.add(vendor)
        db.commit()
        updated = set_vendor_type(db, vendor.id, FIXED_PLAN)
        assert updated.vendor_type == FIXED_PLAN
        assert classify_vendor(db, "Slack") == FIXED_PLAN

    def test_unknown_vendor(self, db):
        with pytest.raises(LookupError):
            set_vendor_type(db, 999, FIXED_PLAN)

    def test_invalid_type(self, db):
        with pytest.raises(ValueError):
            set_vendor_type(db, 1, "CHEAP")
