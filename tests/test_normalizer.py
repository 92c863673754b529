"""
Tests for src/marketintel/normalizer.py

Covers: full-record normalization, camelCase and snake_case input, price
fallback to price_text, vocabulary lookups with OTHER fallback, area names,
idempotence, totality on malformed input, and dedup key stability.
"""
import json

import pytest

from marketintel.normalizer import (
    RawListing,
    dedup_key,
    normalize,
    normalize_area,
    normalize_property_type,
    normalize_transaction_type,
)

EXPECTED_KEYS = {
    "organization_id", "source_platform", "source_listing_id", "source_url",
    "title", "price", "price_per_sqm", "property_type", "transaction_type",
    "address", "area", "municipality", "postal_code", "latitude", "longitude",
    "size_sqm", "bedrooms", "bathrooms", "floor", "year_built", "agency_name",
    "agency_phone", "images", "listing_date", "raw_data",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _raw(overrides: dict | None = None) -> dict:
    """A spitogatos-style raw listing as the HTML executor emits it."""
    raw = {
        "sourceListingId": "12345678",
        "sourceUrl": "https://www.spitogatos.gr/aggelies/12345678",
        "title": "  Διαμέρισμα   85τμ ",
        "priceText": "150.000 €",
        "propertyType": "Διαμέρισμα",
        "transactionType": "Πώληση",
        "area": "κολωνακι",
        "postalCode": "106 71",
        "sizeSqm": "85 τ.μ.",
        "bedrooms": "2 υπν.",
        "bathrooms": "1",
        "floor": "Ισόγειο",
        "yearBuilt": "1975",
        "agencyName": "Acme Realty",
        "agencyPhone": "+30 210 123 4567",
        "images": ["https://img/1.jpg", " https://img/1.jpg ", "", "https://img/2.jpg"],
        "listingDate": "05/03/2024",
        "rawData": {"card_id": "result-12345678"},
    }
    if overrides:
        raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# Full record
# ---------------------------------------------------------------------------

class TestNormalizeRecord:

    def test_all_canonical_keys_present(self):
        result = normalize(_raw(), "spitogatos", "org_1")
        assert set(result) == EXPECTED_KEYS

    def test_field_values(self):
        result = normalize(_raw(), "spitogatos", "org_1")
        assert result["organization_id"] == "org_1"
        assert result["source_platform"] == "spitogatos"
        assert result["source_listing_id"] == "12345678"
        assert result["title"] == "Διαμέρισμα 85τμ"
        assert result["price"] == 150000
        assert result["size_sqm"] == 85
        assert result["price_per_sqm"] == 1765
        assert result["property_type"] == "APARTMENT"
        assert result["transaction_type"] == "sale"
        assert result["area"] == "Κολωνάκι"
        assert result["postal_code"] == "10671"
        assert result["bedrooms"] == 2
        assert result["bathrooms"] == 1
        assert result["floor"] == "0"
        assert result["year_built"] == 1975
        assert result["agency_phone"] == "+302101234567"
        assert result["listing_date"] == "2024-03-05"
        assert result["raw_data"] == {"card_id": "result-12345678"}

    def test_images_cleaned_and_deduplicated(self):
        result = normalize(_raw(), "spitogatos", "org_1")
        assert result["images"] == ["https://img/1.jpg", "https://img/2.jpg"]

    def test_snake_case_input_accepted(self):
        result = normalize(
            {"source_listing_id": "X1", "price": 99000, "size_sqm": 50},
            "xe_gr",
            "org_1",
        )
        assert result["source_listing_id"] == "X1"
        assert result["price"] == 99000
        assert result["price_per_sqm"] == 1980

    def test_numeric_price_preferred_over_text(self):
        result = normalize(_raw({"price": 140000}), "spitogatos", "org_1")
        assert result["price"] == 140000

    def test_price_text_used_when_price_unparseable(self):
        result = normalize(_raw({"price": "ρωτήστε"}), "spitogatos", "org_1")
        assert result["price"] == 150000

    def test_platform_lowercased_and_trimmed(self):
        result = normalize(_raw(), "  XE_GR ", "org_1")
        assert result["source_platform"] == "xe_gr"

    def test_raw_listing_model_accepted(self):
        model = RawListing.model_validate(_raw())
        assert normalize(model, "spitogatos", "org_1") == normalize(_raw(), "spitogatos", "org_1")

    def test_unknown_keys_ignored(self):
        result = normalize(_raw({"somethingElse": 1}), "spitogatos", "org_1")
        assert "somethingElse" not in result


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

class TestPropertyType:

    @pytest.mark.parametrize("value,expected", [
        ("Διαμέρισμα", "APARTMENT"),
        ("διαμερισμα", "APARTMENT"),
        ("Μεζονέτα", "MAISONETTE"),
        ("Γκαρσονιέρα", "STUDIO"),
        ("Ρετιρέ", "PENTHOUSE"),
        ("Οικόπεδο", "LAND"),
        ("Apartment", "APARTMENT"),
    ])
    def test_exact_matches(self, value, expected):
        assert normalize_property_type(value, "spitogatos") == expected

    def test_substring_fallback(self):
        assert normalize_property_type("Διαμέρισμα 85τμ στο κέντρο", "spitogatos") == "APARTMENT"

    def test_unknown_value_is_other(self):
        assert normalize_property_type("castle", "spitogatos") == "OTHER"

    def test_missing_value_is_other(self):
        assert normalize_property_type(None, "xe_gr") == "OTHER"
        assert normalize_property_type("   ", "xe_gr") == "OTHER"

    def test_unknown_platform_uses_default_table(self):
        assert normalize_property_type("Μονοκατοικία", "new_portal") == "HOUSE"

    def test_platform_specific_entry(self):
        assert normalize_property_type("γη", "spitogatos") == "LAND"


class TestTransactionType:

    @pytest.mark.parametrize("value,expected", [
        ("Πώληση", "sale"),
        ("Ενοικίαση", "rent"),
        ("for rent", "rent"),
        ("long-term rental", "rent"),
        ("μισθωση", "rent"),
        ("something", "sale"),
        (None, "sale"),
    ])
    def test_mapping(self, value, expected):
        assert normalize_transaction_type(value) == expected


class TestArea:

    def test_known_area_canonicalized(self):
        assert normalize_area("athens") == "Αθήνα"
        assert normalize_area("ΚΟΛΩΝΑΚΙ") == "Κολωνάκι"

    def test_unknown_area_title_cased(self):
        assert normalize_area("  nea   ionia ") == "Nea Ionia"

    def test_blank_area(self):
        assert normalize_area("") is None


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestNormalizeProperties:

    def test_idempotent(self):
        first = normalize(_raw(), "spitogatos", "org_1")
        second = normalize(_raw(), "spitogatos", "org_1")
        assert first == second
        assert json.dumps(first, sort_keys=True, ensure_ascii=False) == json.dumps(
            second, sort_keys=True, ensure_ascii=False
        )

    @pytest.mark.parametrize("raw", [
        {},
        None,
        "not a listing",
        42,
        {"price": object(), "images": "https://img/1.jpg", "rawData": "oops"},
        {"sizeSqm": float("nan"), "floor": float("inf"), "latitude": "north"},
        {"bedrooms": [], "title": {"a": 1}, "yearBuilt": "someday"},
    ])
    def test_total_on_malformed_input(self, raw):
        result = normalize(raw, "spitogatos", "org_1")
        assert set(result) == EXPECTED_KEYS
        assert result["property_type"] == "OTHER"
        assert result["transaction_type"] == "sale"

    def test_malformed_fields_degrade_independently(self):
        result = normalize(_raw({"sizeSqm": "άγνωστο"}), "spitogatos", "org_1")
        assert result["size_sqm"] is None
        assert result["price_per_sqm"] is None
        assert result["price"] == 150000

    def test_dedup_key_stable(self):
        a = normalize(_raw(), "spitogatos", "org_1")
        b = normalize(_raw({"priceText": "140.000 €", "title": "changed"}), "spitogatos", "org_1")
        assert dedup_key(a) == dedup_key(b) == ("org_1", "spitogatos", "12345678")

    def test_dedup_key_tenant_scoped(self):
        a = normalize(_raw(), "spitogatos", "org_1")
        b = normalize(_raw(), "spitogatos", "org_2")
        assert dedup_key(a) != dedup_key(b)

    def test_missing_source_id_is_none(self):
        result = normalize(_raw({"sourceListingId": None}), "spitogatos", "org_1")
        assert result["source_listing_id"] is None
