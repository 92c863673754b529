"""
Tests for src/marketintel/db/matching.py

Listings are stored through upsert_listing so they carry exactly what a
crawl would write. Coordinates are around Syntagma; 0.00005 degrees of
latitude is about 5.6 m.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import NOW
from marketintel.db.listings import upsert_listing
from marketintel.db.matching import (
    address_similarity,
    distance_meters,
    find_matches,
    matches_for,
    normalize_address,
    record_matches,
)
from marketintel.db.models import ListingMatch
from marketintel.normalizer import normalize

LAT, LON = 37.9755, 23.7348


def _store(db, source_id, platform, org="org_1", **raw):
    values = {
        "sourceListingId": source_id,
        "priceText": "250.000 €",
        "sizeSqm": "85",
        "bedrooms": "2",
        "propertyType": "Διαμέρισμα",
        "area": "Κολωνάκι",
    }
    values.update(raw)
    outcome = upsert_listing(db, normalize(values, platform, org), NOW)
    db.commit()
    return outcome.listing


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    def test_distance_meters(self):
        assert distance_meters(LAT, LON, LAT, LON) == 0
        assert 110 < distance_meters(LAT, LON, LAT + 0.001, LON) < 112

    def test_normalize_address_drops_prefix_and_numbers(self):
        assert normalize_address("Οδός Σκουφά 25, Κολωνάκι") == "σκουφά κολωνάκι"
        assert normalize_address("Λεωφόρος Βασ. Σοφίας 12-14") == "βασ σοφίας"
        assert normalize_address(None) == ""

    def test_house_number_does_not_change_similarity(self):
        assert address_similarity("Σκουφά 25", "οδός Σκουφά 27") == 1.0
        assert address_similarity("Σκουφά 25", "Πατησίων 100") < 0.8
        assert address_similarity(None, "Σκουφά") == 0.0


# ---------------------------------------------------------------------------
# Finding matches
# ---------------------------------------------------------------------------

class TestFindMatches:

    def test_nearby_listing_matched_by_coordinates(self, db):
        other = _store(db, "X1", "xe_gr", latitude=LAT + 0.00005, longitude=LON, area="Παγκράτι")
        listing = _store(db, "S1", "spitogatos", latitude=LAT, longitude=LON)

        [match] = find_matches(db, listing)

        assert match.listing_id == other.id
        assert match.platform == "xe_gr"
        assert match.reason == "coordinates"
        assert match.confidence == 0.84
        assert match.details["size_match"] is True

    def test_listing_beyond_radius_not_matched(self, db):
        _store(db, "X1", "xe_gr", latitude=LAT + 0.001, longitude=LON, area="Παγκράτι")
        listing = _store(db, "S1", "spitogatos", latitude=LAT, longitude=LON)

        assert find_matches(db, listing) == []

    def test_similar_address_in_same_area(self, db):
        other = _store(db, "X1", "xe_gr", address="Σκουφά 27", priceText="400.000 €")
        listing = _store(db, "S1", "spitogatos", address="Οδός Σκουφά 25")

        [match] = find_matches(db, listing)

        assert match.listing_id == other.id
        assert match.reason == "address"
        assert 0.93 <= match.confidence <= 0.94
        assert match.details["size_match"] is True
        assert match.details["price_match"] is False

    def test_size_and_price_match(self, db):
        other = _store(db, "X1", "xe_gr")
        listing = _store(db, "S1", "spitogatos")

        [match] = find_matches(db, listing)

        assert match.listing_id == other.id
        assert match.reason == "combined"
        assert match.confidence == 0.9
        assert match.details["bedroom_match"] is True

    def test_higher_scoring_size_and_price_match_replaces_coordinates(self, db):
        # ~22 m apart: too far for a confident coordinate match on its own
        _store(db, "X1", "xe_gr", latitude=LAT + 0.0002, longitude=LON)
        listing = _store(db, "S1", "spitogatos", latitude=LAT, longitude=LON)

        [match] = find_matches(db, listing)

        assert match.reason == "combined"
        assert match.confidence == 0.9

    def test_loose_size_and_price_below_threshold(self, db):
        _store(db, "X1", "xe_gr", sizeSqm="92", priceText="280.000 €")
        listing = _store(db, "S1", "spitogatos")

        assert find_matches(db, listing) == []

    @pytest.mark.parametrize("other", [
        {"platform": "spitogatos"},
        {"platform": "xe_gr", "org": "org_2"},
        {"platform": "xe_gr", "transactionType": "Ενοικίαση"},
    ])
    def test_only_other_platforms_of_same_org_and_transaction(self, db, other):
        _store(db, "X1", **other)
        listing = _store(db, "S1", "spitogatos")

        assert find_matches(db, listing) == []

    def test_inactive_listing_not_matched(self, db):
        other = _store(db, "X1", "xe_gr")
        other.is_active = False
        db.commit()
        listing = _store(db, "S1", "spitogatos")

        assert find_matches(db, listing) == []

    def test_best_match_first(self, db):
        close = _store(db, "X1", "xe_gr")
        loose = _store(db, "T1", "tospitimou", bedrooms="3")
        listing = _store(db, "S1", "spitogatos")

        matches = find_matches(db, listing)

        assert [m.listing_id for m in matches] == [close.id, loose.id]
        assert [m.confidence for m in matches] == [0.9, 0.81]


# ---------------------------------------------------------------------------
# Recording matches
# ---------------------------------------------------------------------------

class TestRecordMatches:

    def test_pair_recorded_once_from_either_side(self, db):
        other = _store(db, "X1", "xe_gr")
        listing = _store(db, "S1", "spitogatos")

        assert record_matches(db, listing, NOW) == 1
        db.commit()
        assert record_matches(db, other, NOW + timedelta(hours=1)) == 1
        db.commit()

        [row] = db.scalars(select(ListingMatch)).all()
        assert row.organization_id == "org_1"
        assert (row.primary_listing_id, row.matched_listing_id) == (listing.id, other.id)
        assert row.match_reason == "combined"
        assert row.match_details["matched_platform"] == "xe_gr"
        assert row.created_at == NOW
        assert row.updated_at == NOW + timedelta(hours=1)
        assert [m.id for m in matches_for(db, other.id)] == [row.id]

    def test_nothing_recorded_without_matches(self, db):
        listing = _store(db, "S1", "spitogatos")

        assert record_matches(db, listing, NOW) == 0
        db.commit()
        assert db.scalars(select(ListingMatch)).all() == []
