"""
Tests for the normalizer: French parsing, field tolerance, idempotence.
"""
from datetime import datetime

import pytest

from autoval.models.listing import FieldQuality, RawSourceResult
from autoval.pipeline.normalizer import (
    Normalizer,
    parse_coordinate,
    parse_french_number,
    parse_year,
)

from .conftest import REFERENCE_YEAR, car


FETCHED_AT = datetime(2024, 5, 1, 12, 0, 0)


def _raw(records, source_id="leboncoin", status="ok") -> RawSourceResult:
    return RawSourceResult(source_id=source_id, status=status, records=records, fetched_at=FETCHED_AT)


class TestFrenchParsing:
    """Tests for number and year parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("8 000 €", 8000),
        ("216 515 km", 216515),
        ("8\xa0000\xa0€", 8000),
        ("12\u202f500 €", 12500),
        ("139,000", 139000),
        ("139,5", 139.5),
        ("12.500", 12500),
        ("1.234,56", 1234.56),
        ("15000", 15000),
        (15000, 15000),
        (14999.5, 14999.5),
    ])
    def test_parse_numbers(self, text, expected):
        assert parse_french_number(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", [None, "", "prix sur demande", True, ["8000"], float("inf"), float("nan"), 10**400])
    def test_unparseable_numbers(self, text):
        assert parse_french_number(text) is None

    @pytest.mark.parametrize("value,expected", [
        (2016, 2016),
        ("2016", 2016),
        ("année 2016", 2016),
        ("03/2016", 2016),
        ("2016-03-01T00:00:00Z", 2016),
        ("inconnue", None),
        (None, None),
        (float("inf"), None),
        (float("nan"), None),
    ])
    def test_parse_year(self, value, expected):
        assert parse_year(value) == expected

    def test_coordinates_keep_sign_and_decimals(self):
        assert parse_coordinate("-1.553") == pytest.approx(-1.553)
        assert parse_coordinate("47,218") == pytest.approx(47.218)
        assert parse_coordinate("nord") is None
        assert parse_coordinate("nan") is None
        assert parse_coordinate("inf") is None


class TestNormalizer:
    """Tests for Normalizer."""

    @pytest.fixture
    def normalizer(self) -> Normalizer:
        return Normalizer(reference_year=REFERENCE_YEAR)

    def test_complete_record(self, normalizer):
        listings = list(normalizer.normalize(_raw([car("1", "12 500 €", "2018", "85 000 km")])))

        assert len(listings) == 1
        listing = listings[0]
        assert listing.source_id == "leboncoin"
        assert listing.native_id == "1"
        assert listing.price == 12500
        assert listing.year == 2018
        assert listing.mileage == 85000
        assert listing.fuel_type == "essence"
        assert listing.gearbox == "manual"
        assert listing.seller_type == "private"
        assert listing.fetched_at == FETCHED_AT
        assert listing.completeness == 1.0

    def test_missing_mileage_is_not_zero(self, normalizer):
        """Unknown mileage stays None and is marked missing."""
        listing = next(normalizer.normalize(_raw([car("1", 12000, 2018, None)])))

        assert listing.mileage is None
        assert listing.field_quality["mileage"] == FieldQuality.MISSING
        assert "mileage" in listing.missing_fields

    def test_zero_mileage_is_parsed(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", 25000, 2024, 0)])))

        assert listing.mileage == 0
        assert listing.field_quality["mileage"] == FieldQuality.PARSED

    def test_unparseable_field_is_invalid(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", 12000, 2018, "beaucoup")])))

        assert listing.mileage is None
        assert listing.field_quality["mileage"] == FieldQuality.INVALID

    def test_non_finite_numbers_are_invalid(self, normalizer):
        records = [car("1", 9000, float("inf"), 40000), car("2", float("nan"), 2018, 40000)]

        listings = list(normalizer.normalize(_raw(records)))

        assert [l.native_id for l in listings] == ["1", "2"]
        assert listings[0].year is None
        assert listings[0].field_quality["year"] == FieldQuality.INVALID
        assert listings[1].price is None
        assert listings[1].field_quality["price"] == FieldQuality.INVALID

    def test_implausible_values_are_invalid(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", "2 500 000 €", 2018, "3 000 000 km")])))

        assert listing.price is None
        assert listing.mileage is None
        assert listing.field_quality["price"] == FieldQuality.INVALID
        assert listing.field_quality["mileage"] == FieldQuality.INVALID

    def test_future_year_is_invalid(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", 12000, REFERENCE_YEAR + 2, 1000)])))

        assert listing.year is None
        assert listing.field_quality["year"] == FieldQuality.INVALID

    def test_record_without_price_and_year_dropped(self, normalizer):
        records = [car("1", None, None, 50000), car("2", 9000, None, 50000)]

        listings = list(normalizer.normalize(_raw(records)))

        assert [l.native_id for l in listings] == ["2"]

    def test_missing_non_critical_field_kept(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", 12000, 2018, 50000, gearbox=None)])))

        assert listing.gearbox is None
        assert listing.field_quality["gearbox"] == FieldQuality.MISSING

    def test_unknown_vocabulary_is_invalid(self, normalizer):
        listing = next(normalizer.normalize(_raw([car("1", 12000, 2018, 50000, fuel="GPL")])))

        assert listing.fuel_type is None
        assert listing.field_quality["fuel_type"] == FieldQuality.INVALID

    def test_missing_id_falls_back_to_url_hash(self, normalizer):
        records = [car(None, 12000, 2018, 50000, url="https://example.test/a")]

        first = next(normalizer.normalize(_raw(records)))
        second = next(normalizer.normalize(_raw(records)))

        assert first.native_id
        assert first.native_id == second.native_id

    def test_fetch_order_follows_raw_position(self, normalizer):
        records = [car("a", 1000, 2010, 1), car("b", None, None, 1), car("c", 2000, 2011, 1)]

        listings = list(normalizer.normalize(_raw(records)))

        assert [(l.native_id, l.fetch_order) for l in listings] == [("a", 0), ("c", 2)]

    def test_failed_result_yields_nothing(self, normalizer):
        raw = RawSourceResult.failure("leboncoin", "timeout", "deadline exceeded")

        assert list(normalizer.normalize(raw)) == []

    def test_normalization_is_idempotent(self, normalizer):
        raw = _raw([
            car("1", "12 500 €", "2018", "85 000 km"),
            car("2", 9000, None, None, first_seen="2024-04-01T10:00:00Z"),
            car(None, "7 900", "2015", "140 000", url=None),
        ])

        first = [l.model_dump() for l in normalizer.normalize(raw)]
        second = [l.model_dump() for l in normalizer.normalize(raw)]

        assert first == second
        assert len(first) == 3

    def test_location_from_coordinates(self, normalizer):
        listing = next(normalizer.normalize(_raw([
            car("1", 12000, 2018, 5000, zip_code=None, lat="48.85", lon="2.35"),
        ])))

        assert listing.latitude == pytest.approx(48.85)
        assert listing.has("location")
