"""
Tests for listing transformation and enrichment-map extraction.
"""

from datetime import date, datetime

import pytest

from bond_directory.api.standardization.data_transformer import (
    extract_credit_rating_map,
    extract_interest_rate_map,
    extract_issuer_type_map,
    extract_issuer_wise_map,
    extract_restructured_set,
    transform_listed_securities,
    transform_listed_security,
)
from bond_directory.api.standardization.field_mapper import FieldMapper
from bond_directory.core.exceptions import RecordValidationError
from bond_directory.db.models import (
    ActiveStatus,
    BondType,
    CouponFrequency,
    CouponType,
    OwnershipType,
)

TODAY = date(2025, 1, 1)


@pytest.fixture
def mapper(tmp_path):
    return FieldMapper(config_path=str(tmp_path / "field_mappings.yaml"))


class TestTransformListedSecurity:

    @pytest.mark.unit
    def test_private_issuer_listing(self, sample_listing_rows, mapper):
        bond = transform_listed_security(sample_listing_rows[0], "Active", mapper=mapper, today=TODAY)

        assert bond.isin == "INE002A07809"
        assert bond.issuer.id == "reliance-industries-ltd"
        assert bond.issuer.name == "Reliance Industries Limited"
        assert bond.issuer.sector == "Oil & Gas"
        assert bond.issuer.ownership_type == OwnershipType.PRIVATE
        assert bond.issuer.latest_rating == "AAA"
        assert bond.coupon_rate == 8.95
        assert bond.coupon_type == CouponType.FIXED
        assert bond.coupon_frequency == CouponFrequency.ANNUAL
        assert bond.issue_date == datetime(2018, 11, 9)
        assert bond.maturity_date == datetime(2035, 11, 9)
        assert bond.face_value == 1_000_000.0
        assert bond.credit_rating == "ICRAAAA/STABLE;CRISILAAA/STABLE"
        assert bond.normalized_rating == "AAA"
        assert [entry.value for entry in bond.rating_history] == ["AAA"]
        assert bond.active_status == ActiveStatus.ACTIVE
        assert bond.bond_type == BondType.CORPORATE
        assert bond.data_source == "IndiaBondInfo-Active"
        assert bond.api_response_raw == sample_listing_rows[0]

    @pytest.mark.unit
    def test_psu_floating_listing(self, sample_listing_rows, mapper):
        bond = transform_listed_security(sample_listing_rows[1], "Active", mapper=mapper, today=TODAY)

        assert bond.issuer.ownership_type == OwnershipType.PSU
        assert bond.bond_type == BondType.PSU
        assert bond.coupon_type == CouponType.FLOATING
        assert bond.coupon_frequency == CouponFrequency.SEMI_ANNUAL
        assert bond.issue_date == datetime(2021, 9, 1)
        assert bond.normalized_rating == "AA+"
        assert bond.face_value is None

    @pytest.mark.unit
    def test_missing_isin_rejected(self, sample_listing_rows, mapper):
        with pytest.raises(RecordValidationError):
            transform_listed_security(sample_listing_rows[2], mapper=mapper)

    @pytest.mark.unit
    def test_status_derived_from_maturity_over_endpoint_hint(self, mapper):
        raw = {"ISIN": "INE001A07AB1", "Name of Issuer": "Old Issuer Ltd", "maturityDate": "01-06-2020"}

        bond = transform_listed_security(raw, "Active", mapper=mapper, today=TODAY)

        assert bond.active_status == ActiveStatus.MATURED
        assert bond.data_source == "IndiaBondInfo-Matured"

    @pytest.mark.unit
    def test_endpoint_hint_used_without_maturity(self, mapper):
        raw = {"isin": "ine001a07ab1", "issuerName": "Old Issuer Ltd"}

        bond = transform_listed_security(raw, "Matured", source="IndiaBondInfo-listed", mapper=mapper)

        assert bond.isin == "INE001A07AB1"
        assert bond.active_status == ActiveStatus.MATURED
        assert bond.data_source == "IndiaBondInfo-listed"

    @pytest.mark.unit
    def test_unrated_listing(self, mapper):
        bond = transform_listed_security({"ISIN": "INE001A07AB1"}, mapper=mapper)

        assert bond.credit_rating is None
        assert bond.normalized_rating == "Unrated"
        assert bond.rating_history == []
        assert bond.coupon_rate is None
        assert bond.issuer.id == "unknown"
        assert bond.issuer.ownership_type == OwnershipType.UNKNOWN

    @pytest.mark.unit
    def test_batch_isolates_bad_records(self, sample_listing_rows, mapper):
        bonds, rejected = transform_listed_securities(sample_listing_rows, "Active", mapper=mapper, today=TODAY)

        assert [bond.isin for bond in bonds] == ["INE002A07809", "INE062A08264"]
        assert len(rejected) == 1
        assert rejected[0].details["index"] == 2


class TestEnrichmentMaps:

    @pytest.mark.unit
    def test_credit_rating_map(self, mapper):
        enrichment = extract_credit_rating_map([
            {"ISIN": "INE002A07809", "Credit Rating": "CARE AA+", "Rating Agency": "CARE"},
            {"ISIN": "bad", "Credit Rating": "AAA"},
            {"ISIN": "INE062A08264", "Credit Rating": ""},
        ], mapper)

        assert enrichment.by_isin == {"INE002A07809": {"credit_rating": "CARE AA+", "rating_agency": "CARE"}}
        assert enrichment.skipped == 2
        assert len(enrichment) == 1

    @pytest.mark.unit
    def test_interest_rate_map(self, mapper):
        enrichment = extract_interest_rate_map([
            {"ISIN": "INE002A07809", "Interest Rate Range": "8% - 9%", "Coupon Rate (%)": "8.95%"},
        ], mapper)

        assert enrichment.lookup("INE002A07809") == {"interest_rate_category": "8% - 9%", "coupon_rate": 8.95}

    @pytest.mark.unit
    def test_issuer_type_map_keys_by_isin_and_issuer(self, mapper):
        enrichment = extract_issuer_type_map([
            {"ISIN": "INE062A08264", "Name of Issuer": "State Bank of India", "Issuer Type": "Central PSU"},
            {"Name of Issuer": "NTPC Limited", "Issuer Type": "Central PSU"},
            {"ISIN": "INE002A07809"},
        ], mapper)

        assert enrichment.lookup("INE062A08264")["issuer_type"] == "Central PSU"
        assert enrichment.lookup("INE733E07KL3", "ntpc-ltd")["issuer"] == {"issuer_type": "Central PSU"}
        assert enrichment.skipped == 1

    @pytest.mark.unit
    def test_issuer_wise_map(self, mapper):
        enrichment = extract_issuer_wise_map([
            {"Name of Issuer": "Reliance Industries Ltd.", "Business Sector": "Energy", "No. of ISINs": "12"},
            {"Name of Issuer": ""},
        ], mapper)

        assert enrichment.lookup("INE002A07809", "reliance-industries-ltd") == {
            "issuer": {
                "name": "Reliance Industries Ltd.",
                "sector": "Energy",
                "issuer_type": None,
                "total_bonds": 12,
            }
        }
        assert enrichment.skipped == 1

    @pytest.mark.unit
    def test_restructured_set(self, mapper):
        enrichment = extract_restructured_set([{"ISIN": "INE002A07809"}, {"ISIN": None}], mapper)

        assert enrichment.lookup("INE002A07809") == {"is_restructured": True}
        assert enrichment.lookup("INE062A08264") is None
        assert enrichment.skipped == 1
