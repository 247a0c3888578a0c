"""
Unit tests for credit rating normalization and ranking.
"""

import pytest

from bond_directory.api.standardization.rating_normalizer import (
    GRADE_LADDER,
    PP_MLD,
    UNRATED,
    WITHDRAWN,
    get_rating_rank,
    is_investment_grade,
    normalize_rating,
    rating_sort_key,
)


class TestNormalizeRating:

    @pytest.mark.unit
    @pytest.mark.parametrize("grade", GRADE_LADDER)
    def test_ladder_grades_are_unchanged(self, grade):
        assert normalize_rating(grade) == grade

    @pytest.mark.unit
    @pytest.mark.parametrize("raw, expected", [
        ("CRISILAAA/STABLE", "AAA"),
        ("INDAA+CE", "AA+"),
        ("BWR BBB+", "BBB+"),
        ("ICRAAAA/STABLE;CRISILAAA/STABLE", "AAA"),
        ("CARE AA- (CE)", "AA-"),
        ("IND AA/Stable", "AA"),
        ("PROVISIONAL CARE A+", "A+"),
        ("CRISIL PP-MLD AAAr", PP_MLD),
        ("ACUITE BBB- STABLE", "BBB-"),
        ("INDIA RATINGS AA", "AA"),
        ("crisil aa+ (so)", "AA+"),
        ("BBB+ CE REAFFIRMED", "BBB+"),
        ("CARE A1+", "A"),
    ])
    def test_agency_strings(self, raw, expected):
        assert normalize_rating(raw) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "WITHDRAWN",
        "Withdrawn",
        "ISSUER NOT COOPERATING",
        "CISSUERNOTCOOPERATING*",
        "PROVISIONAL CARE WITHDRAWN",
        "IND WITHDRAWN",
    ])
    def test_noise_tokens_map_to_withdrawn(self, raw):
        assert normalize_rating(raw) == WITHDRAWN

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["", "   ", None, "/STABLE", ";"])
    def test_empty_input_is_none(self, raw):
        assert normalize_rating(raw) is None

    @pytest.mark.unit
    def test_unrated_token(self):
        assert normalize_rating("Not Rated") == UNRATED

    @pytest.mark.unit
    def test_unrecognized_remainder_returned_verbatim(self):
        assert normalize_rating("CRISIL XYZ") == "XYZ"

    @pytest.mark.unit
    def test_non_string_input_does_not_raise(self):
        assert normalize_rating(12345) == "12345"


class TestRatingRank:

    @pytest.mark.unit
    def test_rank_strictly_increases_down_the_ladder(self):
        ranks = [get_rating_rank(grade) for grade in GRADE_LADDER] + [get_rating_rank(WITHDRAWN)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ranks)

    @pytest.mark.unit
    def test_sentinel_ranks(self):
        assert get_rating_rank("AAA") == 1
        assert get_rating_rank("D") == 20
        assert get_rating_rank(PP_MLD) == 80
        assert get_rating_rank(WITHDRAWN) == 90
        assert get_rating_rank(UNRATED) == 99

    @pytest.mark.unit
    @pytest.mark.parametrize("grade", [None, "XYZ", ""])
    def test_unknown_grades_rank_worst(self, grade):
        assert get_rating_rank(grade) == 99

    @pytest.mark.unit
    def test_sort_key_orders_best_first(self):
        raw = ["CARE BBB", None, "CRISILAAA/STABLE", "WITHDRAWN", "IND AA+"]
        ordered = sorted(raw, key=rating_sort_key)
        assert ordered[:3] == ["CRISILAAA/STABLE", "IND AA+", "CARE BBB"]
        assert ordered[3] == "WITHDRAWN"

    @pytest.mark.unit
    def test_investment_grade_boundary(self):
        assert is_investment_grade("BBB-")
        assert not is_investment_grade("BB+")
        assert not is_investment_grade(None)
