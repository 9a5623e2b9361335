"""Unit tests for the deterministic buyer/listing match scorer."""

from __future__ import annotations

import pytest

from trustbridge.services.match_scorer import (
    BUDGET_POINTS,
    DEFAULT_LIMIT,
    GEOGRAPHY_POINTS,
    INDUSTRY_POINTS,
    compute_budget_score,
    compute_geography_score,
    compute_industry_score,
    rank_buyers,
    rank_listings,
    score_match,
)


# ---------------------------------------------------------------------------
# Helpers to build minimal dicts
# ---------------------------------------------------------------------------

def _buyer(budget_min=400_000, budget_max=600_000, industries=("SaaS",), regions=("Europe",)):
    return {
        "budget_min": budget_min,
        "budget_max": budget_max,
        "industries": list(industries),
        "regions": list(regions),
    }


def _listing(asking_price=500_000, business_type="SaaS", geography="Western Europe",
             status="approved", id="l-1"):
    return {
        "id": id,
        "status": status,
        "asking_price": asking_price,
        "business_type": business_type,
        "geography": geography,
    }


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class TestBudgetScore:

    @pytest.mark.parametrize("price", [400_000, 500_000, 600_000])
    def test_inclusive_range_scores_full_points(self, price):
        score, reason = compute_budget_score(400_000, 600_000, price)
        assert score == BUDGET_POINTS
        assert reason == "Perfect budget match"

    @pytest.mark.parametrize(
        "price,expected,reason",
        [
            (700_000, 30, "Close budget match (within 20%)"),
            (320_000, 30, "Close budget match (within 20%)"),
            (900_000, 20, "Moderate budget match (within 50%)"),
            (200_000, 20, "Moderate budget match (within 50%)"),
            (1_200_000, 10, "Partial budget match (within 100%)"),
            (100_000, 10, "Partial budget match (within 100%)"),
            (1_200_001, 0, None),
        ],
    )
    def test_bands_first_match_wins(self, price, expected, reason):
        assert compute_budget_score(400_000, 600_000, price) == (expected, reason)

    def test_missing_budget_min_reads_as_zero(self):
        assert compute_budget_score(None, 600_000, 500_000) == (BUDGET_POINTS, "Perfect budget match")

    def test_missing_budget_min_still_capped_by_max(self):
        assert compute_budget_score(None, 600_000, 850_000) == (20, "Moderate budget match (within 50%)")

    def test_missing_budget_max_is_unbounded(self):
        assert compute_budget_score(400_000, None, 50_000_000)[0] == BUDGET_POINTS

    @pytest.mark.parametrize("price", [None, "not-a-number", float("nan")])
    def test_missing_or_malformed_price_reads_as_zero(self, price):
        assert compute_budget_score(400_000, 600_000, price) == (10, "Partial budget match (within 100%)")

    def test_numeric_strings_are_accepted(self):
        assert compute_budget_score("400000", "600000", "450000")[0] == BUDGET_POINTS


# ---------------------------------------------------------------------------
# Industry / geography
# ---------------------------------------------------------------------------


class TestBinarySubScores:

    def test_industry_no_partial_credit(self):
        assert compute_industry_score(["ecommerce"], "SaaS") == (0, None)

    @pytest.mark.parametrize(
        "industries,business_type",
        [(["saas"], "SaaS"), (["SaaS"], "B2B SaaS"), (["Content Sites"], "content")],
    )
    def test_industry_substring_either_direction(self, industries, business_type):
        score, reason = compute_industry_score(industries, business_type)
        assert score == INDUSTRY_POINTS
        assert reason == f"Industry match: {business_type}"

    def test_geography_substring_match(self):
        assert compute_geography_score(["europe"], "Western Europe") == (
            GEOGRAPHY_POINTS,
            "Location match: Western Europe",
        )

    @pytest.mark.parametrize("regions", [[], None, [""], ["  "]])
    def test_empty_regions_never_match(self, regions):
        assert compute_geography_score(regions, "Europe") == (0, None)

    def test_missing_listing_geography(self):
        assert compute_geography_score(["Europe"], None) == (0, None)


# ---------------------------------------------------------------------------
# Full scenarios
# ---------------------------------------------------------------------------


class TestScoreMatch:

    def test_perfect_match_scores_100(self):
        result = score_match(_buyer(), _listing())
        assert result["score"] == 100
        assert result["reasons"] == [
            "Perfect budget match",
            "Industry match: SaaS",
            "Location match: Western Europe",
        ]
        assert result["breakdown"] == {"budget": 40, "industry": 40, "geography": 20}

    def test_max_only_budget_earns_budget_points(self):
        buyer = _buyer(budget_min=None, budget_max=600_000, industries=(), regions=())
        result = score_match(buyer, _listing(asking_price=500_000))
        assert result["score"] == 40
        assert result["reasons"] == ["Perfect budget match"]

    def test_far_over_budget_keeps_industry_and_geography(self):
        result = score_match(_buyer(), _listing(asking_price=2_000_000))
        assert result["breakdown"]["budget"] == 0
        assert result["score"] == 60

    def test_far_over_budget_with_nothing_else_scores_zero(self):
        listing = _listing(asking_price=2_000_000, business_type="Ecommerce", geography="Asia")
        result = score_match(_buyer(), listing)
        assert result["score"] == 0
        assert result["reasons"] == []

    def test_score_is_bounded(self):
        result = score_match(_buyer(industries=("SaaS", "Software")), _listing())
        assert 0 <= result["score"] <= 100


class TestRanking:

    def test_only_approved_listings_are_ranked(self):
        listings = [
            _listing(id="draft", status="draft"),
            _listing(id="approved"),
            _listing(id="rejected", status="rejected"),
        ]
        ranked = rank_listings(_buyer(), listings)
        assert [item["listing"]["id"] for item in ranked] == ["approved"]

    def test_descending_with_stable_ties(self):
        listings = [
            _listing(id="a", geography="Asia"),
            _listing(id="b"),
            _listing(id="c", geography="Asia"),
            _listing(id="d"),
        ]
        ranked = rank_listings(_buyer(), listings)
        assert [item["listing"]["id"] for item in ranked] == ["b", "d", "a", "c"]
        assert [item["score"] for item in ranked] == [100, 100, 80, 80]

    def test_capped_to_limit(self):
        listings = [_listing(id=str(i)) for i in range(DEFAULT_LIMIT + 5)]
        assert len(rank_listings(_buyer(), listings)) == DEFAULT_LIMIT
        assert len(rank_listings(_buyer(), listings, limit=3)) == 3

    def test_rank_buyers_drops_zero_scores(self):
        profiles = [
            dict(_buyer(), user_id="match"),
            dict(
                _buyer(budget_min=10_000, budget_max=20_000, industries=("Fintech",), regions=("Asia",)),
                user_id="none",
            ),
        ]
        ranked = rank_buyers(_listing(), profiles)
        assert [item["profile"]["user_id"] for item in ranked] == ["match"]
