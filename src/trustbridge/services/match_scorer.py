"""Deterministic buyer/listing match scorer.

Pure-function module: NO database access.

Computes a 0-100 compatibility score from three weighted dimensions:
    - Budget    (40): asking price against the buyer's budget range, banded
    - Industry  (40): binary case-insensitive substring match
    - Geography (20): binary case-insensitive substring match

All inputs are plain dicts so the scorer can be called from the matching
routes, from tests, or from offline batch jobs without touching ORM objects.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

# ── Weights ──────────────────────────────────────────────────────────────────

BUDGET_POINTS = 40
INDUSTRY_POINTS = 40
GEOGRAPHY_POINTS = 20

# Budget bands, checked in order: (min multiplier, max multiplier, points, reason)
BUDGET_BANDS: list[tuple[float, float, int, str]] = [
    (0.8, 1.2, 30, "Close budget match (within 20%)"),
    (0.5, 1.5, 20, "Moderate budget match (within 50%)"),
    (0.0, 2.0, 10, "Partial budget match (within 100%)"),
]

PERFECT_BUDGET_REASON = "Perfect budget match"

DEFAULT_LIMIT = 10


# ── Helpers ──────────────────────────────────────────────────────────────────

def _to_number(value) -> Optional[float]:
    """Best-effort numeric coercion. Malformed values read as absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


def _terms(values) -> list[str]:
    """Normalise a list-ish field into lower-cased non-empty strings."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return [str(v).strip().lower() for v in values if v is not None and str(v).strip()]


def _substring_either_way(terms: Iterable[str], target: Optional[str]) -> bool:
    if not target:
        return False
    needle = target.strip().lower()
    if not needle:
        return False
    return any(term in needle or needle in term for term in terms)


# ── Sub-scores ───────────────────────────────────────────────────────────────

def compute_budget_score(budget_min, budget_max, asking_price) -> tuple[int, Optional[str]]:
    """Budget sub-score (0-40) and its reason.

    Rules
    -----
    * budget_min <= price <= budget_max (inclusive)     → 40
    * within [0.8 × min, 1.2 × max]                     → 30
    * within [0.5 × min, 1.5 × max]                     → 20
    * within [0, 2.0 × max]                             → 10
    * otherwise                                         → 0

    First matching band wins. A missing budget_min or asking price reads as
    0; a missing or zero budget_max is unbounded.
    """
    price = _to_number(asking_price) or 0.0
    low = _to_number(budget_min) or 0.0
    high = _to_number(budget_max) or math.inf

    if low <= price <= high:
        return BUDGET_POINTS, PERFECT_BUDGET_REASON

    for min_mult, max_mult, points, reason in BUDGET_BANDS:
        if low * min_mult <= price <= high * max_mult:
            return points, reason

    return 0, None


def compute_industry_score(industries, business_type) -> tuple[int, Optional[str]]:
    """40 if any buyer industry and the business type contain one another."""
    if _substring_either_way(_terms(industries), business_type):
        return INDUSTRY_POINTS, f"Industry match: {business_type}"
    return 0, None


def compute_geography_score(regions, geography) -> tuple[int, Optional[str]]:
    """20 if any buyer region and the listing geography contain one another."""
    if _substring_either_way(_terms(regions), geography):
        return GEOGRAPHY_POINTS, f"Location match: {geography}"
    return 0, None


# ── Main scorer ──────────────────────────────────────────────────────────────

def score_match(buyer_profile: dict, listing: dict) -> dict:
    """Score one buyer profile against one listing.

    Parameters
    ----------
    buyer_profile
        Keys: budget_min, budget_max, industries, regions.
    listing
        Keys: asking_price, business_type, geography.

    Returns
    -------
    dict with ``score`` (int, 0-100), ``reasons`` (budget → industry →
    geography, only non-zero dimensions) and ``breakdown`` per dimension.
    """
    budget, budget_reason = compute_budget_score(
        buyer_profile.get("budget_min"),
        buyer_profile.get("budget_max"),
        listing.get("asking_price"),
    )
    industry, industry_reason = compute_industry_score(
        buyer_profile.get("industries"), listing.get("business_type")
    )
    geography, geography_reason = compute_geography_score(
        buyer_profile.get("regions"), listing.get("geography")
    )

    reasons = [r for r in (budget_reason, industry_reason, geography_reason) if r]

    return {
        "score": budget + industry + geography,
        "reasons": reasons,
        "breakdown": {
            "budget": budget,
            "industry": industry,
            "geography": geography,
        },
    }


def rank_listings(
    buyer_profile: dict,
    listings: list[dict],
    limit: int = DEFAULT_LIMIT,
) -> list[dict]:
    """Score approved listings for a buyer, best first.

    Ties keep input order (``sorted`` is stable). Each result is
    ``{"listing", "score", "reasons"}``.
    """
    scored = []
    for listing in listings:
        if listing.get("status") != "approved":
            continue
        result = score_match(buyer_profile, listing)
        scored.append({"listing": listing, "score": result["score"], "reasons": result["reasons"]})

    scored = sorted(scored, key=lambda item: item["score"], reverse=True)
    return scored[:limit]


def rank_buyers(
    listing: dict,
    buyer_profiles: list[dict],
    limit: int = DEFAULT_LIMIT,
    min_score: int = 1,
) -> list[dict]:
    """Score buyer profiles for a listing, best first, dropping weak matches.

    Each result is ``{"profile", "score", "reasons"}``.
    """
    scored = []
    for profile in buyer_profiles:
        result = score_match(profile, listing)
        if result["score"] < min_score:
            continue
        scored.append({"profile": profile, "score": result["score"], "reasons": result["reasons"]})

    scored = sorted(scored, key=lambda item: item["score"], reverse=True)
    return scored[:limit]
