"""Loads rows for the match scorer and shapes its output for the API."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.config import get_settings
from trustbridge.domain.enums import ListingStatus
from trustbridge.domain.models import Listing, User
from trustbridge.services.buyer_service import (
    list_onboarded_profiles,
    profile_as_scoring_input,
    require_buyer_profile,
)
from trustbridge.services.errors import AuthorizationError, PreconditionError
from trustbridge.services.listing_service import get_listing_or_404, serialize_listing
from trustbridge.services.match_scorer import rank_buyers, rank_listings

logger = logging.getLogger(__name__)


def listing_as_scoring_input(listing: Listing) -> dict:
    return {
        "id": listing.id,
        "status": listing.status,
        "asking_price": listing.asking_price,
        "business_type": listing.business_type,
        "geography": listing.geography,
    }


async def recommend_listings(db: AsyncSession, user: User) -> list[dict]:
    """Top approved listings for the caller's buyer profile."""
    profile = await require_buyer_profile(db, user)
    if not profile.onboarding_completed:
        raise PreconditionError(
            "Complete buyer onboarding to receive recommendations",
            code="ONBOARDING_NOT_COMPLETED",
        )

    result = await db.execute(
        select(Listing)
        .where(
            Listing.status == ListingStatus.APPROVED.value,
            Listing.seller_id != user.id,
        )
        .order_by(Listing.created_at.desc())
    )
    listings = {row.id: row for row in result.scalars().all()}

    ranked = rank_listings(
        profile_as_scoring_input(profile),
        [listing_as_scoring_input(row) for row in listings.values()],
        limit=get_settings().match_result_limit,
    )
    logger.info("Recommendations for %s: %d of %d listings", user.id, len(ranked), len(listings))
    return [
        {
            "listing": serialize_listing(listings[item["listing"]["id"]]),
            "matchScore": item["score"],
            "matchReasons": item["reasons"],
        }
        for item in ranked
    ]


async def potential_buyers(db: AsyncSession, user: User, listing_id: str) -> list[dict]:
    """Onboarded buyers scored against one of the caller's listings."""
    listing = await get_listing_or_404(db, listing_id)
    if listing.seller_id != user.id:
        raise AuthorizationError("Only the listing owner can view potential buyers", code="FORBIDDEN")

    profiles = await list_onboarded_profiles(db, exclude_user_id=user.id)
    by_user = {p.user_id: p for p in profiles}
    inputs = [dict(profile_as_scoring_input(p), user_id=p.user_id) for p in profiles]

    ranked = rank_buyers(
        listing_as_scoring_input(listing),
        inputs,
        limit=get_settings().match_result_limit,
    )

    items = []
    for item in ranked:
        buyer_id = item["profile"]["user_id"]
        buyer = await db.get(User, buyer_id)
        profile = by_user[buyer_id]
        items.append({
            "buyerId": buyer_id,
            "buyerName": buyer.name if buyer else None,
            "matchScore": item["score"],
            "matchReasons": item["reasons"],
            "budgetMin": profile.budget_min,
            "budgetMax": profile.budget_max,
        })
    return items
