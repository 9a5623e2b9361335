"""Matching routes: listing recommendations and potential buyers."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.infra.database import get_db
from trustbridge.services.matching_service import potential_buyers, recommend_listings

router = APIRouter(prefix="/api/matching", tags=["matching"])


@router.get("/recommendations")
async def recommendations(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await recommend_listings(db, user)


@router.get("/potential-buyers/{listing_id}")
async def buyers_for_listing(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await potential_buyers(db, user, listing_id)
