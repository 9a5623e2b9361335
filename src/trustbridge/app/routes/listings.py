"""Listing routes: search, CRUD and submission for review."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep, get_optional_user_dep
from trustbridge.domain.enums import ListingStatus
from trustbridge.domain.models import User
from trustbridge.domain.schemas import ListingWrite
from trustbridge.infra.database import get_db
from trustbridge.services.access_control import resolve_confidential_access
from trustbridge.services.errors import NotFoundError
from trustbridge.services.listing_service import (
    create_listing,
    delete_listing,
    get_listing_or_404,
    list_listings,
    serialize_listing,
    submit_listing,
    update_listing,
)

router = APIRouter(prefix="/api/listings", tags=["listings"])


@router.get("")
async def search_listings(
    business_type: Optional[str] = Query(None, alias="businessType"),
    min_price: Optional[int] = Query(None, alias="minPrice"),
    max_price: Optional[int] = Query(None, alias="maxPrice"),
    min_revenue: Optional[int] = Query(None, alias="minRevenue"),
    max_revenue: Optional[int] = Query(None, alias="maxRevenue"),
    geography: Optional[str] = None,
    verified_only: bool = Query(False, alias="verifiedOnly"),
    under_loi: Optional[bool] = Query(None, alias="underLoi"),
    search: Optional[str] = None,
    seller_id: Optional[str] = Query(None, alias="sellerId"),
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    viewer: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Public listing search. Confidential fields are always null here."""
    listings = await list_listings(
        db,
        viewer=viewer,
        business_type=business_type,
        min_price=min_price,
        max_price=max_price,
        min_revenue=min_revenue,
        max_revenue=max_revenue,
        geography=geography,
        verified_only=verified_only,
        under_loi=under_loi,
        search=search,
        seller_id=seller_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return [serialize_listing(listing) for listing in listings]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create(
    data: ListingWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    listing = await create_listing(db, user, data)
    access = await resolve_confidential_access(db, user, listing)
    return serialize_listing(listing, access)


@router.get("/{listing_id}")
async def get_listing(
    listing_id: str,
    viewer: Optional[User] = Depends(get_optional_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Listing detail with confidential fields gated on NDA + verification."""
    listing = await get_listing_or_404(db, listing_id)

    if listing.status != ListingStatus.APPROVED.value:
        is_owner = viewer is not None and viewer.id == listing.seller_id
        is_admin = viewer is not None and viewer.role == "admin"
        if not (is_owner or is_admin):
            raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")

    access = await resolve_confidential_access(db, viewer, listing)
    data = serialize_listing(listing, access)
    data.update({
        "hasSignedNda": access.has_signed_nda,
        "isVerifiedBuyer": access.is_verified_buyer,
        "canViewConfidential": access.can_view_confidential,
    })
    return data


@router.put("/{listing_id}")
async def update(
    listing_id: str,
    data: ListingWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    listing = await update_listing(db, user, listing_id, data)
    access = await resolve_confidential_access(db, user, listing)
    return serialize_listing(listing, access)


@router.delete("/{listing_id}")
async def delete(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_listing(db, user, listing_id)
    return {"message": "Listing deleted", "id": listing_id}


@router.post("/{listing_id}/submit")
async def submit(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    listing = await submit_listing(db, user, listing_id)
    access = await resolve_confidential_access(db, user, listing)
    return serialize_listing(listing, access)
