"""Admin routes: listing moderation, buyer verification review, account flags."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import require_role
from trustbridge.domain.enums import ModerationAction
from trustbridge.domain.models import User
from trustbridge.domain.schemas import (
    MembershipResponse,
    MembershipUpdate,
    ModerationRequest,
    ProfileResponse,
    TeacherVerificationUpdate,
    VerificationReview,
)
from trustbridge.infra.database import get_db
from trustbridge.services.access_control import ListingAccess
from trustbridge.services.account_service import set_membership, set_teacher_verification
from trustbridge.services.buyer_service import review_verification, serialize_verification
from trustbridge.services.listing_service import (
    list_pending_listings,
    moderate_listing,
    serialize_listing,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])

# Admins review the full listing, confidential fields included
_FULL_ACCESS = ListingAccess(can_view_confidential=True)


@router.get("/listings/pending")
async def pending_listings(
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    listings = await list_pending_listings(db)
    return [serialize_listing(listing, _FULL_ACCESS) for listing in listings]


@router.post("/listings/{listing_id}/approve")
async def approve_listing(
    listing_id: str,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    listing = await moderate_listing(db, admin, listing_id, ModerationAction.APPROVE)
    return serialize_listing(listing, _FULL_ACCESS)


@router.post("/listings/{listing_id}/reject")
async def reject_listing(
    listing_id: str,
    data: ModerationRequest,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    listing = await moderate_listing(db, admin, listing_id, ModerationAction.REJECT, reason=data.reason)
    return serialize_listing(listing, _FULL_ACCESS)


@router.put("/buyer-verifications/{user_id}")
async def review_buyer_verification(
    user_id: str,
    data: VerificationReview,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    verification = await review_verification(
        db,
        admin,
        user_id,
        data.status,
        identity_verified=data.identity_verified,
        proof_of_funds_verified=data.proof_of_funds_verified,
        notes=data.notes,
    )
    return serialize_verification(verification)


@router.put("/users/{user_id}/membership")
async def update_membership(
    user_id: str,
    data: MembershipUpdate,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    membership = await set_membership(db, user_id, data)
    return MembershipResponse.model_validate(membership).to_json()


@router.put("/users/{user_id}/teacher-verification")
async def update_teacher_verification(
    user_id: str,
    data: TeacherVerificationUpdate,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    profile = await set_teacher_verification(db, admin, user_id, data.is_teacher_verified)
    return ProfileResponse.model_validate(profile).to_json()
