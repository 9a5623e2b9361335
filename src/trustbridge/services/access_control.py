"""Access and gating rules for listings.

Two decisions live here:
    - whether a viewer may see a listing's confidential fields
      (business URL, brand name)
    - whether a user may create a listing at all

The predicates are pure; the ``resolve_*`` helpers load the rows they need.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import MembershipStatus, VerificationStatus
from trustbridge.domain.models import (
    BuyerVerification,
    Listing,
    NdaAgreement,
    User,
    UserMembership,
    UserProfile,
)
from trustbridge.services.errors import AuthorizationError

logger = logging.getLogger(__name__)

CONFIDENTIAL_FIELDS = ("businessUrl", "brandName")

ACTIVE_MEMBERSHIP_STATUSES = {MembershipStatus.ACTIVE.value, MembershipStatus.TRIALING.value}

PROFILE_TYPE_TEACHER = "Business Teacher"
PROFILE_TYPE_VIEWER = "Viewer"


@dataclass
class ListingAccess:
    """What one viewer may see of one listing."""

    has_signed_nda: bool = False
    is_verified_buyer: bool = False
    can_view_confidential: bool = False


@dataclass
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    profile_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Confidential fields
# ---------------------------------------------------------------------------


def can_view_confidential(has_signed_nda: bool, verification_status: Optional[str]) -> bool:
    """True iff the viewer signed this listing's NDA AND is a verified buyer."""
    return bool(has_signed_nda) and verification_status == VerificationStatus.VERIFIED.value


async def resolve_confidential_access(
    db: AsyncSession,
    viewer: Optional[User],
    listing: Listing,
) -> ListingAccess:
    """Load NDA + verification state for ``viewer`` and decide access.

    Anonymous viewers get nothing. The listing owner and admins always see
    their own confidential fields.
    """
    if viewer is None:
        return ListingAccess()

    if viewer.id == listing.seller_id or viewer.role == "admin":
        return ListingAccess(can_view_confidential=True)

    nda = await db.scalar(
        select(NdaAgreement.id).where(
            NdaAgreement.user_id == viewer.id,
            NdaAgreement.listing_id == listing.id,
        )
    )
    verification_status = await db.scalar(
        select(BuyerVerification.verification_status).where(BuyerVerification.user_id == viewer.id)
    )

    has_signed_nda = nda is not None
    is_verified = verification_status == VerificationStatus.VERIFIED.value
    return ListingAccess(
        has_signed_nda=has_signed_nda,
        is_verified_buyer=is_verified,
        can_view_confidential=can_view_confidential(has_signed_nda, verification_status),
    )


def redact_listing(data: dict, access: ListingAccess) -> dict:
    """Null the confidential values while keeping every key in the payload."""
    if access.can_view_confidential:
        return data
    redacted = dict(data)
    for field in CONFIDENTIAL_FIELDS:
        redacted[field] = None
    return redacted


# ---------------------------------------------------------------------------
# Listing creation
# ---------------------------------------------------------------------------


def can_create_listing(
    membership: Optional[UserMembership],
    profile: Optional[UserProfile],
    current_listing_count: int = 0,
) -> PermissionDecision:
    """Sellers need an active membership and must not be teacher-verified.

    Teachers and sellers are mutually exclusive roles, so a teacher with a
    paid plan is still refused.
    """
    if profile is not None and profile.is_teacher_verified:
        return PermissionDecision(
            allowed=False,
            reason="Business Teachers cannot create listings",
            code="INSUFFICIENT_PERMISSIONS",
            profile_type=PROFILE_TYPE_TEACHER,
        )

    if membership is None or membership.status not in ACTIVE_MEMBERSHIP_STATUSES:
        return PermissionDecision(
            allowed=False,
            reason="An active membership is required to create listings",
            code="INSUFFICIENT_PERMISSIONS",
            profile_type=PROFILE_TYPE_VIEWER,
        )

    if membership.max_listings is not None and current_listing_count >= membership.max_listings:
        return PermissionDecision(
            allowed=False,
            reason=f"Your {membership.plan} plan allows {membership.max_listings} listings",
            code="LISTING_LIMIT_REACHED",
        )

    return PermissionDecision(allowed=True)


async def ensure_can_create_listing(db: AsyncSession, user: User) -> None:
    """Raise AuthorizationError with a tailored code when ``user`` may not list."""
    membership = await db.scalar(select(UserMembership).where(UserMembership.user_id == user.id))
    profile = await db.scalar(select(UserProfile).where(UserProfile.user_id == user.id))
    count = await db.scalar(select(func.count(Listing.id)).where(Listing.seller_id == user.id))

    decision = can_create_listing(membership, profile, count or 0)
    if decision.allowed:
        return

    logger.info("Listing creation denied for user %s: %s", user.id, decision.code)
    extra = {"profileType": decision.profile_type} if decision.profile_type else None
    raise AuthorizationError(decision.reason, code=decision.code, extra=extra)
