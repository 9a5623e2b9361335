"""Account-level records maintained by admins: membership and teacher verification."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import MembershipStatus
from trustbridge.domain.models import User, UserMembership, UserProfile
from trustbridge.domain.schemas import MembershipResponse, MembershipUpdate, ProfileResponse
from trustbridge.services.errors import NotFoundError, ValidationError
from trustbridge.services.transitions import utcnow

logger = logging.getLogger(__name__)


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


async def get_membership(db: AsyncSession, user_id: str) -> Optional[UserMembership]:
    return await db.scalar(select(UserMembership).where(UserMembership.user_id == user_id))


async def get_profile(db: AsyncSession, user_id: str) -> Optional[UserProfile]:
    return await db.scalar(select(UserProfile).where(UserProfile.user_id == user_id))


async def account_summary(db: AsyncSession, user: User) -> dict:
    """``profile`` and ``membership`` blocks for ``/api/auth/me``."""
    profile = await get_profile(db, user.id)
    membership = await get_membership(db, user.id)
    return {
        "profile": ProfileResponse.model_validate(profile).to_json() if profile else None,
        "membership": MembershipResponse.model_validate(membership).to_json() if membership else None,
    }


async def set_membership(db: AsyncSession, user_id: str, payload: MembershipUpdate) -> UserMembership:
    await _get_user_or_404(db, user_id)

    if payload.status is not None and payload.status not in {s.value for s in MembershipStatus}:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(s.value for s in MembershipStatus)}",
            code="INVALID_STATUS",
        )
    if payload.max_listings is not None and payload.max_listings < 0:
        raise ValidationError("maxListings must be non-negative", code="INVALID_MAX_LISTINGS")

    membership = await get_membership(db, user_id)
    if membership is None:
        membership = UserMembership(user_id=user_id, started_at=utcnow())
        db.add(membership)

    if payload.plan is not None:
        membership.plan = payload.plan
    if payload.status is not None:
        membership.status = payload.status
        membership.canceled_at = utcnow() if payload.status == MembershipStatus.CANCELED.value else None
    if "max_listings" in payload.model_fields_set:
        membership.max_listings = payload.max_listings

    await db.commit()
    await db.refresh(membership)
    logger.info("Membership for user %s: plan=%s status=%s", user_id, membership.plan, membership.status)
    return membership


async def set_teacher_verification(
    db: AsyncSession, admin: User, user_id: str, is_teacher_verified: bool
) -> UserProfile:
    await _get_user_or_404(db, user_id)

    profile = await get_profile(db, user_id)
    if profile is None:
        profile = UserProfile(user_id=user_id)
        db.add(profile)

    profile.is_teacher_verified = is_teacher_verified
    profile.teacher_verified_at = utcnow() if is_teacher_verified else None
    profile.teacher_verified_by = admin.id if is_teacher_verified else None

    await db.commit()
    await db.refresh(profile)
    logger.info("Teacher verification for user %s set to %s", user_id, is_teacher_verified)
    return profile
