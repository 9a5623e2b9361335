"""Buyer-side records: acquisition profile and identity/proof-of-funds verification."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import NotificationType, VerificationStatus
from trustbridge.domain.models import BuyerProfile, BuyerVerification, User
from trustbridge.domain.schemas import BuyerProfileResponse, BuyerProfileWrite, VerificationResponse
from trustbridge.services.errors import ConflictError, NotFoundError, ValidationError
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Buyer profile
# ---------------------------------------------------------------------------


def serialize_profile(profile: BuyerProfile) -> dict:
    return BuyerProfileResponse.model_validate(profile).to_json()


def profile_as_scoring_input(profile: BuyerProfile) -> dict:
    """Shape a profile the way the match scorer reads it."""
    return {
        "budget_min": profile.budget_min,
        "budget_max": profile.budget_max,
        "industries": profile.industries or [],
        "regions": profile.regions or [],
    }


def _check_budget(budget_min: Optional[int], budget_max: Optional[int]) -> None:
    if budget_min is not None and budget_min < 0:
        raise ValidationError("budgetMin must be non-negative", code="INVALID_BUDGET_MIN")
    if budget_max is not None and budget_max < 0:
        raise ValidationError("budgetMax must be non-negative", code="INVALID_BUDGET_MAX")
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise ValidationError("budgetMin cannot exceed budgetMax", code="INVALID_BUDGET_RANGE")


async def get_buyer_profile(db: AsyncSession, user_id: str) -> Optional[BuyerProfile]:
    return await db.scalar(select(BuyerProfile).where(BuyerProfile.user_id == user_id))


async def require_buyer_profile(db: AsyncSession, user: User) -> BuyerProfile:
    profile = await get_buyer_profile(db, user.id)
    if not profile:
        raise NotFoundError("Buyer profile not found", code="BUYER_PROFILE_NOT_FOUND")
    return profile


async def create_buyer_profile(db: AsyncSession, user: User, payload: BuyerProfileWrite) -> BuyerProfile:
    if await get_buyer_profile(db, user.id):
        raise ConflictError("Buyer profile already exists", code="PROFILE_ALREADY_EXISTS")

    values = payload.model_dump(include=payload.provided())
    _check_budget(values.get("budget_min"), values.get("budget_max"))

    profile = BuyerProfile(
        user_id=user.id,
        budget_min=values.get("budget_min"),
        budget_max=values.get("budget_max"),
        industries=values.get("industries") or [],
        regions=values.get("regions") or [],
        proof_of_funds_document=values.get("proof_of_funds_document"),
        onboarding_completed=bool(values.get("onboarding_completed")),
    )
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Buyer profile already exists", code="PROFILE_ALREADY_EXISTS")
    await db.refresh(profile)

    logger.info("Buyer profile created for user %s", user.id)
    return profile


async def update_buyer_profile(db: AsyncSession, user: User, payload: BuyerProfileWrite) -> BuyerProfile:
    profile = await require_buyer_profile(db, user)
    changes = payload.model_dump(include=payload.provided())

    budget_min = changes.get("budget_min", profile.budget_min)
    budget_max = changes.get("budget_max", profile.budget_max)
    _check_budget(budget_min, budget_max)

    for field, value in changes.items():
        if field in ("industries", "regions"):
            value = value or []
        if field == "onboarding_completed":
            value = bool(value)
        setattr(profile, field, value)
    profile.updated_at = utcnow()

    await db.commit()
    await db.refresh(profile)
    return profile


async def list_onboarded_profiles(db: AsyncSession, exclude_user_id: Optional[str] = None) -> list[BuyerProfile]:
    stmt = select(BuyerProfile).where(BuyerProfile.onboarding_completed.is_(True))
    if exclude_user_id:
        stmt = stmt.where(BuyerProfile.user_id != exclude_user_id)
    result = await db.execute(stmt.order_by(BuyerProfile.created_at.desc()))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def serialize_verification(verification: BuyerVerification) -> dict:
    return VerificationResponse.model_validate(verification).to_json()


async def get_verification(db: AsyncSession, user: User) -> BuyerVerification:
    verification = await db.scalar(select(BuyerVerification).where(BuyerVerification.user_id == user.id))
    if not verification:
        raise NotFoundError("No verification record found", code="NOT_FOUND")
    return verification


async def request_verification(db: AsyncSession, user: User, notes: Optional[str] = None) -> BuyerVerification:
    existing = await db.scalar(select(BuyerVerification.id).where(BuyerVerification.user_id == user.id))
    if existing:
        raise ConflictError("A verification record already exists", code="RECORD_EXISTS")

    verification = BuyerVerification(
        user_id=user.id,
        verification_status=VerificationStatus.PENDING.value,
        notes=notes,
    )
    db.add(verification)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("A verification record already exists", code="RECORD_EXISTS")
    await db.refresh(verification)

    logger.info("Verification requested by user %s", user.id)
    return verification


async def review_verification(
    db: AsyncSession,
    admin: User,
    user_id: str,
    status: Optional[str],
    identity_verified: Optional[bool] = None,
    proof_of_funds_verified: Optional[bool] = None,
    notes: Optional[str] = None,
) -> BuyerVerification:
    """Admin decision. Creates the record if the buyer never requested one."""
    try:
        target = VerificationStatus(status)
    except ValueError:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(s.value for s in VerificationStatus)}",
            code="INVALID_STATUS",
        )

    if not await db.get(User, user_id):
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    verification = await db.scalar(select(BuyerVerification).where(BuyerVerification.user_id == user_id))
    if verification is None:
        verification = BuyerVerification(user_id=user_id)
        db.add(verification)

    verification.verification_status = target.value
    if identity_verified is not None:
        verification.identity_verified = identity_verified
    if proof_of_funds_verified is not None:
        verification.proof_of_funds_verified = proof_of_funds_verified
    if notes is not None:
        verification.notes = notes

    if target == VerificationStatus.VERIFIED:
        verification.verified_at = utcnow()
        verification.verified_by = admin.id
    else:
        verification.verified_at = None
        verification.verified_by = None

    notify(
        db,
        user_id,
        NotificationType.VERIFICATION,
        "Verification updated",
        f"Your buyer verification is now {target.value}.",
        related_entity_type="verification",
        action_url="/buyer-verification",
    )
    await db.commit()
    await db.refresh(verification)

    logger.info("Verification for user %s set to %s by %s", user_id, target.value, admin.id)
    return verification
