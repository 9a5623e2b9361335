"""NDA signing for listings.

Signing is idempotent: a second request for the same listing returns the
existing agreement.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import ListingStatus
from trustbridge.domain.models import Listing, NdaAgreement, User
from trustbridge.domain.schemas import NdaResponse
from trustbridge.services.errors import ConflictError, NotFoundError, ValidationError
from trustbridge.services.transitions import utcnow

logger = logging.getLogger(__name__)


def serialize_nda(nda: NdaAgreement) -> dict:
    return NdaResponse.model_validate(nda).to_json()


async def _find(db: AsyncSession, user_id: str, listing_id: str) -> Optional[NdaAgreement]:
    return await db.scalar(
        select(NdaAgreement).where(
            NdaAgreement.user_id == user_id,
            NdaAgreement.listing_id == listing_id,
        )
    )


async def sign_nda(
    db: AsyncSession,
    user: User,
    listing_id: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[NdaAgreement, bool]:
    """Return (agreement, created)."""
    if not listing_id:
        raise ValidationError("listingId is required", code="MISSING_LISTING_ID")

    listing = await db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")
    if listing.status != ListingStatus.APPROVED.value:
        raise ConflictError("NDAs can only be signed for approved listings", code="LISTING_NOT_APPROVED")
    if listing.seller_id == user.id:
        raise ValidationError("You cannot sign an NDA for your own listing", code="CANNOT_SIGN_OWN_LISTING")

    existing = await _find(db, user.id, listing.id)
    if existing:
        return existing, False

    nda = NdaAgreement(
        user_id=user.id,
        listing_id=listing.id,
        agreed_at=utcnow(),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
    )
    db.add(nda)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent sign for the same pair
        await db.rollback()
        existing = await _find(db, user.id, listing.id)
        return existing, False

    await db.refresh(nda)
    logger.info("NDA signed: user %s, listing %s", user.id, listing.id)
    return nda, True


async def list_ndas(db: AsyncSession, user: User) -> list[NdaAgreement]:
    result = await db.execute(
        select(NdaAgreement)
        .where(NdaAgreement.user_id == user.id)
        .order_by(NdaAgreement.agreed_at.desc())
    )
    return list(result.scalars().all())
