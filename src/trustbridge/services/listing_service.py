"""Listing lifecycle: CRUD, submission and moderation.

Lifecycle: draft → submitted → approved | rejected. Sellers edit their own
listings while not rejected; admins moderate submitted listings.
"""

import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import ListingStatus, ModerationAction, NotificationType
from trustbridge.domain.models import Listing, ListingModerationLog, User
from trustbridge.domain.schemas import ListingResponse, ListingWrite
from trustbridge.services.access_control import ListingAccess, ensure_can_create_listing, redact_listing
from trustbridge.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import compare_and_set_status, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Fields a listing must carry before it can be submitted for review
SUBMIT_REQUIRED_FIELDS = (
    "title",
    "business_type",
    "geography",
    "ttm_revenue",
    "ttm_profit",
    "asking_price",
    "full_description",
    "age_months",
)


def compute_revenue_multiple(asking_price, ttm_revenue) -> Optional[float]:
    """round(asking / revenue, 2) when both are positive, else None."""
    if not asking_price or not ttm_revenue:
        return None
    if asking_price <= 0 or ttm_revenue <= 0:
        return None
    return round(asking_price / ttm_revenue, 2)


def serialize_listing(listing: Listing, access: Optional[ListingAccess] = None) -> dict:
    """Camel-case listing payload, redacted unless ``access`` allows otherwise."""
    data = ListingResponse.model_validate(listing).to_json()
    return redact_listing(data, access or ListingAccess())


async def get_listing_or_404(db: AsyncSession, listing_id: str) -> Listing:
    listing = await db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")
    return listing


def _ensure_owner(listing: Listing, user: User) -> None:
    if listing.seller_id != user.id:
        raise AuthorizationError("You do not own this listing", code="FORBIDDEN")


async def create_listing(db: AsyncSession, seller: User, payload: ListingWrite) -> Listing:
    await ensure_can_create_listing(db, seller)

    if payload.extra_keys() & {"sellerId", "seller_id"}:
        raise ValidationError("sellerId cannot be provided in the request body", code="SELLER_ID_NOT_ALLOWED")
    if not payload.title or not payload.title.strip():
        raise ValidationError("title is required", code="MISSING_REQUIRED_FIELD")

    values = payload.model_dump(include=payload.provided())
    values["title"] = payload.title.strip()
    listing = Listing(seller_id=seller.id, status=ListingStatus.DRAFT.value, **values)
    listing.revenue_multiple = compute_revenue_multiple(listing.asking_price, listing.ttm_revenue)
    db.add(listing)
    await db.commit()
    await db.refresh(listing)

    logger.info("Listing %s created by seller %s", listing.id, seller.id)
    return listing


async def update_listing(db: AsyncSession, user: User, listing_id: str, payload: ListingWrite) -> Listing:
    listing = await get_listing_or_404(db, listing_id)
    _ensure_owner(listing, user)
    if listing.status == ListingStatus.REJECTED.value:
        raise ConflictError("Rejected listings cannot be edited", code="LISTING_REJECTED")

    changes = payload.model_dump(include=payload.provided())
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("title cannot be empty", code="MISSING_REQUIRED_FIELD")
    for field, value in changes.items():
        setattr(listing, field, value)

    listing.revenue_multiple = compute_revenue_multiple(listing.asking_price, listing.ttm_revenue)
    listing.updated_at = utcnow()
    await db.commit()
    await db.refresh(listing)
    return listing


async def delete_listing(db: AsyncSession, user: User, listing_id: str) -> None:
    listing = await get_listing_or_404(db, listing_id)
    _ensure_owner(listing, user)
    await db.delete(listing)
    await db.commit()
    logger.info("Listing %s deleted by seller %s", listing_id, user.id)


async def list_listings(
    db: AsyncSession,
    viewer: Optional[User] = None,
    business_type: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    min_revenue: Optional[int] = None,
    max_revenue: Optional[int] = None,
    geography: Optional[str] = None,
    verified_only: bool = False,
    under_loi: Optional[bool] = None,
    search: Optional[str] = None,
    seller_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Listing]:
    """Filtered listing search. Non-approved rows are only visible to their owner or admins."""
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")

    stmt = select(Listing)

    is_admin = viewer is not None and viewer.role == "admin"
    own_listings = viewer is not None and seller_id == viewer.id
    if status:
        if status not in {s.value for s in ListingStatus}:
            raise ValidationError("Invalid status filter", code="INVALID_STATUS_FILTER")
        if status != ListingStatus.APPROVED.value and not (is_admin or own_listings):
            raise AuthorizationError("Only owners can filter by non-public status", code="FORBIDDEN")
        stmt = stmt.where(Listing.status == status)
    elif not own_listings:
        stmt = stmt.where(Listing.status == ListingStatus.APPROVED.value)

    if seller_id:
        stmt = stmt.where(Listing.seller_id == seller_id)
    if business_type:
        stmt = stmt.where(Listing.business_type.ilike(f"%{business_type}%"))
    if geography:
        stmt = stmt.where(Listing.geography.ilike(f"%{geography}%"))
    if min_price is not None:
        stmt = stmt.where(Listing.asking_price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Listing.asking_price <= max_price)
    if min_revenue is not None:
        stmt = stmt.where(Listing.ttm_revenue >= min_revenue)
    if max_revenue is not None:
        stmt = stmt.where(Listing.ttm_revenue <= max_revenue)
    if verified_only:
        stmt = stmt.where(Listing.is_verified.is_(True))
    if under_loi is not None:
        stmt = stmt.where(Listing.under_loi.is_(under_loi))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Listing.title.ilike(pattern), Listing.full_description.ilike(pattern)))

    stmt = stmt.order_by(Listing.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Submission / moderation
# ---------------------------------------------------------------------------


def missing_submit_fields(listing: Listing) -> list[str]:
    missing = []
    for field in SUBMIT_REQUIRED_FIELDS:
        value = getattr(listing, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    return missing


async def submit_listing(db: AsyncSession, user: User, listing_id: str) -> Listing:
    listing = await get_listing_or_404(db, listing_id)
    _ensure_owner(listing, user)

    missing = missing_submit_fields(listing)
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            code="MISSING_REQUIRED_FIELDS",
            extra={"missingFields": missing},
        )

    moved = await compare_and_set_status(
        db, Listing, listing.id, ListingStatus.DRAFT, ListingStatus.SUBMITTED, submitted_at=utcnow()
    )
    if not moved:
        raise ConflictError(
            f"Only draft listings can be submitted (current status: {listing.status})",
            code="INVALID_STATUS",
        )

    db.add(ListingModerationLog(
        listing_id=listing.id,
        moderator_id=user.id,
        action=ModerationAction.SUBMIT.value,
        old_status=ListingStatus.DRAFT.value,
        new_status=ListingStatus.SUBMITTED.value,
    ))
    await db.commit()
    await db.refresh(listing)
    return listing


async def moderate_listing(
    db: AsyncSession,
    moderator: User,
    listing_id: str,
    action: ModerationAction,
    reason: Optional[str] = None,
) -> Listing:
    """Approve or reject a submitted listing."""
    listing = await get_listing_or_404(db, listing_id)

    if action == ModerationAction.APPROVE:
        target = ListingStatus.APPROVED
        values = {"approved_at": utcnow(), "rejection_reason": None}
        title = "Listing approved"
        message = f'Your listing "{listing.title}" is now live.'
    else:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", code="MISSING_REASON")
        target = ListingStatus.REJECTED
        values = {"rejection_reason": reason.strip()}
        title = "Listing rejected"
        message = f'Your listing "{listing.title}" was rejected: {reason.strip()}'

    moved = await compare_and_set_status(
        db, Listing, listing.id, ListingStatus.SUBMITTED, target, **values
    )
    if not moved:
        raise ConflictError(
            f"Only submitted listings can be moderated (current status: {listing.status})",
            code="INVALID_STATUS",
        )

    db.add(ListingModerationLog(
        listing_id=listing.id,
        moderator_id=moderator.id,
        action=action.value,
        old_status=ListingStatus.SUBMITTED.value,
        new_status=target.value,
        notes=reason,
    ))
    notify(
        db,
        listing.seller_id,
        NotificationType.LISTING_UPDATE,
        title,
        message,
        related_entity_type="listing",
        related_entity_id=listing.id,
        action_url=f"/listings/{listing.id}",
    )
    await db.commit()
    await db.refresh(listing)
    return listing


async def list_pending_listings(db: AsyncSession) -> list[Listing]:
    result = await db.execute(
        select(Listing)
        .where(Listing.status == ListingStatus.SUBMITTED.value)
        .order_by(Listing.submitted_at.asc())
    )
    return list(result.scalars().all())
