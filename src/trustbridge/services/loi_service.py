"""Letter-of-intent workflow.

draft --(buyer: send)--> sent --(seller: accept | reject)--> accepted | rejected.
A sent offer past its expiration date reads as expired; that state is never
written. Only the buyer may edit or delete an offer, and only while it is a
draft. Every status change is a compare-and-swap on the expected status.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import (
    ListingStatus,
    LOIAction,
    LOIStatus,
    NotificationType,
    PartyRole,
)
from trustbridge.domain.models import Listing, LOIOffer, User
from trustbridge.domain.schemas import LOICreate, LOIResponse, LOIRespond, LOIUpdate
from trustbridge.services.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import (
    as_utc,
    compare_and_set_status,
    compare_and_update,
    delete_if_status,
    effective_loi_status,
    loi_table,
    resolve_party_role,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# (field, camelCase name) in the order missing fields are reported
REQUIRED_CREATE_FIELDS = [
    ("listing_id", "listingId"),
    ("seller_id", "sellerId"),
    ("offer_price", "offerPrice"),
    ("cash_amount", "cashAmount"),
    ("earnout_amount", "earnoutAmount"),
    ("due_diligence_days", "dueDiligenceDays"),
    ("exclusivity_days", "exclusivityDays"),
    ("expiration_date", "expirationDate"),
]

# Structural fields that can never be patched
FORBIDDEN_PATCH_FIELDS = {
    "id", "buyerId", "buyer_id", "sellerId", "seller_id",
    "listingId", "listing_id", "status",
}

PRICE_FIELDS = {"offer_price", "cash_amount", "earnout_amount"}


def _code(field: str) -> str:
    return field.upper()


def serialize_loi(loi: LOIOffer, now: Optional[datetime] = None) -> dict:
    """Camel-case LOI payload with the read-time status."""
    data = LOIResponse.model_validate(loi).to_json()
    data["status"] = effective_loi_status(loi, now).value
    return data


def _validate_amounts(values: dict) -> None:
    """Positivity rules shared by create and update."""
    if "offer_price" in values and values["offer_price"] <= 0:
        raise ValidationError("offerPrice must be a positive integer", code="INVALID_OFFER_PRICE")
    if "cash_amount" in values and values["cash_amount"] < 0:
        raise ValidationError("cashAmount must be a non-negative integer", code="INVALID_CASH_AMOUNT")
    if "earnout_amount" in values and values["earnout_amount"] < 0:
        raise ValidationError("earnoutAmount must be a non-negative integer", code="INVALID_EARNOUT_AMOUNT")
    if "due_diligence_days" in values and values["due_diligence_days"] <= 0:
        raise ValidationError(
            "dueDiligenceDays must be a positive integer", code="INVALID_DUE_DILIGENCE_DAYS"
        )
    if "exclusivity_days" in values and values["exclusivity_days"] <= 0:
        raise ValidationError(
            "exclusivityDays must be a positive integer", code="INVALID_EXCLUSIVITY_DAYS"
        )


def check_price_arithmetic(offer_price: int, cash_amount: int, earnout_amount: int) -> bool:
    """offerPrice must equal cashAmount + earnoutAmount exactly."""
    return offer_price == cash_amount + earnout_amount


async def get_loi_or_404(db: AsyncSession, loi_id: str, code: str = "NOT_FOUND") -> LOIOffer:
    loi = await db.get(LOIOffer, loi_id)
    if not loi:
        raise NotFoundError("LOI offer not found", code=code)
    return loi


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


async def create_loi(db: AsyncSession, buyer: User, payload: LOICreate) -> LOIOffer:
    if payload.extra_keys() & {"buyerId", "buyer_id"}:
        raise ValidationError(
            "buyerId cannot be provided in the request body", code="BUYER_ID_NOT_ALLOWED"
        )

    for field, name in REQUIRED_CREATE_FIELDS:
        if getattr(payload, field) is None:
            raise ValidationError(f"{name} is required", code=f"MISSING_{_code(field)}")

    values = payload.model_dump(include=payload.provided())
    _validate_amounts(values)

    if not check_price_arithmetic(payload.offer_price, payload.cash_amount, payload.earnout_amount):
        raise ValidationError(
            f"offerPrice ({payload.offer_price}) must equal cashAmount ({payload.cash_amount}) "
            f"+ earnoutAmount ({payload.earnout_amount})",
            code="OFFER_PRICE_MISMATCH",
        )

    expiration = as_utc(payload.expiration_date)
    if expiration <= utcnow():
        raise ValidationError("expirationDate must be in the future", code="EXPIRATION_DATE_NOT_FUTURE")

    listing = await db.get(Listing, payload.listing_id)
    if not listing:
        raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")
    if listing.status != ListingStatus.APPROVED.value:
        raise ConflictError("Listing must be approved", code="LISTING_NOT_APPROVED")
    if listing.seller_id != payload.seller_id:
        raise ConflictError("sellerId does not match listing seller", code="SELLER_ID_MISMATCH")
    if listing.seller_id == buyer.id:
        raise AuthorizationError(
            "You cannot make an offer on your own listing", code="CANNOT_MAKE_OFFER_ON_OWN_LISTING"
        )

    values["expiration_date"] = expiration
    loi = LOIOffer(
        buyer_id=buyer.id,
        status=LOIStatus.DRAFT.value,
        **values,
    )
    db.add(loi)
    await db.commit()
    await db.refresh(loi)

    logger.info("LOI %s drafted by buyer %s for listing %s", loi.id, buyer.id, listing.id)
    return loi


async def get_loi_for_party(db: AsyncSession, user: User, loi_id: str) -> tuple[LOIOffer, PartyRole]:
    loi = await get_loi_or_404(db, loi_id)
    role = resolve_party_role(user.id, loi.buyer_id, loi.seller_id)
    return loi, role


async def list_lois(
    db: AsyncSession,
    user: User,
    role: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[LOIOffer]:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")
    if status and status not in {s.value for s in LOIStatus}:
        raise ValidationError(
            f"Invalid status filter. Must be one of: {', '.join(s.value for s in LOIStatus)}",
            code="INVALID_STATUS_FILTER",
        )
    if role and role not in (PartyRole.BUYER.value, PartyRole.SELLER.value):
        raise ValidationError("Invalid role filter. Must be one of: buyer, seller", code="INVALID_ROLE_FILTER")

    if role == PartyRole.BUYER.value:
        stmt = select(LOIOffer).where(LOIOffer.buyer_id == user.id)
    elif role == PartyRole.SELLER.value:
        stmt = select(LOIOffer).where(LOIOffer.seller_id == user.id)
    else:
        stmt = select(LOIOffer).where(or_(LOIOffer.buyer_id == user.id, LOIOffer.seller_id == user.id))

    # Expiry is derived, so "sent" and "expired" split on expiration_date
    now = utcnow()
    if status == LOIStatus.EXPIRED.value:
        stmt = stmt.where(and_(LOIOffer.status == LOIStatus.SENT.value, LOIOffer.expiration_date < now))
    elif status == LOIStatus.SENT.value:
        stmt = stmt.where(and_(LOIOffer.status == LOIStatus.SENT.value, LOIOffer.expiration_date >= now))
    elif status:
        stmt = stmt.where(LOIOffer.status == status)

    stmt = stmt.order_by(LOIOffer.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Draft edits
# ---------------------------------------------------------------------------


async def update_loi(db: AsyncSession, user: User, loi_id: str, payload: LOIUpdate) -> LOIOffer:
    forbidden = sorted(payload.extra_keys() & FORBIDDEN_PATCH_FIELDS)
    if forbidden:
        raise ValidationError(
            f"Cannot update field(s): {', '.join(forbidden)}", code="FORBIDDEN_FIELD"
        )

    loi = await get_loi_or_404(db, loi_id)
    if loi.buyer_id != user.id:
        raise AuthorizationError("Only the buyer can update this LOI offer", code="FORBIDDEN")
    if loi.status != LOIStatus.DRAFT.value:
        raise AuthorizationError(
            f"Only draft LOI offers can be updated (current status: {loi.status})",
            code="INVALID_STATUS",
        )

    changes = payload.model_dump(include=payload.provided())
    if not changes:
        raise ValidationError("No valid fields to update", code="NO_UPDATES")

    for field in PRICE_FIELDS | {"due_diligence_days", "exclusivity_days"}:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null", code=f"INVALID_{_code(field)}")
    _validate_amounts(changes)

    # Validate against the post-patch triple, never the stored one alone
    if PRICE_FIELDS & changes.keys():
        offer = changes.get("offer_price", loi.offer_price)
        cash = changes.get("cash_amount", loi.cash_amount)
        earnout = changes.get("earnout_amount", loi.earnout_amount)
        if not check_price_arithmetic(offer, cash, earnout):
            raise ValidationError(
                f"offerPrice ({offer}) must equal cashAmount ({cash}) + earnoutAmount ({earnout})",
                code="INVALID_PRICE_CALCULATION",
            )

    if "expiration_date" in changes:
        if changes["expiration_date"] is None:
            raise ValidationError("expirationDate cannot be null", code="INVALID_EXPIRATION_DATE")
        changes["expiration_date"] = as_utc(changes["expiration_date"])
        if changes["expiration_date"] <= utcnow():
            raise ValidationError(
                "expirationDate must be in the future", code="EXPIRATION_DATE_NOT_FUTURE"
            )

    applied = await compare_and_update(db, LOIOffer, loi.id, LOIStatus.DRAFT, **changes)
    if not applied:
        raise AuthorizationError(
            "LOI offer is no longer a draft", code="INVALID_STATUS"
        )
    await db.commit()
    await db.refresh(loi)
    return loi


async def delete_loi(db: AsyncSession, user: User, loi_id: str) -> None:
    loi = await get_loi_or_404(db, loi_id)
    if loi.buyer_id != user.id:
        raise AuthorizationError("Only the buyer can delete this LOI offer", code="FORBIDDEN")
    if loi.status != LOIStatus.DRAFT.value:
        raise AuthorizationError(
            f"Only draft LOI offers can be deleted (current status: {loi.status})",
            code="INVALID_STATUS",
        )

    deleted = await delete_if_status(db, LOIOffer, loi.id, LOIStatus.DRAFT)
    if not deleted:
        raise AuthorizationError("LOI offer is no longer a draft", code="INVALID_STATUS")
    await db.commit()
    logger.info("LOI %s deleted by buyer %s", loi_id, user.id)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def send_loi(db: AsyncSession, user: User, loi_id: str) -> LOIOffer:
    loi = await get_loi_or_404(db, loi_id, code="LOI_NOT_FOUND")
    if loi.buyer_id != user.id:
        raise AuthorizationError("Only the buyer can send this LOI offer", code="NOT_BUYER")

    current = effective_loi_status(loi)
    try:
        loi_table.validate(current, LOIStatus.SENT, PartyRole.BUYER)
    except InvalidTransitionError:
        raise ValidationError(
            f"Only draft LOI offers can be sent (current status: {current.value})",
            code="INVALID_STATUS",
        )

    if as_utc(loi.expiration_date) <= utcnow():
        raise ValidationError("Expiration date must be in the future", code="INVALID_EXPIRATION_DATE")

    now = utcnow()
    moved = await compare_and_set_status(
        db, LOIOffer, loi.id, LOIStatus.DRAFT, LOIStatus.SENT, sent_at=now
    )
    if not moved:
        raise ValidationError("LOI offer is no longer a draft", code="INVALID_STATUS")

    listing = await db.get(Listing, loi.listing_id)
    if listing is not None:
        listing.under_loi = True

    notify(
        db,
        loi.seller_id,
        NotificationType.LOI,
        "New LOI received",
        f"You received a letter of intent for ${loi.offer_price:,}.",
        related_entity_type="loi",
        related_entity_id=loi.id,
        action_url=f"/loi/{loi.id}",
    )
    await db.commit()
    await db.refresh(loi)

    logger.info(
        "LOI %s: %s → %s (role=%s, user=%s)",
        loi.id, LOIStatus.DRAFT.value, LOIStatus.SENT.value, PartyRole.BUYER.value, user.id,
    )
    return loi


async def respond_loi(db: AsyncSession, user: User, loi_id: str, payload: LOIRespond) -> LOIOffer:
    if payload.extra_keys() & {"userId", "user_id", "sellerId", "seller_id"}:
        raise ValidationError(
            "User ID cannot be provided in the request body", code="USER_ID_NOT_ALLOWED"
        )
    if not payload.action:
        raise ValidationError("Action is required", code="MISSING_ACTION")
    try:
        action = LOIAction(payload.action)
    except ValueError:
        raise ValidationError("Action must be either accept or reject", code="INVALID_ACTION")

    loi = await get_loi_or_404(db, loi_id, code="LOI_NOT_FOUND")
    if loi.seller_id != user.id:
        raise AuthorizationError("Only the seller can respond to this LOI offer", code="NOT_SELLER")

    target = LOIStatus.ACCEPTED if action == LOIAction.ACCEPT else LOIStatus.REJECTED
    current = effective_loi_status(loi)
    if current == LOIStatus.EXPIRED:
        raise ConflictError("This LOI offer has expired", code="LOI_EXPIRED")
    try:
        loi_table.validate(current, target, PartyRole.SELLER)
    except InvalidTransitionError:
        raise ValidationError(
            f"Only sent LOI offers can be responded to (current status: {current.value})",
            code="INVALID_STATUS",
        )

    now = utcnow()
    moved = await compare_and_set_status(
        db,
        LOIOffer,
        loi.id,
        LOIStatus.SENT,
        target,
        responded_at=now,
        response_notes=payload.response_notes,
    )
    if not moved:
        raise ValidationError("LOI offer is no longer awaiting a response", code="INVALID_STATUS")

    listing = await db.get(Listing, loi.listing_id)
    if listing is not None:
        if target == LOIStatus.ACCEPTED:
            listing.under_loi = True
        else:
            listing.under_loi = await _has_other_open_loi(db, loi)

    verb = "accepted" if target == LOIStatus.ACCEPTED else "rejected"
    notify(
        db,
        loi.buyer_id,
        NotificationType.LOI,
        f"LOI {verb}",
        f"Your letter of intent was {verb} by the seller.",
        related_entity_type="loi",
        related_entity_id=loi.id,
        action_url=f"/loi/{loi.id}",
    )
    await db.commit()
    await db.refresh(loi)

    logger.info(
        "LOI %s: %s → %s (role=%s, user=%s)",
        loi.id, LOIStatus.SENT.value, target.value, PartyRole.SELLER.value, user.id,
    )
    return loi


async def _has_other_open_loi(db: AsyncSession, loi: LOIOffer) -> bool:
    other = await db.scalar(
        select(LOIOffer.id).where(
            LOIOffer.listing_id == loi.listing_id,
            LOIOffer.id != loi.id,
            LOIOffer.status.in_([LOIStatus.SENT.value, LOIStatus.ACCEPTED.value]),
        ).limit(1)
    )
    return other is not None
