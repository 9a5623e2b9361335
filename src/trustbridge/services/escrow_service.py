"""Escrow transactions: creation, fee computation and forward-only status moves.

initiated → funded → in_migration → complete → released, one step at a
time. Buyers and sellers move the escrow through the API; the provider
webhook and the migration checklist move it as SYSTEM.
"""

import hmac
import logging
import math
import secrets
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.config import get_settings
from trustbridge.domain.enums import EscrowStatus, LOIStatus, NotificationType, PartyRole
from trustbridge.domain.models import EscrowTransaction, Listing, LOIOffer, User
from trustbridge.domain.schemas import EscrowCreate, EscrowResponse, FeeBreakdown
from trustbridge.services.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import (
    ESCROW_TIMESTAMP_FIELDS,
    compare_and_set_status,
    effective_loi_status,
    escrow_table,
    resolve_party_role,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def compute_fees(escrow_amount: int, fee_percent: float) -> tuple[int, int, int]:
    """Return (platform fee, buyer total, seller net).

    The buyer pays the fee on top; the seller receives the full amount.
    Halves round up, so a fee of 2.5 is charged as 3.
    """
    fee = math.floor(escrow_amount * fee_percent / 100 + 0.5)
    return fee, escrow_amount + fee, escrow_amount


def serialize_escrow(escrow: EscrowTransaction) -> dict:
    return EscrowResponse.model_validate(escrow).to_json()


def fee_breakdown(escrow: EscrowTransaction) -> dict:
    fee, buyer_total, seller_net = compute_fees(escrow.escrow_amount, escrow.platform_fee_percent)
    return FeeBreakdown(
        escrow_amount=escrow.escrow_amount,
        platform_fee_percent=escrow.platform_fee_percent,
        platform_fee_amount=fee,
        buyer_total_amount=buyer_total,
        seller_net_amount=seller_net,
    ).to_json()


async def get_escrow_or_404(db: AsyncSession, escrow_id: str, code: str = "NOT_FOUND") -> EscrowTransaction:
    escrow = await db.get(EscrowTransaction, escrow_id)
    if not escrow:
        raise NotFoundError("Escrow transaction not found", code=code)
    return escrow


async def get_escrow_for_party(
    db: AsyncSession, user: User, escrow_id: str
) -> tuple[EscrowTransaction, PartyRole]:
    escrow = await get_escrow_or_404(db, escrow_id)
    role = resolve_party_role(user.id, escrow.buyer_id, escrow.seller_id, code="ACCESS_DENIED")
    return escrow, role


async def create_escrow(db: AsyncSession, user: User, payload: EscrowCreate) -> EscrowTransaction:
    if payload.extra_keys() & {"buyerId", "buyer_id", "userId", "user_id"}:
        raise ValidationError(
            "User ID cannot be provided in the request body", code="USER_ID_NOT_ALLOWED"
        )
    if not payload.listing_id:
        raise ValidationError("Valid listing ID is required", code="MISSING_LISTING_ID")
    if payload.escrow_amount is None or payload.escrow_amount <= 0:
        raise ValidationError("Escrow amount must be positive", code="INVALID_ESCROW_AMOUNT")

    listing = await db.get(Listing, payload.listing_id)
    if not listing:
        raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")

    if payload.loi_id:
        loi = await db.get(LOIOffer, payload.loi_id)
        if not loi:
            raise NotFoundError("LOI offer not found", code="LOI_NOT_FOUND")
        if loi.listing_id != listing.id:
            raise ValidationError("LOI does not belong to this listing", code="LOI_MISMATCH")
        if effective_loi_status(loi) != LOIStatus.ACCEPTED:
            raise ConflictError("LOI must be accepted before opening escrow", code="LOI_NOT_ACCEPTED")
        resolve_party_role(user.id, loi.buyer_id, loi.seller_id)

        existing = await db.scalar(select(EscrowTransaction.id).where(EscrowTransaction.loi_id == loi.id))
        if existing:
            raise ConflictError("An escrow already exists for this LOI", code="ESCROW_ALREADY_EXISTS")

        buyer_id, seller_id = loi.buyer_id, loi.seller_id
    else:
        if not payload.seller_id:
            raise ValidationError("Valid seller ID is required", code="INVALID_SELLER_ID")
        if payload.seller_id != listing.seller_id:
            raise ValidationError("sellerId does not match listing seller", code="SELLER_MISMATCH")
        if user.id == listing.seller_id:
            raise AuthorizationError(
                "Sellers must open escrow from an accepted LOI", code="FORBIDDEN"
            )
        buyer_id, seller_id = user.id, listing.seller_id

    fee_percent = get_settings().platform_fee_percent
    fee, buyer_total, seller_net = compute_fees(payload.escrow_amount, fee_percent)
    now = utcnow()

    escrow = EscrowTransaction(
        listing_id=listing.id,
        loi_id=payload.loi_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        status=EscrowStatus.INITIATED.value,
        escrow_amount=payload.escrow_amount,
        escrow_provider=payload.escrow_provider,
        escrow_reference_id=payload.escrow_reference_id,
        notes=payload.notes,
        webhook_secret=secrets.token_hex(32),
        platform_fee_percent=fee_percent,
        platform_fee_amount=fee,
        buyer_total_amount=buyer_total,
        seller_net_amount=seller_net,
        initiated_at=now,
    )
    db.add(escrow)

    counterparty = seller_id if user.id == buyer_id else buyer_id
    notify(
        db,
        counterparty,
        NotificationType.ESCROW,
        "Escrow opened",
        f"An escrow of ${payload.escrow_amount:,} was opened for your deal.",
        related_entity_type="escrow",
        action_url="/escrow",
    )
    await db.commit()
    await db.refresh(escrow)

    logger.info("Escrow %s initiated for listing %s (amount=%s)", escrow.id, listing.id, escrow.escrow_amount)
    return escrow


async def list_escrows(
    db: AsyncSession,
    user: User,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[EscrowTransaction]:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")

    stmt = select(EscrowTransaction).where(
        or_(EscrowTransaction.buyer_id == user.id, EscrowTransaction.seller_id == user.id)
    )
    if status:
        if status not in {s.value for s in EscrowStatus}:
            raise ValidationError("Invalid status filter", code="INVALID_STATUS")
        stmt = stmt.where(EscrowTransaction.status == status)

    stmt = stmt.order_by(EscrowTransaction.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def _parse_status(value: Optional[str]) -> EscrowStatus:
    if not value:
        raise ValidationError("Status is required", code="MISSING_STATUS")
    try:
        return EscrowStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(s.value for s in EscrowStatus)}",
            code="INVALID_STATUS",
        )


async def transition_escrow(
    db: AsyncSession,
    escrow: EscrowTransaction,
    target: EscrowStatus,
    role: PartyRole,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    strict: bool = True,
) -> bool:
    """Validate and CAS the escrow into ``target``. Does not commit.

    With ``strict=False`` an illegal or lost transition returns False instead
    of raising; the checklist uses that for its automatic follow-ups.
    """
    current = EscrowStatus(escrow.status)
    try:
        escrow_table.validate(current, target, role)
    except InvalidTransitionError as e:
        if not strict:
            return False
        raise ValidationError(
            f"Invalid status transition from {current.value} to {target.value}. {e.reason}",
            code="INVALID_STATUS_TRANSITION",
        )

    values = {ESCROW_TIMESTAMP_FIELDS[target]: utcnow()}
    if notes is not None:
        values["notes"] = notes

    moved = await compare_and_set_status(db, EscrowTransaction, escrow.id, current, target, **values)
    if not moved:
        if not strict:
            return False
        raise ConflictError("Escrow status changed concurrently", code="INVALID_STATUS_TRANSITION")

    for party in (escrow.buyer_id, escrow.seller_id):
        if party == actor_id:
            continue
        notify(
            db,
            party,
            NotificationType.ESCROW,
            "Escrow status updated",
            f"Escrow moved from {current.value} to {target.value}.",
            related_entity_type="escrow",
            related_entity_id=escrow.id,
            action_url=f"/escrow/{escrow.id}",
        )

    logger.info(
        "Escrow %s: %s → %s (role=%s, user=%s)",
        escrow.id, current.value, target.value, role.value, actor_id,
    )
    return True


async def update_escrow_status(
    db: AsyncSession,
    user: User,
    escrow_id: str,
    status: Optional[str],
    notes: Optional[str] = None,
) -> EscrowTransaction:
    target = _parse_status(status)
    escrow = await get_escrow_or_404(db, escrow_id)
    role = resolve_party_role(user.id, escrow.buyer_id, escrow.seller_id)

    await transition_escrow(db, escrow, target, role, actor_id=user.id, notes=notes)
    await db.commit()
    await db.refresh(escrow)
    return escrow


async def apply_webhook(
    db: AsyncSession,
    escrow_reference_id: Optional[str],
    status: Optional[str],
    webhook_secret: Optional[str],
) -> EscrowTransaction:
    """Provider callback. Authenticated by the per-escrow (or global) secret."""
    if not escrow_reference_id or not status or not webhook_secret:
        raise ValidationError(
            "escrowReferenceId, status and webhookSecret are required", code="MISSING_FIELDS"
        )
    target = _parse_status(status)

    escrow = await db.scalar(
        select(EscrowTransaction).where(EscrowTransaction.escrow_reference_id == escrow_reference_id)
    )
    if not escrow:
        raise NotFoundError("Escrow transaction not found", code="NOT_FOUND")

    if not _secret_matches(webhook_secret, escrow.webhook_secret):
        logger.warning("Rejected escrow webhook for %s: bad secret", escrow.id)
        raise AuthenticationError("Invalid webhook secret", code="INVALID_WEBHOOK_SECRET")

    await transition_escrow(db, escrow, target, PartyRole.SYSTEM)
    await db.commit()
    await db.refresh(escrow)
    return escrow


def _secret_matches(provided: str, expected: Optional[str]) -> bool:
    candidates = [s for s in (expected, get_settings().escrow_webhook_secret) if s]
    return any(hmac.compare_digest(provided.encode(), c.encode()) for c in candidates)
