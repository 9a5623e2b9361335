"""Buyer/seller message threads with per-party unread counters.

One thread per (listing, buyer, seller). Posting bumps the other party's
counter; opening a thread resets the caller's.
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import NotificationType, PartyRole
from trustbridge.domain.models import Listing, MessageThread, ThreadMessage, User
from trustbridge.domain.schemas import MessageResponse, ThreadResponse
from trustbridge.services.errors import NotFoundError, ValidationError
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import resolve_party_role, utcnow

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100
MAX_MESSAGE_LENGTH = 10000


def _preview(body: Optional[str]) -> Optional[str]:
    if body is None:
        return None
    if len(body) <= PREVIEW_LENGTH:
        return body
    return body[:PREVIEW_LENGTH] + "..."


def _unread_field(role: PartyRole) -> str:
    return "buyer_unread_count" if role == PartyRole.BUYER else "seller_unread_count"


def _other_party(thread: MessageThread, role: PartyRole) -> str:
    return thread.seller_id if role == PartyRole.BUYER else thread.buyer_id


def _clean_message(message: Optional[str]) -> str:
    if not message or not message.strip():
        raise ValidationError("Message cannot be empty", code="INVALID_MESSAGE")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters", code="INVALID_MESSAGE"
        )
    return message.strip()


def serialize_thread(thread: MessageThread) -> dict:
    return ThreadResponse.model_validate(thread).to_json()


def serialize_message(message: ThreadMessage) -> dict:
    return MessageResponse.model_validate(message).to_json()


async def get_thread_for_party(
    db: AsyncSession, user: User, thread_id: str
) -> tuple[MessageThread, PartyRole]:
    thread = await db.get(MessageThread, thread_id)
    if not thread:
        raise NotFoundError("Thread not found", code="THREAD_NOT_FOUND")
    role = resolve_party_role(user.id, thread.buyer_id, thread.seller_id)
    return thread, role


async def _add_message(
    db: AsyncSession,
    thread: MessageThread,
    sender: User,
    role: PartyRole,
    body: str,
) -> ThreadMessage:
    now = utcnow()
    message = ThreadMessage(
        thread_id=thread.id,
        sender_id=sender.id,
        message_body=body,
        is_read=False,
        created_at=now,
    )
    db.add(message)

    # Counter bump is a single UPDATE so concurrent posts never lose a count
    other_field = _unread_field(PartyRole.SELLER if role == PartyRole.BUYER else PartyRole.BUYER)
    await db.execute(
        update(MessageThread)
        .where(MessageThread.id == thread.id)
        .values({
            other_field: getattr(MessageThread, other_field) + 1,
            "last_message_at": now,
            "updated_at": now,
        })
        .execution_options(synchronize_session="fetch")
    )

    notify(
        db,
        _other_party(thread, role),
        NotificationType.MESSAGE,
        f"New message from {sender.name}",
        _preview(body),
        related_entity_type="thread",
        related_entity_id=thread.id,
        action_url=f"/messages/{thread.id}",
    )
    return message


async def start_thread(
    db: AsyncSession,
    buyer: User,
    listing_id: Optional[str],
    message: Optional[str],
    subject: Optional[str] = None,
) -> tuple[MessageThread, ThreadMessage, bool]:
    """Create (or reuse) the buyer's thread on a listing and post the first message.

    Returns (thread, message, created).
    """
    if not listing_id:
        raise ValidationError("listingId is required", code="MISSING_LISTING_ID")
    body = _clean_message(message)

    listing = await db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")
    if listing.seller_id == buyer.id:
        raise ValidationError(
            "You cannot message yourself about your own listing",
            code="SELLER_CANNOT_MESSAGE_OWN_LISTING",
        )

    thread = await db.scalar(
        select(MessageThread).where(
            MessageThread.listing_id == listing.id,
            MessageThread.buyer_id == buyer.id,
            MessageThread.seller_id == listing.seller_id,
        )
    )
    created = thread is None
    if created:
        thread = MessageThread(
            listing_id=listing.id,
            buyer_id=buyer.id,
            seller_id=listing.seller_id,
            subject=(subject or "").strip() or f"Inquiry about {listing.title}",
            buyer_unread_count=0,
            seller_unread_count=0,
        )
        db.add(thread)
        try:
            await db.flush()
        except IntegrityError:
            # Another request created it first; reuse theirs
            await db.rollback()
            thread = await db.scalar(
                select(MessageThread).where(
                    MessageThread.listing_id == listing.id,
                    MessageThread.buyer_id == buyer.id,
                    MessageThread.seller_id == listing.seller_id,
                )
            )
            created = False

    msg = await _add_message(db, thread, buyer, PartyRole.BUYER, body)
    await db.commit()
    await db.refresh(thread)
    await db.refresh(msg)

    logger.info("Thread %s: message from buyer %s (new=%s)", thread.id, buyer.id, created)
    return thread, msg, created


async def post_message(
    db: AsyncSession, user: User, thread_id: str, message: Optional[str]
) -> ThreadMessage:
    body = _clean_message(message)
    thread, role = await get_thread_for_party(db, user, thread_id)
    msg = await _add_message(db, thread, user, role, body)
    await db.commit()
    await db.refresh(msg)
    return msg


async def open_thread(
    db: AsyncSession, user: User, thread_id: str
) -> tuple[MessageThread, PartyRole, list[ThreadMessage]]:
    """Load a thread's messages and mark them read for the caller."""
    thread, role = await get_thread_for_party(db, user, thread_id)

    await db.execute(
        update(MessageThread)
        .where(MessageThread.id == thread.id)
        .values({_unread_field(role): 0})
        .execution_options(synchronize_session="fetch")
    )
    await db.execute(
        update(ThreadMessage)
        .where(
            ThreadMessage.thread_id == thread.id,
            ThreadMessage.sender_id != user.id,
            ThreadMessage.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    await db.refresh(thread)

    result = await db.execute(
        select(ThreadMessage)
        .where(ThreadMessage.thread_id == thread.id)
        .order_by(ThreadMessage.created_at.asc())
    )
    messages = list(result.scalars().all())
    return thread, role, messages


async def mark_unread(db: AsyncSession, user: User, thread_id: str) -> MessageThread:
    thread, role = await get_thread_for_party(db, user, thread_id)
    field = _unread_field(role)
    await db.execute(
        update(MessageThread)
        .where(MessageThread.id == thread.id)
        .values({field: getattr(MessageThread, field) + 1})
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    await db.refresh(thread)
    return thread


async def list_threads(db: AsyncSession, user: User) -> list[dict]:
    """Caller's threads, most recent activity first, with preview and counterpart."""
    result = await db.execute(
        select(MessageThread)
        .where(or_(MessageThread.buyer_id == user.id, MessageThread.seller_id == user.id))
        .order_by(func.coalesce(MessageThread.last_message_at, MessageThread.created_at).desc())
    )
    threads = list(result.scalars().all())

    items = []
    for thread in threads:
        role = resolve_party_role(user.id, thread.buyer_id, thread.seller_id)
        other = await db.get(User, _other_party(thread, role))
        listing = await db.get(Listing, thread.listing_id)
        last = await db.scalar(
            select(ThreadMessage)
            .where(ThreadMessage.thread_id == thread.id)
            .order_by(ThreadMessage.created_at.desc())
            .limit(1)
        )
        data = serialize_thread(thread)
        data.update({
            "userRole": role.value,
            "unreadCount": getattr(thread, _unread_field(role)),
            "otherParticipant": {"id": other.id, "name": other.name} if other else None,
            "listingTitle": listing.title if listing else None,
            "lastMessage": {
                "preview": _preview(last.message_body),
                "senderId": last.sender_id,
                "createdAt": serialize_message(last)["createdAt"],
            } if last else None,
        })
        items.append(data)
    return items


async def total_unread(db: AsyncSession, user: User) -> int:
    buyer_total = await db.scalar(
        select(func.coalesce(func.sum(MessageThread.buyer_unread_count), 0)).where(
            MessageThread.buyer_id == user.id
        )
    )
    seller_total = await db.scalar(
        select(func.coalesce(func.sum(MessageThread.seller_unread_count), 0)).where(
            MessageThread.seller_id == user.id
        )
    )
    return int(buyer_total or 0) + int(seller_total or 0)
