"""In-app notification fan-out and inbox queries.

``notify`` only stages rows on the caller's session; the caller commits them
together with the change that triggered the notification.
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import NotificationPriority, NotificationType
from trustbridge.domain.models import Notification
from trustbridge.services.errors import NotFoundError, ValidationError
from trustbridge.services.transitions import utcnow

logger = logging.getLogger(__name__)

VALID_FILTERS = ("all", "unread", "read")
MAX_PAGE_SIZE = 100


def notify(
    db: AsyncSession,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
    action_url: Optional[str] = None,
    priority: NotificationPriority = NotificationPriority.NORMAL,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type.value,
        title=title,
        message=message,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        action_url=action_url,
        priority=priority.value,
    )
    db.add(notification)
    logger.debug("Notification queued for user %s: %s", user_id, title)
    return notification


async def list_notifications(
    db: AsyncSession,
    user_id: str,
    filter: str = "all",
    type: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Notification], int, int]:
    """Return (page, total matching, total unread) for ``user_id``."""
    if filter not in VALID_FILTERS:
        raise ValidationError(
            f"Invalid filter. Must be one of: {', '.join(VALID_FILTERS)}",
            code="INVALID_FILTER",
        )

    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")

    conditions = [Notification.user_id == user_id]
    if filter == "unread":
        conditions.append(Notification.is_read.is_(False))
    elif filter == "read":
        conditions.append(Notification.is_read.is_(True))
    if type:
        conditions.append(Notification.type == type)

    total = await db.scalar(select(func.count(Notification.id)).where(*conditions))
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    unread = await unread_count(db, user_id)
    return list(result.scalars().all()), total or 0, unread


async def unread_count(db: AsyncSession, user_id: str) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return count or 0


async def _get_owned(db: AsyncSession, user_id: str, notification_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found", code="NOT_FOUND")
    return notification


async def mark_read(db: AsyncSession, user_id: str, notification_id: str) -> Notification:
    notification = await _get_owned(db, user_id, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    await db.commit()
    await db.refresh(notification)
    return notification


async def mark_all_read(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    return result.rowcount or 0


async def delete_notification(db: AsyncSession, user_id: str, notification_id: str) -> None:
    notification = await _get_owned(db, user_id, notification_id)
    await db.delete(notification)
    await db.commit()
