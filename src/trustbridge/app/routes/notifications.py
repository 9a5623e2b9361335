"""Notification inbox routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import NotificationResponse
from trustbridge.infra.database import get_db
from trustbridge.services.notification_service import (
    delete_notification,
    list_notifications,
    mark_all_read,
    mark_read,
    unread_count,
)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def inbox(
    filter: str = "all",
    type: Optional[str] = None,
    limit: int = Query(20),
    offset: int = Query(0),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    items, total, unread = await list_notifications(
        db, user.id, filter=filter, type=type, limit=limit, offset=offset
    )
    return {
        "notifications": [NotificationResponse.model_validate(n).to_json() for n in items],
        "total": total,
        "unreadCount": unread,
        "limit": limit,
        "offset": offset,
    }


@router.get("/unread-count")
async def get_unread_count(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"unreadCount": await unread_count(db, user.id)}


@router.post("/mark-all-read")
async def read_all(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"updated": await mark_all_read(db, user.id)}


@router.patch("/{notification_id}/read")
async def read_one(
    notification_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    notification = await mark_read(db, user.id, notification_id)
    return NotificationResponse.model_validate(notification).to_json()


@router.delete("/{notification_id}")
async def remove(
    notification_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_notification(db, user.id, notification_id)
    return {"message": "Notification deleted", "id": notification_id}
