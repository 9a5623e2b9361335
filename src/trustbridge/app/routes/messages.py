"""Messaging routes: buyer/seller threads about a listing."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import MessageCreate, ThreadCreate
from trustbridge.infra.database import get_db
from trustbridge.services.messaging_service import (
    list_threads,
    mark_unread,
    open_thread,
    post_message,
    serialize_message,
    serialize_thread,
    start_thread,
    total_unread,
)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/threads")
async def threads(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await list_threads(db, user)


@router.post("/threads", status_code=status.HTTP_201_CREATED)
async def create_thread(
    data: ThreadCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    thread, message, created = await start_thread(
        db, user, data.listing_id, data.message, subject=data.subject
    )
    return {
        "thread": serialize_thread(thread),
        "message": serialize_message(message),
        "created": created,
    }


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"unreadCount": await total_unread(db, user)}


@router.get("/threads/{thread_id}")
async def get_thread(
    thread_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    thread, role, messages = await open_thread(db, user, thread_id)
    data = serialize_thread(thread)
    data["userRole"] = role.value
    return {"thread": data, "messages": [serialize_message(m) for m in messages]}


@router.post("/threads/{thread_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    thread_id: str,
    data: MessageCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_message(await post_message(db, user, thread_id, data.message))


@router.post("/threads/{thread_id}/mark-unread")
async def mark_thread_unread(
    thread_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_thread(await mark_unread(db, user, thread_id))
