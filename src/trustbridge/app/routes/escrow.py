"""Escrow routes: open, inspect, advance, and the provider webhook."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import EscrowCreate, EscrowStatusUpdate, EscrowWebhook
from trustbridge.infra.database import get_db
from trustbridge.services.escrow_service import (
    apply_webhook,
    create_escrow,
    fee_breakdown,
    get_escrow_for_party,
    list_escrows,
    serialize_escrow,
    update_escrow_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/escrow", tags=["escrow"])


@router.get("")
async def my_escrows(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    escrows = await list_escrows(db, user, status=status, limit=limit, offset=offset)
    return [serialize_escrow(e) for e in escrows]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create(
    data: EscrowCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_escrow(await create_escrow(db, user, data))


@router.post("/webhook")
async def webhook(data: EscrowWebhook, db: AsyncSession = Depends(get_db)):
    """Provider callback. Authenticated by the webhook secret, not a bearer token."""
    escrow = await apply_webhook(db, data.escrow_reference_id, data.status, data.webhook_secret)
    logger.info("Webhook applied to escrow %s: %s", escrow.id, escrow.status)
    return {"received": True, "escrowId": escrow.id, "status": escrow.status}


@router.get("/{escrow_id}")
async def get_escrow(
    escrow_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    escrow, role = await get_escrow_for_party(db, user, escrow_id)
    data = serialize_escrow(escrow)
    data["userRole"] = role.value
    return data


@router.get("/{escrow_id}/fees")
async def get_fees(
    escrow_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    escrow, _ = await get_escrow_for_party(db, user, escrow_id)
    return fee_breakdown(escrow)


@router.put("/{escrow_id}/status")
async def update_status(
    escrow_id: str,
    data: EscrowStatusUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    escrow = await update_escrow_status(db, user, escrow_id, data.status, data.notes)
    return serialize_escrow(escrow)
