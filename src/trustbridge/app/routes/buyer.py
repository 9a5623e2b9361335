"""Buyer routes: acquisition profile and verification request."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import BuyerProfileWrite, VerificationRequest
from trustbridge.infra.database import get_db
from trustbridge.services.buyer_service import (
    create_buyer_profile,
    get_verification,
    request_verification,
    require_buyer_profile,
    serialize_profile,
    serialize_verification,
    update_buyer_profile,
)

profile_router = APIRouter(prefix="/api/buyer-profile", tags=["buyer"])
verification_router = APIRouter(prefix="/api/buyer-verification", tags=["buyer"])


# ---------------------------------------------------------------------------
# Buyer profile
# ---------------------------------------------------------------------------


@profile_router.get("")
async def get_profile(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_profile(await require_buyer_profile(db, user))


@profile_router.post("", status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: BuyerProfileWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_profile(await create_buyer_profile(db, user, data))


@profile_router.put("")
async def update_profile(
    data: BuyerProfileWrite,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_profile(await update_buyer_profile(db, user, data))


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@verification_router.get("")
async def my_verification(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_verification(await get_verification(db, user))


@verification_router.post("", status_code=status.HTTP_201_CREATED)
async def create_verification(
    data: Optional[VerificationRequest] = None,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_verification(await request_verification(db, user, data.notes if data else None))
