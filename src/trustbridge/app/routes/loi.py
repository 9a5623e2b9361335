"""LOI routes: draft, edit, send and respond to letters of intent."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import LOICreate, LOIRespond, LOIUpdate
from trustbridge.infra.database import get_db
from trustbridge.services.loi_service import (
    create_loi,
    delete_loi,
    get_loi_for_party,
    list_lois,
    respond_loi,
    send_loi,
    serialize_loi,
    update_loi,
)

router = APIRouter(prefix="/api/loi", tags=["loi"])


@router.get("")
async def my_lois(
    role: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    lois = await list_lois(db, user, role=role, status=status, limit=limit, offset=offset)
    return [serialize_loi(loi) for loi in lois]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create(
    data: LOICreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_loi(await create_loi(db, user, data))


@router.get("/{loi_id}")
async def get_loi(
    loi_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    loi, role = await get_loi_for_party(db, user, loi_id)
    data = serialize_loi(loi)
    data["userRole"] = role.value
    return data


@router.patch("/{loi_id}")
async def update(
    loi_id: str,
    data: LOIUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_loi(await update_loi(db, user, loi_id, data))


@router.delete("/{loi_id}")
async def delete(
    loi_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_loi(db, user, loi_id)
    return {"message": "LOI deleted", "id": loi_id}


@router.post("/{loi_id}/send")
async def send(
    loi_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_loi(await send_loi(db, user, loi_id))


@router.post("/{loi_id}/respond")
async def respond(
    loi_id: str,
    data: LOIRespond,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_loi(await respond_loi(db, user, loi_id, data))
