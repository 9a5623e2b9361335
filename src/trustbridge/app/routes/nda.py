"""NDA routes: sign for a listing, list own agreements."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import NdaSignRequest
from trustbridge.infra.database import get_db
from trustbridge.services.nda_service import list_ndas, serialize_nda, sign_nda

router = APIRouter(prefix="/api/nda", tags=["nda"])


@router.get("")
async def my_agreements(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return [serialize_nda(nda) for nda in await list_ndas(db, user)]


@router.post("")
async def sign(
    data: NdaSignRequest,
    request: Request,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Sign the NDA for a listing. 201 when new, 200 when already signed."""
    nda, created = await sign_nda(
        db,
        user,
        data.listing_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    return JSONResponse(
        status_code=201 if created else 200,
        content={"nda": serialize_nda(nda), "alreadySigned": not created},
    )
