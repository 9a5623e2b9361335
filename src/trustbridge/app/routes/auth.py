"""Authentication routes: signup, login, me. Also the auth dependencies."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.models import User
from trustbridge.domain.schemas import TokenResponse, UserCreate, UserLogin, UserResponse
from trustbridge.infra.database import get_db
from trustbridge.services.account_service import account_summary
from trustbridge.services.auth_service import (
    create_access_token,
    create_user,
    decode_token,
    get_user_by_email,
    get_user_by_id,
    verify_password,
)
from trustbridge.services.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def _user_from_request(request: Request, db: AsyncSession) -> Optional[User]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ")
    payload = decode_token(token)
    if not payload or "sub" not in payload:
        raise AuthenticationError("Invalid or expired token", code="INVALID_TOKEN")
    user = await get_user_by_id(db, payload["sub"])
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive", code="INVALID_TOKEN")
    return user


async def get_current_user_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency: extract current user from Bearer token."""
    user = await _user_from_request(request, db)
    if user is None:
        raise AuthenticationError("Authentication required", code="AUTHENTICATION_REQUIRED")
    return user


async def get_optional_user_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Dependency: current user, or None for anonymous requests."""
    try:
        return await _user_from_request(request, db)
    except AuthenticationError:
        return None


def require_role(*roles: str):
    """Factory: dependency that checks user has one of the required roles."""

    async def checker(user: User = Depends(get_current_user_dep)):
        if user.role not in roles:
            raise AuthorizationError("Insufficient permissions", code="INSUFFICIENT_PERMISSIONS")
        return user

    return checker


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(data: UserCreate, db: AsyncSession = Depends(get_db)):
    email = data.email.strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required", code="INVALID_EMAIL")
    if len(data.password) < 8:
        raise ValidationError("Password must be at least 8 characters", code="INVALID_PASSWORD")
    if not data.name.strip():
        raise ValidationError("Name is required", code="INVALID_NAME")

    if await get_user_by_email(db, email):
        raise ConflictError("Email already registered", code="EMAIL_ALREADY_REGISTERED")

    user = await create_user(db, email, data.password, data.name.strip())
    logger.info("User %s signed up", user.id)

    token = create_access_token(user.id, user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user)).to_json()


@router.post("/login")
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await get_user_by_email(db, data.email.strip().lower())
    if not user or not verify_password(data.password, user.password_hash):
        raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")
    if not user.is_active:
        raise AuthenticationError("Account is inactive", code="INVALID_CREDENTIALS")
    token = create_access_token(user.id, user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user)).to_json()


@router.get("/me")
async def me(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    data = UserResponse.model_validate(user).to_json()
    data.update(await account_summary(db, user))
    return data
