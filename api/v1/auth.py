"""Authentication endpoints (DEV-ONLY)."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

import config
from api.deps import get_current_principal, get_db
from auth.jwt import create_access_token
from auth.principal import Principal
from auth.service import authenticate
from models.user import UserResponse
from repos import users_repo

router = APIRouter()


class DevLoginRequest(BaseModel):
    """Request schema for dev login."""

    email: EmailStr


class DevLoginResponse(BaseModel):
    """Response schema for dev login."""

    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


@router.post("/auth/dev-login", response_model=DevLoginResponse)
async def dev_login(
    request: DevLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    DEV-ONLY endpoint to login an existing user and return a JWT token.

    Args:
        request: Login request with email
        db: Database session

    Returns:
        DevLoginResponse: JWT token and principal information
    """
    if config.settings.APP_ENV == "production":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Dev login is not available in production",
        )

    principal = await authenticate(db, email=request.email)
    access_token = create_access_token(user_id=principal.id, role=principal.role.value)

    return DevLoginResponse(
        access_token=access_token,
        user_id=str(principal.id),
        role=principal.role.value,
    )


@router.get("/auth/me", response_model=UserResponse)
async def me(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Return the authenticated user."""
    return await users_repo.get_by_id(db, user_id=principal.id)
