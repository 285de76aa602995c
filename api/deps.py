"""FastAPI dependencies for authentication and database."""

from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from auth.jwt import decode_token
from auth.principal import Principal
from db import get_db as get_db_session
from models.common import MAX_PAGE, PageParams, SortOrder
from repos import users_repo

# HTTP Bearer token security scheme
security = HTTPBearer()


async def get_db() -> AsyncSession:
    """
    Dependency to get database session.
    Reuses the get_db function from db.py.
    """
    async for session in get_db_session():
        yield session


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Dependency to get the authenticated principal from the JWT token.

    Args:
        credentials: HTTP Bearer token from Authorization header
        db: Database session

    Returns:
        Principal: id and role of the authenticated user

    Raises:
        HTTPException: If token is invalid, expired, or user not found/inactive
    """
    token = credentials.credentials

    try:
        token_payload = decode_token(token)
        user_id = UUID(token_payload.sub)
        role = token_payload.role
    except (JWTError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
        )

    user = await users_repo.get_by_id(db, user_id=user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive",
        )

    # A role change invalidates previously issued tokens
    if user.role != role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token role does not match user role",
        )

    return user.to_principal()


def get_page_params(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int | None = Query(None, ge=1),
    sort_by: str = Query("created_at", max_length=50),
    sort_order: SortOrder = Query(SortOrder.DESC),
) -> PageParams:
    """Dependency resolving paging query parameters (limit capped by settings)."""
    if limit is None:
        limit = config.settings.DEFAULT_PAGE_SIZE
    limit = min(limit, config.settings.MAX_PAGE_SIZE)
    return PageParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
