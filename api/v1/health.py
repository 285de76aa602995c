"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from api.deps import get_db
from services.errors import UpstreamUnavailableError

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and environment information
    """
    return {
        "status": "ok",
        "env": config.settings.ENV,
    }


@router.get("/health/db")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    """Check that the database answers a trivial query."""
    try:
        await db.execute(text("SELECT 1"))
    except DBAPIError as e:
        raise UpstreamUnavailableError("Database is unavailable") from e
    return {"status": "ok", "database": "connected"}
