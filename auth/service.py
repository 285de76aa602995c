"""Authentication service (dev login by e-mail)."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from auth.principal import Principal
from repos import users_repo
from services.errors import InvalidCredentialsError

logger = logging.getLogger(__name__)


async def authenticate(session: AsyncSession, *, email: str) -> Principal:
    """
    Resolve a principal from login credentials.

    Password verification is not part of this backend; a known, active
    e-mail is enough to log in outside production.

    Args:
        session: Database session
        email: Login e-mail

    Returns:
        Principal for the user

    Raises:
        InvalidCredentialsError: Unknown or inactive user
    """
    user = await users_repo.get_by_email(session, email=email)
    if not user or not user.is_active:
        logger.info("Rejected login for %s", email)
        raise InvalidCredentialsError("Invalid credentials")
    return user.to_principal()
