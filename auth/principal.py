"""Authenticated principal passed to every coordinator call."""

import enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Role(str, enum.Enum):
    """User roles."""

    ADMIN = "admin"
    ENGAGEMENT_MANAGER = "engagement_manager"
    RESOURCE_MANAGER = "resource_manager"


class Principal(BaseModel):
    """The authenticated actor making a request.

    Immutable for the lifetime of a request.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
