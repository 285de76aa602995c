"""Database models."""

from db import Base

# Import all models so Alembic can detect them
from models.user import User
from models.client import Client, ClientDocument, ClientNote
from models.project import Milestone, Project, ProjectNote, Task, TeamMember

__all__ = [
    "Base",
    "User",
    "Client",
    "ClientDocument",
    "ClientNote",
    "Project",
    "TeamMember",
    "Task",
    "Milestone",
    "ProjectNote",
]
