"""Translate policy scopes into SQLAlchemy WHERE clauses."""

from sqlalchemy import false, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from models.client import Client
from models.project import Project, TeamMember
from services.policy import (
    CLIENT_KINDS,
    AnyOf,
    MemberOf,
    NoAccess,
    OwnedBy,
    ResourceKind,
    Scope,
    Unrestricted,
)


def scope_clause(scope: Scope, kind: ResourceKind) -> ColumnElement[bool]:
    """
    Build the WHERE predicate for ``scope`` on the table behind ``kind``.

    Args:
        scope: Scope returned by ``policy.scope_filter``
        kind: Resource kind (client-side kinds use the clients table)

    Returns:
        SQL boolean expression to AND into the query
    """
    kind = ResourceKind(kind)
    is_client = kind in CLIENT_KINDS

    if isinstance(scope, Unrestricted):
        return true()
    if isinstance(scope, NoAccess):
        return false()
    if isinstance(scope, AnyOf):
        return or_(*(scope_clause(inner, kind) for inner in scope.scopes))
    if isinstance(scope, OwnedBy):
        if is_client:
            return Client.engagement_manager_id == scope.user_id
        owned_clients = select(Client.id).where(Client.engagement_manager_id == scope.user_id)
        return Project.client_id.in_(owned_clients)
    if isinstance(scope, MemberOf):
        if is_client:
            return false()
        on_team = select(TeamMember.project_id).where(TeamMember.user_id == scope.user_id)
        return or_(
            Project.project_manager_id == scope.user_id,
            Project.id.in_(on_team),
        )
    raise TypeError(f"Unknown scope: {scope!r}")


LIKE_ESCAPE = "\\"


def contains_pattern(search: str) -> str:
    """Turn free-text search into an ILIKE pattern; wildcards in the input match literally."""
    term = search.strip()
    for char in (LIKE_ESCAPE, "%", "_"):
        term = term.replace(char, LIKE_ESCAPE + char)
    return f"%{term}%"
