"""Repository for Client database operations.

Every read takes a policy ``Scope``; it is folded into the WHERE clause so a
row outside the caller's scope is indistinguishable from a missing one.
"""

from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.client import Client, ClientDocument, ClientStatus
from models.common import SortOrder
from models.project import Project
from repos.scoping import LIKE_ESCAPE, contains_pattern, scope_clause
from services.policy import ResourceKind, Scope

SORTABLE_FIELDS = {
    "name": Client.name,
    "code": Client.code,
    "status": Client.status,
    "currency": Client.currency,
    "created_at": Client.created_at,
    "updated_at": Client.updated_at,
}


def _filtered(
    query,
    *,
    scope: Scope,
    search: str | None = None,
    status: str | None = None,
    currency: str | None = None,
):
    query = query.where(scope_clause(scope, ResourceKind.CLIENT))
    if search:
        pattern = contains_pattern(search)
        query = query.where(
            or_(
                Client.name.ilike(pattern, escape=LIKE_ESCAPE),
                Client.code.ilike(pattern, escape=LIKE_ESCAPE),
                Client.description.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    if status:
        query = query.where(Client.status == status)
    if currency:
        query = query.where(Client.currency == currency)
    return query


async def get_by_id(
    session: AsyncSession,
    *,
    client_id: UUID,
    scope: Scope,
) -> Client | None:
    """
    Get a client by ID within ``scope``.

    Args:
        session: Database session
        client_id: Client ID to fetch
        scope: Caller's client scope

    Returns:
        Client if found and visible, None otherwise
    """
    query = (
        select(Client)
        .where(Client.id == client_id, scope_clause(scope, ResourceKind.CLIENT))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_by_code(session: AsyncSession, *, code: str) -> Client | None:
    result = await session.execute(select(Client).where(Client.code == code.upper()))
    return result.scalar_one_or_none()


async def list(
    session: AsyncSession,
    *,
    scope: Scope,
    search: str | None = None,
    status: str | None = None,
    currency: str | None = None,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    skip: int = 0,
    limit: int = 10,
) -> list[Client]:
    """
    List clients visible in ``scope``.

    Sorting uses ``sort_by`` (unknown fields fall back to ``created_at``)
    with ``id`` as a stable secondary key.
    """
    column = SORTABLE_FIELDS.get(sort_by, Client.created_at)
    primary = column.asc() if sort_order == SortOrder.ASC else column.desc()
    query = _filtered(
        select(Client), scope=scope, search=search, status=status, currency=currency
    )
    query = query.order_by(primary, Client.id.asc()).offset(skip).limit(limit)
    result = await session.execute(query)
    return [client for client in result.scalars().all()]


async def count(
    session: AsyncSession,
    *,
    scope: Scope,
    search: str | None = None,
    status: str | None = None,
    currency: str | None = None,
) -> int:
    query = _filtered(
        select(func.count(Client.id)),
        scope=scope,
        search=search,
        status=status,
        currency=currency,
    )
    result = await session.execute(query)
    return result.scalar_one()


async def create(session: AsyncSession, client: Client) -> Client:
    session.add(client)
    await session.flush()
    return client


async def delete(session: AsyncSession, client: Client) -> None:
    """Delete a loaded client; its documents and notes cascade."""
    await session.delete(client)
    await session.flush()


async def has_projects(session: AsyncSession, *, client_id: UUID) -> bool:
    result = await session.execute(
        select(Project.id).where(Project.client_id == client_id).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def stats(session: AsyncSession, *, scope: Scope) -> dict:
    """
    Aggregate client statistics within ``scope``.

    Returns:
        Dict with totals and ``currency_stats`` as ``[{currency, count}]``
    """
    scoped = scope_clause(scope, ResourceKind.CLIENT)

    status_rows = await session.execute(
        select(Client.status, func.count(Client.id)).where(scoped).group_by(Client.status)
    )
    by_status = {status: total for status, total in status_rows.all()}

    currency_rows = await session.execute(
        select(Client.currency, func.count(Client.id))
        .where(scoped)
        .group_by(Client.currency)
        .order_by(func.count(Client.id).desc(), Client.currency.asc())
    )
    currency_stats = [
        {"currency": currency, "count": total} for currency, total in currency_rows.all()
    ]

    documents = await session.execute(
        select(func.count(ClientDocument.id))
        .join(Client, ClientDocument.client_id == Client.id)
        .where(scoped)
    )

    # Revenue lives in the JSON metrics blob; sum it here to stay dialect-neutral
    metrics_rows = await session.execute(select(Client.metrics).where(scoped))
    total_revenue = sum(
        float((metrics or {}).get("total_revenue") or 0) for metrics in metrics_rows.scalars().all()
    )

    return {
        "total_clients": sum(by_status.values()),
        "active_clients": by_status.get(ClientStatus.ACTIVE.value, 0),
        "prospects": by_status.get(ClientStatus.PROSPECT.value, 0),
        "total_revenue": total_revenue,
        "total_documents": documents.scalar_one(),
        "currency_stats": currency_stats,
    }
