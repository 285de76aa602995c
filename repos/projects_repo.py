"""Repository for Project database operations."""

from datetime import date
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.common import SortOrder
from models.project import CLOSED_STATUSES, Project, ProjectStatus
from repos.scoping import LIKE_ESCAPE, contains_pattern, scope_clause
from services.policy import ResourceKind, Scope

SORTABLE_FIELDS = {
    "name": Project.name,
    "status": Project.status,
    "priority": Project.priority,
    "progress": Project.progress,
    "start_date": Project.start_date,
    "end_date": Project.end_date,
    "created_at": Project.created_at,
    "updated_at": Project.updated_at,
}


def _filtered(
    query,
    *,
    scope: Scope,
    search: str | None = None,
    status: str | None = None,
    client_id: UUID | None = None,
    project_manager_id: UUID | None = None,
    priority: str | None = None,
    start_from: date | None = None,
    start_to: date | None = None,
):
    query = query.where(scope_clause(scope, ResourceKind.PROJECT))
    if search:
        pattern = contains_pattern(search)
        query = query.where(
            or_(
                Project.name.ilike(pattern, escape=LIKE_ESCAPE),
                Project.description.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    if status:
        query = query.where(Project.status == status)
    if client_id:
        query = query.where(Project.client_id == client_id)
    if project_manager_id:
        query = query.where(Project.project_manager_id == project_manager_id)
    if priority:
        query = query.where(Project.priority == priority)
    if start_from:
        query = query.where(Project.start_date >= start_from)
    if start_to:
        query = query.where(Project.start_date <= start_to)
    return query


async def get_by_id(
    session: AsyncSession,
    *,
    project_id: UUID,
    scope: Scope,
) -> Project | None:
    """
    Get a project by ID within ``scope``.

    Args:
        session: Database session
        project_id: Project ID to fetch
        scope: Caller's project scope

    Returns:
        Project if found and visible, None otherwise
    """
    query = (
        select(Project)
        .where(Project.id == project_id, scope_clause(scope, ResourceKind.PROJECT))
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def list(
    session: AsyncSession,
    *,
    scope: Scope,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    skip: int = 0,
    limit: int = 10,
    **filters,
) -> list[Project]:
    """
    List projects visible in ``scope``.

    Args:
        session: Database session
        scope: Caller's project scope
        sort_by: Whitelisted sort field (falls back to ``created_at``)
        sort_order: asc or desc; ``id`` is the stable secondary key
        skip: Rows to skip
        limit: Page size
        **filters: search, status, client_id, project_manager_id, priority,
            start_from, start_to

    Returns:
        List of projects for the requested page
    """
    column = SORTABLE_FIELDS.get(sort_by, Project.created_at)
    primary = column.asc() if sort_order == SortOrder.ASC else column.desc()
    query = _filtered(select(Project), scope=scope, **filters)
    query = query.order_by(primary, Project.id.asc()).offset(skip).limit(limit)
    result = await session.execute(query)
    return [project for project in result.scalars().all()]


async def count(session: AsyncSession, *, scope: Scope, **filters) -> int:
    query = _filtered(select(func.count(Project.id)), scope=scope, **filters)
    result = await session.execute(query)
    return result.scalar_one()


async def create(session: AsyncSession, project: Project) -> Project:
    session.add(project)
    await session.flush()
    return project


async def delete(session: AsyncSession, project: Project) -> None:
    """Delete a loaded project; team, tasks, milestones and notes cascade."""
    await session.delete(project)
    await session.flush()


async def stats(session: AsyncSession, *, scope: Scope, today: date | None = None) -> dict:
    """Aggregate project statistics within ``scope``."""
    today = today or date.today()
    overdue = (Project.end_date < today) & Project.status.not_in(sorted(CLOSED_STATUSES))
    query = select(
        func.count(Project.id),
        func.sum(case((Project.status == ProjectStatus.ACTIVE.value, 1), else_=0)),
        func.sum(case((Project.status == ProjectStatus.COMPLETED.value, 1), else_=0)),
        func.sum(case((overdue, 1), else_=0)),
        func.coalesce(func.sum(Project.budget_allocated), 0),
        func.coalesce(func.sum(Project.budget_spent), 0),
        func.avg(Project.progress),
    ).where(scope_clause(scope, ResourceKind.PROJECT))
    result = await session.execute(query)
    total, active, completed, overdue_count, allocated, spent, avg_progress = result.one()
    return {
        "total_projects": total or 0,
        "active_projects": active or 0,
        "completed_projects": completed or 0,
        "overdue_projects": overdue_count or 0,
        "total_budget_allocated": float(allocated or 0),
        "total_budget_spent": float(spent or 0),
        "average_progress": round(float(avg_progress or 0), 2),
    }
