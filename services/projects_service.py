"""Service layer for Project business logic."""

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from auth.principal import Principal
from models.common import PageParams, Pagination
from models.project import (
    MilestoneCreate,
    Project,
    ProjectCreate,
    ProjectNoteCreate,
    ProjectStatus,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskUpdate,
    TeamMemberCreate,
)
from repos import clients_repo, projects_repo, users_repo
from services import policy
from services.concurrency import run_unit
from services.errors import (
    AccessDeniedError,
    ClientNotFoundError,
    ManagerNotFoundError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
)
from services.policy import Action, ResourceKind, Unrestricted

logger = logging.getLogger(__name__)

# Fields an update may not clear
NON_NULLABLE_FIELDS = {"name", "project_manager_id", "start_date", "end_date", "status", "priority", "tags"}


def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else value


async def _load_project(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
) -> Project:
    """Load a project inside the caller's visibility scope or raise NotFound."""
    project = await projects_repo.get_by_id(
        session,
        project_id=project_id,
        scope=policy.scope_filter(principal, ResourceKind.PROJECT),
    )
    if not project:
        raise NotFoundError("Project not found")
    return project


async def _ensure_manager(session: AsyncSession, user_id: UUID) -> None:
    if not await users_repo.exists(session, user_id=user_id):
        raise ManagerNotFoundError("Project manager not found")


async def create_project(
    session: AsyncSession,
    *,
    principal: Principal,
    payload: ProjectCreate,
    timeout: float | None = None,
) -> Project:
    """
    Create a project attached to a client.

    The client is resolved first. Engagement managers may only attach
    projects to clients they own; a client they do not own is reported as
    access denied because the caller named it explicitly.

    Args:
        session: Database session
        principal: Authenticated caller
        payload: Project creation data
        timeout: Optional bound in seconds

    Returns:
        Created project

    Raises:
        AccessDeniedError: Role may not create projects, or client not owned
        ClientNotFoundError: Referenced client does not exist
        ManagerNotFoundError: Referenced project manager does not exist
    """
    policy.require(principal, ResourceKind.PROJECT, Action.CREATE)

    async def operation() -> Project:
        client = await clients_repo.get_by_id(
            session, client_id=payload.client_id, scope=Unrestricted()
        )
        if not client:
            raise ClientNotFoundError("Client not found")
        client_scope = policy.scope_filter(principal, ResourceKind.CLIENT)
        if not policy.scope_matches(client_scope, ResourceKind.CLIENT, client):
            raise AccessDeniedError("You can only create projects for clients you manage")

        await _ensure_manager(session, payload.project_manager_id)

        budget = payload.budget
        project = Project(
            id=uuid4(),
            name=payload.name,
            description=payload.description,
            client_id=client.id,
            client=client,
            project_manager_id=payload.project_manager_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            status=ProjectStatus.PLANNING.value,
            priority=payload.priority.value,
            progress=0,
            budget_allocated=budget.allocated,
            budget_spent=budget.spent,
            budget_currency=budget.currency.value if budget.currency else client.currency,
            tags=list(payload.tags),
            created_by_id=principal.id,
            team_members=[],
            tasks=[],
            milestones=[],
            notes=[],
        )
        # Requested initial status still has to be reachable from planning
        project.apply_status(payload.status.value)
        project.touch()
        await projects_repo.create(session, project)
        await session.commit()
        logger.info("Project %s created for client %s by %s", project.id, client.id, principal.id)
        return project

    return await run_unit(session, operation, name="create_project", timeout=timeout)


async def list_projects(
    session: AsyncSession,
    *,
    principal: Principal,
    page: PageParams,
    timeout: float | None = None,
    **filters,
) -> tuple[list[Project], Pagination]:
    """
    List projects visible to the caller.

    Args:
        session: Database session
        principal: Authenticated caller
        page: Paging and sorting parameters
        timeout: Optional bound in seconds
        **filters: search, status, client_id, project_manager_id, priority,
            start_from, start_to

    Returns:
        Tuple of (projects, pagination)
    """
    policy.require(principal, ResourceKind.PROJECT, Action.LIST)
    scope = policy.scope_filter(principal, ResourceKind.PROJECT)
    filters = {key: value for key, value in filters.items() if value is not None}

    async def operation():
        total = await projects_repo.count(session, scope=scope, **filters)
        projects = await projects_repo.list(
            session,
            scope=scope,
            sort_by=page.sort_by,
            sort_order=page.sort_order,
            skip=page.skip,
            limit=page.limit,
            **filters,
        )
        return projects, Pagination.build(page=page.page, limit=page.limit, total_count=total)

    return await run_unit(session, operation, name="list_projects", timeout=timeout)


async def get_project(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    timeout: float | None = None,
) -> Project:
    """
    Get a project by ID.

    Raises:
        NotFoundError: Project missing or outside the caller's scope
    """
    policy.require(principal, ResourceKind.PROJECT, Action.READ)

    async def operation() -> Project:
        project = await _load_project(session, principal=principal, project_id=project_id)
        if not policy.can_perform(principal, ResourceKind.PROJECT, Action.READ, project):
            raise NotFoundError("Project not found")
        return project

    return await run_unit(session, operation, name="get_project", timeout=timeout)


async def update_project(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    payload: ProjectUpdate,
    timeout: float | None = None,
) -> Project:
    """
    Update an existing project (only provided fields are applied).

    A status change goes through the status state machine and, like
    ``update_project_status``, is reserved to the project manager. Derived
    fields are recomputed; they cannot be set here.

    Raises:
        NotFoundError: Project missing or outside the caller's scope
        AccessDeniedError: Caller is neither PM nor creator, or a non-PM
            changes the status
        ValidationError: Dates out of order or illegal status transition
    """
    policy.require(principal, ResourceKind.PROJECT, Action.UPDATE)
    changes = payload.model_dump(exclude_unset=True)

    for field in NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null", field=field)

    async def operation() -> Project:
        project = await _load_project(session, principal=principal, project_id=project_id)
        policy.require(principal, ResourceKind.PROJECT, Action.UPDATE, project)
        if "status" in changes:
            policy.require(principal, ResourceKind.PROJECT_STATUS, Action.UPDATE, project)

        start = changes.get("start_date", project.start_date)
        end = changes.get("end_date", project.end_date)
        if end < start:
            raise ValidationError("End date must be on or after start date", field="end_date")

        if "project_manager_id" in changes and changes["project_manager_id"] != project.project_manager_id:
            await _ensure_manager(session, changes["project_manager_id"])

        for field in ("name", "description", "project_manager_id", "start_date", "end_date", "tags"):
            if field in changes:
                setattr(project, field, changes[field])
        if "priority" in changes:
            project.priority = _enum_value(changes["priority"])

        budget = changes.get("budget")
        if budget:
            if budget.get("allocated") is not None:
                project.budget_allocated = budget["allocated"]
            if budget.get("spent") is not None:
                project.budget_spent = budget["spent"]
            if budget.get("currency") is not None:
                project.budget_currency = _enum_value(budget["currency"])

        if "status" in changes:
            project.apply_status(_enum_value(changes["status"]))

        project.touch()
        await session.commit()
        return project

    return await run_unit(session, operation, name="update_project", timeout=timeout)


async def delete_project(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    timeout: float | None = None,
) -> None:
    """
    Delete a project with its team, tasks, milestones and notes.

    Raises:
        NotFoundError: Project missing or outside the caller's scope
        AccessDeniedError: Caller did not create the project
    """
    policy.require(principal, ResourceKind.PROJECT, Action.DELETE)

    async def operation() -> None:
        project = await _load_project(session, principal=principal, project_id=project_id)
        policy.require(principal, ResourceKind.PROJECT, Action.DELETE, project)
        await projects_repo.delete(session, project)
        await session.commit()
        logger.info("Project %s deleted by %s", project_id, principal.id)

    await run_unit(session, operation, name="delete_project", timeout=timeout)


async def _mutate(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    kind: ResourceKind,
    action: Action,
    mutation,
    name: str,
    timeout: float | None,
):
    """Shared load-check-mutate-commit cycle for project sub-resources."""
    policy.require(principal, kind, action)

    async def operation():
        project = await _load_project(session, principal=principal, project_id=project_id)
        policy.require(principal, kind, action, project)
        result = await mutation(project)
        await session.commit()
        return result

    return await run_unit(session, operation, name=name, timeout=timeout)


async def update_project_status(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    status: ProjectStatus,
    timeout: float | None = None,
) -> Project:
    """
    Change project status.

    Entering ``active`` stamps ``actual_start_date`` if unset; entering
    ``completed`` stamps ``actual_end_date`` and forces progress to 100.

    Raises:
        NotFoundError: Project missing or outside the caller's scope
        AccessDeniedError: Caller is not the project manager
        ValidationError: Illegal transition
    """

    async def mutation(project: Project) -> Project:
        project.apply_status(ProjectStatus(status).value)
        project.touch()
        return project

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_STATUS,
        action=Action.UPDATE,
        mutation=mutation,
        name="update_project_status",
        timeout=timeout,
    )


async def add_team_member(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    payload: TeamMemberCreate,
    timeout: float | None = None,
) -> Project:
    """
    Add a user to the project team.

    Adding a user who is already on the team keeps a single entry and
    applies the new role and hourly rate.

    Raises:
        UserNotFoundError: User does not exist
    """

    async def mutation(project: Project) -> Project:
        if not project.has_member(payload.user_id):
            if not await users_repo.exists(session, user_id=payload.user_id):
                raise UserNotFoundError("User not found")
        project.add_team_member(payload.user_id, role=payload.role, hourly_rate=payload.hourly_rate)
        return project

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_TEAM,
        action=Action.CREATE,
        mutation=mutation,
        name="add_team_member",
        timeout=timeout,
    )


async def remove_team_member(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    user_id: UUID,
    timeout: float | None = None,
) -> Project:
    """Remove a user from the project team (no-op if not a member)."""

    async def mutation(project: Project) -> Project:
        project.remove_team_member(user_id)
        return project

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_TEAM,
        action=Action.DELETE,
        mutation=mutation,
        name="remove_team_member",
        timeout=timeout,
    )


async def add_task(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    payload: TaskCreate,
    timeout: float | None = None,
) -> tuple[Project, Task]:
    """Append a task and recompute progress and metrics."""

    async def mutation(project: Project):
        if payload.assigned_to_id and not await users_repo.exists(session, user_id=payload.assigned_to_id):
            raise UserNotFoundError("Assigned user not found")
        data = payload.model_dump()
        data["status"] = payload.status.value
        data["priority"] = payload.priority.value
        task = project.add_task(id=uuid4(), created_by_id=principal.id, **data)
        return project, task

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_TASK,
        action=Action.CREATE,
        mutation=mutation,
        name="add_task",
        timeout=timeout,
    )


async def update_task(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    task_id: UUID,
    payload: TaskUpdate,
    timeout: float | None = None,
) -> tuple[Project, Task]:
    """
    Update a task (only provided fields are applied).

    Raises:
        NotFoundError: Project or task missing
    """
    changes = payload.model_dump(exclude_unset=True)
    for field in ("title", "status", "priority"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null", field=field)
    for field in ("status", "priority"):
        if field in changes:
            changes[field] = changes[field].value

    async def mutation(project: Project):
        task = project.find_task(task_id)
        if not task:
            raise NotFoundError("Task not found")
        if changes.get("assigned_to_id") and not await users_repo.exists(
            session, user_id=changes["assigned_to_id"]
        ):
            raise UserNotFoundError("Assigned user not found")
        project.update_task(task, changes)
        return project, task

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_TASK,
        action=Action.UPDATE,
        mutation=mutation,
        name="update_task",
        timeout=timeout,
    )


async def add_milestone(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    payload: MilestoneCreate,
    timeout: float | None = None,
) -> Project:
    async def mutation(project: Project) -> Project:
        data = payload.model_dump()
        data["status"] = payload.status.value
        project.add_milestone(id=uuid4(), **data)
        return project

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_MILESTONE,
        action=Action.CREATE,
        mutation=mutation,
        name="add_milestone",
        timeout=timeout,
    )


async def add_project_note(
    session: AsyncSession,
    *,
    principal: Principal,
    project_id: UUID,
    payload: ProjectNoteCreate,
    timeout: float | None = None,
) -> Project:
    """
    Append a note to a project.

    Raises:
        ValidationError: Content empty after trimming or too long
        AccessDeniedError: Caller is not the project manager
    """

    async def mutation(project: Project) -> Project:
        project.add_note(payload.content, principal.id, is_private=payload.is_private)
        return project

    return await _mutate(
        session,
        principal=principal,
        project_id=project_id,
        kind=ResourceKind.PROJECT_NOTE,
        action=Action.CREATE,
        mutation=mutation,
        name="add_project_note",
        timeout=timeout,
    )


async def project_stats(
    session: AsyncSession,
    *,
    principal: Principal,
    timeout: float | None = None,
) -> dict:
    """Aggregate statistics over the projects visible to the caller."""
    policy.require(principal, ResourceKind.PROJECT, Action.LIST)
    scope = policy.scope_filter(principal, ResourceKind.PROJECT)

    async def operation() -> dict:
        return await projects_repo.stats(session, scope=scope)

    return await run_unit(session, operation, name="project_stats", timeout=timeout)
