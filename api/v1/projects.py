"""Project endpoints scoped by the caller's role."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_principal, get_db, get_page_params
from auth.principal import Principal
from models.common import PageParams
from models.project import (
    MilestoneCreate,
    ProjectCreate,
    ProjectListResponse,
    ProjectNoteCreate,
    ProjectPriority,
    ProjectResponse,
    ProjectStats,
    ProjectStatus,
    ProjectUpdate,
    StatusUpdate,
    TaskCreate,
    TaskUpdate,
    TeamMemberCreate,
)
from services import projects_service

router = APIRouter()


@router.get("/projects", response_model=ProjectListResponse)
async def list_projects_endpoint(
    search: str | None = Query(None, max_length=200),
    status_filter: ProjectStatus | None = Query(None, alias="status"),
    client_id: UUID | None = Query(None),
    project_manager_id: UUID | None = Query(None),
    priority: ProjectPriority | None = Query(None),
    start_from: date | None = Query(None),
    start_to: date | None = Query(None),
    page: PageParams = Depends(get_page_params),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    List projects visible to the caller.

    Admins see all projects. Engagement managers see projects of their
    clients plus those they manage or work on. Resource managers see projects
    they manage or work on.
    """
    projects, pagination = await projects_service.list_projects(
        db,
        principal=principal,
        page=page,
        search=search,
        status=status_filter.value if status_filter else None,
        client_id=client_id,
        project_manager_id=project_manager_id,
        priority=priority.value if priority else None,
        start_from=start_from,
        start_to=start_to,
    )
    return {"projects": projects, "pagination": pagination}


@router.get("/projects/stats", response_model=ProjectStats)
async def project_stats_endpoint(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await projects_service.project_stats(db, principal=principal)


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    payload: ProjectCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a project for a client.

    Budget currency defaults to the client's currency.
    """
    return await projects_service.create_project(db, principal=principal, payload=payload)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project_endpoint(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Get a project by ID (404 if outside the caller's scope)."""
    return await projects_service.get_project(db, principal=principal, project_id=project_id)


@router.put("/projects/{project_id}", response_model=ProjectResponse)
async def update_project_endpoint(
    project_id: UUID,
    payload: ProjectUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Update a project (project manager or creator only)."""
    return await projects_service.update_project(
        db, principal=principal, project_id=project_id, payload=payload
    )


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project_endpoint(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Delete a project (creator only)."""
    await projects_service.delete_project(db, principal=principal, project_id=project_id)


@router.patch("/projects/{project_id}/status", response_model=ProjectResponse)
async def update_project_status_endpoint(
    project_id: UUID,
    payload: StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Change project status (project manager only)."""
    return await projects_service.update_project_status(
        db, principal=principal, project_id=project_id, status=payload.status
    )


@router.post("/projects/{project_id}/team", response_model=ProjectResponse)
async def add_team_member_endpoint(
    project_id: UUID,
    payload: TeamMemberCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Add a team member; re-adding a member updates role and rate."""
    return await projects_service.add_team_member(
        db, principal=principal, project_id=project_id, payload=payload
    )


@router.delete("/projects/{project_id}/team/{user_id}", response_model=ProjectResponse)
async def remove_team_member_endpoint(
    project_id: UUID,
    user_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await projects_service.remove_team_member(
        db, principal=principal, project_id=project_id, user_id=user_id
    )


@router.post(
    "/projects/{project_id}/tasks",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_task_endpoint(
    project_id: UUID,
    payload: TaskCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    project, _ = await projects_service.add_task(
        db, principal=principal, project_id=project_id, payload=payload
    )
    return project


@router.patch("/projects/{project_id}/tasks/{task_id}", response_model=ProjectResponse)
async def update_task_endpoint(
    project_id: UUID,
    task_id: UUID,
    payload: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    project, _ = await projects_service.update_task(
        db, principal=principal, project_id=project_id, task_id=task_id, payload=payload
    )
    return project


@router.post(
    "/projects/{project_id}/milestones",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_milestone_endpoint(
    project_id: UUID,
    payload: MilestoneCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await projects_service.add_milestone(
        db, principal=principal, project_id=project_id, payload=payload
    )


@router.post(
    "/projects/{project_id}/notes",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_project_note_endpoint(
    project_id: UUID,
    payload: ProjectNoteCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Append a note to a project (project manager only)."""
    return await projects_service.add_project_note(
        db, principal=principal, project_id=project_id, payload=payload
    )
