"""Project model - the project aggregate with team, tasks, milestones and notes."""

import enum
from datetime import date, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base
from models.common import Currency, Pagination, utcnow
from models.client import NOTE_MAX_LENGTH, normalize_note_content
from services.errors import ValidationError


class ProjectStatus(str, enum.Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProjectPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, enum.Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


# Allowed status transitions; cancelled is reachable from every open state.
STATUS_TRANSITIONS: dict[str, set[str]] = {
    ProjectStatus.PLANNING.value: {ProjectStatus.ACTIVE.value, ProjectStatus.CANCELLED.value},
    ProjectStatus.ACTIVE.value: {
        ProjectStatus.ON_HOLD.value,
        ProjectStatus.COMPLETED.value,
        ProjectStatus.CANCELLED.value,
    },
    ProjectStatus.ON_HOLD.value: {ProjectStatus.ACTIVE.value, ProjectStatus.CANCELLED.value},
    ProjectStatus.COMPLETED.value: set(),
    ProjectStatus.CANCELLED.value: set(),
}

CLOSED_STATUSES = {ProjectStatus.COMPLETED.value, ProjectStatus.CANCELLED.value}


class Project(Base):
    """Project ORM model - owns its team members, tasks, milestones and notes.

    Derived fields (progress, task counters, budget utilization) are written
    only by ``recompute_derived``.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    client_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_manager_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectStatus.PLANNING.value, index=True
    )
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectPriority.MEDIUM.value
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    budget_allocated: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    budget_spent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    budget_currency: Mapped[str] = mapped_column(String(3), nullable=False, default=Currency.USD.value)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    overdue_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    budget_utilization: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    client = relationship("Client", lazy="selectin")
    team_members: Mapped[list["TeamMember"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TeamMember.joined_at",
    )
    tasks: Mapped[list["Task"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Task.created_at",
    )
    milestones: Mapped[list["Milestone"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Milestone.due_date",
    )
    notes: Mapped[list["ProjectNote"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProjectNote.created_at",
    )

    __mapper_args__ = {"version_id_col": row_version}
    __table_args__ = (
        {"comment": "Projects attached to a client"},
    )

    # Virtual fields
    @property
    def budget(self) -> dict:
        return {
            "allocated": self.budget_allocated,
            "spent": self.budget_spent,
            "currency": self.budget_currency,
        }

    @property
    def metrics(self) -> dict:
        return {
            "total_hours": self.total_hours,
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "overdue_tasks": self.overdue_tasks,
            "budget_utilization": self.budget_utilization,
        }

    @property
    def duration_days(self) -> int:
        if not self.start_date or not self.end_date:
            return 0
        return (self.end_date - self.start_date).days

    @property
    def is_overdue(self) -> bool:
        if self.status in CLOSED_STATUSES or not self.end_date:
            return False
        return date.today() > self.end_date

    @property
    def days_remaining(self) -> int:
        if not self.end_date or self.status in CLOSED_STATUSES:
            return 0
        return (self.end_date - date.today()).days

    @property
    def team_size(self) -> int:
        return len(self.team_members)

    def is_manager(self, user_id: UUID) -> bool:
        return self.project_manager_id == user_id

    def has_member(self, user_id: UUID) -> bool:
        return any(member.user_id == user_id for member in self.team_members)

    # Mutations
    def touch(self, now: datetime | None = None) -> None:
        """Recompute derived fields and stamp the update time."""
        self.recompute_derived()
        self.updated_at = now or utcnow()

    def recompute_derived(self, today: date | None = None) -> None:
        today = today or date.today()
        tasks = list(self.tasks)
        if tasks:
            completed = sum(1 for task in tasks if task.status == TaskStatus.COMPLETED.value)
            self.total_tasks = len(tasks)
            self.completed_tasks = completed
            # A completed project keeps the 100% it was closed with
            if self.status != ProjectStatus.COMPLETED.value:
                self.progress = round(100 * completed / len(tasks))
        else:
            self.total_tasks = 0
            self.completed_tasks = 0
        self.overdue_tasks = sum(
            1
            for task in tasks
            if task.status != TaskStatus.COMPLETED.value
            and task.due_date is not None
            and task.due_date < today
        )
        self.total_hours = float(sum(task.actual_hours or 0 for task in tasks))
        if self.budget_allocated and self.budget_allocated > 0:
            self.budget_utilization = round(100 * (self.budget_spent or 0) / self.budget_allocated)
        else:
            self.budget_utilization = 0

    def apply_status(self, new_status: str, now: datetime | None = None) -> None:
        """Move the project to ``new_status`` following the status state machine."""
        now = now or utcnow()
        current = self.status
        if new_status != current and new_status not in STATUS_TRANSITIONS.get(current, set()):
            raise ValidationError(
                f"Cannot change project status from '{current}' to '{new_status}'",
                field="status",
            )
        self.status = new_status
        if new_status == ProjectStatus.ACTIVE.value and self.actual_start_date is None:
            self.actual_start_date = now
        if new_status == ProjectStatus.COMPLETED.value:
            if self.actual_end_date is None or current != new_status:
                self.actual_end_date = now
            self.progress = 100

    def add_team_member(
        self,
        user_id: UUID,
        role: str = "team_member",
        hourly_rate: float = 0,
        now: datetime | None = None,
    ) -> "TeamMember":
        """Add a team member; an existing member gets the new role and rate instead."""
        for member in self.team_members:
            if member.user_id == user_id:
                member.role = role
                member.hourly_rate = hourly_rate
                self.touch(now)
                return member
        member = TeamMember(
            user_id=user_id,
            role=role,
            hourly_rate=hourly_rate,
            joined_at=now or utcnow(),
        )
        self.team_members.append(member)
        self.touch(now)
        return member

    def remove_team_member(self, user_id: UUID, now: datetime | None = None) -> bool:
        for member in list(self.team_members):
            if member.user_id == user_id:
                self.team_members.remove(member)
                self.touch(now)
                return True
        return False

    def add_task(self, *, created_by_id: UUID, now: datetime | None = None, **fields) -> "Task":
        now = now or utcnow()
        task = Task(created_by_id=created_by_id, created_at=now, updated_at=now, **fields)
        if task.status == TaskStatus.COMPLETED.value:
            task.completed_at = now
        self.tasks.append(task)
        self.touch(now)
        return task

    def find_task(self, task_id: UUID) -> "Task | None":
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def update_task(self, task: "Task", changes: dict, now: datetime | None = None) -> "Task":
        now = now or utcnow()
        previous_status = task.status
        for key, value in changes.items():
            setattr(task, key, value)
        if task.status != previous_status:
            if task.status == TaskStatus.COMPLETED.value:
                task.completed_at = now
            elif previous_status == TaskStatus.COMPLETED.value:
                task.completed_at = None
        task.updated_at = now
        self.touch(now)
        return task

    def add_milestone(self, *, now: datetime | None = None, **fields) -> "Milestone":
        now = now or utcnow()
        milestone = Milestone(created_at=now, **fields)
        if milestone.status == MilestoneStatus.COMPLETED.value:
            milestone.completed_at = now
        self.milestones.append(milestone)
        self.touch(now)
        return milestone

    def add_note(
        self,
        content: str,
        author_id: UUID,
        is_private: bool = False,
        now: datetime | None = None,
    ) -> "ProjectNote":
        note = ProjectNote(
            content=normalize_note_content(content),
            author_id=author_id,
            is_private=is_private,
            created_at=now or utcnow(),
        )
        self.notes.append(note)
        self.touch(now)
        return note


class TeamMember(Base):
    """Team member entry; at most one per (project, user)."""

    __tablename__ = "project_team_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="team_member")
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    project: Mapped[Project] = relationship(back_populates="team_members")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_team_member"),
    )


class Task(Base):
    __tablename__ = "project_tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    assigned_to_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.TODO.value)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    project: Mapped[Project] = relationship(back_populates="tasks")


class Milestone(Base):
    __tablename__ = "project_milestones"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MilestoneStatus.PENDING.value
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    project: Mapped[Project] = relationship(back_populates="milestones")


class ProjectNote(Base):
    __tablename__ = "project_notes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(String(NOTE_MAX_LENGTH), nullable=False)
    author_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    project: Mapped[Project] = relationship(back_populates="notes")


# Pydantic schemas
class BudgetInput(BaseModel):
    allocated: float = Field(default=0, ge=0)
    spent: float = Field(default=0, ge=0)
    currency: Currency | None = None


class BudgetUpdate(BaseModel):
    allocated: float | None = Field(default=None, ge=0)
    spent: float | None = Field(default=None, ge=0)
    currency: Currency | None = None


def _strip(value):
    if isinstance(value, str):
        return value.strip()
    return value


class ProjectBase(BaseModel):
    """Base project schema."""

    name: str = Field(min_length=2, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    start_date: date
    end_date: date
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: ProjectPriority = ProjectPriority.MEDIUM
    tags: list[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class ProjectCreate(ProjectBase):
    """Schema for creating a project.

    Note: budget.currency defaults to the client's currency server-side.
    """

    client_id: UUID
    project_manager_id: UUID
    budget: BudgetInput = Field(default_factory=BudgetInput)


class ProjectUpdate(BaseModel):
    """Schema for updating a project (only provided fields are applied).

    Derived fields (progress, metrics) are not accepted here.
    """

    name: str | None = Field(default=None, min_length=2, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    project_manager_id: UUID | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: ProjectStatus | None = None
    priority: ProjectPriority | None = None
    tags: list[str] | None = None
    budget: BudgetUpdate | None = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class StatusUpdate(BaseModel):
    status: ProjectStatus


class TeamMemberCreate(BaseModel):
    user_id: UUID
    role: str = Field(default="team_member", min_length=1, max_length=50)
    hourly_rate: float = Field(default=0, ge=0)


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    assigned_to_id: UUID | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip(value)


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    assigned_to_id: UUID | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)


class MilestoneCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    due_date: date
    status: MilestoneStatus = MilestoneStatus.PENDING

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip(value)


class ProjectNoteCreate(BaseModel):
    content: str = Field(min_length=1, max_length=NOTE_MAX_LENGTH)
    is_private: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value):
        return _strip(value)


class BudgetResponse(BaseModel):
    allocated: float
    spent: float
    currency: Currency


class ProjectMetrics(BaseModel):
    total_hours: float
    completed_tasks: int
    total_tasks: int
    overdue_tasks: int
    budget_utilization: int


class TeamMemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    role: str
    joined_at: datetime
    hourly_rate: float


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    assigned_to_id: UUID | None
    status: TaskStatus
    priority: TaskPriority
    due_date: date | None
    completed_at: datetime | None
    estimated_hours: float | None
    actual_hours: float | None
    created_by_id: UUID
    created_at: datetime
    updated_at: datetime


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    due_date: date
    status: MilestoneStatus
    completed_at: datetime | None


class ProjectNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content: str
    author_id: UUID
    is_private: bool
    created_at: datetime


class ProjectResponse(BaseModel):
    """Schema for project response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    client_id: UUID
    project_manager_id: UUID
    team_members: list[TeamMemberResponse]
    start_date: date
    end_date: date
    actual_start_date: datetime | None
    actual_end_date: datetime | None
    status: ProjectStatus
    priority: ProjectPriority
    progress: int
    budget: BudgetResponse
    milestones: list[MilestoneResponse]
    tasks: list[TaskResponse]
    notes: list[ProjectNoteResponse]
    tags: list[str]
    metrics: ProjectMetrics
    duration_days: int
    is_overdue: bool
    days_remaining: int
    team_size: int
    created_by_id: UUID
    created_at: datetime
    updated_at: datetime


class ProjectListResponse(BaseModel):
    projects: list[ProjectResponse]
    pagination: Pagination


class ProjectStats(BaseModel):
    total_projects: int = 0
    active_projects: int = 0
    completed_projects: int = 0
    overdue_projects: int = 0
    total_budget_allocated: float = 0
    total_budget_spent: float = 0
    average_progress: float = 0
