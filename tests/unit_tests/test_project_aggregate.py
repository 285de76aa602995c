"""Unit tests for the Project aggregate (transient objects, no session)."""

from datetime import date, datetime, UTC
from uuid import uuid4

import pytest

from models.project import Project, ProjectStatus, TaskStatus
from services.errors import ValidationError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def make_project(**overrides) -> Project:
    data = dict(
        id=uuid4(),
        name="Migration",
        client_id=uuid4(),
        project_manager_id=uuid4(),
        created_by_id=uuid4(),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        status=ProjectStatus.PLANNING.value,
        priority="medium",
        progress=0,
        budget_allocated=0,
        budget_spent=0,
        budget_currency="USD",
        tags=[],
        team_members=[],
        tasks=[],
        milestones=[],
        notes=[],
    )
    data.update(overrides)
    return Project(**data)


def add_tasks(project: Project, statuses: list[str]) -> None:
    for index, status in enumerate(statuses):
        project.add_task(id=uuid4(), created_by_id=uuid4(), title=f"Task {index}", status=status, now=NOW)


class TestDerivedFields:
    def test_progress_is_completed_share_of_tasks(self):
        project = make_project()
        add_tasks(project, [TaskStatus.COMPLETED.value] + [TaskStatus.TODO.value] * 3)

        assert project.progress == 25
        assert project.metrics["total_tasks"] == 4
        assert project.metrics["completed_tasks"] == 1

    def test_progress_unchanged_without_tasks(self):
        project = make_project(progress=40)
        project.add_note("Kickoff done", uuid4(), now=NOW)
        assert project.progress == 40

    def test_completing_a_task_updates_progress_and_timestamp(self):
        project = make_project()
        add_tasks(project, [TaskStatus.TODO.value, TaskStatus.TODO.value])
        task = project.tasks[0]

        project.update_task(task, {"status": TaskStatus.COMPLETED.value}, now=NOW)

        assert project.progress == 50
        assert task.completed_at == NOW

        project.update_task(task, {"status": TaskStatus.IN_PROGRESS.value}, now=NOW)
        assert task.completed_at is None
        assert project.progress == 0

    def test_overdue_tasks_and_hours(self):
        project = make_project()
        project.add_task(
            id=uuid4(), created_by_id=uuid4(), title="Late", due_date=date(2000, 1, 1),
            status=TaskStatus.TODO.value, actual_hours=3, now=NOW,
        )
        project.add_task(
            id=uuid4(), created_by_id=uuid4(), title="Done", due_date=date(2000, 1, 1),
            status=TaskStatus.COMPLETED.value, actual_hours=2.5, now=NOW,
        )
        assert project.overdue_tasks == 1
        assert project.total_hours == 5.5

    def test_budget_utilization(self):
        project = make_project(budget_allocated=1000, budget_spent=250)
        project.touch(NOW)
        assert project.budget_utilization == 25
        assert project.budget == {"allocated": 1000, "spent": 250, "currency": "USD"}

    def test_budget_utilization_resets_when_allocation_cleared(self):
        project = make_project(budget_allocated=1000, budget_spent=250)
        project.touch(NOW)

        project.budget_allocated = 0
        project.touch(NOW)

        assert project.budget_utilization == 0

    def test_duration_days(self):
        project = make_project(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))
        assert project.duration_days == 30


class TestStatusMachine:
    def test_active_stamps_actual_start(self):
        project = make_project()
        project.apply_status(ProjectStatus.ACTIVE.value, now=NOW)
        assert project.actual_start_date == NOW

    def test_completed_forces_full_progress(self):
        project = make_project()
        add_tasks(project, [TaskStatus.TODO.value, TaskStatus.COMPLETED.value])
        project.apply_status(ProjectStatus.ACTIVE.value, now=NOW)
        project.apply_status(ProjectStatus.COMPLETED.value, now=NOW)

        assert project.progress == 100
        assert project.actual_end_date == NOW

        # Derived recompute does not pull a completed project back down
        project.touch(NOW)
        assert project.progress == 100

    @pytest.mark.parametrize(
        "path,target",
        [
            ([], ProjectStatus.COMPLETED.value),
            ([], ProjectStatus.ON_HOLD.value),
            ([ProjectStatus.CANCELLED.value], ProjectStatus.ACTIVE.value),
            ([ProjectStatus.ACTIVE.value, ProjectStatus.COMPLETED.value], ProjectStatus.ACTIVE.value),
        ],
    )
    def test_illegal_transitions_rejected(self, path, target):
        project = make_project()
        for status in path:
            project.apply_status(status, now=NOW)

        with pytest.raises(ValidationError) as exc_info:
            project.apply_status(target, now=NOW)
        assert exc_info.value.errors[0]["field"] == "status"

    def test_on_hold_round_trip(self):
        project = make_project()
        for status in ("active", "on_hold", "active", "cancelled"):
            project.apply_status(status, now=NOW)
        assert project.status == "cancelled"
        assert not project.is_overdue
        assert project.days_remaining == 0


class TestTeam:
    def test_adding_twice_keeps_one_entry_with_latest_role(self):
        project = make_project()
        user_id = uuid4()

        project.add_team_member(user_id, role="developer", hourly_rate=50, now=NOW)
        project.add_team_member(user_id, role="lead", hourly_rate=80, now=NOW)

        assert project.team_size == 1
        assert project.team_members[0].role == "lead"
        assert project.team_members[0].hourly_rate == 80
        assert project.has_member(user_id)

    def test_remove_member(self):
        project = make_project()
        user_id = uuid4()
        project.add_team_member(user_id, now=NOW)

        assert project.remove_team_member(user_id, now=NOW) is True
        assert project.remove_team_member(user_id, now=NOW) is False
        assert project.team_size == 0


def test_note_content_is_trimmed_and_bounded():
    project = make_project()
    note = project.add_note("  status update  ", uuid4(), is_private=True, now=NOW)
    assert note.content == "status update"
    assert note.is_private is True

    with pytest.raises(ValidationError):
        project.add_note("   ", uuid4(), now=NOW)
    with pytest.raises(ValidationError):
        project.add_note("x" * 2001, uuid4(), now=NOW)
