"""Unit tests for the access policy engine (pure, no database)."""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from auth.principal import Principal, Role
from services.errors import AccessDeniedError
from services.policy import (
    Action,
    AnyOf,
    MemberOf,
    NoAccess,
    OwnedBy,
    ResourceKind,
    Unrestricted,
    can_perform,
    require,
    scope_filter,
    scope_matches,
)

ADMIN = Principal(id=uuid4(), role=Role.ADMIN)
EM = Principal(id=uuid4(), role=Role.ENGAGEMENT_MANAGER)
RM = Principal(id=uuid4(), role=Role.RESOURCE_MANAGER)


def make_client(manager_id):
    return SimpleNamespace(engagement_manager_id=manager_id)


def make_project(*, pm_id=None, creator_id=None, manager_id=None, team=()):
    return SimpleNamespace(
        project_manager_id=pm_id or uuid4(),
        created_by_id=creator_id or uuid4(),
        client=make_client(manager_id or uuid4()),
        team_members=[SimpleNamespace(user_id=user_id) for user_id in team],
    )


@pytest.mark.parametrize(
    "principal,kind,action,allowed",
    [
        (ADMIN, ResourceKind.CLIENT, Action.DELETE, True),
        (EM, ResourceKind.CLIENT, Action.CREATE, True),
        (EM, ResourceKind.CLIENT, Action.LIST, True),
        (RM, ResourceKind.CLIENT, Action.READ, False),
        (RM, ResourceKind.CLIENT_DOCUMENT, Action.CREATE, False),
        (EM, ResourceKind.CLIENT_NOTE, Action.CREATE, True),
        (EM, ResourceKind.CLIENT_NOTE, Action.UPDATE, False),
        (EM, ResourceKind.PROJECT, Action.CREATE, True),
        (RM, ResourceKind.PROJECT, Action.CREATE, False),
        (RM, ResourceKind.PROJECT, Action.LIST, True),
        (RM, ResourceKind.PROJECT_STATUS, Action.UPDATE, True),
        (RM, ResourceKind.PROJECT_STATUS, Action.DELETE, False),
        (EM, ResourceKind.PROJECT_NOTE, Action.DELETE, False),
    ],
)
def test_role_gate(principal, kind, action, allowed):
    """Role gate without an instance follows the closed matrix."""
    assert bool(can_perform(principal, kind, action)) is allowed


def test_denied_decision_carries_reason():
    decision = can_perform(RM, ResourceKind.CLIENT, Action.READ)
    assert not decision.allowed
    assert "resource_manager" in decision.reason


def test_em_client_instance_requires_ownership():
    assert can_perform(EM, ResourceKind.CLIENT, Action.UPDATE, make_client(EM.id))
    assert not can_perform(EM, ResourceKind.CLIENT, Action.UPDATE, make_client(uuid4()))
    assert can_perform(ADMIN, ResourceKind.CLIENT, Action.UPDATE, make_client(uuid4()))


def test_project_update_allows_pm_or_creator_only():
    as_pm = make_project(pm_id=RM.id)
    as_creator = make_project(creator_id=RM.id)
    unrelated = make_project(team=[RM.id])

    assert can_perform(RM, ResourceKind.PROJECT, Action.UPDATE, as_pm)
    assert can_perform(RM, ResourceKind.PROJECT, Action.UPDATE, as_creator)
    assert not can_perform(RM, ResourceKind.PROJECT, Action.UPDATE, unrelated)


def test_project_delete_requires_creator():
    assert can_perform(EM, ResourceKind.PROJECT, Action.DELETE, make_project(creator_id=EM.id))
    assert not can_perform(EM, ResourceKind.PROJECT, Action.DELETE, make_project(pm_id=EM.id))


def test_status_team_and_note_require_pm():
    project = make_project(creator_id=EM.id, manager_id=EM.id)
    for kind, action in [
        (ResourceKind.PROJECT_STATUS, Action.UPDATE),
        (ResourceKind.PROJECT_TEAM, Action.CREATE),
        (ResourceKind.PROJECT_NOTE, Action.CREATE),
    ]:
        assert not can_perform(EM, kind, action, project)
        assert can_perform(EM, kind, action, make_project(pm_id=EM.id))
        assert can_perform(ADMIN, kind, action, project)


def test_project_read_instance_uses_visibility_scope():
    assert can_perform(EM, ResourceKind.PROJECT, Action.READ, make_project(manager_id=EM.id))
    assert can_perform(RM, ResourceKind.PROJECT, Action.READ, make_project(team=[RM.id]))
    assert not can_perform(RM, ResourceKind.PROJECT, Action.READ, make_project(manager_id=RM.id))


def test_scope_filter_variants():
    assert scope_filter(ADMIN, ResourceKind.CLIENT) == Unrestricted()
    assert scope_filter(EM, ResourceKind.CLIENT) == OwnedBy(EM.id)
    assert scope_filter(RM, ResourceKind.CLIENT_DOCUMENT) == NoAccess()
    assert scope_filter(EM, ResourceKind.PROJECT) == AnyOf((OwnedBy(EM.id), MemberOf(EM.id)))
    assert scope_filter(RM, ResourceKind.PROJECT_TASK) == MemberOf(RM.id)


def test_scope_matches_project_membership():
    scope = scope_filter(EM, ResourceKind.PROJECT)
    assert scope_matches(scope, ResourceKind.PROJECT, make_project(manager_id=EM.id))
    assert scope_matches(scope, ResourceKind.PROJECT, make_project(pm_id=EM.id))
    assert scope_matches(scope, ResourceKind.PROJECT, make_project(team=[EM.id]))
    assert not scope_matches(scope, ResourceKind.PROJECT, make_project())
    assert not scope_matches(NoAccess(), ResourceKind.PROJECT, make_project(pm_id=EM.id))


def test_require_raises_access_denied():
    with pytest.raises(AccessDeniedError):
        require(RM, ResourceKind.CLIENT, Action.CREATE)
    require(ADMIN, ResourceKind.CLIENT, Action.CREATE)
