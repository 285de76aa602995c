"""Access policy engine.

Pure decision functions over ``(principal, kind, action, instance)``. Nothing
in here touches the database: ``scope_filter`` returns a ``Scope`` value that
``repos.scoping`` folds into the WHERE clause, and ``scope_matches`` evaluates
the same predicate against an already loaded instance.

Role gate (any pair not listed is denied)::

    kind                         admin  engagement_manager      resource_manager
    client (all actions)         yes    owned clients           no
    client_document/note         yes    owned clients           no
    project create               yes    yes                     no
    project list/read            yes    owned client/PM/team    PM/team
    project update               yes    PM or creator           PM or creator
    project delete               yes    creator                 creator
    project_status update        yes    PM                      PM
    project_team/note create     yes    PM                      PM
    project_task/milestone       same as project update
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union
from uuid import UUID

from auth.principal import Principal, Role
from services.errors import AccessDeniedError


class ResourceKind(str, Enum):
    CLIENT = "client"
    CLIENT_DOCUMENT = "client_document"
    CLIENT_NOTE = "client_note"
    PROJECT = "project"
    PROJECT_STATUS = "project_status"
    PROJECT_TEAM = "project_team"
    PROJECT_NOTE = "project_note"
    PROJECT_TASK = "project_task"
    PROJECT_MILESTONE = "project_milestone"


class Action(str, Enum):
    CREATE = "create"
    LIST = "list"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


# Scope variants
@dataclass(frozen=True)
class Unrestricted:
    pass


@dataclass(frozen=True)
class OwnedBy:
    """Rows whose owning engagement manager is ``user_id``."""

    user_id: UUID


@dataclass(frozen=True)
class MemberOf:
    """Rows where ``user_id`` is the project manager or on the team."""

    user_id: UUID


@dataclass(frozen=True)
class AnyOf:
    scopes: tuple


@dataclass(frozen=True)
class NoAccess:
    pass


Scope = Union[Unrestricted, OwnedBy, MemberOf, AnyOf, NoAccess]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)

CLIENT_KINDS = {ResourceKind.CLIENT, ResourceKind.CLIENT_DOCUMENT, ResourceKind.CLIENT_NOTE}

# Instance rules evaluated after the role gate. Each names who may act on a
# loaded project; admins bypass them.
PM_OR_CREATOR = "pm_or_creator"
CREATOR = "creator"
PM = "pm"

_FULL = {Action.CREATE, Action.LIST, Action.READ, Action.UPDATE, Action.DELETE}
_SUB = {Action.CREATE, Action.READ, Action.DELETE}

# (role, kind) -> {action: instance rule or None}
ROLE_MATRIX: dict[tuple[Role, ResourceKind], dict[Action, str | None]] = {
    (Role.ENGAGEMENT_MANAGER, ResourceKind.CLIENT): {a: None for a in _FULL},
    (Role.ENGAGEMENT_MANAGER, ResourceKind.CLIENT_DOCUMENT): {a: None for a in _SUB},
    (Role.ENGAGEMENT_MANAGER, ResourceKind.CLIENT_NOTE): {a: None for a in _SUB},
}
for _role in (Role.ENGAGEMENT_MANAGER, Role.RESOURCE_MANAGER):
    ROLE_MATRIX[(_role, ResourceKind.PROJECT)] = {
        Action.LIST: None,
        Action.READ: None,
        Action.UPDATE: PM_OR_CREATOR,
        Action.DELETE: CREATOR,
    }
    ROLE_MATRIX[(_role, ResourceKind.PROJECT_STATUS)] = {Action.UPDATE: PM}
    ROLE_MATRIX[(_role, ResourceKind.PROJECT_TEAM)] = {Action.CREATE: PM, Action.DELETE: PM}
    ROLE_MATRIX[(_role, ResourceKind.PROJECT_NOTE)] = {Action.CREATE: PM}
    ROLE_MATRIX[(_role, ResourceKind.PROJECT_TASK)] = {
        Action.CREATE: PM_OR_CREATOR,
        Action.UPDATE: PM_OR_CREATOR,
    }
    ROLE_MATRIX[(_role, ResourceKind.PROJECT_MILESTONE)] = {Action.CREATE: PM_OR_CREATOR}
ROLE_MATRIX[(Role.ENGAGEMENT_MANAGER, ResourceKind.PROJECT)][Action.CREATE] = None


def _instance_rule_holds(rule: str, principal: Principal, instance: Any) -> bool:
    is_pm = getattr(instance, "project_manager_id", None) == principal.id
    is_creator = getattr(instance, "created_by_id", None) == principal.id
    if rule == PM:
        return is_pm
    if rule == CREATOR:
        return is_creator
    if rule == PM_OR_CREATOR:
        return is_pm or is_creator
    return False


def can_perform(
    principal: Principal,
    kind: ResourceKind,
    action: Action,
    instance: Any = None,
) -> Decision:
    """
    Decide whether ``principal`` may perform ``action`` on ``kind``.

    Without ``instance`` only the role gate is evaluated. With an instance the
    ownership rule for the pair is checked too (PM, creator, owning manager).

    Args:
        principal: Authenticated actor
        kind: Resource kind
        action: Requested action
        instance: Loaded resource (Client or Project), optional

    Returns:
        Decision with ``allowed`` and a human-readable ``reason`` on deny
    """
    kind = ResourceKind(kind)
    action = Action(action)

    if principal.role == Role.ADMIN:
        return ALLOW

    actions = ROLE_MATRIX.get((principal.role, kind))
    if actions is None or action not in actions:
        return Decision(False, f"Role '{principal.role.value}' may not {action.value} {kind.value}")

    if instance is None:
        return ALLOW

    if kind in CLIENT_KINDS:
        if scope_matches(scope_filter(principal, ResourceKind.CLIENT), ResourceKind.CLIENT, instance):
            return ALLOW
        return Decision(False, "Client is not owned by this engagement manager")

    rule = actions[action]
    if rule is None:
        if action in (Action.LIST, Action.READ):
            if not scope_matches(scope_filter(principal, ResourceKind.PROJECT), ResourceKind.PROJECT, instance):
                return Decision(False, "Project is outside the caller's scope")
        return ALLOW
    if _instance_rule_holds(rule, principal, instance):
        return ALLOW
    messages = {
        PM: "Only the project manager can perform this action",
        CREATOR: "Only the project creator can perform this action",
        PM_OR_CREATOR: "Only the project manager or creator can perform this action",
    }
    return Decision(False, messages[rule])


def scope_filter(principal: Principal, kind: ResourceKind) -> Scope:
    """
    Return the row scope ``principal`` may see for ``kind``.

    Client-side kinds share the client scope. All project-side kinds share the
    project visibility scope, so a write can only target a project the caller
    can already read.
    """
    kind = ResourceKind(kind)

    if principal.role == Role.ADMIN:
        return Unrestricted()

    if kind in CLIENT_KINDS:
        if principal.role == Role.ENGAGEMENT_MANAGER:
            return OwnedBy(principal.id)
        return NoAccess()

    if principal.role == Role.ENGAGEMENT_MANAGER:
        return AnyOf((OwnedBy(principal.id), MemberOf(principal.id)))
    if principal.role == Role.RESOURCE_MANAGER:
        return MemberOf(principal.id)
    return NoAccess()


def scope_matches(scope: Scope, kind: ResourceKind, instance: Any) -> bool:
    """Evaluate ``scope`` against a loaded Client or Project."""
    kind = ResourceKind(kind)

    if isinstance(scope, Unrestricted):
        return True
    if isinstance(scope, NoAccess):
        return False
    if isinstance(scope, AnyOf):
        return any(scope_matches(inner, kind, instance) for inner in scope.scopes)

    is_client = kind in CLIENT_KINDS
    if isinstance(scope, OwnedBy):
        if is_client:
            return instance.engagement_manager_id == scope.user_id
        client = getattr(instance, "client", None)
        return client is not None and client.engagement_manager_id == scope.user_id
    if isinstance(scope, MemberOf):
        if is_client:
            return False
        if instance.project_manager_id == scope.user_id:
            return True
        return any(member.user_id == scope.user_id for member in instance.team_members)
    return False


def require(
    principal: Principal,
    kind: ResourceKind,
    action: Action,
    instance: Any = None,
) -> None:
    """Raise ``AccessDeniedError`` unless ``can_perform`` allows the action."""
    decision = can_perform(principal, kind, action, instance)
    if not decision:
        raise AccessDeniedError(decision.reason or "Access denied")
