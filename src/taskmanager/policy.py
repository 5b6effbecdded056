"""Centralized access control policy.

Every authorization rule lives in one decision table keyed by
``(ResourceKind, Action)``.  A rule is a pure function of the acting
:class:`~taskmanager.core.types.Actor` and an :class:`Ownership` snapshot of
the target resource and returns a :class:`Decision`.  Services call
:func:`enforce` before any write; scoping of list results is done by the
services with the same ownership notions.

Example:
    ```python
    enforce(
        actor,
        ResourceKind.TASK,
        Action.UPDATE_STATUS,
        Ownership(manager_id=project.manager_id, assignee_id=task.assigned_to_id),
    )
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from taskmanager.core.exceptions import ForbiddenError, InvalidOperationError
from taskmanager.core.types import Actor, Role

logger = logging.getLogger(__name__)


class ResourceKind(StrEnum):
    USER = "user"
    PROJECT = "project"
    TASK = "task"


class Action(StrEnum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN_MEMBERS = "assign_members"
    LIST_MEMBERS = "list_members"
    UPDATE_STATUS = "update_status"


class Effect(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    INVALID = "invalid"


class Ownership(BaseModel):
    """What the policy needs to know about the target resource.

    Attributes:
        manager_id: Manager of the project (or of the task's project)
        assignee_id: Assignee of the task
        is_member: Whether the actor is a member of the project
        target_id: Id of the target user
        target_role: Current role of the target user
        requested_role: Role requested by a user create/update payload
    """

    model_config = ConfigDict(frozen=True)

    manager_id: int | None = None
    assignee_id: int | None = None
    is_member: bool = False
    target_id: int | None = None
    target_role: Role | None = None
    requested_role: Role | None = None


class Decision(BaseModel):
    """Outcome of a policy check."""

    model_config = ConfigDict(frozen=True)

    effect: Effect
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.effect == Effect.ALLOW

    @classmethod
    def allow(cls) -> Decision:
        return cls(effect=Effect.ALLOW)

    @classmethod
    def deny(cls, reason: str = "Access denied") -> Decision:
        return cls(effect=Effect.DENY, reason=reason)

    @classmethod
    def invalid(cls, reason: str) -> Decision:
        return cls(effect=Effect.INVALID, reason=reason)


Rule = Callable[[Actor, Ownership], Decision]

_STAFF = frozenset({Role.ADMIN, Role.MANAGER})


def _owns_project(actor: Actor, ctx: Ownership) -> bool:
    return actor.role == Role.MANAGER and ctx.manager_id == actor.id


def _admin_or_owner(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role == Role.ADMIN or _owns_project(actor, ctx):
        return Decision.allow()
    return Decision.deny("Only an Admin or the project's manager may do this")


def _staff_only(actor: Actor, _ctx: Ownership) -> Decision:
    if actor.role in _STAFF:
        return Decision.allow()
    return Decision.deny("Admin or Manager role required")


def _anyone(_actor: Actor, _ctx: Ownership) -> Decision:
    return Decision.allow()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def _read_user(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role == Role.ADMIN:
        return Decision.allow()
    if actor.role == Role.MANAGER and ctx.target_role == Role.USER:
        return Decision.allow()
    return Decision.deny()


def _create_user(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role not in _STAFF:
        return Decision.deny("Admin or Manager role required")
    if ctx.requested_role == Role.ADMIN:
        return Decision.invalid("Cannot create Admin users")
    if actor.role == Role.MANAGER and ctx.requested_role != Role.USER:
        return Decision.deny("Managers may only create users with role User")
    return Decision.allow()


def _update_user(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role not in _STAFF:
        return Decision.deny("Admin or Manager role required")
    if actor.role == Role.MANAGER and ctx.target_role != Role.USER:
        return Decision.deny("Managers may only update users with role User")
    if ctx.target_role == Role.ADMIN:
        # Admins keep editing their own details; other Admins are off limits
        if ctx.target_id != actor.id:
            return Decision.deny("Cannot modify another Admin")
        if ctx.requested_role not in (None, Role.ADMIN):
            return Decision.invalid("Cannot change the role of an Admin")
        return Decision.allow()
    if ctx.requested_role == Role.ADMIN:
        return Decision.invalid("Cannot promote users to Admin")
    if actor.role == Role.MANAGER and ctx.requested_role not in (None, Role.USER):
        return Decision.deny("Managers may only assign the User role")
    return Decision.allow()


def _delete_user(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role not in _STAFF:
        return Decision.deny("Admin or Manager role required")
    if ctx.target_id == actor.id:
        return Decision.invalid("Cannot delete your own account")
    if actor.role == Role.MANAGER and ctx.target_role != Role.USER:
        return Decision.deny("Managers may only delete users with role User")
    if ctx.target_role == Role.ADMIN:
        return Decision.invalid("Cannot delete Admin user")
    return Decision.allow()


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def _read_project(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role == Role.ADMIN or _owns_project(actor, ctx):
        return Decision.allow()
    if actor.role == Role.USER and ctx.is_member:
        return Decision.allow()
    return Decision.deny()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def _is_assignee(actor: Actor, ctx: Ownership) -> bool:
    return actor.role == Role.USER and ctx.assignee_id == actor.id


def _read_task(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role == Role.ADMIN or _owns_project(actor, ctx) or _is_assignee(actor, ctx):
        return Decision.allow()
    return Decision.deny()


def _update_task_status(actor: Actor, ctx: Ownership) -> Decision:
    if actor.role == Role.ADMIN or _owns_project(actor, ctx) or _is_assignee(actor, ctx):
        return Decision.allow()
    return Decision.deny("Only the assignee or the project's manager may change the status")


_RULES: dict[tuple[ResourceKind, Action], Rule] = {
    (ResourceKind.USER, Action.LIST): _staff_only,
    (ResourceKind.USER, Action.READ): _read_user,
    (ResourceKind.USER, Action.CREATE): _create_user,
    (ResourceKind.USER, Action.UPDATE): _update_user,
    (ResourceKind.USER, Action.DELETE): _delete_user,
    (ResourceKind.PROJECT, Action.LIST): _anyone,
    (ResourceKind.PROJECT, Action.READ): _read_project,
    (ResourceKind.PROJECT, Action.CREATE): _staff_only,
    (ResourceKind.PROJECT, Action.UPDATE): _admin_or_owner,
    (ResourceKind.PROJECT, Action.DELETE): _admin_or_owner,
    (ResourceKind.PROJECT, Action.ASSIGN_MEMBERS): _admin_or_owner,
    (ResourceKind.PROJECT, Action.LIST_MEMBERS): _admin_or_owner,
    (ResourceKind.TASK, Action.LIST): _anyone,
    (ResourceKind.TASK, Action.READ): _read_task,
    (ResourceKind.TASK, Action.CREATE): _admin_or_owner,
    (ResourceKind.TASK, Action.UPDATE): _admin_or_owner,
    (ResourceKind.TASK, Action.DELETE): _admin_or_owner,
    (ResourceKind.TASK, Action.UPDATE_STATUS): _update_task_status,
}


def authorize(
    actor: Actor,
    kind: ResourceKind,
    action: Action,
    ownership: Ownership | None = None,
) -> Decision:
    """Evaluate the rule for ``(kind, action)``.

    Combinations without a rule are denied.
    """
    rule = _RULES.get((kind, action))
    if rule is None:
        return Decision.deny(f"No rule for {action.value} on {kind.value}")
    return rule(actor, ownership or Ownership())


def enforce(
    actor: Actor,
    kind: ResourceKind,
    action: Action,
    ownership: Ownership | None = None,
) -> None:
    """Raise unless the policy allows the action.

    Raises:
        ForbiddenError: The actor is not permitted
        InvalidOperationError: The action is never allowed for this target
    """
    decision = authorize(actor, kind, action, ownership)
    if decision.allowed:
        return
    logger.warning(
        "Policy %s: actor=%s role=%s %s %s (%s)",
        decision.effect.value,
        actor.id,
        actor.role.value,
        action.value,
        kind.value,
        decision.reason,
    )
    if decision.effect == Effect.INVALID:
        raise InvalidOperationError(decision.reason)
    raise ForbiddenError(decision.reason)


__all__ = [
    "Action",
    "Decision",
    "Effect",
    "Ownership",
    "ResourceKind",
    "authorize",
    "enforce",
]
