"""
Role-Based Access Control (RBAC) Service

Each user carries exactly one role.  OPERATION_ROLES maps every service
operation to the set of roles allowed to run it; service entry points call
``authorize`` before touching any data, so the rules hold no matter which
transport invoked them.

Usage:
    from phasetrack.services.permission import authorize, has_permission

    # Raises AuthorizationError if not allowed
    authorize(actor, "phase.approve")

    # Boolean check
    if has_permission(actor, "work_log.create"):
        ...

Ownership rules (an engineer may only edit their own work log, only view
their own breakdown) are checked by the owning service on top of this table.
"""

import logging
from enum import Enum

from phasetrack.core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUPERVISOR = "supervisor"
    ENGINEER = "engineer"
    ADMINISTRATOR = "administrator"


_S = Role.SUPERVISOR
_E = Role.ENGINEER
_A = Role.ADMINISTRATOR
_ALL = frozenset({_S, _E, _A})

# Administrators are read/report only, apart from their own profile.
OPERATION_ROLES: dict[str, frozenset] = {
    # Phase lifecycle
    "phase.start": frozenset({_S, _E}),
    "phase.submit": frozenset({_S}),
    "phase.approve": frozenset({_S}),
    "phase.complete": frozenset({_S}),
    "phase.mark_warning": frozenset({_S}),
    "phase.delay": frozenset({_S}),
    "phase.grant_early_access": frozenset({_S}),
    "phase.revoke_early_access": frozenset({_S}),
    "phase.reorder": frozenset({_S}),
    "phase.early_access_overview": frozenset({_S}),
    # Phase CRUD
    "phase.create": frozenset({_S}),
    "phase.update": frozenset({_S}),
    "phase.update_historical": frozenset({_S}),
    "phase.delete": frozenset({_S}),
    "phase.view": _ALL,
    # Projects
    "project.create": frozenset({_S}),
    "project.update": frozenset({_S}),
    "project.archive": frozenset({_S}),
    "project.delete": frozenset({_S}),
    "project.view": _ALL,
    # Work logs
    "work_log.create": frozenset({_S, _E}),
    "work_log.create_admin": frozenset({_S}),
    "work_log.update": frozenset({_S, _E}),
    "work_log.delete": frozenset({_S, _E}),
    "work_log.approve": frozenset({_S}),
    "work_log.view": _ALL,
    "work_log.summary": _ALL,
    # Progress
    "progress.adjust": frozenset({_S}),
    "progress.view": _ALL,
    # Users
    "user.create": frozenset({_S}),
    "user.list": frozenset({_S, _A}),
    "user.view": _ALL,
    "user.set_active": frozenset({_S}),
    # Own account; every role may read and edit its own name and email
    "profile.view": _ALL,
    "profile.update": _ALL,
    # Reports
    "activity.view": frozenset({_S, _A}),
}


def _role_of(actor) -> Role | None:
    try:
        return Role(actor.role)
    except ValueError:
        return None


def has_permission(actor, operation: str) -> bool:
    """Return True if ``actor`` is active and its role may run ``operation``."""
    if actor is None or not getattr(actor, "is_active", False):
        return False
    allowed = OPERATION_ROLES.get(operation)
    if allowed is None:
        logger.warning("Permission check for unknown operation %s", operation)
        return False
    return _role_of(actor) in allowed


def authorize(actor, operation: str) -> None:
    """Raise unless ``actor`` may run ``operation``.

    Raises:
        AuthenticationError: no actor, or the account is deactivated.
        AuthorizationError: the actor's role is not allowed.
    """
    if actor is None:
        raise AuthenticationError("Authentication required")
    if not actor.is_active:
        raise AuthenticationError("Account is deactivated")
    if not has_permission(actor, operation):
        logger.info("Denied %s for user=%s role=%s", operation, actor.id, actor.role)
        raise AuthorizationError(operation=operation, role=actor.role)


def is_supervisor(actor) -> bool:
    return actor is not None and actor.role == Role.SUPERVISOR.value
