"""
Role-based permission tests.

Covers:
    - OPERATION_ROLES matrix spot checks per role
    - Deactivated and missing actors
    - Administrators are read/report only
    - User management: super-admin gate for elevated roles, activation
"""

import pytest

from phasetrack.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from phasetrack.services.permission import (
    OPERATION_ROLES,
    Role,
    authorize,
    has_permission,
    is_supervisor,
)
from phasetrack.services.user_service import list_users, register_user, set_user_active


class TestMatrix:
    @pytest.mark.parametrize("operation", [
        "phase.approve", "phase.reorder", "progress.adjust", "work_log.create_admin",
        "project.create", "user.create",
    ])
    def test_supervisor_only(self, supervisor, engineer, administrator, operation):
        assert has_permission(supervisor, operation)
        assert not has_permission(engineer, operation)
        assert not has_permission(administrator, operation)

    @pytest.mark.parametrize("operation", ["phase.start", "work_log.create", "work_log.update"])
    def test_engineer_write_operations(self, engineer, operation):
        assert has_permission(engineer, operation)

    @pytest.mark.parametrize("operation", [
        "project.view", "phase.view", "work_log.view", "work_log.summary", "progress.view",
    ])
    def test_reads_open_to_all(self, supervisor, engineer, administrator, operation):
        for actor in (supervisor, engineer, administrator):
            assert has_permission(actor, operation)

    def test_administrator_never_writes(self):
        writes = [op for op, roles in OPERATION_ROLES.items()
                  if not op.endswith((".view", ".summary", ".list"))
                  and not op.startswith("profile.")]
        assert writes
        assert all(Role.ADMINISTRATOR not in OPERATION_ROLES[op] for op in writes)

    def test_unknown_operation_denied(self, supervisor):
        assert not has_permission(supervisor, "project.teleport")


class TestAuthorize:
    def test_missing_actor(self):
        with pytest.raises(AuthenticationError):
            authorize(None, "project.view")

    def test_deactivated_actor(self, engineer):
        engineer.is_active = False
        with pytest.raises(AuthenticationError):
            authorize(engineer, "project.view")

    def test_forbidden_carries_operation(self, engineer):
        with pytest.raises(AuthorizationError) as exc:
            authorize(engineer, "phase.approve")
        assert exc.value.details == {"operation": "phase.approve"}

    def test_is_supervisor(self, supervisor, engineer):
        assert is_supervisor(supervisor)
        assert not is_supervisor(engineer)
        assert not is_supervisor(None)


class TestUserManagement:
    def test_supervisor_creates_engineer(self, supervisor):
        user = register_user(supervisor, {"email": " New.Eng@Studio.test ", "name": "New Eng",
                                          "password": "long-enough-1"})
        assert user["email"] == "new.eng@studio.test"
        assert user["role"] == "engineer"

    def test_plain_supervisor_cannot_create_supervisor(self, supervisor):
        with pytest.raises(AuthorizationError):
            register_user(supervisor, {"email": "x@studio.test", "name": "X",
                                       "password": "long-enough-1", "role": "supervisor"})

    def test_super_admin_creates_administrator(self, super_admin):
        user = register_user(super_admin, {"email": "ops@studio.test", "name": "Ops",
                                           "password": "long-enough-1", "role": "administrator"})
        assert user["role"] == "administrator"

    def test_duplicate_email(self, supervisor, engineer):
        with pytest.raises(ConflictError):
            register_user(supervisor, {"email": engineer.email, "name": "Dup",
                                       "password": "long-enough-1"})

    def test_short_password(self, supervisor):
        with pytest.raises(ValidationError):
            register_user(supervisor, {"email": "y@studio.test", "name": "Y", "password": "short"})

    def test_invalid_role(self, super_admin):
        with pytest.raises(ValidationError):
            register_user(super_admin, {"email": "z@studio.test", "name": "Z",
                                        "password": "long-enough-1", "role": "client"})

    def test_deactivate_and_list(self, supervisor, engineer, administrator):
        set_user_active(supervisor, engineer.id, False)
        active = {u["email"] for u in list_users(administrator)}
        assert engineer.email not in active
        everyone = {u["email"] for u in list_users(administrator, include_inactive=True)}
        assert engineer.email in everyone

    def test_cannot_deactivate_self(self, supervisor):
        with pytest.raises(ValidationError):
            set_user_active(supervisor, supervisor.id, False)

    def test_engineer_cannot_list_users(self, engineer):
        with pytest.raises(AuthorizationError):
            list_users(engineer)
