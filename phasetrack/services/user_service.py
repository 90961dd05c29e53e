"""
User Service — account provisioning, authentication and activation.

Rules:
    - Supervisors may create engineer accounts.
    - Creating supervisor or administrator accounts (or granting the
      super-admin flag) requires an actor with ``is_super_admin``.
    - Emails are unique and stored lower-cased.
    - Passwords are at least 8 characters and stored as bcrypt hashes.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from phasetrack.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from phasetrack.models import db
from phasetrack.models.audit import write_audit
from phasetrack.models.auth import USER_ROLES, User
from phasetrack.services.permission import authorize
from phasetrack.utils.crypto import hash_password, verify_password
from phasetrack.utils.helpers import atomic, get_or_raise

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
ELEVATED_ROLES = frozenset({"supervisor", "administrator"})


def _normalise_email(email) -> str:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", {"email": "invalid"})
    return email


def _check_password(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            {"password": "too short"},
        )


def _hash(password: str) -> str:
    return hash_password(password, rounds=current_app.config.get("BCRYPT_ROUNDS", 12))


def _build_user(data: dict, *, role: str, is_super_admin: bool) -> User:
    email = _normalise_email(data.get("email"))
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", {"name": "required"})
    password = data.get("password")
    _check_password(password)
    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)
    return User(
        email=email,
        name=name,
        role=role,
        password_hash=_hash(password),
        is_super_admin=is_super_admin,
    )


def register_user(actor, data: dict) -> dict:
    """Create a user account on behalf of ``actor``."""
    authorize(actor, "user.create")

    role = data.get("role") or "engineer"
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(USER_ROLES)}", {"role": "invalid"})
    wants_super = bool(data.get("is_super_admin", False))
    if (role in ELEVATED_ROLES or wants_super) and not actor.is_super_admin:
        raise AuthorizationError(
            "Only a super administrator can create supervisor or administrator accounts",
            operation="user.create", role=actor.role,
        )

    with atomic():
        user = _build_user(data, role=role, is_super_admin=wants_super)
        db.session.add(user)
        db.session.flush()
        write_audit(
            entity_type="user", entity_id=user.id, action="create",
            actor_user_id=actor.id, diff={"role": role, "email": user.email},
        )

    logger.info("User %s created with role %s by user=%s", user.email, role, actor.id)
    return user.to_dict()


def create_super_admin(email: str, name: str, password: str) -> User:
    """Bootstrap the first super-admin supervisor (CLI only, no actor)."""
    with atomic():
        user = _build_user(
            {"email": email, "name": name, "password": password},
            role="supervisor", is_super_admin=True,
        )
        db.session.add(user)
    logger.info("Super admin %s created", user.email)
    return user


def authenticate_user(email: str, password: str) -> User:
    """Return the active user matching the credentials or raise AuthenticationError."""
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("Failed login for %s", email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    _check_password(new_password)
    with atomic():
        user.password_hash = _hash(new_password)
        write_audit(
            entity_type="user", entity_id=user.id, action="update",
            actor_user_id=user.id, note="password changed",
        )
    logger.info("User %s changed password", user.id)


def get_user(user_id: int) -> User:
    return get_or_raise(User, user_id)


def list_users(actor, role: str | None = None, include_inactive: bool = False) -> list[dict]:
    authorize(actor, "user.list")
    q = User.query
    if role:
        q = q.filter_by(role=role)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return [u.to_dict() for u in q.order_by(User.name).all()]


def set_user_active(actor, user_id: int, active: bool) -> dict:
    """Activate or deactivate an account. Deactivating the caller is refused."""
    authorize(actor, "user.set_active")
    user = get_or_raise(User, user_id)
    if user.id == actor.id and not active:
        raise ValidationError("You cannot deactivate your own account")
    if user.role in ELEVATED_ROLES and not actor.is_super_admin:
        raise AuthorizationError(
            "Only a super administrator can change supervisor or administrator accounts",
            operation="user.set_active", role=actor.role,
        )
    with atomic():
        user.is_active = bool(active)
        write_audit(
            entity_type="user", entity_id=user.id, action="update",
            actor_user_id=actor.id, diff={"is_active": user.is_active},
        )
    logger.info("User %s is_active=%s (by user=%s)", user.id, user.is_active, actor.id)
    return user.to_dict()


# ── Own profile ──────────────────────────────────────────────────────────────

_PROFILE_FIELDS = ("name", "email")


def get_profile(actor) -> dict:
    authorize(actor, "profile.view")
    return actor.to_dict()


def update_profile(actor, data: dict) -> dict:
    """
    Change the caller's own name and/or email.

    Raises:
        ValidationError: no editable field supplied, blank name, bad email.
        ConflictError: the email belongs to another account.
    """
    authorize(actor, "profile.update")
    data = data or {}
    if not any(field in data for field in _PROFILE_FIELDS):
        raise ValidationError("No valid fields to update", {"fields": list(_PROFILE_FIELDS)})

    changes = {}
    if "name" in data:
        name = data["name"].strip() if isinstance(data["name"], str) else ""
        if not name:
            raise ValidationError("Name cannot be empty", {"name": "required"})
        if name != actor.name:
            changes["name"] = {"old": actor.name, "new": name}
    if "email" in data:
        email = _normalise_email(data["email"] if isinstance(data["email"], str) else None)
        taken = User.query.filter(User.email == email, User.id != actor.id).first()
        if taken is not None:
            raise ConflictError("User", "email", email)
        if email != actor.email:
            changes["email"] = {"old": actor.email, "new": email}

    if not changes:
        return actor.to_dict()

    with atomic():
        for field, change in changes.items():
            setattr(actor, field, change["new"])
        write_audit(
            entity_type="user", entity_id=actor.id, action="update",
            actor_user_id=actor.id, note="profile updated", diff=changes,
        )
    logger.info("User %s updated profile: %s", actor.id, ", ".join(changes))
    return actor.to_dict()
