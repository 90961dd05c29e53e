"""
PhaseTrack
Audit trail.

Every state-changing service call appends one ``AuditLog`` row inside its
own transaction, so a rolled-back approval leaves no trace.  Rows are never
updated or deleted by the application; deleting a project only nulls
``project_id`` on its history.
"""

import json
from datetime import datetime, timezone

from phasetrack.models import db

ENTITY_TYPES = frozenset({"project", "phase", "work_log", "progress_adjustment", "user"})

# Domain verbs are namespaced; plain CRUD verbs apply to any entity type.
ACTIONS = frozenset({
    "phase.start", "phase.submit", "phase.approve", "phase.complete",
    "phase.mark_warning", "phase.delay", "phase.reorder",
    "phase.grant_early_access", "phase.revoke_early_access",
    "work_log.approve", "work_log.unapprove",
    "progress.adjust",
    "project.archive", "project.unarchive",
    "create", "update", "delete",
})


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True, index=True)
    note = db.Column(db.Text, nullable=True)
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @classmethod
    def history(cls, entity_type: str, entity_id) -> list["AuditLog"]:
        """All rows for one entity, oldest first."""
        return (
            cls.query
            .filter_by(entity_type=entity_type, entity_id=str(entity_id))
            .order_by(cls.timestamp, cls.id)
            .all()
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} {self.entity_type}/{self.entity_id}>"


def write_audit(*, entity_type: str, entity_id, action: str, actor_user_id: int | None = None,
                project_id: int | None = None, note: str | None = None,
                diff: dict | None = None) -> AuditLog:
    """
    Add one audit row to the current session and flush it.

    ``diff`` is stored as JSON; dates and other non-JSON values are
    stringified.  The caller owns the commit.

    Raises:
        ValueError: unknown ``entity_type`` or ``action``.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    if action not in ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    row = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        note=note,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(row)
    db.session.flush()
    return row
