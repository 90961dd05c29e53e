"""
PhaseTrack
Phase domain model.

Models:
    - ProjectPhase: one ordered stage of a project's delivery.
    - PredefinedPhase: catalogue of the firm's standard phases.

Two orthogonal state dimensions live on ProjectPhase:

    status:               not_started → ready → in_progress → submitted
                          → approved → completed
    early_access_status:  not_accessible | accessible | in_progress
                          | work_completed

The primary lifecycle is strictly gated by phase_order. Early access is a
supervisor-granted override tracked separately so that revoking it never
rewrites the primary lifecycle history.
"""

from datetime import datetime, timezone

from phasetrack.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PHASE_STATUSES = ("not_started", "ready", "in_progress", "submitted", "approved", "completed")

EARLY_ACCESS_STATUSES = ("not_accessible", "accessible", "in_progress", "work_completed")

DELAY_REASONS = ("none", "client", "company")

# Statuses in which hours may be logged by an engineer
WORKABLE_STATUSES = frozenset({"ready", "in_progress", "submitted"})

# action → {"from": allowed current statuses, "to": resulting status}
PHASE_TRANSITIONS = {
    "start": {"from": ["ready"], "to": "in_progress"},
    "submit": {"from": ["in_progress"], "to": "submitted"},
    "approve": {"from": ["submitted"], "to": "approved"},
    "complete": {"from": ["approved"], "to": "completed"},
}

# Early access may be revoked only from these sub-states
REVOCABLE_EARLY_ACCESS = frozenset({"accessible", "in_progress"})


def validate_phase_transition(status: str, action: str) -> bool:
    """Return True if ``action`` is allowed from ``status`` on the primary track."""
    rule = PHASE_TRANSITIONS.get(action)
    return bool(rule) and status in rule["from"]


class ProjectPhase(db.Model):
    """An ordered stage of a project against which hours and approvals are tracked."""

    __tablename__ = "project_phases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase_order = db.Column(db.Integer, nullable=False)
    phase_name = db.Column(db.String(200), nullable=False)
    is_custom = db.Column(db.Boolean, nullable=False, default=False)
    planned_weeks = db.Column(db.Integer, nullable=False)

    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_date = db.Column(db.Date, nullable=True)
    approved_date = db.Column(db.Date, nullable=True)

    predicted_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, nullable=False, default=0)

    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | ready | in_progress | submitted | approved | completed",
    )
    delay_reason = db.Column(
        db.String(10), nullable=False, default="none",
        comment="none | client | company",
    )
    warning_flag = db.Column(db.Boolean, nullable=False, default=False)

    # ── Early access (secondary state dimension) ──
    early_access_granted = db.Column(db.Boolean, nullable=False, default=False)
    early_access_status = db.Column(
        db.String(20), nullable=False, default="not_accessible",
        comment="not_accessible | accessible | in_progress | work_completed",
    )
    early_access_granted_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    early_access_granted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    early_access_note = db.Column(db.Text, nullable=True)

    # ── Progress (derived; see progress_service) ──
    calculated_progress = db.Column(db.Float, nullable=False, default=0)
    actual_progress = db.Column(db.Float, nullable=True)
    progress_variance = db.Column(db.Float, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    work_logs = db.relationship(
        "WorkLog", backref="phase", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    adjustments = db.relationship(
        "ProgressAdjustment", backref="phase", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "phase_order", name="uq_project_phases_order"),
        db.CheckConstraint("planned_weeks > 0", name="ck_project_phases_planned_weeks_positive"),
        db.CheckConstraint("phase_order > 0", name="ck_project_phases_order_positive"),
        db.CheckConstraint(
            "predicted_hours IS NULL OR predicted_hours >= 0",
            name="ck_project_phases_predicted_hours_nonneg",
        ),
        db.CheckConstraint(
            "status IN ('not_started', 'ready', 'in_progress', 'submitted', 'approved', 'completed')",
            name="ck_project_phases_status",
        ),
        db.CheckConstraint(
            "delay_reason IN ('none', 'client', 'company')",
            name="ck_project_phases_delay_reason",
        ),
        db.CheckConstraint(
            "early_access_status IN ('not_accessible', 'accessible', 'in_progress', 'work_completed')",
            name="ck_project_phases_early_access_status",
        ),
    )

    @property
    def can_start_via_early_access(self) -> bool:
        return bool(self.early_access_granted) and self.early_access_status == "accessible"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_order": self.phase_order,
            "phase_name": self.phase_name,
            "is_custom": self.is_custom,
            "planned_weeks": self.planned_weeks,
            "planned_start_date": self.planned_start_date.isoformat() if self.planned_start_date else None,
            "planned_end_date": self.planned_end_date.isoformat() if self.planned_end_date else None,
            "actual_start_date": self.actual_start_date.isoformat() if self.actual_start_date else None,
            "actual_end_date": self.actual_end_date.isoformat() if self.actual_end_date else None,
            "submitted_date": self.submitted_date.isoformat() if self.submitted_date else None,
            "approved_date": self.approved_date.isoformat() if self.approved_date else None,
            "predicted_hours": self.predicted_hours,
            "actual_hours": round(self.actual_hours or 0, 2),
            "status": self.status,
            "delay_reason": self.delay_reason,
            "warning_flag": self.warning_flag,
            "early_access_granted": self.early_access_granted,
            "early_access_status": self.early_access_status,
            "early_access_granted_by": self.early_access_granted_by,
            "early_access_granted_at": (
                self.early_access_granted_at.isoformat() if self.early_access_granted_at else None
            ),
            "early_access_note": self.early_access_note,
            "calculated_progress": self.calculated_progress,
            "actual_progress": self.actual_progress,
            "progress_variance": self.progress_variance,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ProjectPhase {self.id}: #{self.phase_order} {self.phase_name} [{self.status}]>"


class PredefinedPhase(db.Model):
    """Standard phase template offered when a supervisor creates a project."""

    __tablename__ = "predefined_phases"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    typical_duration_weeks = db.Column(db.Integer, nullable=False, default=4)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "typical_duration_weeks": self.typical_duration_weeks,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


DEFAULT_PREDEFINED_PHASES = [
    ("Concept Design", "Initial design concepts and client briefing", 4),
    ("Schematic Design", "Massing, zoning and schematic drawings", 6),
    ("Design Development", "Detailed architectural and engineering coordination", 8),
    ("Construction Documents", "Permit and tender drawing sets", 10),
    ("Authority Approvals", "Municipality and civil defence submissions", 6),
    ("Tender Support", "Bid clarification and contractor evaluation", 4),
    ("Construction Administration", "Site supervision and submittal review", 24),
]


def seed_predefined_phases() -> int:
    """Insert any missing standard phases. Returns the number created (caller commits)."""
    existing = {p.name for p in PredefinedPhase.query.all()}
    created = 0
    for order, (name, description, weeks) in enumerate(DEFAULT_PREDEFINED_PHASES, start=1):
        if name in existing:
            continue
        db.session.add(PredefinedPhase(
            name=name,
            description=description,
            typical_duration_weeks=weeks,
            display_order=order,
        ))
        created += 1
    return created
