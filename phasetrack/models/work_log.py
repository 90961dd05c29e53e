"""
PhaseTrack
Work log domain model.

Models:
    - WorkLog: hours an engineer spent on a phase on a given date.
    - ProgressAdjustment: append-only record of a manual progress override,
      either against a single work log or against the phase as a whole.
"""

from datetime import datetime, timezone

from phasetrack.models import db

# ── Constants ────────────────────────────────────────────────────────────────

WORK_LOG_ENTRY_TYPES = ("daily", "historical")

ADJUSTMENT_TYPES = ("work_log", "phase_overall")


class WorkLog(db.Model):
    """One hours entry by one engineer against one phase."""

    __tablename__ = "work_logs"
    __table_args__ = (
        db.CheckConstraint("hours > 0", name="ck_work_logs_hours_positive"),
        db.CheckConstraint(
            "entry_type IN ('daily', 'historical')",
            name="ck_work_logs_entry_type",
        ),
        db.Index("idx_work_logs_phase_date", "phase_id", "work_date"),
        db.Index("idx_work_logs_engineer_date", "engineer_id", "work_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    engineer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("project_phases.id", ondelete="CASCADE"), nullable=False,
    )
    work_date = db.Column(db.Date, nullable=False)
    hours = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text, nullable=True)
    entry_type = db.Column(
        db.String(20), nullable=False, default="daily",
        comment="daily | historical (supervisor back-fill)",
    )
    supervisor_approved = db.Column(db.Boolean, nullable=False, default=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # ── Last manual progress stamp (history lives in ProgressAdjustment) ──
    manual_progress_percentage = db.Column(db.Float, nullable=True)
    progress_notes = db.Column(db.Text, nullable=True)
    progress_adjusted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    progress_adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    engineer = db.relationship("User", foreign_keys=[engineer_id])
    adjustments = db.relationship(
        "ProgressAdjustment", backref="work_log", lazy="dynamic", passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "engineer_id": self.engineer_id,
            "engineer_name": self.engineer.name if self.engineer else None,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "work_date": self.work_date.isoformat() if self.work_date else None,
            "hours": self.hours,
            "description": self.description,
            "entry_type": self.entry_type,
            "supervisor_approved": self.supervisor_approved,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "manual_progress_percentage": self.manual_progress_percentage,
            "progress_notes": self.progress_notes,
            "progress_adjusted_by": self.progress_adjusted_by,
            "progress_adjusted_at": self.progress_adjusted_at.isoformat() if self.progress_adjusted_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<WorkLog {self.id}: phase={self.phase_id} {self.hours}h on {self.work_date}>"


class ProgressAdjustment(db.Model):
    """
    Manual override of a phase's progress by a supervisor.

    Rows are never updated or deleted through the API.  The latest row for a
    phase defines its ``actual_progress``.
    """

    __tablename__ = "progress_adjustments"
    __table_args__ = (
        db.CheckConstraint(
            "manual_progress_percentage >= 0 AND manual_progress_percentage <= 100",
            name="ck_progress_adjustments_range",
        ),
        db.CheckConstraint(
            "adjustment_type IN ('work_log', 'phase_overall')",
            name="ck_progress_adjustments_type",
        ),
        db.Index("idx_progress_adjustments_phase", "phase_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("project_phases.id", ondelete="CASCADE"), nullable=False,
    )
    engineer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Set for work_log adjustments; NULL for phase_overall",
    )
    work_log_id = db.Column(
        db.Integer, db.ForeignKey("work_logs.id", ondelete="SET NULL"), nullable=True,
        comment="Kept as NULL once the work log is deleted so the history survives",
    )
    hours_logged = db.Column(db.Float, nullable=False, default=0, comment="Phase or engineer hours at adjustment time")
    hours_based_progress = db.Column(db.Float, nullable=False, default=0)
    manual_progress_percentage = db.Column(db.Float, nullable=False)
    adjustment_reason = db.Column(db.Text, nullable=False)
    adjustment_type = db.Column(
        db.String(20), nullable=False, default="phase_overall",
        comment="work_log | phase_overall",
    )
    adjusted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    adjuster = db.relationship("User", foreign_keys=[adjusted_by])
    engineer = db.relationship("User", foreign_keys=[engineer_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "engineer_id": self.engineer_id,
            "engineer_name": self.engineer.name if self.engineer else None,
            "work_log_id": self.work_log_id,
            "hours_logged": self.hours_logged,
            "hours_based_progress": self.hours_based_progress,
            "manual_progress_percentage": self.manual_progress_percentage,
            "adjustment_reason": self.adjustment_reason,
            "adjustment_type": self.adjustment_type,
            "adjusted_by": self.adjusted_by,
            "adjusted_by_name": self.adjuster.name if self.adjuster else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ProgressAdjustment {self.id}: phase={self.phase_id} {self.manual_progress_percentage}%>"
