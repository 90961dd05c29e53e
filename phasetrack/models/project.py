"""Project domain model — the container for ordered phases and work logs."""

from datetime import datetime, timezone

from phasetrack.models import db
from phasetrack.models.soft_delete import ArchiveMixin

PROJECT_STATUSES = ("active", "on_hold", "completed", "cancelled")


class Project(ArchiveMixin, db.Model):
    """A client engagement delivered through an ordered list of phases."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    client_name = db.Column(db.String(200), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    planned_total_weeks = db.Column(db.Integer, nullable=False)
    predicted_hours = db.Column(db.Float, nullable=False, default=0)
    actual_hours = db.Column(
        db.Float, nullable=False, default=0,
        comment="Sum of phase actual_hours; maintained by progress_service.recompute_phase",
    )
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | on_hold | completed | cancelled",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    phases = db.relationship(
        "ProjectPhase", backref="project", lazy="dynamic",
        order_by="ProjectPhase.phase_order",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    work_logs = db.relationship(
        "WorkLog", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    creator = db.relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        db.CheckConstraint("planned_total_weeks > 0", name="ck_projects_planned_weeks_positive"),
        db.CheckConstraint("predicted_hours >= 0", name="ck_projects_predicted_hours_nonneg"),
        db.CheckConstraint(
            "status IN ('active', 'on_hold', 'completed', 'cancelled')",
            name="ck_projects_status",
        ),
    )

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "client_name": self.client_name,
            "location": self.location,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "planned_total_weeks": self.planned_total_weeks,
            "predicted_hours": self.predicted_hours,
            "actual_hours": round(self.actual_hours or 0, 2),
            "status": self.status,
            "created_by": self.created_by,
            "created_by_name": self.creator.name if self.creator else None,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "archived_by": self.archived_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"
