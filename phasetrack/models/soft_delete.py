"""
Archive Mixin — soft delete for projects.

Adds ``archived_at`` / ``archived_by`` columns and query helpers. Archived
rows stay in the database with all their phases and work logs; a hard delete
is a separate, explicit operation.

Usage:
    class Project(ArchiveMixin, db.Model):
        ...

    project.archive(user_id)
    Project.query_active().all()
    project.unarchive()
"""

from datetime import datetime, timezone

from phasetrack.models import db


class ArchiveMixin:
    """Mixin that adds archive (soft delete) support to a model."""

    archived_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)
    archived_by = db.Column(db.Integer, nullable=True)

    def archive(self, user_id: int | None = None):
        """Mark this record as archived."""
        self.archived_at = datetime.now(timezone.utc)
        self.archived_by = user_id

    def unarchive(self):
        """Restore an archived record."""
        self.archived_at = None
        self.archived_by = None

    @property
    def is_archived(self):
        return self.archived_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes archived records."""
        return cls.query.filter(cls.archived_at.is_(None))

    @classmethod
    def query_archived(cls):
        """Return only archived records."""
        return cls.query.filter(cls.archived_at.isnot(None))
