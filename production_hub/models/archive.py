"""
Archive Mixin

Adds the archival flag and audit columns shared by crew, projects and tasks.
Archived rows stay in the database but are invisible to the workflow engine.

Usage:
    class MyModel(ArchivableMixin, db.Model):
        ...

    obj.archive(archived_by="ops@studio")
    db.session.commit()
"""

from datetime import datetime, timezone

from production_hub.models import db


class ArchivableMixin:
    """Mixin that adds soft archival support to any SQLAlchemy model."""

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.String(100), nullable=True)

    def archive(self, archived_by=None):
        """Mark this record as archived."""
        self.is_archived = True
        self.archived_at = datetime.now(timezone.utc)
        self.archived_by = archived_by
