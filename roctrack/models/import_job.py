"""
ROC Tracker
Import job model.

Models:
    - ImportJob: one bulk import batch against a project, with its options,
                 counters and per-row error list.

Lifecycle states:
    pending → parsing → validating → committing → completed
    any non-terminal state → failed
"""

from datetime import datetime, timezone

from roctrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

IMPORT_STATUSES = {
    "pending", "parsing", "validating", "committing", "completed", "failed",
}

IMPORT_TERMINAL_STATUSES = {"completed", "failed"}

ROW_OUTCOMES = {"created", "updated", "skipped", "error"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

IMPORT_TRANSITIONS = {
    "pending":    ["parsing", "failed"],
    "parsing":    ["validating", "failed"],
    "validating": ["committing", "failed"],
    "committing": ["completed", "failed"],
    "completed":  [],
    "failed":     [],
}


def validate_import_transition(old_status, new_status):
    """Return True if ImportJob status transition is valid."""
    return new_status in IMPORT_TRANSITIONS.get(old_status, [])


class ImportJob(db.Model):
    __tablename__ = "import_jobs"
    __table_args__ = (
        db.Index("ix_import_jobs_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending")
    options = db.Column(db.JSON, nullable=False, default=dict,
                        comment="validate_only / skip_duplicates / update_existing / rollback_on_error")
    column_mapping = db.Column(db.JSON, nullable=True)

    # Counters
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    processed_rows = db.Column(db.Integer, nullable=False, default=0)
    created_count = db.Column(db.Integer, nullable=False, default=0)
    updated_count = db.Column(db.Integer, nullable=False, default=0)
    skipped_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)

    errors = db.Column(db.JSON, nullable=False, default=list,
                       comment='[{"row": 3, "error": "...", "type": "ValidationError"}]')
    failure_reason = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in IMPORT_TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "filename": self.filename,
            "status": self.status,
            "options": self.options or {},
            "column_mapping": self.column_mapping,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "errors": self.errors or [],
            "failure_reason": self.failure_reason,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<ImportJob {self.id}: {self.status} (project {self.project_id})>"
