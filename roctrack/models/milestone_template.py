"""
ROC Tracker
Milestone template model.

A template is a named, ordered list of milestones with credit weights,
stored per project.  Templates are written once (provisioning or custom
creation) and read-only afterwards; components copy the weights into their
own milestone rows at creation time.

``milestones`` JSON shape:
    [{"name": "Receive", "weight": 10.0, "order": 1}, ...]
"""

from datetime import datetime, timezone

from roctrack.models import db


class MilestoneTemplate(db.Model):
    __tablename__ = "milestone_templates"
    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_milestone_templates_project_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(60), nullable=False, comment="FULL | REDUCED | THREADED | … | custom")
    description = db.Column(db.Text, nullable=True)
    milestones = db.Column(db.JSON, nullable=False, default=list)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_system = db.Column(db.Boolean, nullable=False, default=False,
                          comment="True for the built-in provisioned set")

    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def ordered_milestones(self) -> list[dict]:
        return sorted(self.milestones or [], key=lambda m: m["order"])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "milestones": self.ordered_milestones,
            "is_default": self.is_default,
            "is_system": self.is_system,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<MilestoneTemplate {self.id}: {self.name} (project {self.project_id})>"
