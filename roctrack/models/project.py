"""Project domain model — the scope every component, drawing and template lives in."""

from datetime import datetime, timezone

from roctrack.models import db


class Project(db.Model):
    """Construction project whose installation progress is tracked."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

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

    drawings = db.relationship("Drawing", backref="project", lazy="dynamic",
                               cascade="all, delete-orphan")
    components = db.relationship("Component", backref="project", lazy="dynamic",
                                 cascade="all, delete-orphan")
    milestone_templates = db.relationship("MilestoneTemplate", backref="project", lazy="dynamic",
                                          cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.code}>"
