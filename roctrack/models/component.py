"""
ROC Tracker
Component domain models.

Models:
    - Drawing:             canonical drawing sheet ("P-94011_2 01of03") within a project
    - Component:           one physical instance of a componentId on a drawing
    - ComponentMilestone:  milestone instance owned by a component, weight snapshotted
                           from the template at creation time

Architecture:
    Project ──1:N──▶ Drawing ──1:N──▶ Component ──1:N──▶ ComponentMilestone
    MilestoneTemplate ──1:N──▶ Component   (fixed at creation)

Status lifecycle (derived, never stored):
    0 → not_started   (0, 100) → in_progress   100 → completed
"""

from datetime import datetime, timezone
from enum import Enum

from roctrack.models import db


# ── Enums ────────────────────────────────────────────────────────────────────


class ComponentType(str, Enum):
    SPOOL = "SPOOL"
    VALVE = "VALVE"
    GASKET = "GASKET"
    SUPPORT = "SUPPORT"
    INSTRUMENT = "INSTRUMENT"
    FIELD_WELD = "FIELD_WELD"
    FITTING = "FITTING"
    FLANGE = "FLANGE"
    THREADED_PIPE = "THREADED_PIPE"
    INSULATION = "INSULATION"
    PAINT = "PAINT"
    PIPING_FOOTAGE = "PIPING_FOOTAGE"
    OTHER = "OTHER"


class WorkflowType(str, Enum):
    """How milestone progress is measured on a component."""
    DISCRETE = "MILESTONE_DISCRETE"
    PERCENTAGE = "MILESTONE_PERCENTAGE"
    QUANTITY = "MILESTONE_QUANTITY"


class ComponentStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


def status_for_percent(percent: float | None) -> ComponentStatus:
    """Map a completion percent onto its status bucket."""
    if not percent or percent <= 0:
        return ComponentStatus.NOT_STARTED
    if percent >= 100:
        return ComponentStatus.COMPLETED
    return ComponentStatus.IN_PROGRESS


def format_display_id(component_id: str, instance_number: int, total_instances: int) -> str:
    return f"{component_id} ({instance_number} of {total_instances})"


# ═════════════════════════════════════════════════════════════════════════════
# 1. Drawing
# ═════════════════════════════════════════════════════════════════════════════


class Drawing(db.Model):
    """A single drawing sheet; ``number`` is always in canonical sheet form."""

    __tablename__ = "drawings"
    __table_args__ = (
        db.UniqueConstraint("project_id", "number", name="uq_drawings_project_number"),
        db.Index("ix_drawings_project_base", "project_id", "base_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    number = db.Column(db.String(120), nullable=False, comment="Canonical: '<base> NNofMM'")
    base_number = db.Column(db.String(100), nullable=False)
    sheet_number = db.Column(db.Integer, nullable=False, default=1)
    total_sheets = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    components = db.relationship("Component", backref="drawing", lazy="dynamic")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "number": self.number,
            "base_number": self.base_number,
            "sheet_number": self.sheet_number,
            "total_sheets": self.total_sheets,
        }

    def __repr__(self):
        return f"<Drawing {self.id}: {self.number}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Component
# ═════════════════════════════════════════════════════════════════════════════


class Component(db.Model):
    """
    One physical occurrence of a componentId on a drawing.

    ``completion_percent`` is a cache of the ROC calculation over the current
    milestone set; it is rewritten in the same transaction as every milestone
    change.
    """

    __tablename__ = "components"
    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "component_id", "drawing_id", "instance_number",
            name="uq_components_instance",
        ),
        db.Index("ix_components_project_type", "project_id", "component_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    drawing_id = db.Column(
        db.Integer,
        db.ForeignKey("drawings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_template_id = db.Column(
        db.Integer,
        db.ForeignKey("milestone_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Identity
    component_id = db.Column(db.String(100), nullable=False, comment="Human component ID, e.g. VALVE-0004")
    instance_number = db.Column(db.Integer, nullable=False, default=1)
    total_instances_on_drawing = db.Column(db.Integer, nullable=False, default=1)
    display_id = db.Column(db.String(160), nullable=False)

    component_type = db.Column(db.String(30), nullable=False, default=ComponentType.OTHER.value)
    workflow_type = db.Column(db.String(30), nullable=False, default=WorkflowType.DISCRETE.value)

    # Descriptive fields carried from the import sheet
    description = db.Column(db.Text, nullable=True)
    spec = db.Column(db.String(100), nullable=True)
    size = db.Column(db.String(50), nullable=True)
    material = db.Column(db.String(100), nullable=True)
    area = db.Column(db.String(100), nullable=True)
    system = db.Column(db.String(100), nullable=True)
    test_package = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Float, nullable=True)

    completion_percent = db.Column(db.Float, nullable=False, default=0.0)

    created_by = db.Column(db.String(150), nullable=False, default="system")
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

    milestones = db.relationship(
        "ComponentMilestone",
        backref="component",
        order_by="ComponentMilestone.milestone_order",
        cascade="all, delete-orphan",
    )
    milestone_template = db.relationship("MilestoneTemplate")

    @property
    def status(self) -> ComponentStatus:
        return status_for_percent(self.completion_percent)

    def refresh_display_id(self) -> None:
        self.display_id = format_display_id(
            self.component_id, self.instance_number, self.total_instances_on_drawing,
        )

    def to_dict(self, include_milestones: bool = False) -> dict:
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "drawing_id": self.drawing_id,
            "drawing_number": self.drawing.number if self.drawing else None,
            "milestone_template_id": self.milestone_template_id,
            "component_id": self.component_id,
            "instance_number": self.instance_number,
            "total_instances_on_drawing": self.total_instances_on_drawing,
            "display_id": self.display_id,
            "component_type": self.component_type,
            "workflow_type": self.workflow_type,
            "description": self.description,
            "spec": self.spec,
            "size": self.size,
            "material": self.material,
            "area": self.area,
            "system": self.system,
            "test_package": self.test_package,
            "notes": self.notes,
            "quantity": self.quantity,
            "completion_percent": self.completion_percent,
            "status": self.status.value,
        }
        if include_milestones:
            d["milestones"] = [m.to_dict() for m in self.milestones]
        return d

    def __repr__(self):
        return f"<Component {self.id}: {self.display_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ComponentMilestone
# ═════════════════════════════════════════════════════════════════════════════


class ComponentMilestone(db.Model):
    """
    Milestone instance on a component.

    ``weight`` is a copy taken from the template when the component was
    created.  Progress math reads it from here, never from the template.
    """

    __tablename__ = "component_milestones"
    __table_args__ = (
        db.UniqueConstraint("component_id", "milestone_order", name="uq_component_milestone_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    component_id = db.Column(
        db.Integer,
        db.ForeignKey("components.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_name = db.Column(db.String(60), nullable=False)
    milestone_order = db.Column(db.Integer, nullable=False, comment="1-based")
    weight = db.Column(db.Float, nullable=False, default=0.0)

    # Discrete
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    # Percentage
    percentage_complete = db.Column(db.Float, nullable=True)
    # Quantity
    quantity_complete = db.Column(db.Float, nullable=True)
    quantity_total = db.Column(db.Float, nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_id": self.component_id,
            "milestone_name": self.milestone_name,
            "milestone_order": self.milestone_order,
            "weight": self.weight,
            "is_completed": self.is_completed,
            "percentage_complete": self.percentage_complete,
            "quantity_complete": self.quantity_complete,
            "quantity_total": self.quantity_total,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<ComponentMilestone {self.id}: #{self.milestone_order} {self.milestone_name}>"
