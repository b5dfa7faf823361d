"""
Milestone Template Registry — Service Layer.

Business logic for:
    - Built-in template definitions:  FULL, REDUCED, THREADED, INSULATION, PAINT
    - Type assignment:                ComponentType → (template name, workflow type)
    - Weight/order validation:        Σ weight = 100 ± 0.01, orders 1..n contiguous
    - Project provisioning:           idempotent creation of the built-in set
    - Custom templates:               validated, duplicate names rejected
    - Resolution:                     persisted template for a project + type

Provisioning and creation only ``flush``; callers own the commit.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from roctrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from roctrack.models import db
from roctrack.models.audit import write_audit
from roctrack.models.component import ComponentType, WorkflowType
from roctrack.models.milestone_template import MilestoneTemplate
from roctrack.models.project import Project

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01


@dataclass(frozen=True)
class MilestoneDefinition:
    name: str
    weight: float
    order: int

    def to_dict(self) -> dict:
        return {"name": self.name, "weight": self.weight, "order": self.order}


@dataclass(frozen=True)
class TemplateDefinition:
    name: str
    description: str
    milestones: tuple[MilestoneDefinition, ...]


@dataclass(frozen=True)
class TemplateAssignment:
    template_name: str
    workflow_type: WorkflowType


def _defs(*pairs) -> tuple[MilestoneDefinition, ...]:
    return tuple(
        MilestoneDefinition(name=name, weight=float(weight), order=i)
        for i, (name, weight) in enumerate(pairs, start=1)
    )


# ── Built-in definitions ─────────────────────────────────────────────────────

TEMPLATE_DEFINITIONS: dict[str, TemplateDefinition] = {
    "FULL": TemplateDefinition(
        name="FULL",
        description="Full installation workflow for spools and piping",
        milestones=_defs(
            ("Receive", 5), ("Erect", 30), ("Connect", 30), ("Support", 15),
            ("Punch", 5), ("Test", 10), ("Restore", 5),
        ),
    ),
    "REDUCED": TemplateDefinition(
        name="REDUCED",
        description="Reduced workflow for discrete items (valves, fittings, welds, …)",
        milestones=_defs(
            ("Receive", 10), ("Install", 60), ("Punch", 10), ("Test", 15), ("Restore", 5),
        ),
    ),
    "THREADED": TemplateDefinition(
        name="THREADED",
        description="Threaded pipe workflow tracked by percentage",
        milestones=_defs(
            ("Fabricate", 25), ("Erect", 25), ("Connect", 30), ("Test", 15), ("Restore", 5),
        ),
    ),
    "INSULATION": TemplateDefinition(
        name="INSULATION",
        description="Insulation scope tracked by installed quantity",
        milestones=_defs(("Insulate", 60), ("Metal Out", 40)),
    ),
    "PAINT": TemplateDefinition(
        name="PAINT",
        description="Paint scope tracked by coated quantity",
        milestones=_defs(("Primer", 40), ("Finish Coat", 60)),
    ),
}

DEFAULT_TEMPLATE_NAME = "REDUCED"

COMPONENT_TYPE_TEMPLATES: dict[ComponentType, TemplateAssignment] = {
    ComponentType.SPOOL: TemplateAssignment("FULL", WorkflowType.DISCRETE),
    ComponentType.PIPING_FOOTAGE: TemplateAssignment("FULL", WorkflowType.QUANTITY),
    ComponentType.VALVE: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.GASKET: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.SUPPORT: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.INSTRUMENT: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.FIELD_WELD: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.FITTING: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.FLANGE: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.OTHER: TemplateAssignment("REDUCED", WorkflowType.DISCRETE),
    ComponentType.THREADED_PIPE: TemplateAssignment("THREADED", WorkflowType.PERCENTAGE),
    ComponentType.INSULATION: TemplateAssignment("INSULATION", WorkflowType.QUANTITY),
    ComponentType.PAINT: TemplateAssignment("PAINT", WorkflowType.QUANTITY),
}


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def validate_milestones(milestones) -> list[dict]:
    """
    Validate a milestone list and return it normalised and sorted by order.

    Accepts dicts ``{"name", "weight", "order"}`` or MilestoneDefinition.

    Raises:
        ValidationError: empty list, blank name, weight outside [0, 100],
            duplicate or non-contiguous orders, or weights not summing to 100.
    """
    if not milestones:
        raise ValidationError("Template must define at least one milestone")

    normalised = []
    for m in milestones:
        if isinstance(m, MilestoneDefinition):
            m = m.to_dict()
        name = str(m.get("name") or "").strip()
        if not name:
            raise ValidationError("Milestone name is required", details={"milestone": m})
        try:
            weight = float(m.get("weight"))
            order = int(m.get("order"))
        except (TypeError, ValueError):
            raise ValidationError(
                f"Milestone {name!r} needs a numeric weight and integer order",
                details={"milestone": m},
            )
        if not 0 <= weight <= 100:
            raise ValidationError(
                f"Milestone {name!r} weight {weight} is outside 0-100",
                details={"name": name, "weight": weight},
            )
        normalised.append({"name": name, "weight": weight, "order": order})

    orders = [m["order"] for m in normalised]
    if len(set(orders)) != len(orders):
        raise ValidationError("Milestone orders must be unique", details={"orders": orders})
    if sorted(orders) != list(range(1, len(orders) + 1)):
        raise ValidationError(
            "Milestone orders must be contiguous and start at 1",
            details={"orders": sorted(orders)},
        )

    total = sum(m["weight"] for m in normalised)
    if abs(total - 100.0) > WEIGHT_TOLERANCE:
        raise ValidationError(
            f"Milestone weights sum to {total:g}, expected 100",
            details={"total": round(total, 4)},
        )

    return sorted(normalised, key=lambda m: m["order"])


def validate_registry() -> None:
    """
    Startup check: every ComponentType maps to a defined, valid template.

    Raises:
        RuntimeError: on any gap or invalid built-in template.
    """
    missing = [t.value for t in ComponentType if t not in COMPONENT_TYPE_TEMPLATES]
    if missing:
        raise RuntimeError(f"No milestone template assignment for component types: {missing}")

    for ctype, assignment in COMPONENT_TYPE_TEMPLATES.items():
        if assignment.template_name not in TEMPLATE_DEFINITIONS:
            raise RuntimeError(
                f"{ctype.value} is assigned unknown template {assignment.template_name!r}"
            )

    for name, definition in TEMPLATE_DEFINITIONS.items():
        try:
            validate_milestones(definition.milestones)
        except ValidationError as exc:
            raise RuntimeError(f"Built-in template {name} is invalid: {exc.message}") from exc

    if DEFAULT_TEMPLATE_NAME not in TEMPLATE_DEFINITIONS:
        raise RuntimeError(f"Default template {DEFAULT_TEMPLATE_NAME!r} is not defined")


# ═════════════════════════════════════════════════════════════════════════════
# Static lookups
# ═════════════════════════════════════════════════════════════════════════════


def get_assignment(component_type) -> TemplateAssignment:
    return COMPONENT_TYPE_TEMPLATES[ComponentType(component_type)]


def get_template(component_type) -> dict:
    """Return ``{name, workflow_type, milestones[]}`` for a component type."""
    assignment = get_assignment(component_type)
    definition = TEMPLATE_DEFINITIONS[assignment.template_name]
    return {
        "name": definition.name,
        "workflow_type": assignment.workflow_type,
        "milestones": [m.to_dict() for m in definition.milestones],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Persistence
# ═════════════════════════════════════════════════════════════════════════════


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def _find_template(project_id: int, name: str) -> MilestoneTemplate | None:
    return db.session.execute(
        select(MilestoneTemplate).where(
            MilestoneTemplate.project_id == project_id,
            MilestoneTemplate.name == name,
        )
    ).scalar_one_or_none()


def provision_project_templates(project_id: int, actor: str = "system") -> list[MilestoneTemplate]:
    """
    Create every built-in template the project does not have yet.

    Safe to run multiple times: existing names are left untouched and a
    fully provisioned project yields an empty list without writing anything.

    Returns:
        The newly created templates.
    """
    _get_project(project_id)

    created = []
    for name, definition in TEMPLATE_DEFINITIONS.items():
        if _find_template(project_id, name) is not None:
            continue
        milestones = validate_milestones(definition.milestones)
        template = MilestoneTemplate(
            project_id=project_id,
            name=name,
            description=definition.description,
            milestones=milestones,
            is_default=(name == DEFAULT_TEMPLATE_NAME),
            is_system=True,
            created_by=actor,
        )
        db.session.add(template)
        db.session.flush()
        write_audit(
            entity_type="milestone_template",
            entity_id=template.id,
            action="template.provision",
            actor=actor,
            project_id=project_id,
            diff={"name": name, "milestones": milestones},
        )
        created.append(template)

    if created:
        logger.info(
            "Provisioned %d milestone templates",
            len(created),
            extra={"project_id": project_id, "event_type": "template.provision"},
        )
    return created


def create_template(
    project_id: int,
    name: str,
    milestones,
    description: str | None = None,
    actor: str = "system",
) -> MilestoneTemplate:
    """
    Create a custom project template.

    Validation runs before anything is added to the session, so a failing
    template leaves no row behind.

    Raises:
        ValidationError: invalid milestone list or blank name.
        ConflictError: the project already has a template with this name.
    """
    _get_project(project_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Template name is required")

    normalised = validate_milestones(milestones)
    if _find_template(project_id, name) is not None:
        raise ConflictError(resource="MilestoneTemplate", field="name", value=name)

    template = MilestoneTemplate(
        project_id=project_id,
        name=name,
        description=description,
        milestones=normalised,
        is_default=False,
        is_system=False,
        created_by=actor,
    )
    db.session.add(template)
    db.session.flush()
    write_audit(
        entity_type="milestone_template",
        entity_id=template.id,
        action="template.create",
        actor=actor,
        project_id=project_id,
        diff={"name": name, "milestones": normalised},
    )
    logger.info("Created milestone template %s", name,
                extra={"project_id": project_id, "event_type": "template.create"})
    return template


def resolve_template(project_id: int, component_type, actor: str = "system") -> tuple[MilestoneTemplate, WorkflowType]:
    """
    Return the project's persisted template and workflow type for a type.

    Provisions the built-in set on first use.
    """
    assignment = get_assignment(component_type)
    template = _find_template(project_id, assignment.template_name)
    if template is None:
        provision_project_templates(project_id, actor=actor)
        template = _find_template(project_id, assignment.template_name)
    return template, assignment.workflow_type


def list_templates(project_id: int) -> list[MilestoneTemplate]:
    return list(
        db.session.execute(
            select(MilestoneTemplate)
            .where(MilestoneTemplate.project_id == project_id)
            .order_by(MilestoneTemplate.name)
        ).scalars()
    )
