"""
Milestone updates — Service Layer.

Business logic for:
    - Manual milestone edits:  discrete toggle, percentage, installed quantity
    - Recalculation:           completion percent re-derived from the full
                               current milestone set after every change
    - Bulk edits:              one savepoint per update, failures reported
    - Audit:                   one entry per successful milestone change

The component row is locked (SELECT … FOR UPDATE) before its milestones are
read, so two writers on one component are serialised and the stored
completion percent always matches the milestones committed with it.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from roctrack.core.exceptions import NotFoundError, PersistenceError, ValidationError
from roctrack.models import db
from roctrack.models.audit import write_audit
from roctrack.models.component import (
    Component,
    ComponentMilestone,
    WorkflowType,
)
from roctrack.services.progress_calculator import milestone_percent, recalculate

logger = logging.getLogger(__name__)


def recalculate_component(component: Component) -> float:
    """Re-derive ``completion_percent`` from the component's milestones and store it."""
    result = recalculate(component.workflow_type, component.milestones)
    component.completion_percent = result.completion_percent
    return result.completion_percent


def _lock_component(component_id: int) -> Component:
    component = db.session.execute(
        select(Component).where(Component.id == component_id).with_for_update()
    ).scalar_one_or_none()
    if component is None:
        raise NotFoundError(resource="Component", resource_id=component_id)
    return component


def _find_milestone(component: Component, milestone_order=None, milestone_name=None) -> ComponentMilestone:
    if milestone_order is None and not milestone_name:
        raise ValidationError("milestone_order or milestone_name is required")
    for m in component.milestones:
        if milestone_order is not None and m.milestone_order == int(milestone_order):
            return m
        if milestone_order is None and m.milestone_name.lower() == str(milestone_name).strip().lower():
            return m
    raise NotFoundError(
        resource="ComponentMilestone",
        resource_id=milestone_order if milestone_order is not None else milestone_name,
    )


def _number(value, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})


def _apply_value(milestone: ComponentMilestone, workflow_type: WorkflowType, *,
                 is_completed=None, percentage_complete=None, quantity_complete=None) -> dict:
    """Write the new value onto the milestone; returns the before/after diff."""
    if workflow_type is WorkflowType.DISCRETE:
        if is_completed is None:
            raise ValidationError("is_completed is required for discrete milestones")
        old = milestone.is_completed
        milestone.is_completed = bool(is_completed)
        return {"is_completed": {"old": old, "new": milestone.is_completed}}

    if workflow_type is WorkflowType.PERCENTAGE:
        if percentage_complete is None:
            raise ValidationError("percentage_complete is required for percentage milestones")
        value = _number(percentage_complete, "percentage_complete")
        if not 0 <= value <= 100:
            raise ValidationError("percentage_complete must be between 0 and 100",
                                  details={"percentage_complete": value})
        old = milestone.percentage_complete
        milestone.percentage_complete = value
        return {"percentage_complete": {"old": old, "new": value}}

    if quantity_complete is None:
        raise ValidationError("quantity_complete is required for quantity milestones")
    value = _number(quantity_complete, "quantity_complete")
    if value < 0:
        raise ValidationError("quantity_complete cannot be negative",
                              details={"quantity_complete": value})
    if milestone.quantity_total is not None and value > milestone.quantity_total:
        raise ValidationError(
            f"quantity_complete {value:g} exceeds quantity_total {milestone.quantity_total:g}",
            details={"quantity_complete": value, "quantity_total": milestone.quantity_total},
        )
    old = milestone.quantity_complete
    milestone.quantity_complete = value
    return {"quantity_complete": {"old": old, "new": value}}


def _apply_update(component_id: int, milestone_order=None, milestone_name=None, *,
                  is_completed=None, percentage_complete=None, quantity_complete=None,
                  actor: str = "system") -> Component:
    component = _lock_component(component_id)
    workflow_type = WorkflowType(component.workflow_type)
    milestone = _find_milestone(component, milestone_order, milestone_name)

    was_done = milestone_percent(workflow_type, milestone) >= 100
    before = component.completion_percent
    changes = _apply_value(
        milestone, workflow_type,
        is_completed=is_completed,
        percentage_complete=percentage_complete,
        quantity_complete=quantity_complete,
    )
    is_done = milestone_percent(workflow_type, milestone) >= 100

    if is_done and not was_done:
        milestone.completed_at = datetime.now(timezone.utc)
        milestone.completed_by = actor
        action = "milestone.complete"
    elif was_done and not is_done:
        milestone.completed_at = None
        milestone.completed_by = None
        action = "milestone.uncomplete"
    else:
        action = "milestone.update"

    after = recalculate_component(component)
    db.session.flush()

    write_audit(
        entity_type="component_milestone",
        entity_id=milestone.id,
        action=action,
        actor=actor,
        project_id=component.project_id,
        diff={
            "component_pk": component.id,
            "component_id": component.component_id,
            "display_id": component.display_id,
            "component_type": component.component_type,
            "drawing": component.drawing.number if component.drawing else None,
            "milestone_name": milestone.milestone_name,
            "milestone_order": milestone.milestone_order,
            **changes,
            "completion_percent": {"old": before, "new": after},
        },
    )
    return component


def update_milestone(component_id: int, milestone_order: int | None = None,
                     milestone_name: str | None = None, *, is_completed=None,
                     percentage_complete=None, quantity_complete=None,
                     actor: str = "system") -> Component:
    """
    Change one milestone on one component and commit.

    The milestone is addressed by 1-based ``milestone_order`` or by name.
    Only the value matching the component's workflow type is read.

    Raises:
        NotFoundError: unknown component or milestone.
        ValidationError: missing or out-of-range value.
        PersistenceError: the database rejected the write.
    """
    try:
        component = _apply_update(
            component_id, milestone_order, milestone_name,
            is_completed=is_completed,
            percentage_complete=percentage_complete,
            quantity_complete=quantity_complete,
            actor=actor,
        )
        db.session.commit()
    except (NotFoundError, ValidationError):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Milestone update failed", extra={"component_id": component_id})
        raise PersistenceError(str(exc)) from exc

    logger.info(
        "Milestone updated → %.2f%%", component.completion_percent,
        extra={"project_id": component.project_id, "component_id": component.component_id,
               "event_type": "milestone.update"},
    )
    return component


def bulk_update_milestones(updates, actor: str = "system") -> dict:
    """
    Apply many milestone updates, each in its own savepoint.

    Each update is a dict with ``component_id`` (PK), ``milestone_order`` or
    ``milestone_name`` and the workflow value.  A failing update rolls back
    only itself.

    Returns:
        ``{"updated": [...], "failed": [...], "total_updated", "total_failed"}``
    """
    updated = []
    failed = []
    for idx, upd in enumerate(updates):
        try:
            with db.session.begin_nested():
                component = _apply_update(
                    upd.get("component_id"),
                    upd.get("milestone_order"),
                    upd.get("milestone_name"),
                    is_completed=upd.get("is_completed"),
                    percentage_complete=upd.get("percentage_complete"),
                    quantity_complete=upd.get("quantity_complete"),
                    actor=actor,
                )
            updated.append({
                "index": idx,
                "component_id": component.id,
                "completion_percent": component.completion_percent,
            })
        except (NotFoundError, ValidationError, SQLAlchemyError) as exc:
            logger.warning("Bulk milestone update %d failed: %s", idx, exc,
                           extra={"component_id": upd.get("component_id")})
            failed.append({
                "index": idx,
                "component_id": upd.get("component_id"),
                "error": getattr(exc, "message", None) or str(exc),
            })

    db.session.commit()
    return {
        "updated": updated,
        "failed": failed,
        "total_updated": len(updated),
        "total_failed": len(failed),
    }
