"""
ROC progress calculation.

Pure functions over milestone instances.  Every instance carries its own
snapshotted ``weight``, so the calculator never looks a weight up by order
in a separate array.

    Discrete:    100 × Σ weight(completed) / Σ weight(all)
    Percentage:  Σ (weight × percent) / Σ weight
    Quantity:    percent = complete / total × 100 (0 when total is 0/None),
                 then weighted as Percentage

Results are clamped to [0, 100] and rounded to 2 decimals; an empty or
zero-weight milestone set is 0.
"""

from dataclasses import dataclass

from roctrack.models.component import ComponentStatus, WorkflowType, status_for_percent


@dataclass(frozen=True)
class ProgressResult:
    completion_percent: float
    status: ComponentStatus

    def to_dict(self) -> dict:
        return {"completion_percent": self.completion_percent, "status": self.status.value}


def _field(milestone, name, default=None):
    if isinstance(milestone, dict):
        return milestone.get(name, default)
    return getattr(milestone, name, default)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _as_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def milestone_percent(workflow_type, milestone) -> float:
    """Progress of a single milestone instance on a 0–100 scale."""
    workflow_type = WorkflowType(workflow_type)

    if workflow_type is WorkflowType.DISCRETE:
        return 100.0 if _field(milestone, "is_completed") else 0.0

    if workflow_type is WorkflowType.PERCENTAGE:
        return _clamp(_as_float(_field(milestone, "percentage_complete")))

    total = _as_float(_field(milestone, "quantity_total"))
    if total <= 0:
        return 0.0
    return _clamp(_as_float(_field(milestone, "quantity_complete")) / total * 100.0)


def weighted_contribution(workflow_type, milestone) -> float:
    """weight × percent for one instance (the weighted-average numerator term)."""
    weight = max(_as_float(_field(milestone, "weight")), 0.0)
    return weight * milestone_percent(workflow_type, milestone)


def calculate_completion(workflow_type, milestones) -> float:
    milestones = list(milestones or [])
    total_weight = sum(max(_as_float(_field(m, "weight")), 0.0) for m in milestones)
    if total_weight <= 0:
        return 0.0
    numerator = sum(weighted_contribution(workflow_type, m) for m in milestones)
    return round(_clamp(numerator / total_weight), 2)


def recalculate(workflow_type, milestones) -> ProgressResult:
    """Completion percent and derived status for a milestone set."""
    percent = calculate_completion(workflow_type, milestones)
    return ProgressResult(completion_percent=percent, status=status_for_percent(percent))
