"""
pytest for the ROC progress calculator.

Covers:
  • Discrete, percentage and quantity workflows
  • Order → weight mapping regression (order 1 carries the first weight)
  • Empty / zero-weight sets, clamping, rounding, derived status
"""

import pytest

from roctrack.models.component import ComponentMilestone, ComponentStatus, WorkflowType
from roctrack.services.progress_calculator import (
    calculate_completion,
    milestone_percent,
    recalculate,
    weighted_contribution,
)

D = WorkflowType.DISCRETE
P = WorkflowType.PERCENTAGE
Q = WorkflowType.QUANTITY


def _ms(order, weight, **state):
    return {"milestone_order": order, "weight": weight, **state}


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Discrete
# ═══════════════════════════════════════════════════════════════════════════

class TestDiscrete:

    def test_first_milestone_uses_first_weight(self):
        """[40 @ order 1, 60 @ order 2], only order 1 complete → 40, not 60."""
        milestones = [_ms(1, 40, is_completed=True), _ms(2, 60, is_completed=False)]
        assert calculate_completion(D, milestones) == 40.0

    def test_second_milestone_uses_second_weight(self):
        milestones = [_ms(1, 40, is_completed=False), _ms(2, 60, is_completed=True)]
        assert calculate_completion(D, milestones) == 60.0

    def test_weight_read_from_instance_not_position(self):
        """Instances listed out of order still credit their own weight."""
        milestones = [_ms(2, 60, is_completed=False), _ms(1, 40, is_completed=True)]
        assert calculate_completion(D, milestones) == 40.0

    @pytest.mark.parametrize("weights", [
        [5, 30, 30, 15, 5, 10, 5],
        [10, 60, 10, 15, 5],
        [99.5, 0.5],
        [1, 1, 1],
    ])
    def test_all_complete_is_100(self, weights):
        milestones = [_ms(i, w, is_completed=True) for i, w in enumerate(weights, start=1)]
        assert calculate_completion(D, milestones) == 100.0

    def test_partial_set_uses_present_weights(self):
        """Denominator is the weights actually present, not an assumed 100."""
        milestones = [_ms(1, 10, is_completed=True), _ms(2, 60, is_completed=False)]
        assert calculate_completion(D, milestones) == pytest.approx(14.29)

    def test_orm_instances(self):
        milestones = [
            ComponentMilestone(milestone_name="Receive", milestone_order=1, weight=10, is_completed=True),
            ComponentMilestone(milestone_name="Install", milestone_order=2, weight=60, is_completed=True),
            ComponentMilestone(milestone_name="Punch", milestone_order=3, weight=10, is_completed=False),
            ComponentMilestone(milestone_name="Test", milestone_order=4, weight=15, is_completed=False),
            ComponentMilestone(milestone_name="Restore", milestone_order=5, weight=5, is_completed=False),
        ]
        assert calculate_completion(D, milestones) == 70.0


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Percentage & quantity
# ═══════════════════════════════════════════════════════════════════════════

class TestPercentage:

    def test_weighted_average(self):
        milestones = [_ms(1, 25, percentage_complete=100), _ms(2, 75, percentage_complete=50)]
        assert calculate_completion(P, milestones) == 62.5

    def test_out_of_range_inputs_clamped(self):
        milestones = [_ms(1, 50, percentage_complete=150), _ms(2, 50, percentage_complete=-20)]
        assert calculate_completion(P, milestones) == 50.0

    def test_missing_percent_is_zero(self):
        assert calculate_completion(P, [_ms(1, 100, percentage_complete=None)]) == 0.0


class TestQuantity:

    def test_contribution(self):
        """50 of 200 at weight 40 → 40 × 25 = 1000 in the numerator."""
        m = _ms(1, 40, quantity_complete=50, quantity_total=200)
        assert milestone_percent(Q, m) == 25.0
        assert weighted_contribution(Q, m) == 1000.0

    def test_weighted(self):
        milestones = [
            _ms(1, 60, quantity_complete=50, quantity_total=100),
            _ms(2, 40, quantity_complete=100, quantity_total=100),
        ]
        assert calculate_completion(Q, milestones) == 70.0

    @pytest.mark.parametrize("total", [None, 0])
    def test_missing_total_is_zero(self, total):
        assert milestone_percent(Q, _ms(1, 100, quantity_complete=10, quantity_total=total)) == 0.0

    def test_over_installed_clamped(self):
        assert milestone_percent(Q, _ms(1, 100, quantity_complete=300, quantity_total=200)) == 100.0


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Degenerate sets & status
# ═══════════════════════════════════════════════════════════════════════════

class TestEdgeCasesAndStatus:

    @pytest.mark.parametrize("workflow", [D, P, Q])
    def test_empty_set_is_zero(self, workflow):
        assert calculate_completion(workflow, []) == 0.0
        assert calculate_completion(workflow, None) == 0.0

    def test_zero_weights_is_zero(self):
        assert calculate_completion(D, [_ms(1, 0, is_completed=True)]) == 0.0

    def test_rounded_to_two_decimals(self):
        milestones = [_ms(i, 1, is_completed=(i == 1)) for i in range(1, 4)]
        assert calculate_completion(D, milestones) == 33.33

    def test_accepts_workflow_string(self):
        assert calculate_completion("MILESTONE_DISCRETE", [_ms(1, 100, is_completed=True)]) == 100.0

    @pytest.mark.parametrize("states,status", [
        ([False, False], ComponentStatus.NOT_STARTED),
        ([True, False], ComponentStatus.IN_PROGRESS),
        ([True, True], ComponentStatus.COMPLETED),
    ])
    def test_status_derived(self, states, status):
        milestones = [_ms(i, 50, is_completed=s) for i, s in enumerate(states, start=1)]
        result = recalculate(D, milestones)
        assert result.status is status
        assert result.to_dict()["status"] == status.value
