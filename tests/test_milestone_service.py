"""
pytest for manual milestone updates.

Covers:
  • Discrete / percentage / quantity edits and the recalculated percent
  • completed_at / completed_by bookkeeping
  • Audit entries per change, nothing written on failure
  • Bulk updates with per-update savepoints
"""

import pytest

from roctrack.core.exceptions import NotFoundError, ValidationError
from roctrack.models import db
from roctrack.models.audit import AuditLog
from roctrack.models.component import Component, ComponentStatus
from roctrack.services.import_service import run_import
from roctrack.services.milestone_service import bulk_update_milestones, update_milestone


# ═══════════════════════════════════════════════════════════════════════════
# Test helpers
# ═══════════════════════════════════════════════════════════════════════════

def _make_component(project, **row):
    row = {"drawing": "P-1 (1/1)", **row}
    result = run_import(project.id, [row], actor="importer")
    assert result.created == 1, result.errors
    return db.session.get(Component, result.rows[0].component_pk)


def _milestone_audits():
    return AuditLog.query.filter_by(entity_type="component_milestone").order_by(AuditLog.id).all()


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Discrete
# ═══════════════════════════════════════════════════════════════════════════

class TestDiscrete:

    def test_complete_by_order(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        comp = update_milestone(comp.id, 1, is_completed=True, actor="bob")
        assert comp.completion_percent == 10.0
        assert comp.status is ComponentStatus.IN_PROGRESS
        receive = comp.milestones[0]
        assert receive.is_completed is True
        assert receive.completed_by == "bob"
        assert receive.completed_at is not None

    def test_complete_by_name_is_case_insensitive(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        update_milestone(comp.id, 1, is_completed=True)
        comp = update_milestone(comp.id, milestone_name="install", is_completed=True)
        assert comp.completion_percent == 70.0

    def test_all_complete(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        for order in range(1, 6):
            comp = update_milestone(comp.id, order, is_completed=True)
        assert comp.completion_percent == 100.0
        assert comp.status is ComponentStatus.COMPLETED

    def test_uncomplete_clears_completion(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        update_milestone(comp.id, 2, is_completed=True)
        comp = update_milestone(comp.id, 2, is_completed=False)
        install = comp.milestones[1]
        assert install.completed_at is None
        assert install.completed_by is None
        assert comp.completion_percent == 0.0

    def test_missing_value_rejected(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        with pytest.raises(ValidationError):
            update_milestone(comp.id, 1, percentage_complete=50)
        assert _milestone_audits() == []

    def test_unknown_component(self, project):
        with pytest.raises(NotFoundError):
            update_milestone(9999, 1, is_completed=True)

    def test_unknown_milestone(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        with pytest.raises(NotFoundError):
            update_milestone(comp.id, 9, is_completed=True)
        with pytest.raises(NotFoundError):
            update_milestone(comp.id, milestone_name="Paint", is_completed=True)

    def test_address_required(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        with pytest.raises(ValidationError):
            update_milestone(comp.id, is_completed=True)


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Percentage & quantity
# ═══════════════════════════════════════════════════════════════════════════

class TestPercentage:

    def test_partial_progress(self, project):
        comp = _make_component(project, description="threaded pipe 2in")
        comp = update_milestone(comp.id, 1, percentage_complete=50)
        assert comp.completion_percent == 12.5
        assert comp.milestones[0].completed_at is None

    def test_reaching_100_completes(self, project):
        comp = _make_component(project, description="threaded pipe 2in")
        comp = update_milestone(comp.id, 1, percentage_complete="100")
        assert comp.milestones[0].completed_at is not None
        assert _milestone_audits()[-1].action == "milestone.complete"

    @pytest.mark.parametrize("value", [150, -1, "half"])
    def test_out_of_range(self, project, value):
        comp = _make_component(project, description="threaded pipe 2in")
        with pytest.raises(ValidationError):
            update_milestone(comp.id, 1, percentage_complete=value)
        assert db.session.get(Component, comp.id).milestones[0].percentage_complete == 0.0


class TestQuantity:

    def test_installed_quantity(self, project):
        comp = _make_component(project, component_id="INS-1", type="Insulation", quantity="200")
        comp = update_milestone(comp.id, 1, quantity_complete=50)
        assert comp.completion_percent == 15.0

    def test_full_quantity_completes(self, project):
        comp = _make_component(project, component_id="INS-1", type="Insulation", quantity="200")
        comp = update_milestone(comp.id, 2, quantity_complete=200)
        assert comp.completion_percent == 40.0
        assert comp.milestones[1].completed_at is not None

    @pytest.mark.parametrize("value", [201, -5])
    def test_rejected_quantities(self, project, value):
        comp = _make_component(project, component_id="INS-1", type="Insulation", quantity="200")
        with pytest.raises(ValidationError):
            update_milestone(comp.id, 1, quantity_complete=value)


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Audit
# ═══════════════════════════════════════════════════════════════════════════

class TestAudit:

    def test_actions(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        update_milestone(comp.id, 1, is_completed=True, actor="bob")
        update_milestone(comp.id, 1, is_completed=True, actor="bob")
        update_milestone(comp.id, 1, is_completed=False, actor="bob")
        assert [a.action for a in _milestone_audits()] == [
            "milestone.complete", "milestone.update", "milestone.uncomplete",
        ]

    def test_diff_payload(self, project):
        comp = _make_component(project, component_id="V-1", type="Valve")
        update_milestone(comp.id, 2, is_completed=True, actor="bob")
        entry = _milestone_audits()[0]
        assert entry.actor == "bob"
        assert entry.project_id == project.id
        diff = entry.diff
        assert diff["component_pk"] == comp.id
        assert diff["milestone_name"] == "Install"
        assert diff["drawing"] == "P-1 01of01"
        assert diff["is_completed"] == {"old": False, "new": True}
        assert diff["completion_percent"] == {"old": 0.0, "new": 60.0}


# ═══════════════════════════════════════════════════════════════════════════
# 4 · Bulk
# ═══════════════════════════════════════════════════════════════════════════

class TestBulk:

    def test_failures_do_not_block_others(self, project):
        a = _make_component(project, component_id="V-1", type="Valve")
        b = _make_component(project, component_id="V-2", type="Valve")
        result = bulk_update_milestones([
            {"component_id": a.id, "milestone_order": 1, "is_completed": True},
            {"component_id": a.id, "milestone_order": 7, "is_completed": True},
            {"component_id": b.id, "milestone_name": "Install", "is_completed": True},
            {"component_id": 4242, "milestone_order": 1, "is_completed": True},
        ], actor="carol")
        assert result["total_updated"] == 2
        assert result["total_failed"] == 2
        assert [f["index"] for f in result["failed"]] == [1, 3]

        db.session.expire_all()
        assert db.session.get(Component, a.id).completion_percent == 10.0
        assert db.session.get(Component, b.id).completion_percent == 60.0
        assert len(_milestone_audits()) == 2
