"""
pytest for the milestone template registry.

Covers:
  • Built-in definitions: weight sums, milestone counts, type assignment
  • validate_milestones: every rejection path
  • Startup completeness check
  • Provisioning (idempotent), custom templates, resolution
"""

import pytest

from roctrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from roctrack.models import db
from roctrack.models.audit import AuditLog
from roctrack.models.component import ComponentType, WorkflowType
from roctrack.models.milestone_template import MilestoneTemplate
from roctrack.services import template_registry
from roctrack.services.template_registry import (
    COMPONENT_TYPE_TEMPLATES,
    TEMPLATE_DEFINITIONS,
    TemplateAssignment,
    create_template,
    get_template,
    list_templates,
    provision_project_templates,
    resolve_template,
    validate_milestones,
    validate_registry,
)


def _template_count(project_id, name=None):
    q = MilestoneTemplate.query.filter_by(project_id=project_id)
    if name:
        q = q.filter_by(name=name)
    return q.count()


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Built-in definitions
# ═══════════════════════════════════════════════════════════════════════════

class TestBuiltInDefinitions:

    @pytest.mark.parametrize("name", list(TEMPLATE_DEFINITIONS))
    def test_weights_sum_to_100(self, name):
        total = sum(m.weight for m in TEMPLATE_DEFINITIONS[name].milestones)
        assert abs(total - 100) <= 0.01

    @pytest.mark.parametrize("name,count", [
        ("FULL", 7), ("REDUCED", 5), ("THREADED", 5), ("INSULATION", 2), ("PAINT", 2),
    ])
    def test_milestone_counts(self, name, count):
        assert len(TEMPLATE_DEFINITIONS[name].milestones) == count

    def test_orders_are_one_based_and_contiguous(self):
        for definition in TEMPLATE_DEFINITIONS.values():
            orders = [m.order for m in definition.milestones]
            assert orders == list(range(1, len(orders) + 1))

    def test_every_component_type_assigned(self):
        assert set(COMPONENT_TYPE_TEMPLATES) == set(ComponentType)

    @pytest.mark.parametrize("ctype,name,workflow", [
        (ComponentType.SPOOL, "FULL", WorkflowType.DISCRETE),
        (ComponentType.PIPING_FOOTAGE, "FULL", WorkflowType.QUANTITY),
        (ComponentType.VALVE, "REDUCED", WorkflowType.DISCRETE),
        (ComponentType.FIELD_WELD, "REDUCED", WorkflowType.DISCRETE),
        (ComponentType.THREADED_PIPE, "THREADED", WorkflowType.PERCENTAGE),
        (ComponentType.INSULATION, "INSULATION", WorkflowType.QUANTITY),
        (ComponentType.PAINT, "PAINT", WorkflowType.QUANTITY),
    ])
    def test_get_template(self, ctype, name, workflow):
        t = get_template(ctype)
        assert t["name"] == name
        assert t["workflow_type"] is workflow
        assert t["milestones"][0]["order"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestValidateMilestones:

    def test_valid_list_is_sorted(self):
        result = validate_milestones([
            {"name": "B", "weight": 60, "order": 2},
            {"name": "A", "weight": 40, "order": 1},
        ])
        assert [m["name"] for m in result] == ["A", "B"]
        assert result[0]["weight"] == 40.0

    def test_tolerance_accepted(self):
        validate_milestones([
            {"name": "A", "weight": 33.33, "order": 1},
            {"name": "B", "weight": 33.33, "order": 2},
            {"name": "C", "weight": 33.344, "order": 3},
        ])

    @pytest.mark.parametrize("milestones", [
        [],
        [{"name": "A", "weight": 50, "order": 1}, {"name": "B", "weight": 40, "order": 2}],
        [{"name": "A", "weight": 50, "order": 1}, {"name": "B", "weight": 50, "order": 1}],
        [{"name": "A", "weight": 50, "order": 1}, {"name": "B", "weight": 50, "order": 3}],
        [{"name": "A", "weight": 50, "order": 0}, {"name": "B", "weight": 50, "order": 1}],
        [{"name": "A", "weight": 150, "order": 1}, {"name": "B", "weight": -50, "order": 2}],
        [{"name": "", "weight": 100, "order": 1}],
        [{"name": "A", "weight": "heavy", "order": 1}],
    ])
    def test_rejections(self, milestones):
        with pytest.raises(ValidationError):
            validate_milestones(milestones)

    def test_weight_sum_details(self):
        with pytest.raises(ValidationError) as exc:
            validate_milestones([{"name": "A", "weight": 95, "order": 1}])
        assert exc.value.details["total"] == 95


class TestRegistryCompleteness:

    def test_registry_is_valid(self):
        validate_registry()

    def test_missing_type_fails_fast(self, monkeypatch):
        partial = dict(COMPONENT_TYPE_TEMPLATES)
        partial.pop(ComponentType.PAINT)
        monkeypatch.setattr(template_registry, "COMPONENT_TYPE_TEMPLATES", partial)
        with pytest.raises(RuntimeError, match="PAINT"):
            validate_registry()

    def test_unknown_template_fails_fast(self, monkeypatch):
        broken = dict(COMPONENT_TYPE_TEMPLATES)
        broken[ComponentType.PAINT] = TemplateAssignment("NOPE", WorkflowType.QUANTITY)
        monkeypatch.setattr(template_registry, "COMPONENT_TYPE_TEMPLATES", broken)
        with pytest.raises(RuntimeError, match="NOPE"):
            validate_registry()


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Provisioning & custom templates
# ═══════════════════════════════════════════════════════════════════════════

class TestProvisioning:

    def test_provision_creates_all(self, project):
        created = provision_project_templates(project.id, actor="alice")
        db.session.commit()
        assert sorted(t.name for t in created) == sorted(TEMPLATE_DEFINITIONS)
        assert _template_count(project.id) == len(TEMPLATE_DEFINITIONS)

    def test_reduced_is_default(self, provisioned_project):
        defaults = MilestoneTemplate.query.filter_by(
            project_id=provisioned_project.id, is_default=True).all()
        assert [t.name for t in defaults] == ["REDUCED"]

    def test_idempotent(self, project):
        provision_project_templates(project.id)
        db.session.commit()
        audits_before = AuditLog.query.count()

        second = provision_project_templates(project.id)
        db.session.commit()

        assert second == []
        for name in TEMPLATE_DEFINITIONS:
            assert _template_count(project.id, name) == 1
        assert AuditLog.query.count() == audits_before

    def test_one_audit_per_template(self, project):
        provision_project_templates(project.id, actor="alice")
        db.session.commit()
        entries = AuditLog.query.filter_by(entity_type="milestone_template").all()
        assert len(entries) == len(TEMPLATE_DEFINITIONS)
        assert {e.actor for e in entries} == {"alice"}

    def test_unknown_project(self):
        with pytest.raises(NotFoundError):
            provision_project_templates(9999)

    def test_stored_milestones_match_definition(self, provisioned_project):
        full = MilestoneTemplate.query.filter_by(
            project_id=provisioned_project.id, name="FULL").one()
        assert [m["name"] for m in full.ordered_milestones] == [
            "Receive", "Erect", "Connect", "Support", "Punch", "Test", "Restore",
        ]


class TestCustomTemplates:

    def test_create_custom(self, project):
        t = create_template(project.id, "HYDRO", [
            {"name": "Fill", "weight": 30, "order": 1},
            {"name": "Hold", "weight": 70, "order": 2},
        ], description="Hydrotest", actor="bob")
        db.session.commit()
        assert t.id is not None
        assert t.is_system is False
        assert AuditLog.query.filter_by(action="template.create").count() == 1

    def test_invalid_custom_leaves_nothing(self, project):
        with pytest.raises(ValidationError):
            create_template(project.id, "BAD", [{"name": "Only", "weight": 90, "order": 1}])
        db.session.commit()
        assert _template_count(project.id) == 0
        assert AuditLog.query.count() == 0

    def test_duplicate_name_conflicts(self, provisioned_project):
        with pytest.raises(ConflictError):
            create_template(provisioned_project.id, "FULL", [
                {"name": "X", "weight": 100, "order": 1},
            ])

    def test_blank_name_rejected(self, project):
        with pytest.raises(ValidationError):
            create_template(project.id, "  ", [{"name": "X", "weight": 100, "order": 1}])


class TestResolveTemplate:

    def test_resolve_provisions_lazily(self, project):
        template, workflow = resolve_template(project.id, ComponentType.THREADED_PIPE)
        db.session.commit()
        assert template.name == "THREADED"
        assert workflow is WorkflowType.PERCENTAGE
        assert len(list_templates(project.id)) == len(TEMPLATE_DEFINITIONS)

    def test_resolve_existing(self, provisioned_project):
        template, workflow = resolve_template(provisioned_project.id, "VALVE")
        assert template.name == "REDUCED"
        assert workflow is WorkflowType.DISCRETE
