"""
pytest for the component type classifier.

Covers:
  • Exact type-field matches and aliases
  • Ordered pattern rules (specific before generic)
  • Project custom mappings
  • Fallback to OTHER and the mapping preview
"""

import pytest

from roctrack.models.component import ComponentType
from roctrack.services.type_classifier import (
    CLASSIFICATION_RULES,
    TYPE_LABELS,
    classify_type,
    type_label,
    type_mapping_stats,
)


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Exact type field
# ═══════════════════════════════════════════════════════════════════════════

class TestExactTypeField:

    @pytest.mark.parametrize("raw,expected", [
        ("VALVE", ComponentType.VALVE),
        ("valve", ComponentType.VALVE),
        ("Field Weld", ComponentType.FIELD_WELD),
        ("FIELD_WELD", ComponentType.FIELD_WELD),
        ("FW", ComponentType.FIELD_WELD),
        ("threaded pipe", ComponentType.THREADED_PIPE),
        ("Piping-Footage", ComponentType.PIPING_FOOTAGE),
        ("INST", ComponentType.INSTRUMENT),
        ("GSKT", ComponentType.GASKET),
        ("GMG", ComponentType.GASKET),
        ("Seal", ComponentType.GASKET),
        ("RTJ", ComponentType.GASKET),
        ("BLIND", ComponentType.FLANGE),
        ("FLG", ComponentType.FLANGE),
        ("Gate", ComponentType.VALVE),
        ("GLOBE", ComponentType.VALVE),
        ("check", ComponentType.VALVE),
        ("BALL", ComponentType.VALVE),
        ("Fab Spool", ComponentType.SPOOL),
        ("SUPP", ComponentType.SUPPORT),
    ])
    def test_canonical_names_and_aliases(self, raw, expected):
        assert classify_type(None, type_field=raw) is expected

    def test_type_field_beats_description(self):
        """Explicit type wins over a description that says something else."""
        assert classify_type("2in gate valve", type_field="Instrument") is ComponentType.INSTRUMENT


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Ordered rules
# ═══════════════════════════════════════════════════════════════════════════

class TestRuleOrdering:

    @pytest.mark.parametrize("text,expected", [
        ("6\" gate valve 150#", ComponentType.VALVE),
        ("ball valve", ComponentType.VALVE),
        ("needle valve 1/2in", ComponentType.VALVE),
        ("3-way valve", ComponentType.VALVE),
        ("RTJ ring 4in", ComponentType.GASKET),
        ("GSKT 150# RF", ComponentType.GASKET),
        ("PSV-101 relief", ComponentType.VALVE),
        ("pipe spool SP-12", ComponentType.SPOOL),
        ("threaded pipe 1in", ComponentType.THREADED_PIPE),
        ("flange gasket spiral wound", ComponentType.GASKET),
        ("weld neck flange RF", ComponentType.FLANGE),
        ("socket weld flange", ComponentType.FLANGE),
        ("blind flange", ComponentType.FLANGE),
        ("field weld", ComponentType.FIELD_WELD),
        ("butt weld", ComponentType.FIELD_WELD),
        ("90 deg elbow", ComponentType.FITTING),
        ("concentric reducer", ComponentType.FITTING),
        ("pressure transmitter", ComponentType.INSTRUMENT),
        ("pipe hanger", ComponentType.SUPPORT),
        ("insulated valve body", ComponentType.INSULATION),
        ("finish coat", ComponentType.PAINT),
        ("carbon steel pipe", ComponentType.PIPING_FOOTAGE),
    ])
    def test_description_rules(self, text, expected):
        assert classify_type(text) is expected

    def test_specific_valve_rule_precedes_generic(self):
        """Every multi-word valve pattern sits above the bare 'valve' rule."""
        patterns = [p.pattern for p, _ in CLASSIFICATION_RULES]
        generic = next(i for i, p in enumerate(patterns) if p.startswith("valve"))
        gate = next(i for i, p in enumerate(patterns) if p.startswith("gate"))
        assert gate < generic

    def test_gasket_rule_precedes_every_flange_rule(self):
        rules = list(CLASSIFICATION_RULES)
        gasket = next(i for i, (_, t) in enumerate(rules) if t is ComponentType.GASKET)
        first_flange = next(i for i, (_, t) in enumerate(rules) if t is ComponentType.FLANGE)
        assert gasket < first_flange

    def test_weld_neck_flange_not_a_weld(self):
        assert classify_type("WN flange 4in") is ComponentType.FLANGE
        assert classify_type("weld neck") is ComponentType.FLANGE


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Custom mappings & fallback
# ═══════════════════════════════════════════════════════════════════════════

class TestCustomMappingsAndFallback:

    def test_custom_mapping_wins(self):
        mappings = {"hanger rod": "SUPPORT", "VLV-X": "VALVE"}
        assert classify_type(None, "Hanger Rod", custom_mappings=mappings) is ComponentType.SUPPORT
        assert classify_type("valve", "pipe", custom_mappings={"PIPE": "SPOOL"}) is ComponentType.SPOOL

    def test_invalid_custom_mapping_ignored(self):
        result = classify_type(None, "valve", custom_mappings={"VALVE": "NOT_A_TYPE"})
        assert result is ComponentType.VALVE

    @pytest.mark.parametrize("text", [None, "", "   ", "miscellaneous widget", "capacitor"])
    def test_unmatched_is_other(self, text):
        assert classify_type(text) is ComponentType.OTHER

    def test_never_raises_on_odd_input(self):
        assert classify_type(12345, type_field=0) is ComponentType.OTHER

    def test_every_type_has_a_label(self):
        assert set(TYPE_LABELS) == set(ComponentType)
        assert type_label("FIELD_WELD") == "Field Weld"


class TestTypeMappingStats:

    def test_counts_and_unmapped(self):
        stats = type_mapping_stats(["Valve", "valve", "FW", "gizmo", "gizmo", "doohickey"])
        assert stats["counts"][ComponentType.VALVE] == 2
        assert stats["counts"][ComponentType.FIELD_WELD] == 1
        assert stats["counts"][ComponentType.OTHER] == 3
        assert stats["unmapped"] == ["gizmo", "doohickey"]
