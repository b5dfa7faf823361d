"""
pytest for the activity feeds and their formatting helpers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from roctrack.models.audit import write_audit
from roctrack.services.activity_feed import (
    get_initials,
    project_activity,
    relative_time,
    translate_entry,
    weld_activity,
)
from roctrack.services.import_service import run_import
from roctrack.services.milestone_service import update_milestone

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestFormatting:

    @pytest.mark.parametrize("name,initials", [
        ("Jane Q Doe", "JQ"),
        ("jane.doe@example.com", "JD"),
        ("alice", "A"),
        ("  bob  smith ", "BS"),
        ("", "?"),
        (None, "?"),
    ])
    def test_initials(self, name, initials):
        assert get_initials(name) == initials

    @pytest.mark.parametrize("delta,text", [
        (timedelta(seconds=30), "just now"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=5), "5 minutes ago"),
        (timedelta(hours=2), "2 hours ago"),
        (timedelta(days=3), "3 days ago"),
        (timedelta(days=14), "2 weeks ago"),
        (timedelta(days=400), "1 year ago"),
        (timedelta(seconds=-90), "just now"),
    ])
    def test_relative_time(self, delta, text):
        assert relative_time(NOW - delta, NOW) == text

    def test_naive_timestamp_is_utc(self):
        naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        assert relative_time(naive, NOW) == "1 hour ago"


class TestProjectActivity:

    def test_translates_entries(self, project):
        run_import(project.id, [{"component_id": "V-1", "drawing": "D", "type": "Valve"}],
                   actor="Jane Doe")
        items = project_activity(project.id, entity_types=["component"])
        assert len(items) == 1
        item = items[0]
        assert item.phrase == "added component"
        assert item.target == "V-1 (1 of 1)"
        assert item.initials == "JD"
        assert item.relative_time == "just now"
        assert item.to_dict()["entity_type"] == "component"

    def test_newest_first_and_limit(self, project):
        result = run_import(project.id, [{"component_id": "V-1", "drawing": "D", "type": "Valve"}])
        update_milestone(result.rows[0].component_pk, 1, is_completed=True, actor="bob")
        items = project_activity(project.id, limit=2)
        assert [i.action for i in items] == ["milestone.complete", "import.complete"]
        assert items[0].phrase == "completed"
        assert items[0].target == "Receive on V-1 (1 of 1)"

    def test_scoped_to_project(self, project):
        write_audit(entity_type="component", entity_id=1, action="create", project_id=None)
        assert project_activity(project.id) == []

    def test_unknown_action_falls_back(self, project):
        entry = write_audit(entity_type="component", entity_id=7, action="archive",
                            project_id=project.id)
        item = translate_entry(entry, now=entry.timestamp)
        assert item.phrase == "archive component"
        assert item.target == "#7"


class TestWeldActivity:

    def test_weld_creates_and_completions_only(self, project):
        result = run_import(project.id, [
            {"component_id": "FW-1", "drawing": "P-7 (1/2)", "type": "FW"},
            {"component_id": "V-1", "drawing": "P-7 (1/2)", "type": "Valve"},
        ], actor="welder one")
        weld_pk, valve_pk = (r.component_pk for r in result.rows)
        update_milestone(valve_pk, 1, is_completed=True)
        update_milestone(weld_pk, 2, is_completed=True, actor="qc inspector")
        update_milestone(weld_pk, 1, is_completed=False)

        items = weld_activity(project.id)
        assert [(i.weld_id, i.event) for i in items] == [
            ("FW-1 (1 of 1)", "Install"),
            ("FW-1 (1 of 1)", "created"),
        ]
        assert items[0].initials == "QI"
        assert items[1].drawing == "P-7 01of02"

    def test_limit(self, project):
        rows = [{"component_id": f"FW-{i}", "drawing": "D", "type": "Field Weld"} for i in range(5)]
        run_import(project.id, rows)
        assert len(weld_activity(project.id, limit=3)) == 3
