"""
Activity feeds — read-only projections of the audit log.

Two feeds are derived from the same AuditLog rows:
    - project_activity:  every mutation in a project, newest first
    - weld_activity:     field-weld creates and weld milestone completions

Translation (``translate_entry``) is pure; nothing here writes to the log.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from roctrack.models import db
from roctrack.models.audit import AuditLog
from roctrack.models.component import ComponentType

ACTION_PHRASES = {
    ("component", "create"): "added component",
    ("component", "update"): "updated component",
    ("field_weld", "create"): "added field weld",
    ("field_weld", "update"): "updated field weld",
    ("component_milestone", "milestone.complete"): "completed",
    ("component_milestone", "milestone.uncomplete"): "reopened",
    ("component_milestone", "milestone.update"): "updated progress on",
    ("milestone_template", "template.provision"): "provisioned template",
    ("milestone_template", "template.create"): "created template",
    ("import_job", "import.complete"): "completed import",
}


@dataclass(frozen=True)
class ActivityItem:
    id: int
    actor: str
    initials: str
    phrase: str
    target: str
    entity_type: str
    entity_id: str
    action: str
    timestamp: datetime
    relative_time: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor": self.actor,
            "initials": self.initials,
            "phrase": self.phrase,
            "target": self.target,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "relative_time": self.relative_time,
        }


@dataclass(frozen=True)
class WeldActivityItem:
    id: int
    weld_id: str
    drawing: str | None
    event: str            # "created" | milestone name
    actor: str
    initials: str
    timestamp: datetime
    relative_time: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "weld_id": self.weld_id,
            "drawing": self.drawing,
            "event": self.event,
            "actor": self.actor,
            "initials": self.initials,
            "timestamp": self.timestamp.isoformat(),
            "relative_time": self.relative_time,
        }


# ── Formatting helpers ───────────────────────────────────────────────────────


def get_initials(name) -> str:
    """'Jane Q Doe' → 'JQ'; 'jane.doe@x.com' → 'JD'; blank → '?'."""
    text = (name or "").strip()
    if "@" in text:
        text = text.split("@", 1)[0]
    parts = [p for p in text.replace(".", " ").replace("_", " ").replace("-", " ").split() if p]
    if not parts:
        return "?"
    return "".join(p[0] for p in parts[:2]).upper()


def _aware(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def relative_time(ts: datetime, now: datetime | None = None) -> str:
    now = _aware(now or datetime.now(timezone.utc))
    seconds = int((now - _aware(ts)).total_seconds())
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return "just now"
    for size, unit in ((86400 * 365, "year"), (86400 * 30, "month"), (86400 * 7, "week"),
                       (86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now"


def _target_label(entry: AuditLog, diff: dict) -> str:
    if entry.entity_type == "component_milestone":
        name = diff.get("milestone_name") or "milestone"
        return f"{name} on {diff.get('display_id') or diff.get('component_id') or entry.entity_id}"
    if entry.entity_type in ("component", "field_weld"):
        return diff.get("display_id") or diff.get("component_id") or f"#{entry.entity_id}"
    if entry.entity_type == "milestone_template":
        return diff.get("name") or f"#{entry.entity_id}"
    if entry.entity_type == "import_job":
        return diff.get("filename") or f"import #{entry.entity_id}"
    return f"{entry.entity_type} #{entry.entity_id}"


def translate_entry(entry: AuditLog, now: datetime | None = None) -> ActivityItem:
    diff = entry.diff
    phrase = ACTION_PHRASES.get(
        (entry.entity_type, entry.action),
        f"{entry.action.replace('.', ' ').replace('_', ' ')} {entry.entity_type.replace('_', ' ')}",
    )
    ts = _aware(entry.timestamp)
    return ActivityItem(
        id=entry.id,
        actor=entry.actor,
        initials=get_initials(entry.actor),
        phrase=phrase,
        target=_target_label(entry, diff),
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        timestamp=ts,
        relative_time=relative_time(ts, now),
    )


def _is_weld_event(entry: AuditLog) -> bool:
    if entry.entity_type == "field_weld" and entry.action == "create":
        return True
    return (
        entry.entity_type == "component_milestone"
        and entry.action == "milestone.complete"
        and entry.diff.get("component_type") == ComponentType.FIELD_WELD.value
    )


def translate_weld_entry(entry: AuditLog, now: datetime | None = None) -> WeldActivityItem:
    diff = entry.diff
    ts = _aware(entry.timestamp)
    event = "created" if entry.action == "create" else (diff.get("milestone_name") or "milestone")
    return WeldActivityItem(
        id=entry.id,
        weld_id=diff.get("display_id") or diff.get("component_id") or entry.entity_id,
        drawing=diff.get("drawing"),
        event=event,
        actor=entry.actor,
        initials=get_initials(entry.actor),
        timestamp=ts,
        relative_time=relative_time(ts, now),
    )


# ── Feeds ────────────────────────────────────────────────────────────────────


def _entries(project_id: int, entity_types=None):
    stmt = select(AuditLog).where(AuditLog.project_id == project_id)
    if entity_types:
        stmt = stmt.where(AuditLog.entity_type.in_(entity_types))
    return stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def project_activity(project_id: int, limit: int | None = None, entity_types=None,
                     now: datetime | None = None) -> list[ActivityItem]:
    """General feed: newest audit entries of a project as activity items."""
    limit = limit or current_app.config.get("ACTIVITY_FEED_LIMIT", 50)
    entries = db.session.execute(_entries(project_id, entity_types).limit(limit)).scalars()
    return [translate_entry(e, now) for e in entries]


def weld_activity(project_id: int, limit: int | None = None,
                  now: datetime | None = None) -> list[WeldActivityItem]:
    """Field-weld feed: weld creates and completed weld milestones, newest first."""
    limit = limit or current_app.config.get("WELD_FEED_LIMIT", 20)
    items = []
    stmt = _entries(project_id, ("field_weld", "component_milestone"))
    for entry in db.session.execute(stmt).scalars():
        if not _is_weld_event(entry):
            continue
        items.append(translate_weld_entry(entry, now))
        if len(items) >= limit:
            break
    return items
