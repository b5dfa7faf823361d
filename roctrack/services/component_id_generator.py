"""
Component ID generation — Service Layer.

Generated IDs look like ``VALVE-0004``: a per-type prefix, a dash and a
zero-padded sequence.  Sequences are tracked per type and continue from the
highest number already in use, never from 1 and never filling gaps.

    existing ["VALVE-0001", "VALVE-0003"]  →  next "VALVE-0004"

Both the project's stored IDs and explicit IDs appearing in the same batch
seed the sequence, so a generated ID cannot collide with a supplied one.
"""

import logging
import re

from sqlalchemy import select

from roctrack.core.exceptions import FormatError
from roctrack.models import db
from roctrack.models.component import Component, ComponentType

logger = logging.getLogger(__name__)

TYPE_PREFIXES = {
    ComponentType.SPOOL: "SPOOL",
    ComponentType.VALVE: "VALVE",
    ComponentType.GASKET: "GASKET",
    ComponentType.SUPPORT: "SUPPORT",
    ComponentType.INSTRUMENT: "INST",
    ComponentType.FIELD_WELD: "FW",
    ComponentType.FITTING: "FITTING",
    ComponentType.FLANGE: "FLANGE",
    ComponentType.THREADED_PIPE: "THREAD",
    ComponentType.INSULATION: "INSUL",
    ComponentType.PAINT: "PAINT",
    ComponentType.PIPING_FOOTAGE: "PIPING",
    ComponentType.OTHER: "COMP",
}

DEFAULT_DIGITS = 4

_COMPONENT_ID_RE = re.compile(r"^[A-Za-z0-9._/#-]+$")


def validate_component_id(value) -> str:
    """
    Strict component ID check; returns the trimmed ID.

    Raises:
        FormatError: blank, contains whitespace, or characters outside
            letters, digits and ``. _ / # -``.
    """
    text = value.strip() if isinstance(value, str) else ("" if value is None else str(value).strip())
    if not text:
        raise FormatError("Component ID is empty", value=value)
    if re.search(r"\s", text):
        raise FormatError(f"Component ID {text!r} contains whitespace", value=value)
    if not _COMPONENT_ID_RE.match(text):
        raise FormatError(f"Component ID {text!r} contains invalid characters", value=value)
    return text


def prefix_for(component_type) -> str:
    return TYPE_PREFIXES[ComponentType(component_type)]


def sequence_of(prefix: str, component_id: str) -> int | None:
    """Sequence number in ``component_id`` if it follows ``PREFIX[-_]?digits``."""
    match = re.match(rf"^{re.escape(prefix)}[-_]?(\d+)$", component_id or "", re.IGNORECASE)
    return int(match.group(1)) if match else None


def next_sequence(prefix: str, existing_ids) -> int:
    highest = 0
    for cid in existing_ids:
        seq = sequence_of(prefix, cid)
        if seq is not None and seq > highest:
            highest = seq
    return highest + 1


def format_component_id(prefix: str, sequence: int, digits: int = DEFAULT_DIGITS) -> str:
    return f"{prefix}-{sequence:0{digits}d}"


class ComponentIdGenerator:
    """
    Hands out IDs for one batch.

    Seed once with every ID already known (stored + explicit in the batch);
    each ``next_id`` call then advances that type's counter.
    """

    def __init__(self, known_ids=(), digits: int = DEFAULT_DIGITS):
        self.digits = digits
        self._known = list(known_ids)
        self._next: dict[ComponentType, int] = {}

    def seed(self, ids) -> None:
        self._known.extend(ids)
        self._next.clear()

    def next_id(self, component_type) -> str:
        ctype = ComponentType(component_type)
        prefix = TYPE_PREFIXES[ctype]
        if ctype not in self._next:
            self._next[ctype] = next_sequence(prefix, self._known)
        seq = self._next[ctype]
        self._next[ctype] = seq + 1
        return format_component_id(prefix, seq, self.digits)


def project_component_ids(project_id: int) -> list[str]:
    return list(
        db.session.execute(
            select(Component.component_id)
            .where(Component.project_id == project_id)
            .distinct()
        ).scalars()
    )


def assign_component_ids(rows, project_id: int | None = None, existing_ids=None,
                         digits: int = DEFAULT_DIGITS) -> list[dict]:
    """
    Fill ``component_id`` on rows that lack one.

    Each row is a mapping with ``component_type`` and optional
    ``component_id``.  Rows that already carry an ID keep it unchanged.
    Returns the same row objects, each gaining ``component_id_generated``.
    """
    known = list(existing_ids or [])
    if project_id is not None:
        known.extend(project_component_ids(project_id))
    known.extend(str(r["component_id"]) for r in rows if r.get("component_id"))

    generator = ComponentIdGenerator(known, digits=digits)
    for row in rows:
        if row.get("component_id"):
            row["component_id_generated"] = False
            continue
        row["component_id"] = generator.next_id(row.get("component_type") or ComponentType.OTHER)
        row["component_id_generated"] = True
        logger.debug("Generated component id %s", row["component_id"])
    return rows
