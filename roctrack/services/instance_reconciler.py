"""
Instance reconciliation for import batches.

Rows sharing a (componentId, drawing) key are physical duplicates of one
logical component.  Numbering needs the whole batch: the group total is only
known once every row with the key has been seen, so ``reconcile_batch`` is
called once per batch, never per row.

Numbering rules per key:
    - rows with an explicit ``instance_number`` keep it; a second row
      claiming the same number is a ReconciliationConflict
    - the remaining rows take the smallest free number, in row order
    - total = max(group size, highest number used, existing count)
"""

from collections import OrderedDict
from dataclasses import dataclass, field

from roctrack.core.exceptions import ReconciliationConflict, ValidationError
from roctrack.models.component import format_display_id


@dataclass
class ReconciledRow:
    row: dict
    component_id: str
    drawing: str
    instance_number: int | None = None
    total_instances_on_drawing: int | None = None
    display_id: str | None = None
    explicit_instance: bool = False
    error: Exception | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "component_id": self.component_id,
            "drawing": self.drawing,
            "instance_number": self.instance_number,
            "total_instances_on_drawing": self.total_instances_on_drawing,
            "display_id": self.display_id,
            "error": str(self.error) if self.error else None,
        }


def _explicit_number(value) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Instance number {value!r} is not a whole number",
                              details={"instance_number": value})
    if number < 1 or number != float(value):
        raise ValidationError(f"Instance number {value!r} must be a positive whole number",
                              details={"instance_number": value})
    return number


def reconcile_batch(rows, existing_counts=None) -> list[ReconciledRow]:
    """
    Assign instance numbers across a whole batch.

    Args:
        rows: Sequence of mappings with ``component_id`` and canonical
            ``drawing``; ``instance_number`` is optional.
        existing_counts: ``{(component_id, drawing): n}`` instances already
            stored for the key.

    Returns:
        One ReconciledRow per input row, in input order.  Rows that conflict
        carry ``error`` and no numbers; they do not count toward the total.
    """
    existing_counts = existing_counts or {}
    results = [
        ReconciledRow(row=row, component_id=row["component_id"], drawing=row["drawing"])
        for row in rows
    ]

    groups: "OrderedDict[tuple[str, str], list[ReconciledRow]]" = OrderedDict()
    for result in results:
        groups.setdefault((result.component_id, result.drawing), []).append(result)

    for key, members in groups.items():
        used: set[int] = set()

        # Explicit claims first so auto-numbered rows route around them
        for member in members:
            try:
                number = _explicit_number(member.row.get("instance_number"))
            except ValidationError as exc:
                member.error = exc
                continue
            if number is None:
                continue
            if number in used:
                member.error = ReconciliationConflict(key[0], key[1], number)
                continue
            used.add(number)
            member.instance_number = number
            member.explicit_instance = True

        next_free = 1
        for member in members:
            if member.error is not None or member.instance_number is not None:
                continue
            while next_free in used:
                next_free += 1
            member.instance_number = next_free
            used.add(next_free)

        placed = [m for m in members if m.error is None]
        total = max(len(placed), max(used, default=0), int(existing_counts.get(key, 0)))
        for member in placed:
            member.total_instances_on_drawing = total
            member.display_id = format_display_id(member.component_id, member.instance_number, total)

    return results
