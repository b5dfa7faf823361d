"""
Component Import — Service Layer.

Drives one bulk import batch through its job state machine:

    pending → parsing → validating → committing → completed | failed

Phases:
    parsing:     apply the confirmed column mapping to every raw row
    validating:  classify type, normalise drawing, validate fields, generate
                 missing component IDs, reconcile instance numbers over the
                 whole batch
    committing:  per row (own savepoint) skip / update / create the component
                 with a fresh milestone snapshot, one audit entry per write

Failure policy:
    - row errors are recorded on the row and the batch continues
    - with ``rollback_on_error`` the first row error rolls back every write
      and the job ends ``failed``
    - a cancel request (polled between rows) rolls back every write and the
      job ends ``failed``

Imports are serialised per project: an in-process lock plus a row lock on
the project held from validation through commit.
"""

import logging
import threading
import time
import weakref
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from roctrack.core.exceptions import (
    ConflictError,
    FormatError,
    ImportCancelled,
    NotFoundError,
    PersistenceError,
    ReconciliationConflict,
    ValidationError,
)
from roctrack.models import db
from roctrack.models.audit import write_audit
from roctrack.models.component import (
    Component,
    ComponentMilestone,
    ComponentType,
    Drawing,
    WorkflowType,
    format_display_id,
)
from roctrack.models.import_job import ImportJob, validate_import_transition
from roctrack.models.project import Project
from roctrack.services.component_id_generator import assign_component_ids, validate_component_id
from roctrack.services.drawing_normalizer import batch_normalize
from roctrack.services.instance_reconciler import reconcile_batch
from roctrack.services.milestone_service import recalculate_component
from roctrack.services.template_registry import resolve_template
from roctrack.services.type_classifier import classify_type

logger = logging.getLogger(__name__)

MAPPABLE_FIELDS = (
    "component_id", "drawing", "type", "description", "spec", "size",
    "material", "area", "system", "test_package", "notes", "quantity",
    "instance_number",
)
REQUIRED_FIELDS = ("drawing",)

# Fields copied onto Component as-is and compared on update
DESCRIPTIVE_FIELDS = (
    "description", "spec", "size", "material", "area", "system",
    "test_package", "notes",
)

ROW_ERRORS = (
    ValidationError, FormatError, ConflictError, ReconciliationConflict, PersistenceError,
)


# ── Options & results ────────────────────────────────────────────────────────


@dataclass
class ImportOptions:
    validate_only: bool = False
    skip_duplicates: bool = False
    update_existing: bool = False
    rollback_on_error: bool = False
    custom_type_mappings: dict | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "ImportOptions":
        data = data or {}
        return cls(
            validate_only=bool(data.get("validate_only", False)),
            skip_duplicates=bool(data.get("skip_duplicates", False)),
            update_existing=bool(data.get("update_existing", False)),
            rollback_on_error=bool(data.get("rollback_on_error", False)),
            custom_type_mappings=data.get("custom_type_mappings"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RowOutcome:
    row_num: int
    raw: dict
    mapped: dict = field(default_factory=dict)
    outcome: str | None = None           # created | updated | skipped | error
    component_type: str | None = None
    drawing: str | None = None
    component_id: str | None = None
    component_id_generated: bool = False
    instance_number: int | None = None
    total_instances_on_drawing: int | None = None
    display_id: str | None = None
    component_pk: int | None = None
    quantity: float | None = None
    warnings: list = field(default_factory=list)
    error: str | None = None
    error_type: str | None = None

    @property
    def failed(self) -> bool:
        return self.outcome == "error"

    def fail(self, exc: Exception) -> None:
        self.outcome = "error"
        self.error = getattr(exc, "message", None) or str(exc)
        self.error_type = type(exc).__name__

    def to_dict(self) -> dict:
        return {
            "row_num": self.row_num,
            "outcome": self.outcome,
            "component_type": self.component_type,
            "drawing": self.drawing,
            "component_id": self.component_id,
            "component_id_generated": self.component_id_generated,
            "instance_number": self.instance_number,
            "total_instances_on_drawing": self.total_instances_on_drawing,
            "display_id": self.display_id,
            "component_pk": self.component_pk,
            "warnings": list(self.warnings),
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class ImportResult:
    job_id: int
    status: str
    validate_only: bool = False
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    rolled_back: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "validate_only": self.validate_only,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "rows": [r.to_dict() for r in self.rows],
            "rolled_back": self.rolled_back,
            "cancelled": self.cancelled,
        }


class _RollbackBatch(Exception):
    """Internal: a row error under ``rollback_on_error``."""

    def __init__(self, outcome: RowOutcome):
        self.outcome = outcome
        super().__init__(outcome.error)


# ═════════════════════════════════════════════════════════════════════════════
# Per-project serialisation
# ═════════════════════════════════════════════════════════════════════════════

# Entries disappear once no import holds or waits on the lock
_project_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_project_locks_guard = threading.Lock()


def _project_lock(project_id: int) -> threading.Lock:
    with _project_locks_guard:
        return _project_locks.setdefault(project_id, threading.Lock())


def _lock_project_row(project_id: int) -> Project:
    project = db.session.execute(
        select(Project).where(Project.id == project_id).with_for_update()
    ).scalar_one_or_none()
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


# ═════════════════════════════════════════════════════════════════════════════
# Job lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def create_import_job(project_id: int, *, filename: str | None = None,
                      options: ImportOptions | dict | None = None,
                      mapping: dict | None = None, actor: str | None = None) -> ImportJob:
    """Create a ``pending`` ImportJob and commit it."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if isinstance(options, dict) or options is None:
        options = ImportOptions.from_dict(options)
    job = ImportJob(
        project_id=project_id,
        filename=filename,
        status="pending",
        options=options.to_dict(),
        column_mapping=mapping,
        created_by=actor or current_app.config.get("DEFAULT_ACTOR", "system"),
    )
    db.session.add(job)
    db.session.commit()
    logger.info("Import job created", extra={"project_id": project_id, "job_id": job.id,
                                             "import_status": job.status})
    return job


def transition_job(job: ImportJob, new_status: str, *, reason: str | None = None,
                   commit: bool = True) -> tuple[bool, str]:
    """
    Attempt status transition on an ImportJob.
    Returns (success, message).
    """
    old = job.status
    if not validate_import_transition(old, new_status):
        return False, f"Invalid transition: {old} → {new_status}"

    now = datetime.now(timezone.utc)
    job.status = new_status
    if new_status == "parsing" and not job.started_at:
        job.started_at = now
    if new_status in ("completed", "failed"):
        job.completed_at = now
    if new_status == "failed" and reason:
        job.failure_reason = reason

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    logger.info("Import job %s → %s", old, new_status,
                extra={"project_id": job.project_id, "job_id": job.id, "import_status": new_status})
    return True, f"Import job transitioned: {old} → {new_status}"


def _advance(job: ImportJob, new_status: str, **kwargs) -> None:
    ok, msg = transition_job(job, new_status, **kwargs)
    if not ok:
        raise ValidationError(msg, details={"job_id": job.id})


# ═════════════════════════════════════════════════════════════════════════════
# Parsing: column mapping
# ═════════════════════════════════════════════════════════════════════════════


def _clean(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_mapping(mapping: dict) -> dict:
    """
    Check a ``{source header: target field}`` mapping.

    Empty targets mean "ignore this column".

    Raises:
        ValidationError: unknown target field, a target mapped twice, or a
            required field left unmapped.
    """
    resolved = {}
    seen = {}
    for source, target in (mapping or {}).items():
        if not target:
            continue
        target = str(target).strip().lower()
        if target not in MAPPABLE_FIELDS:
            raise ValidationError(f"Unknown target field {target!r}",
                                  details={"source": source, "target": target})
        if target in seen:
            raise ValidationError(f"Target field {target!r} is mapped from both "
                                  f"{seen[target]!r} and {source!r}",
                                  details={"target": target})
        seen[target] = source
        resolved[source] = target
    missing = [f for f in REQUIRED_FIELDS if f not in seen]
    if missing:
        raise ValidationError(f"Required fields not mapped: {', '.join(missing)}",
                              details={"missing": missing})
    return resolved


def default_mapping(headers) -> dict:
    """Identity mapping for headers that already name a target field.

    Pass the union of headers over every row; sparse rows may omit columns.
    """
    return {h: str(h).strip().lower() for h in headers
            if str(h).strip().lower() in MAPPABLE_FIELDS}


def apply_mapping(raw: dict, mapping: dict) -> dict:
    return {target: _clean(raw.get(source)) for source, target in mapping.items()}


# ═════════════════════════════════════════════════════════════════════════════
# Validating
# ═════════════════════════════════════════════════════════════════════════════


def _parse_quantity(value) -> float:
    if value is None:
        return 1.0
    try:
        quantity = float(str(value).replace(",", ""))
    except ValueError:
        raise ValidationError(f"Quantity {value!r} is not a number", details={"quantity": value})
    if quantity <= 0:
        raise ValidationError(f"Quantity {value!r} must be positive", details={"quantity": value})
    return quantity


def _validate_row(row: RowOutcome, options: ImportOptions) -> None:
    mapped = row.mapped
    ctype = classify_type(mapped.get("description"), mapped.get("type"),
                          custom_mappings=options.custom_type_mappings)
    row.component_type = ctype.value
    if ctype is ComponentType.OTHER:
        row.warnings.append("Type not recognised; classified as OTHER")

    for required in REQUIRED_FIELDS:
        if not mapped.get(required):
            raise ValidationError(f"Missing required field: {required}", details={"field": required})

    conversion = batch_normalize([mapped["drawing"]])[0]
    row.drawing = conversion.converted
    if conversion.flagged:
        row.warnings.append(f"Drawing kept as provided: {conversion.error}")
        logger.warning("Drawing %r not normalised", mapped["drawing"],
                       extra={"row_num": row.row_num})

    if mapped.get("component_id"):
        row.component_id = validate_component_id(mapped["component_id"])

    row.quantity = _parse_quantity(mapped.get("quantity"))


def _existing_index(project_id: int) -> tuple[dict, Counter]:
    """Stored components keyed by (component_id, drawing number, instance)."""
    rows = db.session.execute(
        select(Component, Drawing.number)
        .join(Drawing, Component.drawing_id == Drawing.id)
        .where(Component.project_id == project_id)
    ).all()
    index = {}
    counts = Counter()
    for component, drawing_number in rows:
        index[(component.component_id, drawing_number, component.instance_number)] = component
        counts[(component.component_id, drawing_number)] += 1
    return index, counts


def _reconcile(project_id: int, rows: list[RowOutcome]) -> None:
    valid = [r for r in rows if not r.failed]

    id_rows = [{"component_id": r.component_id, "component_type": r.component_type} for r in valid]
    assign_component_ids(
        id_rows, project_id=project_id,
        digits=current_app.config.get("COMPONENT_ID_DIGITS", 4),
    )
    for row, id_row in zip(valid, id_rows):
        row.component_id = id_row["component_id"]
        row.component_id_generated = id_row["component_id_generated"]

    _, existing_counts = _existing_index(project_id)
    reconciled = reconcile_batch(
        [{"component_id": r.component_id, "drawing": r.drawing,
          "instance_number": r.mapped.get("instance_number")} for r in valid],
        existing_counts=existing_counts,
    )
    for row, rec in zip(valid, reconciled):
        if rec.error is not None:
            row.fail(rec.error)
            continue
        row.instance_number = rec.instance_number
        row.total_instances_on_drawing = rec.total_instances_on_drawing
        row.display_id = rec.display_id


# ═════════════════════════════════════════════════════════════════════════════
# Committing
# ═════════════════════════════════════════════════════════════════════════════


def _decide(row: RowOutcome, existing: Component | None, options: ImportOptions) -> str:
    if existing is None:
        return "created"
    if options.skip_duplicates:
        return "skipped"
    if options.update_existing:
        return "updated"
    raise ConflictError(resource="Component", field="component_id", value=row.display_id)


def _get_or_create_drawing(project_id: int, number: str, cache: dict) -> Drawing:
    if number in cache:
        return cache[number]
    drawing = db.session.execute(
        select(Drawing).where(Drawing.project_id == project_id, Drawing.number == number)
    ).scalar_one_or_none()
    if drawing is None:
        conversion = batch_normalize([number])[0]
        drawing = Drawing(
            project_id=project_id,
            number=number,
            base_number=conversion.base if not conversion.flagged else number,
            sheet_number=conversion.sheet or 1,
            total_sheets=conversion.total or 1,
        )
        db.session.add(drawing)
        db.session.flush()
    cache[number] = drawing
    return drawing


def snapshot_milestones(template_milestones, workflow_type: WorkflowType,
                        quantity: float | None) -> list[ComponentMilestone]:
    """Fresh milestone rows with each template weight copied onto its own row."""
    snapshot = []
    for m in sorted(template_milestones, key=lambda m: m["order"]):
        milestone = ComponentMilestone(
            milestone_name=m["name"],
            milestone_order=int(m["order"]),
            weight=float(m["weight"]),
            is_completed=False,
        )
        if workflow_type is WorkflowType.PERCENTAGE:
            milestone.percentage_complete = 0.0
        elif workflow_type is WorkflowType.QUANTITY:
            milestone.quantity_complete = 0.0
            milestone.quantity_total = quantity
        snapshot.append(milestone)
    return snapshot


def _audit_entity_type(component_type: str) -> str:
    return "field_weld" if component_type == ComponentType.FIELD_WELD.value else "component"


def _create_component(project_id: int, row: RowOutcome, drawing: Drawing, actor: str) -> Component:
    template, workflow_type = resolve_template(project_id, row.component_type, actor=actor)
    component = Component(
        project_id=project_id,
        drawing_id=drawing.id,
        milestone_template_id=template.id,
        component_id=row.component_id,
        instance_number=row.instance_number,
        total_instances_on_drawing=row.total_instances_on_drawing,
        display_id=row.display_id,
        component_type=row.component_type,
        workflow_type=workflow_type.value,
        quantity=row.quantity,
        created_by=actor,
        **{f: row.mapped.get(f) for f in DESCRIPTIVE_FIELDS},
    )
    component.milestones = snapshot_milestones(template.milestones, workflow_type, row.quantity)
    recalculate_component(component)
    db.session.add(component)
    db.session.flush()

    write_audit(
        entity_type=_audit_entity_type(row.component_type),
        entity_id=component.id,
        action="create",
        actor=actor,
        project_id=project_id,
        diff={
            "component_id": component.component_id,
            "display_id": component.display_id,
            "drawing": drawing.number,
            "component_type": component.component_type,
            "template": template.name,
        },
    )
    return component


def _update_component(component: Component, row: RowOutcome, actor: str) -> Component:
    changes = {}
    for f in DESCRIPTIVE_FIELDS:
        new = row.mapped.get(f)
        if new is not None and new != getattr(component, f):
            changes[f] = {"old": getattr(component, f), "new": new}
            setattr(component, f, new)

    if row.mapped.get("quantity") is not None and row.quantity != component.quantity:
        changes["quantity"] = {"old": component.quantity, "new": row.quantity}
        component.quantity = row.quantity
        if component.workflow_type == WorkflowType.QUANTITY.value:
            for m in component.milestones:
                m.quantity_total = row.quantity
                if m.quantity_complete is not None and m.quantity_complete > row.quantity:
                    m.quantity_complete = row.quantity

    old_percent = component.completion_percent
    new_percent = recalculate_component(component)
    if new_percent != old_percent:
        changes["completion_percent"] = {"old": old_percent, "new": new_percent}
    db.session.flush()

    write_audit(
        entity_type=_audit_entity_type(component.component_type),
        entity_id=component.id,
        action="update",
        actor=actor,
        project_id=component.project_id,
        diff={"component_id": component.component_id, "display_id": component.display_id,
              "changes": changes},
    )
    return component


def _refresh_siblings(project_id: int, keys, actor: str) -> None:
    """Re-derive instance totals and display IDs for every touched key.

    Each sibling whose display ID changes gets its own ``update`` audit entry.
    """
    for component_id, drawing_id in keys:
        siblings = list(db.session.execute(
            select(Component).where(
                Component.project_id == project_id,
                Component.component_id == component_id,
                Component.drawing_id == drawing_id,
            ).order_by(Component.instance_number)
        ).scalars())
        total = max(len(siblings), max((s.instance_number for s in siblings), default=0))
        for s in siblings:
            display_id = format_display_id(s.component_id, s.instance_number, total)
            if s.total_instances_on_drawing == total and s.display_id == display_id:
                continue
            changes = {
                "total_instances_on_drawing": {"old": s.total_instances_on_drawing, "new": total},
                "display_id": {"old": s.display_id, "new": display_id},
            }
            s.total_instances_on_drawing = total
            s.display_id = display_id
            write_audit(
                entity_type=_audit_entity_type(s.component_type),
                entity_id=s.id,
                action="update",
                actor=actor,
                project_id=project_id,
                diff={"component_id": s.component_id, "display_id": display_id,
                      "changes": changes},
            )
    db.session.flush()


def _commit_row(project_id: int, row: RowOutcome, existing: dict, drawings: dict,
                options: ImportOptions, actor: str) -> None:
    match = existing.get((row.component_id, row.drawing, row.instance_number))
    decision = _decide(row, match, options)
    if decision == "skipped":
        row.outcome = "skipped"
        row.component_pk = match.id
        return

    try:
        with db.session.begin_nested():
            if decision == "updated":
                component = _update_component(match, row, actor)
            else:
                drawing = _get_or_create_drawing(project_id, row.drawing, drawings)
                component = _create_component(project_id, row, drawing, actor)
    except SQLAlchemyError as exc:
        # Savepoint is gone; cached drawings may belong to it
        drawings.clear()
        raise PersistenceError(str(exc.orig) if getattr(exc, "orig", None) else str(exc)) from exc

    row.outcome = decision
    row.component_pk = component.id
    existing[(row.component_id, row.drawing, row.instance_number)] = component


# ═════════════════════════════════════════════════════════════════════════════
# Orchestration
# ═════════════════════════════════════════════════════════════════════════════


def _record_errors(job: ImportJob, rows: list[RowOutcome]) -> list[dict]:
    errors = [
        {"row": r.row_num, "error": r.error, "type": r.error_type,
         "component_id": r.component_id, "drawing": r.drawing}
        for r in rows if r.failed
    ]
    job.errors = errors
    job.error_count = len(errors)
    return errors


def _fail_job(job_id: int, rows: list[RowOutcome], reason: str) -> ImportJob:
    """Roll back everything uncommitted and mark the job failed."""
    db.session.rollback()
    job = db.session.get(ImportJob, job_id)
    _record_errors(job, rows)
    job.processed_rows = sum(1 for r in rows if r.outcome is not None)
    job.created_count = job.updated_count = job.skipped_count = 0
    transition_job(job, "failed", reason=reason)
    logger.warning("Import rolled back: %s", reason,
                   extra={"project_id": job.project_id, "job_id": job.id, "import_status": "failed"})
    return job


def _result(job: ImportJob, rows: list[RowOutcome], options: ImportOptions, **flags) -> ImportResult:
    counts = Counter(r.outcome for r in rows)
    rolled_back = flags.get("rolled_back", False)
    return ImportResult(
        job_id=job.id,
        status=job.status,
        validate_only=options.validate_only,
        created=0 if rolled_back else counts["created"],
        updated=0 if rolled_back else counts["updated"],
        skipped=0 if rolled_back else counts["skipped"],
        errors=list(job.errors or []),
        rows=rows,
        **flags,
    )


def run_import(project_id: int, rows, mapping: dict | None = None,
               options: ImportOptions | dict | None = None, *, actor: str | None = None,
               job: ImportJob | None = None, filename: str | None = None,
               should_cancel=None) -> ImportResult:
    """
    Import a batch of already-parsed rows into a project.

    Args:
        project_id: Target project.
        rows: Ordered ``{header: value}`` mappings, one per data row.
        mapping: Confirmed ``{header: target field}``; identity on matching
            headers when omitted.
        options: validate_only / skip_duplicates / update_existing /
            rollback_on_error (+ optional custom_type_mappings).
        actor: Authenticated user for audit attribution.
        job: An existing ``pending`` ImportJob; created when omitted.
        should_cancel: Callable polled between rows; truthy cancels the batch.

    Returns:
        ImportResult with counts, per-row outcomes and the job's error list.

    Raises:
        ConflictError: another import holds the project lock past the timeout.
        ValidationError: the column mapping is unusable (job ends failed).
    """
    if isinstance(options, dict) or options is None:
        options = ImportOptions.from_dict(options)
    actor = actor or current_app.config.get("DEFAULT_ACTOR", "system")
    rows = list(rows)

    if job is None:
        job = create_import_job(project_id, filename=filename, options=options,
                                mapping=mapping, actor=actor)
    job_id = job.id
    log_extra = {"project_id": project_id, "job_id": job_id}

    lock = _project_lock(project_id)
    timeout = float(current_app.config.get("IMPORT_LOCK_TIMEOUT_SECONDS", 30))
    if not lock.acquire(timeout=timeout):
        transition_job(job, "failed", reason="Another import is running for this project")
        raise ConflictError(resource="Project", field="import_lock", value=str(project_id))

    started = time.monotonic()
    try:
        # ── Parsing ──────────────────────────────────────────────────────
        _advance(job, "parsing")
        job.total_rows = len(rows)
        try:
            resolved = validate_mapping(mapping if mapping is not None
                                        else default_mapping(dict.fromkeys(k for r in rows for k in r)))
        except ValidationError as exc:
            transition_job(job, "failed", reason=exc.message)
            raise
        job.column_mapping = resolved
        outcomes = [
            RowOutcome(row_num=i, raw=dict(raw), mapped=apply_mapping(raw, resolved))
            for i, raw in enumerate(rows, start=1)
        ]

        # ── Validating ───────────────────────────────────────────────────
        _advance(job, "validating")
        _lock_project_row(project_id)
        for row in outcomes:
            try:
                _validate_row(row, options)
            except (ValidationError, FormatError) as exc:
                row.fail(exc)
                logger.warning("Row %d invalid: %s", row.row_num, row.error,
                               extra={**log_extra, "row_num": row.row_num})
        _reconcile(project_id, outcomes)

        if options.rollback_on_error and any(r.failed for r in outcomes):
            first = next(r for r in outcomes if r.failed)
            job = _fail_job(job_id, outcomes, f"Row {first.row_num}: {first.error}")
            return _result(job, outcomes, options, rolled_back=True)

        # ── Committing ───────────────────────────────────────────────────
        _advance(job, "committing", commit=False)
        existing, _ = _existing_index(project_id)
        drawings: dict = {}
        touched = set()

        for row in outcomes:
            if should_cancel is not None and should_cancel():
                raise ImportCancelled()
            if row.failed:
                continue
            if options.validate_only:
                try:
                    row.outcome = _decide(row, existing.get(
                        (row.component_id, row.drawing, row.instance_number)), options)
                except ConflictError as exc:
                    row.fail(exc)
                continue
            try:
                _commit_row(project_id, row, existing, drawings, options, actor)
            except ROW_ERRORS as exc:
                row.fail(exc)
                logger.warning("Row %d failed: %s", row.row_num, row.error,
                               extra={**log_extra, "row_num": row.row_num,
                                      "component_id": row.component_id})
                if options.rollback_on_error:
                    raise _RollbackBatch(row)
                continue
            if row.outcome in ("created", "updated"):
                touched.add((row.component_id, existing[
                    (row.component_id, row.drawing, row.instance_number)].drawing_id))

        if touched:
            _refresh_siblings(project_id, touched, actor)
            for row in outcomes:
                if row.component_pk is not None and row.outcome in ("created", "updated"):
                    component = db.session.get(Component, row.component_pk)
                    row.total_instances_on_drawing = component.total_instances_on_drawing
                    row.display_id = component.display_id

        counts = Counter(r.outcome for r in outcomes)
        job.processed_rows = len(outcomes)
        job.created_count = counts["created"]
        job.updated_count = counts["updated"]
        job.skipped_count = counts["skipped"]
        _record_errors(job, outcomes)

        if not options.validate_only:
            write_audit(
                entity_type="import_job",
                entity_id=job.id,
                action="import.complete",
                actor=actor,
                project_id=project_id,
                diff={
                    "filename": job.filename,
                    "total_rows": job.total_rows,
                    "created": job.created_count,
                    "updated": job.updated_count,
                    "skipped": job.skipped_count,
                    "errors": job.error_count,
                },
            )
        _advance(job, "completed")

        logger.info(
            "Import finished: %d created, %d updated, %d skipped, %d errors",
            job.created_count, job.updated_count, job.skipped_count, job.error_count,
            extra={**log_extra, "import_status": job.status,
                   "duration_ms": round((time.monotonic() - started) * 1000, 1)},
        )
        return _result(job, outcomes, options)

    except _RollbackBatch as exc:
        job = _fail_job(job_id, outcomes, f"Row {exc.outcome.row_num}: {exc.outcome.error}")
        return _result(job, outcomes, options, rolled_back=True)
    except ImportCancelled:
        job = _fail_job(job_id, outcomes, "Import cancelled")
        return _result(job, outcomes, options, rolled_back=True, cancelled=True)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Import aborted by database error", extra=log_extra)
        job = db.session.get(ImportJob, job_id)
        transition_job(job, "failed", reason=str(exc))
        raise PersistenceError(str(exc)) from exc
    finally:
        lock.release()
