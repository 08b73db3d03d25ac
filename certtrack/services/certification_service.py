"""
Certification Service — persistence-backed lifecycle operations.

Business logic for:
    - Process creation:      one process per student, starts at 'welcome'
    - Stage transitions:     advance (forward), regress (audited override)
    - Date edits:            batch retroactive timestamp correction
    - Read models:           process + SLA evaluation + rendered timeline
    - Dashboard:             counts per stage, delayed (overdue) processes
    - Public status check:   masked lookup by CPF

Concurrency:
    Every mutation loads the process row with SELECT … FOR UPDATE inside one
    transaction, and CertificationProcess carries an optimistic version
    counter. A stale concurrent write surfaces as ConflictError and nothing is
    persisted. No ordering is guaranteed across different students.

All functions take ``now`` (clock injection); None means datetime.now(UTC).
"""

import logging
import re
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.exc import StaleDataError

from certtrack.core.exceptions import (
    ConflictError,
    NotFoundError,
    TransitionError,
    ValidationError,
)
from certtrack.models import db
from certtrack.models.audit import write_audit
from certtrack.models.certification import (
    STAGE_ORDER,
    STAGE_REGISTRY,
    CertificationProcess,
    Stage,
    parse_stage,
    stage_label,
)
from certtrack.models.student import Student
from certtrack.services import lifecycle_engine as engine
from certtrack.services.date_edit import (
    apply_date_edit,
    parse_instant,
    validate_date_edits,
)
from certtrack.services.sla_service import get_sla_table
from certtrack.services.timeline import render

logger = logging.getLogger(__name__)

TRANSITION_ADVANCE = "advance"
TRANSITION_REGRESS = "regress"
TRANSITION_STAY = "stay"

TRACKING_CODE_MAX_LENGTH = CertificationProcess.physical_tracking_code.type.length


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def load_process(student_id: int, *, for_update: bool = False) -> CertificationProcess:
    """Return the student's process or raise NotFoundError."""
    stmt = (
        select(CertificationProcess)
        .options(joinedload(CertificationProcess.student))
        .where(CertificationProcess.student_id == student_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    process = db.session.execute(stmt).unique().scalar_one_or_none()
    if process is None:
        raise NotFoundError(resource="CertificationProcess", resource_id=student_id)
    return process


@contextmanager
def _persist(student_id: int | None = None):
    """Run the enclosed mutation and audit writes as one unit and commit.

    Audit writes flush, so a stale version or a constraint violation can
    surface anywhere inside the block. Any failure rolls the session back;
    stale writes and integrity errors become ConflictError.
    """
    try:
        yield
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent update rejected", extra={"student_id": student_id,
                                                 "event_type": "certification.conflict"},
        )
        raise ConflictError(
            "CertificationProcess", "student_id", str(student_id),
            message="Process was modified by another request; reload and retry",
        ) from None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError("CertificationProcess", "student_id", str(student_id)) from None
    except Exception:
        db.session.rollback()
        raise


def _parse_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be a boolean", details={field: "boolean"})


def _parse_tracking_code(value) -> str | None:
    """Stripped tracking code, or None when absent or blank."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(
            "physical_tracking_code must be a string",
            details={"physical_tracking_code": "string"},
        )
    value = value.strip()
    if len(value) > TRACKING_CODE_MAX_LENGTH:
        raise ValidationError(
            f"physical_tracking_code must be at most {TRACKING_CODE_MAX_LENGTH} characters",
            details={"physical_tracking_code": f"max {TRACKING_CODE_MAX_LENGTH}"},
        )
    return value or None


def _serialize(process: CertificationProcess, sla_table, now: datetime) -> dict:
    result = process.to_dict()
    result.update(engine.evaluate(process, sla_table, now))
    result["timeline"] = render(process)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Stage-advance operation (model level, no commit)
# ═════════════════════════════════════════════════════════════════════════════


def advance(
    process: CertificationProcess,
    new_stage,
    *,
    at: datetime | None = None,
    tracking_code: str | None = None,
    allow_regression: bool = False,
    now: datetime | None = None,
) -> str:
    """Move *process* to *new_stage*.

    Forward moves (any distance) stamp the destination timestamp with *at* or
    *now*, unless a historical date is already stored; an explicit *at* always
    overwrites. Moving backwards is refused unless *allow_regression* is set.
    Later-stage timestamps survive a regression as history.

    Returns:
        "advance" | "regress" | "stay"

    Raises:
        InvalidStageError, TransitionError
    """
    target = parse_stage(new_stage)
    sequence = [d.stage for d in engine.effective_sequence(process)]
    current = engine.current_stage(process)

    if target not in sequence:
        raise TransitionError(
            process.status, target.value,
            "physical certificate stage is disabled for this process",
        )

    current_index = sequence.index(current)
    target_index = sequence.index(target)
    if target_index < current_index and not allow_regression:
        raise TransitionError(
            process.status, target.value,
            "moving to an earlier stage requires allow_regression",
        )

    if target_index > current_index:
        kind = TRANSITION_ADVANCE
    elif target_index < current_index:
        kind = TRANSITION_REGRESS
    else:
        kind = TRANSITION_STAY

    if at is not None:
        process.set_stage_timestamp(target, at)
    elif process.get_stage_timestamp(target) is None:
        process.set_stage_timestamp(target, now or datetime.now(UTC))

    process.status = target.value
    if tracking_code and tracking_code.strip():
        process.physical_tracking_code = tracking_code.strip()
    return kind


# ═════════════════════════════════════════════════════════════════════════════
# Process CRUD
# ═════════════════════════════════════════════════════════════════════════════


def create_process(data: dict, *, actor: str = "system", now: datetime | None = None) -> dict:
    """Start a certification process for a student.

    Raises:
        ValidationError: bad payload.
        NotFoundError: student does not exist.
        ConflictError: the student already has a process.
    """
    student_id = data.get("student_id")
    if not isinstance(student_id, int) or isinstance(student_id, bool):
        raise ValidationError("student_id is required", details={"student_id": "integer"})
    wants_physical = _parse_bool(data.get("wants_physical", False), "wants_physical")

    student = db.session.get(Student, student_id)
    if student is None:
        raise NotFoundError(resource="Student", resource_id=student_id)

    exists = db.session.execute(
        select(CertificationProcess.id).where(CertificationProcess.student_id == student_id)
    ).scalar_one_or_none()
    if exists is not None:
        raise ConflictError("CertificationProcess", "student_id", str(student_id))

    now = now or datetime.now(UTC)
    process = CertificationProcess(
        student_id=student_id,
        status=Stage.WELCOME.value,
        wants_physical=wants_physical,
        certifier_name=str(data.get("certifier_name") or "").strip(),
        created_at=now,
    )
    with _persist(student_id):
        db.session.add(process)
        db.session.flush()
        write_audit(
            entity_type="certification_process",
            entity_id=process.id,
            student_id=student_id,
            action="certification.create",
            actor=actor,
            diff={"status": Stage.WELCOME.value, "wants_physical": wants_physical},
        )
    logger.info(
        "Certification process created",
        extra={"student_id": student_id, "stage": Stage.WELCOME.value,
               "event_type": "certification.create"},
    )
    return _serialize(process, get_sla_table(), now)


def get_process(student_id: int, *, now: datetime | None = None) -> dict:
    """Process + SLA evaluation + rendered timeline."""
    process = load_process(student_id)
    return _serialize(process, get_sla_table(), now or datetime.now(UTC))


def get_timeline(student_id: int) -> list[dict]:
    return render(load_process(student_id))


def list_processes(
    *,
    status: str | None = None,
    sla: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """All processes with their SLA badge, optionally filtered.

    Args:
        status: stage id filter.
        sla: SLA status filter (ok | warning | overdue | unknown | none).
    """
    stmt = (
        select(CertificationProcess)
        .options(joinedload(CertificationProcess.student))
        .order_by(CertificationProcess.id)
    )
    if status:
        stmt = stmt.where(CertificationProcess.status == parse_stage(status).value)
    if sla:
        try:
            sla_filter = engine.SLAStatus(sla)
        except ValueError:
            raise ValidationError(
                f"sla must be one of: {[s.value for s in engine.SLAStatus]}",
            ) from None
    else:
        sla_filter = None

    now = now or datetime.now(UTC)
    table = get_sla_table()
    items = []
    for process in db.session.execute(stmt).unique().scalars().all():
        evaluation = engine.evaluate_sla(process, table, now)
        if sla_filter is not None and evaluation.status is not sla_filter:
            continue
        item = process.to_dict()
        item["sla"] = evaluation.to_dict()
        items.append(item)
    return items


def update_process(student_id: int, data: dict, *, actor: str = "system") -> dict:
    """Change wants_physical / certifier_name after creation."""
    changes = {}
    if "wants_physical" in data:
        changes["wants_physical"] = _parse_bool(data["wants_physical"], "wants_physical")
    if "certifier_name" in data:
        changes["certifier_name"] = str(data["certifier_name"] or "").strip()
    if not changes:
        raise ValidationError("Nothing to update")

    process = load_process(student_id, for_update=True)
    diff = {}
    with _persist(student_id):
        for field, value in changes.items():
            old = getattr(process, field)
            if old != value:
                diff[field] = {"old": old, "new": value}
                setattr(process, field, value)

        if diff:
            write_audit(
                entity_type="certification_process",
                entity_id=process.id,
                student_id=student_id,
                action="certification.update",
                actor=actor,
                diff=diff,
            )
    return _serialize(process, get_sla_table(), datetime.now(UTC))


# ═════════════════════════════════════════════════════════════════════════════
# Administrative operations
# ═════════════════════════════════════════════════════════════════════════════


def update_status(
    student_id: int,
    new_stage,
    extra: dict | None = None,
    *,
    actor: str = "system",
    now: datetime | None = None,
) -> dict:
    """Move a student's process to *new_stage*.

    extra:
        physical_tracking_code: stored when non-empty.
        date: explicit ISO date for the destination stage (reference tz if naive).
        allow_regression: permit moving to an earlier stage (audited separately).

    Raises:
        NotFoundError, InvalidStageError, UnparseableDateError, TransitionError,
        ConflictError
    """
    extra = extra or {}
    target = parse_stage(new_stage)
    at = None
    if extra.get("date"):
        at = parse_instant(extra["date"], assume_reference_tz=True)
    allow_regression = _parse_bool(extra.get("allow_regression", False), "allow_regression")
    tracking_code = _parse_tracking_code(extra.get("physical_tracking_code"))
    now = now or datetime.now(UTC)

    process = load_process(student_id, for_update=True)
    previous = process.status
    with _persist(student_id):
        kind = advance(
            process, target,
            at=at,
            tracking_code=tracking_code,
            allow_regression=allow_regression,
            now=now,
        )
        action = "certification.regress" if kind == TRANSITION_REGRESS else "certification.advance"
        write_audit(
            entity_type="certification_process",
            entity_id=process.id,
            student_id=student_id,
            action=action,
            actor=actor,
            diff={
                "from": previous,
                "to": target.value,
                "at": process.get_stage_timestamp(target),
                "tracking_code": process.physical_tracking_code,
            },
        )

    if kind == TRANSITION_REGRESS:
        logger.warning(
            "Certification stage regressed: %s → %s", previous, target.value,
            extra={"student_id": student_id, "stage": target.value,
                   "event_type": "certification.regress"},
        )
    else:
        logger.info(
            "Certification stage updated: %s → %s", previous, target.value,
            extra={"student_id": student_id, "stage": target.value,
                   "event_type": "certification.advance"},
        )
    return _serialize(process, get_sla_table(), now)


def update_dates(
    student_id: int,
    edits: dict,
    *,
    actor: str = "system",
    now: datetime | None = None,
) -> dict:
    """Apply a partial {stage_or_field: date} map as one atomic edit.

    The whole map is validated before any field is written. ``status`` is
    never changed by a date edit.

    Raises:
        NotFoundError, ValidationError, InvalidStageError, UnparseableDateError,
        ConflictError
    """
    resolved = validate_date_edits(edits)
    process = load_process(student_id, for_update=True)

    diff = {}
    with _persist(student_id):
        for stage in sorted(resolved, key=STAGE_ORDER.__getitem__):
            new_value = resolved[stage]
            old_value = process.get_stage_timestamp(stage)
            if old_value == new_value:
                continue
            if new_value is None:
                process.set_stage_timestamp(stage, None)
            else:
                apply_date_edit(process, stage.value, new_value)
            diff[stage.value] = {"old": old_value, "new": new_value}

        if diff:
            write_audit(
                entity_type="certification_process",
                entity_id=process.id,
                student_id=student_id,
                action="certification.date_edit",
                actor=actor,
                diff=diff,
            )
    logger.info(
        "Certification dates edited: %s", ", ".join(diff) or "no change",
        extra={"student_id": student_id, "event_type": "certification.date_edit"},
    )
    return _serialize(process, get_sla_table(), now or datetime.now(UTC))


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard
# ═════════════════════════════════════════════════════════════════════════════


def get_dashboard(*, now: datetime | None = None) -> dict:
    """Counts per stage and the list of overdue processes, most delayed first."""
    rows = db.session.execute(
        select(CertificationProcess.status, func.count(CertificationProcess.id))
        .group_by(CertificationProcess.status)
    ).all()
    counts = dict(rows)
    stage_counts = [
        {"status": d.stage.value, "label": d.label, "count": counts.get(d.stage.value, 0)}
        for d in STAGE_REGISTRY
    ]

    delayed = []
    for item in list_processes(sla=engine.SLAStatus.OVERDUE.value, now=now):
        delayed.append({
            "student_id": item["student_id"],
            "student_name": item["student_name"],
            "status": item["status"],
            "status_label": item["status_label"],
            "days_delayed": -item["sla"]["days_remaining"],
            "deadline": item["sla"]["deadline"],
        })
    delayed.sort(key=lambda d: d["days_delayed"], reverse=True)

    return {
        "total": sum(counts.values()),
        "stage_counts": stage_counts,
        "delayed": delayed,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Public status check
# ═════════════════════════════════════════════════════════════════════════════


def _digits(value) -> str:
    return re.sub(r"\D", "", str(value or ""))


def mask_name(name: str) -> str:
    """'Maria da Silva' → 'Mar***lva'. Short names are returned unchanged."""
    if not name or len(name) <= 6:
        return name or ""
    return f"{name[:3]}***{name[-3:]}"


def mask_cpf(cpf: str) -> str:
    digits = _digits(cpf)
    if len(digits) < 5:
        return cpf or ""
    return f"{digits[:3]}***{digits[-2:]}"


def check_by_cpf(cpf: str) -> dict:
    """Status lookup for the student-facing page; personal data is masked.

    Raises:
        ValidationError: CPF is not 11 digits.
        NotFoundError: no student / process for that CPF.
    """
    digits = _digits(cpf)
    if len(digits) != 11:
        raise ValidationError("cpf must have 11 digits", details={"cpf": "invalid"})
    formatted = f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"

    student = db.session.execute(
        select(Student).where(Student.cpf.in_([digits, formatted]))
    ).scalars().first()
    if student is None or student.certification is None:
        raise NotFoundError(resource="CertificationProcess", resource_id="cpf")

    process = student.certification
    return {
        "student": {"name": mask_name(student.name), "cpf": mask_cpf(digits)},
        "status": process.status,
        "status_label": stage_label(engine.current_stage(process)),
        "wants_physical": process.wants_physical,
        "physical_tracking_code": process.physical_tracking_code if process.wants_physical else None,
        "timeline": render(process),
    }
