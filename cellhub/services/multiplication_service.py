"""
Multiplication process state machine.

    draft → member_selection → leader_assignment → plan_review
          → pending_approval → approved → completed
    any non-terminal → cancelled;  pending_approval → rejected

Every status change is a compare-and-set on the status column
(UPDATE ... WHERE id = ? AND status = ?). When no row matches, another
request moved the process first and ConflictError is raised; nothing is
written.

Transaction ownership: every public function here commits or rolls back
before returning. execute_multiplication() runs in a single transaction
with the process row locked, so a failure leaves no new cell behind and the
process still approved.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from cellhub.core.exceptions import (
    ConflictError,
    DependencyUnavailableError,
    InvalidStateError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from cellhub.models import db
from cellhub.models.base import utcnow
from cellhub.models.cell import MEETING_DAYS, Cell, CellMember
from cellhub.models.multiplication import (
    ACTIVE_STATUSES,
    ASSIGNMENT_ROLES,
    ASSIGNMENT_TYPES,
    PLAN_FIELDS,
    PLAN_LOCKED_STATUSES,
    TERMINAL_STATUSES,
    WIZARD_STEPS,
    MemberAssignment,
    MultiplicationProcess,
    validate_process_transition,
)
from cellhub.services import permission_service
from cellhub.services.cell_facts import load_member_facts
from cellhub.services.distribution_service import suggest_split, template_parameters
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.services.settings_service import resolve_settings
from cellhub.services.template_service import get_template, increment_usage

logger = logging.getLogger(__name__)

# Plan fields that must be filled before the plan goes to approval
PLAN_REQUIRED_FOR_APPROVAL = ("new_cell_name", "meeting_day", "meeting_time")

EDITABLE_FIELDS = {"multiplication_plan", "approval_notes"}

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ══════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ══════════════════════════════════════════════════════════════════════════════

@contextmanager
def _transaction():
    """Commit on success; roll back and map store failures otherwise."""
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error in multiplication transaction: %s", exc.orig)
        raise ConflictError("MultiplicationProcess", "source_cell_id", None) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Store unavailable during multiplication transaction")
        raise DependencyUnavailableError() from exc
    except Exception:
        db.session.rollback()
        raise


def _log_extra(process: MultiplicationProcess, actor_id: int | None) -> dict:
    return {
        "organization_id": process.organization_id,
        "cell_id": process.source_cell_id,
        "process_id": process.id,
        "actor_id": actor_id,
    }


def _cas(process: MultiplicationProcess, expected: str, new_status: str, **values) -> None:
    """Compare-and-set the status (and any other columns) of a process."""
    if new_status != expected and not validate_process_transition(expected, new_status):
        raise InvalidStateError(
            f"Cannot move a multiplication from {expected} to {new_status}",
            current_status=expected,
        )
    values["status"] = new_status
    values["updated_at"] = utcnow()
    result = db.session.execute(
        update(MultiplicationProcess)
        .where(
            MultiplicationProcess.id == process.id,
            MultiplicationProcess.status == expected,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("MultiplicationProcess", "status", expected)


def _load(actor, process_id: int, *, for_update: bool = False) -> MultiplicationProcess:
    return get_scoped(
        MultiplicationProcess,
        process_id,
        organization_id=actor.organization_id,
        for_update=for_update,
    )


def _require_status(process: MultiplicationProcess, allowed, action: str) -> None:
    if process.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action} while the multiplication is {process.status}",
            current_status=process.status,
        )


def _require_editor(actor, process: MultiplicationProcess, action: str) -> None:
    """Initiator, or leader/supervisor of the source cell."""
    permission_service.require(
        process.initiated_by == actor.id
        or permission_service.is_cell_manager(process.source_cell, actor.id),
        action,
        actor.id,
    )


def find_active_process(cell_id: int) -> MultiplicationProcess | None:
    return db.session.execute(
        select(MultiplicationProcess).where(
            MultiplicationProcess.source_cell_id == cell_id,
            MultiplicationProcess.status.in_(ACTIVE_STATUSES),
        )
    ).scalars().first()


def _validate_plan(plan: dict, organization_id: int, *, complete: bool = False) -> dict:
    """Normalize plan fields; new_cell_name is always required."""
    if not isinstance(plan, dict):
        raise ValidationError("multiplication_plan must be an object")
    errors = {}

    unknown = sorted(set(plan) - set(PLAN_FIELDS))
    if unknown:
        errors["unknown_fields"] = unknown

    clean = {k: plan[k] for k in PLAN_FIELDS if k in plan}
    name = clean.get("new_cell_name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        errors["new_cell_name"] = "new_cell_name is required"
    else:
        clean["new_cell_name"] = name

    day = clean.get("meeting_day")
    if day:
        day = str(day).lower()
        if day not in MEETING_DAYS:
            errors["meeting_day"] = f"must be one of {sorted(MEETING_DAYS)}"
        clean["meeting_day"] = day

    time_ = clean.get("meeting_time")
    if time_ and not _TIME_RE.match(str(time_)):
        errors["meeting_time"] = "must be HH:MM"

    template_id = clean.get("template_id")
    if template_id is not None:
        try:
            get_template(int(template_id), organization_id)
            clean["template_id"] = int(template_id)
        except (TypeError, ValueError):
            errors["template_id"] = "must be an integer"
        except ValidationError as exc:
            errors["template_id"] = str(exc)
        except NotFoundError:
            errors["template_id"] = "template not found"

    if complete:
        for key in PLAN_REQUIRED_FOR_APPROVAL:
            if not clean.get(key) and key not in errors:
                errors[key] = f"{key} is required before approval"

    if errors:
        raise ValidationError("Invalid multiplication plan", details=errors)
    return clean


def _stored_new_leaders(process_id: int) -> list[MemberAssignment]:
    return db.session.execute(
        select(MemberAssignment).where(
            MemberAssignment.multiplication_id == process_id,
            MemberAssignment.assignment_type == "new_leader",
        )
    ).scalars().all()


def wizard_steps(process: MultiplicationProcess) -> list[dict]:
    """Wizard steps annotated with completed/current/pending for this process."""
    current = process.current_step
    steps = []
    for step in WIZARD_STEPS:
        if process.status == "completed" or step["step"] < current:
            state = "completed"
        elif step["step"] == current:
            state = "current"
        else:
            state = "pending"
        steps.append({**step, "state": state})
    return steps


def _serialize(process: MultiplicationProcess) -> dict:
    data = process.to_dict(include_assignments=True)
    data["wizard_steps"] = wizard_steps(process)
    return data


# ══════════════════════════════════════════════════════════════════════════════
# Start / read
# ══════════════════════════════════════════════════════════════════════════════

def start_multiplication(actor_id: int, source_cell_id: int, plan: dict) -> dict:
    """Create a draft process for a cell led or supervised by the actor."""
    actor = permission_service.get_actor(actor_id)
    cell = get_scoped(Cell, source_cell_id, organization_id=actor.organization_id)
    permission_service.require(
        permission_service.is_cell_manager(cell, actor.id),
        "start a multiplication for this cell",
        actor.id,
    )
    if not cell.is_active:
        raise InvalidStateError("Cell is inactive")

    clean_plan = _validate_plan(plan or {}, cell.organization_id)

    active = find_active_process(cell.id)
    if active is not None:
        raise InvalidStateError(
            f"Cell already has an active multiplication (id={active.id})",
            current_status=active.status,
        )

    process = MultiplicationProcess(
        organization_id=cell.organization_id,
        source_cell_id=cell.id,
        initiated_by=actor.id,
        status="draft",
        multiplication_plan=clean_plan,
    )
    with _transaction():
        db.session.add(process)
        db.session.flush()

    logger.info("Multiplication started", extra=_log_extra(process, actor.id))
    return _serialize(process)


def get_process(actor_id: int, process_id: int) -> dict:
    actor = permission_service.get_actor(actor_id)
    return _serialize(_load(actor, process_id))


def list_cell_processes(actor_id: int, cell_id: int, *, include_terminal: bool = True) -> list[dict]:
    actor = permission_service.get_actor(actor_id)
    cell = get_scoped(Cell, cell_id, organization_id=actor.organization_id)
    stmt = select(MultiplicationProcess).where(MultiplicationProcess.source_cell_id == cell.id)
    if not include_terminal:
        stmt = stmt.where(MultiplicationProcess.status.in_(ACTIVE_STATUSES))
    stmt = stmt.order_by(MultiplicationProcess.created_at.desc(), MultiplicationProcess.id.desc())
    return [p.to_dict() for p in db.session.execute(stmt).scalars().all()]


# ══════════════════════════════════════════════════════════════════════════════
# Distribution and assignments
# ══════════════════════════════════════════════════════════════════════════════

def suggest_distribution(
    actor_id: int,
    process_id: int,
    template_id: int | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """Replace the process assignments with a fresh suggestion.

    Returns the suggestion itself; only the MemberAssignment rows are stored.
    """
    now = now or utcnow()
    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    _require_editor(actor, process, "suggest a member distribution")
    _require_status(process, ("draft", "member_selection"), "suggest a distribution")
    expected = process.status

    plan = dict(process.multiplication_plan or {})
    if template_id is not None:
        plan = _validate_plan({**plan, "template_id": template_id}, process.organization_id)
    template = get_template(plan["template_id"], process.organization_id) if plan.get("template_id") else None

    settings = resolve_settings(permission_service.get_organization(process.organization_id))
    params = {"leadership_threshold": settings.leadership_threshold}
    params.update(template_parameters(template))
    suggestion = suggest_split(
        load_member_facts(process.source_cell_id), now=now, **params,
    )

    with _transaction():
        db.session.execute(
            delete(MemberAssignment).where(MemberAssignment.multiplication_id == process.id)
        )
        for item in suggestion.assignments:
            db.session.add(MemberAssignment(
                multiplication_id=process.id,
                member_id=item.member_id,
                assignment_type=item.assignment_type,
                role_in_new_cell=item.role_in_new_cell,
                priority_score=item.priority_score,
                auto_suggested=True,
                manually_adjusted=False,
                notes=item.reasoning,
            ))
        db.session.flush()
        _cas(
            process, expected, "member_selection",
            multiplication_plan=plan,
            new_leader_id=suggestion.new_leader_id,
        )

    db.session.refresh(process)
    logger.info(
        "Distribution suggested: %s", suggestion.summary(), extra=_log_extra(process, actor.id),
    )
    return {"process": _serialize(process), "suggestion": suggestion.to_dict()}


def _validate_assignment_batch(process: MultiplicationProcess, items) -> list[dict]:
    """Check the whole batch before any write."""
    if not isinstance(items, list) or not items:
        raise ValidationError("assignments must be a non-empty list")

    roster = {m.person_id for m in load_member_facts(process.source_cell_id)}
    errors = []
    clean = []
    seen = set()
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            errors.append({"index": idx, "error": "assignment must be an object"})
            continue
        try:
            member_id = int(raw.get("member_id"))
        except (TypeError, ValueError):
            errors.append({"index": idx, "error": "member_id must be an integer"})
            continue
        atype = raw.get("assignment_type")
        if atype not in ASSIGNMENT_TYPES:
            errors.append({"index": idx, "member_id": member_id, "error": f"unknown assignment_type {atype!r}"})
            continue
        role = raw.get("role_in_new_cell") or ("leader" if atype == "new_leader" else "member")
        if role not in ASSIGNMENT_ROLES:
            errors.append({"index": idx, "member_id": member_id, "error": f"unknown role_in_new_cell {role!r}"})
            continue
        if atype == "new_leader" and role != "leader":
            errors.append({"index": idx, "member_id": member_id, "error": "new_leader must have role leader"})
            continue
        if member_id in seen:
            errors.append({"index": idx, "member_id": member_id, "error": "duplicate member"})
            continue
        if member_id not in roster:
            errors.append({"index": idx, "member_id": member_id, "error": "not an active member of the source cell"})
            continue
        priority = raw.get("priority_score")
        if priority is not None:
            try:
                priority = None if isinstance(priority, bool) else float(priority)
            except (TypeError, ValueError):
                priority = None
            if priority is None or not 0 <= priority <= 100:
                errors.append({"index": idx, "member_id": member_id,
                               "error": "priority_score must be a number between 0 and 100"})
                continue
        seen.add(member_id)
        clean.append({
            "member_id": member_id,
            "assignment_type": atype,
            "role_in_new_cell": role,
            "notes": raw.get("notes") or "",
            "priority_score": priority,
        })

    leader_count = sum(
        1 for raw in items if isinstance(raw, dict) and raw.get("assignment_type") == "new_leader"
    )
    if errors or leader_count != 1:
        details = {"rows": errors}
        if leader_count != 1:
            details["new_leader"] = f"exactly one new_leader required, got {leader_count}"
        raise ValidationError("Invalid assignment batch", details=details)
    return clean


def _upsert_assignment(process_id: int, row: dict) -> MemberAssignment:
    existing = db.session.execute(
        select(MemberAssignment).where(
            MemberAssignment.multiplication_id == process_id,
            MemberAssignment.member_id == row["member_id"],
        )
    ).scalar_one_or_none()
    if existing is None:
        existing = MemberAssignment(
            multiplication_id=process_id,
            member_id=row["member_id"],
            auto_suggested=False,
        )
        db.session.add(existing)
    existing.assignment_type = row["assignment_type"]
    existing.role_in_new_cell = row["role_in_new_cell"]
    existing.notes = row["notes"]
    if row["priority_score"] is not None:
        existing.priority_score = row["priority_score"]
    existing.manually_adjusted = True
    db.session.flush()
    return existing


def update_assignments(actor_id: int, process_id: int, assignments: list[dict]) -> dict:
    """Upsert a full batch of assignments and confirm the new leader.

    The batch must contain exactly one new_leader; otherwise nothing is
    written. Rows are then upserted one savepoint at a time: rows that fail
    are reported through PartialFailureError while the others stay
    committed, and the process only advances when the new_leader row was
    written.
    """
    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    _require_editor(actor, process, "edit member assignments")
    _require_status(process, ("member_selection", "leader_assignment"), "edit assignments")
    expected = process.status

    rows = _validate_assignment_batch(process, assignments)
    new_leader_id = next(r["member_id"] for r in rows if r["assignment_type"] == "new_leader")

    succeeded, failed = [], []
    leader_written = False
    with _transaction():
        for row in rows:
            try:
                with db.session.begin_nested():
                    _upsert_assignment(process.id, row)
            except SQLAlchemyError as exc:
                logger.warning(
                    "Assignment upsert failed for member %s: %s", row["member_id"], exc,
                    extra=_log_extra(process, actor.id),
                )
                failed.append({"member_id": row["member_id"], "error": "store error"})
                continue
            succeeded.append(row["member_id"])
            if row["member_id"] == new_leader_id:
                leader_written = True

        if leader_written:
            submitted = {r["member_id"] for r in rows}
            for stale in _stored_new_leaders(process.id):
                if stale.member_id not in submitted:
                    stale.assignment_type = "undecided"
                    stale.role_in_new_cell = "member"
                    stale.manually_adjusted = True
            db.session.flush()
            _cas(process, expected, "leader_assignment", new_leader_id=new_leader_id)

    db.session.refresh(process)
    if failed:
        raise PartialFailureError(
            f"{len(failed)} of {len(rows)} assignments failed",
            succeeded=succeeded,
            failed=failed,
        )

    logger.info(
        "Assignments updated: %d rows, new leader %s", len(succeeded), new_leader_id,
        extra=_log_extra(process, actor.id),
    )
    return _serialize(process)


# ══════════════════════════════════════════════════════════════════════════════
# Plan edits and approval
# ══════════════════════════════════════════════════════════════════════════════

_ADVANCE_FROM = {
    "leader_assignment": "plan_review",
    "plan_review": "pending_approval",
}


def update_process_fields(actor_id: int, process_id: int, fields: dict, *, advance: bool = False) -> dict:
    """Edit the plan or approval notes, optionally advancing one step.

    Status is never a field: use ``advance`` (leader_assignment → plan_review,
    plan_review → pending_approval) or the approve/reject/cancel operations.
    """
    fields = fields or {}
    if "status" in fields:
        raise ValidationError(
            "status cannot be set directly", details={"status": "use advance, approve, reject or cancel"},
        )
    unknown = sorted(set(fields) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown fields", details={"fields": unknown})

    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    _require_editor(actor, process, "edit this multiplication")
    if process.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Multiplication is {process.status}", current_status=process.status,
        )
    expected = process.status

    values = {}
    plan = dict(process.multiplication_plan or {})
    if "multiplication_plan" in fields:
        if process.status in PLAN_LOCKED_STATUSES:
            raise InvalidStateError(
                "The plan is locked once submitted for approval", current_status=process.status,
            )
        plan = _validate_plan({**plan, **(fields["multiplication_plan"] or {})}, process.organization_id)
        values["multiplication_plan"] = plan
    if "approval_notes" in fields:
        values["approval_notes"] = fields["approval_notes"] or ""

    target = expected
    if advance:
        target = _ADVANCE_FROM.get(expected)
        if target is None:
            raise InvalidStateError(
                f"Cannot advance a multiplication that is {expected}", current_status=expected,
            )
        if expected == "leader_assignment":
            leaders = _stored_new_leaders(process.id)
            if len(leaders) != 1 or leaders[0].member_id != process.new_leader_id:
                raise ValidationError(
                    "Exactly one new leader must be assigned",
                    details={"new_leader": f"{len(leaders)} assigned"},
                )
        else:
            _validate_plan(plan, process.organization_id, complete=True)

    with _transaction():
        _cas(process, expected, target, **values)

    db.session.refresh(process)
    logger.info(
        "Multiplication updated: fields=%s status=%s", sorted(values), process.status,
        extra=_log_extra(process, actor.id),
    )
    return _serialize(process)


def approve_process(actor_id: int, process_id: int, notes: str | None = None) -> dict:
    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    permission_service.require(
        permission_service.can_approve(actor, process.source_cell), "approve this multiplication", actor.id,
    )
    _require_status(process, ("pending_approval",), "approve")

    values = {"approved_by": actor.id, "approved_at": utcnow()}
    if notes:
        values["approval_notes"] = notes
    with _transaction():
        _cas(process, "pending_approval", "approved", **values)

    db.session.refresh(process)
    logger.info("Multiplication approved", extra=_log_extra(process, actor.id))
    return _serialize(process)


def reject_process(actor_id: int, process_id: int, reason: str) -> dict:
    if not (reason or "").strip():
        raise ValidationError("A rejection reason is required", details={"reason": "required"})
    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    permission_service.require(
        permission_service.can_approve(actor, process.source_cell), "reject this multiplication", actor.id,
    )
    _require_status(process, ("pending_approval",), "reject")

    with _transaction():
        _cas(
            process, "pending_approval", "rejected",
            cancellation_reason=reason.strip(),
            terminated_from="pending_approval",
        )

    db.session.refresh(process)
    logger.info("Multiplication rejected", extra=_log_extra(process, actor.id))
    return _serialize(process)


def cancel_process(actor_id: int, process_id: int, reason: str | None = None) -> dict:
    actor = permission_service.get_actor(actor_id)
    process = _load(actor, process_id)
    permission_service.require(
        process.initiated_by == actor.id
        or permission_service.is_org_wide(actor)
        or permission_service.is_cell_manager(process.source_cell, actor.id),
        "cancel this multiplication",
        actor.id,
    )
    if process.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Multiplication is already {process.status}", current_status=process.status,
        )
    expected = process.status

    with _transaction():
        _cas(
            process, expected, "cancelled",
            cancellation_reason=(reason or "").strip() or None,
            terminated_from=expected,
        )

    db.session.refresh(process)
    logger.info("Multiplication cancelled from %s", expected, extra=_log_extra(process, actor.id))
    return _serialize(process)


# ══════════════════════════════════════════════════════════════════════════════
# Execute
# ══════════════════════════════════════════════════════════════════════════════

def _migrate_members(process: MultiplicationProcess, source: Cell, new_cell: Cell) -> int:
    """Move moves_new members and the new leader into the new cell."""
    rows = db.session.execute(
        select(MemberAssignment).where(
            MemberAssignment.multiplication_id == process.id,
            MemberAssignment.assignment_type.in_(("moves_new", "new_leader")),
        )
    ).scalars().all()

    moved = 0
    for row in rows:
        is_leader = row.assignment_type == "new_leader"
        result = db.session.execute(
            update(CellMember)
            .where(
                CellMember.cell_id == source.id,
                CellMember.person_id == row.member_id,
                CellMember.is_active.is_(True),
            )
            .values(cell_id=new_cell.id, role="leader" if is_leader else "member")
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if is_leader:
                raise ValidationError(
                    "The new leader is no longer an active member of the source cell",
                    details={"new_leader_id": row.member_id},
                )
            logger.warning(
                "Member %s left the source cell; not migrated", row.member_id,
                extra=_log_extra(process, None),
            )
            continue
        moved += 1
    return moved


def execute_multiplication(actor_id: int, process_id: int) -> dict:
    """Create the new cell and migrate members, all or nothing."""
    actor = permission_service.get_actor(actor_id)
    try:
        process = _load(actor, process_id, for_update=True)
        _require_status(process, ("approved",), "execute")
        source = process.source_cell
        permission_service.require(
            permission_service.is_org_wide(actor)
            or permission_service.is_cell_supervisor(source, actor.id),
            "execute this multiplication",
            actor.id,
        )

        leaders = _stored_new_leaders(process.id)
        if len(leaders) != 1 or leaders[0].member_id != process.new_leader_id:
            raise ValidationError(
                "Exactly one new leader matching the confirmed leader is required",
                details={"new_leader": f"{len(leaders)} assigned", "new_leader_id": process.new_leader_id},
            )

        plan = process.multiplication_plan or {}
        new_cell = Cell(
            organization_id=process.organization_id,
            parent_cell_id=source.id,
            name=plan["new_cell_name"],
            leader_id=process.new_leader_id,
            supervisor_id=source.supervisor_id,
            meeting_day=plan.get("meeting_day"),
            meeting_time=plan.get("meeting_time"),
            address=plan.get("address"),
            city=plan.get("city"),
            state=plan.get("state"),
            zip_code=plan.get("zip_code"),
            is_active=True,
        )
        db.session.add(new_cell)
        db.session.flush()

        moved = _migrate_members(process, source, new_cell)

        if plan.get("template_id"):
            increment_usage(plan["template_id"])

        _cas(
            process, "approved", "completed",
            completed_at=utcnow(),
            new_cell_id=new_cell.id,
        )
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Store unavailable while executing multiplication %s", process_id)
        raise DependencyUnavailableError() from exc
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Cell", "name", None) from exc
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(process)
    logger.info(
        "Multiplication executed: new cell %s, %d members moved", new_cell.id, moved,
        extra=_log_extra(process, actor.id),
    )
    return {"new_cell_id": new_cell.id, "process": _serialize(process)}
