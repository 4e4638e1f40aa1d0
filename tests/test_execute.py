"""
Tests: executing an approved multiplication.

The new cell, the member migration, the template usage bump and the
completed status are written in one transaction; a store failure in the
middle leaves nothing behind.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from cellhub.core.exceptions import (
    DependencyUnavailableError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from cellhub.models import db as _db
from cellhub.models.cell import Cell, CellMember
from cellhub.models.multiplication import MultiplicationProcess, MultiplicationTemplate
from cellhub.services import multiplication_service as svc


def _approved(ctx, plan, approver_id, template_id=None):
    leader = ctx.leader.id
    process = svc.start_multiplication(leader, ctx.cell.id, plan)
    result = svc.suggest_distribution(leader, process["id"], template_id)
    batch = [
        {"member_id": a["member_id"], "assignment_type": a["assignment_type"]}
        for a in result["suggestion"]["assignments"]
    ]
    svc.update_assignments(leader, process["id"], batch)
    svc.update_process_fields(leader, process["id"], {}, advance=True)
    svc.update_process_fields(leader, process["id"], {}, advance=True)
    svc.approve_process(approver_id, process["id"])
    return process["id"], result["suggestion"]


def _active_members(cell_id):
    return set(_db.session.execute(
        select(CellMember.person_id).where(
            CellMember.cell_id == cell_id, CellMember.is_active.is_(True),
        )
    ).scalars().all())


def _children(cell_id):
    return _db.session.execute(
        select(Cell).where(Cell.parent_cell_id == cell_id)
    ).scalars().all()


def test_execute_creates_child_cell_and_moves_members(ready_cell, plan, pastor):
    process_id, suggestion = _approved(ready_cell, plan, pastor.id)
    moving = {
        a["member_id"] for a in suggestion["assignments"]
        if a["assignment_type"] in ("moves_new", "new_leader")
    }

    result = svc.execute_multiplication(ready_cell.supervisor.id, process_id)

    new_cell = _db.session.get(Cell, result["new_cell_id"])
    assert new_cell.parent_cell_id == ready_cell.cell.id
    assert new_cell.name == "Cell A2"
    assert new_cell.leader_id == ready_cell.apprentice.id
    assert new_cell.supervisor_id == ready_cell.supervisor.id
    assert new_cell.meeting_day == "friday"
    assert new_cell.city == "Springfield"

    assert _active_members(new_cell.id) == moving
    assert len(_active_members(ready_cell.cell.id)) == 14 - len(moving)
    leader_row = _db.session.execute(
        select(CellMember).where(
            CellMember.cell_id == new_cell.id,
            CellMember.person_id == ready_cell.apprentice.id,
        )
    ).scalar_one()
    assert leader_row.role == "leader"

    process = result["process"]
    assert process["status"] == "completed"
    assert process["new_cell_id"] == new_cell.id
    assert process["current_step"] == 8
    assert process["progress_pct"] == 100
    assert process["completed_at"] is not None
    assert all(step["state"] == "completed" for step in process["wizard_steps"])


def test_execute_counts_template_usage(org, ready_cell, plan, pastor):
    template = MultiplicationTemplate(organization_id=org.id, name="Balanced")
    _db.session.add(template)
    _db.session.commit()

    process_id, _ = _approved(ready_cell, plan, pastor.id, template_id=template.id)
    svc.execute_multiplication(pastor.id, process_id)

    _db.session.refresh(template)
    assert template.times_used == 1


def test_store_failure_mid_execute_leaves_nothing_behind(ready_cell, plan, pastor, monkeypatch):
    process_id, _ = _approved(ready_cell, plan, pastor.id)

    def locked(*args, **kwargs):
        raise OperationalError("UPDATE cell_members", {}, Exception("database is locked"))

    monkeypatch.setattr(svc, "_migrate_members", locked)
    with pytest.raises(DependencyUnavailableError):
        svc.execute_multiplication(pastor.id, process_id)

    assert _children(ready_cell.cell.id) == []
    assert _db.session.execute(select(func.count(Cell.id))).scalar_one() == 1
    assert len(_active_members(ready_cell.cell.id)) == 14
    process = _db.session.get(MultiplicationProcess, process_id)
    assert process.status == "approved"
    assert process.new_cell_id is None


def test_retry_after_failure_succeeds(ready_cell, plan, pastor, monkeypatch):
    process_id, _ = _approved(ready_cell, plan, pastor.id)
    original = svc._migrate_members

    def locked(*args, **kwargs):
        raise OperationalError("UPDATE cell_members", {}, Exception("database is locked"))

    monkeypatch.setattr(svc, "_migrate_members", locked)
    with pytest.raises(DependencyUnavailableError):
        svc.execute_multiplication(pastor.id, process_id)

    monkeypatch.setattr(svc, "_migrate_members", original)
    result = svc.execute_multiplication(pastor.id, process_id)
    assert result["process"]["status"] == "completed"
    assert len(_children(ready_cell.cell.id)) == 1


def test_execute_twice_is_invalid(ready_cell, plan, pastor):
    process_id, _ = _approved(ready_cell, plan, pastor.id)
    svc.execute_multiplication(pastor.id, process_id)
    with pytest.raises(InvalidStateError):
        svc.execute_multiplication(pastor.id, process_id)
    assert len(_children(ready_cell.cell.id)) == 1


def test_execute_requires_approval(ready_cell, plan, pastor):
    process = svc.start_multiplication(ready_cell.leader.id, ready_cell.cell.id, plan)
    with pytest.raises(InvalidStateError):
        svc.execute_multiplication(pastor.id, process["id"])


def test_leader_cannot_execute(ready_cell, plan, pastor):
    process_id, _ = _approved(ready_cell, plan, pastor.id)
    with pytest.raises(PermissionDeniedError):
        svc.execute_multiplication(ready_cell.leader.id, process_id)
    assert _db.session.get(MultiplicationProcess, process_id).status == "approved"


def test_departed_new_leader_aborts_execution(ready_cell, plan, pastor):
    process_id, _ = _approved(ready_cell, plan, pastor.id)
    membership = _db.session.execute(
        select(CellMember).where(CellMember.person_id == ready_cell.apprentice.id)
    ).scalar_one()
    membership.is_active = False
    _db.session.commit()

    with pytest.raises(ValidationError):
        svc.execute_multiplication(pastor.id, process_id)
    assert _children(ready_cell.cell.id) == []


def test_departed_regular_member_is_skipped(ready_cell, plan, pastor):
    process_id, suggestion = _approved(ready_cell, plan, pastor.id)
    leaver = next(
        a["member_id"] for a in suggestion["assignments"] if a["assignment_type"] == "moves_new"
    )
    membership = _db.session.execute(
        select(CellMember).where(CellMember.person_id == leaver)
    ).scalar_one()
    membership.is_active = False
    _db.session.commit()

    result = svc.execute_multiplication(pastor.id, process_id)
    moved = _active_members(result["new_cell_id"])
    assert leaver not in moved
    assert len(moved) == 6
