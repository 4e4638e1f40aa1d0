"""
Tests: readiness evaluator, snapshot upsert, batch evaluation, listing
and dashboard.
"""

import pytest
from sqlalchemy import func, select

from cellhub.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from cellhub.models import db as _db
from cellhub.models.base import utcnow
from cellhub.models.cell import CellMember
from cellhub.models.multiplication import ReadinessSnapshot
from cellhub.services import criteria_service, readiness_service
from cellhub.services.cell_facts import measure_cell


def _snapshot_count():
    return _db.session.execute(select(func.count(ReadinessSnapshot.id))).scalar_one()


# ── Metrics ──────────────────────────────────────────────────────────────


def test_measure_cell_metrics(make_cell, org):
    ctx = make_cell(org, meetings=[(10, 14), (20, 7), (40, 14), (200, 1)])
    facts = measure_cell(ctx.cell, now=utcnow())

    assert facts.member_count == 14
    assert facts.potential_leaders == 1
    # three meetings inside the 90-day window
    assert facts.meeting_frequency == 1.0
    assert facts.average_attendance == pytest.approx(83.3)
    assert facts.cell_age_months == 13
    assert facts.leader_maturity == 80
    assert facts.stability_score == 100.0
    assert facts.growth_rate == 0.0
    assert facts.has_leader is True


def test_growth_rate_counts_recent_joins(make_cell, make_person, org):
    ctx = make_cell(org, members=10)
    for _ in range(2):
        p = make_person(org)
        _db.session.add(CellMember(cell_id=ctx.cell.id, person_id=p.id, joined_at=utcnow()))
    _db.session.commit()

    facts = measure_cell(ctx.cell, now=utcnow())
    assert facts.recent_joins == 2
    assert facts.growth_rate == 20.0


def test_non_apprentice_does_not_count_as_potential_leader(make_cell, org):
    ctx = make_cell(org, apprentice_score=None, regular_score=90)
    assert measure_cell(ctx.cell, now=utcnow()).potential_leaders == 0


# ── Evaluation ───────────────────────────────────────────────────────────


def test_ready_cell_with_passed_window_is_overdue(org, ready_cell):
    snap = readiness_service.evaluate_readiness(ready_cell.cell.id, org.id)

    assert snap["readiness_score"] == 75.0
    # all required met and the threshold was reached ~200 days ago
    assert snap["status"] == "overdue"
    assert snap["projected_date"] is not None
    assert snap["blocking_factors"] == []
    # attendance and meeting frequency unmet, cell age and stability met
    assert snap["confidence_level"] == 50
    assert set(snap["criteria_results"]) == {
        c.name for c in criteria_service.default_criteria()
    }


def test_small_cell_is_blocked_and_not_ready(make_cell, org):
    ctx = make_cell(org, members=4, apprentice_score=None, created_days_ago=30)
    snap = readiness_service.evaluate_readiness(ctx.cell.id, org.id)

    assert snap["status"] == "not_ready"
    assert [b["criteria_type"] for b in snap["blocking_factors"]] == [
        "member_count", "potential_leaders",
    ]
    assert snap["recommendations"]
    assert snap["projected_date"] is None


def test_evaluation_is_idempotent(org, ready_cell):
    now = utcnow()
    first = readiness_service.evaluate_readiness(ready_cell.cell.id, org.id, now=now)
    second = readiness_service.evaluate_readiness(ready_cell.cell.id, org.id, now=now)

    assert first == second
    assert _snapshot_count() == 1


def test_re_evaluation_overwrites_the_single_snapshot(org, ready_cell, pastor):
    readiness_service.evaluate_readiness(ready_cell.cell.id, org.id)
    criteria_service.create_criterion(pastor.id, {
        "name": "Huge cell", "criteria_type": "member_count",
        "threshold_value": 28, "weight": 1, "is_required": True,
    })
    snap = readiness_service.evaluate_readiness(ready_cell.cell.id, org.id)

    assert _snapshot_count() == 1
    assert snap["readiness_score"] == 50.0
    assert snap["status"] == "preparing"


def test_cross_organization_evaluation_is_not_found(other_org, ready_cell):
    with pytest.raises(NotFoundError):
        readiness_service.evaluate_readiness(ready_cell.cell.id, other_org.id)


# ── Batch ────────────────────────────────────────────────────────────────


def test_batch_reports_failures_and_continues(org, make_cell, monkeypatch):
    good = make_cell(org, name="Good")
    bad = make_cell(org, name="Bad")
    original = readiness_service.compute_readiness

    def flaky(cell, settings, *, now):
        if cell.id == bad.cell.id:
            raise ValidationError("criteria could not be loaded")
        return original(cell, settings, now=now)

    monkeypatch.setattr(readiness_service, "compute_readiness", flaky)
    result = readiness_service.evaluate_readiness_batch(org.id)

    assert result["cells_total"] == 2
    assert result["cells_updated"] == 1
    outcomes = {r["cell_id"]: r["status"] for r in result["results"]}
    assert outcomes == {good.cell.id: "ok", bad.cell.id: "error"}
    assert _snapshot_count() == 1


def test_batch_requires_org_wide_role(org, ready_cell, pastor):
    with pytest.raises(PermissionDeniedError):
        readiness_service.evaluate_organization_for_actor(ready_cell.leader.id)

    result = readiness_service.evaluate_organization_for_actor(pastor.id)
    assert result["cells_updated"] == 1


def test_designated_approver_may_run_batch(org, ready_cell):
    org.approver_id = ready_cell.supervisor.id
    _db.session.commit()
    result = readiness_service.evaluate_organization_for_actor(ready_cell.supervisor.id)
    assert result["cells_total"] == 1


# ── Listing & dashboard ──────────────────────────────────────────────────


def test_list_snapshots_respects_visibility_and_filters(org, make_cell, pastor):
    a = make_cell(org, name="A")
    b = make_cell(org, name="B", members=4, apprentice_score=None)
    readiness_service.evaluate_readiness_batch(org.id)

    items, total = readiness_service.list_snapshots(pastor.id)
    assert total == 2
    assert items[0]["cell_id"] == a.cell.id  # best score first

    items, total = readiness_service.list_snapshots(b.leader.id)
    assert total == 1
    assert items[0]["cell_id"] == b.cell.id

    items, total = readiness_service.list_snapshots(pastor.id, status="overdue")
    assert [i["cell_id"] for i in items] == [a.cell.id]

    with pytest.raises(ValidationError):
        readiness_service.list_snapshots(pastor.id, status="bogus")


def test_get_snapshot_before_evaluation_is_not_found(ready_cell):
    with pytest.raises(NotFoundError):
        readiness_service.get_snapshot(ready_cell.leader.id, ready_cell.cell.id)


def test_dashboard_summarizes_visible_cells(org, make_cell, pastor):
    make_cell(org, name="A")
    make_cell(org, name="B", members=4, apprentice_score=None)
    readiness_service.evaluate_readiness_batch(org.id)

    board = readiness_service.dashboard(pastor.id)
    assert board["total_cells"] == 2
    assert board["evaluated_cells"] == 2
    assert board["ready_cells"] == 1
    assert board["status_distribution"]["overdue"] == 1
    assert board["top_alerts"][0]["alert_type"] == "ready_for_multiplication"
    assert board["alert_summary"]["total"] == 2
