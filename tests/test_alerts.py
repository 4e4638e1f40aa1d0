"""
Tests: alert generator: precedence, visibility, filters and summary.
"""

import pytest

from cellhub.core.exceptions import ValidationError
from cellhub.models import db as _db
from cellhub.services import alert_service, readiness_service
from cellhub.services.alert_service import classify_alert

FLOORS = {"slow_growth_pct": 5, "low_attendance_pct": 60}


@pytest.mark.parametrize(
    "status, facts, expected",
    [
        ("ready", {"potential_leaders": 0, "growth_rate": 0, "average_attendance": 0}, "ready_for_multiplication"),
        ("overdue", {"potential_leaders": 1, "has_leader": True}, "ready_for_multiplication"),
        ("preparing", {"potential_leaders": 0, "growth_rate": 0}, "missing_leader"),
        ("preparing", {"potential_leaders": 2, "has_leader": False}, "missing_leader"),
        ("preparing", {"potential_leaders": 1, "growth_rate": 4.9, "average_attendance": 10}, "slow_growth"),
        ("not_ready", {"potential_leaders": 1, "growth_rate": 5, "average_attendance": 59}, "low_attendance"),
        ("not_ready", {"potential_leaders": 1, "growth_rate": 5, "average_attendance": 60}, None),
    ],
)
def test_classification_precedence(status, facts, expected):
    assert classify_alert(status, facts, **FLOORS) == expected


def test_ready_and_low_attendance_cell_yields_only_ready_alert(org, ready_cell, pastor):
    readiness_service.evaluate_readiness(ready_cell.cell.id, org.id)
    result = alert_service.list_alerts(pastor.id)

    assert len(result["alerts"]) == 1
    alert = result["alerts"][0]
    assert alert["alert_type"] == "ready_for_multiplication"
    assert alert["priority"] == 1
    assert alert["cell_id"] == ready_cell.cell.id


def _two_cells(org, make_cell):
    ready = make_cell(org, name="Ready")
    weak = make_cell(org, name="Weak", members=6, apprentice_score=None)
    readiness_service.evaluate_readiness_batch(org.id)
    return ready, weak


def test_sorted_by_priority_with_summary(org, make_cell, pastor):
    ready, weak = _two_cells(org, make_cell)
    result = alert_service.list_alerts(pastor.id)

    assert [a["cell_id"] for a in result["alerts"]] == [ready.cell.id, weak.cell.id]
    assert result["summary"] == {
        "total": 2,
        "high": 1,
        "medium": 1,
        "low": 0,
        "by_type": {
            "ready_for_multiplication": 1,
            "missing_leader": 1,
            "slow_growth": 0,
            "low_attendance": 0,
        },
    }


def test_filters_and_limit(org, make_cell, pastor):
    ready, weak = _two_cells(org, make_cell)

    only_missing = alert_service.list_alerts(pastor.id, alert_type="missing_leader")
    assert [a["cell_id"] for a in only_missing["alerts"]] == [weak.cell.id]

    by_priority = alert_service.list_alerts(pastor.id, priority=1)
    assert [a["cell_id"] for a in by_priority["alerts"]] == [ready.cell.id]

    by_cell = alert_service.list_alerts(pastor.id, cell_id=weak.cell.id)
    assert len(by_cell["alerts"]) == 1

    limited = alert_service.list_alerts(pastor.id, limit=1)
    assert len(limited["alerts"]) == 1
    assert limited["summary"]["total"] == 2

    with pytest.raises(ValidationError):
        alert_service.list_alerts(pastor.id, alert_type="everything")


def test_visibility_by_role(org, make_cell, make_person):
    ready, weak = _two_cells(org, make_cell)
    member = make_person(org, role="member")
    _db.session.commit()

    assert alert_service.list_alerts(member.id)["alerts"] == []

    leader_view = alert_service.list_alerts(weak.leader.id)
    assert [a["cell_id"] for a in leader_view["alerts"]] == [weak.cell.id]

    supervisor_view = alert_service.list_alerts(ready.supervisor.id)
    assert [a["cell_id"] for a in supervisor_view["alerts"]] == [ready.cell.id]


def test_designated_approver_sees_every_cell(org, make_cell):
    ready, weak = _two_cells(org, make_cell)
    org.approver_id = ready.supervisor.id
    _db.session.commit()

    view = alert_service.list_alerts(ready.supervisor.id)
    assert {a["cell_id"] for a in view["alerts"]} == {ready.cell.id, weak.cell.id}


@pytest.mark.parametrize("role", ["leader", "member"])
def test_designated_approver_of_any_role_sees_every_cell(org, make_cell, make_person, role):
    ready, weak = _two_cells(org, make_cell)
    approver = weak.leader if role == "leader" else make_person(org, role="member")
    org.approver_id = approver.id
    _db.session.commit()

    view = alert_service.list_alerts(approver.id)
    assert {a["cell_id"] for a in view["alerts"]} == {ready.cell.id, weak.cell.id}
    assert readiness_service.dashboard(approver.id)["total_cells"] == 2


def test_organization_floor_overrides(org, pastor, make_cell):
    weak = make_cell(org, name="Weak", members=6, apprentice_score=72)
    readiness_service.evaluate_readiness(weak.cell.id, org.id)

    # leader present and growth 0 < 5: slow growth
    assert alert_service.list_alerts(pastor.id)["alerts"][0]["alert_type"] == "slow_growth"

    org.settings = {"slow_growth_pct": 0}
    _db.session.commit()
    assert alert_service.list_alerts(pastor.id)["alerts"][0]["alert_type"] == "low_attendance"
