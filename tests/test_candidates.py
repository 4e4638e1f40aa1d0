"""
Tests: candidate qualifier and the cell candidate listing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cellhub.core.exceptions import NotFoundError
from cellhub.models import db as _db
from cellhub.models.multiplication import MultiplicationProcess
from cellhub.services.candidate_service import (
    list_cell_candidates,
    months_between,
    prior_placement_counts,
    qualify_candidates,
    successor_pool,
)
from cellhub.services.cell_facts import MemberFacts

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _member(pid, score, days, *, role="member", apprentice=False):
    return MemberFacts(
        person_id=pid,
        full_name=f"P{pid}",
        leadership_score=score,
        joined_at=NOW - timedelta(days=days),
        is_apprentice=apprentice,
        cell_role=role,
    )


def test_months_between_counts_whole_thirty_day_months():
    assert months_between(NOW - timedelta(days=29), NOW) == 0
    assert months_between(NOW - timedelta(days=30), NOW) == 1
    assert months_between(NOW - timedelta(days=95), NOW) == 3
    assert months_between(NOW + timedelta(days=5), NOW) == 0


def test_threshold_is_inclusive_and_ordering_is_deterministic():
    members = [
        _member(1, 59.9, 400),
        _member(2, 60, 100),
        _member(3, 75, 60),
        _member(4, 60, 300),
        _member(5, 60, 300),
    ]
    result = qualify_candidates(members, now=NOW, threshold=60)
    # score desc, then tenure desc, then person id
    assert [c.person_id for c in result] == [3, 4, 5, 2]
    assert result[0].months_in_cell == 2


def test_prior_placements_are_attached():
    result = qualify_candidates([_member(7, 80, 90)], now=NOW, placements={7: 2})
    assert result[0].prior_placements == 2


def test_successor_pool_keeps_only_apprentices_outside_management():
    members = [
        _member(1, 90, 400, role="leader", apprentice=True),
        _member(2, 90, 400, role="supervisor"),
        _member(3, 70, 400, apprentice=True),
        _member(4, 72, 400),
    ]
    assert [m.person_id for m in successor_pool(members)] == [3]


def test_prior_placement_counts_only_completed_processes(org, ready_cell):
    apprentice = ready_cell.apprentice
    for status in ("completed", "completed", "cancelled"):
        _db.session.add(MultiplicationProcess(
            organization_id=org.id,
            source_cell_id=ready_cell.cell.id,
            status=status,
            new_leader_id=apprentice.id,
            multiplication_plan={"new_cell_name": "x"},
        ))
    _db.session.commit()

    assert prior_placement_counts([apprentice.id]) == {apprentice.id: 2}
    assert prior_placement_counts([]) == {}


def test_list_cell_candidates_returns_the_apprentice(ready_cell):
    result = list_cell_candidates(ready_cell.leader.id, ready_cell.cell.id)

    assert result["threshold"] == 60
    assert result["total"] == 1
    candidate = result["candidates"][0]
    assert candidate["person_id"] == ready_cell.apprentice.id
    assert candidate["leadership_score"] == 72
    assert candidate["is_apprentice"] is True
    assert candidate["months_in_cell"] == 6


def test_organization_threshold_override(org, ready_cell):
    org.settings = {"leadership_threshold": 75}
    _db.session.commit()

    result = list_cell_candidates(ready_cell.leader.id, ready_cell.cell.id)
    assert result["threshold"] == 75
    assert result["candidates"] == []


def test_cross_organization_cell_is_not_found(other_org, make_person, ready_cell):
    outsider = make_person(other_org, role="pastor")
    _db.session.commit()
    with pytest.raises(NotFoundError):
        list_cell_candidates(outsider.id, ready_cell.cell.id)


def test_high_scoring_non_apprentice_is_not_a_candidate(org, make_cell):
    ctx = make_cell(org, apprentice_score=None)
    ctx.regulars[0].leadership_score = 72
    _db.session.commit()

    result = list_cell_candidates(ctx.leader.id, ctx.cell.id)
    assert result["candidates"] == []
