"""
Candidate qualifier: who in a cell is ready to lead a new one.

qualify_candidates() is a pure filter over MemberFacts. list_cell_candidates()
wraps it with the directory reads and the placement history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select

from cellhub.models import db
from cellhub.models.base import utcnow
from cellhub.models.cell import CELL_MANAGER_ROLES, Cell
from cellhub.models.multiplication import MultiplicationProcess
from cellhub.services import permission_service
from cellhub.services.cell_facts import MemberFacts, load_member_facts
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.services.settings_service import resolve_settings

logger = logging.getLogger(__name__)

_MONTH_DAYS = 30


@dataclass(frozen=True)
class QualifiedCandidate:
    person_id: int
    full_name: str
    leadership_score: float
    months_in_cell: int
    prior_placements: int
    is_apprentice: bool

    def to_dict(self):
        return {
            "person_id": self.person_id,
            "full_name": self.full_name,
            "leadership_score": self.leadership_score,
            "months_in_cell": self.months_in_cell,
            "prior_placements": self.prior_placements,
            "is_apprentice": self.is_apprentice,
        }


def months_between(start: datetime, now: datetime) -> int:
    """Whole 30-day months from start to now."""
    return max((now - start).days // _MONTH_DAYS, 0)


def qualify_candidates(
    members: list[MemberFacts],
    *,
    now: datetime,
    threshold: float = 60,
    placements: dict[int, int] | None = None,
) -> list[QualifiedCandidate]:
    """Members with leadership_score >= threshold, best first.

    Ordered by score, then tenure, then person id so the result is
    deterministic.
    """
    placements = placements or {}
    qualified = [
        QualifiedCandidate(
            person_id=m.person_id,
            full_name=m.full_name,
            leadership_score=m.leadership_score,
            months_in_cell=months_between(m.joined_at, now),
            prior_placements=placements.get(m.person_id, 0),
            is_apprentice=m.is_apprentice,
        )
        for m in members
        if m.leadership_score >= threshold
    ]
    qualified.sort(key=lambda c: (-c.leadership_score, -c.months_in_cell, c.person_id))
    return qualified


def successor_pool(members: list[MemberFacts]) -> list[MemberFacts]:
    """Members who could lead a new cell: apprentices who do not already manage this one.

    Used by eligibility, the candidate listing and the distribution suggester.
    """
    return [m for m in members if m.is_apprentice and m.cell_role not in CELL_MANAGER_ROLES]


def prior_placement_counts(person_ids) -> dict[int, int]:
    """Completed processes in which each person was the new leader."""
    ids = list(person_ids)
    if not ids:
        return {}
    rows = db.session.execute(
        select(MultiplicationProcess.new_leader_id, func.count(MultiplicationProcess.id))
        .where(
            MultiplicationProcess.status == "completed",
            MultiplicationProcess.new_leader_id.in_(ids),
        )
        .group_by(MultiplicationProcess.new_leader_id)
    ).all()
    return {person_id: count for person_id, count in rows}


def list_cell_candidates(actor_id: int, cell_id: int, *, now: datetime | None = None) -> dict:
    """Qualified leadership candidates of a cell, visible to any member of its organization."""
    actor = permission_service.get_actor(actor_id)
    cell = get_scoped(Cell, cell_id, organization_id=actor.organization_id)
    settings = resolve_settings(permission_service.get_organization(cell.organization_id))
    now = now or utcnow()

    members = successor_pool(load_member_facts(cell.id))
    placements = prior_placement_counts(m.person_id for m in members)
    candidates = qualify_candidates(
        members, now=now, threshold=settings.leadership_threshold, placements=placements,
    )
    return {
        "cell_id": cell.id,
        "threshold": settings.leadership_threshold,
        "candidates": [c.to_dict() for c in candidates],
        "total": len(candidates),
    }
