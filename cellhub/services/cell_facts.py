"""
Cell facts: the directory reads the readiness and eligibility math runs on.

All metrics are measured as of ``now`` over a trailing window
(READINESS_WINDOW_DAYS, default 90 days):

    member_count        active memberships
    potential_leaders   apprentices with leadership_score >= leadership threshold
    meeting_frequency   meetings per 30 days inside the window
    average_attendance  mean attendance / enrolled * 100, capped at 100
    cell_age_months     floor(days since creation / 30)
    leader_maturity     leadership_score of the cell leader
    growth_rate         joins inside the window / members before it * 100
    stability_score     share of members with >= 90 days tenure * 100
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select

from cellhub.models import db
from cellhub.models.base import as_utc
from cellhub.models.cell import Cell, CellMeeting, CellMember
from cellhub.models.organization import Person

logger = logging.getLogger(__name__)

_MONTH_DAYS = 30
_STABLE_TENURE_DAYS = 90


@dataclass(frozen=True)
class MemberFacts:
    """One active member of a cell, as seen by the qualifier and the suggester."""

    person_id: int
    full_name: str
    leadership_score: float
    joined_at: datetime
    is_apprentice: bool = False
    engagement_score: float = 0.0
    cell_role: str = "member"


@dataclass(frozen=True)
class CellFacts:
    cell_id: int
    member_count: int = 0
    potential_leaders: int = 0
    meeting_frequency: float = 0.0
    average_attendance: float = 0.0
    cell_age_months: int = 0
    leader_maturity: float = 0.0
    growth_rate: float = 0.0
    stability_score: float = 0.0
    has_leader: bool = False
    recent_joins: int = 0
    join_dates: tuple = field(default=(), compare=False)
    created_at: datetime | None = field(default=None, compare=False)

    def to_dict(self):
        return {
            "member_count": self.member_count,
            "potential_leaders": self.potential_leaders,
            "meeting_frequency": self.meeting_frequency,
            "average_attendance": self.average_attendance,
            "cell_age_months": self.cell_age_months,
            "leader_maturity": self.leader_maturity,
            "growth_rate": self.growth_rate,
            "stability_score": self.stability_score,
            "has_leader": self.has_leader,
            "recent_joins": self.recent_joins,
        }


def active_memberships(cell_id: int) -> list:
    """(CellMember, Person) rows of the cell's active roster."""
    stmt = (
        select(CellMember, Person)
        .join(Person, Person.id == CellMember.person_id)
        .where(CellMember.cell_id == cell_id, CellMember.is_active.is_(True))
        .order_by(CellMember.id)
    )
    return db.session.execute(stmt).all()


def load_member_facts(cell_id: int) -> list[MemberFacts]:
    """Roster of a cell as MemberFacts for the candidate qualifier and suggester."""
    return [
        MemberFacts(
            person_id=person.id,
            full_name=person.full_name,
            leadership_score=person.leadership_score or 0,
            joined_at=as_utc(member.joined_at),
            is_apprentice=member.is_apprentice,
            engagement_score=member.engagement_score or 0,
            cell_role=member.role,
        )
        for member, person in active_memberships(cell_id)
    ]


def measure_cell(
    cell: Cell,
    *,
    now: datetime,
    leadership_threshold: float = 60,
    window_days: int = 90,
) -> CellFacts:
    """Measure every readiness metric of one cell."""
    window_start = now - timedelta(days=window_days)
    roster = active_memberships(cell.id)
    member_count = len(roster)
    join_dates = tuple(sorted(as_utc(m.joined_at) for m, _ in roster))

    potential_leaders = sum(
        1 for m, p in roster
        if m.is_apprentice and (p.leadership_score or 0) >= leadership_threshold
    )

    meetings = db.session.execute(
        select(CellMeeting).where(
            CellMeeting.cell_id == cell.id,
            CellMeeting.held_on >= window_start.date(),
            CellMeeting.held_on <= now.date(),
        )
    ).scalars().all()
    window_months = window_days / _MONTH_DAYS if window_days > 0 else 1
    meeting_frequency = round(len(meetings) / window_months, 2)

    ratios = []
    for meeting in meetings:
        enrolled = meeting.members_enrolled or member_count
        if enrolled > 0:
            ratios.append(min(meeting.attendance_count / enrolled * 100, 100.0))
    average_attendance = round(sum(ratios) / len(ratios), 1) if ratios else 0.0

    created_at = as_utc(cell.created_at) or now
    cell_age_months = max((now - created_at).days // _MONTH_DAYS, 0)

    leader = db.session.get(Person, cell.leader_id) if cell.leader_id else None
    leader_maturity = float(leader.leadership_score or 0) if leader else 0.0

    recent_joins = sum(1 for d in join_dates if window_start <= d <= now)
    base = member_count - recent_joins
    if base > 0:
        growth_rate = round(recent_joins / base * 100, 1)
    else:
        growth_rate = 100.0 if recent_joins else 0.0

    if member_count:
        tenured = sum(1 for d in join_dates if (now - d).days >= _STABLE_TENURE_DAYS)
        stability_score = round(tenured / member_count * 100, 1)
    else:
        stability_score = 0.0

    return CellFacts(
        cell_id=cell.id,
        member_count=member_count,
        potential_leaders=potential_leaders,
        meeting_frequency=meeting_frequency,
        average_attendance=average_attendance,
        cell_age_months=cell_age_months,
        leader_maturity=leader_maturity,
        growth_rate=growth_rate,
        stability_score=stability_score,
        has_leader=cell.leader_id is not None,
        recent_joins=recent_joins,
        join_dates=join_dates,
        created_at=created_at,
    )
