"""
Member distribution suggester.

Partitions the active roster of a source cell into four buckets:

    stays_source  current leader/supervisor, and the most attached members
    moves_new     the least attached members, up to the target new-cell size
    new_leader    the best qualified apprentice (never invented)
    undecided     members without participation history

Attachment = engagement_score + 2 * whole months in the cell. The target
new-cell size is round(total * new_cell_ratio) including the new leader,
with the ratio clamped to [0.2, 0.8].

suggest_split() is pure; the state machine persists its rows as
MemberAssignment and returns the Suggestion to the caller.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime

from cellhub.models.cell import CELL_MANAGER_ROLES
from cellhub.services.candidate_service import months_between, qualify_candidates, successor_pool
from cellhub.services.cell_facts import MemberFacts

logger = logging.getLogger(__name__)

DEFAULT_NEW_CELL_RATIO = 0.5
MIN_NEW_CELL_RATIO = 0.2
MAX_NEW_CELL_RATIO = 0.8

MANAGER_PRIORITY = 100.0
UNDECIDED_PRIORITY = 0.0


@dataclass(frozen=True)
class SuggestedAssignment:
    member_id: int
    full_name: str
    assignment_type: str
    role_in_new_cell: str
    priority_score: float
    reasoning: str

    def to_dict(self):
        return {
            "member_id": self.member_id,
            "full_name": self.full_name,
            "assignment_type": self.assignment_type,
            "role_in_new_cell": self.role_in_new_cell,
            "priority_score": self.priority_score,
            "reasoning": self.reasoning,
        }


@dataclass
class Suggestion:
    assignments: list[SuggestedAssignment] = field(default_factory=list)
    new_leader_id: int | None = None
    target_new_cell_size: int = 0
    recommendations: list[str] = field(default_factory=list)

    def summary(self):
        counts = {"stays_source": 0, "moves_new": 0, "new_leader": 0, "undecided": 0}
        for a in self.assignments:
            counts[a.assignment_type] += 1
        return counts

    def to_dict(self):
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "summary": self.summary(),
            "new_leader_id": self.new_leader_id,
            "target_new_cell_size": self.target_new_cell_size,
            "recommendations": list(self.recommendations),
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_ratio(ratio) -> float:
    try:
        ratio = float(ratio)
    except (TypeError, ValueError):
        return DEFAULT_NEW_CELL_RATIO
    return min(max(ratio, MIN_NEW_CELL_RATIO), MAX_NEW_CELL_RATIO)


def attachment(member: MemberFacts, now: datetime) -> float:
    return (member.engagement_score or 0) + 2 * months_between(member.joined_at, now)


def _has_no_history(member: MemberFacts, now: datetime) -> bool:
    return (member.engagement_score or 0) <= 0 and months_between(member.joined_at, now) < 1


def _split(members: list[MemberFacts], moves: int, now: datetime) -> list[SuggestedAssignment]:
    """Move the `moves` least attached members; keep the rest."""
    if not members:
        return []
    ranked = sorted(members, key=lambda m: (attachment(m, now), m.person_id))
    moves = min(max(moves, 0), len(ranked))
    scores = [attachment(m, now) for m in ranked]
    spread = (max(scores) - min(scores)) or 1.0
    if 0 < moves < len(ranked):
        cut = (scores[moves - 1] + scores[moves]) / 2
    elif moves == 0:
        cut = scores[0]
    else:
        cut = scores[-1]

    out = []
    for i, member in enumerate(ranked):
        moving = i < moves
        priority = round(min(50 + 50 * abs(scores[i] - cut) / spread, 100.0), 1)
        if moving:
            reasoning = (
                f"Lower attachment to the current cell ({scores[i]:g}); "
                "a good fit to help start the new cell."
            )
        else:
            reasoning = (
                f"Strong attachment to the current cell ({scores[i]:g}); "
                "keeps the source cell stable."
            )
        out.append(SuggestedAssignment(
            member_id=member.person_id,
            full_name=member.full_name,
            assignment_type="moves_new" if moving else "stays_source",
            role_in_new_cell="member",
            priority_score=priority,
            reasoning=reasoning,
        ))
    return out


def suggest_split(
    members: list[MemberFacts],
    *,
    now: datetime,
    leadership_threshold: float = 60,
    new_cell_ratio: float | None = None,
    apprentice_ratio: float | None = None,
) -> Suggestion:
    """Propose a placement for every active member of the source cell."""
    ratio = clamp_ratio(DEFAULT_NEW_CELL_RATIO if new_cell_ratio is None else new_cell_ratio)
    suggestion = Suggestion(target_new_cell_size=_round_half_up(len(members) * ratio))

    managers = [m for m in members if m.cell_role in CELL_MANAGER_ROLES]
    pool = [m for m in members if m.cell_role not in CELL_MANAGER_ROLES]

    for m in sorted(managers, key=lambda m: m.person_id):
        suggestion.assignments.append(SuggestedAssignment(
            member_id=m.person_id,
            full_name=m.full_name,
            assignment_type="stays_source",
            role_in_new_cell="member",
            priority_score=MANAGER_PRIORITY,
            reasoning=f"Current cell {m.cell_role}; stays with the source cell.",
        ))

    candidates = qualify_candidates(
        successor_pool(pool), now=now, threshold=leadership_threshold,
    )
    new_leader = candidates[0] if candidates else None
    if new_leader is not None:
        suggestion.new_leader_id = new_leader.person_id
        suggestion.assignments.append(SuggestedAssignment(
            member_id=new_leader.person_id,
            full_name=new_leader.full_name,
            assignment_type="new_leader",
            role_in_new_cell="leader",
            priority_score=round(min(new_leader.leadership_score, 100.0), 1),
            reasoning=(
                f"Highest leadership score among apprentices ({new_leader.leadership_score:g}, "
                f"{new_leader.months_in_cell} months in the cell)."
            ),
        ))
    else:
        suggestion.recommendations.append(
            f"No apprentice meets the leadership threshold of {leadership_threshold:g}. "
            "Develop a new leader before continuing the multiplication."
        )

    rest = [m for m in pool if new_leader is None or m.person_id != new_leader.person_id]
    undecided = [m for m in rest if _has_no_history(m, now)]
    placeable = [m for m in rest if not _has_no_history(m, now)]

    for m in sorted(undecided, key=lambda m: m.person_id):
        suggestion.assignments.append(SuggestedAssignment(
            member_id=m.person_id,
            full_name=m.full_name,
            assignment_type="undecided",
            role_in_new_cell="member",
            priority_score=UNDECIDED_PRIORITY,
            reasoning="New member without participation history; place manually.",
        ))
    if undecided:
        suggestion.recommendations.append(
            f"Decide the placement of {len(undecided)} new member"
            f"{'s' if len(undecided) != 1 else ''} with the cell leader."
        )

    moves = max(suggestion.target_new_cell_size - (1 if new_leader else 0), 0)
    if apprentice_ratio is None:
        suggestion.assignments.extend(_split(placeable, moves, now))
    else:
        apprentices = [m for m in placeable if m.is_apprentice]
        others = [m for m in placeable if not m.is_apprentice]
        apprentice_moves = min(
            _round_half_up(len(apprentices) * min(max(float(apprentice_ratio), 0.0), 1.0)),
            moves,
        )
        suggestion.assignments.extend(_split(apprentices, apprentice_moves, now))
        suggestion.assignments.extend(_split(others, moves - apprentice_moves, now))

    logger.debug(
        "Distribution suggested: %s (target new cell %d)",
        suggestion.summary(), suggestion.target_new_cell_size,
    )
    return suggestion


def template_parameters(template) -> dict:
    """Suggester keyword arguments carried by a MultiplicationTemplate (or None)."""
    if template is None:
        return {}
    params = {}
    strategy = template.member_split_strategy or {}
    if strategy.get("new_cell_ratio") is not None:
        params["new_cell_ratio"] = float(strategy["new_cell_ratio"])
    if strategy.get("apprentice_new_cell_ratio") is not None:
        params["apprentice_ratio"] = float(strategy["apprentice_new_cell_ratio"])
    leader = template.leader_selection_criteria or {}
    if leader.get("min_leadership_score") is not None:
        params["leadership_threshold"] = float(leader["min_leadership_score"])
    return params
