"""
Score functions for eligibility and readiness.

Everything in this module is pure: no database access, no clock reads.
Callers pass ``now`` and the measured facts, and persist the results.

Eligibility score (0-100, integer):
    0.4 * min(member_count / min_members * 100, 100)
  + 0.3 * (100 if qualified_leader_count >= 1 else 0)
  + 0.3 * stability_estimate

Readiness score (0-100, one decimal):
    sum(weight_i * score_i) / sum(weight_i)
    score_i = min(actual_i / threshold_i * 100, 100); threshold 0 scores 100
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta

ELIGIBILITY_WEIGHTS = {
    "member_count": 0.4,
    "qualified_leaders": 0.3,
    "stability": 0.3,
}

# Readiness bands, highest first
OPTIMAL_SCORE = 90
READY_SCORE = 75
PREPARING_SCORE = 40

# Confidence when no optional criterion corroborates the required ones
NEUTRAL_CONFIDENCE = 50

# Forecasts count join rate per 30-day month
_MONTH_DAYS = 30

# Fixed order of eligibility requirements and their recommendations
REQUIREMENT_ORDER = (
    "minimum_members",
    "qualified_leaders",
    "user_permission",
    "no_active_process",
)


# ── Eligibility ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EligibilityFacts:
    member_count: int
    qualified_leader_count: int
    stability_estimate: float = 80
    min_members: int = 12


def member_count_subscore(member_count: int, min_members: int = 12) -> float:
    if min_members <= 0:
        return 100.0
    return min(member_count / min_members * 100, 100.0)


def eligibility_score(facts: EligibilityFacts) -> int:
    """Weighted eligibility score, rounded to an integer."""
    total = (
        ELIGIBILITY_WEIGHTS["member_count"]
        * member_count_subscore(facts.member_count, facts.min_members)
        + ELIGIBILITY_WEIGHTS["qualified_leaders"]
        * (100 if facts.qualified_leader_count >= 1 else 0)
        + ELIGIBILITY_WEIGHTS["stability"] * facts.stability_estimate
    )
    return int(round(total))


def eligibility_requirements(
    facts: EligibilityFacts,
    *,
    user_can_initiate: bool,
    has_active_process: bool,
) -> dict:
    """Structured required/current/met breakdown, in REQUIREMENT_ORDER."""
    return {
        "minimum_members": {
            "required": facts.min_members,
            "current": facts.member_count,
            "met": facts.member_count >= facts.min_members,
        },
        "qualified_leaders": {
            "required": 1,
            "current": facts.qualified_leader_count,
            "met": facts.qualified_leader_count >= 1,
        },
        "user_permission": {
            "required": True,
            "current": user_can_initiate,
            "met": user_can_initiate,
        },
        "no_active_process": {
            "required": True,
            "current": not has_active_process,
            "met": not has_active_process,
        },
    }


def eligibility_recommendations(requirements: dict) -> list[str]:
    """One recommendation per unmet requirement, in the fixed priority order."""
    recs = []
    for key in REQUIREMENT_ORDER:
        req = requirements[key]
        if req["met"]:
            continue
        if key == "minimum_members":
            missing = req["required"] - req["current"]
            recs.append(
                f"Grow the cell by {missing} more member{'s' if missing != 1 else ''} "
                f"to reach the minimum of {req['required']}."
            )
        elif key == "qualified_leaders":
            recs.append("Develop at least one apprentice to the leadership threshold.")
        elif key == "user_permission":
            recs.append("Only the cell leader or supervisor can start a multiplication.")
        else:
            recs.append("Finish or cancel the multiplication already in progress.")
    return recs


# ── Readiness ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CriterionResult:
    """Outcome of one criterion against one cell."""

    name: str
    criteria_type: str
    threshold: float
    actual: float
    weight: float
    is_required: bool
    met: bool
    score: float
    recommendation: str = ""

    def to_dict(self):
        d = asdict(self)
        d.pop("recommendation")
        return d


def criterion_score(actual: float, threshold: float) -> float:
    """Normalized 0-100 score of one criterion."""
    if threshold <= 0:
        return 100.0
    return round(min(actual / threshold * 100, 100.0), 1)


def readiness_score(results: list[CriterionResult]) -> float:
    total_weight = sum(r.weight for r in results)
    if total_weight <= 0:
        return 0.0
    return round(sum(r.weight * r.score for r in results) / total_weight, 1)


def required_met(results: list[CriterionResult]) -> bool:
    return all(r.met for r in results if r.is_required)


def near_miss(results: list[CriterionResult], margin: float) -> bool:
    """True when some required criterion is unmet by no more than margin * threshold."""
    return any(
        r.is_required and not r.met and r.actual >= r.threshold * (1 - margin)
        for r in results
    )


def classify_status(
    score: float,
    results: list[CriterionResult],
    *,
    now: datetime,
    projected: date | None,
    margin: float = 0.2,
) -> str:
    """Readiness band; boundaries belong to the higher band."""
    all_required = required_met(results)
    if all_required and projected is not None and now.date() >= projected:
        return "overdue"
    if all_required and score >= OPTIMAL_SCORE:
        return "optimal"
    if all_required and score >= READY_SCORE:
        return "ready"
    if score >= PREPARING_SCORE or near_miss(results, margin):
        return "preparing"
    return "not_ready"


def confidence_level(results: list[CriterionResult]) -> int:
    """Share of satisfied optional criteria, 0-100."""
    optional = [r for r in results if not r.is_required]
    if not optional:
        return NEUTRAL_CONFIDENCE
    return int(round(100 * sum(1 for r in optional if r.met) / len(optional)))


def _by_weight(results):
    # Stable: equal weights keep criteria order
    return sorted(results, key=lambda r: -r.weight)


def blocking_factors(results: list[CriterionResult]) -> list[dict]:
    return [
        {
            "name": r.name,
            "criteria_type": r.criteria_type,
            "threshold": r.threshold,
            "actual": r.actual,
            "weight": r.weight,
        }
        for r in _by_weight(results)
        if r.is_required and not r.met
    ]


def readiness_recommendations(results: list[CriterionResult]) -> list[str]:
    return [r.recommendation for r in _by_weight(results) if not r.met and r.recommendation]


def project_ready_date(
    results: list[CriterionResult],
    *,
    now: datetime,
    member_threshold: int,
    join_dates: list[datetime],
    cell_created_at: datetime,
    recent_joins: int,
    window_days: int = 90,
) -> date | None:
    """Date by which the cell should multiply, or a forecast of readiness.

    All required met: the day the member threshold was reached plus the
    multiplication window. Only member count missing: forecast from the join
    rate of the last window. Otherwise None.
    """
    if required_met(results):
        ordered = sorted(join_dates)
        if member_threshold >= 1 and len(ordered) >= member_threshold:
            reached = ordered[member_threshold - 1]
        else:
            reached = cell_created_at
        return (reached + timedelta(days=window_days)).date()

    blocking = [r for r in results if r.is_required and not r.met]
    if len(blocking) != 1 or blocking[0].criteria_type != "member_count":
        return None
    monthly_rate = recent_joins / (window_days / _MONTH_DAYS) if window_days > 0 else 0
    if monthly_rate <= 0:
        return None
    missing = max(blocking[0].threshold - blocking[0].actual, 0)
    months = math.ceil(missing / monthly_rate)
    return (now + timedelta(days=months * _MONTH_DAYS)).date()
