"""
Criteria registry: per-organization readiness criteria.

Each MultiplicationCriterion row is converted into one typed variant
(MemberCountCriterion, PotentialLeadersCriterion, ...). A variant knows
which cell fact it measures and how to phrase a recommendation when it is
unmet, so the readiness evaluator dispatches through CRITERION_VARIANTS and
never through an untyped key-value bag.

Organizations without active criteria fall back to default_criteria().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

from sqlalchemy import select

from cellhub.core.exceptions import ConflictError, ValidationError
from cellhub.models import db
from cellhub.models.multiplication import CRITERIA_TYPES, MultiplicationCriterion
from cellhub.services import permission_service
from cellhub.services.cell_facts import CellFacts
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.services.scoring import CriterionResult, criterion_score
from cellhub.services.settings_service import OrgSettings
from cellhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

# Organization roles allowed to change the registry
EDIT_ROLES = {"admin", "pastor", "supervisor", "leader"}
DELETE_ROLES = {"admin", "pastor"}

MIN_WEIGHT = 0.01
MAX_WEIGHT = 1.0


# ── Variants ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Criterion:
    name: str
    threshold: float
    weight: float
    is_required: bool = False
    description: str = ""
    id: int | None = None

    criteria_type: ClassVar[str] = ""

    def measure(self, facts: CellFacts) -> float:
        raise NotImplementedError

    def recommendation(self, actual: float) -> str:
        raise NotImplementedError

    def evaluate(self, facts: CellFacts) -> CriterionResult:
        actual = float(self.measure(facts))
        met = actual >= self.threshold
        return CriterionResult(
            name=self.name,
            criteria_type=self.criteria_type,
            threshold=float(self.threshold),
            actual=actual,
            weight=float(self.weight),
            is_required=self.is_required,
            met=met,
            score=criterion_score(actual, self.threshold),
            recommendation="" if met else self.recommendation(actual),
        )


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class MemberCountCriterion(Criterion):
    criteria_type: ClassVar[str] = "member_count"

    def measure(self, facts):
        return facts.member_count

    def recommendation(self, actual):
        return f"Grow the cell from {_fmt(actual)} to {_fmt(self.threshold)} active members."


@dataclass(frozen=True)
class PotentialLeadersCriterion(Criterion):
    criteria_type: ClassVar[str] = "potential_leaders"

    def measure(self, facts):
        return facts.potential_leaders

    def recommendation(self, actual):
        return (
            f"Develop apprentices: {_fmt(actual)} of {_fmt(self.threshold)} "
            "potential leaders meet the leadership threshold."
        )


@dataclass(frozen=True)
class AverageAttendanceCriterion(Criterion):
    criteria_type: ClassVar[str] = "average_attendance"

    def measure(self, facts):
        return facts.average_attendance

    def recommendation(self, actual):
        return f"Raise average attendance from {_fmt(actual)}% to {_fmt(self.threshold)}%."


@dataclass(frozen=True)
class MeetingFrequencyCriterion(Criterion):
    criteria_type: ClassVar[str] = "meeting_frequency"

    def measure(self, facts):
        return facts.meeting_frequency

    def recommendation(self, actual):
        return f"Meet at least {_fmt(self.threshold)} times a month (currently {_fmt(actual)})."


@dataclass(frozen=True)
class CellAgeCriterion(Criterion):
    criteria_type: ClassVar[str] = "cell_age_months"

    def measure(self, facts):
        return facts.cell_age_months

    def recommendation(self, actual):
        return f"Let the cell mature: {_fmt(actual)} of {_fmt(self.threshold)} months."


@dataclass(frozen=True)
class LeaderMaturityCriterion(Criterion):
    criteria_type: ClassVar[str] = "leader_maturity"

    def measure(self, facts):
        return facts.leader_maturity

    def recommendation(self, actual):
        return (
            f"Mentor the cell leader: leadership score {_fmt(actual)}, "
            f"target {_fmt(self.threshold)}."
        )


@dataclass(frozen=True)
class GrowthRateCriterion(Criterion):
    criteria_type: ClassVar[str] = "growth_rate"

    def measure(self, facts):
        return facts.growth_rate

    def recommendation(self, actual):
        return f"Invite new people: growth is {_fmt(actual)}%, target {_fmt(self.threshold)}%."


@dataclass(frozen=True)
class StabilityCriterion(Criterion):
    criteria_type: ClassVar[str] = "stability_score"

    def measure(self, facts):
        return facts.stability_score

    def recommendation(self, actual):
        return (
            f"Strengthen retention: {_fmt(actual)}% of members are settled, "
            f"target {_fmt(self.threshold)}%."
        )


CRITERION_VARIANTS: dict[str, type[Criterion]] = {
    cls.criteria_type: cls
    for cls in (
        MemberCountCriterion,
        PotentialLeadersCriterion,
        AverageAttendanceCriterion,
        MeetingFrequencyCriterion,
        CellAgeCriterion,
        LeaderMaturityCriterion,
        GrowthRateCriterion,
        StabilityCriterion,
    )
}


def from_row(row: MultiplicationCriterion) -> Criterion:
    variant = CRITERION_VARIANTS.get(row.criteria_type)
    if variant is None:
        raise ValidationError(
            f"Unknown criteria_type {row.criteria_type!r}",
            details={"criteria_type": row.criteria_type, "criterion_id": row.id},
        )
    return variant(
        id=row.id,
        name=row.name,
        threshold=row.threshold_value,
        weight=row.weight,
        is_required=row.is_required,
        description=row.description or "",
    )


def default_criteria(settings: OrgSettings | None = None) -> list[Criterion]:
    """Built-in criteria used when an organization configured none."""
    min_members = settings.min_members if settings else 12
    return [
        MemberCountCriterion("Minimum members", min_members, 0.30, is_required=True),
        PotentialLeadersCriterion("Potential leaders", 1, 0.25, is_required=True),
        AverageAttendanceCriterion("Average attendance", 70, 0.15),
        MeetingFrequencyCriterion("Meeting frequency", 3, 0.10),
        CellAgeCriterion("Cell age", 6, 0.10),
        StabilityCriterion("Stability", 70, 0.10),
    ]


def load_criteria(organization_id: int, settings: OrgSettings | None = None) -> list[Criterion]:
    """Active criteria of the organization as typed variants, in id order."""
    rows = db.session.execute(
        select(MultiplicationCriterion)
        .where(
            MultiplicationCriterion.organization_id == organization_id,
            MultiplicationCriterion.is_active.is_(True),
        )
        .order_by(MultiplicationCriterion.id)
    ).scalars().all()
    if not rows:
        return default_criteria(settings)
    return [from_row(r) for r in rows]


# ── Registry CRUD ────────────────────────────────────────────────────────────

def _validate(data: dict, *, partial: bool = False) -> dict:
    errors = {}
    clean = {}

    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if not name:
            errors["name"] = "name is required"
        clean["name"] = name

    if "criteria_type" in data or not partial:
        ctype = data.get("criteria_type")
        if ctype not in CRITERIA_TYPES:
            errors["criteria_type"] = f"must be one of {sorted(CRITERIA_TYPES)}"
        clean["criteria_type"] = ctype

    if "threshold_value" in data or not partial:
        try:
            threshold = float(data.get("threshold_value"))
            if threshold < 0:
                errors["threshold_value"] = "must be >= 0"
            clean["threshold_value"] = threshold
        except (TypeError, ValueError):
            errors["threshold_value"] = "must be a number"

    if "weight" in data or not partial:
        try:
            weight = float(data.get("weight", 1.0))
            if not MIN_WEIGHT <= weight <= MAX_WEIGHT:
                errors["weight"] = f"must be between {MIN_WEIGHT} and {MAX_WEIGHT}"
            clean["weight"] = weight
        except (TypeError, ValueError):
            errors["weight"] = "must be a number"

    for flag in ("is_required", "is_active"):
        if flag in data:
            clean[flag] = bool(data[flag])
    if "description" in data:
        clean["description"] = data.get("description") or ""

    if errors:
        raise ValidationError("Invalid criterion", details=errors)
    return clean


def list_criteria(actor_id: int, *, is_active: bool | None = None, criteria_type: str | None = None) -> list[dict]:
    actor = permission_service.get_actor(actor_id)
    stmt = select(MultiplicationCriterion).where(
        MultiplicationCriterion.organization_id == actor.organization_id,
    )
    if is_active is not None:
        stmt = stmt.where(MultiplicationCriterion.is_active.is_(is_active))
    if criteria_type:
        stmt = stmt.where(MultiplicationCriterion.criteria_type == criteria_type)
    stmt = stmt.order_by(MultiplicationCriterion.weight.desc(), MultiplicationCriterion.id)
    return [c.to_dict() for c in db.session.execute(stmt).scalars().all()]


def create_criterion(actor_id: int, data: dict) -> dict:
    actor = permission_service.get_actor(actor_id)
    permission_service.require(
        actor.role in EDIT_ROLES, "create readiness criteria", actor.id,
    )
    clean = _validate(data)

    duplicate = db.session.execute(
        select(MultiplicationCriterion.id).where(
            MultiplicationCriterion.organization_id == actor.organization_id,
            MultiplicationCriterion.name == clean["name"],
        )
    ).scalar_one_or_none()
    if duplicate is not None:
        raise ConflictError("MultiplicationCriterion", "name", clean["name"])

    criterion = MultiplicationCriterion(organization_id=actor.organization_id, **clean)
    db.session.add(criterion)
    commit_or_raise("MultiplicationCriterion", "name", clean["name"])
    logger.info(
        "Criterion created id=%s type=%s", criterion.id, criterion.criteria_type,
        extra={"organization_id": actor.organization_id, "actor_id": actor.id},
    )
    return criterion.to_dict()


def update_criterion(actor_id: int, criterion_id: int, data: dict) -> dict:
    actor = permission_service.get_actor(actor_id)
    permission_service.require(
        actor.role in EDIT_ROLES, "update readiness criteria", actor.id,
    )
    criterion = get_scoped(
        MultiplicationCriterion, criterion_id, organization_id=actor.organization_id,
    )
    clean = _validate(data, partial=True)
    for key, value in clean.items():
        setattr(criterion, key, value)
    commit_or_raise("MultiplicationCriterion", "name", criterion.name)
    logger.info(
        "Criterion updated id=%s fields=%s", criterion.id, sorted(clean),
        extra={"organization_id": actor.organization_id, "actor_id": actor.id},
    )
    return criterion.to_dict()


def delete_criterion(actor_id: int, criterion_id: int) -> None:
    actor = permission_service.get_actor(actor_id)
    permission_service.require(
        actor.role in DELETE_ROLES, "delete readiness criteria", actor.id,
    )
    criterion = get_scoped(
        MultiplicationCriterion, criterion_id, organization_id=actor.organization_id,
    )
    db.session.delete(criterion)
    commit_or_raise("MultiplicationCriterion", "id", str(criterion_id))
    logger.info(
        "Criterion deleted id=%s", criterion_id,
        extra={"organization_id": actor.organization_id, "actor_id": actor.id},
    )
