"""
Multiplication templates: reusable split strategies.

A template tunes the distribution suggester:
    member_split_strategy.new_cell_ratio             share of members moving (clamped 0.2-0.8)
    member_split_strategy.apprentice_new_cell_ratio  share of apprentices moving
    leader_selection_criteria.min_leadership_score   new-leader threshold override
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from cellhub.core.exceptions import ValidationError
from cellhub.models import db
from cellhub.models.multiplication import TEMPLATE_TYPES, MultiplicationTemplate
from cellhub.services import permission_service
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

EDIT_ROLES = {"admin", "pastor", "supervisor"}

_RATIO_KEYS = ("new_cell_ratio", "apprentice_new_cell_ratio")


def _validate(data: dict) -> dict:
    errors = {}
    name = (data.get("name") or "").strip()
    if not name:
        errors["name"] = "name is required"

    template_type = data.get("template_type", "balanced")
    if template_type not in TEMPLATE_TYPES:
        errors["template_type"] = f"must be one of {sorted(TEMPLATE_TYPES)}"

    strategy = data.get("member_split_strategy") or {}
    if not isinstance(strategy, dict):
        errors["member_split_strategy"] = "must be an object"
        strategy = {}
    for key in _RATIO_KEYS:
        if key in strategy:
            try:
                ratio = float(strategy[key])
            except (TypeError, ValueError):
                errors[key] = "must be a number"
                continue
            if not 0 <= ratio <= 1:
                errors[key] = "must be between 0 and 1"

    leader = data.get("leader_selection_criteria") or {}
    if not isinstance(leader, dict):
        errors["leader_selection_criteria"] = "must be an object"
        leader = {}
    if "min_leadership_score" in leader:
        try:
            score = float(leader["min_leadership_score"])
            if not 0 <= score <= 100:
                errors["min_leadership_score"] = "must be between 0 and 100"
        except (TypeError, ValueError):
            errors["min_leadership_score"] = "must be a number"

    if errors:
        raise ValidationError("Invalid template", details=errors)
    return {
        "name": name,
        "description": data.get("description") or "",
        "template_type": template_type,
        "member_split_strategy": strategy,
        "leader_selection_criteria": leader,
    }


def list_templates(actor_id: int, *, template_type: str | None = None, include_inactive: bool = False) -> list[dict]:
    actor = permission_service.get_actor(actor_id)
    stmt = select(MultiplicationTemplate).where(
        MultiplicationTemplate.organization_id == actor.organization_id,
    )
    if not include_inactive:
        stmt = stmt.where(MultiplicationTemplate.is_active.is_(True))
    if template_type:
        stmt = stmt.where(MultiplicationTemplate.template_type == template_type)
    stmt = stmt.order_by(MultiplicationTemplate.times_used.desc(), MultiplicationTemplate.id)
    return [t.to_dict() for t in db.session.execute(stmt).scalars().all()]


def create_template(actor_id: int, data: dict) -> dict:
    actor = permission_service.get_actor(actor_id)
    permission_service.require(actor.role in EDIT_ROLES, "create multiplication templates", actor.id)
    clean = _validate(data)

    template = MultiplicationTemplate(
        organization_id=actor.organization_id,
        created_by=actor.id,
        **clean,
    )
    db.session.add(template)
    commit_or_raise("MultiplicationTemplate", "name", clean["name"])
    logger.info(
        "Template created id=%s type=%s", template.id, template.template_type,
        extra={"organization_id": actor.organization_id, "actor_id": actor.id},
    )
    return template.to_dict()


def get_template(template_id: int, organization_id: int) -> MultiplicationTemplate:
    template = get_scoped(MultiplicationTemplate, template_id, organization_id=organization_id)
    if not template.is_active:
        raise ValidationError(
            "Template is inactive", details={"template_id": template_id},
        )
    return template


def increment_usage(template_id: int) -> None:
    """Bump times_used inside the caller's transaction (no commit)."""
    db.session.execute(
        update(MultiplicationTemplate)
        .where(MultiplicationTemplate.id == template_id)
        .values(times_used=MultiplicationTemplate.times_used + 1)
    )
