"""
Eligibility summary: can this cell multiply now, and can this actor start it?
"""

from __future__ import annotations

import logging
from datetime import datetime

from cellhub.models.base import utcnow
from cellhub.models.cell import Cell
from cellhub.services import permission_service, scoring
from cellhub.services.candidate_service import (
    prior_placement_counts,
    qualify_candidates,
    successor_pool,
)
from cellhub.services.cell_facts import load_member_facts
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.services.multiplication_service import find_active_process
from cellhub.services.settings_service import resolve_settings

logger = logging.getLogger(__name__)


def compute_eligibility(cell_id: int, actor_id: int, *, now: datetime | None = None) -> dict:
    """Score, requirement breakdown and recommendations for one cell."""
    now = now or utcnow()
    actor = permission_service.get_actor(actor_id)
    cell = get_scoped(Cell, cell_id, organization_id=actor.organization_id)
    settings = resolve_settings(permission_service.get_organization(cell.organization_id))

    members = load_member_facts(cell.id)
    pool = successor_pool(members)
    candidates = qualify_candidates(
        pool,
        now=now,
        threshold=settings.leadership_threshold,
        placements=prior_placement_counts(m.person_id for m in pool),
    )
    facts = scoring.EligibilityFacts(
        member_count=len(members),
        qualified_leader_count=len(candidates),
        stability_estimate=settings.stability_placeholder,
        min_members=settings.min_members,
    )
    active = find_active_process(cell.id)
    requirements = scoring.eligibility_requirements(
        facts,
        user_can_initiate=permission_service.is_cell_manager(cell, actor.id),
        has_active_process=active is not None,
    )

    result = {
        "cell_id": cell.id,
        "cell_name": cell.name,
        "score": scoring.eligibility_score(facts),
        "eligible": requirements["minimum_members"]["met"] and requirements["qualified_leaders"]["met"],
        "can_initiate_multiplication": all(r["met"] for r in requirements.values()),
        "requirements": requirements,
        "recommendations": scoring.eligibility_recommendations(requirements),
        "qualified_candidates": [c.to_dict() for c in candidates],
        "active_process_id": active.id if active else None,
    }
    logger.debug(
        "Eligibility computed: score=%s can_initiate=%s", result["score"], result["can_initiate_multiplication"],
        extra={"organization_id": cell.organization_id, "cell_id": cell.id, "actor_id": actor.id},
    )
    return result
