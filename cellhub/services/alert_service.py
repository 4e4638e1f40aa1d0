"""
Alert generator: derives at most one prioritized alert per cell from the
latest readiness snapshots. Alerts are computed on demand and never stored.

Precedence (first match wins):
    1  ready_for_multiplication   status ready / optimal / overdue
    2  missing_leader             no potential leader, or the cell has no leader
    3  slow_growth                growth_rate below the slow-growth floor
    4  low_attendance             average_attendance below the attendance floor
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from cellhub.core.exceptions import ValidationError
from cellhub.models import db
from cellhub.models.cell import Cell
from cellhub.models.multiplication import READY_STATUSES, ReadinessSnapshot
from cellhub.services import permission_service
from cellhub.services.settings_service import resolve_settings

logger = logging.getLogger(__name__)

ALERT_PRIORITIES = {
    "ready_for_multiplication": 1,
    "missing_leader": 2,
    "slow_growth": 3,
    "low_attendance": 4,
}

ALERT_MESSAGES = {
    "ready_for_multiplication": "{cell} is ready to multiply (score {score}).",
    "missing_leader": "{cell} has no leader ready to take a new cell.",
    "slow_growth": "{cell} grew {growth}% in the last window.",
    "low_attendance": "{cell} averages {attendance}% attendance.",
}


def classify_alert(snapshot_status: str, facts: dict, *, slow_growth_pct: float, low_attendance_pct: float) -> str | None:
    """Alert type for one cell, or None."""
    if snapshot_status in READY_STATUSES:
        return "ready_for_multiplication"
    if facts.get("potential_leaders", 0) < 1 or not facts.get("has_leader", True):
        return "missing_leader"
    if facts.get("growth_rate", 0) < slow_growth_pct:
        return "slow_growth"
    if facts.get("average_attendance", 0) < low_attendance_pct:
        return "low_attendance"
    return None


def summarize(alerts: list[dict]) -> dict:
    by_type = {t: 0 for t in ALERT_PRIORITIES}
    for a in alerts:
        by_type[a["alert_type"]] += 1
    return {
        "total": len(alerts),
        "high": sum(1 for a in alerts if a["priority"] == 1),
        "medium": sum(1 for a in alerts if a["priority"] == 2),
        "low": sum(1 for a in alerts if a["priority"] >= 3),
        "by_type": by_type,
    }


def list_alerts(
    actor_id: int,
    *,
    alert_type: str | None = None,
    priority: int | None = None,
    cell_id: int | None = None,
    limit: int | None = None,
) -> dict:
    """Alerts for the cells the actor may see, sorted by priority then cell id.

    The summary counts the filtered alerts before the limit is applied.
    """
    if alert_type is not None and alert_type not in ALERT_PRIORITIES:
        raise ValidationError("Invalid alert_type", details={"alert_type": alert_type})

    actor = permission_service.get_actor(actor_id)
    settings = resolve_settings(permission_service.get_organization(actor.organization_id))
    visible = permission_service.visible_cells_query(actor)
    if visible is None:
        return {"alerts": [], "summary": summarize([])}

    stmt = (
        select(ReadinessSnapshot, Cell)
        .join(Cell, Cell.id == ReadinessSnapshot.cell_id)
        .where(ReadinessSnapshot.cell_id.in_(visible.with_only_columns(Cell.id)))
    )
    if cell_id is not None:
        stmt = stmt.where(ReadinessSnapshot.cell_id == cell_id)

    alerts = []
    for snapshot, cell in db.session.execute(stmt).all():
        facts = snapshot.facts or {}
        kind = classify_alert(
            snapshot.status,
            facts,
            slow_growth_pct=settings.slow_growth_pct,
            low_attendance_pct=settings.low_attendance_pct,
        )
        if kind is None:
            continue
        alerts.append({
            "alert_type": kind,
            "priority": ALERT_PRIORITIES[kind],
            "cell_id": cell.id,
            "cell_name": cell.name,
            "leader_id": cell.leader_id,
            "supervisor_id": cell.supervisor_id,
            "readiness_status": snapshot.status,
            "readiness_score": snapshot.readiness_score,
            "message": ALERT_MESSAGES[kind].format(
                cell=cell.name,
                score=snapshot.readiness_score,
                growth=facts.get("growth_rate", 0),
                attendance=facts.get("average_attendance", 0),
            ),
            "last_evaluated_at": (
                snapshot.last_evaluated_at.isoformat() if snapshot.last_evaluated_at else None
            ),
        })

    if alert_type is not None:
        alerts = [a for a in alerts if a["alert_type"] == alert_type]
    if priority is not None:
        alerts = [a for a in alerts if a["priority"] == priority]
    alerts.sort(key=lambda a: (a["priority"], a["cell_id"]))

    summary = summarize(alerts)
    if limit is None:
        limit = settings.alert_default_limit
    if limit >= 0:
        alerts = alerts[:limit]

    logger.debug(
        "Alerts listed: %d of %d", len(alerts), summary["total"],
        extra={"organization_id": actor.organization_id, "actor_id": actor.id},
    )
    return {"alerts": alerts, "summary": summary}
