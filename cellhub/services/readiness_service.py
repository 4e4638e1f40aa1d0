"""
Readiness evaluator: scores every cell against its organization's criteria
and keeps the latest result in the cell's single ReadinessSnapshot row.

Evaluation is a pure function of the measured facts and ``now``: running it
twice with unchanged facts writes identical snapshots. Concurrent
evaluations of one cell resolve last-writer-wins on the unique cell_id.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cellhub.core.exceptions import (
    DependencyUnavailableError,
    NotFoundError,
    ValidationError,
)
from cellhub.models import db
from cellhub.models.base import utcnow
from cellhub.models.cell import Cell
from cellhub.models.multiplication import READINESS_STATUSES, READY_STATUSES, ReadinessSnapshot
from cellhub.services import permission_service, scoring
from cellhub.services.alert_service import list_alerts
from cellhub.services.cell_facts import CellFacts, measure_cell
from cellhub.services.criteria_service import load_criteria
from cellhub.services.helpers.scoped_queries import get_scoped
from cellhub.services.settings_service import resolve_settings
from cellhub.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_DASHBOARD_TOP_ALERTS = 5


def compute_readiness(cell: Cell, settings, *, now: datetime) -> dict:
    """Evaluate one cell without writing anything. Returns the snapshot fields."""
    criteria = load_criteria(cell.organization_id, settings)
    facts: CellFacts = measure_cell(
        cell,
        now=now,
        leadership_threshold=settings.leadership_threshold,
        window_days=settings.readiness_window_days,
    )
    results = [c.evaluate(facts) for c in criteria]

    member_threshold = next(
        (int(r.threshold) for r in results if r.criteria_type == "member_count"),
        settings.min_members,
    )
    projected = scoring.project_ready_date(
        results,
        now=now,
        member_threshold=member_threshold,
        join_dates=list(facts.join_dates),
        cell_created_at=facts.created_at or now,
        recent_joins=facts.recent_joins,
        window_days=settings.readiness_window_days,
    )
    score = scoring.readiness_score(results)
    return {
        "readiness_score": score,
        "status": scoring.classify_status(
            score, results, now=now, projected=projected, margin=settings.preparing_margin,
        ),
        "criteria_results": {r.name: r.to_dict() for r in results},
        "facts": facts.to_dict(),
        "confidence_level": scoring.confidence_level(results),
        "projected_date": projected,
        "recommendations": scoring.readiness_recommendations(results),
        "blocking_factors": scoring.blocking_factors(results),
    }


def _apply(snapshot: ReadinessSnapshot, values: dict, now: datetime) -> None:
    for key, value in values.items():
        setattr(snapshot, key, value)
    snapshot.last_evaluated_at = now


def _upsert_snapshot(cell: Cell, values: dict, now: datetime) -> ReadinessSnapshot:
    stmt = select(ReadinessSnapshot).where(ReadinessSnapshot.cell_id == cell.id)
    snapshot = db.session.execute(stmt).scalar_one_or_none()
    if snapshot is not None:
        _apply(snapshot, values, now)
        return snapshot
    try:
        with db.session.begin_nested():
            snapshot = ReadinessSnapshot(cell_id=cell.id, organization_id=cell.organization_id)
            _apply(snapshot, values, now)
            db.session.add(snapshot)
    except IntegrityError:
        # Another evaluation inserted the row first; overwrite it
        snapshot = db.session.execute(stmt).scalar_one()
        _apply(snapshot, values, now)
    return snapshot


def evaluate_readiness(cell_id: int, organization_id: int, *, now: datetime | None = None) -> dict:
    """Evaluate a cell and upsert its snapshot."""
    now = now or utcnow()
    cell = get_scoped(Cell, cell_id, organization_id=organization_id)
    settings = resolve_settings(permission_service.get_organization(organization_id))

    values = compute_readiness(cell, settings, now=now)
    snapshot = _upsert_snapshot(cell, values, now)
    commit_or_raise("ReadinessSnapshot", "cell_id", str(cell.id))

    logger.info(
        "Readiness evaluated: cell=%s status=%s score=%s",
        cell.id, snapshot.status, snapshot.readiness_score,
        extra={"organization_id": organization_id, "cell_id": cell.id},
    )
    return snapshot.to_dict()


def evaluate_readiness_batch(organization_id: int, *, now: datetime | None = None) -> dict:
    """Evaluate every active cell of an organization.

    A failing cell is rolled back and reported; the batch continues.
    """
    now = now or utcnow()
    permission_service.get_organization(organization_id)
    cell_ids = db.session.execute(
        select(Cell.id)
        .where(Cell.organization_id == organization_id, Cell.is_active.is_(True))
        .order_by(Cell.id)
    ).scalars().all()

    results = []
    updated = 0
    for cell_id in cell_ids:
        try:
            snap = evaluate_readiness(cell_id, organization_id, now=now)
            results.append({"cell_id": cell_id, "status": "ok", "readiness_status": snap["status"]})
            updated += 1
        except (ValidationError, NotFoundError, DependencyUnavailableError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.warning(
                "Readiness evaluation failed for cell %s: %s", cell_id, exc,
                extra={"organization_id": organization_id, "cell_id": cell_id},
            )
            results.append({"cell_id": cell_id, "status": "error", "error": str(exc)})

    logger.info(
        "Readiness batch: %d/%d cells updated", updated, len(cell_ids),
        extra={"organization_id": organization_id},
    )
    return {"cells_updated": updated, "cells_total": len(cell_ids), "results": results}


def list_snapshots(
    actor_id: int,
    *,
    status: str | None = None,
    cell_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Snapshots of the cells visible to the actor, best score first."""
    actor = permission_service.get_actor(actor_id)
    visible = permission_service.visible_cells_query(actor)
    if visible is None:
        return [], 0

    stmt = select(ReadinessSnapshot).where(
        ReadinessSnapshot.cell_id.in_(visible.with_only_columns(Cell.id)),
    )
    if status:
        if status not in READINESS_STATUSES:
            raise ValidationError("Invalid status filter", details={"status": status})
        stmt = stmt.where(ReadinessSnapshot.status == status)
    if cell_id is not None:
        stmt = stmt.where(ReadinessSnapshot.cell_id == cell_id)

    total = db.session.execute(
        select(func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(ReadinessSnapshot.readiness_score.desc(), ReadinessSnapshot.cell_id)
        .limit(limit)
        .offset(offset)
    ).scalars().all()
    return [r.to_dict() for r in rows], total


def get_snapshot(actor_id: int, cell_id: int) -> dict:
    actor = permission_service.get_actor(actor_id)
    get_scoped(Cell, cell_id, organization_id=actor.organization_id)
    snapshot = db.session.execute(
        select(ReadinessSnapshot).where(ReadinessSnapshot.cell_id == cell_id)
    ).scalar_one_or_none()
    if snapshot is None:
        raise NotFoundError(resource="ReadinessSnapshot", resource_id=cell_id)
    return snapshot.to_dict()


def dashboard(actor_id: int) -> dict:
    """Organization overview: status distribution, average score, top alerts."""
    actor = permission_service.get_actor(actor_id)
    visible = permission_service.visible_cells_query(actor)
    if visible is None:
        cell_ids = []
    else:
        cell_ids = db.session.execute(visible.with_only_columns(Cell.id)).scalars().all()

    snapshots = db.session.execute(
        select(ReadinessSnapshot).where(ReadinessSnapshot.cell_id.in_(cell_ids))
    ).scalars().all() if cell_ids else []

    distribution = {s: 0 for s in READINESS_STATUSES}
    for snap in snapshots:
        distribution[snap.status] = distribution.get(snap.status, 0) + 1

    average = (
        round(sum(s.readiness_score for s in snapshots) / len(snapshots), 1)
        if snapshots else 0.0
    )
    alerts = list_alerts(actor.id, limit=_DASHBOARD_TOP_ALERTS)

    return {
        "total_cells": len(cell_ids),
        "evaluated_cells": len(snapshots),
        "ready_cells": sum(distribution[s] for s in READY_STATUSES),
        "preparing_cells": distribution["preparing"],
        "not_ready_cells": distribution["not_ready"],
        "average_score": average,
        "status_distribution": distribution,
        "top_alerts": alerts["alerts"],
        "alert_summary": alerts["summary"],
    }


def evaluate_cell_for_actor(actor_id: int, cell_id: int, *, now: datetime | None = None) -> dict:
    """On-demand evaluation of one cell of the actor's organization."""
    actor = permission_service.get_actor(actor_id)
    return evaluate_readiness(cell_id, actor.organization_id, now=now)


def evaluate_organization_for_actor(actor_id: int, *, now: datetime | None = None) -> dict:
    """On-demand batch run; reserved to admins, pastors and the designated approver."""
    actor = permission_service.get_actor(actor_id)
    permission_service.require(
        permission_service.is_org_wide(actor) or permission_service.is_designated_approver(actor),
        "evaluate readiness for the whole organization",
        actor.id,
    )
    return evaluate_readiness_batch(actor.organization_id, now=now)
