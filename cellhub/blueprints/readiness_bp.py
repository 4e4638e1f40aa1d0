"""Readiness, alerts and criteria blueprint.

Endpoint groups
───────────────
  Readiness   GET    /readiness                          Paginated snapshots
              GET    /readiness/dashboard                Organization overview
              POST   /readiness/evaluate-batch           Evaluate every cell
              GET    /cells/<cid>/readiness              Latest snapshot
              POST   /cells/<cid>/readiness/evaluate     Evaluate one cell
  Alerts      GET    /multiplication/alerts              Prioritized alerts + summary
  Criteria    GET    /multiplication-criteria            List
              POST   /multiplication-criteria            Create
              PUT    /multiplication-criteria/<id>       Update
              DELETE /multiplication-criteria/<id>       Delete
"""

import logging

from flask import Blueprint, jsonify, request

from cellhub.blueprints import (
    current_actor_id,
    paginate_params,
    query_bool,
    register_error_handlers,
)
from cellhub.services import alert_service, criteria_service, readiness_service
from cellhub.utils.helpers import parse_int

logger = logging.getLogger(__name__)

readiness_bp = Blueprint("readiness", __name__, url_prefix="/api/v1")
register_error_handlers(readiness_bp)


def _body():
    data = request.get_json(silent=True)
    data = dict(data) if isinstance(data, dict) else {}
    data.pop("actor_id", None)
    return data


# ══════════════════════════════════════════════════════════════════
# 1.  Readiness
# ══════════════════════════════════════════════════════════════════

@readiness_bp.route("/readiness", methods=["GET"])
def list_readiness():
    limit, offset = paginate_params()
    items, total = readiness_service.list_snapshots(
        current_actor_id(),
        status=request.args.get("status"),
        cell_id=parse_int(request.args.get("cell_id")),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset})


@readiness_bp.route("/readiness/dashboard", methods=["GET"])
def readiness_dashboard():
    return jsonify(readiness_service.dashboard(current_actor_id()))


@readiness_bp.route("/readiness/evaluate-batch", methods=["POST"])
def evaluate_batch():
    return jsonify(readiness_service.evaluate_organization_for_actor(current_actor_id()))


@readiness_bp.route("/cells/<int:cell_id>/readiness", methods=["GET"])
def get_readiness(cell_id):
    return jsonify(readiness_service.get_snapshot(current_actor_id(), cell_id))


@readiness_bp.route("/cells/<int:cell_id>/readiness/evaluate", methods=["POST"])
def evaluate_cell(cell_id):
    return jsonify(readiness_service.evaluate_cell_for_actor(current_actor_id(), cell_id))


# ══════════════════════════════════════════════════════════════════
# 2.  Alerts
# ══════════════════════════════════════════════════════════════════

@readiness_bp.route("/multiplication/alerts", methods=["GET"])
def list_alerts():
    result = alert_service.list_alerts(
        current_actor_id(),
        alert_type=request.args.get("alert_type"),
        priority=parse_int(request.args.get("priority")),
        cell_id=parse_int(request.args.get("cell_id")),
        limit=parse_int(request.args.get("limit")),
    )
    return jsonify(result)


# ══════════════════════════════════════════════════════════════════
# 3.  Criteria registry
# ══════════════════════════════════════════════════════════════════

@readiness_bp.route("/multiplication-criteria", methods=["GET"])
def list_criteria():
    items = criteria_service.list_criteria(
        current_actor_id(),
        is_active=query_bool("is_active"),
        criteria_type=request.args.get("criteria_type"),
    )
    return jsonify({"items": items, "total": len(items)})


@readiness_bp.route("/multiplication-criteria", methods=["POST"])
def create_criterion():
    return jsonify(criteria_service.create_criterion(current_actor_id(), _body())), 201


@readiness_bp.route("/multiplication-criteria/<int:criterion_id>", methods=["PUT"])
def update_criterion(criterion_id):
    return jsonify(criteria_service.update_criterion(current_actor_id(), criterion_id, _body()))


@readiness_bp.route("/multiplication-criteria/<int:criterion_id>", methods=["DELETE"])
def delete_criterion(criterion_id):
    criteria_service.delete_criterion(current_actor_id(), criterion_id)
    return "", 204
