"""Multiplication workflow blueprint.

Endpoint groups
───────────────
  Eligibility   GET   /cells/<cid>/multiplication/eligibility     Score + requirements
                GET   /cells/<cid>/multiplication/candidates      Qualified new leaders
  Processes     GET   /cells/<cid>/multiplications                List cell processes
                POST  /cells/<cid>/multiplications                Start (draft)
                GET   /multiplications/<pid>                      Process + assignments
                PATCH /multiplications/<pid>                      Plan / notes / advance
                POST  /multiplications/<pid>/suggest-distribution Seed assignments
                PUT   /multiplications/<pid>/assignments          Replace assignment batch
                POST  /multiplications/<pid>/approve              pending_approval → approved
                POST  /multiplications/<pid>/reject               pending_approval → rejected
                POST  /multiplications/<pid>/cancel               any → cancelled
                POST  /multiplications/<pid>/execute              approved → completed
                GET   /multiplications/wizard-steps               Step catalogue
  Templates     GET   /multiplication-templates                   List
                POST  /multiplication-templates                   Create
"""

import logging

from flask import Blueprint, jsonify, request

from cellhub.blueprints import current_actor_id, query_bool, register_error_handlers
from cellhub.models.multiplication import TOTAL_STEPS, WIZARD_STEPS
from cellhub.services import (
    candidate_service,
    eligibility_service,
    multiplication_service,
    template_service,
)
from cellhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

multiplication_bp = Blueprint("multiplication", __name__, url_prefix="/api/v1")
register_error_handlers(multiplication_bp)


def _body():
    data = request.get_json(silent=True)
    # copy: current_actor_id() reads actor_id from the cached body
    return dict(data) if isinstance(data, dict) else {}


# ══════════════════════════════════════════════════════════════════
# 1.  Eligibility & candidates
# ══════════════════════════════════════════════════════════════════

@multiplication_bp.route("/cells/<int:cell_id>/multiplication/eligibility", methods=["GET"])
def get_eligibility(cell_id):
    return jsonify(eligibility_service.compute_eligibility(cell_id, current_actor_id()))


@multiplication_bp.route("/cells/<int:cell_id>/multiplication/candidates", methods=["GET"])
def get_candidates(cell_id):
    return jsonify(candidate_service.list_cell_candidates(current_actor_id(), cell_id))


# ══════════════════════════════════════════════════════════════════
# 2.  Processes
# ══════════════════════════════════════════════════════════════════

@multiplication_bp.route("/cells/<int:cell_id>/multiplications", methods=["GET"])
def list_processes(cell_id):
    active_only = query_bool("active_only") or False
    items = multiplication_service.list_cell_processes(
        current_actor_id(), cell_id, include_terminal=not active_only,
    )
    return jsonify({"items": items, "total": len(items)})


@multiplication_bp.route("/cells/<int:cell_id>/multiplications", methods=["POST"])
def start_process(cell_id):
    """Start a multiplication. Body: {"multiplication_plan": {...}} or the plan fields inline."""
    data = _body()
    plan = data.get("multiplication_plan")
    if plan is None:
        plan = {k: v for k, v in data.items() if k != "actor_id"}
    process = multiplication_service.start_multiplication(current_actor_id(), cell_id, plan)
    return jsonify(process), 201


@multiplication_bp.route("/multiplications/wizard-steps", methods=["GET"])
def get_wizard_steps():
    return jsonify({"steps": WIZARD_STEPS, "total_steps": TOTAL_STEPS})


@multiplication_bp.route("/multiplications/<int:process_id>", methods=["GET"])
def get_process(process_id):
    return jsonify(multiplication_service.get_process(current_actor_id(), process_id))


@multiplication_bp.route("/multiplications/<int:process_id>", methods=["PATCH"])
def update_process(process_id):
    """Edit plan / approval notes. ``"advance": true`` moves one step forward."""
    data = _body()
    advance = bool(data.pop("advance", False))
    data.pop("actor_id", None)
    process = multiplication_service.update_process_fields(
        current_actor_id(), process_id, data, advance=advance,
    )
    return jsonify(process)


@multiplication_bp.route("/multiplications/<int:process_id>/suggest-distribution", methods=["POST"])
def suggest_distribution(process_id):
    template_id = _body().get("template_id")
    result = multiplication_service.suggest_distribution(
        current_actor_id(), process_id, template_id,
    )
    return jsonify(result)


@multiplication_bp.route("/multiplications/<int:process_id>/assignments", methods=["PUT"])
def update_assignments(process_id):
    assignments = _body().get("assignments")
    if assignments is None:
        return api_error(E.VALIDATION_REQUIRED, "assignments is required")
    process = multiplication_service.update_assignments(
        current_actor_id(), process_id, assignments,
    )
    return jsonify(process)


@multiplication_bp.route("/multiplications/<int:process_id>/approve", methods=["POST"])
def approve(process_id):
    notes = _body().get("notes")
    return jsonify(multiplication_service.approve_process(current_actor_id(), process_id, notes))


@multiplication_bp.route("/multiplications/<int:process_id>/reject", methods=["POST"])
def reject(process_id):
    reason = _body().get("reason", "")
    return jsonify(multiplication_service.reject_process(current_actor_id(), process_id, reason))


@multiplication_bp.route("/multiplications/<int:process_id>/cancel", methods=["POST"])
def cancel(process_id):
    reason = _body().get("reason")
    return jsonify(multiplication_service.cancel_process(current_actor_id(), process_id, reason))


@multiplication_bp.route("/multiplications/<int:process_id>/execute", methods=["POST"])
def execute(process_id):
    result = multiplication_service.execute_multiplication(current_actor_id(), process_id)
    logger.info("Execute request finished: process=%s new_cell=%s", process_id, result["new_cell_id"])
    return jsonify(result)


# ══════════════════════════════════════════════════════════════════
# 3.  Templates
# ══════════════════════════════════════════════════════════════════

@multiplication_bp.route("/multiplication-templates", methods=["GET"])
def list_templates():
    items = template_service.list_templates(
        current_actor_id(),
        template_type=request.args.get("template_type"),
        include_inactive=query_bool("include_inactive") or False,
    )
    return jsonify({"items": items, "total": len(items)})


@multiplication_bp.route("/multiplication-templates", methods=["POST"])
def create_template():
    data = _body()
    data.pop("actor_id", None)
    return jsonify(template_service.create_template(current_actor_id(), data)), 201
