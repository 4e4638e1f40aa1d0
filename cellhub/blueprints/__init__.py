"""
CellHub
Blueprint registry and shared request helpers.

The acting person is identified by the X-Actor-Id header, or by
``actor_id`` in the JSON body or query string. Authentication itself
happens upstream of this application.
"""

import logging

from flask import g, jsonify, request
from werkzeug.exceptions import HTTPException

from cellhub.core.exceptions import (
    ConflictError,
    DependencyUnavailableError,
    InvalidStateError,
    NotFoundError,
    PartialFailureError,
    PermissionDeniedError,
    ValidationError,
)
from cellhub.utils.errors import E, api_error
from cellhub.utils.helpers import parse_int

logger = logging.getLogger(__name__)


def paginate_params(default_limit=50, max_limit=500):
    """Read limit/offset from the query string.

    Query params:
        limit : max items (default 50, capped at max_limit)
        offset: starting position (default 0)
    """
    limit = parse_int(request.args.get("limit"), default_limit)
    limit = min(max(limit, 0), max_limit)
    offset = max(parse_int(request.args.get("offset"), 0), 0)
    return limit, offset


def current_actor_id():
    """Actor id from the header, body or query string; None when absent."""
    raw = request.headers.get("X-Actor-Id")
    if raw is None and request.is_json:
        raw = (request.get_json(silent=True) or {}).get("actor_id")
    if raw is None:
        raw = request.args.get("actor_id")
    actor_id = parse_int(raw)
    g.actor_id = actor_id
    return actor_id


def query_bool(name):
    """'true'/'false' query flag as bool, None when absent."""
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


def register_error_handlers(bp):
    """Map service exceptions to the standard error body on a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error):
        details = {"current_status": error.current_status} if error.current_status else None
        return api_error(E.INVALID_STATE, str(error), details=details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_FAILED, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        code = E.CONFLICT_STATE if error.field == "status" else E.CONFLICT_DUPLICATE
        return api_error(code, str(error))

    @bp.errorhandler(PartialFailureError)
    def _handle_partial(error):
        return api_error(
            E.PARTIAL_FAILURE,
            str(error),
            details={"succeeded": error.succeeded, "failed": error.failed},
        )

    @bp.errorhandler(DependencyUnavailableError)
    def _handle_unavailable(error):
        response, status = api_error(E.UNAVAILABLE, str(error), details={"retryable": True})
        response.headers["Retry-After"] = "1"
        return response, status

    @bp.errorhandler(HTTPException)
    def _handle_http(error):
        return jsonify({"error": error.description, "code": f"ERR_HTTP_{error.code}"}), error.code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
