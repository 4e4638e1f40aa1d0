"""Shared utility functions for services and blueprints.

commit_or_raise:  commit the session, mapping store failures to domain errors
parse_int:        lenient integer parsing for query strings
"""
import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from cellhub.core.exceptions import ConflictError, DependencyUnavailableError
from cellhub.models import db

logger = logging.getLogger(__name__)


def parse_int(value, default=None):
    """Return int(value), or default for empty/invalid input."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(resource="record", field="id", value=None):
    """Commit the current session; roll back and raise a domain error on failure.

    IntegrityError   → ConflictError(resource, field, value)
    OperationalError → DependencyUnavailableError (retryable)

    Usage::

        db.session.add(criterion)
        commit_or_raise("MultiplicationCriterion", "name", criterion.name)
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, field, value) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        raise DependencyUnavailableError() from exc
