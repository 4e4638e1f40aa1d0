"""
Organization-scoped query helpers.

Every get-by-id in the services MUST go through these helpers instead of
db.session.get(Model, pk). An unscoped .get() lets one organization read
another organization's cells and processes.

Usage:
    cell = get_scoped(Cell, cell_id, organization_id=person.organization_id)

A model without an organization_id column raises ValueError at call time
so the bug surfaces in tests rather than as an unscoped lookup in
production.
"""

import logging

from sqlalchemy import select

from cellhub.core.exceptions import NotFoundError
from cellhub.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    for_update: bool = False,
):
    """Fetch a single entity by PK within one organization.

    Cross-organization access is indistinguishable from a missing record:
    both raise NotFoundError (HTTP 404).

    Args:
        model: SQLAlchemy model class with ``id`` and ``organization_id`` columns.
        pk: Primary key value to look up.
        organization_id: Organization the record must belong to.
        for_update: Lock the row (SELECT ... FOR UPDATE) until the transaction ends.

    Raises:
        ValueError: No organization given, or the model is not organization-scoped.
        NotFoundError: Missing, or owned by another organization.
    """
    if organization_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires an organization_id scope filter."
        )
    if not hasattr(model, "organization_id"):
        raise ValueError(
            f"{model.__name__} has no organization_id column. "
            "Refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk, model.organization_id == organization_id)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in organization %s",
            model.__name__,
            pk,
            organization_id,
        )
        raise NotFoundError(
            resource=model.__name__,
            resource_id=pk,
            organization_id=organization_id,
        )

    return result
