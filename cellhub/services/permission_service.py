"""
Permission Service: identity and role lookups for the multiplication workflow.

Two role layers:
  - Person.role        organization-wide (admin, pastor, supervisor, leader, member)
  - cell role          leader/supervisor of one cell, from Cell.leader_id /
                       Cell.supervisor_id or the CellMember.role of an active membership

Evaluation is deny-by-default. Unknown or inactive actors are reported as
NotFoundError so the caller cannot probe for people in other organizations.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select

from cellhub.core.exceptions import NotFoundError, PermissionDeniedError
from cellhub.models import db
from cellhub.models.cell import CELL_MANAGER_ROLES, Cell, CellMember
from cellhub.models.organization import ORG_WIDE_ROLES, Organization, Person

logger = logging.getLogger(__name__)


def get_actor(actor_id: int | None) -> Person:
    """Load the acting person; inactive or missing persons are NotFound."""
    if actor_id is None:
        raise PermissionDeniedError("act without an identified actor")
    person = db.session.get(Person, actor_id)
    if person is None or not person.is_active:
        raise NotFoundError(resource="Person", resource_id=actor_id)
    return person


def get_organization(organization_id: int) -> Organization:
    org = db.session.get(Organization, organization_id)
    if org is None:
        raise NotFoundError(resource="Organization", resource_id=organization_id)
    return org


def is_org_wide(person: Person) -> bool:
    return person.role in ORG_WIDE_ROLES


def is_designated_approver(person: Person) -> bool:
    org = db.session.get(Organization, person.organization_id)
    return org is not None and org.approver_id is not None and org.approver_id == person.id


def cell_role(cell: Cell, person_id: int) -> str | None:
    """Role of the person inside the cell, or None when not a member.

    The cell's own leader_id/supervisor_id win over the membership row.
    """
    if cell.leader_id == person_id:
        return "leader"
    if cell.supervisor_id == person_id:
        return "supervisor"
    membership = db.session.execute(
        select(CellMember).where(
            CellMember.cell_id == cell.id,
            CellMember.person_id == person_id,
            CellMember.is_active.is_(True),
        )
    ).scalar_one_or_none()
    return membership.role if membership else None


def is_cell_manager(cell: Cell, person_id: int) -> bool:
    """Leader or supervisor of the cell."""
    return cell_role(cell, person_id) in CELL_MANAGER_ROLES


def is_cell_supervisor(cell: Cell, person_id: int) -> bool:
    return cell_role(cell, person_id) == "supervisor"


def can_approve(person: Person, cell: Cell) -> bool:
    """Admins/pastors, the designated approver, or the cell's supervisor."""
    return (
        is_org_wide(person)
        or is_designated_approver(person)
        or is_cell_supervisor(cell, person.id)
    )


def require(condition: bool, action: str, actor_id: int | None = None) -> None:
    """Raise PermissionDeniedError unless condition holds."""
    if not condition:
        logger.info("Permission denied: %s", action, extra={"actor_id": actor_id})
        raise PermissionDeniedError(action, actor_id)


def visible_cells_query(person: Person):
    """Select of active cells the person may see in alerts and dashboards.

    admin/pastor         every cell of the organization
    designated approver  every cell of the organization
    supervisor           cells they supervise
    leader               cells they lead
    anyone else          nothing (None)
    """
    stmt = select(Cell).where(
        Cell.organization_id == person.organization_id,
        Cell.is_active.is_(True),
    )
    if is_org_wide(person) or is_designated_approver(person):
        return stmt
    if person.role == "supervisor":
        supervised = select(CellMember.cell_id).where(
            CellMember.person_id == person.id,
            CellMember.role == "supervisor",
            CellMember.is_active.is_(True),
        )
        return stmt.where(or_(Cell.supervisor_id == person.id, Cell.id.in_(supervised)))
    if person.role == "leader":
        led = select(CellMember.cell_id).where(
            CellMember.person_id == person.id,
            CellMember.role == "leader",
            CellMember.is_active.is_(True),
        )
        return stmt.where(or_(Cell.leader_id == person.id, Cell.id.in_(led)))
    return None
