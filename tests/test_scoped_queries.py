"""
Tests: organization-scoped lookups.
"""

import pytest

from cellhub.core.exceptions import NotFoundError
from cellhub.models.cell import Cell
from cellhub.models.multiplication import MemberAssignment
from cellhub.services.helpers.scoped_queries import get_scoped


def test_same_organization_lookup_returns_row(org, ready_cell):
    assert get_scoped(Cell, ready_cell.cell.id, organization_id=org.id).id == ready_cell.cell.id


def test_other_organization_lookup_is_not_found(other_org, ready_cell):
    with pytest.raises(NotFoundError):
        get_scoped(Cell, ready_cell.cell.id, organization_id=other_org.id)


def test_unscoped_lookup_is_refused(ready_cell):
    with pytest.raises(ValueError):
        get_scoped(Cell, ready_cell.cell.id)


def test_model_without_organization_column_is_refused(org):
    with pytest.raises(ValueError):
        get_scoped(MemberAssignment, 1, organization_id=org.id)
