"""
Shared pytest fixtures for the CellHub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / other_org: Pre-created organizations
    - make_person / make_cell: directory factories
    - ready_cell: the reference cell (14 members, one apprentice scoring 72)
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from cellhub import create_app
from cellhub.models import db as _db
from cellhub.models.base import utcnow
from cellhub.models.cell import Cell, CellMeeting, CellMember
from cellhub.models.organization import Organization, Person


def days_ago(days, *, now=None):
    return (now or utcnow()) - timedelta(days=days)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory factories ──────────────────────────────────────────────────


def _make_org(slug, **kwargs):
    org = Organization(name=slug.replace("-", " ").title(), slug=slug, **kwargs)
    _db.session.add(org)
    _db.session.flush()
    return org


@pytest.fixture()
def org():
    o = _make_org("grace-church")
    _db.session.commit()
    return o


@pytest.fixture()
def other_org():
    o = _make_org("hope-church")
    _db.session.commit()
    return o


@pytest.fixture()
def make_person():
    counter = {"n": 0}

    def _make(org, role="member", score=30, name=None, is_active=True):
        counter["n"] += 1
        p = Person(
            organization_id=org.id,
            full_name=name or f"Person {counter['n']}",
            role=role,
            leadership_score=score,
            is_active=is_active,
        )
        _db.session.add(p)
        _db.session.flush()
        return p

    return _make


@pytest.fixture()
def make_cell(make_person):
    """Build a cell with a leader, a supervisor and a roster.

    members counts every active membership including the leader. One
    apprentice with ``apprentice_score`` is added unless it is None; the
    remaining members are regular, engaged, long-tenured members.
    """

    def _make(
        org,
        *,
        name="Cell A",
        members=14,
        apprentice_score=72,
        regular_score=30,
        joined_days_ago=200,
        created_days_ago=400,
        leader=None,
        supervisor=None,
        meetings=(),
    ):
        leader = leader or make_person(org, role="leader", score=80, name=f"{name} leader")
        supervisor = supervisor or make_person(org, role="supervisor", score=85, name=f"{name} supervisor")
        cell = Cell(
            organization_id=org.id,
            name=name,
            leader_id=leader.id,
            supervisor_id=supervisor.id,
            meeting_day="wednesday",
            meeting_time="19:00",
            created_at=days_ago(created_days_ago),
        )
        _db.session.add(cell)
        _db.session.flush()

        def _join(person, role="member", is_apprentice=False, engagement=10.0, joined=joined_days_ago):
            m = CellMember(
                cell_id=cell.id,
                person_id=person.id,
                role=role,
                is_apprentice=is_apprentice,
                engagement_score=engagement,
                joined_at=days_ago(joined),
            )
            _db.session.add(m)
            return m

        _join(leader, role="leader", engagement=50.0)
        roster = [leader]
        apprentice = None
        if apprentice_score is not None:
            apprentice = make_person(org, score=apprentice_score, name=f"{name} apprentice")
            _join(apprentice, is_apprentice=True, engagement=40.0)
            roster.append(apprentice)

        regulars = []
        for i in range(members - len(roster)):
            p = make_person(org, score=regular_score, name=f"{name} member {i + 1}")
            # Varying engagement gives the suggester a clear attachment order
            _join(p, engagement=float(i))
            regulars.append(p)
        roster.extend(regulars)

        for held_days_ago, attendance in meetings:
            _db.session.add(CellMeeting(
                cell_id=cell.id,
                held_on=days_ago(held_days_ago).date(),
                attendance_count=attendance,
                members_enrolled=members,
            ))

        _db.session.commit()
        return SimpleNamespace(
            cell=cell,
            leader=leader,
            supervisor=supervisor,
            apprentice=apprentice,
            regulars=regulars,
            roster=roster,
        )

    return _make


@pytest.fixture()
def pastor(org, make_person):
    p = make_person(org, role="pastor", score=95, name="Senior Pastor")
    _db.session.commit()
    return p


@pytest.fixture()
def ready_cell(org, make_cell):
    return make_cell(org)


@pytest.fixture()
def plan():
    return {
        "new_cell_name": "Cell A2",
        "meeting_day": "friday",
        "meeting_time": "19:30",
        "city": "Springfield",
    }
