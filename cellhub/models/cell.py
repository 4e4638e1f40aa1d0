"""
CellHub
Cell directory models.

Models:
    - Cell:         a small group; parent_cell_id records multiplication lineage
    - CellMember:   membership of a Person in a Cell (one row per cell/person pair)
    - CellMeeting:  a held meeting with its attendance count

Architecture:
    Organization ──1:N──▶ Cell ──1:N──▶ CellMember ──N:1──▶ Person
    Cell ──1:N──▶ CellMeeting
    Cell ──1:N──▶ Cell  (parent → children created by multiplication)

Cells are never hard-deleted: is_active=False deactivates them.
"""

from cellhub.models import db
from cellhub.models.base import OrgScopedModel, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

CELL_ROLES = {"leader", "supervisor", "member"}

# Cell roles allowed to start and edit a multiplication
CELL_MANAGER_ROLES = {"leader", "supervisor"}

MEETING_DAYS = {
    "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday",
}


class Cell(OrgScopedModel):
    """A congregation cell."""

    __tablename__ = "cells"

    id = db.Column(db.Integer, primary_key=True)
    parent_cell_id = db.Column(
        db.Integer,
        db.ForeignKey("cells.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    leader_id = db.Column(
        db.Integer,
        db.ForeignKey("persons.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    supervisor_id = db.Column(
        db.Integer,
        db.ForeignKey("persons.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    meeting_day = db.Column(db.String(10), nullable=True)
    meeting_time = db.Column(db.String(5), nullable=True)  # HH:MM
    address = db.Column(db.String(300), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    members = db.relationship(
        "CellMember", backref="cell", lazy="dynamic", cascade="all, delete-orphan",
    )
    meetings = db.relationship(
        "CellMeeting", backref="cell", lazy="dynamic", cascade="all, delete-orphan",
    )
    leader = db.relationship("Person", foreign_keys=[leader_id])
    supervisor = db.relationship("Person", foreign_keys=[supervisor_id])

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "parent_cell_id": self.parent_cell_id,
            "name": self.name,
            "leader_id": self.leader_id,
            "leader_name": self.leader.full_name if self.leader else None,
            "supervisor_id": self.supervisor_id,
            "supervisor_name": self.supervisor.full_name if self.supervisor else None,
            "meeting_day": self.meeting_day,
            "meeting_time": self.meeting_time,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "is_active": self.is_active,
            "member_count": self.members.filter_by(is_active=True).count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Cell {self.id}: {self.name}>"


class CellMember(db.Model):
    """Membership of a person in a cell.

    is_apprentice marks members on the leadership track ("Timothy").
    engagement_score is cumulative participation credit.
    """

    __tablename__ = "cell_members"

    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(
        db.Integer,
        db.ForeignKey("cells.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    person_id = db.Column(
        db.Integer,
        db.ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="member")
    engagement_score = db.Column(db.Float, nullable=False, default=0)
    is_apprentice = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    person = db.relationship("Person")

    __table_args__ = (
        db.UniqueConstraint("cell_id", "person_id", name="uq_cell_member_cell_person"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "cell_id": self.cell_id,
            "person_id": self.person_id,
            "full_name": self.person.full_name if self.person else None,
            "role": self.role,
            "engagement_score": self.engagement_score,
            "is_apprentice": self.is_apprentice,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<CellMember cell={self.cell_id} person={self.person_id} {self.role}>"


class CellMeeting(db.Model):
    """A meeting held by a cell. Feeds meeting-frequency and attendance metrics."""

    __tablename__ = "cell_meetings"

    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(
        db.Integer,
        db.ForeignKey("cells.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    held_on = db.Column(db.Date, nullable=False)
    attendance_count = db.Column(db.Integer, nullable=False, default=0)
    members_enrolled = db.Column(
        db.Integer,
        nullable=True,
        comment="Roster size on the meeting date; falls back to the current roster when null",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "cell_id": self.cell_id,
            "held_on": self.held_on.isoformat() if self.held_on else None,
            "attendance_count": self.attendance_count,
            "members_enrolled": self.members_enrolled,
        }
