"""
Organization & Person models: the identity side of the platform.

    Organization ──1:N──▶ Person
    Organization ──1:N──▶ Cell  (see cellhub.models.cell)

Person.role is the organization-wide role used for visibility and approval
decisions. Roles held inside a single cell live on CellMember.role.
"""

from cellhub.models import db
from cellhub.models.base import OrgScopedModel, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

ORG_ROLES = {"admin", "pastor", "supervisor", "leader", "member"}

# Roles that see and act on every cell of their organization
ORG_WIDE_ROLES = {"admin", "pastor"}


class Organization(db.Model):
    """A congregation. Root of every scoped query."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    # Plain integer (no FK) to avoid an organizations <-> persons cycle
    approver_id = db.Column(
        db.Integer,
        nullable=True,
        comment="Designated approver for multiplication processes (usually the senior pastor)",
    )
    settings = db.Column(db.JSON, default=dict)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "approver_id": self.approver_id,
            "settings": self.settings or {},
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.slug}>"


class Person(OrgScopedModel):
    """A profile inside an organization.

    leadership_score is the 0-100 leadership-readiness score maintained by
    the leadership pipeline; it drives candidate qualification.
    """

    __tablename__ = "persons"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="member")
    leadership_score = db.Column(db.Float, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "leadership_score": self.leadership_score,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Person {self.id}: {self.full_name}>"
