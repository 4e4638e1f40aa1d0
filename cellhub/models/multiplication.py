"""
CellHub
Multiplication domain models.

Models:
    - MultiplicationCriterion:  organization-configurable readiness criterion
    - ReadinessSnapshot:        latest readiness evaluation, one row per cell
    - MultiplicationTemplate:   reusable split strategy
    - MultiplicationProcess:    one split of a source cell, driven through a workflow
    - MemberAssignment:         per-member placement decision inside a process

Architecture:
    Organization ──1:N──▶ MultiplicationCriterion
    Cell ──1:1──▶ ReadinessSnapshot
    Cell ──1:N──▶ MultiplicationProcess ──1:N──▶ MemberAssignment
    MultiplicationTemplate ◀──(plan.template_id)── MultiplicationProcess

The wizard step and progress of a process are derived from its status;
they are never stored.
"""

from cellhub.models import db
from cellhub.models.base import OrgScopedModel, utcnow

# ── Criteria ─────────────────────────────────────────────────────────────────

CRITERIA_TYPES = {
    "member_count",
    "meeting_frequency",
    "average_attendance",
    "potential_leaders",
    "cell_age_months",
    "leader_maturity",
    "growth_rate",
    "stability_score",
}

# ── Readiness ────────────────────────────────────────────────────────────────

READINESS_STATUSES = ["not_ready", "preparing", "ready", "optimal", "overdue"]

# Statuses that count as "ready" for alerts and the dashboard
READY_STATUSES = {"ready", "optimal", "overdue"}

# ── Process lifecycle ────────────────────────────────────────────────────────

PROCESS_STATUSES = [
    "draft",
    "member_selection",
    "leader_assignment",
    "plan_review",
    "pending_approval",
    "approved",
    "completed",
    "cancelled",
    "rejected",
]

TERMINAL_STATUSES = {"completed", "cancelled", "rejected"}

ACTIVE_STATUSES = [s for s in PROCESS_STATUSES if s not in TERMINAL_STATUSES]

PROCESS_TRANSITIONS = {
    "draft":             ["member_selection", "cancelled"],
    "member_selection":  ["member_selection", "leader_assignment", "cancelled"],
    "leader_assignment": ["leader_assignment", "plan_review", "cancelled"],
    "plan_review":       ["pending_approval", "cancelled"],
    "pending_approval":  ["approved", "rejected", "cancelled"],
    "approved":          ["completed", "cancelled"],
    "completed":         [],
    "cancelled":         [],
    "rejected":          [],
}

# Plan is editable until submitted for approval
PLAN_LOCKED_STATUSES = {"pending_approval", "approved"} | TERMINAL_STATUSES

WIZARD_STEPS = [
    {"step": 1, "key": "basic_info", "title": "Basic information"},
    {"step": 2, "key": "template_selection", "title": "Template selection"},
    {"step": 3, "key": "member_distribution", "title": "Member distribution"},
    {"step": 4, "key": "leader_selection", "title": "Leader selection"},
    {"step": 5, "key": "plan_review", "title": "Plan review"},
    {"step": 6, "key": "approval_submission", "title": "Approval submission"},
    {"step": 7, "key": "approval", "title": "Approval"},
    {"step": 8, "key": "execution", "title": "Execution"},
]

TOTAL_STEPS = len(WIZARD_STEPS)

STATUS_STEP = {
    "draft": 1,
    "member_selection": 3,
    "leader_assignment": 4,
    "plan_review": 5,
    "pending_approval": 6,
    "approved": 7,
    "completed": 8,
}

PLAN_FIELDS = (
    "new_cell_name", "meeting_day", "meeting_time",
    "address", "city", "state", "zip_code", "template_id",
)

# ── Assignments ──────────────────────────────────────────────────────────────

ASSIGNMENT_TYPES = {"stays_source", "moves_new", "new_leader", "undecided"}

ASSIGNMENT_ROLES = {"member", "leader", "supervisor"}

# ── Templates ────────────────────────────────────────────────────────────────

TEMPLATE_TYPES = {"balanced", "growth_focused", "leadership_dev", "geographic", "custom"}


def validate_process_transition(old_status, new_status):
    """Return True if MultiplicationProcess status transition is valid."""
    return new_status in PROCESS_TRANSITIONS.get(old_status, [])


def step_for_status(status, template_id=None):
    """Wizard step reached by a non-terminal or completed status."""
    if status == "draft" and template_id:
        return 2
    return STATUS_STEP.get(status, 1)


class MultiplicationCriterion(OrgScopedModel):
    """A weighted readiness criterion."""

    __tablename__ = "multiplication_criteria"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    criteria_type = db.Column(db.String(30), nullable=False)
    threshold_value = db.Column(db.Float, nullable=False)
    weight = db.Column(db.Float, nullable=False, default=1.0)
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_criterion_org_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "criteria_type": self.criteria_type,
            "threshold_value": self.threshold_value,
            "weight": self.weight,
            "is_required": self.is_required,
            "is_active": self.is_active,
        }


class ReadinessSnapshot(OrgScopedModel):
    """Latest readiness evaluation for a cell. Overwritten on every evaluation."""

    __tablename__ = "readiness_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(
        db.Integer,
        db.ForeignKey("cells.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    readiness_score = db.Column(db.Float, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="not_ready")
    criteria_results = db.Column(db.JSON, default=dict)
    facts = db.Column(db.JSON, default=dict)
    confidence_level = db.Column(db.Integer, nullable=False, default=50)
    projected_date = db.Column(db.Date, nullable=True)
    recommendations = db.Column(db.JSON, default=list)
    blocking_factors = db.Column(db.JSON, default=list)
    last_evaluated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    cell = db.relationship("Cell")

    def to_dict(self):
        return {
            "cell_id": self.cell_id,
            "cell_name": self.cell.name if self.cell else None,
            "readiness_score": self.readiness_score,
            "status": self.status,
            "criteria_results": self.criteria_results or {},
            "facts": self.facts or {},
            "confidence_level": self.confidence_level,
            "projected_date": self.projected_date.isoformat() if self.projected_date else None,
            "recommendations": self.recommendations or [],
            "blocking_factors": self.blocking_factors or [],
            "last_evaluated_at": (
                self.last_evaluated_at.isoformat() if self.last_evaluated_at else None
            ),
        }


class MultiplicationTemplate(OrgScopedModel):
    """Reusable split strategy.

    member_split_strategy:      {"new_cell_ratio": 0.5, "apprentice_new_cell_ratio": 0.5}
    leader_selection_criteria:  {"min_leadership_score": 60}
    """

    __tablename__ = "multiplication_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    template_type = db.Column(db.String(30), nullable=False, default="balanced")
    member_split_strategy = db.Column(db.JSON, default=dict)
    leader_selection_criteria = db.Column(db.JSON, default=dict)
    success_rate = db.Column(db.Float, nullable=False, default=0)
    times_used = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "template_type": self.template_type,
            "member_split_strategy": self.member_split_strategy or {},
            "leader_selection_criteria": self.leader_selection_criteria or {},
            "success_rate": self.success_rate,
            "times_used": self.times_used,
            "is_active": self.is_active,
            "created_by": self.created_by,
        }


class MultiplicationProcess(OrgScopedModel):
    """One multiplication of a source cell.

    Status only changes through compare-and-set updates in
    multiplication_service. terminated_from keeps the status a cancelled or
    rejected process was in, so its wizard position stays reportable.
    """

    __tablename__ = "multiplication_processes"

    id = db.Column(db.Integer, primary_key=True)
    source_cell_id = db.Column(
        db.Integer,
        db.ForeignKey("cells.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    initiated_by = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(30), nullable=False, default="draft")
    multiplication_plan = db.Column(db.JSON, default=dict)
    new_leader_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    new_cell_id = db.Column(
        db.Integer, db.ForeignKey("cells.id", ondelete="SET NULL"), nullable=True,
    )
    approval_notes = db.Column(db.Text, default="")
    approved_by = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    terminated_from = db.Column(db.String(30), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    source_cell = db.relationship("Cell", foreign_keys=[source_cell_id])
    assignments = db.relationship(
        "MemberAssignment",
        backref="process",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # At most one non-terminal process per source cell
        db.Index(
            "uq_multiplication_active_per_cell",
            "source_cell_id",
            unique=True,
            sqlite_where=db.text("status NOT IN ('completed', 'cancelled', 'rejected')"),
            postgresql_where=db.text("status NOT IN ('completed', 'cancelled', 'rejected')"),
        ),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self):
        status = self.terminated_from if self.status in ("cancelled", "rejected") else self.status
        return step_for_status(status, (self.multiplication_plan or {}).get("template_id"))

    @property
    def total_steps(self):
        return TOTAL_STEPS

    @property
    def progress_pct(self):
        return round(self.current_step / TOTAL_STEPS * 100)

    def member_distribution(self):
        """Counts per assignment type, derived from the stored assignments."""
        summary = {t: 0 for t in sorted(ASSIGNMENT_TYPES)}
        for a in self.assignments:
            summary[a.assignment_type] = summary.get(a.assignment_type, 0) + 1
        return summary

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "source_cell_id": self.source_cell_id,
            "source_cell_name": self.source_cell.name if self.source_cell else None,
            "initiated_by": self.initiated_by,
            "status": self.status,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "progress_pct": self.progress_pct,
            "multiplication_plan": self.multiplication_plan or {},
            "member_distribution": self.member_distribution(),
            "new_leader_id": self.new_leader_id,
            "new_cell_id": self.new_cell_id,
            "approval_notes": self.approval_notes,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "cancellation_reason": self.cancellation_reason,
            "terminated_from": self.terminated_from,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_assignments:
            d["assignments"] = [
                a.to_dict() for a in self.assignments.order_by(MemberAssignment.id)
            ]
        return d

    def __repr__(self):
        return f"<MultiplicationProcess {self.id} cell={self.source_cell_id} {self.status}>"


class MemberAssignment(db.Model):
    """Placement decision for one member of the source cell."""

    __tablename__ = "member_assignments"

    id = db.Column(db.Integer, primary_key=True)
    multiplication_id = db.Column(
        db.Integer,
        db.ForeignKey("multiplication_processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False,
    )
    assignment_type = db.Column(db.String(20), nullable=False, default="undecided")
    role_in_new_cell = db.Column(db.String(20), nullable=False, default="member")
    priority_score = db.Column(db.Float, nullable=False, default=0)
    auto_suggested = db.Column(db.Boolean, nullable=False, default=False)
    manually_adjusted = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, default="")

    person = db.relationship("Person")

    __table_args__ = (
        db.UniqueConstraint(
            "multiplication_id", "member_id", name="uq_assignment_process_member",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "multiplication_id": self.multiplication_id,
            "member_id": self.member_id,
            "member_name": self.person.full_name if self.person else None,
            "assignment_type": self.assignment_type,
            "role_in_new_cell": self.role_in_new_cell,
            "priority_score": self.priority_score,
            "auto_suggested": self.auto_suggested,
            "manually_adjusted": self.manually_adjusted,
            "notes": self.notes,
        }
