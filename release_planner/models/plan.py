"""
Release Planner
Release plan domain models.

Models:
    - Plan: root aggregate (one release's schedule, product and metadata)
    - PlanPhase: named, optionally dated sub-interval of the plan timeline
    - PhaseReschedule: append-only audit record of a phase date change
    - PlanTask: dated task bar on the plan timeline
    - PlanMilestone: calendar projection of milestone-type references
    - PlanReference: link / document / note / comment / file / milestone entry
    - PlanComponentVersion: append-only ledger of target-version bumps
    - PlanRca: root-cause-analysis record attached to a plan
"""

from release_planner.models import db
from release_planner.models.base import TimestampedModel, _iso, _utcnow, _uuid


PLAN_STATUSES = {"planned", "in_progress", "done", "paused"}
RELEASE_STATUSES = {"to_be_defined", "success", "rollback", "partial_rollback"}
REFERENCE_CONTENT_TYPES = {"link", "document", "note", "comment", "file", "milestone"}
URL_REQUIRED_CONTENT_TYPES = {"link", "document"}


# ── Plan ─────────────────────────────────────────────────────────────────────


class Plan(TimestampedModel):
    """
    Release plan aggregate root.

    ``updated_at`` is the optimistic-concurrency token compared against the
    caller's last-known value before any reconciliation write.
    """

    __tablename__ = "plans"

    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="planned",
        comment="planned | in_progress | done | paused",
    )
    release_status = db.Column(
        db.String(30), nullable=False, default="to_be_defined",
        comment="to_be_defined | success | rollback | partial_rollback",
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True,
    )
    it_owner_id = db.Column(
        db.String(36), db.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True,
    )
    lead_id = db.Column(
        db.String(36), db.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True,
    )

    # Loosely-typed association lists
    feature_ids = db.Column(db.JSON, default=list)
    calendar_ids = db.Column(db.JSON, default=list)
    indicator_ids = db.Column(db.JSON, default=list)
    team_ids = db.Column(db.JSON, default=list)

    # [{"component_id", "current_version", "final_version"}]
    components = db.Column(db.JSON, default=list)

    # ── Relationships ────────────────────────────────────────────────────
    phases = db.relationship(
        "PlanPhase", backref="plan", lazy="selectin",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="PlanPhase.sequence",
    )
    tasks = db.relationship(
        "PlanTask", backref="plan", lazy="selectin",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="PlanTask.start_date",
    )
    milestones = db.relationship(
        "PlanMilestone", backref="plan", lazy="selectin",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="PlanMilestone.date",
    )
    references = db.relationship(
        "PlanReference", backref="plan", lazy="selectin",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    component_versions = db.relationship(
        "PlanComponentVersion", backref="plan", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="PlanComponentVersion.created_at",
    )
    rcas = db.relationship(
        "PlanRca", backref="plan", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def component_targets(self) -> dict:
        """component id → previously recorded final (target) version."""
        return {
            c.get("component_id"): c.get("final_version")
            for c in (self.components or [])
            if c.get("component_id")
        }

    def to_dict(self, include_children=False):
        """Serialize plan to dictionary."""
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "release_status": self.release_status,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "product_id": self.product_id,
            "it_owner_id": self.it_owner_id,
            "lead_id": self.lead_id,
            "feature_ids": list(self.feature_ids or []),
            "calendar_ids": list(self.calendar_ids or []),
            "indicator_ids": list(self.indicator_ids or []),
            "team_ids": list(self.team_ids or []),
            "components": list(self.components or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["phases"] = [p.to_dict() for p in self.phases]
            result["tasks"] = [t.to_dict() for t in self.tasks]
            result["milestones"] = [m.to_dict() for m in self.milestones]
            result["references"] = [r.to_dict() for r in self.references]
        return result

    def __repr__(self):
        return f"<Plan {self.id}: {self.name}>"


# ── PlanPhase ────────────────────────────────────────────────────────────────


class PlanPhase(TimestampedModel):
    """Named, optionally dated phase of a plan. ``sequence`` controls display order."""

    __tablename__ = "plan_phases"

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    color = db.Column(db.String(20), nullable=True)
    metric_values = db.Column(db.JSON, default=dict, comment="indicator id → value")
    sequence = db.Column(db.Integer, nullable=False, default=0)

    reschedules = db.relationship(
        "PhaseReschedule", backref="phase", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="PhaseReschedule.rescheduled_at.desc()",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "name": self.name,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "color": self.color,
            "metric_values": dict(self.metric_values or {}),
            "sequence": self.sequence,
        }

    def __repr__(self):
        return f"<PlanPhase {self.id}: {self.name}>"


# ── PhaseReschedule ──────────────────────────────────────────────────────────


class PhaseReschedule(db.Model):
    """
    Immutable record of one phase date change.

    Only ``reschedule_type_id`` and ``owner_id`` may be edited after creation.
    """

    __tablename__ = "plan_phase_reschedules"
    __table_args__ = (
        db.Index("idx_reschedule_phase_ts", "plan_phase_id", "rescheduled_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    plan_phase_id = db.Column(
        db.String(36), db.ForeignKey("plan_phases.id", ondelete="CASCADE"), nullable=False,
    )
    rescheduled_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    original_start_date = db.Column(db.Date, nullable=True)
    original_end_date = db.Column(db.Date, nullable=True)
    new_start_date = db.Column(db.Date, nullable=True)
    new_end_date = db.Column(db.Date, nullable=True)
    reschedule_type_id = db.Column(
        db.String(36), db.ForeignKey("reschedule_types.id", ondelete="SET NULL"), nullable=True,
    )
    owner_id = db.Column(
        db.String(36), db.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True,
    )

    reschedule_type = db.relationship("RescheduleType")
    owner = db.relationship("Owner")

    def to_dict(self):
        return {
            "id": self.id,
            "plan_phase_id": self.plan_phase_id,
            "rescheduled_at": _iso(self.rescheduled_at),
            "original_start_date": _iso(self.original_start_date),
            "original_end_date": _iso(self.original_end_date),
            "new_start_date": _iso(self.new_start_date),
            "new_end_date": _iso(self.new_end_date),
            "reschedule_type_id": self.reschedule_type_id,
            "owner_id": self.owner_id,
        }

    def __repr__(self):
        return f"<PhaseReschedule {self.id}: phase={self.plan_phase_id}>"


# ── PlanTask ─────────────────────────────────────────────────────────────────


class PlanTask(TimestampedModel):
    """Task bar on the plan timeline."""

    __tablename__ = "plan_tasks"

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    color = db.Column(db.String(20), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "title": self.title,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "color": self.color,
        }

    def __repr__(self):
        return f"<PlanTask {self.id}: {self.title}>"


# ── PlanMilestone ────────────────────────────────────────────────────────────


class PlanMilestone(TimestampedModel):
    """Milestone shown on the plan calendar."""

    __tablename__ = "plan_milestones"

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    date = db.Column(db.Date, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    phase_id = db.Column(db.String(36), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "date": _iso(self.date),
            "name": self.name,
            "description": self.description,
            "phase_id": self.phase_id,
        }

    def __repr__(self):
        return f"<PlanMilestone {self.id}: {self.name} @ {self.date}>"


# ── PlanReference ────────────────────────────────────────────────────────────


class PlanReference(TimestampedModel):
    """
    Note / link / file / comment / milestone entry attached to a plan at the
    plan, period-day or calendar-day+phase level.
    """

    __tablename__ = "plan_references"
    __table_args__ = (
        db.Index("idx_plan_ref_period_day", "period_day"),
        db.Index("idx_plan_ref_calendar_day", "calendar_day_id"),
    )

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    content_type = db.Column(
        db.String(20), nullable=False,
        comment="link | document | note | comment | file | milestone",
    )
    title = db.Column(db.String(255), nullable=False)
    url = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=True)
    plan_reference_type_id = db.Column(
        db.String(36), db.ForeignKey("plan_reference_types.id"), nullable=False,
        index=True,
    )
    period_day = db.Column(db.Date, nullable=True)
    calendar_day_id = db.Column(db.String(36), nullable=True)
    phase_id = db.Column(db.String(36), nullable=True)
    date = db.Column(db.Date, nullable=True, comment="Legacy; prefer period_day / calendar_day_id")
    milestone_color = db.Column(db.String(7), nullable=True)

    reference_type = db.relationship("PlanReferenceType")

    @property
    def level(self):
        return self.reference_type.name if self.reference_type else None

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "type": self.content_type,
            "title": self.title,
            "url": self.url,
            "description": self.description,
            "plan_reference_type_id": self.plan_reference_type_id,
            "level": self.level,
            "period_day": _iso(self.period_day),
            "calendar_day_id": self.calendar_day_id,
            "phase_id": self.phase_id,
            "date": _iso(self.date),
            "milestone_color": self.milestone_color,
        }

    def __repr__(self):
        return f"<PlanReference {self.id}: {self.content_type} {self.title}>"


# ── PlanComponentVersion ─────────────────────────────────────────────────────


class PlanComponentVersion(TimestampedModel):
    """
    Append-only ledger row: a plan's target version for a product component
    moved from ``old_version`` to ``new_version``.

    product_id / component_id are not foreign keys: the ledger outlives
    edits to the product master data.
    """

    __tablename__ = "plan_component_versions"
    __table_args__ = (
        db.Index("idx_pcv_plan_component", "plan_id", "component_id"),
    )

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
    )
    product_id = db.Column(db.String(36), nullable=False)
    component_id = db.Column(db.String(36), nullable=False)
    old_version = db.Column(db.String(50), nullable=False)
    new_version = db.Column(db.String(50), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "product_id": self.product_id,
            "component_id": self.component_id,
            "old_version": self.old_version,
            "new_version": self.new_version,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<PlanComponentVersion {self.component_id}: {self.old_version} → {self.new_version}>"


# ── PlanRca ──────────────────────────────────────────────────────────────────


class PlanRca(TimestampedModel):
    """Root-cause-analysis record for a plan (support ticket, tags, learnings)."""

    __tablename__ = "plan_rcas"

    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    support_ticket_number = db.Column(db.String(255), nullable=True)
    rca_number = db.Column(db.String(255), nullable=True)
    key_issues_tags = db.Column(db.JSON, default=list)
    learnings_tags = db.Column(db.JSON, default=list)
    technical_description = db.Column(db.Text, nullable=True)
    reference_file_url = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "support_ticket_number": self.support_ticket_number,
            "rca_number": self.rca_number,
            "key_issues_tags": list(self.key_issues_tags or []),
            "learnings_tags": list(self.learnings_tags or []),
            "technical_description": self.technical_description,
            "reference_file_url": self.reference_file_url,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<PlanRca {self.id}: plan={self.plan_id}>"
