"""
Release Planner
Reference-data models consumed by the plan reconciliation engine.

Models:
    - RescheduleType: classification attached to phase reschedules ("Default", ...)
    - Owner: person who owns a plan or approves a reschedule
    - PlanReferenceType: level discriminator for plan references (plan | period | day)
    - Feature: feature tracked against a plan via its feature_ids list
    - BasePhase: phase template seeded into plans created without phases
"""

from release_planner.models import db
from release_planner.models.base import TimestampedModel, _iso


DEFAULT_RESCHEDULE_TYPE_DESCRIPTION = "Default reschedule type for automatic phase date changes"

REFERENCE_LEVELS = ("plan", "period", "day")

FEATURE_STATUSES = {"planned", "in_progress", "completed", "blocked"}


# ── RescheduleType ───────────────────────────────────────────────────────────


class RescheduleType(TimestampedModel):
    """Reason category for a phase reschedule (e.g. Default, Scope Change)."""

    __tablename__ = "reschedule_types"

    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<RescheduleType {self.id}: {self.name}>"


# ── Owner ────────────────────────────────────────────────────────────────────


class Owner(TimestampedModel):
    """IT owner / lead referenced by plans and reschedules."""

    __tablename__ = "owners"

    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(200), default="")

    def to_dict(self):
        return {"id": self.id, "name": self.name, "email": self.email}

    def __repr__(self):
        return f"<Owner {self.id}: {self.name}>"


# ── PlanReferenceType ────────────────────────────────────────────────────────


class PlanReferenceType(TimestampedModel):
    """Level at which a reference is anchored: plan-wide, period day or calendar day."""

    __tablename__ = "plan_reference_types"

    name = db.Column(
        db.String(20), nullable=False, unique=True,
        comment="plan | period | day",
    )
    description = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "description": self.description}

    def __repr__(self):
        return f"<PlanReferenceType {self.id}: {self.name}>"


# ── Feature ──────────────────────────────────────────────────────────────────


class Feature(TimestampedModel):
    """Feature delivered by a plan. Plans reference features by id only."""

    __tablename__ = "features"

    name = db.Column(db.String(255), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="planned",
        comment="planned | in_progress | completed | blocked",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Feature {self.id}: {self.name} ({self.status})>"


# ── BasePhase ────────────────────────────────────────────────────────────────


class BasePhase(TimestampedModel):
    """
    Phase template maintained outside any plan.

    Templates flagged ``is_default`` are copied, without dates, into a plan
    created with no phases of its own.
    """

    __tablename__ = "base_phases"

    name = db.Column(db.String(255), nullable=False, unique=True)
    color = db.Column(db.String(7), nullable=False, unique=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    sequence = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "is_default": self.is_default,
            "sequence": self.sequence,
        }

    def __repr__(self):
        return f"<BasePhase {self.id}: {self.name}>"
