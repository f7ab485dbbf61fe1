"""
Release Planner
Audit trail.

One ``audit_logs`` row per plan-level write: create / update / delete of a
plan, the two-entity updates, RCA rows and reschedule annotations. Rows are
added in the caller's transaction, so a rolled-back reconciliation leaves
no audit entry behind.
"""

import json

from release_planner.models import db
from release_planner.models.base import _uuid, _utcnow

AUDIT_ACTIONS = frozenset({
    "create",
    "update",
    "delete",
    "plan.update_components",
    "plan.update_features",
    "reschedule.annotate",
})


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_plan", "plan_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    # Not a foreign key: the delete entry must survive the plan row.
    plan_id = db.Column(db.String(36), nullable=True)
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="plan | plan_phase_reschedule | plan_rca",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    diff_json = db.Column(
        db.Text, default="{}",
        comment="scalar {field: {old, new}} changes plus derived/removed row counts",
    )
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}/{self.entity_id}>"


def write_audit(session, *, entity_type, entity_id, action, actor="system", plan_id=None, diff=None):
    """Add an audit row to *session* (the active unit of work's) and flush it."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")
    entry = AuditLog(
        plan_id=plan_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    session.add(entry)
    session.flush()
    return entry


def plan_diff(old: dict, new: dict) -> dict:
    """``{field: {"old", "new"}}`` for every key whose value differs."""
    return {
        key: {"old": old.get(key), "new": new.get(key)}
        for key in sorted(set(old) | set(new))
        if old.get(key) != new.get(key)
    }
