"""Tests for plan deletion.

Coverage:
  1. Every owned row is removed in one transaction
  2. Features listed on the plan are marked completed
  3. Legacy gantt cleanup: runs when the table exists, tolerated when it does not
  4. Audit row survives the plan
"""

import json

import pytest
from sqlalchemy import func, select, text

from release_planner.core.exceptions import NotFoundError
from release_planner.models import db
from release_planner.models.audit import AuditLog
from release_planner.models.plan import (
    PhaseReschedule,
    Plan,
    PlanComponentVersion,
    PlanMilestone,
    PlanPhase,
    PlanRca,
    PlanReference,
    PlanTask,
)
from release_planner.services import plan_service


def _count(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar()


@pytest.fixture()
def populated_plan(plan, product, make_feature, update_payload):
    features = [make_feature("Wallet"), make_feature("Refunds", status="in_progress")]
    payload = update_payload(
        plan,
        feature_ids=[f.id for f in features],
        components=[{"component_id": product.components[0].id, "final_version": "1.1"}],
        references=[{"type": "milestone", "title": "Go-Live", "date": "2024-03-01"}],
        tasks=[{"title": "Rehearsal", "start_date": "2024-02-10", "end_date": "2024-02-11"}],
    )
    payload["phases"][0]["end_date"] = "2024-02-03"
    plan_service.update_plan(plan.id, payload)
    plan_service.create_rca(plan.id, {"rca_number": "RCA-1", "key_issues_tags": ["db"]})
    return plan, features


class TestDeletePlan:

    def test_removes_everything_owned(self, populated_plan):
        plan, _ = populated_plan
        plan_id = plan.id
        for model in (PlanPhase, PhaseReschedule, PlanTask, PlanMilestone, PlanReference,
                      PlanComponentVersion, PlanRca):
            assert _count(model) > 0, model.__name__

        plan_service.delete_plan(plan_id, actor="admin@example.com")

        assert db.session.get(Plan, plan_id) is None
        for model in (PlanPhase, PhaseReschedule, PlanTask, PlanMilestone, PlanReference,
                      PlanComponentVersion, PlanRca):
            assert _count(model) == 0, model.__name__

    def test_features_marked_completed(self, populated_plan):
        plan, features = populated_plan

        plan_service.delete_plan(plan.id)

        db.session.expire_all()
        assert {f.status for f in features} == {"completed"}

    def test_audit_row_survives(self, populated_plan):
        plan, _ = populated_plan
        plan_id = plan.id

        plan_service.delete_plan(plan_id, actor="admin@example.com")

        entry = db.session.execute(
            select(AuditLog).where(AuditLog.action == "delete", AuditLog.entity_id == plan_id)
        ).scalar_one()
        diff = json.loads(entry.diff_json)
        assert entry.actor == "admin@example.com"
        assert diff["removed"]["features_completed"] == 2
        assert diff["removed"]["reschedules"] == 1

    def test_legacy_gantt_rows_removed_when_table_exists(self, plan):
        db.session.execute(text("CREATE TABLE gantt_cell_data (id INTEGER PRIMARY KEY, plan_id VARCHAR(36))"))
        db.session.execute(text("INSERT INTO gantt_cell_data (plan_id) VALUES (:p)"), {"p": plan.id})
        db.session.commit()
        try:
            plan_service.delete_plan(plan.id)
            remaining = db.session.execute(text("SELECT COUNT(*) FROM gantt_cell_data")).scalar()
            assert remaining == 0
        finally:
            db.session.execute(text("DROP TABLE gantt_cell_data"))
            db.session.commit()

    def test_missing_legacy_table_does_not_abort(self, plan, caplog):
        plan_id = plan.id
        plan_service.delete_plan(plan_id)
        assert db.session.get(Plan, plan_id) is None
        assert "Legacy gantt cleanup skipped" in caplog.text

    def test_missing_plan(self):
        with pytest.raises(NotFoundError):
            plan_service.delete_plan("00000000-0000-0000-0000-000000000000")
