"""Tests for reference replacement and milestone synchronisation.

Coverage:
  1. Reference level inferred once at the boundary (plan / period / day)
  2. References replaced wholesale; explicit reference type honoured
  3. Milestones derived from milestone-type references, deduplicated
  4. Milestone references suppress an explicit milestones list
  5. Explicit milestones used when no milestone reference is present
  6. Boundary validation (content type, url, phase ids)
"""

import uuid
from datetime import date

import pytest
from sqlalchemy import func, select

from release_planner.core.exceptions import NotFoundError, ValidationError
from release_planner.models import db
from release_planner.models.plan import PlanMilestone, PlanReference
from release_planner.services import plan_service
from release_planner.services.milestone_sync import milestones_from_references
from release_planner.services.plan_payloads import (
    DayLevel,
    PeriodLevel,
    PlanLevel,
    parse_milestones,
    parse_reference,
    parse_references,
)


def _milestones(plan_id):
    return db.session.execute(
        select(PlanMilestone).where(PlanMilestone.plan_id == plan_id).order_by(PlanMilestone.date)
    ).scalars().all()


def _reference_count(plan_id):
    return db.session.execute(
        select(func.count()).select_from(PlanReference).where(PlanReference.plan_id == plan_id)
    ).scalar()


def _go_live(**extra):
    return {"type": "milestone", "title": "Go-Live", "date": "2024-03-01", **extra}


class TestReferenceParsing:

    def test_plan_level_by_default(self):
        ref = parse_reference({"type": "note", "title": "Kick-off notes"}, 0)
        assert ref.level == PlanLevel()

    def test_period_level(self):
        ref = parse_reference({"type": "note", "title": "Freeze", "period_day": "2024-02-10"}, 0)
        assert ref.level == PeriodLevel(day=date(2024, 2, 10))

    def test_day_level_needs_calendar_day_and_phase(self):
        phase_id = str(uuid.uuid4())
        ref = parse_reference(
            {"type": "comment", "title": "Standup", "calendar_day_id": "cal-1", "phase_id": phase_id}, 0,
        )
        assert ref.level == DayLevel(calendar_day_id="cal-1", phase_id=phase_id)

    def test_placeholder_phase_id_is_dropped(self):
        ref = parse_reference(
            {"type": "comment", "title": "Standup", "calendar_day_id": "cal-1", "phase_id": "phase-123"}, 0,
        )
        assert ref.phase_id is None
        assert ref.level == PlanLevel()

    def test_malformed_phase_id_rejected(self):
        with pytest.raises(ValidationError):
            parse_reference({"type": "note", "title": "x", "phase_id": "not-a-uuid"}, 0)

    def test_unknown_content_type_rejected(self):
        with pytest.raises(ValidationError, match="Invalid reference type"):
            parse_reference({"type": "video", "title": "Demo"}, 0)

    def test_link_requires_url(self):
        with pytest.raises(ValidationError, match="url is required"):
            parse_reference({"type": "link", "title": "Runbook"}, 0)

    def test_title_required(self):
        with pytest.raises(ValidationError, match="Reference type and title are required"):
            parse_reference({"type": "note"}, 0)

    def test_explicit_milestone_needs_date_and_name(self):
        with pytest.raises(ValidationError, match="Milestone date and name are required"):
            parse_milestones([{"name": "Go-Live"}])

    def test_explicit_milestone_phase_id_must_be_uuid(self):
        with pytest.raises(ValidationError):
            parse_milestones([{"name": "Go-Live", "date": "2024-03-01", "phase_id": "p1"}])


class TestDerivedMilestones:

    def test_duplicates_by_phase_and_date_dropped(self):
        refs = parse_references([
            _go_live(),
            _go_live(title="Go-Live (again)"),
            _go_live(title="Other day", date="2024-03-02"),
            {"type": "note", "title": "Not a milestone", "date": "2024-03-01"},
        ])
        rows = milestones_from_references(refs)
        assert [s["name"] for s in rows] == ["Go-Live", "Other day"]

    def test_same_date_different_phase_kept(self):
        refs = parse_references([
            _go_live(phase_id=str(uuid.uuid4())),
            _go_live(phase_id=str(uuid.uuid4())),
        ])
        assert len(milestones_from_references(refs)) == 2

    def test_milestone_reference_without_date_is_not_derived(self):
        refs = parse_references([{"type": "milestone", "title": "Someday"}])
        assert milestones_from_references(refs) == []


class TestSync:

    def test_milestone_reference_suppresses_explicit_list(self, plan, update_payload):
        payload = update_payload(
            plan,
            references=[_go_live()],
            milestones=[{"name": "Code freeze", "date": "2024-02-15"}],
        )

        plan_service.update_plan(plan.id, payload)

        (milestone,) = _milestones(plan.id)
        assert (milestone.name, milestone.date) == ("Go-Live", date(2024, 3, 1))

    def test_explicit_list_used_without_milestone_references(self, plan, update_payload):
        payload = update_payload(
            plan,
            references=[{"type": "note", "title": "Scope"}],
            milestones=[{"name": "Code freeze", "date": "2024-02-15"}],
        )

        plan_service.update_plan(plan.id, payload)

        assert [m.name for m in _milestones(plan.id)] == ["Code freeze"]

    def test_explicit_list_alone(self, plan, update_payload):
        plan_service.update_plan(plan.id, update_payload(
            plan, milestones=[{"name": "UAT", "date": "2024-02-01"}, {"name": "Go-Live", "date": "2024-03-01"}],
        ))
        assert [m.name for m in _milestones(plan.id)] == ["UAT", "Go-Live"]

    def test_milestones_deleted_not_accumulated(self, plan, update_payload):
        plan_service.update_plan(plan.id, update_payload(plan, references=[_go_live()]))
        plan_service.update_plan(plan.id, update_payload(plan, references=[_go_live(date="2024-03-08")]))

        (milestone,) = _milestones(plan.id)
        assert milestone.date == date(2024, 3, 8)

    def test_references_without_milestones_clear_calendar(self, plan, update_payload):
        plan_service.update_plan(plan.id, update_payload(plan, references=[_go_live()]))
        plan_service.update_plan(plan.id, update_payload(plan, references=[{"type": "note", "title": "x"}]))

        assert _milestones(plan.id) == []
        assert _reference_count(plan.id) == 1

    def test_omitted_sections_untouched(self, plan, update_payload):
        plan_service.update_plan(plan.id, update_payload(plan, references=[_go_live()]))
        plan_service.update_plan(plan.id, update_payload(plan, description="scalars only"))

        assert _reference_count(plan.id) == 1
        assert len(_milestones(plan.id)) == 1

    def test_reference_levels_resolve_to_seeded_types(self, plan, update_payload):
        phase_id = plan.phases[0].id
        plan_service.update_plan(plan.id, update_payload(plan, references=[
            {"type": "note", "title": "Plan note"},
            {"type": "note", "title": "Period note", "period_day": "2024-01-10"},
            {"type": "comment", "title": "Day note", "calendar_day_id": "cal-7", "phase_id": phase_id},
        ]))

        levels = {r.title: r.level for r in plan.references}
        assert levels == {"Plan note": "plan", "Period note": "period", "Day note": "day"}
        day = next(r for r in plan.references if r.title == "Day note")
        assert (day.calendar_day_id, day.phase_id) == ("cal-7", phase_id)

    def test_unknown_explicit_reference_type_fails(self, plan, update_payload):
        payload = update_payload(plan, references=[
            {"type": "note", "title": "x", "plan_reference_type_id": "00000000-0000-0000-0000-000000000000"},
        ])
        with pytest.raises(NotFoundError):
            plan_service.update_plan(plan.id, payload)
        assert _reference_count(plan.id) == 0
