"""Tests for phase reschedule derivation, queries and annotation.

Coverage:
  1. Calendar-date normalisation and change detection
  2. Exactly one reschedule per matched phase whose dates moved
  3. Default reschedule type get-or-create, explicit type, owner fallback
  4. Newest-first views with display names
  5. Annotation: type/owner editable, dates immutable, NotFound paths
  6. Removing a phase removes its reschedules
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from release_planner.core.exceptions import NotFoundError
from release_planner.models import db
from release_planner.models.audit import AuditLog
from release_planner.models.catalog import RescheduleType
from release_planner.models.plan import PhaseReschedule
from release_planner.services import plan_service
from release_planner.services.reschedule_service import (
    detect_date_change,
    ensure_default_reschedule_type,
    get_phase_reschedules,
    get_plan_reschedules,
    normalize_calendar_date,
    update_reschedule_annotation,
)
from release_planner.services.unit_of_work import UnitOfWork


def _count(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar()


def _move_phase(plan, update_payload, index, **changes):
    payload = update_payload(plan)
    payload["phases"][index].update(changes)
    return payload


class TestDateNormalisation:

    @pytest.mark.parametrize("raw, expected", [
        ("2024-01-05", "2024-01-05"),
        ("2024-01-05T00:00:00.000Z", "2024-01-05"),
        ("2024-01-05 13:45:00+02:00", "2024-01-05"),
        (date(2024, 1, 5), "2024-01-05"),
        (None, None),
        ("", None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_calendar_date(raw) == expected

    def test_non_iso_remainder_is_kept_and_warned(self, caplog):
        assert normalize_calendar_date("05/01/2024") == "05/01/2024"
        assert "Invalid calendar date format" in caplog.text

    def test_time_of_day_alone_is_not_a_change(self):
        assert not detect_date_change("2024-01-01", "2024-01-31", "2024-01-01T08:00:00Z", "2024-01-31")

    def test_absence_on_one_side_is_a_change(self):
        assert detect_date_change(None, "2024-01-31", "2024-01-01", "2024-01-31")
        assert detect_date_change("2024-01-01", "2024-01-31", "2024-01-01", None)

    def test_both_absent_is_not_a_change(self):
        assert not detect_date_change(None, None, None, None)


class TestDerivation:

    def test_start_date_move_writes_one_row(self, plan, update_payload):
        build = plan.phases[0]
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-05")

        plan_service.update_plan(plan.id, payload)

        rows = db.session.execute(select(PhaseReschedule)).scalars().all()
        assert len(rows) == 1
        row = rows[0]
        assert row.plan_phase_id == build.id
        assert row.original_start_date == date(2024, 1, 1)
        assert row.new_start_date == date(2024, 1, 5)
        assert row.original_end_date == date(2024, 1, 31)
        assert row.new_end_date == date(2024, 1, 31)

    def test_rename_only_writes_nothing(self, plan, update_payload):
        payload = _move_phase(plan, update_payload, 0, name="Build & Unit test", color="#ff0000")

        updated = plan_service.update_plan(plan.id, payload)

        assert _count(PhaseReschedule) == 0
        assert updated.phases[0].name == "Build & Unit test"
        assert updated.phases[0].color == "#ff0000"

    def test_default_type_created_once_and_shared(self, plan, update_payload):
        payload = update_payload(plan)
        payload["phases"][0]["end_date"] = "2024-02-05"
        payload["phases"][1]["start_date"] = "2024-02-06"

        plan_service.update_plan(plan.id, payload)

        types = db.session.execute(select(RescheduleType)).scalars().all()
        assert [t.name for t in types] == ["Default"]
        rows = db.session.execute(select(PhaseReschedule)).scalars().all()
        assert len(rows) == 2
        assert {r.reschedule_type_id for r in rows} == {types[0].id}

    def test_ensure_default_is_idempotent(self):
        uow = UnitOfWork()
        first = ensure_default_reschedule_type(uow)
        second = ensure_default_reschedule_type(uow)
        assert first.id == second.id
        assert _count(RescheduleType) == 1

    def test_explicit_type_is_used(self, plan, update_payload):
        scope_change = RescheduleType(name="Scope change")
        db.session.add(scope_change)
        db.session.commit()
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-08")
        payload["reschedule_type_id"] = scope_change.id

        plan_service.update_plan(plan.id, payload)

        row = db.session.execute(select(PhaseReschedule)).scalar_one()
        assert row.reschedule_type_id == scope_change.id
        assert db.session.execute(
            select(RescheduleType).where(RescheduleType.name == "Default")
        ).scalar_one_or_none() is None

    def test_unknown_explicit_type_fails_whole_update(self, plan, update_payload):
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-08", name="Renamed")
        payload["reschedule_type_id"] = "00000000-0000-0000-0000-000000000000"

        with pytest.raises(NotFoundError):
            plan_service.update_plan(plan.id, payload)

        db.session.expire_all()
        assert plan.phases[0].name == "Build"
        assert plan.phases[0].start_date == date(2024, 1, 1)
        assert _count(PhaseReschedule) == 0

    def test_owner_falls_back_to_plan_it_owner(self, make_plan, owner, update_payload):
        plan = make_plan(it_owner_id=owner.id)
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-02")

        plan_service.update_plan(plan.id, payload)

        assert db.session.execute(select(PhaseReschedule)).scalar_one().owner_id == owner.id

    def test_explicit_owner_wins(self, make_plan, make_owner, update_payload):
        it_owner = make_owner("IT Owner")
        approver = make_owner("Approver")
        plan = make_plan(it_owner_id=it_owner.id)
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-02")
        payload["reschedule_owner_id"] = approver.id

        plan_service.update_plan(plan.id, payload)

        assert db.session.execute(select(PhaseReschedule)).scalar_one().owner_id == approver.id

    def test_missing_owner_is_skipped(self, plan, update_payload):
        payload = _move_phase(plan, update_payload, 0, start_date="2024-01-02")
        payload["reschedule_owner_id"] = "00000000-0000-0000-0000-000000000000"

        plan_service.update_plan(plan.id, payload)

        assert db.session.execute(select(PhaseReschedule)).scalar_one().owner_id is None

    def test_each_phase_carries_its_own_type_and_owner(self, make_plan, make_owner, update_payload):
        it_owner = make_owner("IT Owner")
        approver = make_owner("Approver")
        scope_change = RescheduleType(name="Scope change")
        vendor_delay = RescheduleType(name="Vendor delay")
        db.session.add_all([scope_change, vendor_delay])
        db.session.commit()
        plan = make_plan(it_owner_id=it_owner.id)
        build_id, test_id = plan.phases[0].id, plan.phases[1].id
        payload = update_payload(plan)
        payload["phases"][0].update(
            start_date="2024-01-05", reschedule_type_id=scope_change.id, reschedule_owner_id=approver.id,
        )
        payload["phases"][1].update(end_date="2024-03-08", reschedule_type_id=vendor_delay.id)

        plan_service.update_plan(plan.id, payload)

        rows = {
            r.plan_phase_id: r
            for r in db.session.execute(select(PhaseReschedule)).scalars()
        }
        assert rows[build_id].reschedule_type_id == scope_change.id
        assert rows[build_id].owner_id == approver.id
        assert rows[test_id].reschedule_type_id == vendor_delay.id
        assert rows[test_id].owner_id == it_owner.id

    def test_phase_values_override_request_values(self, plan, owner, update_payload):
        scope_change = RescheduleType(name="Scope change")
        vendor_delay = RescheduleType(name="Vendor delay")
        db.session.add_all([scope_change, vendor_delay])
        db.session.commit()
        payload = update_payload(plan)
        payload["reschedule_type_id"] = vendor_delay.id
        payload["reschedule_owner_id"] = owner.id
        payload["phases"][0].update(start_date="2024-01-05", reschedule_type_id=scope_change.id)
        payload["phases"][1].update(end_date="2024-03-08")

        plan_service.update_plan(plan.id, payload)

        by_phase = {
            r.plan_phase_id: r.reschedule_type_id
            for r in db.session.execute(select(PhaseReschedule)).scalars()
        }
        assert by_phase == {plan.phases[0].id: scope_change.id, plan.phases[1].id: vendor_delay.id}
        owners = db.session.execute(select(PhaseReschedule.owner_id)).scalars().all()
        assert owners == [owner.id, owner.id]

    def test_unknown_phase_type_fails_whole_update(self, plan, update_payload):
        payload = _move_phase(
            plan, update_payload, 0,
            start_date="2024-01-08", reschedule_type_id="00000000-0000-0000-0000-000000000000",
        )

        with pytest.raises(NotFoundError):
            plan_service.update_plan(plan.id, payload)

        assert _count(PhaseReschedule) == 0

    def test_removed_phase_takes_its_reschedules(self, plan, update_payload):
        test_phase_id = plan.phases[1].id
        plan_service.update_plan(plan.id, _move_phase(plan, update_payload, 1, end_date="2024-03-05"))
        assert _count(PhaseReschedule) == 1

        payload = update_payload(plan)
        payload["phases"] = [p for p in payload["phases"] if p["id"] != test_phase_id]
        plan_service.update_plan(plan.id, payload)

        assert _count(PhaseReschedule) == 0
        assert [p.name for p in plan.phases] == ["Build"]


class TestQueries:

    def _two_moves(self, plan, update_payload, owner):
        first = _move_phase(plan, update_payload, 0, start_date="2024-01-03")
        first["reschedule_owner_id"] = owner.id
        plan_service.update_plan(plan.id, first)
        plan_service.update_plan(plan.id, _move_phase(plan, update_payload, 1, end_date="2024-03-10"))

    def test_plan_view_newest_first_with_names(self, plan, owner, update_payload):
        self._two_moves(plan, update_payload, owner)

        views = get_plan_reschedules(plan.id)

        assert [v["phase_name"] for v in views] == ["Test", "Build"]
        assert views[1]["owner_name"] == owner.name
        assert views[0]["owner_name"] is None
        assert {v["reschedule_type_name"] for v in views} == {"Default"}

    def test_phase_view(self, plan, owner, update_payload):
        self._two_moves(plan, update_payload, owner)

        views = get_phase_reschedules(plan.phases[0].id)

        assert len(views) == 1
        assert views[0]["new_start_date"] == "2024-01-03"

    def test_missing_phase(self):
        with pytest.raises(NotFoundError):
            get_phase_reschedules("00000000-0000-0000-0000-000000000000")

    def test_missing_plan(self):
        with pytest.raises(NotFoundError):
            get_plan_reschedules("00000000-0000-0000-0000-000000000000")


class TestAnnotation:

    def _reschedule(self, plan, update_payload):
        plan_service.update_plan(plan.id, _move_phase(plan, update_payload, 0, start_date="2024-01-04"))
        return db.session.execute(select(PhaseReschedule)).scalar_one()

    def test_change_type_and_owner(self, plan, owner, update_payload):
        row = self._reschedule(plan, update_payload)
        vendor_delay = RescheduleType(name="Vendor delay")
        db.session.add(vendor_delay)
        db.session.commit()

        view = update_reschedule_annotation(
            row.id, {"reschedule_type_id": vendor_delay.id, "owner_id": owner.id}, actor="pm@example.com",
        )

        assert view["reschedule_type_name"] == "Vendor delay"
        assert view["owner_name"] == owner.name
        assert view["original_start_date"] == "2024-01-01"
        assert view["new_start_date"] == "2024-01-04"
        entry = db.session.execute(
            select(AuditLog).where(AuditLog.action == "reschedule.annotate")
        ).scalar_one()
        assert entry.actor == "pm@example.com"
        assert entry.plan_id == plan.id

    def test_dates_are_not_editable(self, plan, update_payload):
        row = self._reschedule(plan, update_payload)
        update_reschedule_annotation(row.id, {"new_start_date": "2030-01-01"})
        db.session.expire_all()
        assert row.new_start_date == date(2024, 1, 4)

    def test_missing_reschedule(self):
        with pytest.raises(NotFoundError):
            update_reschedule_annotation("00000000-0000-0000-0000-000000000000", {"owner_id": "x"})

    def test_missing_owner(self, plan, update_payload):
        row = self._reschedule(plan, update_payload)
        with pytest.raises(NotFoundError):
            update_reschedule_annotation(row.id, {"owner_id": "00000000-0000-0000-0000-000000000000"})
