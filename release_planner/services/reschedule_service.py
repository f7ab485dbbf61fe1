"""
Phase reschedule derivation and queries.

A reschedule is an append-only audit row written whenever a matched phase's
calendar dates change during a plan update. Derivation runs inside the
plan-update transaction; any failure while writing a reschedule is fatal to
that transaction.

Provides:
- normalize_calendar_date / detect_date_change: date comparison rules
- ensure_default_reschedule_type: get-or-create inside the active unit of work
- RescheduleDeriver: builds and persists rows for one reconciliation
- get_phase_reschedules / get_plan_reschedules: newest-first views
- update_reschedule_annotation: the only mutation of an existing reschedule
"""
import logging
import re
from datetime import date, datetime

from flask import current_app
from sqlalchemy import select

from release_planner.models.audit import write_audit
from release_planner.models.base import _utcnow
from release_planner.models.catalog import DEFAULT_RESCHEDULE_TYPE_DESCRIPTION, RescheduleType
from release_planner.models.plan import PhaseReschedule, PlanPhase
from release_planner.services.helpers.related import MissingPolicy, resolve_related
from release_planner.services.unit_of_work import UnitOfWork
from release_planner.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ── Date comparison ──────────────────────────────────────────────────────────


def normalize_calendar_date(value):
    """Reduce *value* to a bare ``YYYY-MM-DD`` string (None when empty).

    Time-of-day and timezone suffixes are stripped. A remainder that is not
    an ISO date is logged and returned as-is so it still compares unequal.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    normalized = str(value).split("T")[0].split(" ")[0]
    if not _ISO_DATE.match(normalized):
        logger.warning("Invalid calendar date format: value=%r normalized=%r", value, normalized)
    return normalized or None


def _changed(old, new) -> bool:
    return (old is not None or new is not None) and old != new


def detect_date_change(old_start, old_end, new_start, new_end) -> bool:
    """True when the normalized start or end date differs (None vs a date counts)."""
    return _changed(normalize_calendar_date(old_start), normalize_calendar_date(new_start)) or _changed(
        normalize_calendar_date(old_end), normalize_calendar_date(new_end),
    )


# ── Reschedule type ──────────────────────────────────────────────────────────


def ensure_default_reschedule_type(uow: UnitOfWork, name: str | None = None) -> RescheduleType:
    """Return the default reschedule type, creating it in *uow* when absent.

    Idempotent within the surrounding transaction; two concurrent first-time
    creators are resolved by the unique constraint on ``name``.
    """
    name = name or current_app.config.get("DEFAULT_RESCHEDULE_TYPE_NAME", "Default")
    existing = uow.reschedule_types.find_by_name(name)
    if existing is not None:
        return existing
    created = uow.reschedule_types.add(
        RescheduleType(name=name, description=DEFAULT_RESCHEDULE_TYPE_DESCRIPTION),
    )
    uow.flush()
    logger.info("Created default reschedule type: id=%s name=%s", created.id, name)
    return created


# ── Derivation ───────────────────────────────────────────────────────────────


class RescheduleDeriver:
    """
    Collects reschedule rows for one plan update.

    Each row takes the type and owner submitted on its phase, else the
    request-level values, else the default type and the plan's IT owner.
    Lookups are cached by id for the life of the deriver.
    """

    def __init__(self, uow: UnitOfWork, plan, reschedule_type_id=None, owner_id=None):
        self.uow = uow
        self.plan = plan
        self.requested_type_id = reschedule_type_id or None
        self.requested_owner_id = owner_id or None
        self.pending: list[PhaseReschedule] = []
        self._types: dict[str, str] = {}
        self._owners: dict[str, str | None] = {}
        self._default_type_id = None

    def _type_id(self, type_id=None) -> str:
        type_id = type_id or self.requested_type_id
        if not type_id:
            if self._default_type_id is None:
                self._default_type_id = ensure_default_reschedule_type(self.uow).id
            return self._default_type_id
        if type_id not in self._types:
            rtype = resolve_related(
                self.uow.reschedule_types.get(type_id), "RescheduleType", type_id,
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            self._types[type_id] = rtype.id
        return self._types[type_id]

    def _owner_id(self, owner_id=None):
        owner_id = owner_id or self.requested_owner_id
        if not owner_id:
            return self.plan.it_owner_id
        if owner_id not in self._owners:
            owner = resolve_related(
                self.uow.owners.get(owner_id), "Owner", owner_id,
                policy=MissingPolicy.SKIP_MISSING,
                context=f"plan_id={self.plan.id} (falling back to plan IT owner)",
            )
            self._owners[owner_id] = owner.id if owner is not None else None
        return self._owners[owner_id] or self.plan.it_owner_id

    def observe(self, phase: PlanPhase, new_start, new_end, reschedule_type_id=None, owner_id=None):
        """Queue a reschedule if *phase* moves to (new_start, new_end).

        Must be called before the phase row itself is updated.
        """
        if not detect_date_change(phase.start_date, phase.end_date, new_start, new_end):
            return None
        row = PhaseReschedule(
            plan_phase_id=phase.id,
            rescheduled_at=_utcnow(),
            original_start_date=_as_date(phase.start_date),
            original_end_date=_as_date(phase.end_date),
            new_start_date=_as_date(new_start),
            new_end_date=_as_date(new_end),
            reschedule_type_id=self._type_id(reschedule_type_id),
            owner_id=self._owner_id(owner_id),
        )
        self.pending.append(row)
        logger.info(
            "Derived reschedule: plan_id=%s phase_id=%s %s..%s -> %s..%s",
            self.plan.id, phase.id,
            row.original_start_date, row.original_end_date,
            row.new_start_date, row.new_end_date,
        )
        return row

    def persist(self) -> list[PhaseReschedule]:
        """Write every queued row. A phase missing at this point is fatal."""
        for row in self.pending:
            resolve_related(
                self.uow.session.get(PlanPhase, row.plan_phase_id),
                "PlanPhase", row.plan_phase_id,
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            self.uow.session.add(row)
        if self.pending:
            self.uow.flush()
        return list(self.pending)


def _as_date(value):
    if value is None or isinstance(value, date):
        return value
    return parse_date_input(normalize_calendar_date(value))


# ── Queries ──────────────────────────────────────────────────────────────────


def reschedule_view(row: PhaseReschedule, phase_name=None) -> dict:
    """Reschedule dict with display names; lookups never fail the read."""
    result = row.to_dict()
    result["phase_name"] = phase_name if phase_name is not None else (
        row.phase.name if row.phase is not None else None
    )
    result["reschedule_type_name"] = row.reschedule_type.name if row.reschedule_type else None
    result["owner_name"] = row.owner.name if row.owner else None
    return result


def get_phase_reschedules(phase_id, uow: UnitOfWork | None = None) -> list[dict]:
    uow = uow or UnitOfWork()
    phase = resolve_related(
        uow.session.get(PlanPhase, phase_id), "PlanPhase", phase_id,
        policy=MissingPolicy.FAIL_ON_MISSING,
    )
    stmt = (
        select(PhaseReschedule)
        .where(PhaseReschedule.plan_phase_id == phase.id)
        .order_by(PhaseReschedule.rescheduled_at.desc())
    )
    rows = uow.session.execute(stmt).scalars().all()
    return [reschedule_view(r, phase.name) for r in rows]


def get_plan_reschedules(plan_id, uow: UnitOfWork | None = None) -> list[dict]:
    uow = uow or UnitOfWork()
    resolve_related(uow.plans.get(plan_id), "Plan", plan_id, policy=MissingPolicy.FAIL_ON_MISSING)
    stmt = (
        select(PhaseReschedule, PlanPhase.name)
        .join(PlanPhase, PlanPhase.id == PhaseReschedule.plan_phase_id)
        .where(PlanPhase.plan_id == plan_id)
        .order_by(PhaseReschedule.rescheduled_at.desc())
    )
    return [reschedule_view(row, name) for row, name in uow.session.execute(stmt).all()]


def update_reschedule_annotation(reschedule_id, data: dict, actor="system") -> dict:
    """Change the type and/or owner of an existing reschedule. Dates are immutable."""
    uow = UnitOfWork()

    def _apply(u):
        row = resolve_related(
            u.session.get(PhaseReschedule, reschedule_id), "PhaseReschedule", reschedule_id,
            policy=MissingPolicy.FAIL_ON_MISSING,
        )
        diff = {}
        if data.get("reschedule_type_id") is not None:
            rtype = resolve_related(
                u.reschedule_types.get(data["reschedule_type_id"]),
                "RescheduleType", data["reschedule_type_id"],
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            diff["reschedule_type_id"] = {"old": row.reschedule_type_id, "new": rtype.id}
            row.reschedule_type_id = rtype.id
        if data.get("owner_id") is not None:
            owner = resolve_related(
                u.owners.get(data["owner_id"]), "Owner", data["owner_id"],
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            diff["owner_id"] = {"old": row.owner_id, "new": owner.id}
            row.owner_id = owner.id
        u.flush()
        write_audit(
            u.session, entity_type="plan_phase_reschedule", entity_id=row.id,
            action="reschedule.annotate", actor=actor,
            plan_id=row.phase.plan_id if row.phase else None, diff=diff,
        )
        u.session.refresh(row)
        return reschedule_view(row)

    result = uow.with_transaction(_apply)
    logger.info("Reschedule annotated: reschedule_id=%s", reschedule_id)
    return result
