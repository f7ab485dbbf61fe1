"""
Reference replacement and milestone synchronisation.

References are replaced wholesale when submitted. Milestones are a
projection of milestone-type references and are regenerated in the same
transaction. An explicit milestones list is honoured only when the
submission carries no milestone-type reference, so there is never more than
one source of truth for the calendar.
"""
import logging

from release_planner.core.exceptions import ValidationError
from release_planner.models.plan import PlanMilestone, PlanReference
from release_planner.services.helpers.related import MissingPolicy, resolve_related
from release_planner.services.plan_payloads import DayLevel, PeriodLevel

logger = logging.getLogger(__name__)


def milestone_key(phase_id, day) -> str:
    return f"{phase_id or ''}-{day.isoformat()}"


def milestones_from_references(references) -> list[dict]:
    """Milestone rows from milestone-type references, first per (phase, date) wins."""
    seen = set()
    result = []
    for ref in references:
        if not ref.is_milestone:
            continue
        key = milestone_key(ref.phase_id, ref.date)
        if key in seen:
            logger.warning("Skipping duplicate milestone reference: key=%s title=%s", key, ref.title)
            continue
        seen.add(key)
        result.append({
            "date": ref.date,
            "name": ref.title,
            "description": ref.description,
            "phase_id": ref.phase_id,
        })
    return result


def _resolve_reference_type_id(uow, ref, cache: dict) -> str:
    if ref.reference_type_id:
        rtype = resolve_related(
            uow.reference_types.get(ref.reference_type_id),
            "PlanReferenceType", ref.reference_type_id,
            policy=MissingPolicy.FAIL_ON_MISSING,
        )
        return rtype.id
    name = ref.level.name
    if name not in cache:
        rtype = uow.reference_types.find_by_name(name)
        if rtype is None:
            raise ValidationError(
                "Plan reference type is required",
                details={"plan_reference_type": f"no reference type named {name!r}"},
            )
        cache[name] = rtype.id
    return cache[name]


def _build_reference(plan, ref, type_id) -> PlanReference:
    row = PlanReference(
        plan_id=plan.id,
        content_type=ref.content_type,
        title=ref.title,
        url=ref.url,
        description=ref.description,
        plan_reference_type_id=type_id,
        phase_id=ref.phase_id,
        date=ref.date,
        milestone_color=ref.milestone_color if ref.content_type == "milestone" else None,
    )
    level = ref.level
    if isinstance(level, PeriodLevel):
        row.period_day = level.day
    elif isinstance(level, DayLevel):
        row.calendar_day_id = level.calendar_day_id
        row.phase_id = level.phase_id
    return row


def _replace_milestones(uow, plan, rows) -> int:
    uow.delete_where(PlanMilestone, plan_id=plan.id)
    uow.flush()
    for row in rows:
        uow.session.add(PlanMilestone(plan_id=plan.id, **row))
    return len(rows)


def sync_references_and_milestones(uow, plan, references=None, milestones=None) -> dict:
    """
    Replace the plan's references and/or milestones inside the active unit of work.

    Args:
        references: list of ReferenceInput, or None when not submitted.
        milestones: list of MilestoneInput, or None when not submitted.

    Returns counts for logging and audit.
    """
    counts = {"references": None, "milestones": None}
    if references is None and milestones is None:
        return counts

    if references is not None:
        uow.delete_where(PlanReference, plan_id=plan.id)
        uow.flush()
        type_cache = {}
        for ref in references:
            uow.session.add(_build_reference(plan, ref, _resolve_reference_type_id(uow, ref, type_cache)))
        counts["references"] = len(references)

    derived = milestones_from_references(references or [])
    if derived:
        if milestones is not None:
            logger.info(
                "Ignoring %d explicit milestones: milestone references present plan_id=%s",
                len(milestones), plan.id,
            )
        counts["milestones"] = _replace_milestones(uow, plan, derived)
    elif milestones is not None:
        counts["milestones"] = _replace_milestones(uow, plan, [
            {"date": m.date, "name": m.name, "description": m.description, "phase_id": m.phase_id}
            for m in milestones
        ])
    elif references is not None:
        # References without milestones clear the derived calendar
        counts["milestones"] = _replace_milestones(uow, plan, [])

    uow.flush()
    uow.session.expire(plan, ["references", "milestones"])
    logger.debug(
        "References synced: plan_id=%s references=%s milestones=%s",
        plan.id, counts["references"], counts["milestones"],
    )
    return counts
