"""Plan service layer: public operations on release plans.

Transaction policy: public functions commit on success through
UnitOfWork.with_transaction and roll back on any error. Internal helpers
only flush.

Provides:
- Plan list / get / create / update / delete
- Two-entity transactional variants (plan + product components,
  plan + features), each under its own optimistic-concurrency tokens
- RCA rows attached to a plan
- Reference-type seeding
"""
import logging

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from release_planner.core.exceptions import ConflictError, NotFoundError, ValidationError
from release_planner.models.audit import write_audit
from release_planner.models.catalog import FEATURE_STATUSES, REFERENCE_LEVELS, PlanReferenceType
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
from release_planner.services.component_history import resolve_old_version
from release_planner.services.helpers.related import MissingPolicy, resolve_related
from release_planner.services.plan_payloads import (
    PlanUpdateRequest,
    optional_list,
    parse_components,
    parse_phases,
    parse_scalars,
)
from release_planner.services.plan_reconciler import (
    PlanReconciler,
    check_concurrency_token,
    validate_scalar_changes,
)
from release_planner.services.unit_of_work import UnitOfWork
from release_planner.utils.helpers import parse_timestamp

logger = logging.getLogger(__name__)

COMPLETED_FEATURE_STATUS = "completed"

# Legacy per-cell Gantt storage; dropped from the schema but may linger in old databases
LEGACY_GANTT_TABLE = "gantt_cell_data"

_REFERENCE_LEVEL_DESCRIPTIONS = {
    "plan": "Reference attached to the whole plan",
    "period": "Reference attached to a day of the plan period",
    "day": "Reference attached to a calendar day of a phase",
}


def _token(value, label):
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise ValidationError(f"{label} must be an ISO-8601 timestamp", details={label: "invalid"}) from exc


def _get_plan(uow, plan_id):
    return resolve_related(uow.plans.get(plan_id), "Plan", plan_id, policy=MissingPolicy.FAIL_ON_MISSING)


# ═════════════════════════════════════════════════════════════════════════════
# Plan CRUD
# ═════════════════════════════════════════════════════════════════════════════


def list_plans() -> list[dict]:
    return [p.to_dict() for p in UnitOfWork().plans.list_all()]


def get_plan(plan_id) -> Plan:
    return _get_plan(UnitOfWork(), plan_id)


def _seed_default_phases(uow, plan) -> int:
    """Copy the default base-phase templates into *plan*, without dates."""
    templates = uow.base_phases.list_defaults()
    for index, template in enumerate(templates):
        uow.session.add(PlanPhase(
            plan_id=plan.id,
            name=template.name,
            color=template.color,
            metric_values={},
            sequence=template.sequence if template.sequence is not None else index + 1,
        ))
    if templates:
        logger.info("Seeded default phases: plan_id=%s count=%d", plan.id, len(templates))
    return len(templates)


def create_plan(data: dict, actor: str = "system") -> Plan:
    """Create a plan with optional initial phases.

    Requires name, status, product_id, start_date and end_date; the end date
    must fall after the start date and the normalised name must be unique
    (case-insensitive). A plan submitted without phases starts with the
    default base-phase templates.
    """
    if not isinstance(data, dict):
        raise ValidationError("Plan payload must be an object")
    scalars = parse_scalars(data)
    missing = [k for k in ("name", "status", "product_id", "start_date", "end_date") if not scalars.get(k)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    if scalars["start_date"] >= scalars["end_date"]:
        raise ValidationError(
            "End date must be after start date", details={"end_date": "must be after start_date"},
        )
    phases = parse_phases(optional_list(data, "phases")) or []

    uow = UnitOfWork()

    def _apply(u):
        existing = u.plans.find_by_name(scalars["name"])
        if existing is not None:
            raise ConflictError("Plan", "name", existing.name)
        resolve_related(
            u.products.get(scalars["product_id"]), "Product", scalars["product_id"],
            policy=MissingPolicy.FAIL_ON_MISSING,
        )
        for key in ("it_owner_id", "lead_id"):
            if scalars.get(key):
                resolve_related(
                    u.owners.get(scalars[key]), "Owner", scalars[key],
                    policy=MissingPolicy.FAIL_ON_MISSING,
                )

        plan = Plan(**{"release_status": "to_be_defined", **scalars})
        u.session.add(plan)
        u.flush()
        for index, phase in enumerate(phases):
            u.session.add(PlanPhase(
                plan_id=plan.id,
                name=phase.name,
                start_date=phase.start_date,
                end_date=phase.end_date,
                color=phase.color,
                metric_values=dict(phase.metric_values),
                sequence=phase.sequence if phase.sequence is not None else index + 1,
            ))
        if not phases:
            _seed_default_phases(u, plan)
        u.flush()
        write_audit(
            u.session, entity_type="plan", entity_id=plan.id, action="create", actor=actor, plan_id=plan.id,
        )
        return plan

    plan = uow.with_transaction(_apply)
    logger.info("Plan created: plan_id=%s name=%s phases=%d", plan.id, plan.name, len(plan.phases))
    return plan


def update_plan(plan_id, data: dict, actor: str = "system") -> Plan:
    """Reconcile plan *plan_id* to the desired state in *data*."""
    request = PlanUpdateRequest.from_payload(data, actor=actor)
    return PlanReconciler().reconcile(plan_id, request)


def _cleanup_legacy_gantt_cells(uow, plan_id):
    """Best-effort removal of legacy Gantt rows; failure never aborts the delete."""
    try:
        with uow.savepoint():
            uow.session.execute(
                text(f"DELETE FROM {LEGACY_GANTT_TABLE} WHERE plan_id = :plan_id"),
                {"plan_id": plan_id},
            )
    except SQLAlchemyError as exc:
        logger.warning("Legacy gantt cleanup skipped: plan_id=%s error=%s", plan_id, exc.__class__.__name__)


def delete_plan(plan_id, actor: str = "system") -> None:
    """
    Delete a plan and everything it owns in one transaction.

    Features listed in the plan's feature_ids are marked completed first.
    """
    uow = UnitOfWork()

    def _apply(u):
        plan = _get_plan(u, plan_id)

        features = u.features.list_by_ids(plan.feature_ids or [])
        for feature in features:
            feature.status = COMPLETED_FEATURE_STATUS
            feature.touch()
        u.flush()

        phase_ids = [p.id for p in u.plans.load_phases(plan.id)]
        removed = {"features_completed": len(features)}
        if phase_ids:
            reschedules = u.session.execute(
                select(PhaseReschedule).where(PhaseReschedule.plan_phase_id.in_(phase_ids))
            ).scalars().all()
            for row in reschedules:
                u.session.delete(row)
            removed["reschedules"] = len(reschedules)
        for model in (PlanPhase, PlanTask, PlanMilestone, PlanReference, PlanComponentVersion, PlanRca):
            removed[model.__tablename__] = u.delete_where(model, plan_id=plan.id)
        u.flush()

        _cleanup_legacy_gantt_cells(u, plan.id)

        write_audit(
            u.session, entity_type="plan", entity_id=plan.id, action="delete", actor=actor,
            plan_id=plan.id, diff={"name": plan.name, "removed": removed},
        )
        u.session.expire(plan, ["phases", "tasks", "milestones", "references"])
        u.session.delete(plan)
        return removed

    removed = uow.with_transaction(_apply)
    logger.info("Plan deleted: plan_id=%s removed=%s", plan_id, removed)


# ═════════════════════════════════════════════════════════════════════════════
# Two-entity transactional variants
# ═════════════════════════════════════════════════════════════════════════════


def _apply_plan_fields(uow, plan, plan_data: dict):
    scalars = parse_scalars(plan_data)
    validate_scalar_changes(uow, plan, scalars)
    for key, value in scalars.items():
        setattr(plan, key, value)


def update_plan_with_components(plan_id, data: dict, actor: str = "system") -> Plan:
    """
    Update a plan and advance its product's component versions atomically.

    ``data``:
        plan:              plan fields, optionally ``updated_at`` and ``components``
        product_id:        product owning the components
        product_updated_at: product token
        component_updates: [{id, final_version, updated_at}]

    Each advanced component moves ``current_version`` to ``previous_version``
    and takes the final version as its new ``current_version``.
    """
    if not isinstance(data, dict):
        raise ValidationError("Payload must be an object")
    plan_data = data.get("plan") or {}
    if not isinstance(plan_data, dict):
        raise ValidationError("plan must be an object", details={"plan": "invalid"})
    updates = optional_list(data, "component_updates") or []
    for i, upd in enumerate(updates):
        if not isinstance(upd, dict) or not upd.get("id") or not upd.get("final_version"):
            raise ValidationError(
                "Component update requires id and final_version",
                details={f"component_updates[{i}]": "invalid"},
            )
    plan_components = parse_components(optional_list(plan_data, "components"))
    plan_token = _token(plan_data.get("updated_at"), "plan.updated_at")
    product_token = _token(data.get("product_updated_at"), "product_updated_at")
    product_id = data.get("product_id")
    if not product_id:
        raise ValidationError("product_id is required", details={"product_id": "required"})

    uow = UnitOfWork()

    def _apply(u):
        plan = _get_plan(u, plan_id)
        check_concurrency_token(plan.updated_at, plan_token, resource="Plan", resource_id=plan.id)

        product = resolve_related(
            u.products.get_fresh(product_id), "Product", product_id,
            policy=MissingPolicy.FAIL_ON_MISSING,
        )
        check_concurrency_token(product.updated_at, product_token, resource="Product", resource_id=product.id)

        previous_targets = plan.component_targets()
        _apply_plan_fields(u, plan, plan_data)
        if plan_components is not None:
            plan.components = [c.to_json() for c in plan_components]

        components = product.component_map()
        history = []
        for upd in updates:
            component = resolve_related(
                components.get(upd["id"]), "ProductComponentVersion", upd["id"],
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            check_concurrency_token(
                component.updated_at, _token(upd.get("updated_at"), "component_updates.updated_at"),
                resource="ProductComponentVersion", resource_id=component.id,
            )
            final_version = str(upd["final_version"]).strip()
            old_version = previous_targets.get(component.id) or component.current_version
            if old_version != final_version:
                history.append(PlanComponentVersion(
                    plan_id=plan.id, product_id=product.id, component_id=component.id,
                    old_version=resolve_old_version(old_version, "", final_version),
                    new_version=final_version,
                ))
            component.previous_version = component.current_version
            component.current_version = final_version
            component.touch()

        updated_ids = {upd["id"] for upd in updates}
        for comp in plan_components or []:
            if comp.component_id in updated_ids:
                continue
            component = components.get(comp.component_id)
            if component is None:
                continue
            previous = previous_targets.get(comp.component_id)
            if previous and previous == comp.final_version:
                continue
            history.append(PlanComponentVersion(
                plan_id=plan.id, product_id=product.id, component_id=comp.component_id,
                old_version=resolve_old_version(previous, component.current_version, comp.final_version),
                new_version=comp.final_version,
            ))

        for row in history:
            u.session.add(row)
        plan.touch()
        product.touch()
        u.flush()
        write_audit(
            u.session, entity_type="plan", entity_id=plan.id, action="plan.update_components", actor=actor,
            plan_id=plan.id,
            diff={"product_id": product.id, "advanced": sorted(updated_ids), "history": len(history)},
        )
        return plan

    plan = uow.with_transaction(_apply)
    logger.info("Plan and components updated: plan_id=%s product_id=%s", plan_id, product_id)
    return plan


def update_plan_with_features(plan_id, data: dict, actor: str = "system") -> Plan:
    """
    Update a plan and the status of its features atomically.

    ``data``:
        plan:            plan fields, optionally ``updated_at``
        feature_updates: [{id, status, updated_at}]
    """
    if not isinstance(data, dict):
        raise ValidationError("Payload must be an object")
    plan_data = data.get("plan") or {}
    if not isinstance(plan_data, dict):
        raise ValidationError("plan must be an object", details={"plan": "invalid"})
    updates = optional_list(data, "feature_updates") or []
    for i, upd in enumerate(updates):
        if not isinstance(upd, dict) or not upd.get("id"):
            raise ValidationError("Feature update requires id", details={f"feature_updates[{i}].id": "required"})
        if upd.get("status") not in FEATURE_STATUSES:
            raise ValidationError(
                f"Invalid feature status: '{upd.get('status')}'. Allowed: {sorted(FEATURE_STATUSES)}",
                details={f"feature_updates[{i}].status": "invalid"},
            )
    plan_token = _token(plan_data.get("updated_at"), "plan.updated_at")

    uow = UnitOfWork()

    def _apply(u):
        plan = _get_plan(u, plan_id)
        check_concurrency_token(plan.updated_at, plan_token, resource="Plan", resource_id=plan.id)
        _apply_plan_fields(u, plan, plan_data)

        for upd in updates:
            feature = resolve_related(
                u.features.get(upd["id"]), "Feature", upd["id"],
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            check_concurrency_token(
                feature.updated_at, _token(upd.get("updated_at"), "feature_updates.updated_at"),
                resource="Feature", resource_id=feature.id,
            )
            feature.status = upd["status"]
            feature.touch()

        plan.touch()
        u.flush()
        write_audit(
            u.session, entity_type="plan", entity_id=plan.id, action="plan.update_features", actor=actor,
            plan_id=plan.id, diff={"features": {upd["id"]: upd["status"] for upd in updates}},
        )
        return plan

    plan = uow.with_transaction(_apply)
    logger.info("Plan and features updated: plan_id=%s features=%d", plan_id, len(updates))
    return plan


# ═════════════════════════════════════════════════════════════════════════════
# RCA rows
# ═════════════════════════════════════════════════════════════════════════════


def _tags(value, key):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError(f"{key} must be an array of strings", details={key: "invalid"})
    return [t.strip() for t in value if t.strip()]


def list_rcas(plan_id) -> list[dict]:
    uow = UnitOfWork()
    plan = _get_plan(uow, plan_id)
    rows = uow.session.execute(
        select(PlanRca).where(PlanRca.plan_id == plan.id).order_by(PlanRca.created_at)
    ).scalars().all()
    return [r.to_dict() for r in rows]


def create_rca(plan_id, data: dict, actor: str = "system") -> PlanRca:
    if not isinstance(data, dict):
        raise ValidationError("RCA payload must be an object")
    fields = {
        "support_ticket_number": data.get("support_ticket_number"),
        "rca_number": data.get("rca_number"),
        "technical_description": data.get("technical_description"),
        "reference_file_url": data.get("reference_file_url"),
        "key_issues_tags": _tags(data.get("key_issues_tags"), "key_issues_tags"),
        "learnings_tags": _tags(data.get("learnings_tags"), "learnings_tags"),
    }
    uow = UnitOfWork()

    def _apply(u):
        plan = _get_plan(u, plan_id)
        rca = PlanRca(plan_id=plan.id, **fields)
        u.session.add(rca)
        u.flush()
        write_audit(
            u.session, entity_type="plan_rca", entity_id=rca.id, action="create", actor=actor, plan_id=plan.id,
        )
        return rca

    rca = uow.with_transaction(_apply)
    logger.info("RCA created: plan_id=%s rca_id=%s", plan_id, rca.id)
    return rca


def delete_rca(plan_id, rca_id, actor: str = "system") -> None:
    uow = UnitOfWork()

    def _apply(u):
        rca = u.session.get(PlanRca, rca_id)
        if rca is None or rca.plan_id != plan_id:
            raise NotFoundError(resource="PlanRca", resource_id=rca_id)
        u.session.delete(rca)
        write_audit(
            u.session, entity_type="plan_rca", entity_id=rca_id, action="delete", actor=actor, plan_id=plan_id,
        )

    uow.with_transaction(_apply)
    logger.info("RCA deleted: plan_id=%s rca_id=%s", plan_id, rca_id)


# ═════════════════════════════════════════════════════════════════════════════
# Reference data
# ═════════════════════════════════════════════════════════════════════════════


def seed_reference_types() -> int:
    """Create the plan / period / day reference types when missing. Returns count created."""
    uow = UnitOfWork()

    def _apply(u):
        created = 0
        for name in REFERENCE_LEVELS:
            if u.reference_types.find_by_name(name) is None:
                u.session.add(PlanReferenceType(name=name, description=_REFERENCE_LEVEL_DESCRIPTIONS[name]))
                created += 1
        return created

    created = uow.with_transaction(_apply)
    if created:
        logger.info("Seeded plan reference types: created=%d", created)
    return created
