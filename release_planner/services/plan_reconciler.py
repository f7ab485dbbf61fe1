"""
Plan update reconciliation.

Applies a caller's full desired state to a persisted plan in one unit of
work. The run walks a fixed sequence of states:

    IDLE → LOADED → PHASES_RECONCILED → COMPONENTS_RECONCILED
         → REFERENCES_RECONCILED → COMMITTED

and lands in ROLLED_BACK from any state on error. Phase writes are applied
as deletes, then updates, then inserts. Reschedule and component-history
rows are written in the same transaction as the changes that caused them,
so either all of it is visible afterwards or none of it is.
"""
import logging
from enum import Enum

from flask import current_app

from release_planner.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from release_planner.models.audit import plan_diff, write_audit
from release_planner.models.plan import PlanPhase, PlanTask
from release_planner.services.component_history import derive_component_history
from release_planner.services.helpers.related import MissingPolicy, resolve_related
from release_planner.services.milestone_sync import sync_references_and_milestones
from release_planner.services.phase_differ import diff_phases
from release_planner.services.plan_payloads import PlanUpdateRequest
from release_planner.services.reschedule_service import RescheduleDeriver
from release_planner.services.unit_of_work import UnitOfWork
from release_planner.utils.helpers import parse_timestamp

logger = logging.getLogger(__name__)

_DOMAIN_ERRORS = (NotFoundError, ValidationError, ConflictError)

# Scalar columns captured for the audit diff
AUDITED_FIELDS = (
    "name", "description", "status", "release_status", "start_date", "end_date",
    "product_id", "it_owner_id", "lead_id",
    "feature_ids", "calendar_ids", "indicator_ids", "team_ids",
)


class ReconcileState(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PHASES_RECONCILED = "phases_reconciled"
    COMPONENTS_RECONCILED = "components_reconciled"
    REFERENCES_RECONCILED = "references_reconciled"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def concurrency_tolerance_ms() -> int:
    return int(current_app.config.get("PLAN_CONCURRENCY_TOLERANCE_MS", 1000))


def check_concurrency_token(persisted, client, *, resource="Plan", resource_id=None, tolerance_ms=None):
    """Raise ConcurrentModificationError when *persisted* is newer than *client*.

    Differences within the clock-skew tolerance are accepted. A missing
    client token skips the check.
    """
    if client is None or persisted is None:
        return
    tolerance_ms = concurrency_tolerance_ms() if tolerance_ms is None else tolerance_ms
    server_ts = parse_timestamp(persisted)
    client_ts = parse_timestamp(client)
    diff_ms = abs((server_ts - client_ts).total_seconds()) * 1000
    if diff_ms > tolerance_ms and server_ts > client_ts:
        logger.warning(
            "Stale %s token: id=%s server=%s client=%s diff_ms=%.0f",
            resource, resource_id, server_ts.isoformat(), client_ts.isoformat(), diff_ms,
        )
        raise ConcurrentModificationError(resource=resource, resource_id=resource_id)


def snapshot_scalars(plan) -> dict:
    snap = {}
    for key in AUDITED_FIELDS:
        value = getattr(plan, key)
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif isinstance(value, list):
            value = list(value)
        snap[key] = value
    return snap


def validate_scalar_changes(uow: UnitOfWork, plan, scalars: dict):
    """Read-only checks on submitted plan fields, run before any write."""
    name = scalars.get("name")
    if name is not None and name.lower() != (plan.name or "").lower():
        existing = uow.plans.find_by_name(name)
        if existing is not None and existing.id != plan.id:
            raise ConflictError("Plan", "name", name)

    if "start_date" in scalars or "end_date" in scalars:
        start = scalars.get("start_date", plan.start_date)
        end = scalars.get("end_date", plan.end_date)
        if start is not None and end is not None and start >= end:
            raise ValidationError(
                "End date must be after start date",
                details={"end_date": "must be after start_date"},
            )

    if scalars.get("product_id"):
        resolve_related(
            uow.products.get(scalars["product_id"]), "Product", scalars["product_id"],
            policy=MissingPolicy.FAIL_ON_MISSING,
        )
    for key in ("it_owner_id", "lead_id"):
        if scalars.get(key):
            resolve_related(
                uow.owners.get(scalars[key]), "Owner", scalars[key],
                policy=MissingPolicy.FAIL_ON_MISSING,
            )


class PlanReconciler:
    """Runs one plan update from load to commit (or rollback)."""

    def __init__(self, uow: UnitOfWork | None = None, tolerance_ms: int | None = None):
        self.uow = uow or UnitOfWork()
        self.tolerance_ms = tolerance_ms
        self.state = ReconcileState.IDLE
        self.reschedules = []
        self.history = []

    def _advance(self, state: ReconcileState, plan_id):
        logger.debug("Plan reconcile: plan_id=%s %s -> %s", plan_id, self.state.value, state.value)
        self.state = state

    # ── Entry point ──────────────────────────────────────────────────────

    def reconcile(self, plan_id, request: PlanUpdateRequest):
        """Apply *request* to plan *plan_id* and return the committed Plan."""
        try:
            plan = resolve_related(
                self.uow.plans.get(plan_id), "Plan", plan_id,
                policy=MissingPolicy.FAIL_ON_MISSING,
            )
            self._advance(ReconcileState.LOADED, plan_id)

            check_concurrency_token(
                plan.updated_at, request.updated_at,
                resource="Plan", resource_id=plan.id, tolerance_ms=self.tolerance_ms,
            )
            validate_scalar_changes(self.uow, plan, request.scalars)

            result = self.uow.with_transaction(lambda uow: self._apply(uow, plan, request))
        except Exception as exc:
            self._advance(ReconcileState.ROLLED_BACK, plan_id)
            logger.error(
                "Plan update rolled back: plan_id=%s error=%s", plan_id, exc,
                exc_info=not isinstance(exc, _DOMAIN_ERRORS),
            )
            raise

        self._advance(ReconcileState.COMMITTED, plan_id)
        logger.info(
            "Plan updated: plan_id=%s reschedules=%d history=%d",
            plan_id, len(self.reschedules), len(self.history),
        )
        return result

    # ── Transactional body ───────────────────────────────────────────────

    def _apply(self, uow: UnitOfWork, plan, request: PlanUpdateRequest):
        before = snapshot_scalars(plan)

        # Scalars first so phase/component logic sees the submitted product
        for key, value in request.scalars.items():
            setattr(plan, key, value)

        if request.phases is not None:
            self._reconcile_phases(uow, plan, request)
        self._advance(ReconcileState.PHASES_RECONCILED, plan.id)

        if request.components is not None:
            self._reconcile_components(uow, plan, request.components)
        self._advance(ReconcileState.COMPONENTS_RECONCILED, plan.id)

        counts = sync_references_and_milestones(
            uow, plan, references=request.references, milestones=request.milestones,
        )
        self._advance(ReconcileState.REFERENCES_RECONCILED, plan.id)

        if request.tasks is not None:
            self._replace_tasks(uow, plan, request.tasks)

        plan.touch()
        uow.flush()

        diff = plan_diff(before, snapshot_scalars(plan))
        diff["derived"] = {
            "reschedules": len(self.reschedules),
            "component_history": len(self.history),
            "references": counts["references"],
            "milestones": counts["milestones"],
        }
        write_audit(
            uow.session, entity_type="plan", entity_id=plan.id, action="update",
            actor=request.actor, plan_id=plan.id, diff=diff,
        )
        return plan

    def _reconcile_phases(self, uow: UnitOfWork, plan, request: PlanUpdateRequest):
        # Re-read inside the transaction; the copy loaded for the token check may be stale
        persisted = uow.plans.load_phases(plan.id)
        diff = diff_phases(persisted, request.phases)

        deriver = RescheduleDeriver(
            uow, plan,
            reschedule_type_id=request.reschedule_type_id,
            owner_id=request.reschedule_owner_id,
        )
        for existing, submitted in diff.matched:
            deriver.observe(
                existing, submitted.start_date, submitted.end_date,
                reschedule_type_id=submitted.reschedule_type_id,
                owner_id=submitted.reschedule_owner_id,
            )

        for phase in diff.removed:
            logger.info("Removing phase: plan_id=%s phase_id=%s name=%s", plan.id, phase.id, phase.name)
            uow.session.delete(phase)
        uow.flush()

        for existing, submitted in diff.matched:
            existing.name = submitted.name
            existing.start_date = submitted.start_date
            existing.end_date = submitted.end_date
            existing.color = submitted.color
            existing.metric_values = dict(submitted.metric_values)
            if submitted.sequence is not None:
                existing.sequence = submitted.sequence
        uow.flush()

        for submitted, sequence in diff.new:
            uow.session.add(PlanPhase(
                plan_id=plan.id,
                name=submitted.name,
                start_date=submitted.start_date,
                end_date=submitted.end_date,
                color=submitted.color,
                metric_values=dict(submitted.metric_values),
                sequence=sequence,
            ))
        uow.flush()

        self.reschedules = deriver.persist()

        uow.session.expire(plan, ["phases"])
        canonical = uow.plans.load_phases(plan.id)
        logger.debug("Phases reloaded: plan_id=%s count=%d", plan.id, len(canonical))

    def _reconcile_components(self, uow: UnitOfWork, plan, components):
        previous_targets = plan.component_targets()
        plan.components = [c.to_json() for c in components]

        product = resolve_related(
            uow.products.get_fresh(plan.product_id) if plan.product_id else None,
            "Product", plan.product_id,
            policy=MissingPolicy.SKIP_MISSING,
            context=f"plan_id={plan.id} (component history not derived)",
        )
        if product is None:
            return

        rows = derive_component_history(plan, product, components, previous_targets)
        for row in rows:
            uow.session.add(row)
        uow.flush()
        self.history = rows

    def _replace_tasks(self, uow: UnitOfWork, plan, tasks):
        uow.delete_where(PlanTask, plan_id=plan.id)
        uow.flush()
        for task in tasks:
            uow.session.add(PlanTask(
                plan_id=plan.id,
                title=task.title,
                start_date=task.start_date,
                end_date=task.end_date,
                color=task.color,
            ))
        uow.flush()
        uow.session.expire(plan, ["tasks"])
