"""
Component version-history derivation.

A plan records, per product component, the target ("final") version it will
release. Every change of that target appends a PlanComponentVersion row.
Targets must move the component forward: strictly above the product's
authoritative current version, or, for a component already attached to the
plan, strictly above the plan's previously recorded target.
"""
import logging

from release_planner.core.exceptions import ValidationError
from release_planner.models.plan import PlanComponentVersion
from release_planner.services.helpers.related import MissingPolicy, resolve_related
from release_planner.services.version_compare import compare_versions

logger = logging.getLogger(__name__)


def check_version_increase(component_name, final_version, current_version, previous_target=None):
    """Raise ValidationError unless *final_version* is a valid forward move."""
    comparison = compare_versions(final_version, current_version)
    is_continued_increase = bool(previous_target) and compare_versions(final_version, previous_target) > 0
    if comparison <= 0 and not is_continued_increase:
        message = (
            f'Final version of component "{component_name}" ({final_version}) must be greater '
            f"than the product's current version ({current_version})"
        )
        if previous_target:
            message += f". Previous target in this plan: {previous_target}"
        raise ValidationError(
            message,
            details={
                "component": component_name,
                "final_version": final_version,
                "current_version": current_version,
                "previous_target": previous_target,
            },
        )


def resolve_old_version(previous_target, current_version, final_version) -> str:
    """Previous target, else the product's current version, else the new target."""
    old = (previous_target or current_version or "").strip()
    return old or final_version


def derive_component_history(plan, product, submitted, previous_targets: dict) -> list[PlanComponentVersion]:
    """
    Validate *submitted* components and build history rows for changed targets.

    Args:
        plan: the Plan being updated.
        product: the plan's Product with components loaded.
        submitted: list of ComponentInput.
        previous_targets: component id → target recorded before this update.

    Components unknown to the product are skipped with a warning. Rows are
    returned unsaved so the caller controls the transaction.
    """
    components = product.component_map()
    rows = []
    for comp in submitted:
        component = resolve_related(
            components.get(comp.component_id), "ProductComponentVersion", comp.component_id,
            policy=MissingPolicy.SKIP_MISSING,
            context=f"product_id={product.id} plan_id={plan.id}",
        )
        if component is None:
            continue

        current_version = component.current_version or ""
        previous_target = previous_targets.get(comp.component_id)
        check_version_increase(
            component.name or comp.component_id, comp.final_version, current_version, previous_target,
        )

        if previous_target and previous_target == comp.final_version:
            continue

        row = PlanComponentVersion(
            plan_id=plan.id,
            product_id=product.id,
            component_id=comp.component_id,
            old_version=resolve_old_version(previous_target, current_version, comp.final_version),
            new_version=comp.final_version.strip(),
        )
        rows.append(row)
        logger.info(
            "Derived component history: plan_id=%s component_id=%s %s -> %s",
            plan.id, comp.component_id, row.old_version, row.new_version,
        )
    return rows
