"""
Related-entity lookups with an explicit missing-row policy.

Every call site states up front whether a missing row is an optional
relation (warn and continue) or a causally required one (raise). This keeps
the two behaviours auditable instead of scattering ad hoc checks.

Usage:
    component = resolve_related(
        components.get(cid), "ProductComponentVersion", cid,
        policy=MissingPolicy.SKIP_MISSING, context="plan_id=%s" % plan.id,
    )
    if component is None:
        continue

    phase = resolve_related(
        db.session.get(PlanPhase, phase_id), "PlanPhase", phase_id,
        policy=MissingPolicy.FAIL_ON_MISSING,
    )
"""

import logging
from enum import Enum

from release_planner.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class MissingPolicy(str, Enum):
    SKIP_MISSING = "skip_missing"
    FAIL_ON_MISSING = "fail_on_missing"


def resolve_related(row, resource: str, resource_id, *, policy: MissingPolicy, context: str = ""):
    """Return *row* unchanged, or apply *policy* when it is None.

    SKIP_MISSING logs a warning and returns None; FAIL_ON_MISSING raises
    NotFoundError.
    """
    if row is not None:
        return row
    if policy is MissingPolicy.FAIL_ON_MISSING:
        raise NotFoundError(resource=resource, resource_id=resource_id)
    logger.warning("Skipping missing %s: id=%s %s", resource, resource_id, context)
    return None
