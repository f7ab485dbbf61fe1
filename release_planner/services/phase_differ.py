"""
Phase differ: classify submitted phases against the persisted set.

Pure function over already-loaded rows; performs no I/O.
"""
import logging
from dataclasses import dataclass, field

from release_planner.core.exceptions import ValidationError
from release_planner.services.plan_payloads import PhaseInput, is_uuid, normalize_phase_id

logger = logging.getLogger(__name__)


@dataclass
class PhaseDiff:
    """Three disjoint outcomes of a phase diff."""

    # (persisted PlanPhase, submitted PhaseInput)
    matched: list = field(default_factory=list)
    # (submitted PhaseInput, resolved sequence)
    new: list = field(default_factory=list)
    # persisted PlanPhase rows absent from the submission
    removed: list = field(default_factory=list)


def diff_phases(persisted, submitted: list[PhaseInput]) -> PhaseDiff:
    """
    Match *submitted* phases to *persisted* ones by id.

    - A submitted id that is blank, a client placeholder, or unknown to the
      persisted set makes the phase new. Unknown ids that are not even UUIDs
      are logged, since they usually point at a client bug.
    - New phases take their submitted sequence, else their 1-based position.
    - Persisted phases whose id is not among the submitted ids are removed.
    - The same id submitted twice is rejected; placeholders may repeat.
    """
    by_id = {p.id: p for p in persisted}
    diff = PhaseDiff()
    submitted_ids = set()

    for index, phase in enumerate(submitted):
        if not phase.name or not phase.name.strip():
            raise ValidationError(
                "Phase name is required", details={f"phases[{index}].name": "required"},
            )
        phase_id = normalize_phase_id(phase.id)
        if phase_id is not None:
            if phase_id in submitted_ids:
                raise ValidationError(
                    f"Phase id submitted more than once: {phase_id}",
                    details={f"phases[{index}].id": "duplicate"},
                )
            submitted_ids.add(phase_id)

        existing = by_id.get(phase_id) if phase_id else None
        if existing is not None:
            diff.matched.append((existing, phase))
            continue

        if phase_id is not None and not is_uuid(phase_id):
            logger.warning("Treating phase with non-UUID id as new: phase_id=%s", phase_id)
        elif phase_id is not None:
            logger.warning("Phase id not found among persisted phases, creating as new: phase_id=%s", phase_id)
        sequence = phase.sequence if phase.sequence is not None else index + 1
        diff.new.append((phase, sequence))

    diff.removed = [p for p in persisted if p.id not in submitted_ids]
    logger.debug(
        "Phase diff: matched=%d new=%d removed=%d",
        len(diff.matched), len(diff.new), len(diff.removed),
    )
    return diff
