"""
Boundary parsing for plan writes.

The request layer hands over plain dicts (decoded JSON). This module turns
them into typed inputs once, so the reconciler never re-derives shapes or
reference levels from field presence. Malformed values raise
ValidationError before any transaction is opened.

List-valued sections (phases, components, references, milestones, tasks)
use ``None`` for "not submitted" and ``[]`` for "submitted empty".
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import ClassVar

from release_planner.core.exceptions import ValidationError
from release_planner.models.plan import (
    PLAN_STATUSES,
    REFERENCE_CONTENT_TYPES,
    RELEASE_STATUSES,
    URL_REQUIRED_CONTENT_TYPES,
)
from release_planner.utils.helpers import normalize_name, parse_date_input, parse_timestamp

logger = logging.getLogger(__name__)

# Client-side ids for phases that have not been saved yet
PLACEHOLDER_PHASE_PREFIX = "phase-"

ID_LIST_FIELDS = ("feature_ids", "calendar_ids", "indicator_ids", "team_ids")
OWNER_FIELDS = ("product_id", "it_owner_id", "lead_id")


# ── Primitive coercion ───────────────────────────────────────────────────────


def is_uuid(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def normalize_phase_id(value):
    """Trimmed phase id, or None when absent, blank or a client placeholder."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.startswith(PLACEHOLDER_PHASE_PREFIX):
        return None
    return text


def parse_date_field(value, label: str) -> date | None:
    try:
        return parse_date_input(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={label: "invalid date"}) from exc


def _required_text(value, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required", details={label: "required"})
    return value.strip()


def _optional_text(value, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string", details={label: "invalid"})
    return value


def optional_list(payload: dict, key: str):
    if key not in payload or payload[key] is None:
        return None
    value = payload[key]
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be an array", details={key: "invalid"})
    return value


def _item(raw, label: str) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"{label} must be an object", details={label: "invalid"})
    return raw


# ── Phases ───────────────────────────────────────────────────────────────────


@dataclass
class PhaseInput:
    name: str
    id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    color: str | None = None
    metric_values: dict = field(default_factory=dict)
    sequence: int | None = None
    # Per-phase attribution of a date move; falls back to the request-level values
    reschedule_type_id: str | None = None
    reschedule_owner_id: str | None = None


def parse_phase(raw, index: int) -> PhaseInput:
    label = f"phases[{index}]"
    raw = _item(raw, label)
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Phase name is required", details={f"{label}.name": "required"})

    metric_values = raw.get("metric_values") or {}
    if not isinstance(metric_values, dict):
        raise ValidationError(
            "Phase metric_values must be an object",
            details={f"{label}.metric_values": "invalid"},
        )

    sequence = raw.get("sequence")
    if sequence is not None:
        if isinstance(sequence, bool) or not isinstance(sequence, int):
            raise ValidationError(
                "Phase sequence must be an integer",
                details={f"{label}.sequence": "invalid"},
            )

    return PhaseInput(
        name=name.strip(),
        id=normalize_phase_id(raw.get("id")),
        start_date=parse_date_field(raw.get("start_date"), f"{label}.start_date"),
        end_date=parse_date_field(raw.get("end_date"), f"{label}.end_date"),
        color=_optional_text(raw.get("color"), f"{label}.color"),
        metric_values={str(k): "" if v is None else str(v) for k, v in metric_values.items()},
        sequence=sequence,
        reschedule_type_id=_optional_text(raw.get("reschedule_type_id"), f"{label}.reschedule_type_id"),
        reschedule_owner_id=_optional_text(raw.get("reschedule_owner_id"), f"{label}.reschedule_owner_id"),
    )


def parse_phases(items) -> list[PhaseInput] | None:
    if items is None:
        return None
    return [parse_phase(raw, i) for i, raw in enumerate(items)]


# ── Components ───────────────────────────────────────────────────────────────


@dataclass
class ComponentInput:
    component_id: str
    final_version: str
    current_version: str | None = None

    def to_json(self) -> dict:
        return {
            "component_id": self.component_id,
            "current_version": self.current_version,
            "final_version": self.final_version,
        }


def parse_components(items) -> list[ComponentInput] | None:
    if items is None:
        return None
    result = []
    for i, raw in enumerate(items):
        label = f"components[{i}]"
        raw = _item(raw, label)
        result.append(ComponentInput(
            component_id=_required_text(raw.get("component_id"), f"{label}.component_id"),
            final_version=_required_text(raw.get("final_version"), f"{label}.final_version"),
            current_version=_optional_text(raw.get("current_version"), f"{label}.current_version"),
        ))
    return result


# ── References (tagged level variant) ────────────────────────────────────────


@dataclass(frozen=True)
class PlanLevel:
    """Reference anchored to the whole plan."""
    name: ClassVar[str] = "plan"


@dataclass(frozen=True)
class PeriodLevel:
    """Reference anchored to a day within the plan period."""
    day: date
    name: ClassVar[str] = "period"


@dataclass(frozen=True)
class DayLevel:
    """Reference anchored to a calendar day within a phase."""
    calendar_day_id: str
    phase_id: str
    name: ClassVar[str] = "day"


ReferenceLevel = PlanLevel | PeriodLevel | DayLevel


@dataclass
class ReferenceInput:
    content_type: str
    title: str
    level: ReferenceLevel
    url: str | None = None
    description: str | None = None
    reference_type_id: str | None = None
    phase_id: str | None = None
    date: date | None = None
    milestone_color: str | None = None

    @property
    def is_milestone(self) -> bool:
        return self.content_type == "milestone" and self.date is not None


def _reference_phase_id(value, label: str):
    """Validated phase id for a reference; placeholders are dropped with a warning."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    text = str(value).strip()
    if text.startswith(PLACEHOLDER_PHASE_PREFIX):
        logger.warning("Ignoring unsaved phase id on reference: phase_id=%s", text)
        return None
    if not is_uuid(text):
        raise ValidationError(f"Invalid phase id {text!r}", details={f"{label}.phase_id": "invalid"})
    return text


def infer_level(period_day, calendar_day_id, phase_id) -> ReferenceLevel:
    if calendar_day_id and phase_id:
        return DayLevel(calendar_day_id=calendar_day_id, phase_id=phase_id)
    if period_day:
        return PeriodLevel(day=period_day)
    return PlanLevel()


def parse_reference(raw, index: int) -> ReferenceInput:
    label = f"references[{index}]"
    raw = _item(raw, label)

    content_type = raw.get("type")
    if not isinstance(content_type, str) or not content_type.strip() or not raw.get("title"):
        raise ValidationError(
            "Reference type and title are required",
            details={f"{label}.type": "required", f"{label}.title": "required"},
        )
    content_type = content_type.strip()
    if content_type not in REFERENCE_CONTENT_TYPES:
        raise ValidationError(
            f"Invalid reference type: '{content_type}'. Allowed: {sorted(REFERENCE_CONTENT_TYPES)}",
            details={f"{label}.type": "invalid"},
        )
    title = _required_text(raw.get("title"), f"{label}.title")

    url = _optional_text(raw.get("url"), f"{label}.url")
    if content_type in URL_REQUIRED_CONTENT_TYPES and not (url or "").strip():
        raise ValidationError(
            f"A url is required for {content_type} references",
            details={f"{label}.url": "required"},
        )

    phase_id = _reference_phase_id(raw.get("phase_id"), label)
    period_day = parse_date_field(raw.get("period_day"), f"{label}.period_day")
    calendar_day_id = _optional_text(raw.get("calendar_day_id"), f"{label}.calendar_day_id")

    return ReferenceInput(
        content_type=content_type,
        title=title,
        level=infer_level(period_day, (calendar_day_id or "").strip() or None, phase_id),
        url=url,
        description=_optional_text(raw.get("description"), f"{label}.description"),
        reference_type_id=_optional_text(
            raw.get("plan_reference_type_id"), f"{label}.plan_reference_type_id",
        ) or None,
        phase_id=phase_id,
        date=parse_date_field(raw.get("date"), f"{label}.date"),
        milestone_color=_optional_text(raw.get("milestone_color"), f"{label}.milestone_color"),
    )


def parse_references(items) -> list[ReferenceInput] | None:
    if items is None:
        return None
    return [parse_reference(raw, i) for i, raw in enumerate(items)]


# ── Milestones ───────────────────────────────────────────────────────────────


@dataclass
class MilestoneInput:
    date: date
    name: str
    description: str | None = None
    phase_id: str | None = None


def parse_milestones(items) -> list[MilestoneInput] | None:
    if items is None:
        return None
    result = []
    for i, raw in enumerate(items):
        label = f"milestones[{i}]"
        raw = _item(raw, label)
        if not raw.get("date") or not raw.get("name"):
            raise ValidationError(
                "Milestone date and name are required",
                details={f"{label}.date": "required", f"{label}.name": "required"},
            )
        phase_id = raw.get("phase_id")
        if phase_id is not None and str(phase_id).strip():
            phase_id = str(phase_id).strip()
            if not is_uuid(phase_id):
                raise ValidationError(
                    f"Invalid phase id {phase_id!r}", details={f"{label}.phase_id": "invalid"},
                )
        else:
            phase_id = None
        result.append(MilestoneInput(
            date=parse_date_field(raw.get("date"), f"{label}.date"),
            name=_required_text(raw.get("name"), f"{label}.name"),
            description=_optional_text(raw.get("description"), f"{label}.description"),
            phase_id=phase_id,
        ))
    return result


# ── Tasks ────────────────────────────────────────────────────────────────────


@dataclass
class TaskInput:
    title: str
    start_date: date
    end_date: date
    color: str | None = None


def parse_tasks(items) -> list[TaskInput] | None:
    if items is None:
        return None
    result = []
    for i, raw in enumerate(items):
        label = f"tasks[{i}]"
        raw = _item(raw, label)
        if not raw.get("title") or not raw.get("start_date") or not raw.get("end_date"):
            raise ValidationError("Task title, start date, and end date are required")
        start = parse_date_field(raw.get("start_date"), f"{label}.start_date")
        end = parse_date_field(raw.get("end_date"), f"{label}.end_date")
        if start >= end:
            raise ValidationError(
                "Task end date must be after start date",
                details={f"{label}.end_date": "must be after start_date"},
            )
        result.append(TaskInput(
            title=_required_text(raw.get("title"), f"{label}.title"),
            start_date=start,
            end_date=end,
            color=_optional_text(raw.get("color"), f"{label}.color"),
        ))
    return result


# ── Scalars ──────────────────────────────────────────────────────────────────


def _id_list(value, key: str) -> list[str]:
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be an array", details={key: "invalid"})
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(
                f"{key} must contain non-empty ids", details={key: "invalid"},
            )
    return list(value)


def parse_scalars(payload: dict) -> dict:
    """Return only the plan scalar fields present in *payload*, validated."""
    scalars = {}
    if "name" in payload:
        name = normalize_name(payload["name"]) if isinstance(payload["name"], str) else ""
        if not name:
            raise ValidationError("Plan name is required", details={"name": "required"})
        scalars["name"] = name
    if "description" in payload:
        scalars["description"] = _optional_text(payload["description"], "description")
    if "status" in payload:
        status = payload["status"]
        if status not in PLAN_STATUSES:
            raise ValidationError(
                f"Invalid status: '{status}'. Allowed: {sorted(PLAN_STATUSES)}",
                details={"status": "invalid"},
            )
        scalars["status"] = status
    if "release_status" in payload:
        release_status = payload["release_status"]
        if release_status not in RELEASE_STATUSES:
            raise ValidationError(
                f"Invalid release_status: '{release_status}'. Allowed: {sorted(RELEASE_STATUSES)}",
                details={"release_status": "invalid"},
            )
        scalars["release_status"] = release_status
    for key in ("start_date", "end_date"):
        if key in payload:
            parsed = parse_date_field(payload[key], key)
            if parsed is None:
                raise ValidationError(f"{key} is required", details={key: "required"})
            scalars[key] = parsed
    for key in OWNER_FIELDS:
        if key in payload:
            scalars[key] = _optional_text(payload[key], key) or None
    for key in ID_LIST_FIELDS:
        if key in payload:
            scalars[key] = _id_list(payload[key], key)
    return scalars


# ── Update request ───────────────────────────────────────────────────────────


@dataclass
class PlanUpdateRequest:
    """Full desired state of a plan as submitted by a caller."""

    scalars: dict = field(default_factory=dict)
    updated_at: datetime | None = None
    phases: list[PhaseInput] | None = None
    components: list[ComponentInput] | None = None
    references: list[ReferenceInput] | None = None
    milestones: list[MilestoneInput] | None = None
    tasks: list[TaskInput] | None = None
    reschedule_type_id: str | None = None
    reschedule_owner_id: str | None = None
    actor: str = "system"

    @classmethod
    def from_payload(cls, payload: dict, actor: str = "system") -> "PlanUpdateRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Plan update payload must be an object")
        try:
            token = parse_timestamp(payload.get("updated_at"))
        except ValueError as exc:
            raise ValidationError(
                "updated_at must be an ISO-8601 timestamp", details={"updated_at": "invalid"},
            ) from exc
        return cls(
            scalars=parse_scalars(payload),
            updated_at=token,
            phases=parse_phases(optional_list(payload, "phases")),
            components=parse_components(optional_list(payload, "components")),
            references=parse_references(optional_list(payload, "references")),
            milestones=parse_milestones(optional_list(payload, "milestones")),
            tasks=parse_tasks(optional_list(payload, "tasks")),
            reschedule_type_id=_optional_text(payload.get("reschedule_type_id"), "reschedule_type_id") or None,
            reschedule_owner_id=_optional_text(payload.get("reschedule_owner_id"), "reschedule_owner_id") or None,
            actor=actor,
        )
