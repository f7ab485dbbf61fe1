"""
Release plan blueprint.

REST API over the plan service layer.

Endpoint groups:
  Plans                 GET/POST        /api/v1/plans
                        GET/PUT/DELETE  /api/v1/plans/<plan_id>
  Two-entity updates    PUT  /api/v1/plans/<plan_id>/components
                        PUT  /api/v1/plans/<plan_id>/features
  Reschedules           GET  /api/v1/plans/<plan_id>/reschedules
                        GET  /api/v1/phases/<phase_id>/reschedules
                        PATCH /api/v1/reschedules/<reschedule_id>
  RCA rows              GET/POST /api/v1/plans/<plan_id>/rcas
                        DELETE   /api/v1/plans/<plan_id>/rcas/<rca_id>

The acting user is read from the X-User header (default "system").
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import release_planner.services.plan_service as plan_service
import release_planner.services.reschedule_service as reschedule_service
from release_planner.core.exceptions import ConflictError, NotFoundError, ValidationError
from release_planner.utils.errors import E, api_error

logger = logging.getLogger(__name__)

plan_bp = Blueprint("plan", __name__, url_prefix="/api/v1")


# ── Request helpers ───────────────────────────────────────────────────────────


def _actor() -> str:
    """Extract actor name from request headers."""
    return request.headers.get("X-User", "system")


def _json_object() -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


_COLLECTION_KEYS = ("phases", "components", "references", "milestones", "tasks")


def _wrong_collections(data: dict) -> tuple | None:
    bad = [k for k in _COLLECTION_KEYS if data.get(k) is not None and not isinstance(data[k], list)]
    if bad:
        return api_error(
            E.VALIDATION_INVALID, f"{', '.join(bad)} must be arrays", details={k: "invalid" for k in bad},
        )
    return None


# ── Error handlers ────────────────────────────────────────────────────────────


@plan_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@plan_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)


@plan_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(error.code, str(error), details={"field": error.field})


@plan_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in plan_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Plans  (/api/v1/plans)
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/plans", methods=["GET"])
def list_plans():
    """List all plans, newest first (scalars only)."""
    return jsonify(plan_service.list_plans()), 200


@plan_bp.route("/plans", methods=["POST"])
def create_plan():
    """Create a plan.

    Body: {name, status, product_id, start_date, end_date, description?,
           release_status?, it_owner_id?, lead_id?, feature_ids?, ..., phases?}
    Returns: created plan with children (201).
    """
    data, err = _json_object()
    if err:
        return err
    plan = plan_service.create_plan(data, actor=_actor())
    return jsonify(plan.to_dict(include_children=True)), 201


@plan_bp.route("/plans/<plan_id>", methods=["GET"])
def get_plan(plan_id):
    plan = plan_service.get_plan(plan_id)
    return jsonify(plan.to_dict(include_children=True)), 200


@plan_bp.route("/plans/<plan_id>", methods=["PUT"])
def update_plan(plan_id):
    """Reconcile the plan to the submitted desired state.

    Body: any plan fields plus ``updated_at`` (concurrency token), and
    optionally ``phases``, ``components``, ``references``, ``milestones``,
    ``tasks``, ``reschedule_type_id``, ``reschedule_owner_id`` (each phase may
    carry its own pair, which wins over the top-level one). Collections
    that are omitted are left untouched.
    """
    data, err = _json_object()
    if err:
        return err
    err = _wrong_collections(data)
    if err:
        return err
    plan = plan_service.update_plan(plan_id, data, actor=_actor())
    return jsonify(plan.to_dict(include_children=True)), 200


@plan_bp.route("/plans/<plan_id>", methods=["DELETE"])
def delete_plan(plan_id):
    """Delete a plan and everything it owns; its features are marked completed."""
    plan_service.delete_plan(plan_id, actor=_actor())
    return jsonify({"message": f"Plan '{plan_id}' deleted"}), 200


# ── Two-entity updates ───────────────────────────────────────────────────


@plan_bp.route("/plans/<plan_id>/components", methods=["PUT"])
def update_plan_components(plan_id):
    """Update the plan and advance product component versions atomically.

    Body: {plan: {...}, product_id, product_updated_at,
           component_updates: [{id, final_version, updated_at}]}
    """
    data, err = _json_object()
    if err:
        return err
    plan = plan_service.update_plan_with_components(plan_id, data, actor=_actor())
    return jsonify(plan.to_dict(include_children=True)), 200


@plan_bp.route("/plans/<plan_id>/features", methods=["PUT"])
def update_plan_features(plan_id):
    """Update the plan and its features' statuses atomically.

    Body: {plan: {...}, feature_updates: [{id, status, updated_at}]}
    """
    data, err = _json_object()
    if err:
        return err
    plan = plan_service.update_plan_with_features(plan_id, data, actor=_actor())
    return jsonify(plan.to_dict(include_children=True)), 200


# ═════════════════════════════════════════════════════════════════════════
# Reschedules
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/plans/<plan_id>/reschedules", methods=["GET"])
def list_plan_reschedules(plan_id):
    """All reschedules across the plan's phases, newest first."""
    return jsonify(reschedule_service.get_plan_reschedules(plan_id)), 200


@plan_bp.route("/phases/<phase_id>/reschedules", methods=["GET"])
def list_phase_reschedules(phase_id):
    return jsonify(reschedule_service.get_phase_reschedules(phase_id)), 200


@plan_bp.route("/reschedules/<reschedule_id>", methods=["PATCH"])
def annotate_reschedule(reschedule_id):
    """Change a reschedule's type and/or owner.

    Body: {reschedule_type_id?, owner_id?}
    """
    data, err = _json_object()
    if err:
        return err
    if data.get("reschedule_type_id") is None and data.get("owner_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "reschedule_type_id or owner_id is required")
    view = reschedule_service.update_reschedule_annotation(reschedule_id, data, actor=_actor())
    return jsonify(view), 200


# ═════════════════════════════════════════════════════════════════════════
# RCA rows
# ═════════════════════════════════════════════════════════════════════════


@plan_bp.route("/plans/<plan_id>/rcas", methods=["GET"])
def list_rcas(plan_id):
    return jsonify(plan_service.list_rcas(plan_id)), 200


@plan_bp.route("/plans/<plan_id>/rcas", methods=["POST"])
def create_rca(plan_id):
    """Body: {support_ticket_number?, rca_number?, key_issues_tags?, learnings_tags?,
    technical_description?, reference_file_url?}
    """
    data, err = _json_object()
    if err:
        return err
    rca = plan_service.create_rca(plan_id, data, actor=_actor())
    return jsonify(rca.to_dict()), 201


@plan_bp.route("/plans/<plan_id>/rcas/<rca_id>", methods=["DELETE"])
def delete_rca(plan_id, rca_id):
    plan_service.delete_rca(plan_id, rca_id, actor=_actor())
    return jsonify({"message": f"RCA '{rca_id}' deleted"}), 200
