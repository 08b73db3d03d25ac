"""Certification lifecycle blueprint.

REST API for the certification pipeline of each student.

Endpoint groups:
  Stage registry        GET  /api/v1/certification/stages
  Process management    GET/POST /api/v1/certification/processes
                        GET  /api/v1/certification/students/<id>
                        PUT  /api/v1/certification/students/<id>/update
  Lifecycle             PUT  /api/v1/certification/students/<id>/status
                        PUT  /api/v1/certification/students/<id>/dates
                        GET  /api/v1/certification/students/<id>/timeline
  Messaging             POST /api/v1/certification/students/<id>/message
                        GET/PUT /api/v1/certification/templates
                        POST /api/v1/certification/templates/reset
  SLA table             GET/PUT /api/v1/certification/sla
  Dashboard             GET  /api/v1/certification/dashboard
  Public status check   POST /api/v1/certification/check-by-cpf

The acting administrator is taken from the X-Actor header (default "system").
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

import certtrack.services.certification_service as cs
from certtrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from certtrack.models.certification import STAGE_REGISTRY
from certtrack.services import messaging, sla_service, template_service
from certtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

certification_bp = Blueprint("certification", __name__, url_prefix="/api/v1/certification")

from certtrack import limiter  # noqa: E402


def _actor() -> str:
    return (request.headers.get("X-Actor") or "system").strip()[:150] or "system"


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _status_check_limit() -> str:
    return current_app.config.get("STATUS_CHECK_RATE_LIMIT", "10/minute")


# ── Error handlers ────────────────────────────────────────────────────────────


@certification_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@certification_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(error.code, str(error), status=422, details=error.details)


@certification_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error), details={"field": error.field})


_HTTP_ERROR_CODES = {404: E.NOT_FOUND, 409: E.CONFLICT_STATE, 429: E.RATE_LIMITED}


@certification_bp.errorhandler(HTTPException)
def _handle_http(error: HTTPException):
    code = _HTTP_ERROR_CODES.get(error.code, E.VALIDATION_INVALID)
    return api_error(code, error.description or error.name, status=error.code)


@certification_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in certification_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Stage registry & templates
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/stages", methods=["GET"])
def list_stages():
    """Ordered stage registry."""
    return jsonify([d.to_dict() for d in STAGE_REGISTRY]), 200


@certification_bp.route("/templates", methods=["GET"])
def list_templates():
    """WhatsApp template per stage, flagged db | default."""
    return jsonify(template_service.list_templates()), 200


@certification_bp.route("/templates", methods=["PUT"])
def update_templates():
    """Body: [{status, message}, …] or {"items": [...]}."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("items")
    return jsonify(template_service.update_templates(data, actor=_actor())), 200


@certification_bp.route("/templates/reset", methods=["POST"])
def reset_templates():
    """Body (optional): {"statuses": [...]}; omitted resets every stage."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return jsonify(template_service.reset_templates(data.get("statuses"), actor=_actor())), 200


# ═════════════════════════════════════════════════════════════════════════
# Processes
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/processes", methods=["POST"])
def create_process():
    """Start a process: {student_id, wants_physical?, certifier_name?}."""
    result = cs.create_process(_json_body(), actor=_actor())
    return jsonify(result), 201


@certification_bp.route("/processes", methods=["GET"])
def list_processes():
    """All processes with SLA badge. Query: status, sla."""
    items = cs.list_processes(
        status=request.args.get("status") or None,
        sla=request.args.get("sla") or None,
    )
    return jsonify({"items": items, "total": len(items)}), 200


@certification_bp.route("/students/<int:student_id>", methods=["GET"])
def get_process(student_id: int):
    return jsonify(cs.get_process(student_id)), 200


@certification_bp.route("/students/<int:student_id>/update", methods=["PUT"])
def update_process(student_id: int):
    """Change wants_physical and/or certifier_name."""
    return jsonify(cs.update_process(student_id, _json_body(), actor=_actor())), 200


@certification_bp.route("/students/<int:student_id>/timeline", methods=["GET"])
def get_timeline(student_id: int):
    return jsonify(cs.get_timeline(student_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle mutations
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/students/<int:student_id>/status", methods=["PUT"])
def update_status(student_id: int):
    """Move to a stage: {status, physical_tracking_code?, date?, allow_regression?}."""
    data = _json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    result = cs.update_status(student_id, data["status"], data, actor=_actor())
    return jsonify(result), 200


@certification_bp.route("/students/<int:student_id>/dates", methods=["PUT"])
def update_dates(student_id: int):
    """Partial {stage_id_or_field: ISO date | null} map, applied atomically."""
    data = _json_body()
    edits = data.get("dates", data)
    return jsonify(cs.update_dates(student_id, edits, actor=_actor())), 200


# ═════════════════════════════════════════════════════════════════════════
# Messaging
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/students/<int:student_id>/message", methods=["POST"])
def compose_message(student_id: int):
    """Preview (default) or send ({send: true, phone?}) the progress message."""
    data = request.get_json(silent=True) or {}
    template = data.get("template") or None
    if data.get("send"):
        result = messaging.send_progress_message(
            student_id, phone=data.get("phone"), template=template, actor=_actor(),
        )
        return jsonify(result), 200
    return jsonify({"message": messaging.preview_message(student_id, template)}), 200


# ═════════════════════════════════════════════════════════════════════════
# SLA table
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/sla", methods=["GET"])
def get_sla_config():
    return jsonify(sla_service.list_sla_config()), 200


@certification_bp.route("/sla", methods=["PUT"])
def update_sla_config():
    """Body: [{status, days_limit, warning_days}, …] or {"items": [...]}."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("items")
    return jsonify(sla_service.update_sla_config(data, actor=_actor())), 200


# ═════════════════════════════════════════════════════════════════════════
# Dashboard & public status check
# ═════════════════════════════════════════════════════════════════════════


@certification_bp.route("/dashboard", methods=["GET"])
def dashboard():
    return jsonify(cs.get_dashboard()), 200


@certification_bp.route("/check-by-cpf", methods=["POST"])
@limiter.limit(_status_check_limit)
def check_by_cpf():
    """Student-facing lookup; personal data is masked in the response."""
    data = _json_body()
    return jsonify(cs.check_by_cpf(data.get("cpf"))), 200
