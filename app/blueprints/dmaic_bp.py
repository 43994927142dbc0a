"""
DMAIC Workflow Blueprint.

Endpoints:
  Projects:    GET/POST /dmaic/projects, GET /dmaic/projects/<id>?include_artifacts=true
  Artifacts:   POST /dmaic/projects/<id>/artifacts           {phase, artifacts}
  Gate:        GET  /dmaic/projects/<id>/gate
               POST /dmaic/projects/<id>/advance
  Metrics:     POST /dmaic/projects/<id>/metrics/recompute
               GET  /dmaic/projects/<id>/capability
  Solutions:   GET  /dmaic/projects/<id>/solutions/ranking
               PATCH /dmaic/solutions/<sid>/status          {status}

Every service-layer error is rendered as {error, code, details}.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    NotFoundError,
    RepositoryUnavailable,
    ValidationError,
    WorkflowError,
)
from app.models.dmaic import PROJECT_PHASES
from app.services.artifact_repository import SqlAlchemyArtifactRepository
from app.services.workflow_engine import PhaseWorkflowEngine
from app.utils.errors import E, api_error, exception_response, status_for

logger = logging.getLogger(__name__)

dmaic_bp = Blueprint("dmaic", __name__, url_prefix="/api/v1/dmaic")


def _engine() -> PhaseWorkflowEngine:
    repository = current_app.extensions.get("dmaic_repository") or SqlAlchemyArtifactRepository()
    return PhaseWorkflowEngine.from_config(current_app.config, repository)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(name: str) -> bool:
    return request.args.get(name, "false").strip().lower() in ("1", "true", "yes")


def _rejection(exc):
    """Submission rejected: {accepted: false, errors} plus the usual error envelope."""
    errors = getattr(exc, "errors", None) or [{"message": str(exc)}]
    body = {"accepted": False, "errors": errors, "error": str(exc), "code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return jsonify(body), status_for(exc.code)


# ═════════════════════════════════════════════════════════════════════════
# Error handlers
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.errorhandler(NotFoundError)
@dmaic_bp.errorhandler(ValidationError)
@dmaic_bp.errorhandler(WorkflowError)
@dmaic_bp.errorhandler(RepositoryUnavailable)
def _handle_service_error(error):
    return exception_response(error)


@dmaic_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in dmaic_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.route("/projects", methods=["GET"])
def list_projects():
    """List DMAIC projects, optionally filtered by phase."""
    phase = (request.args.get("phase") or "").strip().upper()
    if phase and phase not in PROJECT_PHASES:
        raise ValidationError(
            f"phase must be one of {list(PROJECT_PHASES)}",
            details={"errors": [{"field": "phase", "message": "unknown phase", "value": phase}]},
        )
    items = _engine().list_projects()
    if phase:
        items = [p for p in items if p["current_phase"] == phase]
    return jsonify({"items": items, "total": len(items)})


@dmaic_bp.route("/projects", methods=["POST"])
def create_project():
    """Create a project in DEFINE."""
    data = _json_body()
    project = _engine().create_project(
        name=data.get("name"),
        business_case=data.get("business_case"),
        deployment_target=data.get("deployment_target"),
        budget_limit=data.get("budget_limit"),
        timeline_days=data.get("timeline_days"),
    )
    return jsonify(project), 201


@dmaic_bp.route("/projects/<project_id>", methods=["GET"])
def get_status(project_id):
    """Project snapshot; ?include_artifacts=true adds every child artifact."""
    return jsonify(_engine().get_status(project_id, include_artifacts=_flag("include_artifacts")))


# ═════════════════════════════════════════════════════════════════════════
# Artifacts
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.route("/projects/<project_id>/artifacts", methods=["POST"])
def submit_artifacts(project_id):
    """Submit artifacts for the project's current phase.

    Every rejection (field errors, wrong phase, completed or unknown project)
    comes back as {accepted: false, errors: [...]} with the matching error code.
    """
    try:
        data = _json_body()
        result = _engine().submit_artifacts(project_id, data.get("phase"), data.get("artifacts"))
    except (ValidationError, WorkflowError, NotFoundError, RepositoryUnavailable) as exc:
        return _rejection(exc)
    return jsonify(result.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Gate & transition
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.route("/projects/<project_id>/gate", methods=["GET"])
def evaluate_gate(project_id):
    return jsonify(_engine().evaluate_gate(project_id).to_dict())


@dmaic_bp.route("/projects/<project_id>/advance", methods=["POST"])
def advance_phase(project_id):
    """Advance to the next phase; 409 with missing criteria when the gate blocks."""
    return jsonify(_engine().advance_phase(project_id).to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Metrics
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.route("/projects/<project_id>/metrics/recompute", methods=["POST"])
def recompute_metrics(project_id):
    return jsonify(_engine().recompute_metrics(project_id))


@dmaic_bp.route("/projects/<project_id>/capability", methods=["GET"])
def process_capability(project_id):
    """Defect rate, DPMO, sigma level, Cp and Cpk from the project's KPIs."""
    return jsonify(_engine().process_capability(project_id))


# ═════════════════════════════════════════════════════════════════════════
# Solutions
# ═════════════════════════════════════════════════════════════════════════

@dmaic_bp.route("/projects/<project_id>/solutions/ranking", methods=["GET"])
def rank_solutions(project_id):
    return jsonify(_engine().rank_solutions(project_id))


@dmaic_bp.route("/solutions/<solution_id>/status", methods=["PATCH"])
def update_solution_status(solution_id):
    data = _json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    return jsonify(_engine().update_solution_status(solution_id, data["status"]))
