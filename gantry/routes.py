import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from gantry.collaborators.approvals import get_approval_board
from gantry.services.run_service import RunService

logger = logging.getLogger(__name__)

main_bp = Blueprint("main", __name__)


def _service() -> RunService:
    return current_app.extensions["gantry_runs"]


@main_bp.route("/health")
def health_check() -> Any:
    return "OK", 200


@main_bp.route("/api/pipelines", methods=["GET"])
def list_pipelines() -> Any:
    return jsonify(_service().pipelines.list_all()), 200


@main_bp.route("/api/pipelines/<name>", methods=["GET"])
def get_pipeline(name: str) -> Any:
    service = _service()
    try:
        pipeline = service.resolve_pipeline(name)
    except ValueError as e:
        return jsonify({"error": str(e)}), 404

    registered = list(service.executor.registry.list_collaborators())
    return jsonify({
        "pipeline": pipeline.model_dump(mode="json", by_alias=True),
        "warnings": service.pipelines.loader.validate_pipeline(pipeline, registered),
    }), 200


@main_bp.route("/api/runs", methods=["POST"])
def submit_run() -> Any:
    """
    Queue a pipeline run.

    Body:
        {
            "pipeline": "default",          # preset/custom name, or
            "definition": {...},            # an inline pipeline definition
            "branch": "main",
            "parameters": {},
            "environment": {}
        }

    Returns:
        202: Run queued
        400: Invalid request
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body required"}), 400

    service = _service()
    branch = data.get("branch") or current_app.config.get("DEFAULT_BRANCH", "main")

    try:
        if data.get("definition"):
            pipeline = service.pipelines.loader.load_from_dict(data["definition"])
        elif data.get("pipeline"):
            pipeline = service.resolve_pipeline(data["pipeline"])
        else:
            return jsonify({"error": "pipeline or definition required"}), 400

        record = service.submit(
            pipeline,
            branch_name=branch,
            parameters=data.get("parameters") or {},
            environment=data.get("environment") or {},
        )
    except (ValueError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"run_id": record.run_id, "status": record.status}), 202


@main_bp.route("/api/runs", methods=["GET"])
def list_runs() -> Any:
    runs = [record.to_dict() for record in _service().list_runs()]
    return jsonify({"runs": runs, "count": len(runs)}), 200


@main_bp.route("/api/runs/<run_id>", methods=["GET"])
def get_run(run_id: str) -> Any:
    record = _service().get(run_id)
    if record is None:
        return jsonify({"error": "Run not found"}), 404
    return jsonify(record.to_dict()), 200


@main_bp.route("/api/runs/<run_id>/cancel", methods=["POST"])
def cancel_run(run_id: str) -> Any:
    service = _service()
    if service.get(run_id) is None:
        return jsonify({"error": "Run not found"}), 404
    if not service.cancel(run_id):
        return jsonify({"error": "Run already finished"}), 409
    return jsonify({"run_id": run_id, "cancel_requested": True}), 202


@main_bp.route("/api/runs/<run_id>/events", methods=["GET"])
def run_events(run_id: str) -> Any:
    service = _service()
    if service.get(run_id) is None:
        return jsonify({"error": "Run not found"}), 404
    events = service.events(run_id)
    return jsonify({"events": events, "count": len(events)}), 200


@main_bp.route("/api/runs/<run_id>/artifacts", methods=["GET"])
def run_artifacts(run_id: str) -> Any:
    record = _service().get(run_id)
    if record is None:
        return jsonify({"error": "Run not found"}), 404
    if record.result is None and record.done.is_set():
        return jsonify({"error": f"Run failed: {record.error}", "status": record.status}), 500
    # Artifacts are published only once the run (and its hooks) finished
    if record.result is None:
        return jsonify({"error": "Run has not finished", "status": record.status}), 409
    return jsonify({
        "status": record.result.status.value,
        "artifacts": [artifact.to_dict() for artifact in record.result.artifacts],
    }), 200


@main_bp.route("/api/approvals", methods=["GET"])
def list_approvals() -> Any:
    pending = [approval.to_dict() for approval in get_approval_board().list_pending()]
    return jsonify({"approvals": pending, "count": len(pending)}), 200


@main_bp.route("/api/approvals/<approval_id>", methods=["POST"])
def resolve_approval(approval_id: str) -> Any:
    """
    Approve or reject a pending approval.

    Body:
        {"approved": true, "approver": "alice"}
    """
    data = request.get_json(silent=True) or {}
    if "approved" not in data:
        return jsonify({"error": "approved required"}), 400

    if not get_approval_board().resolve(approval_id, bool(data["approved"]), data.get("approver")):
        return jsonify({"error": "Approval not pending"}), 404

    logger.info(f"Approval {approval_id} resolved via API")
    return jsonify({"approval_id": approval_id, "approved": bool(data["approved"])}), 200
