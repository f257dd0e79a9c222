"""
Tasks Blueprint — task state machine and task-level collaboration.

Endpoints:
  Task:         GET  /tasks/<id>
                PUT  /tasks/<id>  (descriptive fields only)
                POST /tasks/<id>/transition
  Checklist:    PUT  /tasks/<id>/checklist/<item_id>
  Comments:     POST /tasks/<id>/comments, DELETE /tasks/<id>/comments/<cid>
  Attachments:  POST /tasks/<id>/attachments, DELETE /tasks/<id>/attachments/<aid>
  Assignees:    POST /tasks/<id>/assignees, DELETE /tasks/<id>/assignees/<crew_id>
  Queues:       GET  /tasks/overdue, GET /tasks/escalated

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON response.
    - NO db.session calls here — all writes owned by the services.
"""

from flask import Blueprint, jsonify, request

from production_hub.blueprints import current_actor, non_string_fields
from production_hub.services import task_lifecycle, task_service
from production_hub.utils.errors import E, api_error, register_error_handlers

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")
register_error_handlers(tasks_bp)


@tasks_bp.route("/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task_with_assignments(task_id))


@tasks_bp.route("/<int:task_id>/transition", methods=["POST"])
def transition_task(task_id):
    """Change task status.

    Body: ``{"status": "ongoing|completed|escalated", "reason": "..."}``.
    Illegal edges answer 409 with ``current_status``/``requested_status``.
    """
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "status", "reason")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    new_status = data.get("status")
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    task = task_lifecycle.transition_task(
        task_id, new_status, data.get("reason"), actor=current_actor(data),
    )
    return jsonify(task.to_dict(include_assignments=True))


@tasks_bp.route("/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    """Edit name, description, hours or category. Status is rejected here."""
    data = request.get_json(silent=True) or {}
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "at least one field is required")
    task = task_service.update_task(task_id, data, updated_by=current_actor(data))
    return jsonify(task.to_dict())


# ── Checklist ────────────────────────────────────────────────────────────────


@tasks_bp.route("/<int:task_id>/checklist/<item_id>", methods=["PUT"])
def toggle_checklist_item(task_id, item_id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("completed"), bool):
        return api_error(E.VALIDATION_REQUIRED, "completed (boolean) is required")
    task = task_service.toggle_checklist_item(task_id, item_id, data["completed"])
    return jsonify(task.to_dict())


# ── Comments ─────────────────────────────────────────────────────────────────


@tasks_bp.route("/<int:task_id>/comments", methods=["POST"])
def add_comment(task_id):
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "text", "author")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    if not data.get("text"):
        return api_error(E.VALIDATION_REQUIRED, "text is required")
    comment = task_service.add_comment(task_id, data["text"], data.get("author") or current_actor())
    return jsonify(comment), 201


@tasks_bp.route("/<int:task_id>/comments/<comment_id>", methods=["DELETE"])
def delete_comment(task_id, comment_id):
    task_service.delete_comment(task_id, comment_id)
    return jsonify({"deleted": True})


# ── Attachments ──────────────────────────────────────────────────────────────


@tasks_bp.route("/<int:task_id>/attachments", methods=["POST"])
def add_attachment(task_id):
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "file_url", "file_name", "file_type")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    if not data.get("file_url") or not data.get("file_name"):
        return api_error(E.VALIDATION_REQUIRED, "file_url and file_name are required")
    attachment = task_service.add_attachment(
        task_id,
        data["file_url"],
        data["file_name"],
        file_size=data.get("file_size"),
        file_type=data.get("file_type"),
    )
    return jsonify(attachment), 201


@tasks_bp.route("/<int:task_id>/attachments/<attachment_id>", methods=["DELETE"])
def remove_attachment(task_id, attachment_id):
    removed = task_service.remove_attachment(task_id, attachment_id)
    return jsonify({"deleted": True, "attachment": removed})


# ── Assignees ────────────────────────────────────────────────────────────────


@tasks_bp.route("/<int:task_id>/assignees", methods=["POST"])
def assign_crew(task_id):
    data = request.get_json(silent=True) or {}
    crew_id = data.get("crew_id")
    if not isinstance(crew_id, int) or isinstance(crew_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "crew_id (integer) is required")
    role_id = data.get("project_role_id")
    if role_id is not None and (not isinstance(role_id, int) or isinstance(role_id, bool)):
        return api_error(E.VALIDATION_INVALID, "project_role_id must be an integer")
    assignment = task_service.assign_crew_to_task(
        task_id,
        crew_id,
        assigned_by=current_actor(data),
        project_role_id=data.get("project_role_id"),
    )
    return jsonify(assignment.to_dict()), 201


@tasks_bp.route("/<int:task_id>/assignees/<int:crew_id>", methods=["DELETE"])
def remove_crew(task_id, crew_id):
    task_service.remove_crew_from_task(task_id, crew_id)
    return jsonify({"deleted": True})


# ── Queues ───────────────────────────────────────────────────────────────────


@tasks_bp.route("/overdue", methods=["GET"])
def list_overdue():
    tasks = task_service.list_overdue_tasks()
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


@tasks_bp.route("/escalated", methods=["GET"])
def list_escalated():
    tasks = task_service.list_escalated_tasks()
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})
