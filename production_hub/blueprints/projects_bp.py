"""
Projects Blueprint — project lifecycle, crew gate and task lists.

Endpoints:
  Project:      GET/POST /projects, GET /projects/<id> (with stats)
                POST /projects/<id>/archive
  Crew gate:    GET  /projects/<id>/roles
                POST /projects/<id>/roles/<role_id>/assign
                DELETE /projects/crew-assignments/<assignment_id>
                GET  /projects/<id>/can-start
  Engine:       POST /projects/<id>/auto-start
                POST /projects/<id>/instantiate
                POST /projects/<id>/seed
  Tasks:        GET/POST /projects/<id>/tasks  (POST = custom task)
                GET  /projects/<id>/tasks/overdue
                GET  /projects/<id>/tasks/escalated
                GET  /projects/<id>/phase-progress

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON response.
    - NO db.session calls here — all writes owned by the services.
    - Domain exceptions are mapped by ``register_error_handlers``.
"""

import logging

from flask import Blueprint, jsonify, request

from production_hub.blueprints import current_actor, non_string_fields
from production_hub.services import (
    auto_progression,
    crew_assignment,
    project_service,
    task_instantiation,
    task_service,
)
from production_hub.services.helpers import lookups
from production_hub.utils.errors import E, api_error, register_error_handlers
from production_hub.utils.helpers import parse_bool_arg

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")
register_error_handlers(projects_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Project
# ═════════════════════════════════════════════════════════════════════════════


@projects_bp.route("", methods=["GET"])
def list_projects():
    include_archived = parse_bool_arg(request.args.get("include_archived")) or False
    items = project_service.list_projects(include_archived=include_archived)
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)})


@projects_bp.route("", methods=["POST"])
def create_project():
    """Create a project from a template payload. Tasks load once crew is complete."""
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "name", "description", "image_url", "start_date", "end_date")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    if not data.get("name") or not data.get("start_date"):
        return api_error(E.VALIDATION_REQUIRED, "name and start_date are required")
    if not isinstance(data.get("template"), dict):
        return api_error(E.VALIDATION_REQUIRED, "template object is required")
    project = project_service.create_project(data, created_by=current_actor(data))
    return jsonify(project_service.get_project_with_stats(project.id)), 201


@projects_bp.route("/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(project_service.get_project_with_stats(project_id))


@projects_bp.route("/<int:project_id>/archive", methods=["POST"])
def archive_project(project_id):
    data = request.get_json(silent=True) or {}
    project = project_service.archive_project(project_id, archived_by=current_actor(data))
    return jsonify(project.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Crew gate
# ═════════════════════════════════════════════════════════════════════════════


@projects_bp.route("/<int:project_id>/roles", methods=["GET"])
def list_roles(project_id):
    roles = crew_assignment.list_project_roles(project_id)
    return jsonify({
        "items": [r.to_dict(include_crew=True) for r in roles],
        "total": len(roles),
        "can_start": all(r.is_filled for r in roles),
    })


@projects_bp.route("/<int:project_id>/roles/<role_id>/assign", methods=["POST"])
def assign_role(project_id, role_id):
    """Bind crew to a role; may load tasks and activate the project."""
    data = request.get_json(silent=True) or {}
    crew_id = data.get("crew_id")
    if not isinstance(crew_id, int) or isinstance(crew_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "crew_id (integer) is required")
    crew_assignment.assign_role(project_id, role_id, crew_id, assigned_by=current_actor(data))
    return jsonify({
        "assigned": True,
        "project": project_service.get_project_with_stats(project_id),
    })


@projects_bp.route("/crew-assignments/<int:assignment_id>", methods=["DELETE"])
def remove_crew_assignment(assignment_id):
    role = crew_assignment.remove_crew_from_role(assignment_id)
    return jsonify({"deleted": True, "role": role.to_dict()})


@projects_bp.route("/<int:project_id>/can-start", methods=["GET"])
def can_start(project_id):
    return jsonify({"project_id": project_id,
                    "can_start": crew_assignment.can_project_start(project_id)})


# ═════════════════════════════════════════════════════════════════════════════
# Engine entry points
# ═════════════════════════════════════════════════════════════════════════════


@projects_bp.route("/<int:project_id>/auto-start", methods=["POST"])
def auto_start(project_id):
    started = auto_progression.try_auto_start(project_id)
    return jsonify({"project_id": project_id, "started": started})


@projects_bp.route("/<int:project_id>/instantiate", methods=["POST"])
def instantiate(project_id):
    loaded = task_instantiation.instantiate_all(project_id)
    return jsonify({"project_id": project_id, "loaded": loaded})


@projects_bp.route("/<int:project_id>/seed", methods=["POST"])
def seed(project_id):
    task = task_instantiation.seed_first_task(project_id)
    return jsonify({"project_id": project_id, "task": task.to_dict() if task else None})


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


@projects_bp.route("/<int:project_id>/tasks", methods=["GET"])
def list_tasks(project_id):
    """Loaded tasks, filterable by status, phase_order, step_order, is_custom."""
    tasks = task_service.list_tasks(
        project_id,
        status=request.args.get("status") or None,
        phase_order=request.args.get("phase_order", type=int),
        step_order=request.args.get("step_order", type=int),
        is_custom=parse_bool_arg(request.args.get("is_custom")),
    )
    include = parse_bool_arg(request.args.get("include_assignments")) or False
    return jsonify({
        "items": [t.to_dict(include_assignments=include) for t in tasks],
        "total": len(tasks),
    })


@projects_bp.route("/<int:project_id>/tasks", methods=["POST"])
def create_custom_task(project_id):
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "task_name", "task_description")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    if not data.get("task_name"):
        return api_error(E.VALIDATION_REQUIRED, "task_name is required")
    task = task_service.create_custom_task(project_id, data, created_by=current_actor(data))
    return jsonify(task.to_dict()), 201


@projects_bp.route("/<int:project_id>/phase-progress", methods=["GET"])
def phase_progress(project_id):
    phases = project_service.get_phase_progress(project_id)
    return jsonify({"project_id": project_id, "items": phases, "total": len(phases)})


@projects_bp.route("/<int:project_id>/tasks/overdue", methods=["GET"])
def list_overdue(project_id):
    lookups.get_project(project_id)
    tasks = task_service.list_overdue_tasks(project_id)
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


@projects_bp.route("/<int:project_id>/tasks/escalated", methods=["GET"])
def list_escalated(project_id):
    lookups.get_project(project_id)
    tasks = task_service.list_escalated_tasks(project_id)
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})
