"""
Crew Blueprint — crew directory.

Endpoints:
  GET  /crew               List crew members (?include_archived=true)
  POST /crew               Register a crew member
"""

from flask import Blueprint, jsonify, request

from production_hub.blueprints import non_string_fields
from production_hub.services import crew_service
from production_hub.utils.errors import E, api_error, register_error_handlers
from production_hub.utils.helpers import parse_bool_arg

crew_bp = Blueprint("crew", __name__, url_prefix="/api/v1/crew")
register_error_handlers(crew_bp)


@crew_bp.route("", methods=["GET"])
def list_crew():
    include_archived = parse_bool_arg(request.args.get("include_archived")) or False
    members = crew_service.list_crew(include_archived=include_archived)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)})


@crew_bp.route("", methods=["POST"])
def create_crew():
    data = request.get_json(silent=True) or {}
    bad = non_string_fields(data, "name", "email", "phone", "photo_url")
    if bad:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(bad)} must be a string")
    if not data.get("name") or not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "name and email are required")
    crew = crew_service.create_crew_member(data)
    return jsonify(crew.to_dict()), 201
