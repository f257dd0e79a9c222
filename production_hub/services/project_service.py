"""Project service: creation from a template, archival and stats projection."""

import logging

from sqlalchemy import case, func, select

from production_hub.core.exceptions import ValidationError
from production_hub.models import db
from production_hub.models.project import Project, ProjectRole, ProjectTask
from production_hub.services.helpers.lookups import get_project
from production_hub.services.template_snapshot import TemplateSnapshot
from production_hub.utils.helpers import parse_date

logger = logging.getLogger(__name__)


def create_project(data: dict, created_by: str | None = None) -> Project:
    """Create a project and freeze its template.

    The template is validated into a ``TemplateSnapshot`` and stored in its
    normalised JSON form; one ProjectRole is created per template role.
    Tasks are not loaded here: that happens once every role has crew.

    Args:
        data: ``name`` and ``start_date`` (required), optional ``description``,
              ``image_url``, ``end_date``, and ``template`` (snapshot dict).
        created_by: Actor recorded on the project.

    Raises:
        ValidationError: missing fields, bad dates or an invalid template.
    """
    errors = {}
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        errors["name"] = "required"
    for key in ("description", "image_url"):
        if data.get(key) is not None and not isinstance(data[key], str):
            errors[key] = "must be a string"
    start_date = parse_date(data.get("start_date"))
    if start_date is None:
        errors["start_date"] = "required (YYYY-MM-DD)"
    end_date = parse_date(data.get("end_date"))
    if data.get("end_date") and end_date is None:
        errors["end_date"] = "invalid date"
    if start_date and end_date and end_date < start_date:
        errors["end_date"] = "must be on or after start_date"
    template = data.get("template")
    if not isinstance(template, dict):
        errors["template"] = "required"
    if errors:
        raise ValidationError("Invalid project", details=errors)

    snapshot = TemplateSnapshot.from_dict(template)

    project = Project(
        name=name,
        description=data.get("description") or "",
        image_url=data.get("image_url"),
        status="active",
        start_date=start_date,
        end_date=end_date,
        template_id=snapshot.template_id,
        template_snapshot=snapshot.to_dict(),
        created_by=created_by,
        updated_by=created_by,
    )
    db.session.add(project)
    db.session.flush()

    for role in snapshot.roles:
        db.session.add(ProjectRole(
            project_id=project.id,
            role_id=role.role_id,
            role_name=role.role_name,
            department_name=role.department_name,
            is_filled=False,
        ))
    db.session.commit()
    logger.info("Project created id=%s roles=%s template_tasks=%s",
                project.id, len(snapshot.roles), snapshot.total_tasks,
                extra={"project_id": project.id})
    return project


def archive_project(project_id: int, archived_by: str | None = None) -> Project:
    """Soft-archive a project; the workflow engine ignores it afterwards."""
    project = get_project(project_id, lock=True)
    project.archive(archived_by)
    project.status = "archived"
    project.updated_by = archived_by
    db.session.commit()
    logger.info("Project archived id=%s", project.id, extra={"project_id": project.id})
    return project


def list_projects(include_archived: bool = False) -> list[Project]:
    stmt = select(Project)
    if not include_archived:
        stmt = stmt.where(Project.is_archived.is_(False))
    return db.session.execute(stmt.order_by(Project.start_date.desc(), Project.id.desc())).scalars().all()


def get_project_with_stats(project_id: int) -> dict:
    """The "project with stats" projection.

    Template totals describe the whole planned scope; task counts describe
    loaded rows. Completion is completed tasks over planned scope (custom
    tasks widen the scope when they outnumber the template).
    """
    project = get_project(project_id)
    snapshot = project.snapshot

    by_status = dict(db.session.execute(
        select(ProjectTask.status, func.count(ProjectTask.id))
        .where(
            ProjectTask.project_id == project.id,
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
        )
        .group_by(ProjectTask.status)
    ).all())
    loaded = sum(by_status.values())

    total_roles, filled_roles = db.session.execute(
        select(
            func.count(ProjectRole.id),
            func.coalesce(func.sum(case((ProjectRole.is_filled.is_(True), 1), else_=0)), 0),
        ).where(ProjectRole.project_id == project.id)
    ).one()

    scope = max(snapshot.total_tasks, loaded)
    completed = by_status.get("completed", 0)
    result = project.to_dict()
    result.update({
        "total_tasks": snapshot.total_tasks,
        "total_estimated_hours": snapshot.total_estimated_hours,
        "loaded_tasks": loaded,
        "completed_tasks": completed,
        "ongoing_tasks": by_status.get("ongoing", 0),
        "pending_tasks": by_status.get("pending", 0),
        "escalated_tasks": by_status.get("escalated", 0),
        "total_roles": total_roles,
        "filled_roles": filled_roles,
        "unfilled_roles": total_roles - filled_roles,
        "completion_percentage": round(completed / scope * 100, 2) if scope else 0,
    })
    return result


def get_phase_progress(project_id: int) -> list[dict]:
    """Per-phase task counts by status for loaded, non-archived tasks."""
    project = get_project(project_id)
    rows = db.session.execute(
        select(
            ProjectTask.phase_order,
            ProjectTask.phase_name,
            ProjectTask.status,
            func.count(ProjectTask.id),
        )
        .where(
            ProjectTask.project_id == project.id,
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
        )
        .group_by(ProjectTask.phase_order, ProjectTask.phase_name, ProjectTask.status)
        .order_by(ProjectTask.phase_order)
    ).all()

    phases = {}
    for phase_order, phase_name, status, count in rows:
        phase = phases.setdefault((phase_order, phase_name), {
            "phase_name": phase_name,
            "phase_order": phase_order,
            "total_tasks": 0,
            "completed_tasks": 0,
            "ongoing_tasks": 0,
            "pending_tasks": 0,
            "escalated_tasks": 0,
        })
        phase["total_tasks"] += count
        phase[f"{status}_tasks"] += count
    return list(phases.values())
