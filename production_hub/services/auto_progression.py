"""
Auto Progression — starts a project once its crew gate opens.

Invoked synchronously at the end of the transaction that recorded a crew
assignment (role or task) or a role fill. Preconditions are checked in
order; the first unmet one is logged at INFO level and the call returns
False, which is an expected outcome rather than an error:

    1. project exists and is not archived
    2. every project role is filled
    3. no task has been loaded yet

When all hold, the snapshot is instantiated and the project is set active.
"""

import logging

from sqlalchemy import select

from production_hub.models import db
from production_hub.models.project import Project
from production_hub.services.crew_assignment import all_roles_filled
from production_hub.services.helpers.lookups import find_project
from production_hub.services.task_instantiation import _instantiate, has_loaded_tasks

logger = logging.getLogger(__name__)


def try_auto_start(project_id: int) -> bool:
    """Gate check + instantiation + activation, committed as one unit."""
    project = find_project(project_id, lock=True)
    if project is None:
        logger.info("Auto-start skipped: project %s does not exist", project_id,
                    extra={"project_id": project_id})
        return False
    started = _try_auto_start(project)
    db.session.commit()
    return started


def _try_auto_start(project: Project) -> bool:
    """Flush-only body of ``try_auto_start``. Caller holds the project row lock."""
    extra = {"project_id": project.id}
    if project.is_archived:
        logger.info("Auto-start skipped: project %s is archived", project.id, extra=extra)
        return False
    if not all_roles_filled(project.id):
        logger.info("Auto-start skipped: project %s still has unfilled roles", project.id, extra=extra)
        return False
    if has_loaded_tasks(project.id):
        logger.info("Auto-start skipped: project %s already has loaded tasks", project.id, extra=extra)
        return False

    if not _instantiate(project):
        return False

    if project.status != "active":
        project.status = "active"
    db.session.flush()
    logger.info("Project %s auto-started", project.id, extra=extra)
    return True


def start_ready_projects() -> list[dict]:
    """Sweep every idle project whose roles are all filled and start it.

    Catches projects whose last role was filled before tasks could load
    (e.g. an empty template later replaced, or rows written outside the
    service layer).

    Returns:
        One ``{project_id, project_name, action_taken, success}`` dict per
        project considered.
    """
    candidates = db.session.execute(
        select(Project.id)
        .where(Project.is_archived.is_(False))
        .order_by(Project.id)
    ).scalars().all()

    results = []
    for project_id in candidates:
        if has_loaded_tasks(project_id) or not all_roles_filled(project_id):
            continue
        project = find_project(project_id, lock=True)
        started = _try_auto_start(project)
        db.session.commit()
        results.append({
            "project_id": project.id,
            "project_name": project.name,
            "action_taken": "tasks_loaded" if started else "skipped",
            "success": started,
        })
    logger.info("start_ready_projects: %d candidate(s), %d started",
                len(results), sum(1 for r in results if r["success"]))
    return results
