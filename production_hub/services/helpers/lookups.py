"""
Workflow lookup helpers.

Every service reads projects, roles, tasks and crew through these functions
so that "missing" and "archived" mean the same thing everywhere: both raise
NotFoundError → HTTP 404.

Usage:
    project = get_project(project_id)                 # archived → NotFoundError
    project = get_project(project_id, lock=True)      # SELECT … FOR UPDATE
    role = get_project_role(project_id, "dop")        # by template role key
"""

import logging

from sqlalchemy import select

from production_hub.core.exceptions import NotFoundError
from production_hub.models import db
from production_hub.models.crew import CrewMember
from production_hub.models.project import Project, ProjectRole, ProjectTask

logger = logging.getLogger(__name__)


def get_project(project_id: int, *, lock: bool = False, include_archived: bool = False) -> Project:
    """Fetch a project by PK.

    Args:
        project_id: Project primary key.
        lock: Take a row lock (``FOR UPDATE``) for the rest of the transaction.
              Serialises gate checks and instantiation per project; a no-op
              on SQLite.
        include_archived: Return archived projects instead of raising.

    Raises:
        NotFoundError: if the project does not exist or is archived.
    """
    stmt = select(Project).where(Project.id == project_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None or (project.is_archived and not include_archived):
        logger.debug("get_project: id=%s not found (archived=%s)",
                     project_id, getattr(project, "is_archived", None))
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def find_project(project_id: int, *, lock: bool = False) -> Project | None:
    """Same as get_project but returns None for missing projects.

    Archived projects are returned so callers can report them explicitly.
    """
    stmt = select(Project).where(Project.id == project_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.session.execute(stmt).scalar_one_or_none()


def get_project_role(project_id: int, role_id: str) -> ProjectRole:
    """Fetch the project's row for a template role key."""
    role = db.session.execute(
        select(ProjectRole).where(
            ProjectRole.project_id == project_id,
            ProjectRole.role_id == str(role_id),
        )
    ).scalar_one_or_none()
    if role is None:
        raise NotFoundError(resource="ProjectRole", resource_id=f"{project_id}/{role_id}")
    return role


def get_task(task_id: int) -> ProjectTask:
    """Fetch a non-archived task by PK."""
    task = db.session.get(ProjectTask, task_id)
    if task is None or task.is_archived:
        raise NotFoundError(resource="ProjectTask", resource_id=task_id)
    return task


def get_crew(crew_id: int) -> CrewMember:
    """Fetch a non-archived crew member by PK."""
    crew = db.session.get(CrewMember, crew_id)
    if crew is None or crew.is_archived:
        raise NotFoundError(resource="CrewMember", resource_id=crew_id)
    return crew
