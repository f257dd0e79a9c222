"""
Crew Assignment Gate — binds crew to project roles and flips fill flags.

Business logic for:
    - assign_role:            idempotent crew → role binding, marks role filled
    - can_project_start:      gate predicate (no unfilled role left)
    - remove_crew_from_role:  explicit unassignment, resets the fill flag
    - list_project_roles / list_crew_assignments: role projections

A new binding or a false→true fill flip invokes the auto-progression
trigger inside the same transaction, so the gate check, the instantiation
and the assignment commit together.
"""

import logging

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError

from production_hub.core.exceptions import NotFoundError
from production_hub.models import db
from production_hub.models.project import ProjectCrewAssignment, ProjectRole
from production_hub.services.helpers.lookups import (
    get_crew,
    get_project,
    get_project_role,
)

logger = logging.getLogger(__name__)


def all_roles_filled(project_id: int) -> bool:
    """True when no role of the project is still unfilled."""
    return not db.session.execute(
        select(
            exists().where(
                ProjectRole.project_id == project_id,
                ProjectRole.is_filled.is_(False),
            )
        )
    ).scalar()


def can_project_start(project_id: int) -> bool:
    """Gate predicate: every ProjectRole of the project reports ``is_filled``.

    Raises:
        NotFoundError: if the project does not exist or is archived.
    """
    get_project(project_id)
    return all_roles_filled(project_id)


def assign_role(project_id: int, role_id: str, crew_id: int, assigned_by: str | None = None) -> bool:
    """Bind a crew member to a project role.

    Duplicate requests are absorbed: the existing binding is kept and the
    call still succeeds. The project row is locked first, which serialises
    concurrent assignments for the same project.

    Args:
        project_id: Project PK.
        role_id: Template role key (``ProjectRole.role_id``).
        crew_id: CrewMember PK.
        assigned_by: Actor recorded on the binding.

    Returns:
        True on success (including an already-existing binding).

    Raises:
        NotFoundError: if the project, the (project, role) pair or the crew
                       member does not exist.
    """
    from production_hub.services.auto_progression import _try_auto_start

    project = get_project(project_id, lock=True)
    role = get_project_role(project.id, role_id)
    crew = get_crew(crew_id)
    extra = {"project_id": project.id, "crew_id": crew.id}

    existing = db.session.execute(
        select(ProjectCrewAssignment).where(
            ProjectCrewAssignment.project_id == project.id,
            ProjectCrewAssignment.project_role_id == role.id,
            ProjectCrewAssignment.crew_id == crew.id,
        )
    ).scalar_one_or_none()

    created = existing is None
    if created:
        try:
            with db.session.begin_nested():
                db.session.add(ProjectCrewAssignment(
                    project_id=project.id,
                    project_role_id=role.id,
                    crew_id=crew.id,
                    assigned_by=assigned_by,
                ))
        except IntegrityError:
            # Same binding inserted by a writer the row lock did not serialise.
            created = False
            logger.info("Crew %s binding to role %s of project %s already inserted",
                        crew.id, role.role_id, project.id, extra=extra)
        else:
            logger.info("Crew %s assigned to role %s of project %s",
                        crew.id, role.role_id, project.id, extra=extra)
    else:
        logger.info("Crew %s already holds role %s of project %s",
                    crew.id, role.role_id, project.id, extra=extra)

    flipped = not role.is_filled
    if flipped:
        role.is_filled = True
        logger.info("Role %s of project %s is now filled", role.role_id, project.id, extra=extra)
    db.session.flush()

    if created or flipped:
        _try_auto_start(project)

    db.session.commit()
    return True


def remove_crew_from_role(assignment_id: int) -> ProjectRole:
    """Delete a crew → role binding.

    The role's ``is_filled`` is reset when no crew is left on it. Already
    loaded tasks and their assignments are left untouched.

    Raises:
        NotFoundError: if the binding does not exist.
    """
    assignment = db.session.get(ProjectCrewAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="ProjectCrewAssignment", resource_id=assignment_id)

    get_project(assignment.project_id, lock=True)
    role = assignment.role
    db.session.delete(assignment)
    db.session.flush()

    remaining = role.crew_assignments.count()
    if remaining == 0 and role.is_filled:
        role.is_filled = False
        logger.info("Role %s of project %s is unfilled again", role.role_id, role.project_id,
                    extra={"project_id": role.project_id})
    db.session.commit()
    logger.info("ProjectCrewAssignment deleted id=%s", assignment_id)
    return role


def list_project_roles(project_id: int) -> list[ProjectRole]:
    """Roles of a project ordered by department then role name."""
    get_project(project_id)
    return db.session.execute(
        select(ProjectRole)
        .where(ProjectRole.project_id == project_id)
        .order_by(ProjectRole.department_name, ProjectRole.role_name)
    ).scalars().all()


def list_crew_assignments(project_id: int) -> list[ProjectCrewAssignment]:
    get_project(project_id)
    return db.session.execute(
        select(ProjectCrewAssignment)
        .where(ProjectCrewAssignment.project_id == project_id)
        .order_by(ProjectCrewAssignment.id)
    ).scalars().all()
