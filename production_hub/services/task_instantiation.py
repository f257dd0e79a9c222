"""
Task Instantiation — turns a project's template snapshot into task rows.

Business logic for:
    - Instantiation:     one ProjectTask per snapshot task, parents first
    - Idempotency:       row lock + compare-and-set on projects.task_load_version
    - Execution order:   reset loaded tasks, promote exactly one to ongoing
    - Crew auto-assign:  template tasks naming a role get that role's crew

Transaction contract:
    ``instantiate_all`` and ``seed_first_task`` commit. The ``_``-prefixed
    variants only flush, so the auto-progression trigger can run them inside
    the transaction of the write that opened the gate.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import exists, select, update

from production_hub.models import db
from production_hub.models.project import (
    Project,
    ProjectCrewAssignment,
    ProjectRole,
    ProjectTask,
    ProjectTaskAssignment,
)
from production_hub.services.helpers.lookups import get_project

logger = logging.getLogger(__name__)


def _system_actor() -> str:
    return current_app.config.get("SYSTEM_ACTOR", "system")


def compute_deadline(started_at: datetime, estimated_hours: float | None) -> datetime | None:
    """``started_at + estimated_hours``; None when the task has no estimate."""
    if estimated_hours is None:
        return None
    return started_at + timedelta(hours=estimated_hours)


def has_loaded_tasks(project_id: int) -> bool:
    """True when the project has at least one loaded, non-archived task."""
    return db.session.execute(
        select(
            exists().where(
                ProjectTask.project_id == project_id,
                ProjectTask.is_loaded.is_(True),
                ProjectTask.is_archived.is_(False),
            )
        )
    ).scalar()


# ── Instantiation ────────────────────────────────────────────────────────────


def instantiate_all(project_id: int) -> bool:
    """Materialise every task of the project's snapshot.

    Returns False (and changes nothing) when the project is archived, has an
    empty snapshot, or already has loaded tasks.

    Raises:
        NotFoundError: if the project does not exist.
    """
    project = get_project(project_id, lock=True, include_archived=True)
    created = _instantiate(project)
    db.session.commit()
    return created


def _instantiate(project: Project) -> bool:
    """Flush-only body of ``instantiate_all``. Caller holds the project row lock."""
    extra = {"project_id": project.id}
    if project.is_archived:
        logger.info("Instantiation skipped: project %s is archived", project.id, extra=extra)
        return False

    snapshot = project.snapshot
    if snapshot.is_empty:
        logger.info("Instantiation skipped: project %s has an empty template", project.id, extra=extra)
        return False

    if has_loaded_tasks(project.id):
        logger.info("Instantiation skipped: project %s already has loaded tasks", project.id, extra=extra)
        return False

    # Compare-and-set claim: a concurrent caller that read the same version
    # updates zero rows and backs off.
    version = project.task_load_version or 0
    now = datetime.now(timezone.utc)
    claimed = db.session.execute(
        update(Project)
        .where(Project.id == project.id, Project.task_load_version == version)
        .values(task_load_version=version + 1, tasks_loaded_at=now)
        .execution_options(synchronize_session="fetch")
    ).rowcount
    if claimed != 1:
        logger.info("Instantiation skipped: project %s was claimed concurrently", project.id, extra=extra)
        return False

    actor = _system_actor()
    rows_by_template_id: dict[str, ProjectTask] = {}
    for phase, step, task in snapshot.insertion_order():
        row = ProjectTask(
            project_id=project.id,
            template_task_id=task.task_id,
            task_name=task.task_name,
            task_description=task.description,
            phase_name=phase.phase_name,
            phase_order=phase.phase_order,
            step_name=step.step_name,
            step_order=step.step_order,
            task_order=task.task_order,
            estimated_hours=task.estimated_hours,
            category=task.category,
            checklist_items=[
                {**item.to_dict(), "completed": False} for item in task.checklist_items
            ],
            file_attachments=[],
            comments=[],
            status="pending",
            is_loaded=True,
            is_custom=False,
            created_by=actor,
        )
        if task.parent_task_id is not None:
            row.parent = rows_by_template_id[task.parent_task_id]
        db.session.add(row)
        rows_by_template_id[task.task_id] = row
    db.session.flush()

    seeded = _seed_first_task(project)
    assigned = _auto_assign_crew(project, snapshot, rows_by_template_id)

    logger.info(
        "Tasks instantiated project_id=%s count=%s seeded_task=%s auto_assigned=%s",
        project.id, len(rows_by_template_id), seeded.id if seeded else None, assigned,
        extra=extra,
    )
    return True


# ── Execution order ──────────────────────────────────────────────────────────


def seed_first_task(project_id: int) -> ProjectTask | None:
    """Reset loaded tasks and start the first parentless task of the first phase.

    Raises:
        NotFoundError: if the project does not exist or is archived.
    """
    project = get_project(project_id, lock=True)
    seeded = _seed_first_task(project)
    db.session.commit()
    return seeded


def _seed_first_task(project: Project) -> ProjectTask | None:
    tasks = db.session.execute(
        select(ProjectTask).where(
            ProjectTask.project_id == project.id,
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
            ProjectTask.status != "completed",
        )
    ).scalars().all()
    if not tasks:
        logger.info("Seed skipped: project %s has no open loaded tasks", project.id,
                    extra={"project_id": project.id})
        return None

    for task in tasks:
        if task.status != "pending":
            task.status = "pending"
            task.started_at = None
            task.deadline = None

    first_phase = min(t.phase_order for t in tasks)
    candidates = [
        t for t in tasks
        if t.phase_order == first_phase and t.parent_task_id is None
    ]
    if not candidates:
        logger.info("Seed skipped: phase %s of project %s has no parentless task",
                    first_phase, project.id, extra={"project_id": project.id})
        return None

    first = min(candidates, key=lambda t: (t.step_order, t.task_order))
    now = datetime.now(timezone.utc)
    first.status = "ongoing"
    first.started_at = now
    first.deadline = compute_deadline(now, first.estimated_hours)

    project.current_phase_order = first.phase_order
    project.current_step_order = first.step_order
    db.session.flush()

    logger.info("Task %s started as first task of project %s", first.id, project.id,
                extra={"project_id": project.id, "task_id": first.id})
    return first


# ── Crew auto-assignment ─────────────────────────────────────────────────────


def _auto_assign_crew(project: Project, snapshot, rows_by_template_id: dict) -> int:
    """Bind each role's crew to the template tasks that name that role."""
    roles = {
        r.role_id: r
        for r in db.session.execute(
            select(ProjectRole).where(ProjectRole.project_id == project.id)
        ).scalars()
    }
    crew_by_role: dict[int, list[int]] = {}
    for assignment in db.session.execute(
        select(ProjectCrewAssignment).where(ProjectCrewAssignment.project_id == project.id)
    ).scalars():
        crew_by_role.setdefault(assignment.project_role_id, []).append(assignment.crew_id)

    actor = _system_actor()
    created = 0
    for _, _, task in snapshot.walk():
        if not task.assigned_role_id:
            continue
        role = roles.get(task.assigned_role_id)
        if role is None:
            continue
        row = rows_by_template_id[task.task_id]
        for crew_id in crew_by_role.get(role.id, []):
            db.session.add(ProjectTaskAssignment(
                project_id=project.id,
                project_task_id=row.id,
                project_role_id=role.id,
                crew_id=crew_id,
                assigned_by=actor,
            ))
            created += 1
    db.session.flush()
    return created
