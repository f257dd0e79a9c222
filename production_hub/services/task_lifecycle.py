"""
Task Lifecycle — status transitions for ProjectTask.

Transition table (``TASK_TRANSITIONS`` in models/project.py):

    pending   → ongoing     start     started_at = now, deadline = now + estimated_hours
    pending   → escalated   escalate  reason, escalated_at, manual flag
    ongoing   → completed   complete  completed_at = now
    ongoing   → escalated   escalate  reason, escalated_at, manual flag
    escalated → ongoing     resume    escalation fields kept for audit
                                      (started_at set if the task never started)
    escalated → completed   complete  completed_at = now (started_at back-filled)
    completed → ongoing     reopen    completed_at cleared

Nothing here advances other tasks. The owning project follows its tasks:
it becomes ``completed`` when every loaded task is completed and returns to
``active`` when one is reopened.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import case, func, select

from production_hub.core.exceptions import InvalidTransitionError, ValidationError
from production_hub.models import db
from production_hub.models.project import (
    TASK_STATUSES,
    Project,
    ProjectTask,
    validate_task_transition,
)
from production_hub.services.helpers.lookups import get_project, get_task
from production_hub.services.task_instantiation import compute_deadline

logger = logging.getLogger(__name__)


def transition_task(
    task_id: int,
    new_status: str,
    reason: str | None = None,
    *,
    actor: str | None = None,
    manual: bool = True,
) -> ProjectTask:
    """Move a task to *new_status* and apply the edge's side effects.

    Args:
        task_id: ProjectTask PK.
        new_status: Target status wire value.
        reason: Escalation reason; required when escalating.
        actor: Recorded as ``updated_by``.
        manual: Value of ``is_manually_escalated`` when escalating.

    Returns:
        The updated task.

    Raises:
        ValidationError: unknown status, or escalation without a reason.
        InvalidTransitionError: the edge is not in the transition table
                                (same-state requests included).
        NotFoundError: the task or its project is missing or archived.
    """
    if not isinstance(new_status, str) or new_status not in TASK_STATUSES:
        raise ValidationError(
            f"Unknown task status {new_status!r}",
            details={"status": f"must be one of {sorted(TASK_STATUSES)}"},
        )

    task = get_task(task_id)
    project = get_project(task.project_id, lock=True)
    old = task.status
    if not validate_task_transition(old, new_status):
        raise InvalidTransitionError(task.id, old, new_status)

    if reason is not None and not isinstance(reason, str):
        raise ValidationError("Escalation reason must be a string", details={"reason": "must be a string"})
    reason = (reason or "").strip()
    if new_status == "escalated" and not reason:
        raise ValidationError(
            "An escalation reason is required",
            details={"reason": "required when escalating"},
        )

    now = datetime.now(timezone.utc)
    if new_status == "ongoing":
        # Escalated straight from pending: resuming is its first start.
        if old == "pending" or task.started_at is None:
            task.started_at = now
            task.deadline = compute_deadline(now, task.estimated_hours)
        if old == "completed":
            task.completed_at = None
    elif new_status == "completed":
        task.completed_at = now
        if task.started_at is None:
            task.started_at = now
    elif new_status == "escalated":
        task.escalation_reason = reason
        task.escalated_at = now
        task.is_manually_escalated = manual

    task.status = new_status
    if actor:
        task.updated_by = actor
    db.session.flush()

    _sync_project_status(project)
    db.session.commit()
    logger.info("Task transitioned id=%s %s → %s", task.id, old, new_status,
                extra={"project_id": project.id, "task_id": task.id})
    return task


def _sync_project_status(project: Project) -> None:
    """Complete the project when no loaded task is open; reactivate on reopen."""
    counts = db.session.execute(
        select(
            func.count(ProjectTask.id),
            func.coalesce(func.sum(case((ProjectTask.status != "completed", 1), else_=0)), 0),
        ).where(
            ProjectTask.project_id == project.id,
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
        )
    ).one()
    loaded, still_open = counts
    if loaded and not still_open and project.status == "active":
        project.status = "completed"
        logger.info("Project %s completed: all %d loaded tasks done", project.id, loaded,
                    extra={"project_id": project.id})
    elif still_open and project.status == "completed":
        project.status = "active"
        logger.info("Project %s reactivated", project.id, extra={"project_id": project.id})


def escalate_overdue_tasks(now: datetime | None = None) -> int:
    """Escalate every open loaded task whose deadline has passed.

    Pending and ongoing tasks past ``deadline`` move to ``escalated`` with
    the configured overdue reason and ``is_manually_escalated = False``.

    Returns:
        Number of tasks escalated.
    """
    now = now or datetime.now(timezone.utc)
    reason = current_app.config.get("OVERDUE_ESCALATION_REASON", "Task deadline exceeded")
    actor = current_app.config.get("SYSTEM_ACTOR", "system")

    overdue = db.session.execute(
        select(ProjectTask)
        .join(Project, Project.id == ProjectTask.project_id)
        .where(
            Project.is_archived.is_(False),
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
            ProjectTask.status.in_(("pending", "ongoing")),
            ProjectTask.deadline.is_not(None),
            ProjectTask.deadline < now,
        )
        .order_by(ProjectTask.id)
    ).scalars().all()

    for task in overdue:
        task.status = "escalated"
        task.escalation_reason = reason
        task.escalated_at = now
        task.is_manually_escalated = False
        task.updated_by = actor
        logger.info("Task %s escalated: deadline exceeded", task.id,
                    extra={"project_id": task.project_id, "task_id": task.id})

    db.session.commit()
    logger.info("escalate_overdue_tasks: %d task(s) escalated", len(overdue))
    return len(overdue)
