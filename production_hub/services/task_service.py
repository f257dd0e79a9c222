"""
Task Service — everything done to a task besides changing its status.

Business logic for:
    - Checklist:     toggle one item's completed flag
    - Comments:      append / delete ``{id, text, author, created_at}`` records
    - Attachments:   record / forget ``{id, file_url, file_name, file_size,
                     file_type, uploaded_at}`` (storage itself is external)
    - Task crew:     idempotent assignment, last-assignee guard on removal
    - Task details:  name, description, estimated/actual hours, category
    - Custom tasks:  user-added tasks appended to the last loaded step
    - Queries:       filtered task lists, overdue and escalated views

None of these operations changes a task's status.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select

from production_hub.core.exceptions import LastAssigneeError, NotFoundError, ValidationError
from production_hub.models import db
from production_hub.models.project import (
    MAX_ESTIMATED_HOURS,
    TASK_CATEGORIES,
    TASK_STATUSES,
    ProjectCrewAssignment,
    ProjectRole,
    ProjectTask,
    ProjectTaskAssignment,
    validate_hours,
)
from production_hub.services.helpers.lookups import get_crew, get_project, get_task
from production_hub.services.task_instantiation import compute_deadline, has_loaded_tasks

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_text(value) -> str | None:
    """Stripped string, or None for missing, blank or non-string values."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


# ── Checklist ────────────────────────────────────────────────────────────────


def toggle_checklist_item(task_id: int, item_id: str, completed: bool) -> ProjectTask:
    """Set one checklist item's ``completed`` flag.

    Raises:
        NotFoundError: if the task or the item does not exist.
    """
    task = get_task(task_id)
    items = [dict(item) for item in (task.checklist_items or [])]
    for item in items:
        if str(item.get("id")) == str(item_id):
            item["completed"] = bool(completed)
            break
    else:
        raise NotFoundError(resource="ChecklistItem", resource_id=item_id)

    task.checklist_items = items
    db.session.commit()
    logger.info("Checklist item %s of task %s set completed=%s", item_id, task.id, bool(completed),
                extra={"project_id": task.project_id, "task_id": task.id})
    return task


# ── Comments ─────────────────────────────────────────────────────────────────


def add_comment(task_id: int, text: str, author: str | None) -> dict:
    """Append a comment to the task and return it."""
    text = _clean_text(text)
    if not text:
        raise ValidationError("Comment text is required", details={"text": "non-empty string required"})
    task = get_task(task_id)
    comment = {
        "id": uuid.uuid4().hex,
        "text": text,
        "author": author or "anonymous",
        "created_at": _now_iso(),
    }
    task.comments = list(task.comments or []) + [comment]
    db.session.commit()
    logger.info("Comment added to task %s", task.id,
                extra={"project_id": task.project_id, "task_id": task.id})
    return comment


def delete_comment(task_id: int, comment_id: str) -> None:
    task = get_task(task_id)
    comments = list(task.comments or [])
    kept = [c for c in comments if c.get("id") != comment_id]
    if len(kept) == len(comments):
        raise NotFoundError(resource="TaskComment", resource_id=comment_id)
    task.comments = kept
    db.session.commit()
    logger.info("Comment %s deleted from task %s", comment_id, task.id,
                extra={"project_id": task.project_id, "task_id": task.id})


# ── Attachments ──────────────────────────────────────────────────────────────


def add_attachment(
    task_id: int,
    file_url: str,
    file_name: str,
    file_size: int | None = None,
    file_type: str | None = None,
) -> dict:
    """Record an already-uploaded file against the task.

    Args:
        task_id: ProjectTask PK.
        file_url: Public/signed URL returned by the storage service.
        file_name: Original file name shown to users.
        file_size: Size in bytes, when known.
        file_type: MIME type, when known.

    Returns:
        The stored attachment record.
    """
    errors = {}
    file_url = _clean_text(file_url)
    file_name = _clean_text(file_name)
    if not file_url:
        errors["file_url"] = "non-empty string required"
    if not file_name:
        errors["file_name"] = "non-empty string required"
    if file_type is not None and not isinstance(file_type, str):
        errors["file_type"] = "must be a string"
    if file_size is not None and (isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0):
        errors["file_size"] = "must be a non-negative integer"
    if errors:
        raise ValidationError("Invalid attachment", details=errors)

    task = get_task(task_id)
    attachment = {
        "id": uuid.uuid4().hex,
        "file_url": file_url,
        "file_name": file_name,
        "file_size": file_size,
        "file_type": file_type,
        "uploaded_at": _now_iso(),
    }
    task.file_attachments = list(task.file_attachments or []) + [attachment]
    db.session.commit()
    logger.info("Attachment %s added to task %s", attachment["file_name"], task.id,
                extra={"project_id": task.project_id, "task_id": task.id})
    return attachment


def remove_attachment(task_id: int, attachment_id: str) -> dict:
    """Forget an attachment record. Returns the removed record so the caller
    can delete the stored file."""
    task = get_task(task_id)
    attachments = list(task.file_attachments or [])
    removed = next((a for a in attachments if a.get("id") == attachment_id), None)
    if removed is None:
        raise NotFoundError(resource="TaskAttachment", resource_id=attachment_id)
    task.file_attachments = [a for a in attachments if a.get("id") != attachment_id]
    db.session.commit()
    logger.info("Attachment %s removed from task %s", attachment_id, task.id,
                extra={"project_id": task.project_id, "task_id": task.id})
    return removed


# ── Task crew ────────────────────────────────────────────────────────────────


def _resolve_task_role(project_id: int, crew_id: int, project_role_id: int | None) -> ProjectRole:
    """Explicit role, else the crew member's role on the project, else the
    project's first role."""
    if project_role_id is not None:
        role = db.session.get(ProjectRole, project_role_id)
        if role is None or role.project_id != project_id:
            raise NotFoundError(resource="ProjectRole", resource_id=project_role_id)
        return role

    crew_role_id = db.session.execute(
        select(ProjectCrewAssignment.project_role_id)
        .where(
            ProjectCrewAssignment.project_id == project_id,
            ProjectCrewAssignment.crew_id == crew_id,
        )
        .order_by(ProjectCrewAssignment.id)
        .limit(1)
    ).scalar_one_or_none()
    if crew_role_id is not None:
        return db.session.get(ProjectRole, crew_role_id)

    role = db.session.execute(
        select(ProjectRole)
        .where(ProjectRole.project_id == project_id)
        .order_by(ProjectRole.id)
        .limit(1)
    ).scalar_one_or_none()
    if role is None:
        raise NotFoundError(resource="ProjectRole", resource_id=f"project={project_id}")
    return role


def assign_crew_to_task(
    task_id: int,
    crew_id: int,
    assigned_by: str | None = None,
    project_role_id: int | None = None,
) -> ProjectTaskAssignment:
    """Bind a crew member to a task. Returns the existing binding if the crew
    member is already on the task.

    A new binding counts as a crew assignment for the auto-progression
    trigger, evaluated in the same transaction.
    """
    from production_hub.services.auto_progression import _try_auto_start

    task = get_task(task_id)
    project = get_project(task.project_id, lock=True)
    crew = get_crew(crew_id)

    existing = db.session.execute(
        select(ProjectTaskAssignment)
        .where(
            ProjectTaskAssignment.project_task_id == task.id,
            ProjectTaskAssignment.crew_id == crew.id,
        )
        .order_by(ProjectTaskAssignment.id)
        .limit(1)
    ).scalar_one_or_none()
    if existing is not None:
        logger.info("Crew %s already assigned to task %s", crew.id, task.id,
                    extra={"project_id": project.id, "task_id": task.id})
        return existing

    role = _resolve_task_role(project.id, crew.id, project_role_id)
    assignment = ProjectTaskAssignment(
        project_id=project.id,
        project_task_id=task.id,
        project_role_id=role.id,
        crew_id=crew.id,
        assigned_by=assigned_by,
    )
    db.session.add(assignment)
    db.session.flush()

    _try_auto_start(project)
    db.session.commit()
    logger.info("ProjectTaskAssignment created id=%s task=%s crew=%s", assignment.id, task.id, crew.id,
                extra={"project_id": project.id, "task_id": task.id})
    return assignment


def remove_crew_from_task(task_id: int, crew_id: int) -> None:
    """Unbind a crew member from a task.

    Raises:
        NotFoundError: if the crew member is not assigned to the task.
        LastAssigneeError: if it would leave the task without assignees.
    """
    task = get_task(task_id)
    get_project(task.project_id, lock=True)
    assignments = task.assignments.all()
    targets = [a for a in assignments if a.crew_id == crew_id]
    if not targets:
        raise NotFoundError(resource="ProjectTaskAssignment", resource_id=f"{task_id}/{crew_id}")
    if len(assignments) - len(targets) == 0:
        raise LastAssigneeError(task.id, crew_id)

    for assignment in targets:
        db.session.delete(assignment)
    db.session.commit()
    logger.info("Crew %s removed from task %s", crew_id, task.id,
                extra={"project_id": task.project_id, "task_id": task.id})


# ── Task details ─────────────────────────────────────────────────────────────

EDITABLE_TASK_FIELDS = ("task_name", "task_description", "estimated_hours", "actual_hours", "category")


def _task_field_errors(data: dict) -> dict:
    """Type/range problems in the optional descriptive task fields."""
    errors = {}
    for key in ("estimated_hours", "actual_hours"):
        if data.get(key) is not None and not validate_hours(data[key]):
            errors[key] = f"must be a number between 0 and {MAX_ESTIMATED_HOURS}"
    category = data.get("category")
    if category is not None and (not isinstance(category, str) or category not in TASK_CATEGORIES):
        errors["category"] = f"must be one of {sorted(TASK_CATEGORIES)}"
    description = data.get("task_description")
    if description is not None and not isinstance(description, str):
        errors["task_description"] = "must be a string"
    return errors


def update_task(task_id: int, data: dict, updated_by: str | None = None) -> ProjectTask:
    """Edit a task's descriptive fields.

    Only ``EDITABLE_TASK_FIELDS`` may change; status moves through
    ``task_lifecycle.transition_task``. A new estimate on a started, open
    task moves its deadline.

    Raises:
        ValidationError: unknown or badly typed fields, or a status change.
        NotFoundError: missing or archived task.
    """
    unknown = sorted(set(data) - set(EDITABLE_TASK_FIELDS) - {"actor"})
    if unknown:
        raise ValidationError(
            "Only descriptive task fields can be updated",
            details={key: "not editable" for key in unknown},
        )
    errors = _task_field_errors(data)
    if "task_name" in data and not _clean_text(data["task_name"]):
        errors["task_name"] = "non-empty string required"
    if errors:
        raise ValidationError("Invalid task update", details=errors)

    task = get_task(task_id)
    changed = []
    for key in EDITABLE_TASK_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "task_name":
            value = _clean_text(value)
        elif key in ("estimated_hours", "actual_hours") and value is not None:
            value = float(value)
        if getattr(task, key) != value:
            setattr(task, key, value)
            changed.append(key)

    if "estimated_hours" in changed and task.started_at and task.status in ("ongoing", "escalated"):
        task.deadline = compute_deadline(task.started_at, task.estimated_hours)
    if changed and updated_by:
        task.updated_by = updated_by
    db.session.commit()
    logger.info("ProjectTask updated id=%s fields=%s", task.id, ",".join(changed) or "-",
                extra={"project_id": task.project_id, "task_id": task.id})
    return task


# ── Custom tasks ─────────────────────────────────────────────────────────────


def create_custom_task(project_id: int, data: dict, created_by: str | None = None) -> ProjectTask:
    """Append a user-defined task to the last loaded step of the project.

    Args:
        project_id: Project PK.
        data: ``task_name`` (required), optional ``task_description``,
              ``estimated_hours``, ``category``, ``parent_task_id``,
              ``checklist_items`` (strings or ``{text}`` dicts).
        created_by: Actor recorded on the task.

    Raises:
        ValidationError: bad input, or the project has no loaded tasks yet.
        NotFoundError: missing project or parent task.
    """
    from production_hub.services.task_lifecycle import _sync_project_status

    project = get_project(project_id, lock=True)
    errors = _task_field_errors(data)
    name = _clean_text(data.get("task_name"))
    if not name:
        errors["task_name"] = "non-empty string required"
    parent_id = data.get("parent_task_id")
    if parent_id is not None and (isinstance(parent_id, bool) or not isinstance(parent_id, int)):
        errors["parent_task_id"] = "must be an integer"
    if errors:
        raise ValidationError("Invalid custom task", details=errors)
    hours = data.get("estimated_hours")
    category = data.get("category")

    if not has_loaded_tasks(project.id):
        raise ValidationError(
            "Custom tasks can be added only after the project's tasks are loaded",
            details={"project_id": project.id},
        )

    if parent_id is not None:
        parent = get_task(parent_id)
        if parent.project_id != project.id:
            raise NotFoundError(resource="ProjectTask", resource_id=parent_id)

    last = db.session.execute(
        select(ProjectTask)
        .where(
            ProjectTask.project_id == project.id,
            ProjectTask.is_loaded.is_(True),
            ProjectTask.is_archived.is_(False),
        )
        .order_by(
            ProjectTask.phase_order.desc(),
            ProjectTask.step_order.desc(),
            ProjectTask.task_order.desc(),
        )
        .limit(1)
    ).scalar_one()
    next_order = (db.session.execute(
        select(func.max(ProjectTask.task_order)).where(
            ProjectTask.project_id == project.id,
            ProjectTask.phase_order == last.phase_order,
            ProjectTask.step_order == last.step_order,
        )
    ).scalar() or 0) + 1

    checklist = []
    for idx, raw in enumerate(data.get("checklist_items") or [], start=1):
        text = raw if isinstance(raw, str) else (raw or {}).get("text")
        if text and str(text).strip():
            checklist.append({
                "id": uuid.uuid4().hex,
                "text": str(text).strip(),
                "order": idx,
                "completed": False,
            })

    task = ProjectTask(
        project_id=project.id,
        template_task_id=None,
        task_name=name,
        task_description=data.get("task_description"),
        phase_name=last.phase_name,
        phase_order=last.phase_order,
        step_name=last.step_name,
        step_order=last.step_order,
        task_order=next_order,
        estimated_hours=float(hours) if hours is not None else None,
        category=category,
        parent_task_id=parent_id,
        checklist_items=checklist,
        file_attachments=[],
        comments=[],
        status="pending",
        is_loaded=True,
        is_custom=True,
        created_by=created_by,
    )
    db.session.add(task)
    db.session.flush()
    _sync_project_status(project)
    db.session.commit()
    logger.info("Custom ProjectTask created id=%s project=%s", task.id, project.id,
                extra={"project_id": project.id, "task_id": task.id})
    return task


# ── Queries ──────────────────────────────────────────────────────────────────


def list_tasks(
    project_id: int,
    status: str | None = None,
    phase_order: int | None = None,
    step_order: int | None = None,
    is_custom: bool | None = None,
) -> list[ProjectTask]:
    """Loaded, non-archived tasks of a project in phase/step/task order."""
    get_project(project_id)
    if status is not None and status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status {status!r}")
    stmt = select(ProjectTask).where(
        ProjectTask.project_id == project_id,
        ProjectTask.is_loaded.is_(True),
        ProjectTask.is_archived.is_(False),
    )
    if status is not None:
        stmt = stmt.where(ProjectTask.status == status)
    if phase_order is not None:
        stmt = stmt.where(ProjectTask.phase_order == phase_order)
    if step_order is not None:
        stmt = stmt.where(ProjectTask.step_order == step_order)
    if is_custom is not None:
        stmt = stmt.where(ProjectTask.is_custom.is_(is_custom))
    stmt = stmt.order_by(ProjectTask.phase_order, ProjectTask.step_order, ProjectTask.task_order)
    return db.session.execute(stmt).scalars().all()


def get_task_with_assignments(task_id: int) -> dict:
    """The "task with assignments" projection change-feed consumers refetch."""
    return get_task(task_id).to_dict(include_assignments=True)


def list_overdue_tasks(project_id: int | None = None, now: datetime | None = None) -> list[ProjectTask]:
    """Open (pending/ongoing) loaded tasks whose deadline has passed."""
    now = now or datetime.now(timezone.utc)
    stmt = select(ProjectTask).where(
        ProjectTask.is_loaded.is_(True),
        ProjectTask.is_archived.is_(False),
        ProjectTask.status.in_(("pending", "ongoing")),
        ProjectTask.deadline.is_not(None),
        ProjectTask.deadline < now,
    )
    if project_id is not None:
        stmt = stmt.where(ProjectTask.project_id == project_id)
    return db.session.execute(stmt.order_by(ProjectTask.deadline)).scalars().all()


def list_escalated_tasks(project_id: int | None = None) -> list[ProjectTask]:
    stmt = select(ProjectTask).where(
        ProjectTask.is_archived.is_(False),
        ProjectTask.status == "escalated",
    )
    if project_id is not None:
        stmt = stmt.where(ProjectTask.project_id == project_id)
    return db.session.execute(stmt.order_by(ProjectTask.escalated_at.desc())).scalars().all()
