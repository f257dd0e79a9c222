"""
Production Hub
Project workflow domain models.

Models:
    - Project:                 a production created from a template snapshot
    - ProjectRole:             one required template role per project (fill flag)
    - ProjectCrewAssignment:   crew member bound to a project role
    - ProjectTask:             instantiated (or custom) task with status lifecycle
    - ProjectTaskAssignment:   crew member bound to a project task through a role

Architecture:
    Project ──1:N──▶ ProjectRole ──1:N──▶ ProjectCrewAssignment ◀──N:1── CrewMember
    Project ──1:N──▶ ProjectTask ──1:N──▶ ProjectTaskAssignment ◀──N:1── CrewMember
    ProjectTask ──N:1──▶ ProjectTask  (parent_task_id, same project)

Lifecycle states:
    Project:      active → completed → active (on reopen)  |  * → archived
    ProjectTask:  pending → ongoing → completed
                  pending | ongoing → escalated → ongoing | completed
                  completed → ongoing (reopen)
"""

from datetime import datetime, timezone

from production_hub.models import db
from production_hub.models.archive import ArchivableMixin
from production_hub.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"active", "completed", "archived"}

TASK_STATUSES = {"pending", "ongoing", "completed", "escalated"}

TASK_CATEGORIES = {"monitor", "coordinate", "execute"}

# Upper bound keeps started_at + estimated_hours inside the datetime range.
MAX_ESTIMATED_HOURS = 100_000


def validate_hours(value):
    """Return True if value is a number of hours in [0, MAX_ESTIMATED_HOURS].

    NaN and infinities fail the range comparison.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= MAX_ESTIMATED_HOURS


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

TASK_TRANSITIONS = {
    "pending":   ["ongoing", "escalated"],
    "ongoing":   ["completed", "escalated"],
    "escalated": ["ongoing", "completed"],
    "completed": ["ongoing"],              # reopen
}


def validate_task_transition(old_status, new_status):
    """Return True if ProjectTask status transition is valid."""
    return new_status in TASK_TRANSITIONS.get(old_status, [])


def _iso(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        value = as_utc(value)
    return value.isoformat()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(ArchivableMixin, db.Model):
    """
    A production instantiated from a template.

    The template structure is frozen into ``template_snapshot`` at creation
    and never rewritten; tasks are materialised from it once every required
    role has crew.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    image_url = db.Column(db.String(500), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | completed | archived",
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)

    template_id = db.Column(
        db.String(64), nullable=True,
        comment="Source template key in the template catalogue",
    )
    template_snapshot = db.Column(
        db.JSON, nullable=False,
        comment="Phases → steps → tasks copied from the template at creation",
    )
    current_phase_order = db.Column(
        db.Integer, nullable=True,
        comment="Advisory pointer to the phase of the seeded task",
    )
    current_step_order = db.Column(db.Integer, nullable=True)
    task_load_version = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Bumped by the compare-and-set instantiation claim",
    )
    tasks_loaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(100), nullable=True)
    updated_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active','completed','archived')",
            name="ck_project_status",
        ),
        db.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_project_dates",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    roles = db.relationship(
        "ProjectRole", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProjectRole.id",
    )
    crew_assignments = db.relationship(
        "ProjectCrewAssignment", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    tasks = db.relationship(
        "ProjectTask", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def snapshot(self):
        """Typed view of ``template_snapshot``."""
        from production_hub.services.template_snapshot import TemplateSnapshot
        return TemplateSnapshot.from_dict(self.template_snapshot)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "status": self.status,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "template_id": self.template_id,
            "current_phase_order": self.current_phase_order,
            "current_step_order": self.current_step_order,
            "tasks_loaded_at": _iso(self.tasks_loaded_at),
            "is_archived": self.is_archived,
            "archived_at": _iso(self.archived_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProjectRole
# ═════════════════════════════════════════════════════════════════════════════


class ProjectRole(db.Model):
    """Template role required by a project. ``is_filled`` only moves to True
    through crew assignment; the explicit unassignment flow resets it."""

    __tablename__ = "project_roles"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role_id = db.Column(
        db.String(64), nullable=False,
        comment="Template role key",
    )
    role_name = db.Column(db.String(200), nullable=False)
    department_name = db.Column(db.String(200), default="")
    is_filled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "role_id", name="uq_project_roles_project_role"),
    )

    crew_assignments = db.relationship(
        "ProjectCrewAssignment", backref="role", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_crew=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "role_id": self.role_id,
            "role_name": self.role_name,
            "department_name": self.department_name,
            "is_filled": self.is_filled,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_crew:
            result["crew"] = [a.to_dict() for a in self.crew_assignments]
        return result

    def __repr__(self):
        return f"<ProjectRole {self.id}: {self.role_name} filled={self.is_filled}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ProjectCrewAssignment
# ═════════════════════════════════════════════════════════════════════════════


class ProjectCrewAssignment(db.Model):
    """Crew member bound to a project role."""

    __tablename__ = "project_crew_assignments"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_role_id = db.Column(
        db.Integer, db.ForeignKey("project_roles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    crew_id = db.Column(
        db.Integer, db.ForeignKey("crew_members.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    assigned_by = db.Column(db.String(100), nullable=True)
    assigned_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "project_role_id", "crew_id",
            name="uq_project_crew_assignment",
        ),
    )

    crew = db.relationship("CrewMember")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_role_id": self.project_role_id,
            "crew_id": self.crew_id,
            "crew_name": self.crew.name if self.crew else None,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
        }

    def __repr__(self):
        return f"<ProjectCrewAssignment {self.id}: role={self.project_role_id} crew={self.crew_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. ProjectTask
# ═════════════════════════════════════════════════════════════════════════════


class ProjectTask(ArchivableMixin, db.Model):
    """
    Instantiated copy of a template task (or a custom task added later).
    Phase/step names and orders are denormalised from the snapshot.
    """

    __tablename__ = "project_tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    template_task_id = db.Column(
        db.String(64), nullable=True,
        comment="Task key inside the template snapshot; NULL for custom tasks",
    )
    task_name = db.Column(db.String(300), nullable=False)
    task_description = db.Column(db.Text, nullable=True)

    phase_name = db.Column(db.String(200), nullable=False)
    phase_order = db.Column(db.Integer, nullable=False)
    step_name = db.Column(db.String(200), nullable=False)
    step_order = db.Column(db.Integer, nullable=False)
    task_order = db.Column(db.Integer, nullable=False)

    estimated_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, nullable=True)
    parent_task_id = db.Column(
        db.Integer, db.ForeignKey("project_tasks.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | ongoing | completed | escalated",
    )
    category = db.Column(
        db.String(20), nullable=True,
        comment="monitor | coordinate | execute",
    )
    checklist_items = db.Column(
        db.JSON, nullable=False, default=list,
        comment="[{id, text, order, completed}]",
    )

    escalation_reason = db.Column(db.Text, nullable=True)
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_manually_escalated = db.Column(db.Boolean, nullable=False, default=False)

    file_attachments = db.Column(db.JSON, nullable=False, default=list)
    comments = db.Column(db.JSON, nullable=False, default=list)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="started_at + estimated_hours",
    )

    is_loaded = db.Column(db.Boolean, nullable=False, default=False, index=True)
    is_custom = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(100), nullable=True)
    updated_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','ongoing','completed','escalated')",
            name="ck_project_task_status",
        ),
        db.CheckConstraint(
            "category IS NULL OR category IN ('monitor','coordinate','execute')",
            name="ck_project_task_category",
        ),
        db.CheckConstraint(
            "completed_at IS NULL OR started_at IS NOT NULL",
            name="ck_project_task_completed_started",
        ),
        db.Index(
            "uq_project_task_position",
            "project_id", "phase_order", "step_order", "task_order",
            unique=True,
            postgresql_where=db.text("is_archived IS FALSE"),
            sqlite_where=db.text("is_archived = 0"),
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    parent = db.relationship("ProjectTask", remote_side=[id])
    assignments = db.relationship(
        "ProjectTaskAssignment", backref="task", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProjectTaskAssignment.id",
    )

    def to_dict(self, include_assignments=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "template_task_id": self.template_task_id,
            "task_name": self.task_name,
            "task_description": self.task_description,
            "phase_name": self.phase_name,
            "phase_order": self.phase_order,
            "step_name": self.step_name,
            "step_order": self.step_order,
            "task_order": self.task_order,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "parent_task_id": self.parent_task_id,
            "status": self.status,
            "category": self.category,
            "checklist_items": list(self.checklist_items or []),
            "escalation_reason": self.escalation_reason,
            "escalated_at": _iso(self.escalated_at),
            "is_manually_escalated": self.is_manually_escalated,
            "file_attachments": list(self.file_attachments or []),
            "comments": list(self.comments or []),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "deadline": _iso(self.deadline),
            "is_loaded": self.is_loaded,
            "is_custom": self.is_custom,
            "is_archived": self.is_archived,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_assignments:
            result["assigned_crew"] = [a.to_dict() for a in self.assignments]
        return result

    def __repr__(self):
        return (
            f"<ProjectTask {self.id}: P{self.phase_order}.S{self.step_order}"
            f".T{self.task_order} {self.task_name[:40]} [{self.status}]>"
        )


# ═════════════════════════════════════════════════════════════════════════════
# 5. ProjectTaskAssignment
# ═════════════════════════════════════════════════════════════════════════════


class ProjectTaskAssignment(db.Model):
    """Crew member bound to a task, through one of the project's roles."""

    __tablename__ = "project_task_assignments"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
        comment="Denormalised from the task for project-scoped change feeds",
    )
    project_task_id = db.Column(
        db.Integer, db.ForeignKey("project_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_role_id = db.Column(
        db.Integer, db.ForeignKey("project_roles.id", ondelete="CASCADE"),
        nullable=False,
    )
    crew_id = db.Column(
        db.Integer, db.ForeignKey("crew_members.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    assigned_by = db.Column(db.String(100), nullable=True)
    assigned_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "project_task_id", "project_role_id", "crew_id",
            name="uq_project_task_assignment",
        ),
    )

    crew = db.relationship("CrewMember")
    role = db.relationship("ProjectRole")

    def to_dict(self):
        return {
            "id": self.id,
            "project_task_id": self.project_task_id,
            "project_role_id": self.project_role_id,
            "role_name": self.role.role_name if self.role else None,
            "crew_id": self.crew_id,
            "crew_name": self.crew.name if self.crew else None,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
        }

    def __repr__(self):
        return f"<ProjectTaskAssignment {self.id}: task={self.project_task_id} crew={self.crew_id}>"
