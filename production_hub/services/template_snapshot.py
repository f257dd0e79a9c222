"""
Template Snapshot — typed, validated copy of a task template.

A project freezes its template at creation time. The snapshot is stored as
JSON on ``projects.template_snapshot``; this module is the only place that
reads or writes that JSON shape:

    {
      "template_id": "feature-std", "template_name": "Feature (standard)",
      "roles":  [{"role_id": "dop", "role_name": "DoP", "department_name": "Camera"}],
      "phases": [{
        "phase_id": "pre", "phase_name": "Pre-production", "phase_order": 1,
        "steps": [{
          "step_id": "scout", "step_name": "Location scout", "step_order": 1,
          "tasks": [{
            "task_id": "t1", "task_name": "Book van", "task_order": 1,
            "description": "...", "estimated_hours": 4, "category": "execute",
            "parent_task_id": null, "assigned_role_id": "dop",
            "checklist_items": [{"id": "c1", "text": "Insurance", "order": 1}]
          }]
        }]
      }]
    }

Validation (raised as ``ValidationError`` with every problem listed):
    - phase_order unique; step_order unique within a phase;
      task_order unique within a step; task_id unique in the snapshot
    - parent_task_id resolves inside the snapshot and parents form no cycle
    - estimated_hours is null or >= 0; category is null or a known category
    - assigned_role_id (when roles are listed) names one of them
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field

from production_hub.core.exceptions import ValidationError
from production_hub.models.project import MAX_ESTIMATED_HOURS, TASK_CATEGORIES, validate_hours


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ChecklistItem:
    id: str
    text: str
    order: int

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "order": self.order}


@dataclass(frozen=True)
class SnapshotRole:
    role_id: str
    role_name: str
    department_name: str = ""

    def to_dict(self) -> dict:
        return {
            "role_id": self.role_id,
            "role_name": self.role_name,
            "department_name": self.department_name,
        }


@dataclass(frozen=True)
class SnapshotTask:
    task_id: str
    task_name: str
    task_order: int
    description: str | None = None
    estimated_hours: float | None = None
    category: str | None = None
    parent_task_id: str | None = None
    assigned_role_id: str | None = None
    checklist_items: tuple[ChecklistItem, ...] = ()

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "task_order": self.task_order,
            "description": self.description,
            "estimated_hours": self.estimated_hours,
            "category": self.category,
            "parent_task_id": self.parent_task_id,
            "assigned_role_id": self.assigned_role_id,
            "checklist_items": [c.to_dict() for c in self.checklist_items],
        }


@dataclass(frozen=True)
class SnapshotStep:
    step_name: str
    step_order: int
    step_id: str | None = None
    tasks: tuple[SnapshotTask, ...] = ()

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "step_order": self.step_order,
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass(frozen=True)
class SnapshotPhase:
    phase_name: str
    phase_order: int
    phase_id: str | None = None
    steps: tuple[SnapshotStep, ...] = ()

    def to_dict(self) -> dict:
        return {
            "phase_id": self.phase_id,
            "phase_name": self.phase_name,
            "phase_order": self.phase_order,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class TemplateSnapshot:
    """Phases, steps and tasks sorted by their order fields."""

    template_id: str | None = None
    template_name: str | None = None
    roles: tuple[SnapshotRole, ...] = ()
    phases: tuple[SnapshotPhase, ...] = ()

    # ── Construction ─────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict | None) -> TemplateSnapshot:
        """Build and validate a snapshot from its JSON form.

        Raises:
            ValidationError: listing every structural problem found.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("Template snapshot must be an object")
        parser = _SnapshotParser()
        snapshot = parser.parse(data)
        if parser.errors:
            raise ValidationError(
                "Template snapshot is invalid",
                details={"errors": parser.errors},
            )
        return snapshot

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "roles": [r.to_dict() for r in self.roles],
            "phases": [p.to_dict() for p in self.phases],
        }

    # ── Traversal ────────────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        return not any(step.tasks for phase in self.phases for step in phase.steps)

    def walk(self):
        """Yield ``(phase, step, task)`` by phase_order, step_order, task_order."""
        for phase in self.phases:
            for step in phase.steps:
                for task in step.tasks:
                    yield phase, step, task

    def insertion_order(self) -> list[tuple[SnapshotPhase, SnapshotStep, SnapshotTask]]:
        """Walk order, re-sequenced so every parent precedes its children.

        Kahn's algorithm with the walk position as priority: among tasks whose
        parent is already placed, the earliest in walk order goes next, so
        templates that already list parents first come out unchanged.
        """
        entries = list(self.walk())
        position = {task.task_id: idx for idx, (_, _, task) in enumerate(entries)}
        children: dict[int, list[int]] = {}
        ready: list[int] = []
        for idx, (_, _, task) in enumerate(entries):
            if task.parent_task_id is None:
                ready.append(idx)
            else:
                children.setdefault(position[task.parent_task_id], []).append(idx)
        heapq.heapify(ready)

        ordered = []
        while ready:
            idx = heapq.heappop(ready)
            ordered.append(entries[idx])
            for child in children.get(idx, ()):
                heapq.heappush(ready, child)
        return ordered

    @property
    def total_tasks(self) -> int:
        return sum(1 for _ in self.walk())

    @property
    def total_estimated_hours(self) -> float:
        return sum(task.estimated_hours or 0 for _, _, task in self.walk())

    def role(self, role_id: str) -> SnapshotRole | None:
        for r in self.roles:
            if r.role_id == role_id:
                return r
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Parsing & Validation
# ═════════════════════════════════════════════════════════════════════════════


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _text(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class _SnapshotParser:
    """Collects every problem instead of stopping at the first one."""

    def __init__(self):
        self.errors: list[str] = []

    def parse(self, data: dict) -> TemplateSnapshot:
        roles = self._parse_roles(data.get("roles") or [])
        role_ids = {r.role_id for r in roles}

        raw_phases = data.get("phases") or []
        if not isinstance(raw_phases, list):
            self.errors.append("phases must be a list")
            raw_phases = []

        phases = []
        seen_phase_orders = set()
        for p_idx, raw in enumerate(raw_phases):
            where = f"phases[{p_idx}]"
            if not isinstance(raw, dict):
                self.errors.append(f"{where} must be an object")
                continue
            order = raw.get("phase_order")
            if not _is_int(order):
                self.errors.append(f"{where}.phase_order must be an integer")
                continue
            if order in seen_phase_orders:
                self.errors.append(f"{where}: duplicate phase_order {order}")
                continue
            seen_phase_orders.add(order)
            name = _text(raw.get("phase_name"))
            if not name:
                self.errors.append(f"{where}.phase_name is required")
            phases.append(SnapshotPhase(
                phase_id=_text(raw.get("phase_id")),
                phase_name=name or "",
                phase_order=order,
                steps=self._parse_steps(raw.get("steps") or [], where),
            ))
        phases.sort(key=lambda p: p.phase_order)

        snapshot = TemplateSnapshot(
            template_id=_text(data.get("template_id")),
            template_name=_text(data.get("template_name")),
            roles=tuple(roles),
            phases=tuple(phases),
        )
        self._check_task_references(snapshot, role_ids)
        return snapshot

    def _parse_roles(self, raw_roles) -> list[SnapshotRole]:
        if not isinstance(raw_roles, list):
            self.errors.append("roles must be a list")
            return []
        roles = []
        seen = set()
        for idx, raw in enumerate(raw_roles):
            where = f"roles[{idx}]"
            if not isinstance(raw, dict):
                self.errors.append(f"{where} must be an object")
                continue
            role_id = _text(raw.get("role_id"))
            role_name = _text(raw.get("role_name"))
            if not role_id or not role_name:
                self.errors.append(f"{where}: role_id and role_name are required")
                continue
            if role_id in seen:
                self.errors.append(f"{where}: duplicate role_id {role_id!r}")
                continue
            seen.add(role_id)
            roles.append(SnapshotRole(
                role_id=role_id,
                role_name=role_name,
                department_name=_text(raw.get("department_name")) or "",
            ))
        return roles

    def _parse_steps(self, raw_steps, parent_where) -> tuple[SnapshotStep, ...]:
        if not isinstance(raw_steps, list):
            self.errors.append(f"{parent_where}.steps must be a list")
            return ()
        steps = []
        seen_orders = set()
        for s_idx, raw in enumerate(raw_steps):
            where = f"{parent_where}.steps[{s_idx}]"
            if not isinstance(raw, dict):
                self.errors.append(f"{where} must be an object")
                continue
            order = raw.get("step_order")
            if not _is_int(order):
                self.errors.append(f"{where}.step_order must be an integer")
                continue
            if order in seen_orders:
                self.errors.append(f"{where}: duplicate step_order {order}")
                continue
            seen_orders.add(order)
            name = _text(raw.get("step_name"))
            if not name:
                self.errors.append(f"{where}.step_name is required")
            steps.append(SnapshotStep(
                step_id=_text(raw.get("step_id")),
                step_name=name or "",
                step_order=order,
                tasks=self._parse_tasks(raw.get("tasks") or [], where),
            ))
        steps.sort(key=lambda s: s.step_order)
        return tuple(steps)

    def _parse_tasks(self, raw_tasks, parent_where) -> tuple[SnapshotTask, ...]:
        if not isinstance(raw_tasks, list):
            self.errors.append(f"{parent_where}.tasks must be a list")
            return ()
        tasks = []
        seen_orders = set()
        for t_idx, raw in enumerate(raw_tasks):
            where = f"{parent_where}.tasks[{t_idx}]"
            if not isinstance(raw, dict):
                self.errors.append(f"{where} must be an object")
                continue
            task_id = _text(raw.get("task_id"))
            name = _text(raw.get("task_name"))
            order = raw.get("task_order")
            if not task_id:
                self.errors.append(f"{where}.task_id is required")
                continue
            if not name:
                self.errors.append(f"{where}.task_name is required")
            if not _is_int(order):
                self.errors.append(f"{where}.task_order must be an integer")
                continue
            if order in seen_orders:
                self.errors.append(f"{where}: duplicate task_order {order}")
                continue
            seen_orders.add(order)

            hours = raw.get("estimated_hours")
            if hours is not None:
                if not validate_hours(hours):
                    self.errors.append(
                        f"{where}.estimated_hours must be a number between 0 and {MAX_ESTIMATED_HOURS}"
                    )
                    hours = None
                else:
                    hours = float(hours)

            description = raw.get("description")
            if description is not None and not isinstance(description, str):
                self.errors.append(f"{where}.description must be a string")
                description = None

            category = _text(raw.get("category"))
            if category is not None and category not in TASK_CATEGORIES:
                self.errors.append(
                    f"{where}.category must be one of {sorted(TASK_CATEGORIES)}"
                )
                category = None

            tasks.append(SnapshotTask(
                task_id=task_id,
                task_name=name or "",
                task_order=order,
                description=_text(description),
                estimated_hours=hours,
                category=category,
                parent_task_id=_text(raw.get("parent_task_id")),
                assigned_role_id=_text(raw.get("assigned_role_id")),
                checklist_items=self._parse_checklist(
                    raw.get("checklist_items") or [], where, task_id,
                ),
            ))
        tasks.sort(key=lambda t: t.task_order)
        return tuple(tasks)

    def _parse_checklist(self, raw_items, parent_where, task_id) -> tuple[ChecklistItem, ...]:
        if not isinstance(raw_items, list):
            self.errors.append(f"{parent_where}.checklist_items must be a list")
            return ()
        items = []
        for idx, raw in enumerate(raw_items):
            if isinstance(raw, str):
                raw = {"text": raw}
            if not isinstance(raw, dict) or not _text(raw.get("text")):
                self.errors.append(f"{parent_where}.checklist_items[{idx}].text is required")
                continue
            order = raw.get("order")
            items.append(ChecklistItem(
                id=_text(raw.get("id")) or f"{task_id}-{idx + 1}",
                text=_text(raw.get("text")),
                order=order if _is_int(order) else idx + 1,
            ))
        items.sort(key=lambda c: c.order)
        return tuple(items)

    def _check_task_references(self, snapshot: TemplateSnapshot, role_ids: set[str]) -> None:
        parents: dict[str, str | None] = {}
        for _, _, task in snapshot.walk():
            if task.task_id in parents:
                self.errors.append(f"duplicate task_id {task.task_id!r}")
                continue
            parents[task.task_id] = task.parent_task_id

        for task_id, parent_id in parents.items():
            if parent_id is not None and parent_id not in parents:
                self.errors.append(
                    f"task {task_id!r}: parent_task_id {parent_id!r} is not in the template"
                )

        if role_ids:
            for _, _, task in snapshot.walk():
                if task.assigned_role_id and task.assigned_role_id not in role_ids:
                    self.errors.append(
                        f"task {task.task_id!r}: assigned_role_id "
                        f"{task.assigned_role_id!r} is not a template role"
                    )

        if not self.errors:
            cycle = _find_parent_cycle(parents)
            if cycle:
                self.errors.append(f"parent cycle: {' -> '.join(cycle)}")


def _find_parent_cycle(parents: dict[str, str | None]) -> list[str] | None:
    """Return the task ids of a parent cycle, or None when the graph is a forest.

    Iterative walk up each parent chain; ``done`` marks chains already proven
    to terminate.
    """
    done: set[str] = set()
    for start in parents:
        path: list[str] = []
        on_path: set[str] = set()
        current = start
        while current is not None and current not in done:
            if current in on_path:
                return path[path.index(current):] + [current]
            on_path.add(current)
            path.append(current)
            current = parents.get(current)
        done.update(path)
    return None
