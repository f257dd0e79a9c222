"""
Task instantiation: idempotency, parent resolution, first-task seeding and
crew auto-assignment.
"""

import pytest
from sqlalchemy import select, update

from production_hub.core.exceptions import NotFoundError
from production_hub.models import db
from production_hub.models.project import Project, ProjectTask, ProjectTaskAssignment
from production_hub.services import task_instantiation
from production_hub.services.crew_assignment import assign_role
from production_hub.services.helpers.lookups import get_project
from production_hub.services.task_instantiation import (
    compute_deadline,
    has_loaded_tasks,
    instantiate_all,
    seed_first_task,
)
from production_hub.utils.helpers import as_utc


def _tasks(project_id):
    return db.session.execute(
        select(ProjectTask)
        .where(ProjectTask.project_id == project_id)
        .order_by(ProjectTask.phase_order, ProjectTask.step_order, ProjectTask.task_order)
    ).scalars().all()


def _by_template_id(project_id):
    return {t.template_task_id: t for t in _tasks(project_id)}


class TestInstantiateAll:
    def test_creates_one_row_per_template_task(self, make_project):
        project = make_project()
        assert instantiate_all(project.id) is True

        tasks = _tasks(project.id)
        assert [t.template_task_id for t in tasks] == ["t-recce", "t-photos", "t-callsheet"]
        assert all(t.is_loaded and not t.is_custom for t in tasks)
        assert all(t.created_by == "system" for t in tasks)

        recce = tasks[0]
        assert recce.phase_name == "Pre-production"
        assert recce.step_name == "Location scouting"
        assert recce.category == "execute"
        assert recce.checklist_items == [
            {"id": "c-permits", "text": "Permits", "order": 1, "completed": False},
            {"id": "c-parking", "text": "Parking", "order": 2, "completed": False},
        ]

    def test_second_call_is_a_no_op(self, make_project):
        project = make_project()
        assert instantiate_all(project.id) is True
        assert instantiate_all(project.id) is False
        assert len(_tasks(project.id)) == 3
        assert project.task_load_version == 1

    def test_parent_reference_resolves_to_row_id(self, make_project):
        project = make_project()
        instantiate_all(project.id)
        rows = _by_template_id(project.id)
        assert rows["t-photos"].parent_task_id == rows["t-recce"].id
        assert rows["t-recce"].parent_task_id is None

    def test_child_listed_before_parent(self, make_project):
        tmpl = {"phases": [{"phase_name": "P", "phase_order": 1, "steps": [
            {"step_name": "S", "step_order": 1, "tasks": [
                {"task_id": "kid", "task_name": "Kid", "task_order": 1, "parent_task_id": "mum"},
                {"task_id": "mum", "task_name": "Mum", "task_order": 2},
            ]},
        ]}]}
        project = make_project(tmpl=tmpl)
        assert instantiate_all(project.id) is True
        rows = _by_template_id(project.id)
        assert rows["kid"].parent_task_id == rows["mum"].id
        # the only parentless task is started
        assert rows["mum"].status == "ongoing"
        assert rows["kid"].status == "pending"

    def test_empty_template_loads_nothing(self, make_project):
        project = make_project(tmpl={"roles": [], "phases": []})
        assert instantiate_all(project.id) is False
        assert _tasks(project.id) == []
        assert has_loaded_tasks(project.id) is False

    def test_archived_project_is_skipped(self, make_project):
        from production_hub.services.project_service import archive_project

        project = make_project()
        archive_project(project.id)
        assert instantiate_all(project.id) is False
        assert _tasks(project.id) == []

    def test_missing_project(self):
        with pytest.raises(NotFoundError):
            instantiate_all(999)

    def test_reload_after_all_tasks_archived(self, make_project):
        project = make_project()
        instantiate_all(project.id)
        for task in _tasks(project.id):
            task.archive("ops")
        db.session.commit()

        assert has_loaded_tasks(project.id) is False
        assert instantiate_all(project.id) is True
        active = [t for t in _tasks(project.id) if not t.is_archived]
        assert len(active) == 3
        assert project.task_load_version == 2

    def test_claim_lost_to_concurrent_loader(self, make_project, monkeypatch):
        project = make_project()
        real_check = task_instantiation.has_loaded_tasks

        def _check_then_other_worker_claims(project_id):
            loaded = real_check(project_id)
            # The in-memory row keeps the version read under the lock.
            db.session.execute(
                update(Project)
                .where(Project.id == project_id)
                .values(task_load_version=Project.task_load_version + 1)
                .execution_options(synchronize_session=False)
            )
            return loaded

        monkeypatch.setattr(task_instantiation, "has_loaded_tasks", _check_then_other_worker_claims)
        locked = get_project(project.id, lock=True)
        assert locked.task_load_version == 0

        assert task_instantiation._instantiate(locked) is False
        db.session.commit()

        assert _tasks(project.id) == []
        db.session.refresh(project)
        assert project.task_load_version == 1
        assert project.tasks_loaded_at is None


class TestSeeding:
    def test_exactly_one_task_ongoing_after_load(self, make_project):
        project = make_project()
        instantiate_all(project.id)
        tasks = _tasks(project.id)

        ongoing = [t for t in tasks if t.status == "ongoing"]
        assert len(ongoing) == 1
        first = ongoing[0]
        assert first.template_task_id == "t-recce"
        assert first.started_at is not None
        assert as_utc(first.deadline) == as_utc(compute_deadline(first.started_at, 4))
        assert all(t.started_at is None for t in tasks if t is not first)

        assert project.current_phase_order == 1
        assert project.current_step_order == 1

    def test_seed_resets_other_open_tasks(self, started_project):
        rows = _by_template_id(started_project.id)
        rows["t-callsheet"].status = "ongoing"
        db.session.commit()

        seeded = seed_first_task(started_project.id)
        assert seeded.template_task_id == "t-recce"
        rows = _by_template_id(started_project.id)
        assert rows["t-callsheet"].status == "pending"
        assert rows["t-callsheet"].started_at is None
        assert [t.status for t in _tasks(started_project.id)].count("ongoing") == 1

    def test_seed_picks_lowest_step_then_task(self, make_project):
        tmpl = {"phases": [
            {"phase_name": "Late", "phase_order": 5, "steps": [
                {"step_name": "x", "step_order": 1, "tasks": [
                    {"task_id": "late", "task_name": "Late", "task_order": 1},
                ]},
            ]},
            {"phase_name": "Early", "phase_order": 2, "steps": [
                {"step_name": "b", "step_order": 3, "tasks": [
                    {"task_id": "b1", "task_name": "B1", "task_order": 1},
                ]},
                {"step_name": "a", "step_order": 2, "tasks": [
                    {"task_id": "a2", "task_name": "A2", "task_order": 2},
                    {"task_id": "a1", "task_name": "A1", "task_order": 1, "estimated_hours": None},
                ]},
            ]},
        ]}
        project = make_project(tmpl=tmpl)
        instantiate_all(project.id)
        rows = _by_template_id(project.id)
        assert rows["a1"].status == "ongoing"
        assert rows["a1"].deadline is None
        assert project.current_phase_order == 2
        assert project.current_step_order == 2


class TestAutoAssign:
    def test_role_crew_bound_to_matching_tasks(self, started_project):
        rows = _by_template_id(started_project.id)
        assignments = db.session.execute(select(ProjectTaskAssignment)).scalars().all()
        by_task = {}
        for a in assignments:
            by_task.setdefault(a.project_task_id, []).append(a)

        assert [a.crew.name for a in by_task[rows["t-recce"].id]] == ["Ada Director"]
        assert [a.crew.name for a in by_task[rows["t-photos"].id]] == ["Bo Camera"]
        assert rows["t-callsheet"].id not in by_task
        assert all(a.assigned_by == "system" for a in assignments)

    def test_every_crew_on_the_role_is_bound(self, make_project, make_crew):
        project = make_project()
        d1, d2, dop = make_crew(), make_crew(), make_crew()
        assign_role(project.id, "director", d1.id)
        assign_role(project.id, "director", d2.id)
        assign_role(project.id, "dop", dop.id)

        recce = _by_template_id(project.id)["t-recce"]
        assert sorted(a.crew_id for a in recce.assignments) == sorted([d1.id, d2.id])
