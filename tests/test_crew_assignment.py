"""
Crew assignment gate: role binding, fill flags and the start predicate.
"""

import pytest
from sqlalchemy import func, insert, select

from production_hub.core.exceptions import NotFoundError
from production_hub.models import db
from production_hub.models.project import ProjectCrewAssignment, ProjectRole, ProjectTask
from production_hub.services.crew_assignment import (
    assign_role,
    can_project_start,
    list_crew_assignments,
    list_project_roles,
    remove_crew_from_role,
)


def _loaded_count(project_id):
    return db.session.execute(
        select(func.count(ProjectTask.id)).where(
            ProjectTask.project_id == project_id,
            ProjectTask.is_loaded.is_(True),
        )
    ).scalar()


def _role(project_id, role_id):
    return db.session.execute(
        select(ProjectRole).where(
            ProjectRole.project_id == project_id,
            ProjectRole.role_id == role_id,
        )
    ).scalar_one()


class TestGate:
    def test_new_project_has_unfilled_roles(self, make_project):
        project = make_project()
        roles = list_project_roles(project.id)
        assert {r.role_id for r in roles} == {"director", "dop"}
        assert not any(r.is_filled for r in roles)
        assert can_project_start(project.id) is False

    def test_tasks_load_only_when_last_role_filled(self, make_project, make_crew):
        project = make_project()
        director, dop = make_crew(), make_crew()

        assert assign_role(project.id, "director", director.id) is True
        assert _role(project.id, "director").is_filled is True
        assert can_project_start(project.id) is False
        assert _loaded_count(project.id) == 0

        assert assign_role(project.id, "dop", dop.id) is True
        assert can_project_start(project.id) is True
        assert _loaded_count(project.id) == 3
        assert project.status == "active"

    def test_template_without_roles_can_start(self, make_project):
        project = make_project(tmpl={"phases": []})
        assert can_project_start(project.id) is True

    def test_can_start_missing_project(self):
        with pytest.raises(NotFoundError):
            can_project_start(404)


class TestAssignRole:
    def test_duplicate_assignment_is_absorbed(self, make_project, make_crew):
        project = make_project()
        crew = make_crew()
        assign_role(project.id, "director", crew.id)
        assert assign_role(project.id, "director", crew.id) is True

        assert len(list_crew_assignments(project.id)) == 1

    def test_duplicate_after_start_loads_nothing_new(self, started_project):
        crew_id = list_crew_assignments(started_project.id)[0].crew_id
        assign_role(started_project.id, "director", crew_id)
        assert _loaded_count(started_project.id) == 3

    def test_unknown_role(self, make_project, make_crew):
        project = make_project()
        crew = make_crew()
        with pytest.raises(NotFoundError):
            assign_role(project.id, "gaffer", crew.id)

    def test_unknown_crew(self, make_project):
        project = make_project()
        with pytest.raises(NotFoundError):
            assign_role(project.id, "director", 999)

    def test_archived_crew_is_not_found(self, make_project, make_crew):
        project = make_project()
        crew = make_crew()
        crew.archive("hr")
        db.session.commit()
        with pytest.raises(NotFoundError):
            assign_role(project.id, "director", crew.id)

    def test_missing_project(self, make_crew):
        crew = make_crew()
        with pytest.raises(NotFoundError):
            assign_role(12345, "director", crew.id)

    def test_records_assigned_by(self, make_project, make_crew):
        project = make_project()
        crew = make_crew()
        assign_role(project.id, "director", crew.id, assigned_by="coordinator")
        binding = db.session.execute(select(ProjectCrewAssignment)).scalar_one()
        assert binding.assigned_by == "coordinator"

    def test_racing_duplicate_insert_is_absorbed(self, make_project, make_crew, monkeypatch):
        project = make_project()
        crew = make_crew()
        director = _role(project.id, "director")
        real_execute = db.session.execute
        raced = []

        class _NoBinding:
            def scalar_one_or_none(self):
                return None

        def _execute(stmt, *args, **kwargs):
            descriptions = getattr(stmt, "column_descriptions", None) or []
            if not raced and descriptions and descriptions[0].get("entity") is ProjectCrewAssignment:
                raced.append(stmt)
                real_execute(stmt, *args, **kwargs).scalar_one_or_none()
                # Another request inserts the same binding after the lookup.
                real_execute(insert(ProjectCrewAssignment).values(
                    project_id=project.id,
                    project_role_id=director.id,
                    crew_id=crew.id,
                    assigned_by="other-request",
                ))
                return _NoBinding()
            return real_execute(stmt, *args, **kwargs)

        monkeypatch.setattr(db.session, "execute", _execute)
        assert assign_role(project.id, "director", crew.id, assigned_by="coordinator") is True
        monkeypatch.undo()

        assert raced
        bindings = list_crew_assignments(project.id)
        assert [b.assigned_by for b in bindings] == ["other-request"]
        assert _role(project.id, "director").is_filled is True


class TestRemoveCrew:
    def test_last_crew_removed_resets_fill_flag(self, make_project, make_crew):
        project = make_project()
        crew = make_crew()
        assign_role(project.id, "director", crew.id)
        binding = list_crew_assignments(project.id)[0]

        role = remove_crew_from_role(binding.id)
        assert role.is_filled is False
        assert list_crew_assignments(project.id) == []

    def test_remaining_crew_keeps_role_filled(self, make_project, make_crew):
        project = make_project()
        a, b = make_crew(), make_crew()
        assign_role(project.id, "director", a.id)
        assign_role(project.id, "director", b.id)
        first = list_crew_assignments(project.id)[0]

        role = remove_crew_from_role(first.id)
        assert role.is_filled is True

    def test_loaded_tasks_survive_unassignment(self, started_project):
        binding = list_crew_assignments(started_project.id)[0]
        remove_crew_from_role(binding.id)
        assert _loaded_count(started_project.id) == 3
        assert can_project_start(started_project.id) is False

    def test_missing_binding(self):
        with pytest.raises(NotFoundError):
            remove_crew_from_role(77)
