"""
Auto progression: the gate-open trigger and the ready-project sweep.
"""

from sqlalchemy import func, select

from production_hub.models import db
from production_hub.models.project import ProjectRole, ProjectTask
from production_hub.services.auto_progression import start_ready_projects, try_auto_start
from production_hub.services.project_service import archive_project


def _loaded(project_id):
    return db.session.execute(
        select(func.count(ProjectTask.id)).where(
            ProjectTask.project_id == project_id,
            ProjectTask.is_loaded.is_(True),
        )
    ).scalar()


def _fill_roles_directly(project_id):
    """Flip every fill flag without going through assign_role (no trigger)."""
    for role in db.session.execute(
        select(ProjectRole).where(ProjectRole.project_id == project_id)
    ).scalars():
        role.is_filled = True
    db.session.commit()


class TestTryAutoStart:
    def test_unfilled_roles(self, make_project):
        project = make_project()
        assert try_auto_start(project.id) is False
        assert _loaded(project.id) == 0

    def test_starts_exactly_once(self, make_project):
        project = make_project()
        _fill_roles_directly(project.id)

        assert try_auto_start(project.id) is True
        assert try_auto_start(project.id) is False
        assert _loaded(project.id) == 3

    def test_zero_role_template_starts_on_explicit_call(self, make_project, template):
        template["roles"] = []
        for phase in template["phases"]:
            for step in phase["steps"]:
                for task in step["tasks"]:
                    task.pop("assigned_role_id", None)
        project = make_project(tmpl=template)
        assert _loaded(project.id) == 0
        assert try_auto_start(project.id) is True
        assert _loaded(project.id) == 3

    def test_missing_project(self):
        assert try_auto_start(4040) is False

    def test_archived_project(self, make_project):
        project = make_project()
        _fill_roles_directly(project.id)
        archive_project(project.id)
        assert try_auto_start(project.id) is False
        assert _loaded(project.id) == 0

    def test_reactivates_project(self, make_project):
        project = make_project()
        project.status = "completed"
        db.session.commit()
        _fill_roles_directly(project.id)

        assert try_auto_start(project.id) is True
        assert project.status == "active"


class TestStartReadyProjects:
    def test_sweep_starts_only_ready_projects(self, make_project):
        ready = make_project("Ready")
        waiting = make_project("Waiting")
        already = make_project("Already")
        _fill_roles_directly(ready.id)
        _fill_roles_directly(already.id)
        try_auto_start(already.id)

        results = start_ready_projects()

        assert [r["project_id"] for r in results] == [ready.id]
        assert results[0] == {
            "project_id": ready.id,
            "project_name": "Ready",
            "action_taken": "tasks_loaded",
            "success": True,
        }
        assert _loaded(ready.id) == 3
        assert _loaded(waiting.id) == 0

    def test_empty_template_reported_as_skipped(self, make_project):
        project = make_project(tmpl={"phases": []})
        results = start_ready_projects()
        assert results == [{
            "project_id": project.id,
            "project_name": "Night Train",
            "action_taken": "skipped",
            "success": False,
        }]

    def test_cli_command(self, app, make_project):
        project = make_project()
        _fill_roles_directly(project.id)

        result = app.test_cli_runner().invoke(args=["start-ready-projects"])
        assert result.exit_code == 0
        assert "tasks_loaded" in result.output
        assert _loaded(project.id) == 3
