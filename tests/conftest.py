"""
Shared pytest fixtures for the Production Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - template: Two-phase template payload with two roles
    - make_project / make_crew: factories going through the service layer
"""

import copy

import pytest

from production_hub import create_app
from production_hub.models import db as _db
from production_hub.services.change_feed import change_feed


TEMPLATE = {
    "template_id": "feature-std",
    "template_name": "Feature (standard)",
    "roles": [
        {"role_id": "director", "role_name": "Director", "department_name": "Direction"},
        {"role_id": "dop", "role_name": "Director of Photography", "department_name": "Camera"},
    ],
    "phases": [
        {
            "phase_id": "pre",
            "phase_name": "Pre-production",
            "phase_order": 1,
            "steps": [
                {
                    "step_id": "scout",
                    "step_name": "Location scouting",
                    "step_order": 1,
                    "tasks": [
                        {
                            "task_id": "t-recce",
                            "task_name": "Location recce",
                            "task_order": 1,
                            "estimated_hours": 4,
                            "category": "execute",
                            "assigned_role_id": "director",
                            "checklist_items": [
                                {"id": "c-permits", "text": "Permits", "order": 1},
                                {"id": "c-parking", "text": "Parking", "order": 2},
                            ],
                        },
                        {
                            "task_id": "t-photos",
                            "task_name": "Reference photos",
                            "task_order": 2,
                            "estimated_hours": 2,
                            "category": "monitor",
                            "parent_task_id": "t-recce",
                            "assigned_role_id": "dop",
                        },
                    ],
                },
            ],
        },
        {
            "phase_id": "shoot",
            "phase_name": "Principal photography",
            "phase_order": 2,
            "steps": [
                {
                    "step_id": "day1",
                    "step_name": "Shoot day 1",
                    "step_order": 1,
                    "tasks": [
                        {
                            "task_id": "t-callsheet",
                            "task_name": "Call sheet",
                            "task_order": 1,
                            "estimated_hours": 1,
                            "category": "coordinate",
                        },
                    ],
                },
            ],
        },
    ],
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        change_feed.clear()
        yield
        change_feed.clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def template():
    """A fresh deep copy of the two-phase template payload."""
    return copy.deepcopy(TEMPLATE)


@pytest.fixture()
def make_crew():
    """Factory: create a CrewMember through the crew service."""
    from production_hub.services.crew_service import create_crew_member

    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        return create_crew_member({
            "name": name or f"Crew {n}",
            "email": f"crew{n}@studio.test",
        })

    return _make


@pytest.fixture()
def make_project(template):
    """Factory: create a Project through the project service."""
    from production_hub.services.project_service import create_project

    def _make(name="Night Train", tmpl=None, **extra):
        data = {
            "name": name,
            "start_date": "2026-11-02",
            "template": template if tmpl is None else tmpl,
        }
        data.update(extra)
        return create_project(data, created_by="producer@studio.test")

    return _make


@pytest.fixture()
def started_project(make_project, make_crew):
    """A project whose two roles are filled, so its tasks are loaded."""
    from production_hub.services.crew_assignment import assign_role

    project = make_project()
    director = make_crew("Ada Director")
    dop = make_crew("Bo Camera")
    assign_role(project.id, "director", director.id)
    assign_role(project.id, "dop", dop.id)
    return project
