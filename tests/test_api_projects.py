"""
HTTP surface: projects, roles, crew, tasks and their error mapping.
"""

import pytest

BASE = "/api/v1"


def _create_crew(client, name, email):
    res = client.post(f"{BASE}/crew", json={"name": name, "email": email})
    assert res.status_code == 201
    return res.get_json()


def _create_project(client, template, **extra):
    body = {"name": "Harbour Lights", "start_date": "2026-11-02", "template": template}
    body.update(extra)
    return client.post(f"{BASE}/projects", json=body, headers={"X-Actor": "producer"})


def _start(client, template):
    project = _create_project(client, template).get_json()
    ada = _create_crew(client, "Ada", "ada@studio.test")
    bo = _create_crew(client, "Bo", "bo@studio.test")
    client.post(f"{BASE}/projects/{project['id']}/roles/director/assign", json={"crew_id": ada["id"]})
    res = client.post(f"{BASE}/projects/{project['id']}/roles/dop/assign", json={"crew_id": bo["id"]})
    assert res.status_code == 200
    return res.get_json()["project"]


class TestHealth:
    def test_health(self, client):
        res = client.get(f"{BASE}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_unknown_route(self, client):
        assert client.get(f"{BASE}/nowhere").status_code == 404


class TestProjects:
    def test_create_returns_stats(self, client, template):
        res = _create_project(client, template)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "active"
        assert data["created_by"] == "producer"
        assert data["total_tasks"] == 3
        assert data["total_estimated_hours"] == 7
        assert data["loaded_tasks"] == 0
        assert data["unfilled_roles"] == 2
        assert data["completion_percentage"] == 0

    def test_create_missing_fields(self, client):
        res = client.post(f"{BASE}/projects", json={"name": "No date"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_invalid_template(self, client, template):
        template["phases"][0]["steps"][0]["tasks"][1]["parent_task_id"] = "ghost"
        res = _create_project(client, template)
        assert res.status_code == 422
        assert res.get_json()["details"]["errors"]

    def test_end_before_start(self, client, template):
        res = _create_project(client, template, end_date="2026-10-01")
        assert res.status_code == 422
        assert "end_date" in res.get_json()["details"]

    def test_get_missing(self, client):
        res = client.get(f"{BASE}/projects/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_archive_hides_project(self, client, template):
        project = _create_project(client, template).get_json()
        res = client.post(f"{BASE}/projects/{project['id']}/archive")
        assert res.status_code == 200
        assert res.get_json()["status"] == "archived"

        assert client.get(f"{BASE}/projects/{project['id']}").status_code == 404
        listed = client.get(f"{BASE}/projects").get_json()
        assert listed["total"] == 0
        listed = client.get(f"{BASE}/projects?include_archived=true").get_json()
        assert listed["total"] == 1


class TestCrewGate:
    def test_roles_and_can_start(self, client, template):
        project = _create_project(client, template).get_json()
        res = client.get(f"{BASE}/projects/{project['id']}/roles")
        assert res.status_code == 200
        assert res.get_json()["total"] == 2
        assert res.get_json()["can_start"] is False

        res = client.get(f"{BASE}/projects/{project['id']}/can-start")
        assert res.get_json() == {"project_id": project["id"], "can_start": False}

    def test_filling_all_roles_loads_tasks(self, client, template):
        stats = _start(client, template)
        assert stats["loaded_tasks"] == 3
        assert stats["ongoing_tasks"] == 1
        assert stats["filled_roles"] == 2

    def test_assign_requires_integer_crew_id(self, client, template):
        project = _create_project(client, template).get_json()
        res = client.post(f"{BASE}/projects/{project['id']}/roles/director/assign", json={"crew_id": "1"})
        assert res.status_code == 400

    def test_assign_unknown_role(self, client, template):
        project = _create_project(client, template).get_json()
        crew = _create_crew(client, "Ada", "ada@studio.test")
        res = client.post(f"{BASE}/projects/{project['id']}/roles/gaffer/assign", json={"crew_id": crew["id"]})
        assert res.status_code == 404

    def test_remove_crew_assignment(self, client, template):
        project = _create_project(client, template).get_json()
        crew = _create_crew(client, "Ada", "ada@studio.test")
        client.post(f"{BASE}/projects/{project['id']}/roles/director/assign", json={"crew_id": crew["id"]})
        roles = client.get(f"{BASE}/projects/{project['id']}/roles").get_json()["items"]
        director = next(r for r in roles if r["role_id"] == "director")
        assignment_id = director["crew"][0]["id"]

        res = client.delete(f"{BASE}/projects/crew-assignments/{assignment_id}")
        assert res.status_code == 200
        assert res.get_json()["role"]["is_filled"] is False

    def test_explicit_engine_endpoints(self, client, template):
        project = _create_project(client, template).get_json()
        pid = project["id"]
        assert client.post(f"{BASE}/projects/{pid}/auto-start").get_json()["started"] is False
        assert client.post(f"{BASE}/projects/{pid}/instantiate").get_json()["loaded"] is True
        assert client.post(f"{BASE}/projects/{pid}/instantiate").get_json()["loaded"] is False
        seeded = client.post(f"{BASE}/projects/{pid}/seed").get_json()["task"]
        assert seeded["template_task_id"] == "t-recce"


class TestCrew:
    def test_duplicate_email(self, client):
        _create_crew(client, "Ada", "ada@studio.test")
        res = client.post(f"{BASE}/crew", json={"name": "Ada 2", "email": "ADA@studio.test"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_list(self, client):
        _create_crew(client, "Ada", "ada@studio.test")
        assert client.get(f"{BASE}/crew").get_json()["total"] == 1


class TestTasks:
    def test_list_and_detail(self, client, template):
        stats = _start(client, template)
        res = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing")
        items = res.get_json()["items"]
        assert [t["template_task_id"] for t in items] == ["t-recce"]

        detail = client.get(f"{BASE}/tasks/{items[0]['id']}").get_json()
        assert [a["crew_name"] for a in detail["assigned_crew"]] == ["Ada"]

    def test_transition_flow(self, client, template):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]

        res = client.post(f"{BASE}/tasks/{recce['id']}/transition",
                          json={"status": "escalated", "reason": "Permit refused"})
        assert res.status_code == 200
        escalated = client.get(f"{BASE}/projects/{stats['id']}/tasks/escalated").get_json()
        assert escalated["total"] == 1

    def test_checklist_comments_attachments(self, client, template):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]
        tid = recce["id"]

        res = client.put(f"{BASE}/tasks/{tid}/checklist/c-permits", json={"completed": True})
        assert res.status_code == 200
        assert res.get_json()["checklist_items"][0]["completed"] is True
        assert client.put(f"{BASE}/tasks/{tid}/checklist/c-permits", json={}).status_code == 400

        comment = client.post(f"{BASE}/tasks/{tid}/comments", json={"text": "Bring hi-vis"},
                              headers={"X-Actor": "ada"}).get_json()
        assert comment["author"] == "ada"
        assert client.delete(f"{BASE}/tasks/{tid}/comments/{comment['id']}").status_code == 200
        assert client.delete(f"{BASE}/tasks/{tid}/comments/{comment['id']}").status_code == 404

        att = client.post(f"{BASE}/tasks/{tid}/attachments",
                          json={"file_url": "https://files.test/map.png", "file_name": "map.png"})
        assert att.status_code == 201
        res = client.delete(f"{BASE}/tasks/{tid}/attachments/{att.get_json()['id']}")
        assert res.get_json()["attachment"]["file_name"] == "map.png"

    def test_last_assignee_is_409(self, client, template):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing&include_assignments=1")
        task = recce.get_json()["items"][0]
        crew_id = task["assigned_crew"][0]["crew_id"]

        res = client.delete(f"{BASE}/tasks/{task['id']}/assignees/{crew_id}")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_LAST_ASSIGNEE"

    def test_custom_task(self, client, template):
        stats = _start(client, template)
        res = client.post(f"{BASE}/projects/{stats['id']}/tasks", json={"task_name": "Wrap party"})
        assert res.status_code == 201
        assert res.get_json()["is_custom"] is True

        res = client.get(f"{BASE}/projects/{stats['id']}/tasks?is_custom=true")
        assert res.get_json()["total"] == 1

    def test_custom_task_before_load_is_422(self, client, template):
        project = _create_project(client, template).get_json()
        res = client.post(f"{BASE}/projects/{project['id']}/tasks", json={"task_name": "Early"})
        assert res.status_code == 422


class TestInputTypes:
    @pytest.mark.parametrize("hours", [1e10, float("nan"), float("inf")])
    def test_out_of_range_estimate_rejected_at_create(self, client, template, hours):
        template["phases"][0]["steps"][0]["tasks"][0]["estimated_hours"] = hours
        res = _create_project(client, template)
        assert res.status_code == 422
        assert any("estimated_hours" in e for e in res.get_json()["details"]["errors"])

    def test_large_valid_estimate_still_starts(self, client, template):
        template["phases"][0]["steps"][0]["tasks"][0]["estimated_hours"] = 100_000
        stats = _start(client, template)
        assert stats["ongoing_tasks"] == 1

    def test_non_string_project_name(self, client, template):
        res = _create_project(client, template, name=42)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    @pytest.mark.parametrize("body", [
        {"status": ["completed"]},
        {"status": "escalated", "reason": 7},
    ])
    def test_transition_field_types(self, client, template, body):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]
        res = client.post(f"{BASE}/tasks/{recce['id']}/transition", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    @pytest.mark.parametrize("path, body", [
        ("comments", {"text": 12}),
        ("attachments", {"file_url": 5, "file_name": "map.png"}),
    ])
    def test_collaboration_field_types(self, client, template, path, body):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]
        res = client.post(f"{BASE}/tasks/{recce['id']}/{path}", json=body)
        assert res.status_code == 400

    def test_custom_task_nan_hours(self, client, template):
        stats = _start(client, template)
        res = client.post(f"{BASE}/projects/{stats['id']}/tasks",
                          json={"task_name": "Pickups", "estimated_hours": float("nan")})
        assert res.status_code == 422
        assert "estimated_hours" in res.get_json()["details"]


class TestTaskDetails:
    def test_update_task_fields(self, client, template):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]
        res = client.put(f"{BASE}/tasks/{recce['id']}",
                         json={"task_name": "Tech recce", "actual_hours": 5.5})
        assert res.status_code == 200
        data = res.get_json()
        assert data["task_name"] == "Tech recce"
        assert data["actual_hours"] == 5.5
        assert data["status"] == "ongoing"

    def test_status_not_editable(self, client, template):
        stats = _start(client, template)
        recce = client.get(f"{BASE}/projects/{stats['id']}/tasks?status=ongoing").get_json()["items"][0]
        res = client.put(f"{BASE}/tasks/{recce['id']}", json={"status": "completed"})
        assert res.status_code == 422
        assert "status" in res.get_json()["details"]

    def test_phase_progress(self, client, template):
        stats = _start(client, template)
        res = client.get(f"{BASE}/projects/{stats['id']}/phase-progress")
        assert res.status_code == 200
        phases = res.get_json()["items"]
        assert [p["phase_order"] for p in phases] == [1, 2]
        assert phases[0]["total_tasks"] == 2
        assert phases[0]["ongoing_tasks"] == 1
        assert phases[0]["pending_tasks"] == 1
        assert phases[1]["pending_tasks"] == 1
