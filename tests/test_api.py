"""
End-to-end tests through the FastAPI app (TestClient), with the AI
faked and the weather API mocked at the HTTP transport.
"""

from datetime import date, timedelta

from ai import JournalAnalysis, XpAward
from conftest import weather_payload


def data(resp):
    body = resp.json()
    assert body["success"] is True, body
    return body["data"]


def create_stat(client, headers, name="Fitness"):
    resp = client.post("/api/stats", json={"name": name}, headers=headers)
    assert resp.status_code == 201, resp.text
    return data(resp)


class TestEnvelope:
    """Response and error shapes."""

    def test_health(self, client) -> None:
        body = data(client.get("/"))
        assert body["status"] == "ok"
        assert body["ai_configured"] is True

    def test_missing_token(self, client) -> None:
        resp = client.get("/api/stats")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Missing bearer token", "type": "unauthorized"}

    def test_bad_token(self, client) -> None:
        resp = client.get("/api/stats", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["type"] == "unauthorized"

    def test_validation_error_shape(self, client, auth_headers) -> None:
        resp = client.post("/api/stats", json={"name": ""}, headers=auth_headers)
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["type"] == "validation"

    def test_unknown_route(self, client) -> None:
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json()["type"] == "not_found"


class TestAuth:
    """Registration, login and the current user."""

    def test_register_seeds_default_stats(self, client, auth_headers) -> None:
        names = [s["name"] for s in data(client.get("/api/stats", headers=auth_headers))]
        assert "Strength" in names and "Connection" in names
        assert len(names) == 6

    def test_duplicate_email(self, client, register_user) -> None:
        register_user("same@example.com")
        resp = client.post("/api/auth/register", json={
            "email": "SAME@example.com", "password": "secret123", "name": "Again"
        })
        assert resp.status_code == 409
        assert resp.json()["type"] == "conflict"

    def test_login(self, client, register_user) -> None:
        register_user("login@example.com")
        resp = client.post("/api/auth/login", json={"email": "login@example.com", "password": "secret123"})
        assert resp.status_code == 200
        assert data(resp)["access_token"]

        resp = client.post("/api/auth/login", json={"email": "login@example.com", "password": "wrong-pass"})
        assert resp.status_code == 401

    def test_unknown_timezone_rejected(self, client) -> None:
        resp = client.post("/api/auth/register", json={
            "email": "tz@example.com", "password": "secret123", "name": "Tz", "timezone": "Mars/Olympus"
        })
        assert resp.status_code == 400

    def test_me(self, client, auth_headers) -> None:
        me = data(client.get("/api/auth/me", headers=auth_headers))
        assert me["email"] == "player@example.com"

        updated = data(client.patch("/api/auth/me", json={"timezone": "Europe/Madrid"}, headers=auth_headers))
        assert updated["timezone"] == "Europe/Madrid"


class TestStats:
    """Stats, levels and grants."""

    def test_manual_grant_levels_up(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        assert stat["level"] == 1
        assert stat["current_xp"] == 0

        resp = client.post(f"/api/stats/{stat['id']}/grants", json={"amount": 300}, headers=auth_headers)
        assert resp.status_code == 201

        stat = data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))
        assert stat["current_xp"] == 300
        assert stat["level"] == 2
        assert stat["xp_into_level"] == 0

    def test_duplicate_stat(self, client, auth_headers) -> None:
        create_stat(client, auth_headers)
        resp = client.post("/api/stats", json={"name": "Fitness"}, headers=auth_headers)
        assert resp.status_code == 409

    def test_duplicate_stat_ignores_case(self, client, auth_headers) -> None:
        create_stat(client, auth_headers)
        resp = client.post("/api/stats", json={"name": "  fitness "}, headers=auth_headers)
        assert resp.status_code == 409

        other = create_stat(client, auth_headers, "Focus")
        resp = client.put(f"/api/stats/{other['id']}", json={"name": "FITNESS"}, headers=auth_headers)
        assert resp.status_code == 409

    def test_rename_changing_only_case(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        resp = client.put(f"/api/stats/{stat['id']}", json={"name": "FITNESS"}, headers=auth_headers)
        assert data(resp)["name"] == "FITNESS"

    def test_recreate_disabled_stat_ignores_case(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        client.delete(f"/api/stats/{stat['id']}", headers=auth_headers)

        recreated = create_stat(client, auth_headers, "FITNESS")
        assert recreated["id"] == stat["id"]
        assert recreated["enabled"] is True

    def test_zero_grant_rejected(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        resp = client.post(f"/api/stats/{stat['id']}/grants", json={"amount": 0}, headers=auth_headers)
        assert resp.status_code == 400

    def test_delete_disables_and_keeps_grants(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        client.post(f"/api/stats/{stat['id']}/grants", json={"amount": 40}, headers=auth_headers)

        resp = client.delete(f"/api/stats/{stat['id']}", headers=auth_headers)
        assert data(resp)["enabled"] is False

        listed = [s["name"] for s in data(client.get("/api/stats", headers=auth_headers))]
        assert "Fitness" not in listed
        grants = data(client.get(f"/api/stats/{stat['id']}/grants", headers=auth_headers))
        assert [g["amount"] for g in grants] == [40]

        recreated = create_stat(client, auth_headers)
        assert recreated["id"] == stat["id"]
        assert recreated["current_xp"] == 40

    def test_level_table(self, client) -> None:
        rows = data(client.get("/api/stats/levels?max_level=4"))
        assert [r["total_xp_required"] for r in rows] == [0, 300, 600, 1000]

    def test_recalculate(self, client, auth_headers) -> None:
        assert data(client.post("/api/stats/recalculate", headers=auth_headers)) == {"updated": 0}

    def test_other_users_stat_is_not_found(self, client, auth_headers, register_user) -> None:
        stat = create_stat(client, auth_headers)
        intruder = register_user("intruder@example.com", "Intruder")

        resp = client.get(f"/api/stats/{stat['id']}", headers=intruder)
        assert resp.status_code == 404
        resp = client.post(f"/api/stats/{stat['id']}/grants", json={"amount": 10}, headers=intruder)
        assert resp.status_code == 404


class TestJournalFlow:
    """Journal lifecycle through the API."""

    def test_complete_journal_credits_stat(self, client, auth_headers, fake_ai) -> None:
        stat = create_stat(client, auth_headers)
        fake_ai.analysis = JournalAnalysis(
            title="Gym day", synopsis="Lifted.",
            stat_awards=[XpAward(name="Fitness", xp=15, reason="gym")],
        )

        entry = data(client.post("/api/journal", json={
            "entry_date": "2026-03-14", "content": "Went to the gym."
        }, headers=auth_headers))
        assert entry["status"] == "draft"

        entry = data(client.post(f"/api/journal/{entry['id']}/reflection/start", headers=auth_headers))
        assert entry["status"] == "reflecting"
        entry = data(client.post(f"/api/journal/{entry['id']}/reflection/message",
                                 json={"message": "Felt strong"}, headers=auth_headers))
        assert len(entry["conversation_history"]) == 4

        entry = data(client.post(f"/api/journal/{entry['id']}/finish", headers=auth_headers))
        assert entry["status"] == "complete"
        assert entry["title"] == "Gym day"

        stat = data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))
        assert stat["current_xp"] == 15
        assert stat["level"] == 1

        grants = data(client.get(f"/api/journal/{entry['id']}/grants", headers=auth_headers))
        assert [(g["source_type"], g["amount"]) for g in grants] == [("journal", 15)]

    def test_duplicate_date_conflict(self, client, auth_headers) -> None:
        body = {"entry_date": "2026-03-14", "content": "one"}
        assert client.post("/api/journal", json=body, headers=auth_headers).status_code == 201
        resp = client.post("/api/journal", json=body, headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["type"] == "conflict"

    def test_illegal_transition(self, client, auth_headers) -> None:
        entry = data(client.post("/api/journal", json={"entry_date": "2026-03-14", "content": "x"},
                                 headers=auth_headers))
        resp = client.post(f"/api/journal/{entry['id']}/finish", headers=auth_headers)
        assert resp.status_code == 409

    def test_ai_failure_is_network_error(self, client, auth_headers, fake_ai) -> None:
        entry = data(client.post("/api/journal", json={"entry_date": "2026-03-14", "content": "x"},
                                 headers=auth_headers))
        fake_ai.fail = True
        resp = client.post(f"/api/journal/{entry['id']}/reflection/start", headers=auth_headers)
        assert resp.status_code == 502
        assert resp.json()["type"] == "network"

        entry = data(client.get(f"/api/journal/{entry['id']}", headers=auth_headers))
        assert entry["status"] == "draft"

    def test_by_date(self, client, auth_headers) -> None:
        client.post("/api/journal", json={"entry_date": "2026-03-14", "content": "x"}, headers=auth_headers)
        assert data(client.get("/api/journal/date/2026-03-14", headers=auth_headers))["content"] == "x"
        assert client.get("/api/journal/date/2026-03-15", headers=auth_headers).status_code == 404


class TestTasks:
    """Manual, ad-hoc and generated tasks."""

    def test_complete_and_uncomplete(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        task = data(client.post("/api/tasks", json={
            "title": "Run 5k", "stat_id": stat["id"], "xp_reward": 25
        }, headers=auth_headers))

        done = data(client.post(f"/api/tasks/{task['id']}/complete", headers=auth_headers))
        assert done["is_completed"] is True
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 25

        assert client.post(f"/api/tasks/{task['id']}/complete", headers=auth_headers).status_code == 409

        reopened = data(client.post(f"/api/tasks/{task['id']}/uncomplete", headers=auth_headers))
        assert reopened["is_completed"] is False
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 0

    def test_adhoc_task(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        task = data(client.post("/api/adhoc-tasks", json={
            "title": "Helped a neighbour move", "stat_id": stat["id"], "xp_reward": 30
        }, headers=auth_headers))
        assert task["source"] == "adhoc"
        assert task["is_completed"] is True

        grants = data(client.get("/api/xp-grants/recent", headers=auth_headers))
        assert [(g["source_type"], g["source_id"], g["amount"]) for g in grants] == [("adhoc", task["id"], 30)]

    def test_delete_task_takes_xp_back(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        task = data(client.post("/api/adhoc-tasks", json={
            "title": "Swim", "stat_id": stat["id"], "xp_reward": 20
        }, headers=auth_headers))
        client.delete(f"/api/tasks/{task['id']}", headers=auth_headers)
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 0

    def test_generate(self, client, auth_headers, fake_ai) -> None:
        resp = client.post("/api/generate-tasks", json={
            "intent": "active day", "target_date": "2026-05-04"
        }, headers=auth_headers)
        assert resp.status_code == 201
        tasks = data(resp)["tasks"]
        assert [t["source"] for t in tasks] == ["ai", "ai"]

        listed = data(client.get("/api/generate-tasks/2026-05-04", headers=auth_headers))
        assert [t["id"] for t in listed] == [t["id"] for t in tasks]

    def test_intent_too_long_never_reaches_ai(self, client, auth_headers, fake_ai) -> None:
        resp = client.post("/api/generate-tasks", json={"intent": "x" * 600}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["type"] == "validation"
        assert fake_ai.calls == []

    def test_generation_failure(self, client, auth_headers, fake_ai) -> None:
        fake_ai.fail = True
        resp = client.post("/api/generate-tasks", json={}, headers=auth_headers)
        assert resp.status_code == 502
        assert resp.json() == {
            "success": False,
            "error": "Task generation failed, please try again",
            "type": "generation_failed",
        }
        assert data(client.get("/api/tasks", headers=auth_headers)) == []


class TestExperimentsAndFamily:
    """Experiment check-ins and family interactions."""

    def test_experiment_day(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        experiment = data(client.post("/api/experiments", json={
            "title": "Cold showers", "start_date": "2026-04-01", "end_date": "2026-04-30",
            "stat_id": stat["id"], "xp_reward": 10,
        }, headers=auth_headers))

        url = f"/api/experiments/{experiment['id']}/complete-day"
        resp = client.post(url, json={"completed_date": "2026-04-02"}, headers=auth_headers)
        assert resp.status_code == 201
        assert [c["completed_date"] for c in data(resp)["completions"]] == ["2026-04-02"]
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 10

        assert client.post(url, json={"completed_date": "2026-04-02"}, headers=auth_headers).status_code == 409
        assert client.post(url, json={"completed_date": "2026-05-02"}, headers=auth_headers).status_code == 400

        undone = data(client.delete(f"{url}/2026-04-02", headers=auth_headers))
        assert undone["completions"] == []
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 0

    def test_experiment_dates_validated(self, client, auth_headers) -> None:
        resp = client.post("/api/experiments", json={
            "title": "Backwards", "start_date": "2026-04-30", "end_date": "2026-04-01"
        }, headers=auth_headers)
        assert resp.status_code == 400

    def test_family_feedback(self, client, auth_headers) -> None:
        member = data(client.post("/api/family", json={
            "name": "Ana", "relationship_type": "daughter", "interaction_frequency": "weekly"
        }, headers=auth_headers))
        attention = data(client.get("/api/family/attention", headers=auth_headers))
        assert [m["name"] for m in attention] == ["Ana"]

        today = date.today().isoformat()
        resp = client.post(f"/api/family/{member['id']}/feedback", json={
            "content": "Played chess", "interaction_date": today, "xp_awarded": 20
        }, headers=auth_headers)
        assert resp.status_code == 201

        member = data(client.get(f"/api/family/{member['id']}", headers=auth_headers))
        assert member["current_xp"] == 20
        assert member["last_interaction_date"] == today


class TestWeatherEndpoint:
    """GET /api/weather/{zip_code}."""

    def test_classified_weather(self, client, auth_headers, weather_stub) -> None:
        weather_stub.payload = weather_payload(temp=20.0, main="Snow", description="light snow")
        body = data(client.get("/api/weather/12345", headers=auth_headers))
        assert body["conditions"]["condition"] == "Snow"
        assert body["classification"]["is_outdoor_friendly"] is False

    def test_rate_limited(self, client, auth_headers, weather_stub) -> None:
        weather_stub.status = 429
        resp = client.get("/api/weather/12345", headers=auth_headers)
        assert resp.status_code == 429
        assert resp.json()["type"] == "rate_limit"

    def test_bad_zip(self, client, auth_headers, weather_stub) -> None:
        resp = client.get("/api/weather/abc", headers=auth_headers)
        assert resp.status_code == 400
        assert weather_stub.requests == []


class TestNullUpdates:
    """An explicit null on a required field is a validation error, not a crash."""

    def assert_rejected(self, resp) -> None:
        assert resp.status_code == 400, resp.text
        assert resp.json()["type"] == "validation"

    def test_profile(self, client, auth_headers) -> None:
        self.assert_rejected(client.patch("/api/auth/me", json={"name": None}, headers=auth_headers))
        self.assert_rejected(client.patch("/api/auth/me", json={"timezone": None}, headers=auth_headers))

    def test_stat(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        url = f"/api/stats/{stat['id']}"
        self.assert_rejected(client.put(url, json={"enabled": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"name": None}, headers=auth_headers))
        assert data(client.get(url, headers=auth_headers))["enabled"] is True

    def test_goal(self, client, auth_headers) -> None:
        goal = data(client.post("/api/goals", json={"title": "Get fit"}, headers=auth_headers))
        url = f"/api/goals/{goal['id']}"
        self.assert_rejected(client.put(url, json={"title": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"tags": None}, headers=auth_headers))
        assert data(client.get(url, headers=auth_headers))["title"] == "Get fit"

    def test_quest(self, client, auth_headers) -> None:
        quest = data(client.post("/api/quests", json={"title": "Spring run"}, headers=auth_headers))
        url = f"/api/quests/{quest['id']}"
        self.assert_rejected(client.put(url, json={"start_date": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"is_completed": None}, headers=auth_headers))

    def test_quest_end_date_can_be_cleared(self, client, auth_headers) -> None:
        quest = data(client.post("/api/quests", json={
            "title": "Spring run", "start_date": "2026-04-01", "end_date": "2026-04-30"
        }, headers=auth_headers))
        updated = data(client.put(f"/api/quests/{quest['id']}", json={"end_date": None}, headers=auth_headers))
        assert updated["end_date"] is None

    def test_experiment(self, client, auth_headers) -> None:
        experiment = data(client.post("/api/experiments", json={
            "title": "Cold showers", "start_date": "2026-04-01", "end_date": "2026-04-30"
        }, headers=auth_headers))
        url = f"/api/experiments/{experiment['id']}"
        self.assert_rejected(client.put(url, json={"end_date": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"xp_reward": None}, headers=auth_headers))

    def test_project_and_subtask(self, client, auth_headers) -> None:
        project = data(client.post("/api/projects", json={
            "title": "Shed", "subtasks": [{"title": "Buy wood"}]
        }, headers=auth_headers))
        url = f"/api/projects/{project['id']}"
        self.assert_rejected(client.put(url, json={"title": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"type": None}, headers=auth_headers))

        subtask_url = f"{url}/subtasks/{project['subtasks'][0]['id']}"
        self.assert_rejected(client.put(subtask_url, json={"title": None}, headers=auth_headers))
        self.assert_rejected(client.put(subtask_url, json={"is_completed": None}, headers=auth_headers))

    def test_task(self, client, auth_headers) -> None:
        task = data(client.post("/api/tasks", json={"title": "Call the bank"}, headers=auth_headers))
        url = f"/api/tasks/{task['id']}"
        self.assert_rejected(client.put(url, json={"title": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"xp_reward": None}, headers=auth_headers))

    def test_family_member(self, client, auth_headers) -> None:
        member = data(client.post("/api/family", json={
            "name": "Ana", "relationship_type": "daughter"
        }, headers=auth_headers))
        url = f"/api/family/{member['id']}"
        self.assert_rejected(client.put(url, json={"relationship_type": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"likes": None}, headers=auth_headers))
        self.assert_rejected(client.put(url, json={"interaction_frequency": None}, headers=auth_headers))


class TestGoalsAndQuests:
    """Goal and quest CRUD."""

    def test_goal_crud(self, client, auth_headers) -> None:
        resp = client.post("/api/goals", json={"title": "Get fit", "tags": ["health"]}, headers=auth_headers)
        assert resp.status_code == 201
        goal = data(resp)
        assert goal["is_active"] is True

        updated = data(client.put(f"/api/goals/{goal['id']}", json={
            "title": "Get strong", "is_archived": True
        }, headers=auth_headers))
        assert updated["title"] == "Get strong"
        assert updated["tags"] == ["health"]

        assert data(client.get("/api/goals", headers=auth_headers)) == []
        archived = data(client.get("/api/goals?include_archived=true", headers=auth_headers))
        assert [g["id"] for g in archived] == [goal["id"]]

        assert data(client.delete(f"/api/goals/{goal['id']}", headers=auth_headers)) == {"deleted": True}
        assert client.get(f"/api/goals/{goal['id']}", headers=auth_headers).status_code == 404

    def test_quest_activity(self, client, auth_headers) -> None:
        today = date.fromisoformat(data(client.get("/api/dashboard", headers=auth_headers))["today"])

        current = data(client.post("/api/quests", json={"title": "Run daily"}, headers=auth_headers))
        assert current["start_date"] == today.isoformat()
        assert current["is_active"] is True

        future = data(client.post("/api/quests", json={
            "title": "Summer swim", "start_date": (today + timedelta(days=30)).isoformat()
        }, headers=auth_headers))
        assert future["is_active"] is False

        active = data(client.get("/api/quests?active_only=true", headers=auth_headers))
        assert [q["id"] for q in active] == [current["id"]]

        done = data(client.put(f"/api/quests/{current['id']}", json={"is_completed": True}, headers=auth_headers))
        assert done["is_active"] is False
        assert done["completed_at"] is not None

        reopened = data(client.put(f"/api/quests/{current['id']}", json={"is_completed": False}, headers=auth_headers))
        assert reopened["is_active"] is True
        assert reopened["completed_at"] is None

    def test_quest_dates_validated(self, client, auth_headers) -> None:
        resp = client.post("/api/quests", json={
            "title": "Backwards", "start_date": "2026-04-30", "end_date": "2026-04-01"
        }, headers=auth_headers)
        assert resp.status_code == 400

    def test_unknown_goal_rejected(self, client, auth_headers) -> None:
        resp = client.post("/api/quests", json={"title": "Orphan", "goal_id": 999}, headers=auth_headers)
        assert resp.status_code == 404

    def test_deleting_goal_keeps_its_quests(self, client, auth_headers) -> None:
        goal = data(client.post("/api/goals", json={"title": "Get fit"}, headers=auth_headers))
        quest = data(client.post("/api/quests", json={
            "title": "Run daily", "goal_id": goal["id"]
        }, headers=auth_headers))
        project = data(client.post("/api/projects", json={
            "title": "Home gym", "goal_id": goal["id"]
        }, headers=auth_headers))

        client.delete(f"/api/goals/{goal['id']}", headers=auth_headers)

        assert data(client.get(f"/api/quests/{quest['id']}", headers=auth_headers))["goal_id"] is None
        assert data(client.get(f"/api/projects/{project['id']}", headers=auth_headers))["goal_id"] is None


class TestProjects:
    """Projects and their ordered subtasks."""

    def create_project(self, client, headers) -> dict:
        resp = client.post("/api/projects", json={
            "title": "Build a shed",
            "type": "project",
            "subtasks": [{"title": "Buy wood"}, {"title": "Pour base"}, {"title": "Raise walls"}],
        }, headers=headers)
        assert resp.status_code == 201, resp.text
        return data(resp)

    def test_create_keeps_subtask_order(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        assert [s["title"] for s in project["subtasks"]] == ["Buy wood", "Pour base", "Raise walls"]
        assert [s["sort_order"] for s in project["subtasks"]] == [0, 1, 2]

    def test_add_subtask_goes_last(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        resp = client.post(f"/api/projects/{project['id']}/subtasks", json={"title": "Paint"}, headers=auth_headers)
        assert resp.status_code == 201
        subtasks = data(resp)["subtasks"]
        assert subtasks[-1]["title"] == "Paint"
        assert subtasks[-1]["sort_order"] == 3

    def test_reorder(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        wood, base, walls = [s["id"] for s in project["subtasks"]]

        reordered = data(client.put(f"/api/projects/{project['id']}/subtasks/reorder", json={
            "subtask_ids": [walls, wood, base]
        }, headers=auth_headers))
        assert [s["id"] for s in reordered["subtasks"]] == [walls, wood, base]
        assert [s["sort_order"] for s in reordered["subtasks"]] == [0, 1, 2]

        fetched = data(client.get(f"/api/projects/{project['id']}", headers=auth_headers))
        assert [s["id"] for s in fetched["subtasks"]] == [walls, wood, base]

    def test_reorder_needs_every_subtask_once(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        wood, base, walls = [s["id"] for s in project["subtasks"]]
        url = f"/api/projects/{project['id']}/subtasks/reorder"

        for ids in ([wood, base], [wood, base, base], [wood, base, walls, 999]):
            resp = client.put(url, json={"subtask_ids": ids}, headers=auth_headers)
            assert resp.status_code == 400, ids
            assert resp.json()["type"] == "validation"

        fetched = data(client.get(f"/api/projects/{project['id']}", headers=auth_headers))
        assert [s["id"] for s in fetched["subtasks"]] == [wood, base, walls]

    def test_delete_subtask_closes_gap(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        wood, base, walls = [s["id"] for s in project["subtasks"]]

        remaining = data(client.delete(f"/api/projects/{project['id']}/subtasks/{base}", headers=auth_headers))
        assert [s["id"] for s in remaining["subtasks"]] == [wood, walls]
        assert [s["sort_order"] for s in remaining["subtasks"]] == [0, 1]

    def test_complete_subtask(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        wood = project["subtasks"][0]["id"]

        updated = data(client.put(f"/api/projects/{project['id']}/subtasks/{wood}", json={
            "is_completed": True
        }, headers=auth_headers))
        assert updated["subtasks"][0]["is_completed"] is True
        assert updated["subtasks"][0]["completed_at"] is not None

    def test_subtask_of_another_project_not_found(self, client, auth_headers) -> None:
        first = self.create_project(client, auth_headers)
        second = self.create_project(client, auth_headers)
        foreign = first["subtasks"][0]["id"]

        resp = client.delete(f"/api/projects/{second['id']}/subtasks/{foreign}", headers=auth_headers)
        assert resp.status_code == 404

    def test_complete_project(self, client, auth_headers) -> None:
        project = self.create_project(client, auth_headers)
        done = data(client.put(f"/api/projects/{project['id']}", json={
            "is_completed": True, "type": "adventure"
        }, headers=auth_headers))
        assert done["is_completed"] is True
        assert done["type"] == "adventure"

        open_projects = data(client.get("/api/projects?include_completed=false", headers=auth_headers))
        assert open_projects == []


class TestJournalEditing:
    """Re-opening a completed entry through the API."""

    def complete_entry(self, client, headers, fake_ai) -> dict:
        fake_ai.analysis = JournalAnalysis(
            title="Gym day", synopsis="Lifted.",
            stat_awards=[XpAward(name="Fitness", xp=15, reason="gym")],
        )
        entry = data(client.post("/api/journal", json={
            "entry_date": "2026-03-14", "content": "Went to the gym."
        }, headers=headers))
        client.post(f"/api/journal/{entry['id']}/reflection/start", headers=headers)
        return data(client.post(f"/api/journal/{entry['id']}/finish", headers=headers))

    def test_cancel_edit_keeps_grants(self, client, auth_headers, fake_ai) -> None:
        create_stat(client, auth_headers)
        entry = self.complete_entry(client, auth_headers, fake_ai)

        reopened = data(client.post(f"/api/journal/{entry['id']}/edit", headers=auth_headers))
        assert reopened["status"] == "draft"
        grants = data(client.get(f"/api/journal/{entry['id']}/grants", headers=auth_headers))
        assert [g["amount"] for g in grants] == [15]

        restored = data(client.post(f"/api/journal/{entry['id']}/cancel-edit", headers=auth_headers))
        assert restored["status"] == "complete"
        assert restored["title"] == "Gym day"
        grants = data(client.get(f"/api/journal/{entry['id']}/grants", headers=auth_headers))
        assert [g["amount"] for g in grants] == [15]

    def test_saved_edit_drops_grants(self, client, auth_headers, fake_ai) -> None:
        stat = create_stat(client, auth_headers)
        entry = self.complete_entry(client, auth_headers, fake_ai)

        client.post(f"/api/journal/{entry['id']}/edit", headers=auth_headers)
        resp = client.put(f"/api/journal/{entry['id']}", json={"content": "Skipped the gym."}, headers=auth_headers)
        assert data(resp)["content"] == "Skipped the gym."

        assert data(client.get(f"/api/journal/{entry['id']}/grants", headers=auth_headers)) == []
        assert data(client.get(f"/api/stats/{stat['id']}", headers=auth_headers))["current_xp"] == 0

        resp = client.post(f"/api/journal/{entry['id']}/cancel-edit", headers=auth_headers)
        assert resp.status_code == 409

    def test_cancel_edit_on_fresh_draft(self, client, auth_headers) -> None:
        entry = data(client.post("/api/journal", json={"entry_date": "2026-03-14", "content": "x"},
                                 headers=auth_headers))
        resp = client.post(f"/api/journal/{entry['id']}/cancel-edit", headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["type"] == "conflict"

    def test_edit_needs_complete_entry(self, client, auth_headers) -> None:
        entry = data(client.post("/api/journal", json={"entry_date": "2026-03-14", "content": "x"},
                                 headers=auth_headers))
        assert client.post(f"/api/journal/{entry['id']}/edit", headers=auth_headers).status_code == 409


class TestDashboard:
    """GET /api/dashboard."""

    def test_empty_dashboard(self, client, auth_headers) -> None:
        body = data(client.get("/api/dashboard", headers=auth_headers))
        assert body["journal_status"] is None
        assert body["open_tasks"] == []
        assert body["active_quests"] == []
        assert all(s["level"] == 1 for s in body["stats"])

    def test_summary(self, client, auth_headers) -> None:
        today = date.fromisoformat(data(client.get("/api/dashboard", headers=auth_headers))["today"])

        stat = create_stat(client, auth_headers)
        client.post(f"/api/stats/{stat['id']}/grants", json={"amount": 300}, headers=auth_headers)
        client.post("/api/journal", json={"entry_date": today.isoformat(), "content": "x"}, headers=auth_headers)
        client.post("/api/tasks", json={"title": "Call the bank"}, headers=auth_headers)
        done = data(client.post("/api/tasks", json={"title": "Laundry"}, headers=auth_headers))
        client.post(f"/api/tasks/{done['id']}/complete", headers=auth_headers)
        client.post("/api/quests", json={"title": "Run daily"}, headers=auth_headers)
        client.post("/api/quests", json={
            "title": "Later", "start_date": (today + timedelta(days=3)).isoformat()
        }, headers=auth_headers)
        client.post("/api/experiments", json={
            "title": "Cold showers", "start_date": today.isoformat(),
            "end_date": (today + timedelta(days=6)).isoformat(),
        }, headers=auth_headers)
        client.post("/api/family", json={"name": "Ana", "relationship_type": "daughter"}, headers=auth_headers)
        client.post("/api/family", json={
            "name": "Bea", "relationship_type": "sister", "last_interaction_date": today.isoformat()
        }, headers=auth_headers)

        body = data(client.get("/api/dashboard", headers=auth_headers))
        fitness = next(s for s in body["stats"] if s["name"] == "Fitness")
        assert fitness["level"] == 2
        assert body["journal_status"] == "draft"
        assert [t["title"] for t in body["open_tasks"]] == ["Call the bank"]
        assert [q["title"] for q in body["active_quests"]] == ["Run daily"]
        assert [e["title"] for e in body["active_experiments"]] == ["Cold showers"]
        assert [m["name"] for m in body["family_needing_attention"]] == ["Ana"]

    def test_disabled_stats_hidden(self, client, auth_headers) -> None:
        stat = create_stat(client, auth_headers)
        client.delete(f"/api/stats/{stat['id']}", headers=auth_headers)
        names = [s["name"] for s in data(client.get("/api/dashboard", headers=auth_headers))["stats"]]
        assert "Fitness" not in names
