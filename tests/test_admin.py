import csv
import io


def test_admin_requires_token(client):
    assert client.get("/api/admin/dashboard").status_code == 403
    response = client.get("/api/admin/dashboard", headers={"X-Admin-Token": "wrong"})
    assert response.status_code == 403


def test_dashboard(client, play, admin_headers):
    play("Ada", "eng001", correct=20, total_time=200)
    play("Grace", "eng002", correct=10, total_time=700)
    play("Linus", "eng003", complete=False)

    dashboard = client.get("/api/admin/dashboard", headers=admin_headers).json()["dashboard"]
    stats = dashboard["stats"]
    assert stats["total_registered"] == 3
    assert stats["completed"] == 2
    assert stats["in_progress"] == 1
    assert stats["average_score"] == 75.0
    assert stats["highest_score"] == 100
    assert stats["lowest_score"] == 50

    assert dashboard["recent_activity"][0]["name"] == "Linus"
    assert len(dashboard["recent_activity"]) == 3

    # Only answers from completed sessions count
    html = dashboard["level_performance"][0]
    assert html["level"] == "html"
    assert html["total_answers"] == 10
    assert html["accuracy_rate"] == 100.0

    assert dashboard["time_distribution"] == [
        {"time_range": "0-5 min", "student_count": 1, "avg_score": 100.0},
        {"time_range": "10-15 min", "student_count": 1, "avg_score": 50.0},
    ]


def test_sessions_listing_and_detail(client, play, admin_headers):
    done = play("Ada", "eng001", correct=5)
    play("Grace", "eng002", complete=False)

    body = client.get("/api/admin/sessions", headers=admin_headers).json()
    assert body["pagination"]["total"] == 2
    assert [s["name"] for s in body["sessions"]] == ["Grace", "Ada"]
    assert all(s["questions_answered"] == 20 for s in body["sessions"])

    completed = client.get(
        "/api/admin/sessions", params={"status": "completed"}, headers=admin_headers
    ).json()
    assert [s["session_id"] for s in completed["sessions"]] == [done["session_id"]]

    detail = client.get(f"/api/admin/sessions/{done['session_id']}", headers=admin_headers).json()
    assert detail["name"] == "Ada"
    assert detail["correct_answers"] == 5
    assert len(detail["answers"]) == 20

    missing = client.get("/api/admin/sessions/nope", headers=admin_headers)
    assert missing.status_code == 404


def test_question_analytics(client, play, admin_headers):
    play("Ada", "eng001", correct=1)
    play("Grace", "eng002", correct=2)

    body = client.get("/api/admin/analytics/questions", headers=admin_headers).json()
    html = body["question_stats"]["html"]
    assert [q["question_id"] for q in html] == ["1", "2", "3", "4", "5"]
    assert html[0]["success_rate"] == 100.0
    assert html[1]["success_rate"] == 50.0
    assert html[2]["success_rate"] == 0.0
    assert html[0]["question"] == "What does HTML stand for?"

    summary = body["summary"]
    assert summary["total_questions"] == 20
    assert summary["easiest_questions"][0]["question_id"] == "1"
    assert len(summary["hardest_questions"]) == 5


def test_export_results(client, play, admin_headers):
    play("Lovelace, Ada", "eng001", correct=5, total_time=600)
    play("Grace", "eng002", correct=10, total_time=300)
    play("Busy", "eng003", complete=False)

    response = client.get("/api/admin/export/results", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=quiz-results-" in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:3] == ["Student Name", "USN", "Score (%)"]
    assert [r[0] for r in rows[1:]] == ["Grace", "Lovelace, Ada"]
    assert '"Lovelace, Ada"' in response.text


def test_export_with_no_results(client, admin_headers):
    response = client.get("/api/admin/export/results", headers=admin_headers)
    assert response.status_code == 200
    assert len(list(csv.reader(io.StringIO(response.text)))) == 1


def test_reset_requires_literal(client, play, admin_headers):
    play("Ada", "eng001", correct=5)

    wrong = client.post("/api/admin/reset", json={"confirm_reset": "yes"}, headers=admin_headers)
    assert wrong.status_code == 400
    assert len(client.get("/api/users").json()) == 1

    missing = client.post("/api/admin/reset", json={}, headers=admin_headers)
    assert missing.status_code == 400

    ok = client.post(
        "/api/admin/reset", json={"confirm_reset": "YES_DELETE_ALL_DATA"}, headers=admin_headers
    )
    assert ok.status_code == 200
    assert ok.json()["deleted"] == {"answers": 20, "sessions": 1, "users": 1}
    assert client.get("/api/users").json() == []
    assert client.get("/api/leaderboard").json()["leaderboard"] == []


def test_settings_and_disabled_quiz(client, admin_headers):
    settings = client.get("/api/admin/settings", headers=admin_headers).json()
    assert {s["key"]: s["value"] for s in settings}["max_attempts"] == "1"

    updated = client.put(
        "/api/admin/settings/quiz_enabled", json={"value": "false"}, headers=admin_headers
    )
    assert updated.json()["value"] == "false"

    user = client.post("/api/users/register", json={"name": "Ada", "usn": "eng001"}).json()["user"]
    response = client.post("/api/quiz/start", json={"user_id": user["id"]})
    assert response.status_code == 409
    assert response.json()["error"] == "Quiz is currently disabled"

    unknown = client.put("/api/admin/settings/nope", json={"value": "1"}, headers=admin_headers)
    assert unknown.status_code == 404


def test_abandon_stale_sessions(client, play, admin_headers):
    busy = play("Ada", "eng001", complete=False)
    fresh = client.post("/api/admin/sessions/abandon-stale", headers=admin_headers).json()
    assert fresh["abandoned"] == 0

    swept = client.post(
        "/api/admin/sessions/abandon-stale", params={"max_age_minutes": 0}, headers=admin_headers
    ).json()
    assert swept["abandoned"] == 1

    restarted = client.post("/api/quiz/start", json={"user_id": busy["user"]["id"]}).json()
    assert restarted["resumed"] is False
    assert restarted["session_id"] != busy["session_id"]


def test_restarted_user_appears_once_in_live_view(client, play, admin_headers):
    busy = play("Ada", "eng001", complete=False)
    client.post(
        "/api/admin/sessions/abandon-stale", params={"max_age_minutes": 0}, headers=admin_headers
    )
    restarted = client.post("/api/quiz/start", json={"user_id": busy["user"]["id"]}).json()

    live = client.get("/api/leaderboard/live").json()
    assert [(e["name"], e["display_status"], e["rank"]) for e in live["live_data"]] == [
        ("Ada", "In Progress", 1),
    ]
    assert live["summary"]["total_registered"] == 1

    client.post("/api/quiz/complete", json={"session_id": restarted["session_id"], "total_time_taken": 60})
    live = client.get("/api/leaderboard/live").json()
    assert [e["display_status"] for e in live["live_data"]] == ["Completed"]
