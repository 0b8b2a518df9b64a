import json

import pytest

from classroom_quiz.errors import ConflictError, NotFoundError, StorageFailure, ValidationError
from classroom_quiz.events import LEADERBOARD_UPDATE, STORE_CHANGE
from classroom_quiz.local_store import SLOTS, LocalQuizService, ObservableStore


@pytest.fixture
def store():
    return ObservableStore()


@pytest.fixture
def service(store):
    return LocalQuizService(store)


def play(service, questions, name, usn, correct, total_time=600, complete=True):
    user = service.register_user(name, usn)["user"]
    session_id = service.start_quiz(user.id)["session_id"]
    for i, (level, question_id, right) in enumerate(questions):
        service.submit_answer(session_id, question_id, level, right if i < correct else (right + 1) % 4, right, 10)
    if complete:
        service.complete_quiz(session_id, total_time)
    return user, session_id


def test_store_initialises_all_slots(store):
    for slot in SLOTS:
        assert store.read(slot) is not None
    assert store.read("settings")["quiz_enabled"] is True
    with pytest.raises(KeyError):
        store.read("currentSession")


def test_store_notifies_synchronously_after_write(store):
    changes = []

    def on_change(topic, change):
        # The write is already visible when subscribers run
        changes.append((topic, change["key"], store.read(change["key"])))

    unsubscribe = store.subscribe(on_change)
    store.write("users", [{"id": "1"}])
    unsubscribe()
    store.write("users", [])

    assert changes == [(STORE_CHANGE, "users", [{"id": "1"}])]


def test_store_reads_are_copies(store):
    users = store.read("users")
    users.append({"id": "x"})
    assert store.read("users") == []


def test_file_backed_store_last_write_wins(tmp_path):
    path = tmp_path / "quiz.json"
    first = ObservableStore(path)
    second = ObservableStore(path)
    first.write("users", [{"id": "a"}])
    second.write("users", [{"id": "b"}])

    assert first.read("users") == [{"id": "b"}]
    assert json.loads(path.read_text())["users"] == [{"id": "b"}]


def test_unreadable_file_raises_storage_failure(tmp_path):
    path = tmp_path / "quiz.json"
    service = LocalQuizService(ObservableStore(path))
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageFailure) as excinfo:
        service.get_users()
    assert excinfo.value.status_code == 500
    assert excinfo.value.detail


def test_ada_scenario(service, questions):
    updates = []
    service.store.bus.subscribe(LEADERBOARD_UPDATE, lambda t, p: updates.append(p))
    user, session_id = play(service, questions, "Ada", "eng001", correct=5)

    detail = service.get_session(session_id)
    assert (detail.correct_answers, detail.percentage, detail.time_taken) == (5, 25, 600)
    assert updates[0]["percentage"] == 25

    board = service.get_leaderboard()
    assert [(e.name, e.rank) for e in board] == [("Ada", 1)]
    assert service.store.read("leaderboard")[0]["name"] == "Ada"


def test_complete_counts_answers_against_twenty(service, questions):
    user = service.register_user("Ada", "eng001")["user"]
    session_id = service.start_quiz(user.id)["session_id"]
    for level, question_id, right in questions[:12]:
        service.submit_answer(session_id, question_id, level, right, right)
    result = service.complete_quiz(session_id, 100)
    assert result["results"].percentage == 60


def test_session_guards(service, questions):
    user, session_id = play(service, questions, "Ada", "eng001", correct=5)

    with pytest.raises(ConflictError):
        service.submit_answer(session_id, "99", "html", 0, 0)
    assert len(service.get_session(session_id).answers) == 20
    with pytest.raises(ConflictError):
        service.complete_quiz(session_id, 10)
    with pytest.raises(ConflictError) as excinfo:
        service.start_quiz(user.id)
    assert excinfo.value.payload["session"]["id"] == session_id
    with pytest.raises(ConflictError):
        service.register_user("Ada", "eng001")
    with pytest.raises(NotFoundError):
        service.start_quiz("nobody")
    with pytest.raises(NotFoundError):
        service.submit_answer("missing", "1", "html", 0, 0)
    with pytest.raises(ValidationError):
        service.submit_answer(session_id, "1", "python", 0, 0)


def test_resume_and_duplicate_answers(service):
    user = service.register_user("Ada", "eng001")["user"]
    first = service.start_quiz(user.id)
    second = service.start_quiz(user.id)
    assert second["resumed"] is True
    assert first["session_id"] == second["session_id"]

    service.submit_answer(first["session_id"], 1, "html", 0, 0)
    with pytest.raises(ConflictError):
        service.submit_answer(first["session_id"], "1", "html", 1, 0)


def test_live_view_and_user_rank(service, questions):
    play(service, questions, "Amy", "eng001", correct=20, total_time=300)
    bob, _ = play(service, questions, "Bob", "eng002", correct=15)
    play(service, questions, "Cy", "eng003", correct=10, complete=False)
    service.register_user("Dee", "eng004")

    live = service.get_live_leaderboard()
    assert [(e.name, e.display_status) for e in live["live_data"]] == [
        ("Amy", "Completed"), ("Bob", "Completed"), ("Cy", "In Progress"), ("Dee", "Not Started"),
    ]
    assert live["summary"]["not_started"] == 1

    rank = service.get_user_rank(bob.id)
    assert rank["user_session"].rank == 2
    assert [e.name for e in rank["context_users"]] == ["Amy", "Bob"]


def test_admin_views(service, questions):
    play(service, questions, "Lovelace, Ada", "eng001", correct=20, total_time=200)
    play(service, questions, "Grace", "eng002", correct=0, complete=False)

    dashboard = service.dashboard()["dashboard"]
    assert dashboard["stats"]["completed"] == 1
    assert dashboard["level_performance"][0]["total_answers"] == 5
    assert dashboard["recent_activity"][0]["name"] == "Grace"

    report = service.question_analytics()
    assert report["summary"]["total_questions"] == 20
    assert report["summary"]["average_success_rate"] == 100

    csv_text = service.export_results()
    assert csv_text.splitlines()[1].startswith('"Lovelace, Ada",eng001,100,20,20,200,')

    assert service.health_check()["stats"] == {
        "total_users": 2, "total_sessions": 2, "completed_sessions": 1,
    }


def test_reset_requires_literal(service, questions):
    play(service, questions, "Ada", "eng001", correct=5)
    with pytest.raises(ValidationError):
        service.reset_data("yes")
    assert len(service.get_users()) == 1

    service.reset_data("YES_DELETE_ALL_DATA")
    assert service.get_users() == []
    assert service.get_sessions() == []
    assert service.store.read("leaderboard") == []


def test_abandon_stale_allows_restart(service, questions):
    user, session_id = play(service, questions, "Ada", "eng001", correct=5, complete=False)
    assert service.abandon_stale(max_age_minutes=60) == 0
    assert service.abandon_stale(max_age_minutes=0) == 1

    restarted = service.start_quiz(user.id)
    assert restarted["resumed"] is False
    assert restarted["session_id"] != session_id
