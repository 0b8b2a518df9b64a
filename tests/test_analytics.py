from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from classroom_quiz import analytics
from classroom_quiz.models import SessionActivity

T0 = datetime(2026, 10, 1, 9, 0, 0)


def answer(level, question_id, correct, time_taken=10):
    return SimpleNamespace(level=level, question_id=question_id, is_correct=correct, time_taken=time_taken)


def session(user_id, status="completed", percentage=0, time_taken=None):
    return SimpleNamespace(user_id=user_id, status=status, percentage=percentage, time_taken=time_taken)


def test_question_stats_groups_and_orders():
    answers = [
        answer("css", "1", True, 4),
        answer("html", "10", False, 8),
        answer("html", "2", True, 6),
        answer("html", "2", False, 10),
    ]
    stats = analytics.question_stats(answers)
    assert [(s["level"], s["question_id"]) for s in stats] == [
        ("html", "2"), ("html", "10"), ("css", "1"),
    ]
    html2 = stats[0]
    assert html2["total_attempts"] == 2
    assert html2["correct_attempts"] == 1
    assert html2["success_rate"] == 50.0
    assert html2["avg_time"] == 8.0
    assert (html2["min_time"], html2["max_time"]) == (6, 10)


def test_success_rate_has_two_decimals():
    answers = [answer("react", "1", True), answer("react", "1", False), answer("react", "1", False)]
    assert analytics.question_stats(answers)[0]["success_rate"] == 33.33


def test_question_report_with_no_answers():
    report = analytics.question_report([])
    assert report["question_stats"] == {"html": [], "css": [], "javascript": [], "react": []}
    assert report["summary"]["total_questions"] == 0
    assert report["summary"]["average_success_rate"] == 0


def test_level_stats_in_quiz_order():
    answers = [answer("react", "1", True), answer("html", "1", False), answer("html", "2", True)]
    rows = analytics.level_stats(answers)
    assert [r["level"] for r in rows] == ["html", "react"]
    assert rows[0]["accuracy_rate"] == 50.0
    assert rows[0]["total_answers"] == 2


def test_classroom_stats():
    users = [SimpleNamespace(id=u) for u in ("a", "b", "c", "d")]
    sessions = [
        session("a", percentage=80, time_taken=100),
        session("b", percentage=45, time_taken=200),
        session("c", status="in_progress"),
        session("d", status="abandoned"),
    ]
    stats = analytics.classroom_stats(users, sessions)
    assert stats == {
        "total_registered": 4,
        "completed": 2,
        "in_progress": 1,
        "not_started": 1,
        "average_score": 62.5,
        "highest_score": 80,
        "lowest_score": 45,
    }


def test_classroom_stats_empty():
    stats = analytics.classroom_stats([], [])
    assert stats["average_score"] == 0.0
    assert stats["highest_score"] is None


def test_time_distribution_bucket_edges():
    sessions = [
        session("a", percentage=100, time_taken=300),
        session("b", percentage=50, time_taken=301),
        session("c", percentage=70, time_taken=5000),
        session("d", status="in_progress", time_taken=10),
    ]
    assert analytics.time_distribution(sessions) == [
        {"time_range": "0-5 min", "student_count": 1, "avg_score": 100.0},
        {"time_range": "5-10 min", "student_count": 1, "avg_score": 50.0},
        {"time_range": "20+ min", "student_count": 1, "avg_score": 70.0},
    ]


def test_recent_activity_uses_completion_time():
    early_done = SessionActivity(
        session_id="1", name="A", usn="a", status="completed",
        started_at=T0, completed_at=T0 + timedelta(minutes=30),
    )
    later_start = SessionActivity(
        session_id="2", name="B", usn="b", status="in_progress",
        started_at=T0 + timedelta(minutes=10),
    )
    rows = analytics.recent_activity([later_start, early_done], limit=5)
    assert [r["session_id"] for r in rows] == ["1", "2"]
    assert rows[0]["last_activity"] == (T0 + timedelta(minutes=30)).replace(tzinfo=timezone.utc)
    assert len(analytics.recent_activity([later_start, early_done], limit=1)) == 1
