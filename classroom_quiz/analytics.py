"""Grouped reductions over answers and sessions of completed attempts."""

from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

from classroom_quiz.models import LEVEL_ORDER, SessionActivity, SessionStatus, as_utc
from classroom_quiz.scoring import find_question, success_rate

# (upper bound in seconds, inclusive; label). The last bucket is open-ended.
TIME_BUCKETS = [
    (300, "0-5 min"),
    (600, "5-10 min"),
    (900, "10-15 min"),
    (1200, "15-20 min"),
    (None, "20+ min"),
]


def _level_position(level: str) -> int:
    return LEVEL_ORDER.index(level) if level in LEVEL_ORDER else len(LEVEL_ORDER)


def _question_sort_key(question_id: str) -> tuple:
    # Numeric ids sort numerically, anything else after them alphabetically
    try:
        return (0, int(question_id), "")
    except (TypeError, ValueError):
        return (1, 0, str(question_id))


def _mean(values: list) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def question_stats(answers: Iterable) -> list[dict[str, Any]]:
    """Per (level, question) attempts, accuracy and timing."""
    groups: dict[tuple[str, str], list] = defaultdict(list)
    for a in answers:
        groups[(a.level, str(a.question_id))].append(a)

    stats = []
    for (level, question_id), group in groups.items():
        times = [a.time_taken or 0 for a in group]
        correct = sum(1 for a in group if a.is_correct)
        question = find_question(level, question_id)
        stats.append({
            "question_id": question_id,
            "level": level,
            "question": question["question"] if question else None,
            "total_attempts": len(group),
            "correct_attempts": correct,
            "success_rate": success_rate(correct, len(group)),
            "avg_time": _mean(times),
            "min_time": min(times),
            "max_time": max(times),
        })

    stats.sort(key=lambda s: (_level_position(s["level"]), _question_sort_key(s["question_id"])))
    return stats


def question_report(answers: Iterable, highlight: int = 5) -> dict[str, Any]:
    """Question stats grouped by level, with the hardest and easiest questions."""
    stats = question_stats(answers)
    grouped: dict[str, list] = {level: [] for level in LEVEL_ORDER}
    for s in stats:
        grouped.setdefault(s["level"], []).append(s)

    rates = [s["success_rate"] for s in stats]
    return {
        "question_stats": grouped,
        "summary": {
            "total_questions": len(stats),
            "average_success_rate": round(sum(rates) / len(rates)) if rates else 0,
            "hardest_questions": sorted(stats, key=lambda s: s["success_rate"])[:highlight],
            "easiest_questions": sorted(stats, key=lambda s: -s["success_rate"])[:highlight],
        },
    }


def level_stats(answers: Iterable) -> list[dict[str, Any]]:
    """Accuracy and timing per topic level, in quiz order."""
    groups: dict[str, list] = defaultdict(list)
    for a in answers:
        groups[a.level].append(a)

    rows = []
    for level in sorted(groups, key=_level_position):
        group = groups[level]
        correct = sum(1 for a in group if a.is_correct)
        rows.append({
            "level": level,
            "total_answers": len(group),
            "correct_answers": correct,
            "accuracy_rate": success_rate(correct, len(group)),
            "avg_time_per_question": _mean([a.time_taken or 0 for a in group]),
        })
    return rows


def classroom_stats(users: Iterable, sessions: Iterable) -> dict[str, Any]:
    user_ids = {u.id for u in users}
    sessions = list(sessions)
    completed = [s for s in sessions if s.status == SessionStatus.COMPLETED.value]
    in_progress = [s for s in sessions if s.status == SessionStatus.IN_PROGRESS.value]
    started = {s.user_id for s in completed + in_progress}
    scores = [s.percentage for s in completed]

    return {
        "total_registered": len(user_ids),
        "completed": len(completed),
        "in_progress": len(in_progress),
        "not_started": len(user_ids - started),
        "average_score": _mean(scores),
        "highest_score": max(scores) if scores else None,
        "lowest_score": min(scores) if scores else None,
    }


def _bucket_label(seconds: int) -> str:
    for upper, label in TIME_BUCKETS:
        if upper is None or seconds <= upper:
            return label
    return TIME_BUCKETS[-1][1]


def time_distribution(sessions: Iterable) -> list[dict[str, Any]]:
    """Histogram of completion times for finished attempts; empty buckets are left out."""
    buckets: dict[str, list[int]] = defaultdict(list)
    for s in sessions:
        if s.status != SessionStatus.COMPLETED.value or s.time_taken is None:
            continue
        buckets[_bucket_label(s.time_taken)].append(s.percentage)

    return [
        {
            "time_range": label,
            "student_count": len(buckets[label]),
            "avg_score": _mean(buckets[label]),
        }
        for _, label in TIME_BUCKETS
        if label in buckets
    ]


def last_activity(activity: SessionActivity) -> datetime:
    if activity.status == SessionStatus.COMPLETED.value and activity.completed_at:
        return as_utc(activity.completed_at)
    return as_utc(activity.started_at)


def recent_activity(activities: Iterable[SessionActivity], limit: int = 20) -> list[dict[str, Any]]:
    ordered = sorted(activities, key=last_activity, reverse=True)[:limit]
    return [
        {**a.model_dump(), "last_activity": last_activity(a)}
        for a in ordered
    ]


def dashboard(users, sessions, answers, activities, recent_limit: int = 20) -> dict[str, Any]:
    """Everything the admin dashboard shows, in one bundle."""
    sessions = list(sessions)
    return {
        "stats": classroom_stats(users, sessions),
        "recent_activity": recent_activity(activities, recent_limit),
        "level_performance": level_stats(answers),
        "time_distribution": time_distribution(sessions),
    }
