"""CSV export of completed quiz results."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Iterable

from classroom_quiz.models import DISPLAY_STATUS, LeaderboardEntry, as_utc
from classroom_quiz.ranking import rank_completed

EXPORT_COLUMNS = (
    "Student Name",
    "USN",
    "Score (%)",
    "Correct Answers",
    "Total Questions",
    "Time Taken (seconds)",
    "Started At",
    "Completed At",
    "Status",
)


def _timestamp(value: datetime | None) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S") if value else ""


def result_rows(entries: Iterable[LeaderboardEntry]) -> list[list]:
    """One row per completed attempt, in leaderboard order."""
    return [
        [
            entry.name,
            entry.usn,
            entry.percentage,
            entry.score,
            entry.total_questions,
            entry.time_taken if entry.time_taken is not None else "",
            _timestamp(entry.started_at),
            _timestamp(entry.completed_at),
            DISPLAY_STATUS[entry.status],
        ]
        for entry in rank_completed(entries)
    ]


def results_to_csv(entries: Iterable[LeaderboardEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(result_rows(entries))
    return buffer.getvalue()


def export_filename(now: datetime) -> str:
    return f"quiz-results-{now.date().isoformat()}.csv"
