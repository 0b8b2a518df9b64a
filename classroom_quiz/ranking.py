"""Leaderboard ordering and rank assignment. All functions here are pure."""

from typing import Iterable, Optional

from classroom_quiz.models import (
    DISPLAY_STATUS,
    EARLIEST,
    LeaderboardEntry,
    SessionStatus,
    as_utc,
)

# Live view groups: finished attempts first, users who never started last
_STATUS_ORDER = {
    SessionStatus.COMPLETED.value: 0,
    SessionStatus.IN_PROGRESS.value: 1,
    SessionStatus.ABANDONED.value: 2,
    SessionStatus.NOT_STARTED.value: 3,
}

_NO_TIME = float("inf")


def score_key(entry: LeaderboardEntry) -> tuple:
    """Percentage descending, then time ascending; missing times sort last."""
    time_taken = entry.time_taken if entry.time_taken is not None else _NO_TIME
    return (-entry.percentage, time_taken)


def is_ahead(other: LeaderboardEntry, target: LeaderboardEntry) -> bool:
    """True when ``other`` strictly outranks ``target``."""
    return score_key(other) < score_key(target)


def _with_ranks(entries: Iterable[LeaderboardEntry], start: int = 1) -> list[LeaderboardEntry]:
    return [
        entry.model_copy(update={
            "rank": position,
            "display_status": DISPLAY_STATUS.get(entry.status, entry.display_status),
        })
        for position, entry in enumerate(entries, start=start)
    ]


def rank_completed(entries: Iterable[LeaderboardEntry]) -> list[LeaderboardEntry]:
    completed = [e for e in entries if e.status == SessionStatus.COMPLETED.value]
    return _with_ranks(sorted(completed, key=score_key))


def top(
    entries: Iterable[LeaderboardEntry], limit: int = 50, offset: int = 0
) -> list[LeaderboardEntry]:
    """A page of the completed ranking. Ranks stay absolute across pages."""
    ranked = rank_completed(entries)
    return ranked[offset:offset + limit]


def _participant_key(entry: LeaderboardEntry) -> tuple:
    # Any live attempt beats an abandoned one; otherwise the newest wins
    return (
        entry.status != SessionStatus.ABANDONED.value,
        as_utc(entry.started_at) or EARLIEST,
    )


def one_per_user(entries: Iterable[LeaderboardEntry]) -> list[LeaderboardEntry]:
    """Collapse a user's attempts to the one the live view should show."""
    chosen: dict[str, LeaderboardEntry] = {}
    for entry in entries:
        current = chosen.get(entry.user_id)
        if current is None or _participant_key(entry) >= _participant_key(current):
            chosen[entry.user_id] = entry
    return list(chosen.values())


def live_view(entries: Iterable[LeaderboardEntry]) -> list[LeaderboardEntry]:
    ordered = sorted(
        one_per_user(entries),
        key=lambda e: (_STATUS_ORDER.get(e.status, len(_STATUS_ORDER)),) + score_key(e),
    )
    return _with_ranks(ordered)


def rank_of(target: LeaderboardEntry, entries: Iterable[LeaderboardEntry]) -> int:
    """Rank of ``target`` among completed entries without building the full ranking."""
    return 1 + sum(
        1
        for e in entries
        if e.status == SessionStatus.COMPLETED.value and is_ahead(e, target)
    )


def rank_window(
    entries: Iterable[LeaderboardEntry], rank: int, radius: int = 2
) -> list[LeaderboardEntry]:
    low = max(1, rank - radius)
    high = rank + radius
    return [e for e in rank_completed(entries) if low <= e.rank <= high]


def find_entry(
    entries: Iterable[LeaderboardEntry], user_id: str
) -> Optional[LeaderboardEntry]:
    """Latest completed entry for a user, or None."""
    completed = [
        e for e in entries
        if e.user_id == user_id and e.status == SessionStatus.COMPLETED.value
    ]
    if not completed:
        return None
    return max(completed, key=lambda e: as_utc(e.completed_at) or EARLIEST)
