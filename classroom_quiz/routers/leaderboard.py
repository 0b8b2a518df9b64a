from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from classroom_quiz.analytics import classroom_stats
from classroom_quiz.database import get_session
from classroom_quiz.errors import NotFoundError
from classroom_quiz.models import (
    LeaderboardResponse, LiveLeaderboardResponse, Pagination, UserRankResponse,
)
from classroom_quiz.queries import (
    all_sessions, all_users, completed_entries, leaderboard_entries,
)
from classroom_quiz.ranking import find_entry, live_view, rank_of, rank_window, top

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("", response_model=LeaderboardResponse)
def get_leaderboard(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """Completed attempts sorted by percentage desc, tie-break by fastest time."""
    entries = completed_entries(session)
    total = len(entries)
    return LeaderboardResponse(
        leaderboard=top(entries, limit, offset),
        pagination=Pagination(
            total=total, limit=limit, offset=offset, has_more=offset + limit < total
        ),
    )


@router.get("/live", response_model=LiveLeaderboardResponse)
def get_live_leaderboard(session: Session = Depends(get_session)):
    """Everyone in the class: finished first, then in progress, then not started."""
    stats = classroom_stats(all_users(session), all_sessions(session))
    return LiveLeaderboardResponse(
        live_data=live_view(leaderboard_entries(session, include_not_started=True)),
        summary={
            "total_registered": stats["total_registered"],
            "completed": stats["completed"],
            "in_progress": stats["in_progress"],
            "not_started": stats["not_started"],
            "average_score": round(stats["average_score"]),
            "highest_score": stats["highest_score"] or 0,
        },
    )


@router.get("/user/{user_id}", response_model=UserRankResponse)
def get_user_rank(user_id: str, session: Session = Depends(get_session)):
    """A user's rank plus the two places above and below."""
    entries = completed_entries(session)
    entry = find_entry(entries, user_id)
    if entry is None:
        raise NotFoundError("No completed quiz found for this user")

    rank = rank_of(entry, entries)
    return UserRankResponse(
        user_session=entry.model_copy(update={"rank": rank}),
        context_users=rank_window(entries, rank),
    )
