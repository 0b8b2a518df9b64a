from fastapi import APIRouter, Depends, HTTPException, Header, Query
from fastapi.responses import PlainTextResponse
from sqlmodel import Session
from typing import Optional
from classroom_quiz.analytics import dashboard, question_report
from classroom_quiz.config import get_settings
from classroom_quiz.database import get_session
from classroom_quiz.export import export_filename, results_to_csv
from classroom_quiz.models import (
    AdminSetting, Pagination, ResetRequest, SessionDetail, SessionStatus,
    SettingUpdate, utcnow,
)
from classroom_quiz.queries import (
    all_sessions, all_users, completed_answers, completed_entries,
    list_admin_settings, reset_all, session_activities, update_admin_setting,
)
from classroom_quiz.sessions import abandon_stale, get_session_detail

settings = get_settings()


def require_admin_token(x_admin_token: Optional[str] = Header(None)):
    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=403, detail="Invalid admin token")


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("/dashboard")
def get_dashboard(session: Session = Depends(get_session)):
    """Classroom stats, recent activity, level performance and time distribution."""
    return {
        "success": True,
        "dashboard": dashboard(
            all_users(session),
            all_sessions(session),
            completed_answers(session),
            session_activities(session),
        ),
    }


@router.get("/sessions")
def list_sessions(
    status: Optional[SessionStatus] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    """All sessions, newest first, optionally filtered by status."""
    activities = session_activities(session, status.value if status else None)
    total = len(activities)
    return {
        "success": True,
        "sessions": activities[offset:offset + limit],
        "pagination": Pagination(
            total=total, limit=limit, offset=offset, has_more=offset + limit < total
        ),
    }


@router.post("/sessions/abandon-stale")
def abandon_stale_sessions(
    max_age_minutes: Optional[int] = Query(None, ge=0),
    session: Session = Depends(get_session),
):
    """Mark long-idle in-progress sessions as abandoned so the student can restart."""
    count = abandon_stale(session, max_age_minutes)
    return {"success": True, "abandoned": count}


@router.get("/sessions/{session_id}", response_model=SessionDetail)
def get_session_details(session_id: str, session: Session = Depends(get_session)):
    return get_session_detail(session, session_id)


@router.get("/analytics/questions")
def get_question_analytics(session: Session = Depends(get_session)):
    """Per-question success rates grouped by level."""
    return {"success": True, **question_report(completed_answers(session))}


@router.get("/export/results", response_class=PlainTextResponse)
def export_results(session: Session = Depends(get_session)):
    """Completed results as CSV, in leaderboard order."""
    return PlainTextResponse(
        results_to_csv(completed_entries(session)),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename(utcnow())}"},
    )


@router.post("/reset")
def reset_data(data: ResetRequest, session: Session = Depends(get_session)):
    """Delete all users, sessions and answers. Requires the confirmation literal."""
    deleted = reset_all(session, data.confirm_reset)
    return {
        "success": True,
        "message": "All quiz data has been reset successfully",
        "deleted": deleted,
    }


@router.get("/settings", response_model=list[AdminSetting])
def get_admin_settings(session: Session = Depends(get_session)):
    return list_admin_settings(session)


@router.put("/settings/{key}", response_model=AdminSetting)
def put_admin_setting(key: str, data: SettingUpdate, session: Session = Depends(get_session)):
    return update_admin_setting(session, key, data.value)
