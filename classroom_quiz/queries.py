"""Read-side queries and admin maintenance over the relational store."""

import logging
from typing import Optional
from sqlmodel import Session, func, select

from classroom_quiz.config import get_settings
from classroom_quiz.errors import NotFoundError, ValidationError
from classroom_quiz.models import (
    AdminSetting, DISPLAY_STATUS, LeaderboardEntry, QuizAnswer, QuizSession,
    SessionActivity, SessionStatus, User, UserSummary, as_utc, utcnow,
)

settings = get_settings()
logger = logging.getLogger(__name__)


def to_entry(user: User, quiz_session: Optional[QuizSession] = None) -> LeaderboardEntry:
    if quiz_session is None:
        return LeaderboardEntry(user_id=user.id, name=user.name, usn=user.usn)
    return LeaderboardEntry(
        user_id=user.id,
        name=user.name,
        usn=user.usn,
        status=quiz_session.status,
        display_status=DISPLAY_STATUS.get(quiz_session.status, quiz_session.status),
        percentage=quiz_session.percentage,
        score=quiz_session.correct_answers,
        total_questions=quiz_session.total_questions,
        time_taken=quiz_session.time_taken,
        started_at=quiz_session.started_at,
        completed_at=quiz_session.completed_at,
    )


def _session_rows(db: Session, status: Optional[str] = None):
    statement = select(QuizSession, User).join(User, QuizSession.user_id == User.id)
    if status:
        statement = statement.where(QuizSession.status == status)
    return db.exec(statement.order_by(QuizSession.started_at, QuizSession.id)).all()


def leaderboard_entries(db: Session, include_not_started: bool = False) -> list[LeaderboardEntry]:
    """Every session joined to its user; optionally users who never started, too."""
    rows = _session_rows(db)
    entries = [to_entry(user, quiz_session) for quiz_session, user in rows]
    if include_not_started:
        started = {quiz_session.user_id for quiz_session, _ in rows}
        users = db.exec(select(User).order_by(User.created_at, User.id)).all()
        entries.extend(to_entry(user) for user in users if user.id not in started)
    return entries


def completed_entries(db: Session) -> list[LeaderboardEntry]:
    return [
        to_entry(user, quiz_session)
        for quiz_session, user in _session_rows(db, SessionStatus.COMPLETED.value)
    ]


def count_completed(db: Session) -> int:
    return db.exec(
        select(func.count())
        .select_from(QuizSession)
        .where(QuizSession.status == SessionStatus.COMPLETED.value)
    ).one()


def completed_answers(db: Session) -> list[QuizAnswer]:
    return db.exec(
        select(QuizAnswer)
        .join(QuizSession, QuizAnswer.session_id == QuizSession.id)
        .where(QuizSession.status == SessionStatus.COMPLETED.value)
        .order_by(QuizAnswer.id)
    ).all()


def all_users(db: Session) -> list[User]:
    return db.exec(select(User).order_by(User.created_at.desc())).all()


def all_sessions(db: Session) -> list[QuizSession]:
    return db.exec(select(QuizSession).order_by(QuizSession.started_at)).all()


def user_summaries(db: Session) -> list[UserSummary]:
    """Users with their attempt count, best score and last completion."""
    sessions_by_user: dict[str, list[QuizSession]] = {}
    for quiz_session in all_sessions(db):
        sessions_by_user.setdefault(quiz_session.user_id, []).append(quiz_session)

    summaries = []
    for user in all_users(db):
        attempts = sessions_by_user.get(user.id, [])
        completed = [s for s in attempts if s.status == SessionStatus.COMPLETED.value]
        summaries.append(UserSummary(
            id=user.id,
            name=user.name,
            usn=user.usn,
            email=user.email,
            created_at=user.created_at,
            quiz_attempts=len(attempts),
            best_score=max((s.percentage for s in completed), default=None),
            last_attempt=max((as_utc(s.completed_at) for s in completed), default=None),
        ))
    return summaries


def _answer_counts(db: Session) -> dict[str, int]:
    rows = db.exec(
        select(QuizAnswer.session_id, func.count(QuizAnswer.id)).group_by(QuizAnswer.session_id)
    ).all()
    return {session_id: count for session_id, count in rows}


def session_activities(db: Session, status: Optional[str] = None) -> list[SessionActivity]:
    """Sessions joined to users, newest first, with how many questions each answered."""
    counts = _answer_counts(db)
    return [
        SessionActivity(
            session_id=quiz_session.id,
            name=user.name,
            usn=user.usn,
            status=quiz_session.status,
            percentage=quiz_session.percentage,
            time_taken=quiz_session.time_taken,
            started_at=quiz_session.started_at,
            completed_at=quiz_session.completed_at,
            questions_answered=counts.get(quiz_session.id, 0),
        )
        for quiz_session, user in reversed(_session_rows(db, status))
    ]


def list_admin_settings(db: Session) -> list[AdminSetting]:
    return db.exec(select(AdminSetting).order_by(AdminSetting.key)).all()


def update_admin_setting(db: Session, key: str, value: str) -> AdminSetting:
    setting = db.get(AdminSetting, key)
    if not setting:
        raise NotFoundError(f"Unknown setting '{key}'")
    setting.value = value.strip()
    setting.updated_at = utcnow()
    db.add(setting)
    db.commit()
    db.refresh(setting)
    logger.info("Setting %s changed to %r", key, setting.value)
    return setting


def reset_all(db: Session, confirm_reset: Optional[str]) -> dict[str, int]:
    """Delete every answer, session and user. Requires the confirmation literal."""
    if confirm_reset != settings.reset_confirmation:
        raise ValidationError(
            f'Reset confirmation required. Send {{"confirm_reset": "{settings.reset_confirmation}"}}'
        )

    deleted = {}
    # Children first so foreign keys always point somewhere
    for name, model in (("answers", QuizAnswer), ("sessions", QuizSession), ("users", User)):
        rows = db.exec(select(model)).all()
        for row in rows:
            db.delete(row)
        db.flush()
        deleted[name] = len(rows)
    db.commit()
    logger.warning("All quiz data reset: %s", deleted)
    return deleted
