import logging
import re
from datetime import timedelta
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from classroom_quiz.config import get_settings
from classroom_quiz.errors import ConflictError, NotFoundError, ValidationError
from classroom_quiz.events import LEADERBOARD_UPDATE, EventBus
from classroom_quiz.models import (
    AdminSetting, QuizAnswer, QuizAnswerRead, QuizResults, QuizSession,
    QuizSessionRead, SessionDetail, SessionStatus, User, UserRead, utcnow,
)
from classroom_quiz.scoring import calculate_percentage, is_correct, validate_level

settings = get_settings()
logger = logging.getLogger(__name__)

USN_PATTERN = re.compile(r"^[A-Za-z]{3}\d{2}[A-Za-z]{2}\d{3}$")

COMPLETED = SessionStatus.COMPLETED.value
IN_PROGRESS = SessionStatus.IN_PROGRESS.value
ABANDONED = SessionStatus.ABANDONED.value


def clean_identity(name: Optional[str], usn: Optional[str], strict_usn: bool = False) -> tuple[str, str]:
    """Strip and validate a registration's name and USN."""
    name = (name or "").strip()
    usn = (usn or "").strip()
    if not name or not usn:
        raise ValidationError("Name and USN are required")
    if len(name) < 2:
        raise ValidationError("Name must be at least 2 characters long")
    if len(name) > 100:
        raise ValidationError("Name too long (max 100 chars)")
    if len(usn) < 3:
        raise ValidationError("USN must be at least 3 characters long")
    if strict_usn and not USN_PATTERN.match(usn):
        raise ValidationError("USN must look like ABC12DE345")
    return name, usn


def _dump(model, record) -> dict:
    return model.model_validate(record).model_dump(mode="json")


def _find_user(db: Session, name: str, usn: str) -> Optional[User]:
    return db.exec(select(User).where(User.name == name, User.usn == usn)).first()


def _open_session(db: Session, user_id: str) -> Optional[QuizSession]:
    return db.exec(
        select(QuizSession).where(
            QuizSession.user_id == user_id, QuizSession.status != ABANDONED
        )
    ).first()


def _completed_conflict(user: User, completed: QuizSession) -> ConflictError:
    return ConflictError(
        "User has already completed the quiz",
        user=_dump(UserRead, user),
        session=_dump(QuizSessionRead, completed),
    )


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_quiz_session(db: Session, session_id: str) -> QuizSession:
    quiz_session = db.get(QuizSession, session_id)
    if not quiz_session:
        raise NotFoundError("Quiz session not found")
    return quiz_session


def _require_active(db: Session, session_id: str) -> QuizSession:
    if not session_id:
        raise ValidationError("Session ID is required")
    quiz_session = get_quiz_session(db, session_id)
    if quiz_session.status != IN_PROGRESS:
        raise ConflictError("Quiz session is not active", status=quiz_session.status)
    return quiz_session


def register_user(db: Session, name: str, usn: str, email: Optional[str] = None) -> tuple[User, bool]:
    """Create a user, or return the existing one for this name and USN.

    Returns ``(user, created)``. Raises ConflictError when the existing user
    already finished the quiz.
    """
    name, usn = clean_identity(name, usn, settings.strict_usn)

    existing = _find_user(db, name, usn)
    if existing is None:
        user = User(name=name, usn=usn, email=(email or "").strip() or None)
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = _find_user(db, name, usn)
            if existing is None:
                raise
        else:
            db.refresh(user)
            logger.info("Registered %s (%s)", user.name, user.usn)
            return user, True

    open_session = _open_session(db, existing.id)
    if open_session and open_session.status == COMPLETED:
        raise _completed_conflict(existing, open_session)
    return existing, False


def quiz_enabled(db: Session) -> bool:
    setting = db.get(AdminSetting, "quiz_enabled")
    return setting is None or setting.value.strip().lower() == "true"


def start_session(db: Session, user_id: str) -> tuple[QuizSession, bool]:
    """Start or resume the user's attempt. Returns ``(session, resumed)``."""
    if not user_id:
        raise ValidationError("User ID is required")
    user = get_user(db, user_id)

    existing = _open_session(db, user_id)
    if existing and existing.status == COMPLETED:
        raise _completed_conflict(user, existing)
    if existing:
        return existing, True

    if not quiz_enabled(db):
        raise ConflictError("Quiz is currently disabled")

    quiz_session = QuizSession(user_id=user_id, total_questions=settings.total_questions)
    db.add(quiz_session)
    try:
        db.commit()
    except IntegrityError:
        # Another request opened a session for this user first
        db.rollback()
        winner = _open_session(db, user_id)
        if winner is None:
            raise
        if winner.status == COMPLETED:
            raise _completed_conflict(user, winner)
        return winner, True

    db.refresh(quiz_session)
    logger.info("Started session %s for %s", quiz_session.id, user.name)
    return quiz_session, False


def submit_answer(
    db: Session,
    session_id: str,
    question_id,
    level,
    selected_answer: Optional[int],
    correct_answer: int,
    time_taken: Optional[int] = 0,
) -> bool:
    """Record one answer and return whether it was correct."""
    level = validate_level(level)
    question_id = str(question_id if question_id is not None else "").strip()
    if not question_id or correct_answer is None:
        raise ValidationError(
            "Missing required fields: session_id, question_id, level, selected_answer, correct_answer"
        )
    time_taken = time_taken or 0
    if time_taken < 0:
        raise ValidationError("time_taken cannot be negative")

    _require_active(db, session_id)

    duplicate = db.exec(
        select(QuizAnswer).where(
            QuizAnswer.session_id == session_id,
            QuizAnswer.level == level,
            QuizAnswer.question_id == question_id,
        )
    ).first()
    if duplicate:
        raise ConflictError("Question already answered", question_id=question_id, level=level)

    correct = is_correct(selected_answer, correct_answer)
    db.add(QuizAnswer(
        session_id=session_id,
        question_id=question_id,
        level=level,
        selected_answer=selected_answer,
        correct_answer=correct_answer,
        is_correct=correct,
        time_taken=time_taken,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Question already answered", question_id=question_id, level=level)
    return correct


def complete_session(
    db: Session,
    session_id: str,
    total_time_taken: Optional[int] = 0,
    bus: Optional[EventBus] = None,
) -> tuple[QuizSession, QuizResults]:
    """Finalise an attempt from its stored answers and announce the new standings."""
    quiz_session = _require_active(db, session_id)
    user = db.get(User, quiz_session.user_id)

    # Stored answers are authoritative, never a client-side tally
    correct_count = db.exec(
        select(func.count())
        .select_from(QuizAnswer)
        .where(QuizAnswer.session_id == session_id, QuizAnswer.is_correct == True)  # noqa: E712
    ).one()
    correct_count = min(correct_count, quiz_session.total_questions)
    time_taken = max(total_time_taken or 0, 0)

    quiz_session.correct_answers = correct_count
    quiz_session.percentage = calculate_percentage(correct_count, quiz_session.total_questions)
    quiz_session.time_taken = time_taken
    quiz_session.status = COMPLETED
    quiz_session.completed_at = utcnow()
    db.add(quiz_session)
    db.commit()
    db.refresh(quiz_session)

    results = QuizResults(
        score=correct_count,
        total_questions=quiz_session.total_questions,
        percentage=quiz_session.percentage,
        time_taken=time_taken,
    )
    logger.info(
        "Session %s completed by %s: %d/%d (%d%%) in %ss",
        session_id, user.name, correct_count, results.total_questions, results.percentage, time_taken,
    )

    if bus is not None:
        bus.publish(LEADERBOARD_UPDATE, {
            "name": user.name,
            "usn": user.usn,
            "percentage": results.percentage,
            "score": results.score,
            "total_questions": results.total_questions,
        })
    return quiz_session, results


def abandon_stale(db: Session, max_age_minutes: Optional[int] = None) -> int:
    """Mark in-progress sessions older than the timeout as abandoned."""
    max_age = max_age_minutes if max_age_minutes is not None else settings.session_timeout_minutes
    cutoff = utcnow() - timedelta(minutes=max_age)
    stale = db.exec(
        select(QuizSession).where(
            QuizSession.status == IN_PROGRESS, QuizSession.started_at < cutoff
        )
    ).all()
    for quiz_session in stale:
        quiz_session.status = ABANDONED
        db.add(quiz_session)
    db.commit()
    if stale:
        logger.info("Abandoned %d stale sessions older than %d minutes", len(stale), max_age)
    return len(stale)


def get_session_detail(db: Session, session_id: str) -> SessionDetail:
    quiz_session = get_quiz_session(db, session_id)
    user = db.get(User, quiz_session.user_id)
    answers = db.exec(
        select(QuizAnswer)
        .where(QuizAnswer.session_id == session_id)
        .order_by(QuizAnswer.answered_at, QuizAnswer.id)
    ).all()
    return SessionDetail(
        **QuizSessionRead.model_validate(quiz_session).model_dump(),
        name=user.name,
        usn=user.usn,
        answers=[QuizAnswerRead.model_validate(a) for a in answers],
    )
