from fastapi import APIRouter, Depends
from sqlmodel import Session
from classroom_quiz.analytics import classroom_stats, level_stats
from classroom_quiz.database import get_session
from classroom_quiz.events import EventBus, get_event_bus
from classroom_quiz.models import (
    AdminSetting, AnswerResult, AnswerSubmit, CompleteRequest, CompleteResponse,
    QuizSessionRead, SessionDetail, StartRequest, StartResponse,
)
from classroom_quiz.queries import all_sessions, all_users, completed_answers
from classroom_quiz.scoring import QUESTION_BANK, question_count
from classroom_quiz.sessions import (
    complete_session, get_session_detail, start_session, submit_answer,
)

router = APIRouter(prefix="/api/quiz", tags=["quiz"])


@router.get("/questions")
def get_questions(session: Session = Depends(get_session)):
    """The fixed question bank, level by level, with the per-question time limit."""
    time_limit = session.get(AdminSetting, "quiz_time_limit")
    return {
        "success": True,
        "levels": QUESTION_BANK,
        "total_questions": question_count(),
        "time_limit": int(time_limit.value) if time_limit else 30,
    }


@router.post("/start", response_model=StartResponse)
def start(data: StartRequest, session: Session = Depends(get_session)):
    """Start a quiz session, or resume the one already in progress."""
    quiz_session, resumed = start_session(session, data.user_id)
    return StartResponse(
        session_id=quiz_session.id,
        resumed=resumed,
        message="Resuming existing quiz session" if resumed else "Quiz session started successfully",
    )


@router.post("/answer", response_model=AnswerResult)
def answer(data: AnswerSubmit, session: Session = Depends(get_session)):
    """Record a single answer."""
    correct = submit_answer(
        session,
        data.session_id,
        data.question_id,
        data.level,
        data.selected_answer,
        data.correct_answer,
        data.time_taken,
    )
    return AnswerResult(is_correct=correct)


@router.post("/complete", response_model=CompleteResponse)
def complete(
    data: CompleteRequest,
    session: Session = Depends(get_session),
    bus: EventBus = Depends(get_event_bus),
):
    """Score the session from its stored answers and notify live leaderboards."""
    quiz_session, results = complete_session(session, data.session_id, data.total_time_taken, bus)
    return CompleteResponse(session=QuizSessionRead.model_validate(quiz_session), results=results)


@router.get("/session/{session_id}", response_model=SessionDetail)
def get_quiz_session(session_id: str, session: Session = Depends(get_session)):
    """A session with its answers in the order they were given."""
    return get_session_detail(session, session_id)


@router.get("/stats")
def get_stats(session: Session = Depends(get_session)):
    """Classroom totals plus accuracy per level."""
    return {
        "success": True,
        "stats": {
            **classroom_stats(all_users(session), all_sessions(session)),
            "level_stats": level_stats(completed_answers(session)),
        },
    }
