import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


TOTAL_QUESTIONS = 20


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Some drivers hand back naive values; stored timestamps are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Level(str, Enum):
    HTML = "html"
    CSS = "css"
    JAVASCRIPT = "javascript"
    REACT = "react"


LEVEL_ORDER = [level.value for level in Level]


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


DISPLAY_STATUS = {
    SessionStatus.COMPLETED.value: "Completed",
    SessionStatus.IN_PROGRESS.value: "In Progress",
    SessionStatus.ABANDONED.value: "Abandoned",
    SessionStatus.NOT_STARTED.value: "Not Started",
}


# --- Tables ---

class UserBase(SQLModel):
    name: str = Field(index=True)
    usn: str = Field(index=True)
    email: Optional[str] = None


class User(UserBase, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("name", "usn", name="uq_users_name_usn"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)


class QuizSessionBase(SQLModel):
    user_id: str = Field(foreign_key="users.id", index=True)
    status: str = Field(default=SessionStatus.IN_PROGRESS.value, index=True)
    total_questions: int = TOTAL_QUESTIONS
    correct_answers: int = 0
    percentage: int = 0
    time_taken: Optional[int] = None  # seconds
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None, index=True)


class QuizSession(QuizSessionBase, table=True):
    __tablename__ = "quiz_sessions"
    # One open (in progress or completed) session per user
    __table_args__ = (
        Index(
            "uq_quiz_sessions_user_open",
            "user_id",
            unique=True,
            sqlite_where=text("status != 'abandoned'"),
            postgresql_where=text("status != 'abandoned'"),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)


class QuizAnswerBase(SQLModel):
    session_id: str = Field(foreign_key="quiz_sessions.id", index=True)
    question_id: str
    level: str
    selected_answer: Optional[int] = None
    correct_answer: int
    is_correct: bool
    time_taken: int = 0  # seconds
    answered_at: datetime = Field(default_factory=utcnow)


class QuizAnswer(QuizAnswerBase, table=True):
    __tablename__ = "quiz_answers"
    __table_args__ = (
        UniqueConstraint("session_id", "level", "question_id", name="uq_quiz_answers_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)


class AdminSetting(SQLModel, table=True):
    __tablename__ = "admin_settings"

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=utcnow)


DEFAULT_ADMIN_SETTINGS = {
    "quiz_time_limit": "30",
    "quiz_enabled": "true",
    "max_attempts": "1",
    "show_results_immediately": "true",
}


# --- Records shared with the local store ---

class UserRead(UserBase):
    id: str
    created_at: datetime


class QuizSessionRead(QuizSessionBase):
    id: str


class QuizAnswerRead(QuizAnswerBase):
    id: Optional[int] = None


class LeaderboardEntry(SQLModel):
    user_id: str
    name: str
    usn: str
    status: str = SessionStatus.NOT_STARTED.value
    display_status: str = DISPLAY_STATUS[SessionStatus.NOT_STARTED.value]
    percentage: int = 0
    score: int = 0
    total_questions: int = TOTAL_QUESTIONS
    time_taken: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rank: Optional[int] = None


class SessionActivity(SQLModel):
    session_id: str
    name: str
    usn: str
    status: str
    percentage: int = 0
    time_taken: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    questions_answered: int = 0


# --- Pydantic request/response schemas ---

class RegisterRequest(SQLModel):
    name: str
    usn: str
    email: Optional[str] = None


class RegisterResponse(SQLModel):
    success: bool = True
    user: UserRead
    message: str


class UserSummary(UserRead):
    quiz_attempts: int = 0
    best_score: Optional[int] = None
    last_attempt: Optional[datetime] = None


class StartRequest(SQLModel):
    user_id: str


class StartResponse(SQLModel):
    success: bool = True
    session_id: str
    resumed: bool = False
    message: str


class AnswerSubmit(SQLModel):
    session_id: str
    question_id: Union[int, str]
    level: Level
    selected_answer: Optional[int] = None
    correct_answer: int
    time_taken: int = 0


class AnswerResult(SQLModel):
    success: bool = True
    is_correct: bool
    message: str = "Answer submitted successfully"


class CompleteRequest(SQLModel):
    session_id: str
    total_time_taken: int = 0


class QuizResults(SQLModel):
    score: int
    total_questions: int
    percentage: int
    time_taken: int


class SessionDetail(QuizSessionRead):
    name: str
    usn: str
    answers: list[QuizAnswerRead] = []


class CompleteResponse(SQLModel):
    success: bool = True
    session: QuizSessionRead
    results: QuizResults
    message: str = "Quiz completed successfully"


class Pagination(SQLModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class LeaderboardResponse(SQLModel):
    success: bool = True
    leaderboard: list[LeaderboardEntry]
    pagination: Pagination


class LiveLeaderboardResponse(SQLModel):
    success: bool = True
    live_data: list[LeaderboardEntry]
    summary: dict[str, Any]


class UserRankResponse(SQLModel):
    success: bool = True
    user_session: LeaderboardEntry
    context_users: list[LeaderboardEntry]


class ResetRequest(SQLModel):
    confirm_reset: Optional[str] = None


class SettingUpdate(SQLModel):
    value: str
