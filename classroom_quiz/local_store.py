"""Serverless quiz: state lives in named slots of a JSON document.

Processes sharing one file do not coordinate; the last writer wins.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from classroom_quiz import analytics
from classroom_quiz.errors import ConflictError, NotFoundError, StorageFailure, ValidationError
from classroom_quiz.events import LEADERBOARD_UPDATE, STORE_CHANGE, EventBus
from classroom_quiz.export import results_to_csv
from classroom_quiz.models import (
    TOTAL_QUESTIONS, LeaderboardEntry, QuizAnswerRead,
    QuizResults, QuizSessionRead, SessionActivity, SessionDetail,
    SessionStatus, UserRead, as_utc, new_id, utcnow,
)
from classroom_quiz.queries import to_entry
from classroom_quiz.ranking import find_entry, live_view, rank_of, rank_window, top
from classroom_quiz.scoring import calculate_percentage, is_correct, validate_level
from classroom_quiz.sessions import clean_identity

logger = logging.getLogger(__name__)

SLOTS = ("users", "sessions", "leaderboard", "analytics", "settings")

DEFAULT_SETTINGS = {
    "quiz_enabled": True,
    "max_attempts": 1,
    "time_limit": 30,
    "total_questions": TOTAL_QUESTIONS,
}

COMPLETED = SessionStatus.COMPLETED.value
IN_PROGRESS = SessionStatus.IN_PROGRESS.value
ABANDONED = SessionStatus.ABANDONED.value


class ObservableStore:
    """Named JSON slots with synchronous change notifications."""

    def __init__(self, path: Optional[str | Path] = None, bus: Optional[EventBus] = None):
        self.path = Path(path) if path else None
        self.bus = bus or EventBus()
        self._data: dict[str, Any] = {}
        self._initialize()

    @staticmethod
    def _default(slot: str) -> Any:
        if slot == "settings":
            return {**DEFAULT_SETTINGS, "created_at": utcnow().isoformat()}
        if slot == "analytics":
            return {}
        return []

    def _initialize(self) -> None:
        data = self._load()
        missing = [slot for slot in SLOTS if slot not in data]
        for slot in missing:
            data[slot] = self._default(slot)
        if missing or self.path is None:
            self._save(data)

    def _load(self) -> dict[str, Any]:
        if self.path is not None and self.path.exists():
            try:
                text = self.path.read_text(encoding="utf-8")
                return json.loads(text) if text.strip() else {}
            except (OSError, ValueError) as e:
                logger.error("Could not read quiz store %s: %s", self.path, e)
                raise StorageFailure("Storage failure", detail=str(e)) from e
        return copy.deepcopy(self._data)

    def _save(self, data: dict[str, Any]) -> None:
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            except OSError as e:
                logger.error("Could not write quiz store %s: %s", self.path, e)
                raise StorageFailure("Storage failure", detail=str(e)) from e
        self._data = data

    def read(self, slot: str) -> Any:
        if slot not in SLOTS:
            raise KeyError(slot)
        return self._load().get(slot, self._default(slot))

    def write(self, slot: str, value: Any) -> None:
        if slot not in SLOTS:
            raise KeyError(slot)
        data = self._load()
        data[slot] = value
        self._save(data)
        self.bus.publish(STORE_CHANGE, {"key": slot, "data": copy.deepcopy(value)})

    def subscribe(self, callback: Callable[[str, Any], None]) -> Callable[[], None]:
        """Receive ``(topic, {"key": slot, "data": value})`` after every write."""
        return self.bus.subscribe(STORE_CHANGE, callback)

    def unsubscribe(self, callback: Callable[[str, Any], None]) -> None:
        self.bus.unsubscribe(STORE_CHANGE, callback)

    def clear(self) -> None:
        for slot in SLOTS:
            self.write(slot, self._default(slot))


def _json(model) -> dict:
    return model.model_dump(mode="json")


class LocalQuizService:
    """Quiz operations over an ``ObservableStore``."""

    def __init__(
        self,
        store: ObservableStore,
        reset_confirmation: str = "YES_DELETE_ALL_DATA",
        strict_usn: bool = False,
    ):
        self.store = store
        self.reset_confirmation = reset_confirmation
        self.strict_usn = strict_usn

    # --- records ---

    def get_users(self) -> list[UserRead]:
        return [UserRead.model_validate(u) for u in self.store.read("users")]

    def get_user(self, user_id: str) -> UserRead:
        for user in self.get_users():
            if user.id == user_id:
                return user
        raise NotFoundError("User not found")

    def _raw_sessions(self) -> list[dict]:
        return self.store.read("sessions")

    @staticmethod
    def _session(raw: dict) -> QuizSessionRead:
        return QuizSessionRead.model_validate({k: v for k, v in raw.items() if k != "answers"})

    @staticmethod
    def _answers(raw: dict) -> list[QuizAnswerRead]:
        return [QuizAnswerRead.model_validate(a) for a in raw.get("answers", [])]

    def get_sessions(self) -> list[QuizSessionRead]:
        return [self._session(raw) for raw in self._raw_sessions()]

    def _find_raw(self, sessions: list[dict], session_id: str) -> int:
        for index, raw in enumerate(sessions):
            if raw["id"] == session_id:
                return index
        raise NotFoundError("Quiz session not found")

    def _open_session(self, user_id: str) -> Optional[QuizSessionRead]:
        for quiz_session in self.get_sessions():
            if quiz_session.user_id == user_id and quiz_session.status != ABANDONED:
                return quiz_session
        return None

    def _completed_conflict(self, user: UserRead, quiz_session: QuizSessionRead) -> ConflictError:
        return ConflictError(
            "User has already completed the quiz",
            user=_json(user),
            session=_json(quiz_session),
        )

    def _entries(self, include_not_started: bool = False) -> list[LeaderboardEntry]:
        users = {u.id: u for u in self.get_users()}
        entries = []
        for s in self.get_sessions():
            user = users.get(s.user_id)
            if user is None:
                continue
            entries.append(to_entry(user, s))
        if include_not_started:
            started = {e.user_id for e in entries}
            entries.extend(to_entry(u) for u in users.values() if u.id not in started)
        return entries

    def _completed_answers(self) -> list[QuizAnswerRead]:
        return [
            answer
            for raw in self._raw_sessions()
            if raw.get("status") == COMPLETED
            for answer in self._answers(raw)
        ]

    # --- registration and the session lifecycle ---

    def register_user(self, name: str, usn: str, email: Optional[str] = None) -> dict:
        name, usn = clean_identity(name, usn, self.strict_usn)
        for user in self.get_users():
            if user.name == name and user.usn == usn:
                open_session = self._open_session(user.id)
                if open_session and open_session.status == COMPLETED:
                    raise self._completed_conflict(user, open_session)
                return {"success": True, "user": user, "created": False, "message": "Welcome back!"}

        user = UserRead(id=new_id(), name=name, usn=usn, email=(email or "").strip() or None, created_at=utcnow())
        users = self.store.read("users")
        users.append(_json(user))
        self.store.write("users", users)
        logger.info("Registered %s (%s) locally", user.name, user.usn)
        return {"success": True, "user": user, "created": True, "message": "User registered successfully"}

    def start_quiz(self, user_id: str) -> dict:
        user = self.get_user(user_id)
        existing = self._open_session(user_id)
        if existing and existing.status == COMPLETED:
            raise self._completed_conflict(user, existing)
        if existing:
            return {"success": True, "session_id": existing.id, "resumed": True}

        if not self.store.read("settings").get("quiz_enabled", True):
            raise ConflictError("Quiz is currently disabled")

        total = self.store.read("settings").get("total_questions", TOTAL_QUESTIONS)
        quiz_session = QuizSessionRead(id=new_id(), user_id=user_id, total_questions=total)
        sessions = self._raw_sessions()
        sessions.append({**_json(quiz_session), "answers": []})
        self.store.write("sessions", sessions)
        return {"success": True, "session_id": quiz_session.id, "resumed": False}

    def submit_answer(
        self,
        session_id: str,
        question_id,
        level,
        selected_answer: Optional[int],
        correct_answer: int,
        time_taken: Optional[int] = 0,
    ) -> dict:
        level = validate_level(level)
        question_id = str(question_id if question_id is not None else "").strip()
        if not question_id or correct_answer is None:
            raise ValidationError("Missing required fields")
        time_taken = time_taken or 0
        if time_taken < 0:
            raise ValidationError("time_taken cannot be negative")

        sessions = self._raw_sessions()
        raw = sessions[self._find_raw(sessions, session_id)]
        if raw["status"] != IN_PROGRESS:
            raise ConflictError("Quiz session is not active", status=raw["status"])
        answers = raw.setdefault("answers", [])
        if any(a["level"] == level and a["question_id"] == question_id for a in answers):
            raise ConflictError("Question already answered", question_id=question_id, level=level)

        answer = QuizAnswerRead(
            id=len(answers) + 1,
            session_id=session_id,
            question_id=question_id,
            level=level,
            selected_answer=selected_answer,
            correct_answer=correct_answer,
            is_correct=is_correct(selected_answer, correct_answer),
            time_taken=time_taken,
        )
        answers.append(_json(answer))
        self.store.write("sessions", sessions)
        return {"success": True, "is_correct": answer.is_correct}

    def complete_quiz(self, session_id: str, total_time_taken: Optional[int] = 0) -> dict:
        sessions = self._raw_sessions()
        index = self._find_raw(sessions, session_id)
        raw = sessions[index]
        if raw["status"] != IN_PROGRESS:
            raise ConflictError("Quiz session is not active", status=raw["status"])

        quiz_session = self._session(raw)
        correct = min(sum(1 for a in self._answers(raw) if a.is_correct), quiz_session.total_questions)
        time_taken = max(total_time_taken or 0, 0)
        quiz_session = quiz_session.model_copy(update={
            "correct_answers": correct,
            "percentage": calculate_percentage(correct, quiz_session.total_questions),
            "time_taken": time_taken,
            "status": COMPLETED,
            "completed_at": utcnow(),
        })
        sessions[index] = {**_json(quiz_session), "answers": raw.get("answers", [])}
        self.store.write("sessions", sessions)

        user = self.get_user(quiz_session.user_id)
        self._refresh_views()
        results = QuizResults(
            score=correct,
            total_questions=quiz_session.total_questions,
            percentage=quiz_session.percentage,
            time_taken=time_taken,
        )
        self.store.bus.publish(LEADERBOARD_UPDATE, {
            "name": user.name,
            "usn": user.usn,
            "percentage": results.percentage,
            "score": results.score,
            "total_questions": results.total_questions,
        })
        return {"success": True, "session": quiz_session, "results": results}

    def _refresh_views(self) -> None:
        # Materialised copies for subscribers; reads always recompute
        ranked = top(self._entries(), limit=len(self.get_sessions()) or 1)
        self.store.write("leaderboard", [_json(e) for e in ranked])
        self.store.write("analytics", analytics.question_report(self._completed_answers()))

    def abandon_stale(self, max_age_minutes: int = 60) -> int:
        cutoff = utcnow() - timedelta(minutes=max_age_minutes)
        sessions = self._raw_sessions()
        count = 0
        for raw in sessions:
            if raw["status"] == IN_PROGRESS and as_utc(self._session(raw).started_at) < cutoff:
                raw["status"] = ABANDONED
                count += 1
        if count:
            self.store.write("sessions", sessions)
        return count

    def get_session(self, session_id: str) -> SessionDetail:
        sessions = self._raw_sessions()
        raw = sessions[self._find_raw(sessions, session_id)]
        quiz_session = self._session(raw)
        user = self.get_user(quiz_session.user_id)
        return SessionDetail(
            **quiz_session.model_dump(),
            name=user.name,
            usn=user.usn,
            answers=self._answers(raw),
        )

    # --- leaderboard ---

    def get_leaderboard(self, limit: int = 50, offset: int = 0) -> list[LeaderboardEntry]:
        return top(self._entries(), limit, offset)

    def get_live_leaderboard(self) -> dict:
        return {
            "success": True,
            "live_data": live_view(self._entries(include_not_started=True)),
            "summary": self.classroom_stats(),
        }

    def get_user_rank(self, user_id: str) -> dict:
        entries = [e for e in self._entries() if e.status == COMPLETED]
        entry = find_entry(entries, user_id)
        if entry is None:
            raise NotFoundError("No completed quiz found for this user")
        rank = rank_of(entry, entries)
        return {
            "success": True,
            "user_session": entry.model_copy(update={"rank": rank}),
            "context_users": rank_window(entries, rank),
        }

    # --- admin views ---

    def classroom_stats(self) -> dict:
        return analytics.classroom_stats(self.get_users(), self.get_sessions())

    def question_analytics(self) -> dict:
        return {"success": True, **analytics.question_report(self._completed_answers())}

    def _activities(self) -> list[SessionActivity]:
        users = {u.id: u for u in self.get_users()}
        activities = []
        for raw in self._raw_sessions():
            s = self._session(raw)
            user = users.get(s.user_id)
            activities.append(SessionActivity(
                session_id=s.id,
                name=user.name if user else "Unknown",
                usn=user.usn if user else "Unknown",
                status=s.status,
                percentage=s.percentage,
                time_taken=s.time_taken,
                started_at=s.started_at,
                completed_at=s.completed_at,
                questions_answered=len(raw.get("answers", [])),
            ))
        return activities

    def dashboard(self) -> dict:
        return {
            "success": True,
            "dashboard": analytics.dashboard(
                self.get_users(),
                self.get_sessions(),
                self._completed_answers(),
                self._activities(),
            ),
        }

    def export_results(self) -> str:
        return results_to_csv(self._entries())

    def reset_data(self, confirm_reset: Optional[str]) -> dict:
        if confirm_reset != self.reset_confirmation:
            raise ValidationError(
                f'Reset confirmation required. Pass "{self.reset_confirmation}"'
            )
        self.store.clear()
        logger.warning("Local quiz data reset")
        return {"success": True, "message": "All data has been reset successfully"}

    def health_check(self) -> dict:
        sessions = self.get_sessions()
        return {
            "success": True,
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "stats": {
                "total_users": len(self.get_users()),
                "total_sessions": len(sessions),
                "completed_sessions": sum(1 for s in sessions if s.status == COMPLETED),
            },
        }
