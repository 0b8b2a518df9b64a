import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from classroom_quiz.config import get_settings
from classroom_quiz.database import get_session, seed_admin_settings
from classroom_quiz.main import app
from classroom_quiz.scoring import QUESTION_BANK

# (level, question id, correct option) for all 20 questions, in quiz order
QUESTIONS = [
    (level, str(q["id"]), q["correct"])
    for level, data in QUESTION_BANK.items()
    for q in data["questions"]
]


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        seed_admin_settings(session)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(engine):
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": get_settings().admin_token}


@pytest.fixture
def questions():
    return list(QUESTIONS)


@pytest.fixture
def play(client):
    """Register, start, answer all 20 questions and complete; returns the completion body."""

    def _play(name, usn, correct=20, total_time=600, complete=True):
        user = client.post("/api/users/register", json={"name": name, "usn": usn}).json()["user"]
        session_id = client.post("/api/quiz/start", json={"user_id": user["id"]}).json()["session_id"]
        for i, (level, question_id, right) in enumerate(QUESTIONS):
            response = client.post("/api/quiz/answer", json={
                "session_id": session_id,
                "question_id": question_id,
                "level": level,
                "selected_answer": right if i < correct else (right + 1) % 4,
                "correct_answer": right,
                "time_taken": 10,
            })
            assert response.status_code == 200
        if not complete:
            return {"user": user, "session_id": session_id}
        response = client.post("/api/quiz/complete", json={
            "session_id": session_id, "total_time_taken": total_time,
        })
        assert response.status_code == 200
        return {"user": user, "session_id": session_id, **response.json()}

    return _play
