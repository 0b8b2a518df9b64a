from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session
from classroom_quiz.database import get_session
from classroom_quiz.models import RegisterRequest, RegisterResponse, UserRead, UserSummary
from classroom_quiz.queries import user_summaries
from classroom_quiz.sessions import get_user as fetch_user, register_user as register

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/register", response_model=RegisterResponse)
def register_user(data: RegisterRequest, response: Response, session: Session = Depends(get_session)):
    """Register a new user or return the existing one for this name and USN."""
    user, created = register(session, data.name, data.usn, data.email)
    if created:
        response.status_code = status.HTTP_201_CREATED
        message = "User registered successfully"
    else:
        message = "Welcome back! You can continue your quiz."
    return RegisterResponse(user=UserRead.model_validate(user), message=message)


@router.get("", response_model=list[UserSummary])
def list_users(session: Session = Depends(get_session)):
    """All users with attempt counts, newest first."""
    return user_summaries(session)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: str, session: Session = Depends(get_session)):
    """Get user by ID."""
    return fetch_user(session, user_id)
