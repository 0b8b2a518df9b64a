import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from classroom_quiz.config import get_settings
from classroom_quiz.database import init_db
from classroom_quiz.errors import QuizError, StorageFailure
from classroom_quiz.logging_config import configure_logging
from classroom_quiz.models import utcnow
from classroom_quiz import realtime
from classroom_quiz.routers import admin, leaderboard, quiz, users

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    logger.info("Classroom quiz running (%s)", settings.environment)
    yield


app = FastAPI(
    title="Classroom Quiz",
    description="Classroom quiz with live leaderboard and admin analytics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

# Routers
app.include_router(users.router)
app.include_router(quiz.router)
app.include_router(leaderboard.router)
app.include_router(admin.router)
app.include_router(realtime.router)


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    if isinstance(exc, StorageFailure):
        body = exc.to_dict(include_detail=settings.is_development)
    else:
        body = exc.to_dict()
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    failure = StorageFailure("Storage failure", detail=str(exc))
    return await quiz_error_handler(request, failure)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


def run():
    import uvicorn

    uvicorn.run("classroom_quiz.main:app", host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    run()
