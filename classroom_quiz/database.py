import logging
import os
from sqlalchemy.engine import make_url
from sqlmodel import SQLModel, create_engine, Session, select
from classroom_quiz.config import get_settings
from classroom_quiz.models import AdminSetting, DEFAULT_ADMIN_SETTINGS

settings = get_settings()
logger = logging.getLogger(__name__)

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if url.startswith("sqlite") and database and database != ":memory:":
        directory = os.path.dirname(database)
        if directory:
            os.makedirs(directory, exist_ok=True)


def seed_admin_settings(session: Session) -> None:
    existing = set(session.exec(select(AdminSetting.key)).all())
    for key, value in DEFAULT_ADMIN_SETTINGS.items():
        if key not in existing:
            session.add(AdminSetting(key=key, value=value))
    session.commit()


def init_db(db_engine=None):
    db_engine = db_engine or engine
    _ensure_sqlite_dir(str(db_engine.url))
    SQLModel.metadata.create_all(db_engine)
    with Session(db_engine) as session:
        seed_admin_settings(session)
    logger.info("Database ready at %s", db_engine.url)


def get_session():
    with Session(engine) as session:
        yield session
