from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/quiz_game.db"
    app_host: str = "0.0.0.0"
    app_port: int = 3001
    environment: str = "development"
    admin_token: str = "admin2050"
    client_url: str = "http://localhost:5173"
    log_level: str = "INFO"
    total_questions: int = 20
    session_timeout_minutes: int = 60
    strict_usn: bool = False
    reset_confirmation: str = "YES_DELETE_ALL_DATA"
    question_bank_path: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()
