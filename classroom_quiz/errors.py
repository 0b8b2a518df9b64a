"""Domain errors; each carries the HTTP status it maps to."""

from typing import Any, Optional


class QuizError(Exception):
    status_code: int = 500

    def __init__(self, message: str, **payload: Any):
        super().__init__(message)
        self.message = message
        self.payload = payload

    def to_dict(self) -> dict:
        return {"error": self.message, **self.payload}


class ValidationError(QuizError):
    """Missing or malformed input."""

    status_code = 400


class NotFoundError(QuizError):
    """Unknown user or session."""

    status_code = 404


class ConflictError(QuizError):
    """Duplicate completed attempt, inactive session or repeated answer."""

    status_code = 409


class StorageFailure(QuizError):
    """The underlying store failed to read or write."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    def to_dict(self, include_detail: bool = False) -> dict:
        body = {"error": self.message}
        if include_detail and self.detail:
            body["details"] = self.detail
        return body
