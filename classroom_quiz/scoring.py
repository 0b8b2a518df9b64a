import os
import yaml
from typing import Optional
from classroom_quiz.config import get_settings
from classroom_quiz.errors import ValidationError
from classroom_quiz.models import LEVEL_ORDER, TOTAL_QUESTIONS

settings = get_settings()

# Load the question bank from YAML
_questions_file = settings.question_bank_path or os.path.join(
    os.path.dirname(__file__), "questions.yaml"
)
with open(_questions_file, "r", encoding="utf-8") as f:
    QUESTION_BANK: dict[str, dict] = yaml.safe_load(f).get("levels", {})


def question_count() -> int:
    return sum(len(level.get("questions", [])) for level in QUESTION_BANK.values())


def find_question(level: str, question_id: str) -> Optional[dict]:
    """Look up a question in the bank by level and id."""
    for q in QUESTION_BANK.get(level, {}).get("questions", []):
        if str(q["id"]) == str(question_id):
            return q
    return None


def validate_level(level) -> str:
    """Normalise a level value to its string form, rejecting unknown levels."""
    value = getattr(level, "value", level)
    if value not in LEVEL_ORDER:
        raise ValidationError(
            f"Unknown level '{value}'", allowed_levels=LEVEL_ORDER
        )
    return value


def is_correct(selected_answer: Optional[int], correct_answer: int) -> bool:
    return selected_answer is not None and selected_answer == correct_answer


def calculate_percentage(correct_answers: int, total_questions: int = TOTAL_QUESTIONS) -> int:
    """
    Percentage of the fixed question total, rounded half up.
    Missing answers count as wrong: the denominator never shrinks.
    """
    if total_questions <= 0:
        return 0
    return (200 * correct_answers + total_questions) // (2 * total_questions)


def success_rate(correct: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(correct / total * 100, 2)
