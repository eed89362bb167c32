"""Face/name recall quiz: question selection, options, scoring, promotion."""

from facenote.quiz.engine import QuizEngine
from facenote.quiz.session import (
    OPTION_COUNT,
    AnswerResult,
    QuizQuestion,
    QuizSession,
    is_placeholder,
)

__all__ = [
    "OPTION_COUNT",
    "AnswerResult",
    "QuizEngine",
    "QuizQuestion",
    "QuizSession",
    "is_placeholder",
]
