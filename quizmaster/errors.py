"""Exception taxonomy for the quiz engine."""
from __future__ import annotations


class QuizError(Exception):
    pass


class FetchError(QuizError):
    """Question load failed: backend unreachable or the query itself failed."""


class EvaluationError(QuizError):
    """Explanation or essay grading failed.

    ``status`` carries the upstream HTTP status when there was a response.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class PersistenceError(QuizError):
    pass


class QuizStateError(QuizError):
    """Operation not allowed in the session's current state."""
