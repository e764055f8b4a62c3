"""
Recommendation error taxonomy.

Every error the engine surfaces derives from RecommendationError and
carries the HTTP status the API maps it to, a short machine-readable
code, and whether the caller may retry.

    NotFoundError               404  user or product absent
    NoHistoryError              409  user has no interactions (cold-start path)
    MissingPreconditionError    400  e.g. outfit without anchor product or gender
    ModelUnavailableError       503  no fresh model and inline training disabled
    CorruptPersistedEntryError  ---  skipped per entry while loading state
"""

from typing import Optional


class RecommendationError(Exception):
    """Base class for recommendation engine errors."""

    status_code: int = 500
    code: str = "recommendation_error"
    retryable: bool = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(RecommendationError):
    """User or product does not exist."""

    status_code = 404
    code = "not_found"


class NoHistoryError(RecommendationError):
    """User exists but has no interaction history."""

    status_code = 409
    code = "no_history"


class MissingPreconditionError(RecommendationError):
    """Request cannot be served as asked (missing anchor, gender, strategy...)."""

    status_code = 400
    code = "missing_precondition"


class ModelUnavailableError(RecommendationError):
    """
    No usable model state.

    Raised in strict offline mode when persisted state is missing or stale;
    the caller should run offline training and retry.
    """

    status_code = 503
    code = "model_unavailable"
    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None, **details):
        super().__init__(message, **details)
        self.retry_after = retry_after


class CorruptPersistedEntryError(RecommendationError):
    """A single persisted vector/document entry could not be decoded."""

    code = "corrupt_persisted_entry"

    def __init__(self, entry_id: str, reason: str):
        super().__init__(f"Corrupt persisted entry {entry_id!r}: {reason}", entry_id=entry_id)
        self.entry_id = entry_id
        self.reason = reason
