"""Custom exception classes for the application."""

from __future__ import annotations


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class InvalidScoreError(ValidationError):
    """Raised when a score payload is malformed."""

    def __init__(self, message="Invalid score."):
        """Initialize the error."""
        super().__init__(message)


class TiedResultError(ValidationError):
    """Raised when both sides won the same number of games."""

    def __init__(self, message="A match cannot end in a tie."):
        """Initialize the error."""
        super().__init__(message)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class DuplicateSubmissionError(AppError):
    """Raised when a match already has an open score submission."""

    def __init__(self, message="A score is already awaiting confirmation."):
        """Initialize the error."""
        super().__init__(message, 409)


class UnauthorizedError(AppError):
    """Raised when the caller's role does not allow the action."""

    def __init__(self, message="Unauthorized."):
        """Initialize the error."""
        super().__init__(message, 403)


class NotEligibleError(AppError):
    """Raised when the caller is not eligible to act on this match."""

    def __init__(self, message="You are not eligible to perform this action."):
        """Initialize the error."""
        super().__init__(message, 403)


class DisputesDisabledError(AppError):
    """Raised when the tournament does not allow disputes."""

    def __init__(self, message="Disputes are disabled for this tournament."):
        """Initialize the error."""
        super().__init__(message, 403)


class AlreadyFinalError(AppError):
    """Raised when a finalized match is asked to change state."""

    def __init__(self, message="This match has already been finalized."):
        """Initialize the error."""
        super().__init__(message, 409)


class InvalidStateError(AppError):
    """Raised when a transition is not valid from the match's current state."""

    def __init__(self, message="This action is not valid for the match right now."):
        """Initialize the error."""
        super().__init__(message, 409)


class ConsistencyViolationError(AppError):
    """Raised when bracket advancement would overwrite an existing side."""

    def __init__(
        self,
        message="Bracket advancement cannot proceed without manual review.",
        match_id=None,
        target_match_id=None,
        slot=None,
    ):
        """Initialize the error."""
        super().__init__(message, 409)
        self.match_id = match_id
        self.target_match_id = target_match_id
        self.slot = slot

    def to_dict(self):
        """Return the remediation context for this violation."""
        return {
            "message": self.message,
            "matchId": self.match_id,
            "targetMatchId": self.target_match_id,
            "slot": self.slot,
        }
