"""
Error hierarchy for laborhire.

Validation errors are raised before any backend call. Conflict errors are
mapped from the backend's unique-constraint code so views can show a
specific message instead of a generic failure.
"""

from typing import Any, Optional


class LaborHireError(Exception):
    """Base exception for client-side failures."""

    # Short headline a view can show above the message
    title = "Error"


class ValidationError(LaborHireError):
    """Input was rejected client-side; nothing was sent to the backend."""


class NotAuthenticatedError(LaborHireError):
    """The operation needs a signed-in user with a loaded profile."""

    title = "Not Signed In"


class PermissionDeniedError(LaborHireError):
    """The current user lacks the role or ownership the operation needs."""

    title = "Permission Denied"


class VerificationRequiredError(PermissionDeniedError):
    """The profile must be verified by an administrator first."""

    title = "Verification Required"


class NotFoundError(LaborHireError):
    """A referenced row does not exist (or is hidden by row-level security)."""


class AlreadyExistsError(LaborHireError):
    """A uniqueness rule enforced by the backend was hit."""

    def __init__(self, message: str, existing: Optional[Any] = None):
        super().__init__(message)
        self.existing = existing


class AlreadyAppliedError(AlreadyExistsError):
    title = "Already Applied"


class AlreadyPaidError(AlreadyExistsError):
    title = "Payment Already Exists"


class AlreadyReviewedError(AlreadyExistsError):
    title = "Review Already Exists"
