"""Exception taxonomy shared by the runtimes and the tool layer.

Expected conditions (duplicates, unsupported item types, per-item failures)
are reported as data in responses. These exceptions cover input that is
rejected before any side effect, missing or foreign records, authorization
failures and illegal work item transitions.
"""

from __future__ import annotations


class ExperienceError(Exception):
    """Base class for errors raised by this package."""

    error_type = "ExperienceError"
    retryable = False

    def __init__(self, message: str, reasons: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reasons = list(reasons or [])


class InputValidationError(ExperienceError):
    """Malformed input rejected before any side effect occurred."""

    error_type = "InputValidationError"
    retryable = True


class NotFoundError(ExperienceError):
    """A referenced object does not exist in the caller's organization."""

    error_type = "NotFound"


class AuthorizationError(ExperienceError):
    """The request has no valid principal."""

    error_type = "Unauthorized"


class NotAutoCreatableError(ExperienceError):
    """A detected item type has no creation routine."""

    error_type = "NotAutoCreatable"

    def __init__(self, item_type: str) -> None:
        super().__init__(f"Items of type '{item_type}' cannot be auto-created yet")
        self.item_type = item_type


class WorkItemStateError(ExperienceError):
    """A work item is not in a state that allows the requested transition."""

    error_type = "WorkItemState"
