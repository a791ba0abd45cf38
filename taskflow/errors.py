"""
Error taxonomy for the client services.

Every error carries a user-facing `message`. Transport and platform errors
raised by the Firebase/Google SDKs or `requests` are not wrapped: they reach
the caller unchanged.
"""

from __future__ import annotations


class TaskFlowError(Exception):
    """Base class for errors the presentation layer shows to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TaskFlowError):
    """A user, project, invitation or document does not exist."""


class ConflictError(TaskFlowError):
    """The operation collides with existing state (already invited, already a member)."""


class AuthorizationError(TaskFlowError):
    """The signed-in user may not perform the operation."""


class AuthenticationError(TaskFlowError):
    """No user is signed in, or the credentials were rejected."""


class InvalidArgumentError(TaskFlowError):
    """Input failed validation before any remote call was made."""
