"""Exception types shared across Scribe.

Cancellation is not a ScribeError: it is a terminal outcome
the orchestrator reports on the result, not a fault.
"""

from __future__ import annotations


class ScribeError(Exception):
    """Base class for Scribe failures."""


class ModelClientError(ScribeError):
    """The remote model call failed (transport error or non-200 response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GuideNotFoundError(ScribeError):
    """A craft guide could not be read."""

    def __init__(self, guide_id: str):
        super().__init__(f"Failed to load guide: {guide_id}")
        self.guide_id = guide_id


class SessionNotFoundError(ScribeError):
    def __init__(self, session_id: str):
        super().__init__(f"Conversation {session_id} not found")
        self.session_id = session_id


class InvalidMessageOrderError(ScribeError):
    """An append would break system/user/assistant alternation."""


class OperationCancelled(Exception):
    """Raised when a cancellable await observes a fired cancellation token."""

    def __init__(self, reason: str = "Cancelled"):
        super().__init__(reason)
        self.reason = reason
