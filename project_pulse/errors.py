"""
Named error types for Project Pulse.

Every error carries a stable ``code`` string so callers (CLI, HTTP layer,
process run log) can branch on the failure kind without parsing messages.

Validation errors (bad status, bad window, bad feedback) are raised
synchronously and must not be retried. ``CorruptedStateError`` is raised
instead of silently resetting a project's signal state.
"""

from __future__ import annotations

from typing import Optional


class PulseError(RuntimeError):
    """Base class for all Project Pulse errors.

    Attributes:
        code: Stable machine-readable error code.
    """

    code: str = "pulse_error"


class CorruptedStateError(PulseError):
    """Raised when a persisted signal state cannot be parsed.

    Attributes:
        project_id: Project whose state row is corrupted.
        reason:     Short description of what failed (JSON, schema, version).
    """

    code = "signal_state_corrupted"

    def __init__(self, project_id: Optional[str], reason: str) -> None:
        self.project_id = project_id
        self.reason = reason
        super().__init__(
            f"Signal state for project '{project_id}' is corrupted: {reason}. "
            "Rebuild it by replaying the event log from an empty state."
        )


class InvalidWindowError(PulseError, ValueError):
    """Raised when a similarity window is not one of 7, 14 or 30 days."""

    code = "invalid_window"

    def __init__(self, window_days: object) -> None:
        self.window_days = window_days
        super().__init__(
            f"Invalid similarity window {window_days!r}; expected one of 7, 14, 30."
        )


class InvalidStatusError(PulseError, ValueError):
    """Raised on a recommendation status outside the allowed set."""

    code = "invalid_recommendation_status"

    def __init__(self, status: object) -> None:
        self.status = status
        super().__init__(
            f"Invalid recommendation status {status!r}; "
            "expected one of new, acknowledged, done, dismissed."
        )


class InvalidFeedbackError(PulseError, ValueError):
    """Raised on a recommendation feedback value outside the allowed set."""

    code = "invalid_recommendation_feedback"

    def __init__(self, feedback: object) -> None:
        self.feedback = feedback
        super().__init__(
            f"Invalid recommendation feedback {feedback!r}; "
            "expected one of helpful, not_helpful, unknown."
        )


class ProjectNotFoundError(PulseError, LookupError):
    """Raised when an operation targets an unregistered project."""

    code = "project_not_found"

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project '{project_id}' is not registered.")


class RecommendationNotFoundError(PulseError, LookupError):
    """Raised when a status or feedback update targets a missing recommendation."""

    code = "recommendation_not_found"

    def __init__(self, project_id: str, recommendation_id: int) -> None:
        self.project_id = project_id
        self.recommendation_id = recommendation_id
        super().__init__(
            f"Recommendation {recommendation_id} not found for project '{project_id}'."
        )


class TemplateGenerationError(PulseError):
    """Raised by a template generator when drafting fails."""

    code = "template_generation_failed"
