"""Error taxonomy: retryable, terminal-per-job and terminal-per-session."""
from __future__ import annotations

from typing import Any


class JobPilotError(Exception):
    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


# ── Retryable ───────────────────────────────────────────────────────────

class RetryableError(JobPilotError):
    """Transient failure; safe to hand to RetryExecutor."""


class BrowserActionError(RetryableError):
    """A driver call raised, or the element was momentarily not actionable."""


class NavigationError(RetryableError):
    """Page load failed or timed out."""


# ── Terminal per job ────────────────────────────────────────────────────

class JobTerminalError(JobPilotError):
    """Ends the current job's attempt; the run moves on to the next job."""

    status = "failed"


class RequiresManualError(JobTerminalError):
    status = "requires_manual"


class RequiredFieldMissingError(JobTerminalError):
    def __init__(self, field_label: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"No value for required field: {field_label}", context)
        self.field_label = field_label


class SubmissionUncertainError(JobTerminalError):
    """Transient failure after a submit click; retrying could submit twice."""


# ── Terminal per session ────────────────────────────────────────────────

class SessionTerminalError(JobPilotError):
    """Stops the whole run; the session is persisted with status error."""


class StorageError(SessionTerminalError):
    pass


class ConfigError(SessionTerminalError):
    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message, {"problems": problems or []})
        self.problems = problems or []


# ── Invariant violations / control flow ─────────────────────────────────

class DuplicateAttemptError(JobPilotError):
    pass


class AttemptFinalizedError(JobPilotError):
    pass


class WorkflowCancelled(JobPilotError):
    """Raised at a suspension point once cancellation has been requested."""

    def __init__(self, message: str = "Cancellation requested") -> None:
        super().__init__(message)
