"""Custom exception hierarchy for phaseflow.

All exceptions inherit from PhaseflowError so callers can catch broadly
or narrowly as needed. Recoverable failures are retried by the execution
engine; fatal workflow errors surface immediately with a remedy.
"""

from typing import Optional


class PhaseflowError(Exception):
    """Base exception for all phaseflow errors."""


# ---------------------------------------------------------------------------
# Recoverable: retried with feedback by the execution engine
# ---------------------------------------------------------------------------

class RecoverableFailure(PhaseflowError):
    """A worker response failed validation and may be retried."""

    def __init__(self, reasons: list[str], message: Optional[str] = None):
        self.reasons = list(reasons)
        super().__init__(message or "; ".join(self.reasons))


class ValidationFailure(RecoverableFailure):
    """Worker response is missing required pre-work markers."""


class QualityFailure(RecoverableFailure):
    """Worker response is missing completion, files, tests, or has unresolved errors."""


# ---------------------------------------------------------------------------
# Fatal: never retried silently
# ---------------------------------------------------------------------------

class FatalWorkflowError(PhaseflowError):
    """Workflow invariant violated; carries the remedial action for the user."""

    def __init__(self, message: str, remedy: str):
        self.remedy = remedy
        super().__init__(f"{message} (remedy: {remedy})")


class PersistenceFailure(FatalWorkflowError):
    """State file missing, corrupt, or stale past the freshness window."""


class DependencyViolation(FatalWorkflowError):
    """Phase prerequisites not terminal, or a cycle in the dependency graph."""

    def __init__(self, message: str, remedy: str, cycle: Optional[list[str]] = None):
        self.cycle = list(cycle or [])
        super().__init__(message, remedy)


class RunAborted(FatalWorkflowError):
    """The run was aborted; no further phases are dispatched until a reset."""


# ---------------------------------------------------------------------------
# State machine / setup
# ---------------------------------------------------------------------------

class PhaseTransitionError(PhaseflowError):
    """Illegal phase status transition."""


class SetupError(PhaseflowError):
    """Workflow setup rejected its input."""


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

class WorkerError(PhaseflowError):
    """Worker invocation failure."""


class WorkerTimeoutError(WorkerError):
    """Worker exceeded its wall-clock timeout."""


class WorkerNotFoundError(WorkerError):
    """No worker registered for the requested role."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(PhaseflowError):
    """Invalid or missing configuration."""
