"""Phase state machine for phaseflow.

Manages legal status transitions for phases and enforces the state graph.
Phases flow: pending → in_progress → completed | skipped | failed.
All three outcomes are terminal.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from phaseflow.core.exceptions import PhaseTransitionError
from phaseflow.core.models import PhaseInstance, PhaseStatus

logger = logging.getLogger("phaseflow.orchestrator.phase_router")

# Legal state transitions: each key maps to the set of states it can move to
VALID_TRANSITIONS: dict[PhaseStatus, set[PhaseStatus]] = {
    PhaseStatus.PENDING: {PhaseStatus.IN_PROGRESS},
    PhaseStatus.IN_PROGRESS: {PhaseStatus.COMPLETED, PhaseStatus.SKIPPED, PhaseStatus.FAILED},
    PhaseStatus.COMPLETED: set(),  # Terminal
    PhaseStatus.SKIPPED: set(),    # Terminal
    PhaseStatus.FAILED: set(),     # Terminal; only an explicit reset reopens it
}


def can_transition(from_status: PhaseStatus, to_status: PhaseStatus) -> bool:
    """Check if a transition is legal."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def transition(
    phase: PhaseInstance,
    new_status: PhaseStatus,
    now: datetime,
    reason: Optional[str] = None,
) -> PhaseInstance:
    """Move a phase to a new status in place.

    Raises:
        PhaseTransitionError: If the transition is not allowed.
    """
    if not can_transition(phase.status, new_status):
        raise PhaseTransitionError(
            f"Invalid transition: {phase.status.value} → {new_status.value} "
            f"for phase '{phase.name}'"
        )

    old_status = phase.status
    phase.status = new_status
    if new_status == PhaseStatus.IN_PROGRESS:
        phase.started_at = now
    elif new_status in (PhaseStatus.COMPLETED, PhaseStatus.SKIPPED, PhaseStatus.FAILED):
        phase.completed_at = now

    log_msg = f"Phase '{phase.name}': {old_status.value} → {new_status.value}"
    if reason:
        log_msg += f" ({reason})"
    logger.info(log_msg)
    return phase


def reset(phase: PhaseInstance, reason: str) -> PhaseInstance:
    """Administrative reset of a phase back to pending, clearing its results."""
    old_status = phase.status
    phase.status = PhaseStatus.PENDING
    phase.started_at = None
    phase.completed_at = None
    phase.actual_minutes = None
    phase.tasks_completed = []
    phase.files_created = []
    phase.retry_count = 0
    phase.validated = False
    logger.warning("Phase '%s': %s → pending (reset: %s)", phase.name, old_status.value, reason)
    return phase
