"""Escalation handling for phases that exhaust their retries.

The engine never waits on a person. When a phase escalates it asks the
injected handler for a decision; a handler may answer immediately or
return None, in which case the escalation stays recorded on the workflow
state until the caller resolves it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from phaseflow.core.models import EscalationChoice, EscalationRecord

logger = logging.getLogger("phaseflow.orchestrator.escalation")


class EscalationHandler(ABC):
    """Decides what happens to an escalated phase."""

    @abstractmethod
    def decide(self, record: EscalationRecord) -> Optional[EscalationChoice]:
        """Return retry, skip or abort, or None to defer the decision."""


class DeferredEscalation(EscalationHandler):
    """Always defers: the escalation is returned to the caller."""

    def decide(self, record: EscalationRecord) -> Optional[EscalationChoice]:
        return None


class StaticEscalation(EscalationHandler):
    """Answers every escalation with the same choice."""

    def __init__(self, choice: EscalationChoice):
        self.choice = EscalationChoice(choice)

    def decide(self, record: EscalationRecord) -> Optional[EscalationChoice]:
        logger.info("Escalation for '%s' resolved with static choice '%s'", record.phase_name, self.choice.value)
        return self.choice


class CallableEscalation(EscalationHandler):
    """Delegates the decision to a callable (prompt, policy, test script)."""

    def __init__(self, func: Callable[[EscalationRecord], Optional[EscalationChoice]]):
        self.func = func

    def decide(self, record: EscalationRecord) -> Optional[EscalationChoice]:
        choice = self.func(record)
        return EscalationChoice(choice) if choice is not None else None
