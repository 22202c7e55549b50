"""Validation gates consulted by the execution engine.

Each gate is a pure function returning a GateResult; the engine decides
what to do with a failure.

- Gate 1 (routing): implementation work is delegated to a worker role.
- Gate 2 (response): a worker response passed the sentinel; on failure,
  retry while attempts remain, otherwise escalate.
- Gate 3 (freshness): the phase's persisted state was written recently.
- Gate 4 (readiness): every phase ahead of the phase's group is terminal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from phaseflow.agents.sentinel import ResponseSentinel
from phaseflow.core.models import (
    GateDecision,
    GateResult,
    PhaseInstance,
    WorkerResponse,
    WorkflowState,
    WorkType,
)

logger = logging.getLogger("phaseflow.orchestrator.gates")

DRIVER = "driver"
PLANNING_TAGS = frozenset({"planning", "report"})

ROUTING = "routing"
RESPONSE = "response"
FRESHNESS = "freshness"
READINESS = "readiness"


def work_type_of(phase: PhaseInstance) -> WorkType:
    if set(phase.metadata_tags) & PLANNING_TAGS:
        return WorkType.PLANNING
    return WorkType.IMPLEMENTATION


def check_routing(
    phase_name: str,
    worker_role: str,
    executor: str,
    work_type: WorkType = WorkType.IMPLEMENTATION,
) -> GateResult:
    """Gate 1: implementation work must run on the phase's worker, never the driver."""
    if work_type == WorkType.PLANNING:
        if executor in (DRIVER, worker_role):
            return GateResult(gate=ROUTING, passed=True, work_type=work_type)
        return GateResult(
            gate=ROUTING,
            passed=False,
            work_type=work_type,
            reason=f"planning phase '{phase_name}' routed to '{executor}', expected driver or '{worker_role}'",
        )

    if not worker_role:
        return GateResult(
            gate=ROUTING,
            passed=False,
            work_type=work_type,
            reason=f"phase '{phase_name}' has no worker role",
        )
    if executor != worker_role:
        return GateResult(
            gate=ROUTING,
            passed=False,
            work_type=work_type,
            reason=f"implementation phase '{phase_name}' must be delegated to '{worker_role}', not '{executor}'",
        )
    return GateResult(gate=ROUTING, passed=True, work_type=work_type)


def check_response(
    response: WorkerResponse,
    role: str,
    retry_count: int,
    max_retries: int,
    sentinel: Optional[ResponseSentinel] = None,
) -> GateResult:
    """Gate 2: audit a worker response.

    ``retry_count`` is the number of failed attempts already recorded in the
    current streak. A failure is retried while ``retry_count < max_retries``;
    the failure after that escalates.
    """
    verdict = (sentinel or ResponseSentinel()).audit(response, role)
    if verdict.approved:
        return GateResult(gate=RESPONSE, passed=True, decision=GateDecision.PASS)

    decision = GateDecision.RETRY if retry_count < max_retries else GateDecision.ESCALATE
    return GateResult(
        gate=RESPONSE,
        passed=False,
        decision=decision,
        failure_kind=verdict.failure_kind,
        reasons=verdict.reasons,
        reason="; ".join(verdict.reasons),
    )


def check_freshness(
    state: WorkflowState,
    phase_name: str,
    now: datetime,
    window_seconds: int,
) -> GateResult:
    """Gate 3: the phase's record must have been written within the window."""
    phase = state.phases.get(phase_name)
    if phase is None:
        return GateResult(gate=FRESHNESS, passed=False, reason=f"unknown phase '{phase_name}'")
    if phase.recorded_at is None:
        return GateResult(gate=FRESHNESS, passed=False, reason=f"phase '{phase_name}' was never persisted")

    age = now - phase.recorded_at
    if age > timedelta(seconds=window_seconds):
        return GateResult(
            gate=FRESHNESS,
            passed=False,
            reason=f"phase '{phase_name}' state is {int(age.total_seconds())}s old (window {window_seconds}s)",
        )
    return GateResult(gate=FRESHNESS, passed=True)


def parallel_group(state: WorkflowState, phase_name: str) -> list[str]:
    """Names of the phases dispatched together with ``phase_name``.

    A group is a leading phase followed by consecutive phases that do not
    depend on their prior phase.
    """
    ordered = state.ordered_phases()
    names = [phase.name for phase in ordered]
    index = names.index(phase_name)

    start = index
    while start > 0 and not ordered[start].depends_on_prior_phase:
        start -= 1
    end = index + 1
    while end < len(ordered) and not ordered[end].depends_on_prior_phase:
        end += 1
    return names[start:end]


def check_phase_ready(state: WorkflowState, phase_name: str) -> GateResult:
    """Gate 4: the phase is pending work whose predecessors are all terminal."""
    phase = state.phases.get(phase_name)
    if phase is None:
        return GateResult(gate=READINESS, passed=False, reason=f"unknown phase '{phase_name}'")
    if state.aborted:
        return GateResult(gate=READINESS, passed=False, reason="run was aborted")
    if phase.is_terminal:
        return GateResult(
            gate=READINESS,
            passed=False,
            reason=f"phase '{phase_name}' is already {phase.status.value}",
        )
    if not phase.worker_role:
        return GateResult(gate=READINESS, passed=False, reason=f"phase '{phase_name}' has no worker role")

    group_start = state.phases[parallel_group(state, phase_name)[0]].phase_number
    blocking = [
        p.name for p in state.ordered_phases()
        if p.phase_number < group_start and not p.is_terminal
    ]
    if blocking:
        return GateResult(
            gate=READINESS,
            passed=False,
            reason=f"prerequisite phases not terminal: {', '.join(blocking)}",
        )
    return GateResult(gate=READINESS, passed=True)
