"""Execution engine for phaseflow.

Drives a workflow through its template phases:
  readiness → routing → dispatch → response check → retry | escalate → complete

Each phase gets ``max_retries`` retries after its first attempt. A phase
that keeps failing escalates exactly once per streak with three options
(retry, skip, abort). Consecutive phases that do not depend on their
prior phase are dispatched together and joined before the run continues.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Optional

from phaseflow.agents.base_agent import BaseWorker, WorkerRegistry
from phaseflow.agents.sentinel import ResponseSentinel
from phaseflow.core.config import EngineConfig
from phaseflow.core.exceptions import (
    DependencyViolation,
    PhaseTransitionError,
    RunAborted,
    WorkerNotFoundError,
)
from phaseflow.core.models import (
    AdvanceResult,
    EscalationChoice,
    EscalationRecord,
    GateDecision,
    GateResult,
    PhaseInstance,
    PhaseOutcome,
    PhaseResult,
    PhaseStatus,
    WorkerRequest,
    WorkerResponse,
    WorkflowState,
)
from phaseflow.llm.response_parser import extract_file_paths, normalize_error_signature
from phaseflow.orchestrator import phase_router
from phaseflow.orchestrator.escalation import DeferredEscalation, EscalationHandler
from phaseflow.orchestrator.gates import (
    DRIVER,
    check_freshness,
    check_phase_ready,
    check_response,
    check_routing,
    parallel_group,
    work_type_of,
)
from phaseflow.workflow.store import ProgressStore, append_note, utc_now

logger = logging.getLogger("phaseflow.orchestrator.engine")


class RunContext:
    """Per-run session flags passed explicitly through the engine.

    ``auto_proceed`` lets workers skip their confirmation step; it holds only
    while the run was pre-approved and nothing has failed yet.
    """

    def __init__(self, change_id: str, pre_approved: bool = False):
        self.change_id = change_id
        self.pre_approved = pre_approved
        self._had_failure = threading.Event()

    @property
    def had_failure(self) -> bool:
        return self._had_failure.is_set()

    def mark_failure(self) -> None:
        self._had_failure.set()

    @property
    def auto_proceed(self) -> bool:
        return self.pre_approved and not self.had_failure


class ExecutionEngine:
    """Dispatches phases to workers and records their outcomes.

    Injected dependencies:
        store: Progress store holding the workflow state.
        registry: Worker registry keyed by worker role.
        sentinel: Response sentinel used by the response gate.
        config: Engine configuration (retries, freshness window, pool size).
        escalation_handler: Decides escalations; defers by default.
        clock: Time source for freshness checks.
        archive_on_complete: Move the state file to the archive when every phase is terminal.
        progress_callback: Optional sink for human-readable progress lines.
        driver: Optional worker that runs planning phases whose role has no
            registered worker. Implementation phases never run on it.
    """

    def __init__(
        self,
        store: ProgressStore,
        registry: WorkerRegistry,
        sentinel: Optional[ResponseSentinel] = None,
        config: Optional[EngineConfig] = None,
        escalation_handler: Optional[EscalationHandler] = None,
        clock: Optional[Callable[[], datetime]] = None,
        archive_on_complete: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None,
        driver: Optional[BaseWorker] = None,
    ):
        self.store = store
        self.registry = registry
        self.sentinel = sentinel or ResponseSentinel()
        self.config = config or EngineConfig()
        self.escalation_handler = escalation_handler or DeferredEscalation()
        self.clock = clock or utc_now
        self.archive_on_complete = archive_on_complete
        self.progress_callback = progress_callback
        self.driver = driver

    def _notify(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def advance(self, change_id: str, run: Optional[RunContext] = None) -> AdvanceResult:
        """Run phases until the workflow finishes, escalates or aborts.

        Raises:
            RunAborted: If the run was aborted and not reset.
            PersistenceFailure: If the state file is missing or corrupt.
        """
        state = self.store.load(change_id)
        run = run or RunContext(change_id, pre_approved=state.pre_approved)
        outcomes: list[PhaseOutcome] = []

        while True:
            step_outcomes = self.advance_next(change_id, run)
            outcomes.extend(step_outcomes)
            if not step_outcomes:
                break
            if any(o.status not in (PhaseStatus.COMPLETED, PhaseStatus.SKIPPED) for o in step_outcomes):
                break

        return self._summarize(change_id, outcomes)

    def advance_next(self, change_id: str, run: Optional[RunContext] = None) -> list[PhaseOutcome]:
        """Run the next phase, or the next parallel group, and return its outcomes.

        Returns an empty list when nothing can be dispatched: every phase is
        terminal or an escalation is waiting for a decision.
        """
        state = self.store.load(change_id)
        run = run or RunContext(change_id, pre_approved=state.pre_approved)
        if state.aborted:
            raise RunAborted(
                f"Workflow '{change_id}' was aborted",
                remedy="reset the failed phase to resume the run",
            )
        if state.escalation is not None:
            logger.warning(
                "Workflow '%s' has a pending escalation on '%s'; resolve it before advancing",
                change_id, state.escalation.phase_name,
            )
            return []

        current = state.current_phase
        if current is None:
            return []

        group = [
            name for name in parallel_group(state, current)
            if not state.phases[name].is_terminal
        ]
        if len(group) > 1:
            return self.run_group(run, group)
        return [self.run_phase(run, current)]

    def _summarize(self, change_id: str, outcomes: list[PhaseOutcome]) -> AdvanceResult:
        state = self.store.load(change_id)
        archived = False
        if self.archive_on_complete and state.all_terminal() and not state.aborted:
            self.store.archive(change_id)
            archived = True
            self._notify(f"Workflow '{change_id}' complete and archived")
        return AdvanceResult(
            change_id=change_id,
            outcomes=outcomes,
            progress_percentage=state.meta.progress_percentage,
            current_phase=state.current_phase,
            archived=archived,
            escalation=state.escalation,
            queued_escalations=list(state.queued_escalations),
        )

    # ------------------------------------------------------------------
    # Fork / join
    # ------------------------------------------------------------------

    def run_group(self, run: RunContext, phase_names: list[str]) -> list[PhaseOutcome]:
        """Dispatch independent phases concurrently and wait for all of them.

        Members that exhausted their retries while another member's
        escalation was pending are settled one at a time after the join.
        """
        workers = min(self.config.max_parallel_workers, len(phase_names))
        logger.info("Dispatching parallel group %s (%d workers)", phase_names, workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="phaseflow-phase") as pool:
            futures = [pool.submit(self.run_phase, run, name) for name in phase_names]
            wait(futures)

        outcomes: list[PhaseOutcome] = [future.result() for future in futures]
        rounds: dict[str, int] = {}
        while True:
            state = self.store.load(run.change_id)
            pending = state.escalation
            if state.aborted or pending is None:
                break
            index = next(
                (i for i, o in enumerate(outcomes) if o.escalation_queued and o.phase_name == pending.phase_name),
                None,
            )
            if index is None:
                break
            rounds[pending.phase_name] = rounds.get(pending.phase_name, 0) + 1
            outcomes[index] = self._settle_queued(
                run, outcomes[index], pending, ask=rounds[pending.phase_name] <= self.config.max_escalation_rounds,
            )
        return outcomes

    def _settle_queued(
        self, run: RunContext, outcome: PhaseOutcome, pending: EscalationRecord, ask: bool = True,
    ) -> PhaseOutcome:
        """Put a queued escalation that has become pending to the handler."""
        choice = self.escalation_handler.decide(pending) if ask else None
        if choice is None:
            return outcome.model_copy(update={"escalation": pending, "escalation_queued": False})

        state = self.resolve_escalation(run.change_id, choice)
        if choice == EscalationChoice.RETRY:
            rerun = self._drive(run, outcome.phase_name, escalation_rounds=1)
            return rerun.model_copy(update={
                "attempts": outcome.attempts + rerun.attempts,
                "gate_results": outcome.gate_results + rerun.gate_results,
                "escalation": rerun.escalation or pending,
                "escalation_choice": rerun.escalation_choice or choice,
            })
        return outcome.model_copy(update={
            "status": state.phases[outcome.phase_name].status,
            "escalation": pending,
            "escalation_choice": choice,
            "escalation_queued": False,
        })

    # ------------------------------------------------------------------
    # Single phase
    # ------------------------------------------------------------------

    def run_phase(self, run: RunContext, phase_name: str) -> PhaseOutcome:
        """Drive one phase through dispatch, validation, retries and escalation.

        Raises:
            DependencyViolation: If the phase's prerequisites are not terminal.
            WorkerNotFoundError: If no worker serves the phase's role.
        """
        return self._drive(run, phase_name)

    def _select_worker(self, phase: PhaseInstance) -> tuple[GateResult, BaseWorker]:
        role = phase.worker_role
        executor = role if self.registry.has(role) else DRIVER
        routing = check_routing(phase.name, role, executor, work_type_of(phase))
        if not routing.passed:
            raise WorkerNotFoundError(f"{routing.reason}; register a worker for role '{role}'")
        if executor == role:
            return routing, self.registry.get(role)
        if self.driver is None:
            raise WorkerNotFoundError(
                f"No worker registered for role '{role}' and no driver configured for "
                f"planning phase '{phase.name}'. Registered: {', '.join(self.registry.roles()) or 'none'}"
            )
        return routing, self.driver

    def _drive(self, run: RunContext, phase_name: str, escalation_rounds: int = 0) -> PhaseOutcome:
        change_id = run.change_id
        state = self.store.load(change_id)
        phase = state.phases.get(phase_name)
        if phase is None:
            raise PhaseTransitionError(f"Unknown phase '{phase_name}' in workflow '{change_id}'")
        gate_results: list[GateResult] = []

        ready = check_phase_ready(state, phase_name)
        gate_results.append(ready)
        if not ready.passed:
            raise DependencyViolation(
                f"Phase '{phase_name}' is not ready: {ready.reason}",
                remedy="complete, skip or reset the prerequisite phases first",
            )

        role = phase.worker_role
        routing, worker = self._select_worker(phase)
        gate_results.append(routing)

        if phase.status == PhaseStatus.PENDING:
            state = self.store.mark_in_progress(change_id, phase_name)
            phase = state.phases[phase_name]
        self._notify(f"▶ {phase_name} → {role if worker is not self.driver else DRIVER}")

        feedback: list[str] = []
        attempts = 0
        elapsed_seconds = 0.0
        escalation: Optional[EscalationRecord] = None
        choice: Optional[EscalationChoice] = None

        while True:
            attempts += 1
            request = WorkerRequest(
                phase_name=phase_name,
                worker_role=role,
                task_context=self._task_context(state, phase),
                auto_proceed=run.auto_proceed,
                attempt=phase.retry_count + 1,
                feedback=list(feedback),
            )
            response = worker.invoke(request)
            elapsed_seconds += response.duration_seconds
            verdict = check_response(
                response, role, phase.retry_count, self.config.max_retries, self.sentinel,
            )
            gate_results.append(verdict)

            if verdict.passed:
                return self._complete(
                    run, phase_name, response, attempts, elapsed_seconds, gate_results, escalation, choice,
                )

            run.mark_failure()
            signature = normalize_error_signature(verdict.reason)
            if verdict.decision == GateDecision.RETRY:
                logger.warning(
                    "Phase '%s' attempt %d rejected (%s): %s",
                    phase_name, request.attempt, verdict.failure_kind, signature,
                )
                state = self.store.increment_retry(
                    change_id, phase_name,
                    note=f"attempt {request.attempt} rejected ({verdict.failure_kind}): {signature}",
                )
                phase = state.phases[phase_name]
                feedback.append(f"Attempt {request.attempt} was rejected: {verdict.reason}")
                self._notify(f"↻ {phase_name} retry {phase.retry_count}/{self.config.max_retries}")
                continue

            escalation = EscalationRecord(
                phase_name=phase_name,
                reason=verdict.reason,
                attempts=request.attempt,
                raised_at=self.clock(),
            )
            state = self.store.record_escalation(change_id, escalation)
            logger.warning(
                "Phase '%s' escalated after %d attempts: %s", phase_name, escalation.attempts, signature,
            )
            self._notify(f"⚠ {phase_name} escalated after {escalation.attempts} attempts")

            owns_escalation = state.escalation is not None and state.escalation.phase_name == phase_name
            if not owns_escalation:
                return PhaseOutcome(
                    phase_name=phase_name,
                    status=state.phases[phase_name].status,
                    attempts=attempts,
                    gate_results=gate_results,
                    escalation=escalation,
                    escalation_queued=True,
                )

            escalation_rounds += 1
            choice = None
            if escalation_rounds <= self.config.max_escalation_rounds:
                choice = self.escalation_handler.decide(escalation)
            if choice is None:
                state = self.store.load(change_id)
                return PhaseOutcome(
                    phase_name=phase_name,
                    status=state.phases[phase_name].status,
                    attempts=attempts,
                    gate_results=gate_results,
                    escalation=escalation,
                )

            state = self.resolve_escalation(change_id, choice)
            phase = state.phases[phase_name]
            if choice == EscalationChoice.RETRY:
                feedback.append(f"Escalation resolved with retry after: {verdict.reason}")
                continue
            return PhaseOutcome(
                phase_name=phase_name,
                status=phase.status,
                attempts=attempts,
                gate_results=gate_results,
                escalation=escalation,
                escalation_choice=choice,
            )

    def _complete(
        self,
        run: RunContext,
        phase_name: str,
        response: WorkerResponse,
        attempts: int,
        elapsed_seconds: float,
        gate_results: list[GateResult],
        escalation: Optional[EscalationRecord],
        choice: Optional[EscalationChoice],
    ) -> PhaseOutcome:
        change_id = run.change_id
        structured = self.sentinel.structured_of(response)
        if structured is not None:
            files = list(structured.files_touched)
            tasks_completed = list(structured.tasks_completed)
            notes = structured.notes
        else:
            files = extract_file_paths(response.content)
            tasks_completed = []
            notes = ""
        if attempts > 1:
            notes = f"{notes}\npassed on attempt {attempts}".strip()

        self.store.mark_validated(change_id, phase_name)
        state = self.store.mark_completed(
            change_id,
            phase_name,
            PhaseResult(
                actual_minutes=round(elapsed_seconds / 60.0, 2),
                files_created=files,
                tasks_completed=tasks_completed,
                notes=notes,
            ),
        )

        freshness = check_freshness(state, phase_name, self.clock(), self.config.freshness_window_seconds)
        gate_results.append(freshness)
        if not freshness.passed:
            logger.warning("Freshness check failed for '%s': %s", phase_name, freshness.reason)
            state = self.store.touch_phase(change_id, phase_name, now=self.clock())
            freshness = check_freshness(state, phase_name, self.clock(), self.config.freshness_window_seconds)
            gate_results.append(freshness)

        logger.info("Phase '%s' completed (%d%% overall)", phase_name, state.meta.progress_percentage)
        self._notify(f"✓ {phase_name} ({state.meta.progress_percentage}%)")
        return PhaseOutcome(
            phase_name=phase_name,
            status=PhaseStatus.COMPLETED,
            attempts=attempts,
            gate_results=gate_results,
            escalation=escalation,
            escalation_choice=choice,
        )

    @staticmethod
    def _task_context(state: WorkflowState, phase: PhaseInstance) -> dict[str, Any]:
        return {
            "change_id": state.change_id,
            "template": state.selected_template,
            "phase": {
                "name": phase.name,
                "phase_number": phase.phase_number,
                "metadata_tags": list(phase.metadata_tags),
                "default_estimate_minutes": phase.default_estimate_minutes,
            },
            "tasks": [task.model_dump(mode="json") for task in state.tasks],
            "classifications": {
                task_id: classification.model_dump(mode="json")
                for task_id, classification in state.classifications.items()
            },
        }

    # ------------------------------------------------------------------
    # Escalation resolution / abort
    # ------------------------------------------------------------------

    def resolve_escalation(self, change_id: str, choice: EscalationChoice) -> WorkflowState:
        """Apply a decision to the pending escalation.

        retry starts a new retry streak, skip moves the phase to skipped,
        abort fails the phase and halts the run. Earlier phases are untouched.

        Raises:
            PhaseTransitionError: If nothing is escalated or the choice is not offered.
        """
        choice = EscalationChoice(choice)
        with self.store.transaction(change_id) as state:
            record = state.escalation
            if record is None:
                raise PhaseTransitionError(f"Workflow '{change_id}' has no pending escalation")
            if choice not in record.options:
                raise PhaseTransitionError(
                    f"'{choice.value}' is not an option for this escalation "
                    f"({', '.join(o.value for o in record.options)})"
                )
            phase = state.phases[record.phase_name]
            now = self.clock()
            if choice == EscalationChoice.RETRY:
                phase.retry_count = 0
                phase.notes = append_note(phase.notes, "escalation: retry with a new streak")
            elif choice == EscalationChoice.SKIP:
                phase_router.transition(phase, PhaseStatus.SKIPPED, now, reason="escalation")
                phase.notes = append_note(phase.notes, f"escalation: skipped after {record.attempts} attempts")
            else:
                phase_router.transition(phase, PhaseStatus.FAILED, now, reason="escalation")
                phase.notes = append_note(phase.notes, f"escalation: aborted after {record.attempts} attempts")
                state.aborted = True
            phase.recorded_at = now
            state.promote_next_escalation()

        logger.warning("Escalation on '%s' resolved: %s", record.phase_name, choice.value)
        return state

    def abort(self, change_id: str, reason: str = "aborted by user") -> WorkflowState:
        """Fail the in-progress phase (if any) and halt the run."""
        with self.store.transaction(change_id) as state:
            now = self.clock()
            for phase in state.ordered_phases():
                if phase.status == PhaseStatus.IN_PROGRESS:
                    phase_router.transition(phase, PhaseStatus.FAILED, now, reason=reason)
                    phase.notes = append_note(phase.notes, f"failed: {reason}")
                    phase.recorded_at = now
            state.aborted = True
            state.escalation = None
            state.queued_escalations = []
        logger.warning("Workflow '%s' aborted: %s", change_id, reason)
        return state
