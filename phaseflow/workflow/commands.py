"""Command surface for phaseflow: setup, advance, status and run control.

``Orchestrator`` wires the classifier, template selector, progress store
and execution engine together from an AppConfig. The CLI is a thin layer
over these methods.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from pydantic import ValidationError

from phaseflow.agents.base_agent import BaseWorker, WorkerRegistry
from phaseflow.agents.sentinel import ResponseSentinel
from phaseflow.core.config import AppConfig
from phaseflow.core.exceptions import PersistenceFailure, SetupError
from phaseflow.core.models import (
    AdvanceResult,
    Classification,
    EscalationChoice,
    ExternalSignals,
    PhaseInstance,
    PhaseTemplate,
    Task,
    WorkflowState,
)
from phaseflow.orchestrator.classifier import TaskClassifier
from phaseflow.orchestrator.engine import ExecutionEngine, RunContext
from phaseflow.orchestrator.escalation import EscalationHandler
from phaseflow.orchestrator.templates import select_template
from phaseflow.workflow.status import detailed_status, quick_status
from phaseflow.workflow.store import ProgressStore

logger = logging.getLogger("phaseflow.workflow.commands")

CHANGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def load_tasks(path: Path) -> list[Task]:
    """Read tasks from a YAML or JSON file.

    The file holds either a list of task objects or a mapping with a
    ``tasks`` list.

    Raises:
        SetupError: If the file cannot be parsed or a task is invalid.
    """
    try:
        payload: Any = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise SetupError(f"Cannot read tasks from {path}: {e}") from e

    if isinstance(payload, dict):
        payload = payload.get("tasks")
    if not isinstance(payload, list):
        raise SetupError(f"{path} must contain a list of tasks or a mapping with a 'tasks' list")

    tasks: list[Task] = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise SetupError(f"Task #{index} in {path} is not a mapping")
        try:
            tasks.append(Task.model_validate(item))
        except ValidationError as e:
            raise SetupError(f"Task #{index} in {path} is invalid: {e}") from e
    return tasks


def build_phase_instances(template: PhaseTemplate) -> dict[str, PhaseInstance]:
    return {
        definition.name: PhaseInstance(
            name=definition.name,
            phase_number=number,
            worker_role=definition.worker_role,
            metadata_tags=list(definition.metadata_tags),
            default_estimate_minutes=definition.default_estimate_minutes,
            depends_on_prior_phase=definition.depends_on_prior_phase,
        )
        for number, definition in enumerate(template.phases, start=1)
    }


class Orchestrator:
    """Entry point for every workflow command."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        registry: Optional[WorkerRegistry] = None,
        escalation_handler: Optional[EscalationHandler] = None,
        clock: Optional[Callable[[], datetime]] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
        sentinel: Optional[ResponseSentinel] = None,
        driver: Optional[BaseWorker] = None,
    ):
        self.config = config or AppConfig()
        self.registry = registry or WorkerRegistry()
        self.store = ProgressStore(
            state_dir=self.config.store.state_dir,
            archive_dir=self.config.store.archive_dir,
            clock=clock,
        )
        self.classifier = TaskClassifier(
            subtask_max_depth=self.config.classifier.subtask_max_depth,
            cache_size=self.config.classifier.cache_size,
        )
        self.engine = ExecutionEngine(
            store=self.store,
            registry=self.registry,
            sentinel=sentinel,
            config=self.config.engine,
            escalation_handler=escalation_handler,
            clock=clock,
            archive_on_complete=self.config.store.archive_on_complete,
            progress_callback=progress_callback,
            driver=driver,
        )

    # -- classification ----------------------------------------------------

    def classify_tasks(
        self,
        tasks: list[Task],
        signals: Optional[ExternalSignals] = None,
    ) -> dict[str, Classification]:
        return self.classifier.classify_tasks(tasks, signals)

    # -- setup ---------------------------------------------------------------

    def setup(
        self,
        change_id: str,
        tasks: list[Task],
        pre_approved: bool = False,
        signals: Optional[ExternalSignals] = None,
        overwrite: bool = False,
    ) -> WorkflowState:
        """Classify the tasks, select a template and write the initial state.

        Raises:
            SetupError: If the change id is invalid or there are no tasks.
            DependencyViolation: If the tasks' dependencies form a cycle.
            PersistenceFailure: If state already exists and overwrite is False.
        """
        if not CHANGE_ID_PATTERN.match(change_id or ""):
            raise SetupError(
                f"Invalid change id '{change_id}': use letters, digits, '.', '_' or '-'"
            )
        if not tasks:
            raise SetupError("Setup needs at least one task")

        classifications = self.classify_tasks(tasks, signals)
        template = select_template(tasks)
        state = WorkflowState(
            change_id=change_id,
            selected_template=template.name,
            phases=build_phase_instances(template),
            tasks=list(tasks),
            classifications=classifications,
            pre_approved=pre_approved,
        )
        state = self.store.create(state, overwrite=overwrite)
        logger.info(
            "Workflow '%s' set up with template '%s' (%d phases, %d tasks)",
            change_id, template.name, len(state.phases), len(tasks),
        )
        return state

    # -- execution -----------------------------------------------------------

    def advance(self, change_id: str, pre_approved: Optional[bool] = None) -> AdvanceResult:
        state = self.store.load(change_id)
        run = RunContext(
            change_id,
            pre_approved=state.pre_approved if pre_approved is None else pre_approved,
        )
        return self.engine.advance(change_id, run)

    def resolve_escalation(self, change_id: str, choice: EscalationChoice | str) -> WorkflowState:
        return self.engine.resolve_escalation(change_id, EscalationChoice(choice))

    def abort(self, change_id: str, reason: str = "aborted by user") -> WorkflowState:
        return self.engine.abort(change_id, reason)

    def reset_phase(self, change_id: str, phase_name: str, reason: str = "manual reset") -> WorkflowState:
        return self.store.reset_phase(change_id, phase_name, reason)

    # -- status ----------------------------------------------------------------

    def load_state(self, change_id: str) -> WorkflowState:
        """Current state, falling back to the archived copy of a finished run."""
        try:
            return self.store.load(change_id)
        except PersistenceFailure:
            if self.store.archived_path_for(change_id).exists():
                return self.store.load_archived(change_id)
            raise

    def detailed_status(self, change_id: str) -> str:
        return detailed_status(self.load_state(change_id))

    def quick_status(self, change_id: str) -> str:
        return quick_status(self.load_state(change_id))
