"""All Pydantic data models for phaseflow.

Defines the data contracts shared by the classifier, the dependency
resolver, the execution engine and the progress store. The persisted
state file is a serialized WorkflowState.
"""

from __future__ import annotations

import enum
import math
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskType(str, enum.Enum):
    UI = "ui"
    API = "api"
    DATA_SCHEMA = "data-schema"
    TEST = "test"
    INTEGRATION = "integration"
    SCRIPT = "script"


class ComplexityLevel(str, enum.Enum):
    SIMPLE = "Simple"
    MODERATE = "Moderate"
    COMPLEX = "Complex"
    CRITICAL = "Critical"


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PriorityLabel(str, enum.Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PhaseStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({PhaseStatus.COMPLETED, PhaseStatus.SKIPPED, PhaseStatus.FAILED})


class GateDecision(str, enum.Enum):
    PASS = "pass"
    RETRY = "retry"
    ESCALATE = "escalate"


class EscalationChoice(str, enum.Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


class WorkType(str, enum.Enum):
    IMPLEMENTATION = "implementation"
    PLANNING = "planning"


# ---------------------------------------------------------------------------
# Tasks and classification
# ---------------------------------------------------------------------------

class Task(BaseModel):
    """A unit of requested work. Never mutated after construction."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    declared_type: TaskType
    estimated_minutes: int = Field(default=0, ge=0)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}".strip()


class Complexity(BaseModel):
    score: int = Field(ge=1, le=10)
    level: ComplexityLevel
    factors: list[str] = Field(default_factory=list)


class Risk(BaseModel):
    level: RiskLevel
    score: int = Field(ge=0)
    mitigations: list[str] = Field(default_factory=list)


class ResearchRequirement(BaseModel):
    required: bool = True
    category: str
    queries: list[str] = Field(default_factory=list)
    estimated_minutes: int = 0


class Dependencies(BaseModel):
    blocks: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    parallelizable: list[str] = Field(default_factory=list)


class Priority(BaseModel):
    score: int = Field(ge=0, le=100)
    label: PriorityLabel


class Subtask(BaseModel):
    """Task-like record produced by the subtask expander; id is parent_id.index."""
    id: str
    title: str
    description: str = ""
    declared_type: TaskType
    estimated_minutes: int = 0
    pattern: str = ""
    subtasks: list[Subtask] = Field(default_factory=list)


class Classification(BaseModel):
    task_id: str
    complexity: Complexity
    risk: Risk
    research: Optional[ResearchRequirement] = None
    tdd_required: bool = False
    dependencies: Dependencies = Field(default_factory=Dependencies)
    priority: Optional[Priority] = None
    subtasks: list[Subtask] = Field(default_factory=list)
    rules_version: str = ""


class ExternalSignals(BaseModel):
    """Opaque signals from collaborators outside the engine."""
    ux_plan_exists: bool = False
    component_library_known: bool = True


# ---------------------------------------------------------------------------
# Phase templates
# ---------------------------------------------------------------------------

class PhaseDefinition(BaseModel):
    name: str
    worker_role: str
    metadata_tags: list[str] = Field(default_factory=list)
    default_estimate_minutes: int = 0
    depends_on_prior_phase: bool = True


class PhaseTemplate(BaseModel):
    name: str
    phases: list[PhaseDefinition]

    def phase_names(self) -> list[str]:
        return [phase.name for phase in self.phases]


# ---------------------------------------------------------------------------
# Progress state
# ---------------------------------------------------------------------------

class PhaseInstance(BaseModel):
    name: str
    phase_number: int
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_minutes: Optional[float] = None
    tasks_completed: list[str] = Field(default_factory=list)
    files_created: list[str] = Field(default_factory=list)
    notes: str = ""
    worker_role: str = ""
    metadata_tags: list[str] = Field(default_factory=list)
    retry_count: int = 0
    depends_on_prior_phase: bool = True
    default_estimate_minutes: int = 0
    recorded_at: Optional[datetime] = None
    validated: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkflowMeta(BaseModel):
    total_phases: int = 0
    completed_phases: int = 0
    progress_percentage: int = 0


class EscalationRecord(BaseModel):
    phase_name: str
    reason: str
    attempts: int
    options: list[EscalationChoice] = Field(
        default_factory=lambda: [EscalationChoice.RETRY, EscalationChoice.SKIP, EscalationChoice.ABORT]
    )
    raised_at: datetime = Field(default_factory=_now)


class WorkflowState(BaseModel):
    change_id: str
    selected_template: str
    phases: dict[str, PhaseInstance] = Field(default_factory=dict)
    current_phase: Optional[str] = None
    meta: WorkflowMeta = Field(default_factory=WorkflowMeta)
    updated_at: datetime = Field(default_factory=_now)
    created_at: datetime = Field(default_factory=_now)
    version: int = 0
    tasks: list[Task] = Field(default_factory=list)
    classifications: dict[str, Classification] = Field(default_factory=dict)
    pre_approved: bool = False
    aborted: bool = False
    escalation: Optional[EscalationRecord] = None
    # escalations raised while another one was pending, oldest first
    queued_escalations: list[EscalationRecord] = Field(default_factory=list)

    def ordered_phases(self) -> list[PhaseInstance]:
        return sorted(self.phases.values(), key=lambda phase: phase.phase_number)

    def first_non_terminal(self) -> Optional[str]:
        for phase in self.ordered_phases():
            if not phase.is_terminal:
                return phase.name
        return None

    def all_terminal(self) -> bool:
        return all(phase.is_terminal for phase in self.phases.values())

    def promote_next_escalation(self) -> Optional[EscalationRecord]:
        """Make the oldest queued escalation the pending one."""
        self.escalation = self.queued_escalations.pop(0) if self.queued_escalations else None
        return self.escalation

    def drop_escalations(self, phase_name: str) -> None:
        self.queued_escalations = [r for r in self.queued_escalations if r.phase_name != phase_name]
        if self.escalation is not None and self.escalation.phase_name == phase_name:
            self.promote_next_escalation()

    def recompute(self, now: Optional[datetime] = None) -> None:
        """Refresh derived fields. Called on every store write."""
        total = len(self.phases)
        completed = sum(1 for p in self.phases.values() if p.status == PhaseStatus.COMPLETED)
        self.meta = WorkflowMeta(
            total_phases=total,
            completed_phases=completed,
            progress_percentage=progress_percentage(completed, total),
        )
        self.current_phase = self.first_non_terminal()
        self.updated_at = now or _now()


def progress_percentage(completed: int, total: int) -> int:
    """round(completed / total * 100) with halves rounded up."""
    if total <= 0:
        return 0
    return int(math.floor(completed / total * 100 + 0.5))


# ---------------------------------------------------------------------------
# Worker contract
# ---------------------------------------------------------------------------

class WorkerRequest(BaseModel):
    phase_name: str
    worker_role: str
    task_context: dict[str, Any] = Field(default_factory=dict)
    auto_proceed: bool = False
    attempt: int = 1
    feedback: list[str] = Field(default_factory=list)


class TestResults(BaseModel):
    __test__ = False

    passed: int = 0
    failed: int = 0


class StructuredResult(BaseModel):
    """Structured worker response contract; preferred over text heuristics."""
    completed: bool = False
    files_touched: list[str] = Field(default_factory=list)
    test_results: Optional[TestResults] = None
    readiness_reported: bool = False
    tasks_completed: list[str] = Field(default_factory=list)
    notes: str = ""


class WorkerResponse(BaseModel):
    role: str
    content: str = ""
    structured: Optional[StructuredResult] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0


class ResponseVerdict(BaseModel):
    """Output of the response sentinel: pre-work then quality checks."""
    approved: bool = False
    failure_kind: Optional[str] = None  # "validation" | "quality"
    reasons: list[str] = Field(default_factory=list)
    structured: bool = False


class PhaseResult(BaseModel):
    """What the engine records when a phase completes."""
    actual_minutes: float = 0.0
    files_created: list[str] = Field(default_factory=list)
    tasks_completed: list[str] = Field(default_factory=list)
    notes: str = ""


# ---------------------------------------------------------------------------
# Gates and outcomes
# ---------------------------------------------------------------------------

class GateResult(BaseModel):
    gate: str
    passed: bool
    reason: str = ""
    decision: Optional[GateDecision] = None
    work_type: Optional[WorkType] = None
    failure_kind: Optional[str] = None
    reasons: list[str] = Field(default_factory=list)


class PhaseOutcome(BaseModel):
    phase_name: str
    status: PhaseStatus
    attempts: int = 0
    gate_results: list[GateResult] = Field(default_factory=list)
    escalation: Optional[EscalationRecord] = None
    escalation_choice: Optional[EscalationChoice] = None
    escalation_queued: bool = False


class AdvanceResult(BaseModel):
    change_id: str
    outcomes: list[PhaseOutcome] = Field(default_factory=list)
    progress_percentage: int = 0
    current_phase: Optional[str] = None
    archived: bool = False
    escalation: Optional[EscalationRecord] = None
    queued_escalations: list[EscalationRecord] = Field(default_factory=list)
