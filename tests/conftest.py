"""Shared fixtures for phaseflow tests.

Workers are real in-process BaseWorker subclasses that replay scripted
responses; state lives in tmp_path. No mocks.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Union

import pytest
from dotenv import load_dotenv

# Load .env from project root so local overrides apply to config tests
load_dotenv(Path(__file__).parent.parent / ".env", override=False)

from phaseflow.agents.base_agent import BaseWorker, WorkerRegistry
from phaseflow.core.config import AppConfig, EngineConfig, load_config
from phaseflow.core.models import (
    StructuredResult,
    Task,
    TaskType,
    TestResults,
    WorkerRequest,
    WorkerResponse,
    WorkflowState,
)
from phaseflow.orchestrator.templates import TEMPLATES, get_template
from phaseflow.workflow.commands import build_phase_instances
from phaseflow.workflow.store import ProgressStore


# ---------------------------------------------------------------------------
# Canned worker output
# ---------------------------------------------------------------------------

PASSING_TEXT = (
    "Readiness report: requirements reviewed, root cause identified, test plan drafted.\n"
    "Created src/app/login.py and modified src/app/routes.py.\n"
    "```python\n"
    "def login(user):\n"
    "    return user.is_active\n"
    "```\n"
    "Tests: 12 passed, 0 failed.\n"
    "Phase complete."
)

FAILING_TEXT = "I had a look at the code and will continue later."

ALL_ROLES = sorted({phase.worker_role for template in TEMPLATES.values() for phase in template.phases})


def passing_structured(files: list[str] | None = None) -> StructuredResult:
    return StructuredResult(
        completed=True,
        files_touched=files or ["src/app/login.py"],
        test_results=TestResults(passed=4, failed=0),
        readiness_reported=True,
        tasks_completed=["t1"],
        notes="done",
    )


# ---------------------------------------------------------------------------
# Scripted workers and clock
# ---------------------------------------------------------------------------

Scripted = Union[str, WorkerResponse, Exception]


class ScriptedWorker(BaseWorker):
    """Replays a list of responses in order; the last one repeats."""

    def __init__(self, role: str, script: list[Scripted] | None = None):
        super().__init__(name=f"Scripted-{role}", role=role)
        self.script = list(script or [PASSING_TEXT])
        self.requests: list[WorkerRequest] = []
        self._lock = threading.Lock()

    def process(self, request: WorkerRequest) -> WorkerResponse:
        with self._lock:
            self.requests.append(request)
            item = self.script[min(len(self.requests), len(self.script)) - 1]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, WorkerResponse):
            return item.model_copy(deep=True)
        return WorkerResponse(role=self.role, content=item)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_registry(overrides: dict[str, ScriptedWorker] | None = None) -> WorkerRegistry:
    registry = WorkerRegistry()
    for role in ALL_ROLES:
        registry.register(ScriptedWorker(role))
    for role, worker in (overrides or {}).items():
        registry.register(worker, role=role)
    return registry


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path, tmp_path: Path) -> AppConfig:
    config = load_config(config_dir=config_dir)
    config.store.state_dir = str(tmp_path / "state")
    config.store.archive_dir = str(tmp_path / "archive")
    return config


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(max_retries=2, freshness_window_seconds=60, max_parallel_workers=2)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> ProgressStore:
    return ProgressStore(tmp_path / "state", tmp_path / "archive", clock=clock)


@pytest.fixture
def make_workflow(store: ProgressStore):
    """Create and persist a workflow for one of the fixed templates."""

    def _make(template_name: str = "backend-only", change_id: str = "chg-1", pre_approved: bool = False) -> WorkflowState:
        template = get_template(template_name)
        state = WorkflowState(
            change_id=change_id,
            selected_template=template.name,
            phases=build_phase_instances(template),
            tasks=[Task(id="t1", title="Create POST /api/login", declared_type=TaskType.API)],
            pre_approved=pre_approved,
        )
        return store.create(state)

    return _make


# ---------------------------------------------------------------------------
# Task fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def login_tasks() -> list[Task]:
    return [
        Task(id="ui-1", title="Build login form", declared_type=TaskType.UI, estimated_minutes=45),
        Task(id="api-1", title="Create POST /api/login", declared_type=TaskType.API, estimated_minutes=60),
    ]
