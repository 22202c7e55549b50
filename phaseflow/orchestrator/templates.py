"""Phase templates and the template selector.

Each template is a fixed, ordered list of phases with a default worker
role and time estimate. A phase with ``depends_on_prior_phase=False`` runs
in parallel with the phase before it (fork/join in the engine).

Selection over the aggregate task set, first match wins:
  1. bug-fix        — any task mentions fix/bug/issue/error/crash
  2. refactor       — any task mentions refactor/extract/improve/optimize
  3. script-only    — every task is script-like and none is ui/api/schema
  4. full-stack     — ui and api/schema tasks together
  5. frontend-only  — ui only;  backend-only — api/schema only
  6. full-stack     — fallback (safest superset)
"""

from __future__ import annotations

import logging

from phaseflow.core.models import PhaseDefinition, PhaseTemplate, Task, TaskType
from phaseflow.orchestrator import rules

logger = logging.getLogger("phaseflow.orchestrator.templates")

BUG_FIX = "bug-fix"
REFACTOR = "refactor"
SCRIPT_ONLY = "script-only"
FULL_STACK = "full-stack"
FRONTEND_ONLY = "frontend-only"
BACKEND_ONLY = "backend-only"


def _phase(
    name: str,
    role: str,
    minutes: int,
    *tags: str,
    parallel: bool = False,
) -> PhaseDefinition:
    return PhaseDefinition(
        name=name,
        worker_role=role,
        metadata_tags=list(tags),
        default_estimate_minutes=minutes,
        depends_on_prior_phase=not parallel,
    )


_REQUIREMENTS = _phase("requirements-analysis", "reviewer", 15, "planning")
_MOCKUP = _phase("frontend-mockup", "ui-builder", 90, "frontend", "mockup")
_MOCKUP_REVIEW = _phase("mockup-review", "reviewer", 15, "frontend", "review")
_API_CONTRACT = _phase("api-contract", "integrator", 20, "backend", "contract")
_BACKEND = _phase("backend", "api-builder", 120, "backend")
_DATABASE = _phase("database", "schema-builder", 30, "backend", "database", parallel=True)
_BACKEND_TESTS = _phase("backend-unit-tests", "tester", 30, "backend", "tests")
_CONTRACT_CHECK = _phase("integration-contract-check", "integrator", 10, "integration", "contract")
_FRONTEND = _phase("frontend-implementation", "ui-builder", 90, "frontend")
_API_INTEGRATION = _phase("api-integration", "integrator", 45, "integration")
_FRONTEND_TESTS = _phase("frontend-unit-tests", "tester", 30, "frontend", "tests")
_E2E = _phase("e2e-tests", "tester", 45, "tests", "e2e")
_ACCESSIBILITY = _phase("accessibility-review", "reviewer", 20, "frontend", "review")
_PERFORMANCE = _phase("performance-review", "reviewer", 20, "review")
_SECURITY = _phase("security-review", "reviewer", 20, "review", "security")
_BUG_FIXES = _phase("bug-fixes", "debugger", 30, "fix")
_REGRESSION = _phase("regression-tests", "tester", 20, "tests")
_DOCS = _phase("documentation", "integrator", 15, "docs")
_FINAL_REPORT = _phase("final-report", "integrator", 10, "report")

TEMPLATES: dict[str, PhaseTemplate] = {
    BUG_FIX: PhaseTemplate(name=BUG_FIX, phases=[
        _phase("reproduce", "tester", 15, "fix", "tests"),
        _phase("root-cause-analysis", "debugger", 20, "fix"),
        _phase("fix-implementation", "debugger", 30, "fix"),
        _REGRESSION,
        _FINAL_REPORT,
    ]),
    REFACTOR: PhaseTemplate(name=REFACTOR, phases=[
        _phase("baseline-tests", "tester", 20, "tests"),
        _phase("refactor-implementation", "refactorer", 60, "refactor"),
        _REGRESSION,
        _FINAL_REPORT,
    ]),
    SCRIPT_ONLY: PhaseTemplate(name=SCRIPT_ONLY, phases=[
        _REQUIREMENTS,
        _phase("script-design", "reviewer", 15, "script", "planning"),
        _phase("script-implementation", "script-builder", 60, "script"),
        _phase("script-tests", "tester", 20, "script", "tests"),
        _phase("error-handling-review", "reviewer", 15, "script", "review"),
        _DOCS,
        _FINAL_REPORT,
    ]),
    FULL_STACK: PhaseTemplate(name=FULL_STACK, phases=[
        _REQUIREMENTS,
        _MOCKUP,
        _MOCKUP_REVIEW,
        _API_CONTRACT,
        _BACKEND,
        _DATABASE,
        _BACKEND_TESTS,
        _CONTRACT_CHECK,
        _FRONTEND,
        _API_INTEGRATION,
        _FRONTEND_TESTS,
        _E2E,
        _ACCESSIBILITY,
        _PERFORMANCE,
        _SECURITY,
        _BUG_FIXES,
        _REGRESSION,
        _DOCS,
        _FINAL_REPORT,
    ]),
    FRONTEND_ONLY: PhaseTemplate(name=FRONTEND_ONLY, phases=[
        _REQUIREMENTS,
        _MOCKUP,
        _MOCKUP_REVIEW,
        _FRONTEND,
        _phase("state-management", "ui-builder", 30, "frontend"),
        _FRONTEND_TESTS,
        _ACCESSIBILITY,
        _E2E,
        _BUG_FIXES,
        _DOCS,
        _FINAL_REPORT,
    ]),
    BACKEND_ONLY: PhaseTemplate(name=BACKEND_ONLY, phases=[
        _REQUIREMENTS,
        _API_CONTRACT,
        _BACKEND,
        _DATABASE,
        _BACKEND_TESTS,
        _CONTRACT_CHECK,
        _SECURITY,
        _BUG_FIXES,
        _DOCS,
        _FINAL_REPORT,
    ]),
}


def get_template(name: str) -> PhaseTemplate:
    try:
        return TEMPLATES[name].model_copy(deep=True)
    except KeyError:
        raise KeyError(f"Unknown phase template '{name}'. Known: {', '.join(sorted(TEMPLATES))}") from None


def _is_script_like(task: Task) -> bool:
    return task.declared_type == TaskType.SCRIPT or rules.SCRIPT_RULE.matches(task.text)


def select_template_name(tasks: list[Task]) -> str:
    """Pick the template name for the aggregate task set."""
    if any(rules.BUG_FIX_RULE.matches(task.text) for task in tasks):
        return BUG_FIX
    if any(rules.REFACTOR_RULE.matches(task.text) for task in tasks):
        return REFACTOR

    types = {task.declared_type for task in tasks}
    has_ui = TaskType.UI in types
    has_backend = bool(types & {TaskType.API, TaskType.DATA_SCHEMA})

    if tasks and all(_is_script_like(task) for task in tasks) and not has_ui and not has_backend:
        return SCRIPT_ONLY
    if has_ui and has_backend:
        return FULL_STACK
    if has_ui:
        return FRONTEND_ONLY
    if has_backend:
        return BACKEND_ONLY
    return FULL_STACK


def select_template(tasks: list[Task]) -> PhaseTemplate:
    name = select_template_name(tasks)
    logger.info("Selected '%s' template for %d tasks", name, len(tasks))
    return get_template(name)
