"""Tests for phaseflow/orchestrator/templates.py — phase templates and selection."""

import pytest

from phaseflow.core.models import Task, TaskType
from phaseflow.orchestrator.templates import (
    TEMPLATES,
    get_template,
    select_template,
    select_template_name,
)


def _task(title: str, declared_type: TaskType) -> Task:
    return Task(id=title[:8], title=title, declared_type=declared_type)


class TestTemplates:
    @pytest.mark.parametrize("name,count", [
        ("bug-fix", 5),
        ("refactor", 4),
        ("script-only", 7),
        ("full-stack", 19),
        ("frontend-only", 11),
        ("backend-only", 10),
    ])
    def test_phase_counts(self, name, count):
        assert len(TEMPLATES[name].phases) == count

    @pytest.mark.parametrize("name", sorted(TEMPLATES))
    def test_phase_names_unique(self, name):
        names = TEMPLATES[name].phase_names()
        assert len(names) == len(set(names))

    @pytest.mark.parametrize("name", sorted(TEMPLATES))
    def test_every_phase_has_a_role(self, name):
        assert all(phase.worker_role for phase in TEMPLATES[name].phases)

    @pytest.mark.parametrize("name", sorted(TEMPLATES))
    def test_first_phase_is_sequential(self, name):
        assert TEMPLATES[name].phases[0].depends_on_prior_phase is True

    def test_database_runs_alongside_backend(self):
        names = TEMPLATES["full-stack"].phase_names()
        database = TEMPLATES["full-stack"].phases[names.index("database")]
        assert names[names.index("database") - 1] == "backend"
        assert database.depends_on_prior_phase is False

    def test_full_stack_bookends(self):
        names = TEMPLATES["full-stack"].phase_names()
        assert names[0] == "requirements-analysis"
        assert names[-1] == "final-report"

    def test_get_template_returns_copy(self):
        template = get_template("bug-fix")
        template.phases.pop()
        assert len(get_template("bug-fix").phases) == 5

    def test_unknown_template(self):
        with pytest.raises(KeyError, match="Unknown phase template"):
            get_template("mobile")


class TestSelection:
    def test_bug_fix(self):
        assert select_template_name([_task("Fix crash on save", TaskType.UI)]) == "bug-fix"

    def test_refactor(self):
        assert select_template_name([_task("Refactor report exporter", TaskType.API)]) == "refactor"

    def test_bug_fix_beats_refactor(self):
        tasks = [_task("Refactor report exporter", TaskType.API), _task("Fix crash on save", TaskType.UI)]
        assert select_template_name(tasks) == "bug-fix"

    def test_script_only_by_type(self):
        assert select_template_name([_task("Write backup script", TaskType.SCRIPT)]) == "script-only"

    def test_script_only_by_text(self):
        assert select_template_name([_task("Write cleanup command", TaskType.TEST)]) == "script-only"

    def test_script_like_api_task_is_backend(self):
        assert select_template_name([_task("Build CLI tool", TaskType.API)]) == "backend-only"

    def test_full_stack(self, login_tasks):
        assert select_template_name(login_tasks) == "full-stack"

    def test_frontend_only(self):
        assert select_template_name([_task("Build login form", TaskType.UI)]) == "frontend-only"

    def test_backend_only(self):
        assert select_template_name([_task("Create orders table", TaskType.DATA_SCHEMA)]) == "backend-only"

    def test_fallback(self):
        assert select_template_name([_task("Add e2e tests", TaskType.TEST)]) == "full-stack"
        assert select_template_name([]) == "full-stack"

    def test_select_template_returns_phases(self, login_tasks):
        assert len(select_template(login_tasks).phases) == 19
