"""Tests for phaseflow/orchestrator/dependencies.py — dependency resolution."""

import pytest

from phaseflow.core.exceptions import DependencyViolation
from phaseflow.core.models import Task, TaskType
from phaseflow.orchestrator.dependencies import (
    execution_waves,
    extract_entities,
    find_cycle,
    leading_entity,
    resolve_dependencies,
)


@pytest.fixture
def invoice_tasks():
    return [
        Task(id="s1", title="Create invoices table", declared_type=TaskType.DATA_SCHEMA),
        Task(id="a1", title="Build invoice endpoint", declared_type=TaskType.API),
        Task(id="t1", title="Test invoice totals", declared_type=TaskType.TEST),
    ]


class TestLoginPair:
    def test_form_blocked_by_endpoint(self, login_tasks):
        graph = resolve_dependencies(login_tasks)
        assert graph["ui-1"].blocked_by == ["api-1"]
        assert graph["api-1"].blocks == ["ui-1"]
        assert graph["api-1"].blocked_by == []

    def test_shared_entity_not_parallel(self, login_tasks):
        graph = resolve_dependencies(login_tasks)
        assert "api-1" not in graph["ui-1"].parallelizable
        assert "ui-1" not in graph["api-1"].parallelizable

    def test_waves(self, login_tasks):
        assert execution_waves(resolve_dependencies(login_tasks)) == [["api-1"], ["ui-1"]]


class TestRules:
    def test_api_blocked_by_schema_with_shared_entity(self, invoice_tasks):
        graph = resolve_dependencies(invoice_tasks)
        assert graph["a1"].blocked_by == ["s1"]

    def test_api_not_blocked_by_unrelated_schema(self):
        tasks = [
            Task(id="s1", title="Create customers table", declared_type=TaskType.DATA_SCHEMA),
            Task(id="a1", title="Build invoice endpoint", declared_type=TaskType.API),
        ]
        graph = resolve_dependencies(tasks)
        assert graph["a1"].blocked_by == []
        assert graph["a1"].parallelizable == ["s1"]
        assert graph["s1"].parallelizable == ["a1"]

    def test_test_blocked_by_tasks_whose_lead_entity_it_mentions(self, invoice_tasks):
        graph = resolve_dependencies(invoice_tasks)
        assert graph["t1"].blocked_by == ["s1", "a1"]

    def test_connect_blocked_by_every_ui_and_api(self, login_tasks):
        connect = Task(id="i1", title="Connect checkout to payment provider", declared_type=TaskType.INTEGRATION)
        graph = resolve_dependencies(login_tasks + [connect])
        assert graph["i1"].blocked_by == ["api-1", "ui-1"]

    def test_blocks_is_inverse_of_blocked_by(self, invoice_tasks):
        graph = resolve_dependencies(invoice_tasks)
        for task_id, deps in graph.items():
            for blocker in deps.blocked_by:
                assert task_id in graph[blocker].blocks

    def test_transitive_blockers_not_parallel(self, invoice_tasks):
        graph = resolve_dependencies(invoice_tasks)
        assert "s1" not in graph["t1"].parallelizable

    def test_waves_respect_chain(self, invoice_tasks):
        assert execution_waves(resolve_dependencies(invoice_tasks)) == [["s1"], ["a1"], ["t1"]]


class TestCycles:
    def test_mutual_connect_rules_rejected(self):
        tasks = [
            Task(id="a", title="Integrate billing API", declared_type=TaskType.API),
            Task(id="b", title="Link profile page", declared_type=TaskType.UI),
        ]
        with pytest.raises(DependencyViolation) as excinfo:
            resolve_dependencies(tasks)
        assert excinfo.value.cycle == ["a", "b", "a"]
        assert excinfo.value.remedy

    def test_find_cycle(self):
        assert find_cycle({"a": ["b"], "b": ["c"], "c": ["a"]}) == ["a", "b", "c", "a"]

    def test_acyclic(self):
        assert find_cycle({"a": ["b"], "b": [], "c": ["a", "b"]}) is None

    def test_unknown_ids_ignored(self):
        assert find_cycle({"a": ["zzz"]}) is None


class TestEntityExtraction:
    def test_generic_words_and_verbs_dropped(self):
        assert extract_entities("Create POST /api/login") == ["login"]

    def test_singularized(self):
        assert extract_entities("categories and invoices") == ["category", "invoice"]

    def test_irregular_endings_kept(self):
        assert extract_entities("status class") == ["status", "class"]

    def test_leading_entity_prefers_title(self):
        task = Task(id="x", title="Build invoice page", description="shows customer", declared_type=TaskType.UI)
        assert leading_entity(task) == "invoice"
